"""Configuration management for the alerting installer."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Installer settings."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTSTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file (in-cluster config when unset)",
    )
    kube_context: Optional[str] = None
    metrics_namespace: str = "istio-system"
    target_namespace: str = "default"
    part_of: str = "alerting-stack"

    # AlertManager Settings
    alertmanager_name: str = "alertmanager"
    alertmanager_image: str = "prom/alertmanager:v0.26.0"
    alertmanager_replicas: int = Field(default=2, ge=1)
    alertmanager_external_url: str = "http://alertmanager.local"
    alertmanager_url: str = Field(
        default="http://localhost:9093",
        description="AlertManager query endpoint used by the validation probe",
    )
    cpu_request: str = "100m"
    memory_request: str = "200Mi"
    cpu_limit: str = "200m"
    memory_limit: str = "500Mi"

    # Managed resource names
    secret_name: str = "alerting-secrets"
    config_map_name: str = "alertmanager-config"
    templates_config_map_name: str = "alert-templates"
    rules_name: str = "alerting-rules"
    probe_rule_name: str = "alerting-test-alert"
    probe_alert_name: str = "TestAlert"

    # Prometheus Settings
    prometheus_deployment: str = "prometheus"
    prometheus_config_map: str = "prometheus"
    prometheus_config_key: str = "prometheus.yml"
    prometheus_rule_files: str = "/etc/prometheus/rules/*.yml"

    # Notification Settings
    smtp_smarthost: str = "smtp.gmail.com:587"
    smtp_from: str = "alerts@example.com"
    alert_email_to: str = "oncall@example.com"

    # Wait Settings
    health_wait_timeout_seconds: int = 300
    health_check_interval_seconds: int = 10
    probe_poll_interval_seconds: int = 10
    probe_poll_attempts: int = Field(default=3, ge=1)

    # Local artifacts
    work_dir: Path = Field(
        default=Path("."),
        description="Directory holding the secret template and config backups",
    )
    secrets_file_name: str = "secrets-config.env"
    backup_file_name: str = "prometheus-config-backup.yaml"

    @property
    def alertmanager_target(self) -> str:
        """In-cluster address Prometheus uses to reach AlertManager."""
        return f"{self.alertmanager_name}.{self.metrics_namespace}.svc.cluster.local:9093"

    @property
    def secrets_file(self) -> Path:
        return self.work_dir / self.secrets_file_name

    @property
    def backup_file(self) -> Path:
        return self.work_dir / self.backup_file_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
