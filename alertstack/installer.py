"""Installer commands: ordered reconciliation steps and run summaries."""

import logging
import threading
from typing import Optional

from . import builders
from .alertmanager_client import AlertmanagerClient
from .artifacts import LocalArtifacts, MissingTemplateError, NotificationCredentials
from .cluster import ClusterConnection
from .config import Settings
from .health import DeploymentHealthChecker
from .models import ReconcileAction, ReconcileStatus, RunSummary
from .reconciler import PreconditionError, Reconciler
from .resources import ResourceClient

logger = logging.getLogger(__name__)


class AlertingInstaller:
    """
    Runs installer commands against one cluster.

    Steps run strictly in dependency order: prerequisites, secrets,
    AlertManager, Prometheus wiring, validation probe. Only a failed
    precondition aborts a run; every other failure is recorded in the
    summary and the next step still runs.
    """

    def __init__(self, settings: Settings, reconciler: Reconciler):
        self.settings = settings
        self.reconciler = reconciler
        self.artifacts = reconciler.artifacts

    @classmethod
    def connect(
        cls, settings: Settings, cancel: Optional[threading.Event] = None
    ) -> "AlertingInstaller":
        """
        Build an installer wired to the configured cluster.

        The returned installer owns its clients; use it as a context manager
        or call ``close()``.
        """
        cluster = ClusterConnection.from_settings(settings)
        try:
            alerts = AlertmanagerClient(settings.alertmanager_url)
        except Exception:
            cluster.close()
            raise
        reconciler = Reconciler(
            settings=settings,
            resources=ResourceClient(cluster),
            health=DeploymentHealthChecker(cluster),
            alerts=alerts,
            artifacts=LocalArtifacts(settings),
            cancel=cancel,
        )
        return cls(settings, reconciler)

    def close(self) -> None:
        """Close the cluster and AlertManager clients."""
        self.reconciler.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def install(self) -> RunSummary:
        summary = RunSummary(command="install")
        try:
            self.reconciler.ensure_prerequisites()
        except PreconditionError as e:
            logger.error(str(e))
            summary.fatal_error = str(e)
            summary.exit_code = 1
            return summary
        logger.info("✓ Prerequisites verified")

        self._configure_secrets(summary)
        self._install_alertmanager(summary)
        self._wire_prometheus(summary)
        self._validate(summary)
        return summary

    def apply_secrets(self) -> RunSummary:
        """Push the credentials from the template and restart AlertManager."""
        summary = RunSummary(command="apply-secrets")
        try:
            credentials = self.artifacts.load_credentials()
        except MissingTemplateError as e:
            logger.error(str(e))
            summary.fatal_error = str(e)
            summary.exit_code = 1
            return summary

        placeholders = credentials.placeholders()
        if placeholders:
            logger.warning(f"Still using placeholder values for: {', '.join(placeholders)}")

        result = summary.add(
            self.reconciler.ensure_secret(
                self.settings.secret_name,
                self.settings.metrics_namespace,
                credentials.to_secret_literals(),
                preserve_existing=False,
            )
        )
        if result.ok:
            result = summary.add(
                self.reconciler.restart_workload(
                    self.settings.alertmanager_name, self.settings.metrics_namespace
                )
            )
        if not result.ok:
            summary.exit_code = 1
        else:
            logger.info("✓ Secrets applied and AlertManager restarted")
        return summary

    def test(self) -> RunSummary:
        summary = RunSummary(command="test")
        self._validate(summary)
        return summary

    def uninstall(self) -> RunSummary:
        summary = RunSummary(command="uninstall")
        logger.warning("Uninstalling the alerting stack...")
        if self.reconciler.teardown(builders.managed_resources(self.settings)):
            logger.info("✓ Alerting stack uninstalled")
        else:
            summary.exit_code = 1
        return summary

    def _configure_secrets(self, summary: RunSummary) -> None:
        logger.info("Configuring notification secrets...")
        if self.artifacts.secrets_file.exists():
            credentials = self.artifacts.load_credentials()
        else:
            credentials = NotificationCredentials(_env_file=None)

        result = summary.add(
            self.reconciler.ensure_secret(
                self.settings.secret_name,
                self.settings.metrics_namespace,
                credentials.to_secret_literals(),
            )
        )
        if result.action == ReconcileAction.CREATE and result.status == ReconcileStatus.APPLIED:
            self.artifacts.ensure_secrets_template()
            logger.warning("Then run: alertstack apply-secrets")

    def _install_alertmanager(self, summary: RunSummary) -> None:
        logger.info("Installing AlertManager...")
        summary.add(
            self.reconciler.ensure_deployment(
                builders.build_deployment(self.settings),
                replicas=self.settings.alertmanager_replicas,
                health_wait_timeout=self.settings.health_wait_timeout_seconds,
                dependencies=builders.static_configuration(self.settings),
            )
        )

    def _wire_prometheus(self, summary: RunSummary) -> None:
        logger.info("Configuring Prometheus to use AlertManager...")
        summary.add(
            self.reconciler.ensure_upstream_wiring(
                self.settings.prometheus_config_map,
                self.settings.metrics_namespace,
                self.settings.alertmanager_target,
                config_key=self.settings.prometheus_config_key,
                rule_files=self.settings.prometheus_rule_files,
                workload=self.settings.prometheus_deployment,
            )
        )

    def _validate(self, summary: RunSummary) -> None:
        logger.info("Testing the alerting pipeline...")
        summary.add(
            self.reconciler.run_validation_probe(
                builders.build_probe(self.settings),
                poll_interval=self.settings.probe_poll_interval_seconds,
                poll_attempts=self.settings.probe_poll_attempts,
            )
        )


def format_summary(summary: RunSummary) -> str:
    """Render a run summary as a plain-text table."""
    lines = [f"\n=== {summary.command} summary ==="]
    if summary.fatal_error:
        lines.append(f"FATAL: {summary.fatal_error}")

    icons = {
        ReconcileStatus.APPLIED: "✓",
        ReconcileStatus.SKIPPED: "-",
        ReconcileStatus.FAILED: "✗",
        ReconcileStatus.TIMED_OUT: "?",
    }
    for result in summary.flattened():
        line = (
            f"{icons[result.status]} {str(result.resource):<55} "
            f"{result.action.value:<7} {result.status.value}"
        )
        if result.error:
            line += f"  ({result.error})"
        lines.append(line)
    return "\n".join(lines)


def post_install_info(settings: Settings) -> str:
    ns = settings.metrics_namespace
    return "\n".join(
        [
            "",
            "AlertManager access:",
            f"  kubectl port-forward -n {ns} svc/{settings.alertmanager_name} 9093:9093",
            "  http://localhost:9093",
            "",
            "Escalation:",
            "  critical alerts -> PagerDuty (financial and security have dedicated services)",
            "  warnings -> Slack, Teams and Discord",
            "",
            "Notification credentials:",
            f"  edit:  {settings.secrets_file}",
            "  apply: alertstack apply-secrets",
            "",
        ]
    )
