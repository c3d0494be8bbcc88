"""Local files: the notification secret template and config backups."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import alerting
from .config import Settings

logger = logging.getLogger(__name__)

SECRETS_TEMPLATE = """\
# Notification channel credentials for the alerting stack.
# Replace the placeholders, then run: alertstack apply-secrets

# SMTP password for email notifications
SMTP_PASSWORD="your-smtp-password-here"

# PagerDuty integration keys, one per escalation tier
PAGERDUTY_SERVICE_KEY="your-pagerduty-service-key-here"
PAGERDUTY_FINANCIAL_KEY="your-pagerduty-financial-key-here"
PAGERDUTY_SECURITY_KEY="your-pagerduty-security-key-here"

# Chat webhooks
SLACK_WEBHOOK="https://hooks.slack.com/services/YOUR/SLACK/WEBHOOK"
TEAMS_WEBHOOK="https://outlook.office.com/webhook/YOUR/TEAMS/WEBHOOK"
DISCORD_WEBHOOK="https://discord.com/api/webhooks/YOUR/DISCORD/WEBHOOK"
"""


class MissingTemplateError(FileNotFoundError):
    """Raised when the secret template has not been generated yet."""


class NotificationCredentials(BaseSettings):
    """
    Notification channel credentials.

    Loaded from the human-edited template; environment variables with the
    same names take precedence over the file.
    """

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    smtp_password: str = "your-smtp-password-here"
    pagerduty_service_key: str = "your-pagerduty-service-key-here"
    pagerduty_financial_key: str = "your-pagerduty-financial-key-here"
    pagerduty_security_key: str = "your-pagerduty-security-key-here"
    slack_webhook: str = "https://hooks.slack.com/services/YOUR/SLACK/WEBHOOK"
    teams_webhook: str = "https://outlook.office.com/webhook/YOUR/TEAMS/WEBHOOK"
    discord_webhook: str = "https://discord.com/api/webhooks/YOUR/DISCORD/WEBHOOK"

    def to_secret_literals(self) -> dict[str, str]:
        return {
            alerting.SMTP_PASSWORD: self.smtp_password,
            alerting.PAGERDUTY_SERVICE_KEY: self.pagerduty_service_key,
            alerting.PAGERDUTY_FINANCIAL_KEY: self.pagerduty_financial_key,
            alerting.PAGERDUTY_SECURITY_KEY: self.pagerduty_security_key,
            alerting.SLACK_WEBHOOK: self.slack_webhook,
            alerting.TEAMS_WEBHOOK: self.teams_webhook,
            alerting.DISCORD_WEBHOOK: self.discord_webhook,
        }

    def placeholders(self) -> list[str]:
        """Names of fields still holding template placeholder values."""
        defaults = type(self).model_fields
        return [
            field for field, info in defaults.items()
            if getattr(self, field) == info.default
        ]


class LocalArtifacts:
    """Manages the installer's local files."""

    def __init__(self, settings: Settings):
        self.secrets_file: Path = settings.secrets_file
        self.backup_file: Path = settings.backup_file

    def ensure_secrets_template(self) -> bool:
        """
        Write the secret template unless it already exists.

        Returns:
            True if a new template was written
        """
        if self.secrets_file.exists():
            return False
        self.secrets_file.parent.mkdir(parents=True, exist_ok=True)
        self.secrets_file.write_text(SECRETS_TEMPLATE, encoding="utf-8")
        logger.warning(f"Configure notification credentials in: {self.secrets_file}")
        return True

    def load_credentials(self) -> NotificationCredentials:
        """
        Load credentials from the secret template.

        Raises:
            MissingTemplateError: If the template file does not exist
        """
        if not self.secrets_file.exists():
            raise MissingTemplateError(
                f"{self.secrets_file} not found, run 'install' first"
            )
        return NotificationCredentials(_env_file=self.secrets_file)

    def write_backup(self, obj: dict[str, Any]) -> bool:
        """
        Snapshot a resource before it is patched.

        Best effort: failures are logged and never propagate.
        """
        try:
            self.backup_file.parent.mkdir(parents=True, exist_ok=True)
            with self.backup_file.open("w", encoding="utf-8") as f:
                yaml.safe_dump(obj, f, sort_keys=False)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not write backup {self.backup_file}: {e}")
            return False
        logger.info(f"✓ Backup written to {self.backup_file}")
        return True

    def remove_all(self) -> list[str]:
        """
        Delete local artifacts.

        Returns:
            Error messages for files that could not be removed
        """
        errors: list[str] = []
        for path in (self.secrets_file, self.backup_file):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                errors.append(f"Could not remove {path}: {e}")
        return errors
