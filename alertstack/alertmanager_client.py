"""AlertManager HTTP API client used by the validation probe."""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class AlertmanagerClient:
    """Queries alerts received by AlertManager."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize AlertManager client.

        Args:
            base_url: AlertManager base URL (e.g. http://localhost:9093)
            timeout: Request timeout in seconds
            transport: Optional transport, for tests
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def list_alerts(self) -> list[dict[str, Any]]:
        """
        List alerts currently held by AlertManager.

        Raises:
            httpx.HTTPError: If the request fails
            ValueError: If the body is not a JSON list of alerts
        """
        response = self.client.get("/api/v2/alerts")
        response.raise_for_status()
        alerts = response.json()
        if not isinstance(alerts, list):
            raise ValueError(f"Unexpected alerts response: expected a list, got {type(alerts).__name__}")
        return alerts

    def has_alert(self, name_fragment: str) -> bool:
        """Return True if any alert name contains ``name_fragment``."""
        for alert in self.list_alerts():
            if not isinstance(alert, dict):
                continue
            labels = alert.get("labels") or {}
            if not isinstance(labels, dict):
                continue
            if name_fragment in str(labels.get("alertname") or ""):
                return True
        return False

    def close(self) -> None:
        self.client.close()
