"""Pytest configuration and fixtures for alertstack tests."""

import copy
from datetime import datetime, timezone
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from alertstack import (
    AlertmanagerClient,
    DeploymentHealthChecker,
    HealthCheckResult,
    HealthStatus,
    LocalArtifacts,
    Observation,
    Reconciler,
    ResourceDescriptor,
    ResourceKind,
    Settings,
)
from alertstack.installer import AlertingInstaller


def _merge(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class FakeControlPlane:
    """In-memory stand-in for ResourceClient that records every write."""

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, tuple[str, str, str]]] = []
        self.failing: set[tuple[str, str, str]] = set()
        self.closed = False

    def add(self, kind: ResourceKind, namespace: str, name: str, spec: Optional[dict] = None):
        self.objects[(kind.value, namespace, name)] = spec or {"metadata": {"name": name}}

    def has(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        return (kind.value, namespace, name) in self.objects

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        return self.objects[(kind.value, namespace, name)]

    def ops(self, op: str) -> list[tuple[str, str, str]]:
        return [key for name, key in self.writes if name == op]

    def _check(self):
        if not self.reachable:
            raise MaxRetryError(None, "/api", "connection refused")

    def _write(self, op: str, key: tuple[str, str, str]):
        self._check()
        self.writes.append((op, key))
        if key in self.failing:
            raise ApiException(status=403, reason="Forbidden")

    def close(self) -> None:
        self.closed = True

    def ping(self) -> bool:
        return self.reachable

    def observe(self, resource: ResourceDescriptor) -> Observation:
        self._check()
        obj = self.objects.get(resource.key)
        if obj is None:
            return Observation.absent()
        return Observation.found(copy.deepcopy(obj))

    def create(self, resource: ResourceDescriptor) -> None:
        self._write("create", resource.key)
        if resource.key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.objects[resource.key] = copy.deepcopy(resource.desired_spec)

    def patch(self, resource: ResourceDescriptor, body: Optional[dict] = None) -> None:
        self._write("patch", resource.key)
        if resource.key not in self.objects:
            raise ApiException(status=404, reason="NotFound")
        _merge(self.objects[resource.key], body if body is not None else resource.desired_spec)

    def delete(self, resource: ResourceDescriptor) -> bool:
        self._write("delete", resource.key)
        return self.objects.pop(resource.key, None) is not None

    def restart(self, name: str, namespace: str) -> None:
        key = (ResourceKind.DEPLOYMENT.value, namespace, name)
        self._write("restart", key)
        if key not in self.objects:
            raise ApiException(status=404, reason="NotFound")


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    mock_conn.api_client.sanitize_for_serialization.side_effect = (
        lambda obj: client.ApiClient().sanitize_for_serialization(obj)
    )
    return mock_conn


@pytest.fixture
def settings(tmp_path):
    """Settings with local artifacts under a temp dir and no real waiting."""
    return Settings(
        work_dir=tmp_path,
        health_check_interval_seconds=0,
        probe_poll_interval_seconds=0,
        probe_poll_attempts=2,
        health_wait_timeout_seconds=5,
    )


@pytest.fixture
def control_plane(settings):
    """Control plane with Prometheus installed and its config map present."""
    plane = FakeControlPlane()
    ns = settings.metrics_namespace
    plane.add(ResourceKind.DEPLOYMENT, ns, settings.prometheus_deployment)
    plane.add(
        ResourceKind.CONFIG_MAP,
        ns,
        settings.prometheus_config_map,
        {
            "metadata": {"name": settings.prometheus_config_map, "namespace": ns},
            "data": {
                settings.prometheus_config_key: (
                    "global:\n  scrape_interval: 15s\n"
                    "scrape_configs:\n- job_name: prometheus\n"
                    "  static_configs:\n  - targets: ['localhost:9090']\n"
                )
            },
        },
    )
    return plane


@pytest.fixture
def available_health():
    """Health checker whose deployments are always available."""
    health = MagicMock(spec=DeploymentHealthChecker)
    health.wait_for_available.return_value = HealthCheckResult(
        status=HealthStatus.AVAILABLE,
        message="Deployment is available (2/2 ready)",
        checked_at=datetime.now(timezone.utc),
        details={},
    )
    return health


@pytest.fixture
def mock_alerts():
    """AlertManager client that never sees the probe alert."""
    alerts = MagicMock(spec=AlertmanagerClient)
    alerts.has_alert.return_value = False
    return alerts


@pytest.fixture
def reconciler(settings, control_plane, available_health, mock_alerts):
    return Reconciler(
        settings=settings,
        resources=control_plane,
        health=available_health,
        alerts=mock_alerts,
        artifacts=LocalArtifacts(settings),
    )


@pytest.fixture
def installer(settings, reconciler):
    return AlertingInstaller(settings, reconciler)
