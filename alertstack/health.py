"""Readiness checks for Kubernetes deployments."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from kubernetes.client import V1Pod
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status enumeration."""

    AVAILABLE = "available"
    PROGRESSING = "progressing"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a readiness check."""

    status: HealthStatus
    message: str
    checked_at: datetime
    details: dict[str, Any]

    @property
    def timed_out(self) -> bool:
        return bool(self.details.get("timeout"))


class DeploymentHealthChecker:
    """
    Readiness checker for Kubernetes deployments.

    A deployment is available when its ``Available`` condition is true and
    every desired replica is ready.
    """

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize health checker.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.apps_v1 = cluster.apps_v1
        self.core_v1 = cluster.core_v1

    def check_availability(self, name: str, namespace: str) -> HealthCheckResult:
        """
        Check whether a deployment reports available.

        Args:
            name: Deployment name
            namespace: Kubernetes namespace

        Returns:
            HealthCheckResult
        """
        checked_at = datetime.now(timezone.utc)
        details: dict[str, Any] = {}

        try:
            deployment = self.apps_v1.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return HealthCheckResult(
                    status=HealthStatus.NOT_FOUND,
                    message=f"Deployment {namespace}/{name} not found",
                    checked_at=checked_at,
                    details=details,
                )
            details["error"] = str(e)
            return HealthCheckResult(
                status=HealthStatus.UNKNOWN,
                message=f"Error checking deployment {namespace}/{name}: {e.reason}",
                checked_at=checked_at,
                details=details,
            )

        desired = deployment.spec.replicas or 0
        ready = deployment.status.ready_replicas or 0
        details["replicas"] = desired
        details["ready_replicas"] = ready

        available = any(
            c.type == "Available" and c.status == "True"
            for c in (deployment.status.conditions or [])
        )
        if available and ready >= desired:
            return HealthCheckResult(
                status=HealthStatus.AVAILABLE,
                message=f"Deployment {namespace}/{name} is available ({ready}/{desired} ready)",
                checked_at=checked_at,
                details=details,
            )

        return HealthCheckResult(
            status=HealthStatus.PROGRESSING,
            message=f"Deployment {namespace}/{name} has {ready}/{desired} replicas ready",
            checked_at=checked_at,
            details=details,
        )

    def pod_issues(self, name: str, namespace: str) -> list[str]:
        """
        Collect pod-level problems for a deployment's pods.

        Used to explain a readiness timeout.
        """
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=namespace,
                label_selector=f"app.kubernetes.io/name={name}",
            )
        except ApiException as e:
            return [f"Unable to list pods: {e.reason}"]
        return _check_pods(pods.items)

    def wait_for_available(
        self,
        name: str,
        namespace: str,
        timeout_seconds: int = 300,
        check_interval_seconds: int = 10,
        cancel: Optional[threading.Event] = None,
    ) -> HealthCheckResult:
        """
        Wait for a deployment to report available.

        Args:
            name: Deployment name
            namespace: Kubernetes namespace
            timeout_seconds: Maximum time to wait
            check_interval_seconds: Time between checks
            cancel: Event that aborts the wait when set

        Returns:
            HealthCheckResult; ``details["timeout"]`` is set when the deadline
            passed or the wait was cancelled
        """
        cancel = cancel or threading.Event()
        deadline = time.monotonic() + timeout_seconds

        while True:
            result = self.check_availability(name, namespace)
            if result.status == HealthStatus.AVAILABLE:
                return result

            remaining = deadline - time.monotonic()
            if remaining <= 0 or cancel.is_set():
                break
            if cancel.wait(min(check_interval_seconds, remaining)):
                break

        result.details["timeout"] = True
        issues = self.pod_issues(name, namespace)
        if issues:
            result.details["issues"] = issues
            result.message += f": {'; '.join(issues)}"
        if cancel.is_set():
            result.message += " (wait cancelled)"
        else:
            result.message += f" (timeout after {timeout_seconds}s)"
        return result


def _check_pods(pods: list[V1Pod]) -> list[str]:
    issues: list[str] = []

    for pod in pods:
        pod_name = pod.metadata.name
        phase = pod.status.phase
        if phase not in ["Running", "Succeeded"]:
            issues.append(f"Pod {pod_name} in {phase} phase")

        for container_status in pod.status.container_statuses or []:
            waiting = container_status.state.waiting if container_status.state else None
            if waiting and waiting.reason in [
                "CrashLoopBackOff",
                "ImagePullBackOff",
                "ErrImagePull",
                "CreateContainerConfigError",
            ]:
                issues.append(
                    f"Container {container_status.name} in pod {pod_name} "
                    f"is in {waiting.reason} state"
                )

    return issues
