"""alertstack - Idempotent AlertManager installer for Kubernetes."""

from .alertmanager_client import AlertmanagerClient
from .artifacts import LocalArtifacts, MissingTemplateError, NotificationCredentials
from .cluster import ClusterConnection
from .config import Settings, get_settings
from .health import DeploymentHealthChecker, HealthCheckResult, HealthStatus
from .installer import AlertingInstaller
from .models import (
    Observation,
    ReconcileAction,
    ReconcileResult,
    ReconcileStatus,
    ResourceDescriptor,
    ResourceKind,
    RunSummary,
    ValidationProbe,
)
from .reconciler import PreconditionError, Reconciler, decide_action
from .resources import ResourceClient

__version__ = "0.1.0"

__all__ = [
    # Workflow
    "AlertingInstaller",
    "Reconciler",
    "PreconditionError",
    "decide_action",
    # Cluster access
    "ClusterConnection",
    "ResourceClient",
    "DeploymentHealthChecker",
    "HealthCheckResult",
    "HealthStatus",
    "AlertmanagerClient",
    # Local files
    "LocalArtifacts",
    "NotificationCredentials",
    "MissingTemplateError",
    # Configuration
    "Settings",
    "get_settings",
    # Models
    "ResourceKind",
    "ResourceDescriptor",
    "Observation",
    "ReconcileAction",
    "ReconcileStatus",
    "ReconcileResult",
    "ValidationProbe",
    "RunSummary",
]
