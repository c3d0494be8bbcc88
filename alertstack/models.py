"""Reconciliation models for the alerting installer."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ResourceKind(str, Enum):
    """Kinds of cluster objects the installer manages."""

    DEPLOYMENT = "Deployment"
    SERVICE = "Service"
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"
    CUSTOM_RULE = "CustomRule"


class ReconcileAction(str, Enum):
    """Action chosen after comparing desired and observed state."""

    CREATE = "create"
    PATCH = "patch"
    SKIP = "skip"


class ReconcileStatus(str, Enum):
    """Outcome of applying a reconcile action."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ResourceDescriptor(BaseModel):
    """
    Identifies one cluster object and the manifest it should converge to.

    ``(kind, namespace, name)`` is the identity; ``desired_spec`` is the full
    manifest body sent to the control plane on create or patch.
    """

    kind: ResourceKind
    namespace: str
    name: str
    desired_spec: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.kind.value, self.namespace, self.name)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.namespace}/{self.name}"


class Observation(BaseModel):
    """Observed state of a resource: absent, or present with its spec."""

    present: bool
    spec: Optional[dict[str, Any]] = None

    @classmethod
    def absent(cls) -> "Observation":
        return cls(present=False)

    @classmethod
    def found(cls, spec: dict[str, Any]) -> "Observation":
        return cls(present=True, spec=spec)


class ReconcileResult(BaseModel):
    """Result of reconciling one resource."""

    resource: ResourceDescriptor
    action: ReconcileAction
    status: ReconcileStatus
    error: Optional[str] = None
    children: list["ReconcileResult"] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (ReconcileStatus.APPLIED, ReconcileStatus.SKIPPED)

    def flatten(self) -> list["ReconcileResult"]:
        """Return child results followed by this result."""
        results: list[ReconcileResult] = []
        for child in self.children:
            results.extend(child.flatten())
        results.append(self)
        return results


ReconcileResult.model_rebuild()


class ValidationProbe(BaseModel):
    """
    Transient alert rule used to confirm the alerting pipeline end to end.

    The rule is always deleted after polling, whatever the outcome.
    """

    rule: ResourceDescriptor
    alert_name: str


class RunSummary(BaseModel):
    """Results of one installer command."""

    command: str
    results: list[ReconcileResult] = Field(default_factory=list)
    fatal_error: Optional[str] = None
    exit_code: int = 0

    def add(self, result: ReconcileResult) -> ReconcileResult:
        self.results.append(result)
        return result

    def flattened(self) -> list[ReconcileResult]:
        flat: list[ReconcileResult] = []
        for result in self.results:
            flat.extend(result.flatten())
        return flat

    @property
    def failures(self) -> list[ReconcileResult]:
        return [r for r in self.flattened() if r.status == ReconcileStatus.FAILED]
