"""Idempotent reconciliation of the alerting stack."""

import logging
import threading
from typing import Any, Iterable, Optional

import httpx
import yaml
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as TransportError

from . import builders
from .alertmanager_client import AlertmanagerClient
from .artifacts import LocalArtifacts
from .config import Settings
from .health import DeploymentHealthChecker
from .models import (
    Observation,
    ReconcileAction,
    ReconcileResult,
    ReconcileStatus,
    ResourceDescriptor,
    ResourceKind,
    ValidationProbe,
)
from .prometheus import patch_fragment, wire_alertmanager
from .resources import ResourceClient

logger = logging.getLogger(__name__)

# Errors that fail a single step without aborting the run
STEP_ERRORS = (ApiException, TransportError)

_IGNORED_KEYS = {"apiVersion", "kind", "status"}


class PreconditionError(Exception):
    """A hard precondition of the run does not hold."""


def spec_matches(desired: Any, observed: Any) -> bool:
    """
    Return True if every field of ``desired`` is present in ``observed``.

    Fields the server adds (defaults, status, metadata) are ignored.
    """
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return False
        return all(
            key in observed and spec_matches(value, observed[key])
            for key, value in desired.items()
        )
    if isinstance(desired, list):
        if not isinstance(observed, list) or len(desired) != len(observed):
            return False
        return all(spec_matches(d, o) for d, o in zip(desired, observed))
    return desired == observed


def decide_action(
    desired: ResourceDescriptor,
    observed: Observation,
    preserve_existing: bool = False,
) -> ReconcileAction:
    """
    Map desired and observed state to an action.

    Args:
        desired: Resource with its desired manifest
        observed: Current state of the resource
        preserve_existing: Skip any present resource regardless of content

    Returns:
        CREATE when absent, SKIP when preserved or matching, PATCH otherwise
    """
    if not observed.present:
        return ReconcileAction.CREATE
    if preserve_existing:
        return ReconcileAction.SKIP
    wanted = {k: v for k, v in desired.desired_spec.items() if k not in _IGNORED_KEYS}
    if spec_matches(wanted, observed.spec or {}):
        return ReconcileAction.SKIP
    return ReconcileAction.PATCH


class Reconciler:
    """
    Converges the alerting stack toward its desired state.

    Every step re-observes the cluster; nothing is cached between runs.
    Steps return a ReconcileResult instead of raising, except
    ``ensure_prerequisites`` which raises PreconditionError. Concurrent runs
    against one cluster are not coordinated: the last write wins.
    """

    def __init__(
        self,
        settings: Settings,
        resources: ResourceClient,
        health: DeploymentHealthChecker,
        alerts: AlertmanagerClient,
        artifacts: LocalArtifacts,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize reconciler.

        Args:
            settings: Installer settings
            resources: Control-plane client
            health: Deployment readiness checker
            alerts: AlertManager query client
            artifacts: Local file storage
            cancel: Event that aborts the bounded waits when set
        """
        self.settings = settings
        self.resources = resources
        self.health = health
        self.alerts = alerts
        self.artifacts = artifacts
        self.cancel = cancel or threading.Event()

    def close(self) -> None:
        """Release the control-plane and AlertManager clients."""
        try:
            self.alerts.close()
        finally:
            self.resources.close()

    def ensure_prerequisites(self) -> None:
        """
        Verify the control plane is reachable and Prometheus is deployed.

        Read-only.

        Raises:
            PreconditionError: If either check fails
        """
        logger.info("Checking prerequisites...")
        if not self.resources.ping():
            raise PreconditionError("Unable to connect to the Kubernetes API server")

        upstream = builders.upstream_deployment(self.settings)
        try:
            observation = self.resources.observe(upstream)
        except STEP_ERRORS as e:
            raise PreconditionError(f"Unable to look up {upstream}: {e}") from e
        if not observation.present:
            raise PreconditionError(
                f"{upstream} not found, install Prometheus before AlertManager"
            )
        logger.info(f"✓ Prometheus found in {upstream.namespace}")

        alertmanager = ResourceDescriptor(
            kind=ResourceKind.DEPLOYMENT,
            namespace=self.settings.metrics_namespace,
            name=self.settings.alertmanager_name,
        )
        try:
            if self.resources.observe(alertmanager).present:
                logger.info(f"{alertmanager} already exists, configuration will be refreshed")
            else:
                logger.info(f"{alertmanager} will be installed")
        except STEP_ERRORS as e:
            raise PreconditionError(f"Unable to look up {alertmanager}: {e}") from e

    def reconcile(
        self, resource: ResourceDescriptor, preserve_existing: bool = False
    ) -> ReconcileResult:
        """
        Observe a resource and create, patch or skip it.

        API failures produce a FAILED result instead of raising.
        """
        action = ReconcileAction.SKIP
        try:
            observed = self.resources.observe(resource)
            action = decide_action(resource, observed, preserve_existing)
            if action == ReconcileAction.CREATE:
                self.resources.create(resource)
            elif action == ReconcileAction.PATCH:
                self.resources.patch(resource)
            else:
                logger.info(f"{resource} is up to date")
        except STEP_ERRORS as e:
            logger.warning(f"Failed to reconcile {resource}: {e}")
            return ReconcileResult(
                resource=resource,
                action=action,
                status=ReconcileStatus.FAILED,
                error=str(e),
            )

        status = ReconcileStatus.SKIPPED if action == ReconcileAction.SKIP else ReconcileStatus.APPLIED
        return ReconcileResult(resource=resource, action=action, status=status)

    def ensure_secret(
        self,
        name: str,
        namespace: str,
        literal_values: dict[str, str],
        preserve_existing: bool = True,
    ) -> ReconcileResult:
        """
        Ensure the notification secret exists.

        With ``preserve_existing`` an existing secret is never modified, so
        operator-edited credentials survive re-runs.
        """
        secret = builders.build_secret(self.settings, literal_values, name, namespace)
        result = self.reconcile(secret, preserve_existing=preserve_existing)
        if result.status == ReconcileStatus.SKIPPED and preserve_existing:
            logger.warning(f"{secret} already exists, keeping current values")
        return result

    def ensure_deployment(
        self,
        descriptor: ResourceDescriptor,
        replicas: Optional[int] = None,
        health_wait_timeout: Optional[int] = None,
        dependencies: Iterable[ResourceDescriptor] = (),
    ) -> ReconcileResult:
        """
        Apply static configuration, then create the deployment if absent.

        An existing deployment object is left untouched: configuration drift
        is corrected through ``dependencies``, replica and image changes need
        the deployment to be re-created.

        Args:
            descriptor: Deployment to ensure
            replicas: Replica count used when creating
            health_wait_timeout: Seconds to wait for availability, 0 or None
                to skip waiting
            dependencies: Config maps, rules and services applied first

        Returns:
            Result for the deployment, with one child per dependency
        """
        children = [self.reconcile(dependency) for dependency in dependencies]

        if replicas is not None:
            spec = dict(descriptor.desired_spec)
            spec["spec"] = {**spec.get("spec", {}), "replicas": replicas}
            descriptor = descriptor.model_copy(update={"desired_spec": spec})

        result = self.reconcile(descriptor, preserve_existing=True)
        result.children = children
        if result.action == ReconcileAction.SKIP:
            logger.info(f"{descriptor} exists, deployment object not modified")
        if result.status == ReconcileStatus.FAILED or not health_wait_timeout:
            return result

        logger.info(f"Waiting for {descriptor} to become available...")
        try:
            health = self.health.wait_for_available(
                descriptor.name,
                descriptor.namespace,
                timeout_seconds=health_wait_timeout,
                check_interval_seconds=self.settings.health_check_interval_seconds,
                cancel=self.cancel,
            )
        except STEP_ERRORS as e:
            logger.warning(f"Unable to check availability of {descriptor}: {e}")
            result.status = ReconcileStatus.TIMED_OUT
            result.error = str(e)
            return result

        if health.timed_out:
            logger.warning(health.message)
            result.status = ReconcileStatus.TIMED_OUT
            result.error = health.message
        else:
            logger.info(f"✓ {health.message}")
        return result

    def ensure_upstream_wiring(
        self,
        config_map_name: str,
        namespace: str,
        target: str,
        config_key: str = "prometheus.yml",
        rule_files: Optional[str] = None,
        workload: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Point the upstream Prometheus configuration at AlertManager.

        The existing config map is backed up, merge-patched with the target
        reference and the workload restarted. A missing config map is skipped
        with a warning: Prometheus is not owned by this installer.

        Args:
            config_map_name: Prometheus config map
            namespace: Namespace of the config map and workload
            target: AlertManager ``host:port`` to reference
            config_key: Key of the config document in the config map
            rule_files: Rule file glob to reference
            workload: Deployment to restart after patching
        """
        config_map = ResourceDescriptor(
            kind=ResourceKind.CONFIG_MAP, namespace=namespace, name=config_map_name
        )
        action = ReconcileAction.SKIP
        try:
            observed = self.resources.observe(config_map)
            if not observed.present:
                message = f"{config_map} not found, configure Prometheus alerting manually"
                logger.warning(message)
                return ReconcileResult(
                    resource=config_map,
                    action=action,
                    status=ReconcileStatus.SKIPPED,
                    error=message,
                )

            current = ((observed.spec or {}).get("data") or {}).get(config_key)
            updated = wire_alertmanager(current, target, rule_files)
            if updated is None:
                logger.info(f"{config_map} already routes alerts to {target}")
                return ReconcileResult(
                    resource=config_map, action=action, status=ReconcileStatus.SKIPPED
                )

            action = ReconcileAction.PATCH
            self.artifacts.write_backup(observed.spec or {})
            config_map = config_map.model_copy(
                update={"desired_spec": patch_fragment(config_key, updated)}
            )
            self.resources.patch(config_map)
        except (ValueError, yaml.YAMLError) as e:
            logger.warning(f"Cannot parse {config_key} in {config_map}: {e}")
            return ReconcileResult(
                resource=config_map,
                action=action,
                status=ReconcileStatus.FAILED,
                error=str(e),
            )
        except STEP_ERRORS as e:
            logger.warning(f"Failed to wire {config_map}: {e}")
            return ReconcileResult(
                resource=config_map,
                action=action,
                status=ReconcileStatus.FAILED,
                error=str(e),
            )

        result = ReconcileResult(
            resource=config_map, action=action, status=ReconcileStatus.APPLIED
        )
        if workload:
            restart = self.restart_workload(workload, namespace)
            if not restart.ok:
                result.error = f"Config patched but restart failed: {restart.error}"
        logger.info(f"✓ Prometheus configured to use {target}")
        return result

    def restart_workload(self, name: str, namespace: str) -> ReconcileResult:
        deployment = ResourceDescriptor(
            kind=ResourceKind.DEPLOYMENT, namespace=namespace, name=name
        )
        try:
            self.resources.restart(name, namespace)
        except STEP_ERRORS as e:
            logger.warning(f"Failed to restart {deployment}: {e}")
            return ReconcileResult(
                resource=deployment,
                action=ReconcileAction.PATCH,
                status=ReconcileStatus.FAILED,
                error=str(e),
            )
        return ReconcileResult(
            resource=deployment, action=ReconcileAction.PATCH, status=ReconcileStatus.APPLIED
        )

    def run_validation_probe(
        self,
        probe: ValidationProbe,
        poll_interval: float,
        poll_attempts: int,
    ) -> ReconcileResult:
        """
        Create a synthetic alert rule and look for the alert in AlertManager.

        The rule is deleted in a ``finally`` block, so cleanup runs whether
        the alert was found, never showed up, polling raised, or the process
        was interrupted.

        Returns:
            APPLIED if the alert was seen, TIMED_OUT if not (inconclusive),
            FAILED only if the rule could not be created
        """
        logger.info(f"Creating validation probe {probe.rule}...")
        found = False
        try:
            created = self.reconcile(probe.rule)
            if created.status == ReconcileStatus.FAILED:
                return created

            for attempt in range(1, poll_attempts + 1):
                if self.cancel.wait(poll_interval):
                    logger.warning("Validation probe cancelled")
                    break
                try:
                    found = self.alerts.has_alert(probe.alert_name)
                except (httpx.HTTPError, ValueError) as e:
                    logger.warning(
                        f"Alert query failed (attempt {attempt}/{poll_attempts}): {e}"
                    )
                    continue
                if found:
                    break
                logger.info(
                    f"{probe.alert_name} not seen yet (attempt {attempt}/{poll_attempts})"
                )
        finally:
            self._cleanup_probe(probe)

        if found:
            logger.info(f"✓ {probe.alert_name} received by AlertManager")
            return ReconcileResult(
                resource=probe.rule,
                action=created.action,
                status=ReconcileStatus.APPLIED,
            )

        message = f"{probe.alert_name} not found in AlertManager, check the configuration"
        logger.warning(message)
        return ReconcileResult(
            resource=probe.rule,
            action=created.action,
            status=ReconcileStatus.TIMED_OUT,
            error=message,
        )

    def _cleanup_probe(self, probe: ValidationProbe) -> None:
        try:
            self.resources.delete(probe.rule)
        except STEP_ERRORS as e:
            logger.error(f"Failed to delete validation probe {probe.rule}: {e}")

    def teardown(self, resources: Iterable[ResourceDescriptor]) -> bool:
        """
        Delete every resource and the local artifacts.

        Already-absent resources count as success. Failures are logged and the
        remaining resources are still attempted.

        Returns:
            True if everything was removed
        """
        failures: list[str] = []
        for resource in resources:
            try:
                if not self.resources.delete(resource):
                    logger.info(f"{resource} already absent")
            except STEP_ERRORS as e:
                logger.error(f"Failed to delete {resource}: {e}")
                failures.append(str(resource))

        for error in self.artifacts.remove_all():
            logger.error(error)
            failures.append(error)

        return not failures
