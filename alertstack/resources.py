"""Control-plane operations for managed resources."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential
from urllib3.exceptions import HTTPError as TransportError

from .builders import RULE_GROUP, RULE_PLURAL, RULE_VERSION
from .cluster import ClusterConnection
from .models import Observation, ResourceDescriptor, ResourceKind

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"
RESTARTED_AT = "kubectl.kubernetes.io/restartedAt"


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ApiException):
        return exc.status == 429 or (exc.status or 0) >= 500
    return isinstance(exc, TransportError)


transient_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class ResourceClient:
    """
    Observes and mutates managed resources through the Kubernetes API.

    Every operation is a single API call; there is no multi-resource
    atomicity. Reads map 404 to ``Observation.absent()`` and deletes treat
    404 as already done.
    """

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize resource client.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.apps_v1 = cluster.apps_v1
        self.custom_objects = cluster.custom_objects

    def close(self) -> None:
        """Close the underlying cluster connection."""
        self.cluster.close()

    def ping(self) -> bool:
        """Return True if the control plane is reachable."""
        return self.cluster.is_healthy()

    @transient_retry
    def observe(self, resource: ResourceDescriptor) -> Observation:
        """
        Read the current state of a resource.

        Args:
            resource: Resource to look up

        Returns:
            Observation with the serialized object, or absent on 404
        """
        try:
            obj = self._read(resource)
        except ApiException as e:
            if e.status == 404:
                return Observation.absent()
            raise
        if not isinstance(obj, dict):
            obj = self.cluster.api_client.sanitize_for_serialization(obj)
        return Observation.found(obj)

    @transient_retry
    def create(self, resource: ResourceDescriptor) -> None:
        """Create a resource from its desired manifest."""
        body = resource.desired_spec
        ns = resource.namespace
        if resource.kind == ResourceKind.DEPLOYMENT:
            self.apps_v1.create_namespaced_deployment(namespace=ns, body=body)
        elif resource.kind == ResourceKind.SERVICE:
            self.core_v1.create_namespaced_service(namespace=ns, body=body)
        elif resource.kind == ResourceKind.SECRET:
            self.core_v1.create_namespaced_secret(namespace=ns, body=body)
        elif resource.kind == ResourceKind.CONFIG_MAP:
            self.core_v1.create_namespaced_config_map(namespace=ns, body=body)
        else:
            self.custom_objects.create_namespaced_custom_object(
                RULE_GROUP, RULE_VERSION, ns, RULE_PLURAL, body
            )
        logger.info(f"✓ Created {resource}")

    @transient_retry
    def patch(self, resource: ResourceDescriptor, body: Optional[dict[str, Any]] = None) -> None:
        """
        Merge-patch a resource.

        Args:
            resource: Resource to patch
            body: Patch document, defaults to the desired manifest
        """
        body = body if body is not None else resource.desired_spec
        name, ns = resource.name, resource.namespace
        if resource.kind == ResourceKind.DEPLOYMENT:
            self.apps_v1.patch_namespaced_deployment(name, ns, body, _content_type=MERGE_PATCH)
        elif resource.kind == ResourceKind.SERVICE:
            self.core_v1.patch_namespaced_service(name, ns, body, _content_type=MERGE_PATCH)
        elif resource.kind == ResourceKind.SECRET:
            self.core_v1.patch_namespaced_secret(name, ns, body, _content_type=MERGE_PATCH)
        elif resource.kind == ResourceKind.CONFIG_MAP:
            self.core_v1.patch_namespaced_config_map(name, ns, body, _content_type=MERGE_PATCH)
        else:
            self.custom_objects.patch_namespaced_custom_object(
                RULE_GROUP, RULE_VERSION, ns, RULE_PLURAL, name, body
            )
        logger.info(f"✓ Patched {resource}")

    @transient_retry
    def delete(self, resource: ResourceDescriptor) -> bool:
        """
        Delete a resource.

        Returns:
            True if deleted, False if it was already absent
        """
        name, ns = resource.name, resource.namespace
        try:
            if resource.kind == ResourceKind.DEPLOYMENT:
                self.apps_v1.delete_namespaced_deployment(name, ns)
            elif resource.kind == ResourceKind.SERVICE:
                self.core_v1.delete_namespaced_service(name, ns)
            elif resource.kind == ResourceKind.SECRET:
                self.core_v1.delete_namespaced_secret(name, ns)
            elif resource.kind == ResourceKind.CONFIG_MAP:
                self.core_v1.delete_namespaced_config_map(name, ns)
            else:
                self.custom_objects.delete_namespaced_custom_object(
                    RULE_GROUP, RULE_VERSION, ns, RULE_PLURAL, name
                )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        logger.info(f"✓ Deleted {resource}")
        return True

    @transient_retry
    def restart(self, name: str, namespace: str) -> None:
        """
        Trigger a rolling restart of a deployment.

        Same mechanism as ``kubectl rollout restart``: bump a pod template
        annotation so the controller rolls every pod.
        """
        now = datetime.now(timezone.utc).isoformat()
        body = {"spec": {"template": {"metadata": {"annotations": {RESTARTED_AT: now}}}}}
        self.apps_v1.patch_namespaced_deployment(name, namespace, body, _content_type=MERGE_PATCH)
        logger.info(f"✓ Restarted Deployment {namespace}/{name}")

    def _read(self, resource: ResourceDescriptor) -> Any:
        name, ns = resource.name, resource.namespace
        if resource.kind == ResourceKind.DEPLOYMENT:
            return self.apps_v1.read_namespaced_deployment(name, ns)
        if resource.kind == ResourceKind.SERVICE:
            return self.core_v1.read_namespaced_service(name, ns)
        if resource.kind == ResourceKind.SECRET:
            return self.core_v1.read_namespaced_secret(name, ns)
        if resource.kind == ResourceKind.CONFIG_MAP:
            return self.core_v1.read_namespaced_config_map(name, ns)
        return self.custom_objects.get_namespaced_custom_object(
            RULE_GROUP, RULE_VERSION, ns, RULE_PLURAL, name
        )
