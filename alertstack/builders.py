"""Typed manifest builders for the managed resources."""

import base64
from functools import lru_cache
from typing import Any, Optional

import yaml
from kubernetes.client import ApiClient
from kubernetes.client import V1ConfigMap, V1Deployment, V1DeploymentSpec, V1LabelSelector
from kubernetes.client import V1ObjectMeta, V1PodSpec, V1PodTemplateSpec, V1Secret
from kubernetes.client import V1ConfigMapVolumeSource, V1Container, V1ContainerPort
from kubernetes.client import V1EmptyDirVolumeSource, V1SecretVolumeSource
from kubernetes.client import V1ResourceRequirements, V1Volume, V1VolumeMount
from kubernetes.client import V1Service, V1ServicePort, V1ServiceSpec

from . import alerting
from .config import Settings
from .models import ResourceDescriptor, ResourceKind, ValidationProbe

RULE_GROUP = "monitoring.coreos.com"
RULE_VERSION = "v1"
RULE_PLURAL = "prometheusrules"

CONFIG_MOUNT = "/etc/alertmanager"
SECRETS_MOUNT = "/etc/alertmanager/secrets"


@lru_cache(maxsize=1)
def _serializer() -> ApiClient:
    return ApiClient()


def to_manifest(model: Any) -> dict[str, Any]:
    """Serialize a kubernetes client model into a plain manifest dict."""
    return _serializer().sanitize_for_serialization(model)


def managed_labels(settings: Settings, name: str) -> dict[str, str]:
    return {
        "app.kubernetes.io/name": name,
        "app.kubernetes.io/part-of": settings.part_of,
        "app.kubernetes.io/managed-by": "alertstack",
    }


def build_secret(
    settings: Settings,
    literal_values: dict[str, str],
    name: Optional[str] = None,
    namespace: Optional[str] = None,
) -> ResourceDescriptor:
    """
    Build the notification secret.

    Values are stored base64-encoded under ``data`` so the manifest compares
    directly against what the API server returns.
    """
    name = name or settings.secret_name
    namespace = namespace or settings.metrics_namespace
    secret = V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=managed_labels(settings, name),
        ),
        data={
            key: base64.b64encode(value.encode("utf-8")).decode("ascii")
            for key, value in literal_values.items()
        },
    )
    return ResourceDescriptor(
        kind=ResourceKind.SECRET,
        namespace=namespace,
        name=name,
        desired_spec=to_manifest(secret),
    )


def build_config_map(settings: Settings, name: str, data: dict[str, str]) -> ResourceDescriptor:
    config_map = V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=V1ObjectMeta(
            name=name,
            namespace=settings.metrics_namespace,
            labels=managed_labels(settings, name),
        ),
        data=data,
    )
    return ResourceDescriptor(
        kind=ResourceKind.CONFIG_MAP,
        namespace=settings.metrics_namespace,
        name=name,
        desired_spec=to_manifest(config_map),
    )


def build_alertmanager_config(settings: Settings) -> ResourceDescriptor:
    document = alerting.alertmanager_config(settings, SECRETS_MOUNT)
    return build_config_map(
        settings,
        settings.config_map_name,
        {"alertmanager.yml": yaml.safe_dump(document, sort_keys=False)},
    )


def build_templates(settings: Settings) -> ResourceDescriptor:
    return build_config_map(
        settings, settings.templates_config_map_name, alerting.notification_templates()
    )


def build_rule(
    settings: Settings, name: str, groups: list[dict[str, Any]], namespace: Optional[str] = None
) -> ResourceDescriptor:
    namespace = namespace or settings.metrics_namespace
    rule = {
        "apiVersion": f"{RULE_GROUP}/{RULE_VERSION}",
        "kind": "PrometheusRule",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": managed_labels(settings, name),
        },
        "spec": {"groups": groups},
    }
    return ResourceDescriptor(
        kind=ResourceKind.CUSTOM_RULE,
        namespace=namespace,
        name=name,
        desired_spec=rule,
    )


def build_alerting_rules(settings: Settings) -> ResourceDescriptor:
    return build_rule(settings, settings.rules_name, alerting.alert_rule_groups(settings))


def build_probe(settings: Settings) -> ValidationProbe:
    groups = [
        {
            "name": "test-alerts",
            "rules": [
                {
                    "alert": settings.probe_alert_name,
                    "expr": "vector(1)",
                    "for": "0m",
                    "labels": {"severity": "warning", "service": "test-service"},
                    "annotations": {
                        "summary": "Synthetic alert created by the alerting installer",
                        "description": "Validates that Prometheus delivers alerts to AlertManager",
                    },
                }
            ],
        }
    ]
    return ValidationProbe(
        rule=build_rule(settings, settings.probe_rule_name, groups),
        alert_name=settings.probe_alert_name,
    )


def build_deployment(settings: Settings, replicas: Optional[int] = None) -> ResourceDescriptor:
    """
    Build the AlertManager deployment.

    Mounts the config map, templates and notification secret produced by the
    earlier steps.
    """
    name = settings.alertmanager_name
    namespace = settings.metrics_namespace
    labels = managed_labels(settings, name)

    container = V1Container(
        name=name,
        image=settings.alertmanager_image,
        args=[
            f"--config.file={CONFIG_MOUNT}/alertmanager.yml",
            "--storage.path=/alertmanager",
            f"--web.external-url={settings.alertmanager_external_url}",
            "--cluster.listen-address=0.0.0.0:9094",
            f"--cluster.peer={name}.{namespace}.svc.cluster.local:9094",
        ],
        ports=[
            V1ContainerPort(container_port=9093, name="web"),
            V1ContainerPort(container_port=9094, name="cluster"),
        ],
        resources=V1ResourceRequirements(
            requests={"cpu": settings.cpu_request, "memory": settings.memory_request},
            limits={"cpu": settings.cpu_limit, "memory": settings.memory_limit},
        ),
        volume_mounts=[
            V1VolumeMount(name="config", mount_path=CONFIG_MOUNT),
            V1VolumeMount(name="templates", mount_path=f"{CONFIG_MOUNT}/templates"),
            V1VolumeMount(name="secrets", mount_path=SECRETS_MOUNT, read_only=True),
            V1VolumeMount(name="storage", mount_path="/alertmanager"),
        ],
    )

    pod_spec = V1PodSpec(
        containers=[container],
        volumes=[
            V1Volume(
                name="config",
                config_map=V1ConfigMapVolumeSource(name=settings.config_map_name),
            ),
            V1Volume(
                name="templates",
                config_map=V1ConfigMapVolumeSource(name=settings.templates_config_map_name),
            ),
            V1Volume(
                name="secrets",
                secret=V1SecretVolumeSource(secret_name=settings.secret_name),
            ),
            V1Volume(name="storage", empty_dir=V1EmptyDirVolumeSource()),
        ],
    )

    deployment = V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(name=name, namespace=namespace, labels=labels),
        spec=V1DeploymentSpec(
            replicas=replicas if replicas is not None else settings.alertmanager_replicas,
            selector=V1LabelSelector(match_labels={"app.kubernetes.io/name": name}),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels),
                spec=pod_spec,
            ),
        ),
    )
    return ResourceDescriptor(
        kind=ResourceKind.DEPLOYMENT,
        namespace=namespace,
        name=name,
        desired_spec=to_manifest(deployment),
    )


def build_service(settings: Settings) -> ResourceDescriptor:
    name = settings.alertmanager_name
    service = V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=name,
            namespace=settings.metrics_namespace,
            labels=managed_labels(settings, name),
        ),
        spec=V1ServiceSpec(
            selector={"app.kubernetes.io/name": name},
            ports=[
                V1ServicePort(name="web", port=9093, target_port=9093),
                V1ServicePort(name="cluster", port=9094, target_port=9094),
            ],
        ),
    )
    return ResourceDescriptor(
        kind=ResourceKind.SERVICE,
        namespace=settings.metrics_namespace,
        name=name,
        desired_spec=to_manifest(service),
    )


def static_configuration(settings: Settings) -> list[ResourceDescriptor]:
    """Resources the AlertManager deployment depends on, in apply order."""
    return [
        build_alertmanager_config(settings),
        build_templates(settings),
        build_alerting_rules(settings),
        build_service(settings),
    ]


def upstream_deployment(settings: Settings) -> ResourceDescriptor:
    return ResourceDescriptor(
        kind=ResourceKind.DEPLOYMENT,
        namespace=settings.metrics_namespace,
        name=settings.prometheus_deployment,
    )


def managed_resources(settings: Settings) -> list[ResourceDescriptor]:
    """Every resource the installer owns, in teardown order."""
    return [
        build_probe(settings).rule,
        build_deployment(settings),
        *reversed(static_configuration(settings)),
        ResourceDescriptor(
            kind=ResourceKind.SECRET,
            namespace=settings.metrics_namespace,
            name=settings.secret_name,
        ),
    ]
