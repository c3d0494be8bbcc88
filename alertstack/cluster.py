"""Kubernetes client connection."""

from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, CustomObjectsApi
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as TransportError

from .config import Settings


class ClusterConnection:
    """Represents a connection to the target Kubernetes cluster."""

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
    ):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file, or None for the default
                lookup followed by in-cluster config
            context: Specific kubeconfig context to use

        Raises:
            ValueError: If no usable cluster configuration is found
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._apps_v1: Optional[AppsV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None

        self._initialize_client()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClusterConnection":
        return cls(kubeconfig_path=settings.kubeconfig_path, context=settings.kube_context)

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            try:
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                )
            except config.ConfigException:
                if self.kubeconfig_path:
                    raise
                # Running inside the cluster
                config.load_incluster_config()

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._apps_v1 = AppsV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance."""
        if not self._apps_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apps_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    def is_healthy(self) -> bool:
        """
        Check if the cluster API is reachable.

        Returns:
            True if the API server answered
        """
        try:
            self.core_v1.get_api_resources()
            return True
        except (ApiException, TransportError):
            return False

    def close(self):
        """Close the cluster connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        self._core_v1 = None
        self._apps_v1 = None
        self._custom_objects = None
