"""Kubernetes client for PodCertificateRequest objects."""

from collections.abc import Iterator
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from .errors import ConfigurationError, StatusPatchFailed
from .logging_config import LOGGER
from .models import PodCertificateRequestObject, PodCertificateRequestStatus

GROUP = "certificates.k8s.io"
VERSION = "v1alpha1"
PLURAL = "podcertificaterequests"
MERGE_PATCH = "application/merge-patch+json"


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig.

    Raises:
        ConfigurationError: If neither configuration source is usable
    """
    try:
        config.load_incluster_config()
        LOGGER.debug("Loaded in-cluster kubernetes configuration")
        return
    except ConfigException:
        LOGGER.debug("Not running in-cluster, trying kubeconfig")

    try:
        config.load_kube_config()
    except (ConfigException, OSError) as e:
        raise ConfigurationError("unable to load kubernetes configuration") from e


class PodCertificateRequestClient:
    """Cluster-wide list/watch and namespaced status patching of requests."""

    def __init__(self, api: client.CustomObjectsApi | None = None) -> None:
        """Initialize client.

        Args:
            api: CustomObjectsApi instance (created from loaded config if None)
        """
        self.api = api or client.CustomObjectsApi()

    def list_all(self) -> tuple[list[PodCertificateRequestObject], str]:
        """List requests in all namespaces.

        Returns:
            Tuple of (items, resourceVersion to start a watch from)
        """
        response = self.api.list_cluster_custom_object(GROUP, VERSION, PLURAL)
        items: list[PodCertificateRequestObject] = response.get("items", [])
        resource_version = response.get("metadata", {}).get("resourceVersion", "")
        return items, resource_version

    def watch_all(
        self, resource_version: str, timeout_seconds: int = 300
    ) -> Iterator[tuple[str, PodCertificateRequestObject]]:
        """Yield (event type, object) pairs for changes after resource_version."""
        stream = watch.Watch().stream(
            self.api.list_cluster_custom_object,
            GROUP,
            VERSION,
            PLURAL,
            resource_version=resource_version,
            timeout_seconds=timeout_seconds,
        )
        for event in stream:
            yield event["type"], event["object"]

    def patch_status(
        self, name: str, namespace: str, status: PodCertificateRequestStatus
    ) -> dict[str, Any]:
        """Merge-patch the status subresource of a request.

        Raises:
            StatusPatchFailed: If the API rejects the patch
        """
        try:
            return self.api.patch_namespaced_custom_object_status(
                GROUP,
                VERSION,
                namespace,
                PLURAL,
                name,
                {"status": status},
                _content_type=MERGE_PATCH,
            )
        except ApiException as e:
            raise StatusPatchFailed(
                f"failed to patch status of {namespace}/{name}: {e.status} {e.reason}"
            ) from e
