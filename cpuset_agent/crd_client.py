"""Client for cluster-scoped custom resources read by the agent."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

logger = logging.getLogger(__name__)


class ClusterCustomObjectClient:
    """Client for one kind of cluster-scoped custom resource."""

    def __init__(self, crd: Tuple[str, str, str], custom_api: Optional[client.CustomObjectsApi] = None):
        """
        Initialize the CRD client.

        Args:
            crd: (group, version, plural) of the custom resource
            custom_api: API client to use, a new CustomObjectsApi by default
        """
        self.group, self.version, self.plural = crd
        self.custom_api = custom_api or client.CustomObjectsApi()

    def list(self, field_selector: str = "") -> Tuple[List[Dict[str, Any]], str]:
        """
        List custom objects.

        Returns:
            Objects and the list resourceVersion

        Raises:
            ApiException: If the API call fails; a missing CRD gives an empty list
        """
        try:
            response = self.custom_api.list_cluster_custom_object(
                group=self.group,
                version=self.version,
                plural=self.plural,
                field_selector=field_selector
            )
        except ApiException as e:
            if e.status == 404:
                logger.warning(f"CRD {self.plural}.{self.group} not found. Please install the CRD first.")
                return [], ""
            raise
        resource_version = (response.get("metadata") or {}).get("resourceVersion", "")
        return response.get("items", []), resource_version

    def watch(self, field_selector: str = "", resource_version: str = "", timeout: int = 300):
        """
        Create a watch stream for the custom objects.

        Yields:
            Watch events
        """
        w = watch.Watch()
        kwargs = {
            "group": self.group,
            "version": self.version,
            "plural": self.plural,
            "field_selector": field_selector,
            "timeout_seconds": timeout,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version

        try:
            for event in w.stream(self.custom_api.list_cluster_custom_object, **kwargs):
                yield event
        except ApiException as e:
            logger.error(f"Watch error on {self.plural}: {e}")
            raise
        finally:
            w.stop()
