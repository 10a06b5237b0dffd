"""Managed resource client backed by the Kubernetes API.

The serialized objects are stored in a secret and referenced from a
`resources.gardener.cloud/v1alpha1` ManagedResource, which the resource
manager of the cluster applies. Waits poll the API on the event loop.
"""

import asyncio
import base64
import logging
from typing import Any

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.exceptions import ApiException

from csi_driver_lvm.exceptions import APIError, ResourceFailedError

from .client import ManagedResource, ManagedResourceClient
from .status import Condition, Status, StatusInfo

__all__ = ["KubernetesClient"]

_LOGGER = logging.getLogger(__name__)

GROUP = "resources.gardener.cloud"
VERSION = "v1alpha1"
PLURAL = "managedresources"
DEFAULT_POLL_INTERVAL = 2.0


def _api_error(action: str, target: str, err: ApiException) -> APIError:
    return APIError(
        f"Failed to {action} {target}: {err.status} {err.reason}", status=err.status
    )


def _secret_body(resource: ManagedResource) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": resource.secret_name,
            "namespace": resource.namespace,
        },
        "type": "Opaque",
        "data": {
            key: base64.b64encode(value).decode()
            for key, value in resource.data.items()
        },
    }


def _managed_resource_body(resource: ManagedResource) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "secretRefs": [{"name": resource.secret_name}],
        "keepObjects": resource.keep_objects,
    }
    if resource.resource_class:
        spec["class"] = resource.resource_class
    return {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": "ManagedResource",
        "metadata": {"name": resource.name, "namespace": resource.namespace},
        "spec": spec,
    }


def _parse_managed_resource(doc: dict[str, Any]) -> ManagedResource:
    metadata = doc.get("metadata", {})
    spec = doc.get("spec", {})
    conditions = {
        cond["type"]: Condition(
            type=cond["type"],
            status=cond.get("status", "Unknown"),
            reason=cond.get("reason"),
            message=cond.get("message"),
        )
        for cond in (doc.get("status") or {}).get("conditions") or ()
        if cond.get("type")
    }
    return ManagedResource(
        name=metadata["name"],
        namespace=metadata["namespace"],
        resource_class=spec.get("class"),
        keep_objects=spec.get("keepObjects", False),
        conditions=conditions,
        deletion_requested=metadata.get("deletionTimestamp") is not None,
    )


class KubernetesClient(ManagedResourceClient):
    """Manage ManagedResource objects and their secrets in a cluster."""

    def __init__(
        self, api_client: client.ApiClient, poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> None:
        """Initialize KubernetesClient."""
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)
        self._poll_interval = poll_interval

    @classmethod
    async def from_config(
        cls, kubeconfig: str | None = None, context: str | None = None
    ) -> "KubernetesClient":
        """Create a client from in-cluster config, falling back to a kubeconfig."""
        try:
            config.load_incluster_config()
        except config.ConfigException:
            try:
                await config.load_kube_config(config_file=kubeconfig, context=context)
            except config.ConfigException as err:
                raise APIError(f"Failed to load Kubernetes config: {err}") from err
        return cls(client.ApiClient())

    async def close(self) -> None:
        """Close the underlying API client."""
        await self._api_client.close()

    async def _upsert_secret(self, resource: ManagedResource) -> None:
        body = _secret_body(resource)
        target = f"secret {resource.namespace}/{resource.secret_name}"
        try:
            await self._core.replace_namespaced_secret(
                resource.secret_name, resource.namespace, body
            )
            return
        except ApiException as err:
            if err.status != 404:
                raise _api_error("update", target, err) from err
        try:
            await self._core.create_namespaced_secret(resource.namespace, body)
        except ApiException as err:
            raise _api_error("create", target, err) from err

    async def _upsert_managed_resource(self, resource: ManagedResource) -> None:
        body = _managed_resource_body(resource)
        target = f"managed resource {resource.namespace}/{resource.name}"
        try:
            existing = await self._custom.get_namespaced_custom_object(
                GROUP, VERSION, resource.namespace, PLURAL, resource.name
            )
        except ApiException as err:
            if err.status != 404:
                raise _api_error("get", target, err) from err
            existing = None
        try:
            if existing is None:
                await self._custom.create_namespaced_custom_object(
                    GROUP, VERSION, resource.namespace, PLURAL, body
                )
            else:
                body["metadata"]["resourceVersion"] = existing["metadata"][
                    "resourceVersion"
                ]
                await self._custom.replace_namespaced_custom_object(
                    GROUP, VERSION, resource.namespace, PLURAL, resource.name, body
                )
        except ApiException as err:
            raise _api_error("apply", target, err) from err

    async def create_or_update(self, resource: ManagedResource) -> None:
        """Write the secret, then the managed resource referencing it."""
        await self._upsert_secret(resource)
        await self._upsert_managed_resource(resource)
        _LOGGER.debug(
            "Applied managed resource %s/%s with %d objects",
            resource.namespace,
            resource.name,
            len(resource.data),
        )

    async def delete(self, namespace: str, name: str) -> None:
        """Delete the managed resource and its secret, ignoring absent objects."""
        resource = ManagedResource(name=name, namespace=namespace)
        try:
            await self._custom.delete_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name
            )
        except ApiException as err:
            if err.status != 404:
                raise _api_error("delete", f"managed resource {namespace}/{name}", err) from err
        try:
            await self._core.delete_namespaced_secret(resource.secret_name, namespace)
        except ApiException as err:
            if err.status != 404:
                raise _api_error(
                    "delete", f"secret {namespace}/{resource.secret_name}", err
                ) from err

    async def get(self, namespace: str, name: str) -> ManagedResource | None:
        """Return the managed resource without the secret contents."""
        try:
            doc = await self._custom.get_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name
            )
        except ApiException as err:
            if err.status == 404:
                return None
            raise _api_error("get", f"managed resource {namespace}/{name}", err) from err
        return _parse_managed_resource(doc)

    async def watch_deleted(self, namespace: str, name: str) -> None:
        """Poll until the managed resource is gone."""
        while await self.get(namespace, name) is not None:
            _LOGGER.debug("Managed resource %s/%s still exists", namespace, name)
            await asyncio.sleep(self._poll_interval)

    async def watch_healthy(self, namespace: str, name: str) -> StatusInfo:
        """Poll until the managed resource reports READY or FAILED."""
        while True:
            if (resource := await self.get(namespace, name)) is not None:
                status_info = resource.status()
                if status_info.status == Status.READY:
                    return status_info
                if status_info.status == Status.FAILED:
                    raise ResourceFailedError(
                        f"{namespace}/{name}", status_info.error
                    )
                _LOGGER.debug("Managed resource %s/%s: %s", namespace, name, status_info)
            await asyncio.sleep(self._poll_interval)
