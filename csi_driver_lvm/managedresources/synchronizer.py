"""Synchronize a desired object set as a managed resource bundle."""

import asyncio
from collections.abc import Iterable
import logging
from typing import Any

from csi_driver_lvm.exceptions import DeleteTimeoutError, HealthTimeoutError

from .client import ManagedResource, ManagedResourceClient, RESOURCE_CLASS_SEED
from .registry import Registry
from .status import StatusInfo

__all__ = ["ManagedResourceSynchronizer"]

_LOGGER = logging.getLogger(__name__)


class ManagedResourceSynchronizer:
    """Apply, delete and wait on a named bundle of objects.

    Every operation is idempotent. Retries are left to the caller.
    """

    def __init__(self, client: ManagedResourceClient) -> None:
        """Initialize ManagedResourceSynchronizer."""
        self._client = client

    async def apply(
        self, namespace: str, name: str, objects: Iterable[dict[str, Any]]
    ) -> None:
        """Serialize the objects and upsert them as a single bundle.

        Raises SerializationError before anything is written, or APIError
        when the bundle is rejected. Does not wait for the objects to be live.
        """
        registry = Registry()
        registry.add(*objects)
        resource = ManagedResource(
            name=name,
            namespace=namespace,
            data=registry.serialize(),
            resource_class=RESOURCE_CLASS_SEED,
            keep_objects=False,
        )
        await self._client.create_or_update(resource)
        _LOGGER.debug(
            "Applied bundle %s/%s with %d objects", namespace, name, len(registry)
        )

    async def delete(self, namespace: str, name: str) -> None:
        """Request removal of the bundle without waiting for it."""
        await self._client.delete(namespace, name)
        _LOGGER.debug("Requested deletion of bundle %s/%s", namespace, name)

    async def get(self, namespace: str, name: str) -> ManagedResource | None:
        """Return the bundle or None when it does not exist."""
        return await self._client.get(namespace, name)

    async def wait_until_deleted(
        self, namespace: str, name: str, timeout: float
    ) -> None:
        """Wait for the bundle to be removed.

        Raises DeleteTimeoutError when the deadline expires first. Cancelling
        the calling task propagates asyncio.CancelledError.
        """
        _LOGGER.debug(
            "Waiting up to %ss for bundle %s/%s to be deleted", timeout, namespace, name
        )
        try:
            async with asyncio.timeout(timeout):
                await self._client.watch_deleted(namespace, name)
        except asyncio.TimeoutError:
            raise DeleteTimeoutError(f"{namespace}/{name}", timeout) from None

    async def wait_until_healthy(
        self, namespace: str, name: str, timeout: float
    ) -> StatusInfo:
        """Wait for the bundle to report that its objects are applied and healthy.

        Raises HealthTimeoutError when the deadline expires first, or
        ResourceFailedError when the bundle reports a failed condition.
        """
        try:
            async with asyncio.timeout(timeout):
                return await self._client.watch_healthy(namespace, name)
        except asyncio.TimeoutError:
            raise HealthTimeoutError(f"{namespace}/{name}", timeout) from None
