"""Module for an in memory managed resource client."""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import DefaultDict

import logging

from csi_driver_lvm.exceptions import APIError, ResourceFailedError
from csi_driver_lvm.manifest import NamedResource

from .client import ManagedResource, ManagedResourceClient, MANAGED_RESOURCE_KIND
from .status import Condition, Status, StatusInfo


_LOGGER = logging.getLogger(__name__)

__all__ = ["InMemoryClient", "ClientEvent"]


class ClientEvent(str, Enum):
    """Enum for client events."""

    RESOURCE_UPDATED = "resource_updated"
    DELETION_REQUESTED = "deletion_requested"
    RESOURCE_DELETED = "resource_deleted"


class InMemoryClient(ManagedResourceClient):
    """In-memory implementation of the ManagedResourceClient interface.

    Holds managed resources keyed by NamedResource and notifies listeners on
    changes. When `finalize_on_delete` is False a deleted resource is only
    marked for deletion until `finalize` is called, like an object held by a
    finalizer in a real cluster.
    """

    def __init__(self, finalize_on_delete: bool = True) -> None:
        """Initialize the InMemoryClient."""
        self._resources: dict[NamedResource, ManagedResource] = {}
        self._finalize_on_delete = finalize_on_delete
        self._listeners: DefaultDict[
            ClientEvent, list[Callable[[NamedResource, ManagedResource], None]]
        ] = defaultdict(list)
        self.apply_count = 0

    def _resource_id(self, namespace: str, name: str) -> NamedResource:
        return NamedResource(MANAGED_RESOURCE_KIND, namespace, name)

    def add_listener(
        self,
        event: ClientEvent,
        callback: Callable[[NamedResource, ManagedResource], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event.

        Returns a callable that can be called to remove the listener.
        """

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(
        self, event: ClientEvent, resource_id: NamedResource, resource: ManagedResource
    ) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(resource_id, resource)
            except Exception:
                _LOGGER.exception("Client listener callback failed for event %s", event)

    async def create_or_update(self, resource: ManagedResource) -> None:
        """Create the managed resource or replace its contents."""
        resource_id = resource.resource_id
        stored = resource.copy()
        if (existing := self._resources.get(resource_id)) is not None:
            if existing.deletion_requested:
                raise APIError(
                    f"Managed resource {resource_id.namespaced_name} is being deleted",
                    status=409,
                )
            stored.conditions = dict(existing.conditions)
            _LOGGER.debug("Updating managed resource %s", resource_id)
        else:
            _LOGGER.debug("Creating managed resource %s", resource_id)
        stored.deletion_requested = False
        self._resources[resource_id] = stored
        self.apply_count += 1
        self._fire_event(ClientEvent.RESOURCE_UPDATED, resource_id, stored)

    async def delete(self, namespace: str, name: str) -> None:
        """Mark the managed resource for deletion."""
        resource_id = self._resource_id(namespace, name)
        if (resource := self._resources.get(resource_id)) is None:
            _LOGGER.debug("Managed resource %s already absent", resource_id)
            return
        resource.deletion_requested = True
        self._fire_event(ClientEvent.DELETION_REQUESTED, resource_id, resource)
        if self._finalize_on_delete:
            self.finalize(namespace, name)

    def finalize(self, namespace: str, name: str) -> None:
        """Remove a managed resource that was marked for deletion."""
        resource_id = self._resource_id(namespace, name)
        resource = self._resources.get(resource_id)
        if resource is None or not resource.deletion_requested:
            raise ValueError(f"Managed resource {resource_id} is not being deleted")
        del self._resources[resource_id]
        _LOGGER.debug("Removed managed resource %s", resource_id)
        self._fire_event(ClientEvent.RESOURCE_DELETED, resource_id, resource)

    async def get(self, namespace: str, name: str) -> ManagedResource | None:
        """Return a copy of the managed resource."""
        if (resource := self._resources.get(self._resource_id(namespace, name))) is None:
            return None
        return resource.copy()

    def set_condition(self, namespace: str, name: str, condition: Condition) -> None:
        """Record a condition as reported by the resource manager."""
        resource_id = self._resource_id(namespace, name)
        if (resource := self._resources.get(resource_id)) is None:
            raise ValueError(f"Managed resource {resource_id} does not exist")
        resource.conditions[condition.type] = condition
        self._fire_event(ClientEvent.RESOURCE_UPDATED, resource_id, resource)

    async def watch_deleted(self, namespace: str, name: str) -> None:
        """Wait for the managed resource to be removed."""
        resource_id = self._resource_id(namespace, name)
        if resource_id not in self._resources:
            return

        event_fired = asyncio.Event()

        def callback(fired_resource_id: NamedResource, _: ManagedResource) -> None:
            if fired_resource_id == resource_id:
                event_fired.set()

        remove_listener = self.add_listener(ClientEvent.RESOURCE_DELETED, callback)
        try:
            await event_fired.wait()
        except asyncio.CancelledError:
            _LOGGER.debug("watch_deleted for %s cancelled.", resource_id)
            raise
        finally:
            remove_listener()

    async def watch_healthy(self, namespace: str, name: str) -> StatusInfo:
        """Wait for the managed resource to report READY."""
        resource_id = self._resource_id(namespace, name)
        result_holder: list[StatusInfo] = []
        event_fired = asyncio.Event()

        def check(resource: ManagedResource | None) -> None:
            if resource is None:
                return
            status_info = resource.status()
            if status_info.status in (Status.READY, Status.FAILED):
                result_holder.append(status_info)
                event_fired.set()

        def callback(fired_resource_id: NamedResource, resource: ManagedResource) -> None:
            if fired_resource_id == resource_id and not event_fired.is_set():
                check(resource)

        check(self._resources.get(resource_id))
        remove_listener = self.add_listener(ClientEvent.RESOURCE_UPDATED, callback)
        try:
            await event_fired.wait()
        except asyncio.CancelledError:
            _LOGGER.debug("watch_healthy for %s cancelled.", resource_id)
            raise
        finally:
            remove_listener()

        status_info = result_holder[0]
        if status_info.status == Status.FAILED:
            raise ResourceFailedError(resource_id.namespaced_name, status_info.error)
        return status_info
