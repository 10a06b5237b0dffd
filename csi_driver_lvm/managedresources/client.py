"""Client interface for managed resources in the orchestration API.

A managed resource is a named bundle of serialized objects backed by a
secret. The resource manager in the cluster applies the bundle and reports
its health through conditions; removing the managed resource removes the
objects it created.
"""

from abc import ABC, abstractmethod
import copy
from dataclasses import dataclass, field

from csi_driver_lvm.manifest import NamedResource

from .status import Condition, StatusInfo, evaluate_conditions

__all__ = [
    "ManagedResource",
    "ManagedResourceClient",
    "MANAGED_RESOURCE_KIND",
    "RESOURCE_CLASS_SEED",
]

MANAGED_RESOURCE_KIND = "ManagedResource"
RESOURCE_CLASS_SEED = "seed"
SECRET_PREFIX = "managedresource-"


@dataclass
class ManagedResource:
    """A named, serialized bundle of objects."""

    name: str
    namespace: str
    data: dict[str, bytes] = field(default_factory=dict)
    resource_class: str | None = RESOURCE_CLASS_SEED
    keep_objects: bool = False
    conditions: dict[str, Condition] = field(default_factory=dict)
    deletion_requested: bool = False

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(MANAGED_RESOURCE_KIND, self.namespace, self.name)

    @property
    def secret_name(self) -> str:
        """Name of the secret holding the serialized objects."""
        return f"{SECRET_PREFIX}{self.name}"

    def status(self) -> StatusInfo:
        """Return the health of the bundle derived from its conditions."""
        return evaluate_conditions(self.conditions)

    def copy(self) -> "ManagedResource":
        return copy.deepcopy(self)


class ManagedResourceClient(ABC):
    """Access to managed resources in the orchestration API.

    Every method raises APIError when the API rejects a request.
    """

    @abstractmethod
    async def create_or_update(self, resource: ManagedResource) -> None:
        """Create the managed resource and its secret, or replace their contents."""

    @abstractmethod
    async def delete(self, namespace: str, name: str) -> None:
        """Request removal of the managed resource and its secret.

        Returns before removal completes. Deleting an absent resource succeeds.
        """

    @abstractmethod
    async def get(self, namespace: str, name: str) -> ManagedResource | None:
        """Return the managed resource or None when it does not exist."""

    @abstractmethod
    async def watch_deleted(self, namespace: str, name: str) -> None:
        """
        Wait for the managed resource to no longer exist.

        Returns immediately if it does not exist. The caller is expected to
        bound the wait with a timeout.

        Raises:
            asyncio.CancelledError: If the watch is cancelled.
        """

    @abstractmethod
    async def watch_healthy(self, namespace: str, name: str) -> StatusInfo:
        """
        Wait for the managed resource to report READY.

        Raises:
            ResourceFailedError: If the resource is or becomes FAILED.
            asyncio.CancelledError: If the watch is cancelled.
        """
