"""
Extension actuator for csi-driver-lvm.

The actuator is invoked by the extension controller for every reconcile
trigger of an Extension resource. It computes the desired objects from the
provider config and the operator defaults and synchronizes them as a single
managed resource bundle.

Lifecycle of one Extension:
    ABSENT -> APPLYING -> PRESENT -> DELETING -> ABSENT

Every reconcile of a PRESENT extension re-applies the bundle. The caller
guarantees at most one operation per Extension at a time and retries failed
operations; the actuator keeps no state between calls.
"""

from enum import StrEnum
import logging

from .config import ControllerConfiguration
from .context import trace_context
from .exceptions import CsiDriverLvmException
from .image import ImageResolver
from .managedresources import ManagedResourceClient, ManagedResourceSynchronizer
from .manifest import Extension, decode_provider_config
from .merge import merge_config
from .resources import build

__all__ = [
    "Actuator",
    "LifecycleState",
    "NAMESPACE",
    "RESOURCE_NAME",
    "DELETE_TIMEOUT",
]

_LOGGER = logging.getLogger(__name__)

NAMESPACE = "kube-system"
RESOURCE_NAME = "extension-csi-driver-lvm"
DELETE_TIMEOUT = 120.0


class LifecycleState(StrEnum):
    """Conceptual state of the bundle owned by an Extension."""

    ABSENT = "Absent"
    APPLYING = "Applying"
    PRESENT = "Present"
    DELETING = "Deleting"


class Actuator:
    """Reconciles Extension resources into the csi-driver-lvm bundle."""

    def __init__(
        self,
        client: ManagedResourceClient,
        config: ControllerConfiguration,
        resolver: ImageResolver,
        delete_timeout: float = DELETE_TIMEOUT,
    ) -> None:
        """Initialize the actuator.

        Args:
            client: Access to managed resources in the cluster
            config: Operator defaults, shared read-only
            resolver: Resolves the images of the deployed workloads
            delete_timeout: Seconds to wait for the bundle to be removed
        """
        self._synchronizer = ManagedResourceSynchronizer(client)
        self._config = config
        self._resolver = resolver
        self._delete_timeout = delete_timeout

    async def reconcile(self, ex: Extension) -> None:
        """Compute the desired objects and apply them as the bundle.

        Raises DecodeError, InvalidConfigError, ImageResolutionError,
        SerializationError or APIError. Nothing is applied when an earlier
        step fails.
        """
        with trace_context(f"Reconcile {ex.namespaced_name}"):
            _LOGGER.info("Reconciling extension %s", ex.namespaced_name)
            try:
                provider_config = decode_provider_config(ex.provider_config)
                merged = merge_config(provider_config, self._config)
                desired = build(merged, NAMESPACE, self._resolver)
                _LOGGER.debug(
                    "Extension %s %s bundle with %d objects",
                    ex.namespaced_name,
                    LifecycleState.APPLYING,
                    len(desired),
                )
                await self._synchronizer.apply(NAMESPACE, RESOURCE_NAME, desired.objects)
            except CsiDriverLvmException as err:
                _LOGGER.error(
                    "Failed to reconcile extension %s: %s", ex.namespaced_name, err
                )
                raise
            _LOGGER.info(
                "Managed resource %s/%s applied successfully", NAMESPACE, RESOURCE_NAME
            )

    async def delete(self, ex: Extension) -> None:
        """Delete the bundle and wait for its removal.

        Raises APIError if the deletion is rejected and DeleteTimeoutError if
        the bundle still exists after the delete timeout.
        """
        with trace_context(f"Delete {ex.namespaced_name}"):
            _LOGGER.info("Deleting extension %s", ex.namespaced_name)
            try:
                await self._synchronizer.delete(NAMESPACE, RESOURCE_NAME)
                await self._synchronizer.wait_until_deleted(
                    NAMESPACE, RESOURCE_NAME, self._delete_timeout
                )
            except CsiDriverLvmException as err:
                _LOGGER.error(
                    "Failed to delete extension %s: %s", ex.namespaced_name, err
                )
                raise
            _LOGGER.info(
                "Managed resource %s/%s deleted successfully", NAMESPACE, RESOURCE_NAME
            )

    async def force_delete(self, ex: Extension) -> None:
        """Treat removal as successful without touching the bundle."""
        _LOGGER.info("Force deleting extension %s", ex.namespaced_name)

    async def restore(self, ex: Extension) -> None:
        """Restore the bundle after a control plane migration."""
        await self.reconcile(ex)

    async def migrate(self, ex: Extension) -> None:
        """No state outside the bundle needs to move with the control plane."""
        _LOGGER.debug("Nothing to migrate for extension %s", ex.namespaced_name)

    async def state(self, ex: Extension) -> LifecycleState:
        """Return the state of the bundle as observed in the cluster."""
        resource = await self._synchronizer.get(NAMESPACE, RESOURCE_NAME)
        if resource is None:
            return LifecycleState.ABSENT
        if resource.deletion_requested:
            return LifecycleState.DELETING
        return LifecycleState.PRESENT
