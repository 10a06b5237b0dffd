"""Health of the csi-driver-lvm bundle.

The health check controller of the extension calls `check_health` every
`healthCheckConfig.syncPeriod` to report whether the deployed objects are
applied and healthy. `wait_for_health` blocks until the resource manager
reports the bundle ready, for callers that need the driver usable before
continuing.
"""

import logging

from .actuator import NAMESPACE, RESOURCE_NAME
from .context import trace_context
from .exceptions import CsiDriverLvmException
from .managedresources import (
    ManagedResourceClient,
    ManagedResourceSynchronizer,
    Status,
    StatusInfo,
)

__all__ = ["check_health", "wait_for_health"]

_LOGGER = logging.getLogger(__name__)


async def check_health(
    client: ManagedResourceClient,
    namespace: str = NAMESPACE,
    name: str = RESOURCE_NAME,
) -> StatusInfo:
    """Return the current health of the bundle."""
    resource = await client.get(namespace, name)
    if resource is None:
        return StatusInfo(Status.PENDING, f"managed resource {namespace}/{name} not found")
    if resource.deletion_requested:
        return StatusInfo(Status.PENDING, f"managed resource {namespace}/{name} is being deleted")
    status_info = resource.status()
    if status_info.status == Status.FAILED:
        _LOGGER.warning("Managed resource %s/%s is unhealthy: %s", namespace, name, status_info.error)
    return status_info


async def wait_for_health(
    client: ManagedResourceClient,
    timeout: float,
    namespace: str = NAMESPACE,
    name: str = RESOURCE_NAME,
) -> StatusInfo:
    """Wait for the bundle to report READY.

    Raises HealthTimeoutError when the deadline expires first, or
    ResourceFailedError when the bundle reports a failed condition.
    """
    with trace_context(f"Wait for health {namespace}/{name}"):
        try:
            status_info = await ManagedResourceSynchronizer(client).wait_until_healthy(
                namespace, name, timeout
            )
        except CsiDriverLvmException as err:
            _LOGGER.error("Managed resource %s/%s did not become healthy: %s", namespace, name, err)
            raise
        _LOGGER.info("Managed resource %s/%s is healthy", namespace, name)
        return status_info
