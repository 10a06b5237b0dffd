"""Status information for a managed resource."""

from enum import StrEnum
from dataclasses import dataclass

__all__ = [
    "Status",
    "StatusInfo",
    "Condition",
    "CONDITION_APPLIED",
    "CONDITION_HEALTHY",
    "CONDITION_PROGRESSING",
    "evaluate_conditions",
]

CONDITION_APPLIED = "ResourcesApplied"
CONDITION_HEALTHY = "ResourcesHealthy"
CONDITION_PROGRESSING = "ResourcesProgressing"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"


class Status(StrEnum):
    """Health status of a managed resource."""

    PENDING = "Pending"
    READY = "Ready"
    FAILED = "Failed"


@dataclass
class StatusInfo:
    """Health status and optional error message for a managed resource."""

    status: Status
    error: str | None = None

    def __str__(self) -> str:
        """Return a string representation of the status."""
        if self.error:
            return f"{self.status}: {self.error}"
        return str(self.status)


@dataclass(frozen=True)
class Condition:
    """A condition reported by the resource manager for a managed resource."""

    type: str
    status: str = CONDITION_UNKNOWN
    reason: str | None = None
    message: str | None = None

    @property
    def is_true(self) -> bool:
        return self.status == CONDITION_TRUE

    @property
    def is_false(self) -> bool:
        return self.status == CONDITION_FALSE


def evaluate_conditions(conditions: dict[str, Condition]) -> StatusInfo:
    """Compute the health of a managed resource from its conditions."""
    for condition_type in (CONDITION_APPLIED, CONDITION_HEALTHY):
        condition = conditions.get(condition_type)
        if condition is None:
            return StatusInfo(Status.PENDING, f"condition {condition_type} not reported")
        if condition.is_false:
            return StatusInfo(
                Status.FAILED,
                f"{condition_type}: {condition.message or condition.reason or 'False'}",
            )
        if not condition.is_true:
            return StatusInfo(Status.PENDING, f"condition {condition_type} is {condition.status}")
    if (progressing := conditions.get(CONDITION_PROGRESSING)) and progressing.is_true:
        return StatusInfo(
            Status.PENDING, progressing.message or "resources are progressing"
        )
    return StatusInfo(Status.READY)
