from enum import Enum
from typing import Optional


class ProviderErrorReason(str, Enum):
    TIMEOUT = "TIMEOUT"
    STATUS = "STATUS"


class PlannerError(Exception):
    """Base class for planner failures."""


class ProviderError(PlannerError):
    """A single directions or elevation query failed."""

    def __init__(
        self,
        reason: ProviderErrorReason,
        status: Optional[str] = None,
        label: str = "",
    ):
        self.reason = reason
        self.status = status
        self.label = label
        detail = f"{reason.value}"
        if status:
            detail += f" ({status})"
        if label:
            detail += f" [{label}]"
        super().__init__(f"Provider query failed: {detail}")


class NoFeasibleCandidateError(PlannerError):
    """Every strategy was exhausted without producing an itinerary."""


class MissedDepartureError(PlannerError):
    """A connecting micro-leg no longer makes its scheduled transit departure."""

    def __init__(
        self,
        leg_index: Optional[int] = None,
        late_sec: float = 0.0,
        required_sec: Optional[float] = None,
        allowed_sec: Optional[float] = None,
    ):
        self.leg_index = leg_index
        self.late_sec = late_sec
        self.required_sec = required_sec
        self.allowed_sec = allowed_sec
        if required_sec is not None and allowed_sec is not None:
            msg = f"Micro-leg needs {required_sec:.0f}s but only {allowed_sec:.0f}s fit"
        else:
            msg = f"Transit leg {leg_index} boarded {late_sec:.0f}s late"
        super().__init__(msg)


class StaleRequest(Exception):
    """Raised to unwind work that belongs to a superseded request.

    Not a PlannerError: callers drop it silently.
    """

    def __init__(self, number: int, current: int):
        self.number = number
        self.current = current
        super().__init__(f"Request {number} superseded by {current}")
