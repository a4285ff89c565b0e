from __future__ import annotations

from enum import Enum


class Status(str, Enum):
    INBOX = "inbox"
    ENRICHED = "enriched"
    SHORTLISTED = "shortlisted"
    SCHEDULED = "scheduled"
    POSTED = "posted"
    DROPPED = "dropped"


PIPELINE_ORDER: tuple[Status, ...] = (
    Status.INBOX,
    Status.ENRICHED,
    Status.SHORTLISTED,
    Status.SCHEDULED,
    Status.POSTED,
)
TERMINAL_STATUSES = frozenset({Status.POSTED, Status.DROPPED})


class InvalidTransitionError(ValueError):
    """Raised when a status change is not an edge of the lifecycle graph."""

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"invalid status transition {from_status!r} -> {to_status!r}")
        self.from_status = from_status
        self.to_status = to_status


def can_transition(from_status: str | Status, to_status: str | Status) -> bool:
    try:
        source = Status(from_status)
        target = Status(to_status)
    except ValueError:
        return False

    if source == target:
        return True
    if source in TERMINAL_STATUSES:
        return False
    if target == Status.DROPPED:
        return True
    return PIPELINE_ORDER.index(target) > PIPELINE_ORDER.index(source)


def _label(status: str | Status) -> str:
    return status.value if isinstance(status, Status) else str(status)


def require_transition(from_status: str | Status, to_status: str | Status) -> Status:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(_label(from_status), _label(to_status))
    return Status(to_status)
