from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

OutcomeStatus = Literal["ok", "noop", "fatal"]


@dataclass(slots=True)
class RunOutcome:
    """Result of one driver run, consumed by the top-level handler."""

    status: OutcomeStatus
    summary: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **summary: Any) -> RunOutcome:
        return cls(status="ok", summary=summary)

    @classmethod
    def noop(cls, reason: str, **summary: Any) -> RunOutcome:
        return cls(status="noop", summary={"reason": reason, **summary})

    @classmethod
    def fatal(cls, error: str, **summary: Any) -> RunOutcome:
        return cls(status="fatal", summary={"error": error, **summary})

    @property
    def exit_code(self) -> int:
        return 1 if self.status == "fatal" else 0

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status, **self.summary}
