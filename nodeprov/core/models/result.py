"""
Step outcome models — what a Step returns and what the executor records.

``ApplyResult`` is the Step → Executor contract: a Step's ``apply()``
reports ``changed``, ``unchanged`` or ``failed`` and never raises for
an ordinary command failure. ``ExecutionResult`` is the executor's
immutable record of one Step in one run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["skipped", "applied", "failed", "aborted", "planned"]

STATUS_ORDER: tuple[str, ...] = ("applied", "skipped", "planned", "failed", "aborted")


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ApplyResult(BaseModel):
    """Outcome of a single ``Step.apply()`` call."""

    outcome: Literal["changed", "unchanged", "failed"] = "changed"
    detail: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome != "failed"

    @property
    def changed(self) -> bool:
        return self.outcome == "changed"

    @classmethod
    def success(cls, detail: str = "", **metadata: Any) -> ApplyResult:
        """The host was mutated and now matches the desired state."""
        return cls(outcome="changed", detail=detail, metadata=metadata)

    @classmethod
    def unchanged(cls, detail: str = "already in desired state", **metadata: Any) -> ApplyResult:
        """Nothing needed doing."""
        return cls(outcome="unchanged", detail=detail, metadata=metadata)

    @classmethod
    def failure(cls, reason: str, **metadata: Any) -> ApplyResult:
        """The mutation could not be completed."""
        return cls(outcome="failed", detail=reason, metadata=metadata)


class ExecutionResult(BaseModel):
    """Recorded outcome of one Step in one run. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    status: StepStatus
    detail: str = ""
    timestamp: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    error_kind: str | None = None   # check, apply, postcondition, interrupted
    changed: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == "failed"
