"""
Executor — walks a Plan and reconciles each Step.

Per step:

    pending → check ─┬─ satisfied   → skipped
                     └─ unsatisfied → apply ─┬─ ok + verify → applied
                                             ├─ ok, verify fails → failed (postcondition)
                                             └─ failure → failed (apply)

The executor is the only place that decides to halt. With
``halt_on_failure`` (the default) the first failure aborts every
remaining step; otherwise failures are collected and only the
failed step's dependents are aborted. A postcondition failure always
halts: it means a step reported success without reaching its state.

``apply()`` is called at most once per step per run. There is no retry;
re-running the whole plan is safe because satisfied steps are skipped.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import UTC, datetime
from typing import Any

from nodeprov.core.engine.plan import Plan
from nodeprov.core.engine.report import RunReport
from nodeprov.core.errors import PostconditionError, StepApplyError, StepCheckError
from nodeprov.core.models.result import ExecutionResult
from nodeprov.core.steps.base import Step

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted"


class Executor:
    """Run a plan under a failure policy."""

    def __init__(self, halt_on_failure: bool = True, dry_run: bool = False):
        self.halt_on_failure = halt_on_failure
        self.dry_run = dry_run

    def execute(self, plan: Plan, run_id: str | None = None) -> RunReport:
        report = RunReport(
            run_id=run_id or generate_run_id(),
            role=plan.role,
            dry_run=self.dry_run,
            started_at=datetime.now(UTC).isoformat(),
        )
        start = time.monotonic()
        outcomes: dict[str, ExecutionResult] = {}
        halted_by: str | None = None

        for step in plan.order:
            if halted_by is not None:
                result = _aborted(step, f"not attempted: run halted at '{halted_by}'")
            elif blocked := [
                d for d in step.depends_on if outcomes[d].status in ("failed", "aborted")
            ]:
                result = _aborted(step, f"dependency '{blocked[0]}' did not complete")
            else:
                try:
                    result = self._run_step(step)
                except KeyboardInterrupt:
                    logger.error("Interrupted during %s", step.id)
                    result = ExecutionResult(
                        step_id=step.id,
                        status="failed",
                        detail="interrupted by operator",
                        error_kind=INTERRUPTED,
                    )
                    report.interrupted = True

            outcomes[step.id] = result
            report.results.append(result)
            self._log(step, result)

            if result.failed and halted_by is None and (
                self.halt_on_failure
                or result.error_kind in (PostconditionError.kind, INTERRUPTED)
            ):
                halted_by = step.id

        report.elapsed_ms = int((time.monotonic() - start) * 1000)
        return report

    def _run_step(self, step: Step) -> ExecutionResult:
        start = time.monotonic()

        def finish(status: str, detail: str = "", **kwargs: Any) -> ExecutionResult:
            return ExecutionResult(
                step_id=step.id,
                status=status,
                detail=detail,
                duration_ms=int((time.monotonic() - start) * 1000),
                **kwargs,
            )

        # ── Check ───────────────────────────────────────────────
        try:
            satisfied = step.check()
        except StepCheckError as e:
            logger.warning("%s: cannot read current state (%s); applying anyway", step.id, e)
            satisfied = False

        if satisfied:
            return finish("skipped", "already satisfied")

        if self.dry_run:
            return finish("planned", f"would apply: {step.description}")

        # ── Apply ───────────────────────────────────────────────
        logger.info("→ %s: %s", step.id, step.description)
        try:
            outcome = step.apply()
        except Exception as e:
            logger.exception("%s raised during apply", step.id)
            return finish("failed", f"unexpected error: {e}", error_kind=StepApplyError.kind)

        if not outcome.ok:
            return finish(
                "failed", outcome.detail,
                error_kind=StepApplyError.kind, metadata=outcome.metadata,
            )

        # ── Postcondition ───────────────────────────────────────
        try:
            verified = step.verify()
        except StepCheckError as e:
            verified = False
            outcome.detail = f"{outcome.detail}; re-check failed: {e}"

        if not verified:
            return finish(
                "failed",
                f"postcondition not met after apply ({outcome.detail})",
                error_kind=PostconditionError.kind,
                metadata=outcome.metadata,
            )

        return finish(
            "applied", outcome.detail, changed=outcome.changed, metadata=outcome.metadata,
        )

    @staticmethod
    def _log(step: Step, result: ExecutionResult) -> None:
        if result.status == "failed":
            logger.error("✗ %s: %s", step.id, result.detail)
        elif result.status == "aborted":
            logger.info("- %s: %s", step.id, result.detail)
        else:
            logger.info("%s %s → %s", "✓" if result.status == "applied" else "⊘", step.id, result.status)


def _aborted(step: Step, detail: str) -> ExecutionResult:
    return ExecutionResult(step_id=step.id, status="aborted", detail=detail)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
