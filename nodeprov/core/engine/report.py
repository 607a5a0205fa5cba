"""
Run report — aggregated Step outcomes for one provisioning run.

Structured data (``to_dict``) for machines, plain lines
(``summary_lines``) for people. Colouring is left to the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from nodeprov.core.models.result import STATUS_ORDER, ExecutionResult

_MARKERS = {
    "applied": "✓",
    "skipped": "⊘",
    "planned": "…",
    "failed": "✗",
    "aborted": "-",
}


@dataclass
class RunReport:
    """Result of executing a plan."""

    run_id: str = ""
    role: str = ""
    dry_run: bool = False
    started_at: str = ""
    elapsed_ms: int = 0
    interrupted: bool = False
    results: list[ExecutionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def counts(self) -> dict[str, int]:
        counts = {status: 0 for status in STATUS_ORDER}
        for r in self.results:
            counts[r.status] += 1
        return counts

    @property
    def applied(self) -> int:
        return self.counts["applied"]

    @property
    def skipped(self) -> int:
        return self.counts["skipped"]

    @property
    def failed(self) -> int:
        return self.counts["failed"]

    @property
    def aborted(self) -> int:
        return self.counts["aborted"]

    @property
    def first_failure(self) -> ExecutionResult | None:
        for r in self.results:
            if r.failed:
                return r
        return None

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.interrupted

    @property
    def status(self) -> str:
        if self.interrupted:
            return "interrupted"
        if self.failed:
            return "failed"
        return "ok"

    def get(self, step_id: str) -> ExecutionResult | None:
        for r in self.results:
            if r.step_id == step_id:
                return r
        return None

    def to_dict(self) -> dict:
        failure = self.first_failure
        return {
            "run_id": self.run_id,
            "role": self.role,
            "dry_run": self.dry_run,
            "status": self.status,
            "started_at": self.started_at,
            "elapsed_ms": self.elapsed_ms,
            "total": self.total,
            "counts": self.counts,
            "first_failure": failure.model_dump(mode="json") if failure else None,
            "results": [r.model_dump(mode="json") for r in self.results],
        }

    def summary_entries(self, verbose: bool = False) -> list[tuple[str, str]]:
        """Summary as ``(kind, text)`` pairs.

        ``kind`` is a step status for step lines, otherwise one of
        ``detail``, ``blank``, ``total``, ``failure``. Details are shown
        for failed, aborted and planned steps (all steps when
        ``verbose``), at most five lines each.
        """
        entries: list[tuple[str, str]] = []
        for r in self.results:
            timing = f" ({r.duration_ms}ms)" if r.duration_ms else ""
            entries.append((r.status, f"{_MARKERS[r.status]} {r.step_id} [{r.status}]{timing}"))
            if r.detail and (verbose or r.status in ("failed", "aborted", "planned")):
                for line in r.detail.splitlines()[:5]:
                    entries.append(("detail", f"    {line}"))

        counts = self.counts
        parts = [f"{counts[s]} {s}" for s in STATUS_ORDER if counts[s]]
        entries.append(("blank", ""))
        entries.append((
            "total",
            f"{self.role}: {self.status} — {', '.join(parts) or 'nothing to do'} "
            f"in {self.elapsed_ms / 1000:.1f}s",
        ))

        failure = self.first_failure
        if failure is not None:
            entries.append((
                "failure",
                f"First failure: {failure.step_id} ({failure.error_kind}): {failure.detail}",
            ))
            log_path = failure.metadata.get("log_path")
            if log_path:
                entries.append(("failure", f"Initialization output: {log_path}"))
        return entries

    def summary_lines(self, verbose: bool = False) -> list[str]:
        """Human-readable summary, one string per line."""
        return [text for _, text in self.summary_entries(verbose)]
