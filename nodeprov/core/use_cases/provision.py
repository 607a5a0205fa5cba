"""
Provision use case — one full run for one role.

Loads config, runs preflight, builds the plan, executes it and hands
back a single result object the CLI can render. Configuration,
preflight and plan errors stop the run before any Step executes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from nodeprov.adapters.base import CommandRunner
from nodeprov.core.config.loader import ConfigError, load_config
from nodeprov.core.engine.executor import Executor
from nodeprov.core.engine.plan import Plan, build_plan
from nodeprov.core.engine.report import RunReport
from nodeprov.core.errors import PlanInvalid, PreflightError
from nodeprov.core.models.config import ProvisionConfig
from nodeprov.core.preflight import run_preflight
from nodeprov.core.probe.host import HostProbe

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    role: str = ""
    report: RunReport | None = None
    plan: Plan | None = None
    config: ProvisionConfig | None = None
    error: str | None = None
    error_kind: str | None = None       # config, preflight, plan
    join_command_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    def to_dict(self) -> dict:
        result: dict = {"role": self.role, "ok": self.ok}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            return result

        if self.report:
            result["report"] = self.report.to_dict()
        if self.join_command_path:
            result["join_command_path"] = self.join_command_path
        return result


def default_runner() -> CommandRunner:
    """Runner for the real host; apt must never prompt."""
    from nodeprov.adapters.shell.command import ShellCommandRunner

    env = dict(os.environ)
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return ShellCommandRunner(env=env)


def provision(
    role: str,
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    dry_run: bool = False,
    skip_preflight: bool = False,
    probe: HostProbe | None = None,
) -> ProvisionResult:
    """Provision this host as ``role``.

    Args:
        role: ``control-plane`` or ``worker``.
        config_path: Optional config file.
        overrides: CLI / environment values that win over the file.
        dry_run: Check every step, apply none.
        skip_preflight: Skip root / OS checks (audit use).
        probe: Pre-built probe (tests point this at a fake host).

    Returns:
        ProvisionResult with the run report, or an error.
    """
    result = ProvisionResult(role=role)

    # ── Configuration ────────────────────────────────────────────
    try:
        config = load_config(config_path, overrides)
    except ConfigError as e:
        result.error, result.error_kind = str(e), "config"
        return result
    result.config = config

    if probe is None:
        probe = HostProbe(default_runner())

    # ── Preflight + plan ─────────────────────────────────────────
    try:
        if skip_preflight:
            logger.warning("Preflight checks skipped")
        else:
            run_preflight(probe, config, role)
        plan = build_plan(role, config, probe)
    except (PreflightError, PlanInvalid) as e:
        result.error, result.error_kind = str(e), e.kind
        return result
    result.plan = plan

    # ── Execute ──────────────────────────────────────────────────
    executor = Executor(halt_on_failure=config.halt_on_failure, dry_run=dry_run)
    report = executor.execute(plan)
    result.report = report

    join_step = report.get("join-command")
    if join_step is not None and join_step.status in ("applied", "skipped"):
        result.join_command_path = config.join_command_path

    logger.info("Run %s finished: %s", report.run_id, report.status)
    return result
