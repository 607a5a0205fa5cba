"""
Service steps — systemd units that must be enabled and running.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import HostProbe
from nodeprov.core.steps.base import Step


class ServiceStep(Step):
    """Enable and (re)start a systemd unit.

    With ``watch`` set, the unit is only satisfied when it was started
    after the newest of the watched files changed, so a config edit by
    an earlier step forces exactly one restart.

    ``require_active=False`` is for units that cannot settle yet: the
    kubelet crash-loops until kubeadm hands it a configuration, so only
    enablement is checked for it.
    """

    category = "service"

    def __init__(
        self,
        probe: HostProbe,
        unit: str,
        watch: Iterable[str] = (),
        require_active: bool = True,
        **kwargs,
    ):
        super().__init__(
            kwargs.pop("step_id", f"{unit}-service"),
            f"Enable and start {unit}",
            probe,
            **kwargs,
        )
        self.unit = unit
        self.watch = tuple(watch)
        self.require_active = require_active

    def _stale(self) -> bool:
        mtimes = [m for m in (self.probe.mtime(p) for p in self.watch) if m is not None]
        if not mtimes:
            return False
        started = self.probe.service_started_at(self.unit)
        # systemd reports start times in whole seconds
        return started is None or started < math.floor(max(mtimes))

    def check(self) -> bool:
        if not self.probe.service_enabled(self.unit):
            return False
        if self.require_active and not self.probe.service_active(self.unit):
            return False
        return not self._stale()

    def verify(self) -> bool:
        if not self.probe.service_enabled(self.unit):
            return False
        return not self.require_active or self.probe.service_active(self.unit)

    def _apply(self) -> ApplyResult:
        if not self.probe.service_enabled(self.unit):
            enabled = self.run(["systemctl", "enable", self.unit])
            if not enabled.ok:
                return ApplyResult.failure(enabled.failure_detail(), stage="enable")

        action = "restart" if self.require_active or self.watch else "start"
        result = self.run(["systemctl", action, self.unit])
        if not result.ok:
            return ApplyResult.failure(result.failure_detail(), stage=action)
        return ApplyResult.success(f"{self.unit} enabled, {action} issued")
