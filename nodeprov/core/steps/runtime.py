"""
Container runtime — containerd configuration.

The ``containerd.io`` package ships a config with the CRI plugin
disabled, so a config without any ``SystemdCgroup`` key is replaced by
``containerd config default`` before the cgroup driver is patched.
Generating and patching report distinct failure stages.
"""

from __future__ import annotations

import re

from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import CONTAINERD_CONFIG, HostProbe
from nodeprov.core.steps.base import Step

_CGROUP_RE = re.compile(r"^(\s*SystemdCgroup\s*=\s*)(true|false)\s*$", re.MULTILINE)


def cgroup_settings(text: str) -> list[str]:
    """Values of every ``SystemdCgroup`` key in a containerd config."""
    return [m.group(2) for m in _CGROUP_RE.finditer(text)]


class ContainerdConfigStep(Step):
    """Ensure containerd uses the systemd cgroup driver."""

    category = "file"

    def __init__(self, probe: HostProbe, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "containerd-config"),
            f"Set SystemdCgroup = true in {CONTAINERD_CONFIG}",
            probe,
            **kwargs,
        )

    def check(self) -> bool:
        settings = cgroup_settings(self.probe.read_text(CONTAINERD_CONFIG) or "")
        return bool(settings) and all(v == "true" for v in settings)

    def _apply(self) -> ApplyResult:
        text = self.probe.read_text(CONTAINERD_CONFIG) or ""
        generated = False

        if not cgroup_settings(text):
            result = self.run(["containerd", "config", "default"])
            if not result.ok or not result.stdout.strip():
                return ApplyResult.failure(
                    result.failure_detail() or "containerd printed an empty default config",
                    stage="generate",
                )
            text = result.stdout
            generated = True

        patched = _CGROUP_RE.sub(r"\g<1>true", text)
        if not cgroup_settings(patched):
            return ApplyResult.failure(
                "SystemdCgroup key not found in containerd default config",
                stage="patch",
            )

        self.write_file(CONTAINERD_CONFIG, patched, mode=0o644)
        detail = "generated default config; " if generated else ""
        return ApplyResult.success(f"{detail}SystemdCgroup = true", generated=generated)
