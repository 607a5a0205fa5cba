"""
Kernel prerequisites — modules and sysctl keys.

One Step per module and per key so a failure names exactly which
prerequisite is missing. Each Step sets the runtime value and persists
it (``/etc/modules-load.d``, ``/etc/sysctl.d``) for the next boot.
"""

from __future__ import annotations

from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import MODULES_LOAD_FILE, SYSCTL_FILE, HostProbe
from nodeprov.core.steps.base import Step, with_line

REQUIRED_MODULES = ("overlay", "br_netfilter")

REQUIRED_SYSCTLS = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}


def _parse_sysctl_conf(lines: list[str]) -> dict[str, str]:
    values = {}
    for line in lines:
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    return values


class KernelModuleStep(Step):
    """Load a kernel module and list it for loading at boot."""

    category = "kernel-module"

    def __init__(self, probe: HostProbe, module: str, **kwargs):
        super().__init__(
            kwargs.pop("step_id", f"kernel-module-{module}"),
            f"Load kernel module {module}",
            probe,
            **kwargs,
        )
        self.module = module

    def _persisted(self) -> bool:
        return self.module in self.probe.config_lines(MODULES_LOAD_FILE)

    def check(self) -> bool:
        return self.probe.module_loaded(self.module) and self._persisted()

    def _apply(self) -> ApplyResult:
        if not self._persisted():
            current = self.probe.read_text(MODULES_LOAD_FILE) or ""
            self.write_file(MODULES_LOAD_FILE, with_line(current, self.module))

        if not self.probe.module_loaded(self.module):
            result = self.run(["modprobe", self.module])
            if not result.ok:
                return ApplyResult.failure(result.failure_detail())

        return ApplyResult.success(f"module {self.module} loaded")


class SysctlStep(Step):
    """Set a sysctl key now and in ``/etc/sysctl.d``."""

    category = "sysctl"

    def __init__(self, probe: HostProbe, key: str, value: str, **kwargs):
        super().__init__(
            kwargs.pop("step_id", f"sysctl-{key}"),
            f"Set {key} = {value}",
            probe,
            **kwargs,
        )
        self.key = key
        self.value = value

    def _persisted(self) -> bool:
        return _parse_sysctl_conf(self.probe.config_lines(SYSCTL_FILE)).get(self.key) == self.value

    def check(self) -> bool:
        return self.probe.sysctl_value(self.key) == self.value and self._persisted()

    def _apply(self) -> ApplyResult:
        if not self._persisted():
            self._persist()

        if self.probe.sysctl_value(self.key) != self.value:
            result = self.run(["sysctl", "-w", f"{self.key}={self.value}"])
            if not result.ok:
                return ApplyResult.failure(result.failure_detail())

        return ApplyResult.success(f"{self.key} = {self.value}")

    def _persist(self) -> None:
        text = self.probe.read_text(SYSCTL_FILE) or ""
        out = []
        replaced = False
        for line in text.splitlines():
            key, sep, _ = line.partition("=")
            if sep and not line.lstrip().startswith("#") and key.strip() == self.key:
                if not replaced:
                    out.append(f"{self.key} = {self.value}")
                    replaced = True
                continue
            out.append(line)

        new_text = "\n".join(out) + "\n" if out else ""
        if not replaced:
            new_text = with_line(new_text, f"{self.key} = {self.value}")
        self.write_file(SYSCTL_FILE, new_text)
