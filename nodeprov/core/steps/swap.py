"""
Swap — kubelet refuses to start with swap enabled.
"""

from __future__ import annotations

from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import FSTAB_FILE, HostProbe
from nodeprov.core.steps.base import Step


class SwapOffStep(Step):
    """Disable active swap and comment out fstab swap entries.

    The postcondition re-reads ``/proc/swaps``: a ``swapoff`` that exits
    zero while a device stays active is a postcondition failure.
    """

    category = "swap"

    def __init__(self, probe: HostProbe, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "swap-off"),
            "Disable swap now and across reboots",
            probe,
            **kwargs,
        )

    def check(self) -> bool:
        return not self.probe.active_swap_devices() and not self.probe.fstab_swap_entries()

    def verify(self) -> bool:
        return not self.probe.active_swap_devices()

    def _apply(self) -> ApplyResult:
        changes = []

        active = self.probe.active_swap_devices()
        if active:
            result = self.run(["swapoff", "-a"])
            if not result.ok:
                return ApplyResult.failure(result.failure_detail())
            changes.append(f"swapoff {', '.join(active)}")

        commented = self._comment_fstab()
        if commented:
            changes.append(f"commented {commented} fstab entr{'y' if commented == 1 else 'ies'}")

        return ApplyResult.success("; ".join(changes) or "swap disabled")

    def _comment_fstab(self) -> int:
        text = self.probe.read_text(FSTAB_FILE)
        if text is None:
            return 0

        count = 0
        out = []
        for line in text.splitlines():
            fields = line.split()
            if (
                len(fields) >= 3
                and not fields[0].startswith("#")
                and fields[2] == "swap"
            ):
                out.append("#" + line)
                count += 1
            else:
                out.append(line)

        if count:
            self.write_file(FSTAB_FILE, "\n".join(out) + "\n")
        return count
