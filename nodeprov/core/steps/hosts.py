"""
Host identity — map the node IP to its hostname in /etc/hosts.
"""

from __future__ import annotations

from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import HOSTS_FILE, HostProbe
from nodeprov.core.steps.base import Step, with_line


class HostsEntryStep(Step):
    """Ensure ``<address> <hostname>`` is present in /etc/hosts.

    Matching is per field: an entry for ``node1`` is not satisfied by
    ``node10`` or by the address appearing in a comment.
    """

    category = "file"

    def __init__(self, probe: HostProbe, address: str, hostname: str, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "hosts-entry"),
            f"Map {address} to {hostname} in {HOSTS_FILE}",
            probe,
            **kwargs,
        )
        self.address = address
        self.hostname = hostname

    def check(self) -> bool:
        return any(
            addr == self.address and self.hostname in names
            for addr, names in self.probe.hosts_entries()
        )

    def _apply(self) -> ApplyResult:
        current = self.probe.read_text(HOSTS_FILE) or ""
        self.write_file(HOSTS_FILE, with_line(current, f"{self.address} {self.hostname}"))
        return ApplyResult.success(f"added '{self.address} {self.hostname}'")
