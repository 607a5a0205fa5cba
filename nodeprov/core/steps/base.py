"""
Step base — one declarative unit of desired host state.

A Step pairs a ``check()`` (does the host already satisfy me?) with an
``apply()`` (make it so). ``apply()`` re-checks before mutating, so it
is safe to call after a false-negative check and a second call after a
successful first one returns ``unchanged``.

To create a new step:
    1. Subclass Step and set ``category``
    2. Implement check() and _apply()
    3. Override verify() when the postcondition differs from check()
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from nodeprov.adapters.base import DEFAULT_TIMEOUT, CommandResult
from nodeprov.core.errors import StepCheckError
from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import HostProbe

logger = logging.getLogger(__name__)


class Step(ABC):
    """Abstract base class for all provisioning steps."""

    category = "generic"

    def __init__(
        self,
        step_id: str,
        description: str,
        probe: HostProbe,
        depends_on: Iterable[str] = (),
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.id = step_id
        self.description = description
        self.probe = probe
        self.depends_on: tuple[str, ...] = tuple(depends_on)
        self.timeout = timeout

    @abstractmethod
    def check(self) -> bool:
        """True iff the host already satisfies this step.

        May raise ``StepCheckError`` when host state cannot be read.
        """

    @abstractmethod
    def _apply(self) -> ApplyResult:
        """Perform the mutation. Only called when check() is False."""

    def apply(self) -> ApplyResult:
        """Reach the desired state, tolerating "already applied"."""
        if self._satisfied():
            return ApplyResult.unchanged()
        return self._apply()

    def verify(self) -> bool:
        """Postcondition evaluated after a successful apply."""
        return self.check()

    # ── Helpers ─────────────────────────────────────────────────

    def _satisfied(self) -> bool:
        try:
            return self.check()
        except StepCheckError as e:
            logger.debug("%s: check failed before apply (%s)", self.id, e)
            return False

    def run(self, cmd: list[str], timeout: int | None = None, input: str | None = None) -> CommandResult:
        """Run an external command through the probe's runner."""
        result = self.probe.runner.run(cmd, timeout=timeout or self.timeout, input=input)
        if result.ok:
            logger.debug("%s: %s ok (%dms)", self.id, result.display, result.duration_ms)
        else:
            logger.debug("%s: %s", self.id, result.failure_detail())
        return result

    def write_file(self, host_path: str, text: str, mode: int | None = None) -> None:
        """Atomically replace a host file (parent directories created)."""
        atomic_write(self.probe.path(host_path), text, mode=mode)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id!r}>"


def atomic_write(path: Path, text: str, mode: int | None = None) -> None:
    """Write ``text`` to ``path`` via a temp file and rename.

    An interrupted write leaves either the old file or the new one,
    never a truncated mix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None and path.exists():
        mode = path.stat().st_mode & 0o7777

    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def with_line(text: str, line: str) -> str:
    """``text`` with ``line`` appended on its own line."""
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"
