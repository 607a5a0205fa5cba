"""
Runner base — the protocol contract between steps and the host.

Every external collaborator (apt, systemctl, modprobe, kubeadm, kubectl)
is reached through a ``CommandRunner``. Steps and the probe never call
``subprocess`` directly, so the whole engine can be exercised against a
``MockRunner`` and a fake filesystem root.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

DEFAULT_TIMEOUT = 300


class CommandResult(BaseModel):
    """Outcome of one external command.

    Runners NEVER raise — failures, including timeouts and missing
    binaries, are captured here.
    """

    command: list[str] = Field(default_factory=list)
    ok: bool = True
    return_code: int | None = 0
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def display(self) -> str:
        """The command as a single readable line."""
        return " ".join(self.command)

    def failure_detail(self) -> str:
        """Short human-readable reason for a failed command."""
        if self.ok:
            return ""
        reason = self.error or f"exit {self.return_code}"
        tail = self.stderr.strip().splitlines()[-1:] if self.stderr.strip() else []
        if tail:
            return f"`{self.display}` failed ({reason}): {tail[0]}"
        return f"`{self.display}` failed ({reason})"

    @classmethod
    def success(cls, command: list[str], stdout: str = "", **kwargs) -> CommandResult:
        return cls(command=command, ok=True, return_code=0, stdout=stdout, **kwargs)

    @classmethod
    def failure(
        cls,
        command: list[str],
        return_code: int | None = 1,
        stderr: str = "",
        **kwargs,
    ) -> CommandResult:
        return cls(command=command, ok=False, return_code=return_code, stderr=stderr, **kwargs)


class CommandRunner(ABC):
    """Abstract base class for command runners.

    To create a new runner:
        1. Subclass CommandRunner
        2. Implement run()
    """

    @abstractmethod
    def run(
        self,
        cmd: list[str],
        *,
        timeout: int = DEFAULT_TIMEOUT,
        input: str | None = None,
    ) -> CommandResult:
        """Run ``cmd`` and return its result.

        MUST never raise. A command that exceeds ``timeout`` seconds is
        killed and reported with ``timed_out=True``.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
