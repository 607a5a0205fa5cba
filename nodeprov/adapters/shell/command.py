"""
Shell command runner — the single place ``subprocess.run`` is called.

Commands are always argument lists; nothing is routed through a shell.
"""

from __future__ import annotations

import logging
import subprocess
import time

from nodeprov.adapters.base import DEFAULT_TIMEOUT, CommandResult, CommandRunner

logger = logging.getLogger(__name__)

# Output kept on the result; full output of long commands goes to log files.
_OUTPUT_LIMIT = 20000


class ShellCommandRunner(CommandRunner):
    """Execute commands on the local host and capture their output."""

    def __init__(self, env: dict[str, str] | None = None):
        self._env = env

    def run(
        self,
        cmd: list[str],
        *,
        timeout: int = DEFAULT_TIMEOUT,
        input: str | None = None,
    ) -> CommandResult:
        logger.debug("Executing: %s (timeout=%ss)", " ".join(cmd), timeout)
        start = time.monotonic()

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
                env=self._env,
            )
        except subprocess.TimeoutExpired:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Command timed out after %ss: %s", timeout, " ".join(cmd))
            return CommandResult(
                command=cmd,
                ok=False,
                return_code=None,
                error=f"Command timed out after {timeout}s",
                duration_ms=elapsed_ms,
                timed_out=True,
            )
        except FileNotFoundError:
            return CommandResult(
                command=cmd,
                ok=False,
                return_code=None,
                error=f"Command not found: {cmd[0]}",
            )
        except OSError as e:
            logger.exception("Subprocess error: %s", cmd)
            return CommandResult(
                command=cmd,
                ok=False,
                return_code=None,
                error=f"Command execution error: {e}",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = result.stdout[-_OUTPUT_LIMIT:] if result.stdout else ""
        stderr = result.stderr[-_OUTPUT_LIMIT:] if result.stderr else ""

        if result.returncode != 0:
            logger.debug("Command exited %d: %s", result.returncode, " ".join(cmd))

        return CommandResult(
            command=cmd,
            ok=result.returncode == 0,
            return_code=result.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_ms=elapsed_ms,
        )
