"""
Mock runner — universal test double for host commands.

Returns success with empty output by default. Responses are scripted
per command prefix; the longest matching prefix wins, and among equal
prefixes the most recently registered one. An ``effect`` callback can
mutate a fake host tree so that later probes observe the change.
"""

from __future__ import annotations

from collections.abc import Callable

from nodeprov.adapters.base import DEFAULT_TIMEOUT, CommandResult, CommandRunner

Effect = Callable[[list[str], str | None], object]


class MockRunner(CommandRunner):
    """Scriptable runner that records every call."""

    def __init__(self) -> None:
        self._responses: list[tuple[tuple[str, ...], CommandResult, Effect | None]] = []
        self._call_log: list[list[str]] = []
        self._inputs: list[str | None] = []
        self._timeouts: list[int] = []

    @property
    def call_log(self) -> list[list[str]]:
        """Every command this mock has received, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def inputs(self) -> list[str | None]:
        """The ``input`` passed alongside each call."""
        return self._inputs

    @property
    def timeouts(self) -> list[int]:
        return self._timeouts

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        return_code: int = 0,
        timed_out: bool = False,
        effect: Effect | None = None,
    ) -> None:
        """Script the response for commands starting with ``prefix``.

        ``effect`` runs before the response is returned; if it returns a
        ``CommandResult`` that result is used instead.
        """
        if timed_out:
            result = CommandResult(
                command=list(prefix),
                ok=False,
                return_code=None,
                error="Command timed out",
                timed_out=True,
            )
        else:
            result = CommandResult(
                command=list(prefix),
                ok=return_code == 0,
                return_code=return_code,
                stdout=stdout,
                stderr=stderr,
            )
        self._responses.append((tuple(prefix), result, effect))

    def calls_to(self, *prefix: str) -> list[list[str]]:
        """Calls whose leading arguments equal ``prefix``."""
        n = len(prefix)
        return [c for c in self._call_log if tuple(c[:n]) == prefix]

    def run(
        self,
        cmd: list[str],
        *,
        timeout: int = DEFAULT_TIMEOUT,
        input: str | None = None,
    ) -> CommandResult:
        self._call_log.append(list(cmd))
        self._inputs.append(input)
        self._timeouts.append(timeout)

        best: tuple[tuple[str, ...], CommandResult, Effect | None] | None = None
        for entry in self._responses:
            prefix = entry[0]
            if tuple(cmd[: len(prefix)]) != prefix:
                continue
            if best is None or len(prefix) >= len(best[0]):
                best = entry

        if best is None:
            return CommandResult.success(list(cmd))

        _, result, effect = best
        if effect is not None:
            override = effect(list(cmd), input)
            if isinstance(override, CommandResult):
                return override
        return result.model_copy(update={"command": list(cmd)})

    def reset(self) -> None:
        """Clear call log and scripted responses."""
        self._responses.clear()
        self._call_log.clear()
        self._inputs.clear()
        self._timeouts.clear()
