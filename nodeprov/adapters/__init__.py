"""Adapters — bindings to the host's external tools.

Public re-exports for convenient access.
"""

from nodeprov.adapters.base import CommandResult, CommandRunner
from nodeprov.adapters.mock import MockRunner
from nodeprov.adapters.shell.command import ShellCommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "MockRunner",
    "ShellCommandRunner",
]
