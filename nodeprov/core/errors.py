"""
Error taxonomy for provisioning runs.

    ProvisionError
    ├── PreflightError      host unsuitable, nothing attempted
    ├── PlanInvalid         cyclic / dangling dependencies, nothing attempted
    ├── StepCheckError      a probe could not read host state
    ├── StepApplyError      an external command failed
    └── PostconditionError  apply reported success but state is still wrong

Only the first three are raised across module boundaries. The last two
classify recorded outcomes: the executor stores their ``kind`` on the
``ExecutionResult`` instead of letting them unwind the run.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for every provisioning error."""

    kind = "error"


class PreflightError(ProvisionError):
    """The host does not meet the requirements to start a run."""

    kind = "preflight"


class PlanInvalid(ProvisionError):
    """A plan's dependency graph is malformed."""

    kind = "plan"

    def __init__(self, problems: list[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class StepCheckError(ProvisionError):
    """Reading host state failed (permission denied, probe crashed)."""

    kind = "check"


class StepApplyError(ProvisionError):
    """An apply action failed."""

    kind = "apply"


class PostconditionError(ProvisionError):
    """The re-check after a successful apply still fails."""

    kind = "postcondition"
