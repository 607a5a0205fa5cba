"""
Domain models — Pydantic types for provisioning runs.

All models are re-exported here for convenient access:

    from nodeprov.core.models import ApplyResult, ExecutionResult, ProvisionConfig
"""

from nodeprov.core.models.config import ROLES, JoinCredential, ProvisionConfig, Role
from nodeprov.core.models.facts import HostFact
from nodeprov.core.models.result import (
    STATUS_ORDER,
    ApplyResult,
    ExecutionResult,
    StepStatus,
)

__all__ = [
    "ROLES",
    "STATUS_ORDER",
    # result.py
    "ApplyResult",
    "ExecutionResult",
    # facts.py
    "HostFact",
    # config.py
    "JoinCredential",
    "ProvisionConfig",
    "Role",
    "StepStatus",
]
