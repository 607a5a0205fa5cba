"""
Steps — declarative units of host configuration.

    from nodeprov.core.steps import Step, SwapOffStep, WorkerJoinStep
"""

from nodeprov.core.steps.base import Step
from nodeprov.core.steps.cluster import (
    AdminKubeconfigStep,
    ClusterInitStep,
    JoinCommandStep,
    NetworkAddonStep,
    WorkerJoinStep,
)
from nodeprov.core.steps.hosts import HostsEntryStep
from nodeprov.core.steps.kernel import (
    REQUIRED_MODULES,
    REQUIRED_SYSCTLS,
    KernelModuleStep,
    SysctlStep,
)
from nodeprov.core.steps.packages import (
    AptRepositoryStep,
    PackageHoldStep,
    PackageInstallStep,
)
from nodeprov.core.steps.runtime import ContainerdConfigStep
from nodeprov.core.steps.services import ServiceStep
from nodeprov.core.steps.swap import SwapOffStep

__all__ = [
    "REQUIRED_MODULES",
    "REQUIRED_SYSCTLS",
    "AdminKubeconfigStep",
    "AptRepositoryStep",
    "ClusterInitStep",
    "ContainerdConfigStep",
    "HostsEntryStep",
    "JoinCommandStep",
    "KernelModuleStep",
    "NetworkAddonStep",
    "PackageHoldStep",
    "PackageInstallStep",
    "ServiceStep",
    "Step",
    "SwapOffStep",
    "SysctlStep",
    "WorkerJoinStep",
]
