"""
Plan — the dependency-validated step list for one node role.

A Plan is checked when it is built: duplicate IDs, dangling or self
references and cycles raise ``PlanInvalid`` before anything runs.
Execution order is a topological sort with ties broken by declaration
order, so the catalogue below reads top to bottom the way it runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence

from nodeprov.core.engine.dag import topological_order, validate_dag
from nodeprov.core.errors import PlanInvalid, PreflightError
from nodeprov.core.models.config import ROLES, ProvisionConfig
from nodeprov.core.probe.host import CONTAINERD_CONFIG, HostProbe
from nodeprov.core.steps import (
    REQUIRED_MODULES,
    REQUIRED_SYSCTLS,
    AdminKubeconfigStep,
    AptRepositoryStep,
    ClusterInitStep,
    ContainerdConfigStep,
    HostsEntryStep,
    JoinCommandStep,
    KernelModuleStep,
    NetworkAddonStep,
    PackageHoldStep,
    PackageInstallStep,
    ServiceStep,
    Step,
    SwapOffStep,
    SysctlStep,
    WorkerJoinStep,
)
from nodeprov.core.steps.packages import (
    DOCKER_KEY_URL,
    DOCKER_SOURCE,
    KUBERNETES_KEY_URL,
    KUBERNETES_SOURCE,
)

logger = logging.getLogger(__name__)

# Bridge sysctls only exist once br_netfilter is loaded
_SYSCTL_MODULE = {
    "net.bridge.bridge-nf-call-iptables": "br_netfilter",
    "net.bridge.bridge-nf-call-ip6tables": "br_netfilter",
}


class Plan:
    """An ordered, acyclic set of Steps for one role."""

    def __init__(self, role: str, steps: Sequence[Step]):
        problems = validate_dag([(s.id, s.depends_on) for s in steps])
        if problems:
            raise PlanInvalid(problems)

        self.role = role
        self.steps = list(steps)
        by_id = {s.id: s for s in self.steps}
        self._order = [by_id[i] for i in topological_order([(s.id, s.depends_on) for s in steps])]

    @property
    def order(self) -> list[Step]:
        """Steps in execution order."""
        return list(self._order)

    def get(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def __iter__(self) -> Iterator[Step]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self.steps)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "steps": [
                {
                    "id": s.id,
                    "description": s.description,
                    "category": s.category,
                    "depends_on": list(s.depends_on),
                }
                for s in self._order
            ],
        }


def build_plan(role: str, config: ProvisionConfig, probe: HostProbe) -> Plan:
    """Build the Plan for ``role`` (``control-plane`` or ``worker``).

    Raises:
        PlanInvalid: unknown role or malformed step graph.
        PreflightError: a required input (node IP, join credential) is
            neither configured nor detectable.
    """
    if role not in ROLES:
        raise PlanInvalid(f"Unknown role '{role}' (expected one of: {', '.join(ROLES)})")

    node_ip = config.node_ip or probe.primary_ip()
    if not node_ip:
        raise PreflightError("Could not detect the node IP address; set --node-ip")
    timeout = config.command_timeout
    steps: list[Step] = []
    add = steps.append

    # ── Host basics ─────────────────────────────────────────────
    add(HostsEntryStep(probe, node_ip, probe.hostname(), timeout=timeout))
    add(SwapOffStep(probe, timeout=timeout))

    module_steps = [KernelModuleStep(probe, m, timeout=timeout) for m in REQUIRED_MODULES]
    steps.extend(module_steps)

    sysctl_steps = []
    for key, value in REQUIRED_SYSCTLS.items():
        module = _SYSCTL_MODULE.get(key)
        deps = [f"kernel-module-{module}"] if module else []
        sysctl_steps.append(SysctlStep(probe, key, value, depends_on=deps, timeout=timeout))
    steps.extend(sysctl_steps)

    # ── Container runtime ───────────────────────────────────────
    add(PackageInstallStep(
        probe,
        {"ca-certificates": None, "curl": None, "gnupg": None},
        step_id="apt-prerequisites",
        timeout=timeout,
    ))
    add(AptRepositoryStep(
        probe, "docker", DOCKER_KEY_URL, DOCKER_SOURCE,
        depends_on=["apt-prerequisites"], timeout=timeout,
    ))
    add(PackageInstallStep(
        probe, {"containerd.io": None},
        step_id="containerd-install", depends_on=["apt-repo-docker"], timeout=timeout,
    ))
    add(ContainerdConfigStep(probe, depends_on=["containerd-install"], timeout=timeout))
    add(ServiceStep(
        probe, "containerd", watch=[CONTAINERD_CONFIG],
        depends_on=["containerd-config"], timeout=timeout,
    ))

    # ── Kubernetes packages ─────────────────────────────────────
    minor = config.kubernetes_minor
    version = config.kubernetes_version
    kube_packages: dict[str, str | None] = {"kubelet": version, "kubeadm": version}
    if role == "control-plane":
        kube_packages["kubectl"] = version

    add(AptRepositoryStep(
        probe, "kubernetes",
        KUBERNETES_KEY_URL.format(minor=minor),
        KUBERNETES_SOURCE.replace("{minor}", minor),
        depends_on=["apt-prerequisites"], timeout=timeout,
    ))
    add(PackageInstallStep(
        probe, kube_packages,
        step_id="kube-packages-install", depends_on=["apt-repo-kubernetes"], timeout=timeout,
    ))
    add(PackageHoldStep(
        probe, list(kube_packages),
        step_id="kube-packages-hold", depends_on=["kube-packages-install"], timeout=timeout,
    ))
    add(ServiceStep(
        probe, "kubelet", require_active=False,
        depends_on=[
            "kube-packages-install",
            *(s.id for s in module_steps),
            *(s.id for s in sysctl_steps),
            "swap-off",
            "containerd-service",
        ],
        timeout=timeout,
    ))

    # ── Role-specific bootstrap ─────────────────────────────────
    if role == "control-plane":
        add(ClusterInitStep(
            probe, node_ip, config.pod_cidr, config.init_log_path,
            depends_on=["kubelet-service", "hosts-entry"], timeout=config.init_timeout,
        ))
        add(AdminKubeconfigStep(probe, depends_on=["cluster-init"], timeout=timeout))
        add(NetworkAddonStep(
            probe, config.network_addon_url, depends_on=["cluster-init"], timeout=timeout,
        ))
        add(JoinCommandStep(
            probe, config.join_command_path, depends_on=["cluster-init"], timeout=timeout,
        ))
    else:
        if config.join is None:
            raise PreflightError(
                "Worker provisioning needs a join credential "
                "(--join-command, or --endpoint/--token/--ca-cert-hash)"
            )
        add(WorkerJoinStep(
            probe, config.join,
            depends_on=["kubelet-service", "hosts-entry"], timeout=config.init_timeout,
        ))

    plan = Plan(role, steps)
    logger.info("Built %s plan with %d steps", role, len(plan))
    return plan
