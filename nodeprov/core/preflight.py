"""
Preflight — conditions that must hold before any Step is attempted.
"""

from __future__ import annotations

import logging

from nodeprov.core.errors import PreflightError
from nodeprov.core.models.config import ROLES, ProvisionConfig
from nodeprov.core.probe.host import HostProbe

logger = logging.getLogger(__name__)

SUPPORTED_OS = ("ubuntu",)


def run_preflight(probe: HostProbe, config: ProvisionConfig, role: str) -> None:
    """Raise ``PreflightError`` listing every unmet requirement."""
    problems: list[str] = []

    if role not in ROLES:
        problems.append(f"unknown role '{role}'")

    if not probe.is_root():
        problems.append("must be run as root (use sudo)")

    os_id = probe.os_release().get("ID", "").lower()
    if os_id not in SUPPORTED_OS:
        if config.allow_unsupported_os:
            logger.warning("Unsupported OS '%s'; continuing as requested", os_id or "unknown")
        else:
            problems.append(
                f"unsupported OS '{os_id or 'unknown'}' "
                f"(supported: {', '.join(SUPPORTED_OS)})"
            )

    if not config.node_ip and not probe.primary_ip():
        problems.append("could not detect the node IP address; set --node-ip")

    if role == "worker" and config.join is None:
        problems.append("worker role needs a join credential")

    if problems:
        raise PreflightError("; ".join(problems))
    logger.info("Preflight passed for %s", role)
