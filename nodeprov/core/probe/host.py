"""
Host probe — read-only inspection of current host state.

Every method reads fresh: nothing is cached between calls, so a Step's
check always sees what the previous Step actually did. Filesystem reads
are resolved under ``root`` (``/`` in production, a temporary tree in
tests). Command-backed facts go through the injected ``CommandRunner``.

An unreadable file raises ``StepCheckError``; a missing file is simply
"not configured" and returns an empty / ``None`` value.
"""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Callable
from pathlib import Path
from typing import Any

from nodeprov.adapters.base import CommandResult, CommandRunner
from nodeprov.core.errors import StepCheckError
from nodeprov.core.models.facts import HostFact

logger = logging.getLogger(__name__)

# ── Well-known host paths ───────────────────────────────────────

HOSTS_FILE = "/etc/hosts"
FSTAB_FILE = "/etc/fstab"
OS_RELEASE_FILE = "/etc/os-release"
PROC_SWAPS = "/proc/swaps"
PROC_MODULES = "/proc/modules"
MODULES_LOAD_FILE = "/etc/modules-load.d/k8s.conf"
SYSCTL_FILE = "/etc/sysctl.d/k8s.conf"
CONTAINERD_CONFIG = "/etc/containerd/config.toml"
KUBE_DIR = "/etc/kubernetes"
ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
KUBELET_KUBECONFIG = "/etc/kubernetes/kubelet.conf"
APISERVER_MANIFEST = "/etc/kubernetes/manifests/kube-apiserver.yaml"

_PROBE_TIMEOUT = 30

# Facts reported by ``snapshot()``
_SNAPSHOT_MODULES = ("overlay", "br_netfilter")
_SNAPSHOT_SYSCTLS = (
    "net.bridge.bridge-nf-call-iptables",
    "net.bridge.bridge-nf-call-ip6tables",
    "net.ipv4.ip_forward",
)
_SNAPSHOT_PACKAGES = ("containerd.io", "kubelet", "kubeadm", "kubectl")
_SNAPSHOT_SERVICES = ("containerd", "kubelet")


class HostProbe:
    """Read-only view of the host, produced fresh on every call."""

    def __init__(self, runner: CommandRunner, root: Path | str = "/"):
        self.runner = runner
        self.root = Path(root)

    # ── Filesystem ──────────────────────────────────────────────

    def path(self, host_path: str) -> Path:
        """Resolve an absolute host path under the probe root."""
        return self.root / host_path.lstrip("/")

    def read_text(self, host_path: str) -> str | None:
        """File contents, or None when the file does not exist."""
        path = self.path(host_path)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StepCheckError(f"Cannot read {host_path}: {e}") from e

    def exists(self, host_path: str) -> bool:
        return self.path(host_path).exists()

    def mtime(self, host_path: str) -> float | None:
        try:
            return self.path(host_path).stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StepCheckError(f"Cannot stat {host_path}: {e}") from e

    def config_lines(self, host_path: str) -> list[str]:
        """Non-blank, non-comment lines with surrounding whitespace removed."""
        text = self.read_text(host_path) or ""
        lines = []
        for line in text.splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                lines.append(line)
        return lines

    # ── Identity ────────────────────────────────────────────────

    def hostname(self) -> str:
        result = self._run(["hostname"])
        name = result.stdout.strip() if result.ok else ""
        return name or socket.gethostname()

    def primary_ip(self) -> str | None:
        """First address reported by ``hostname -I``."""
        result = self._run(["hostname", "-I"])
        if not result.ok:
            return None
        addresses = result.stdout.split()
        return addresses[0] if addresses else None

    def os_release(self) -> dict[str, str]:
        info: dict[str, str] = {}
        for line in self.config_lines(OS_RELEASE_FILE):
            key, sep, value = line.partition("=")
            if sep:
                info[key.strip()] = value.strip().strip('"').strip("'")
        return info

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def hosts_entries(self) -> list[tuple[str, list[str]]]:
        """Structured ``/etc/hosts``: ``(address, [names])`` per line."""
        entries = []
        for line in self.config_lines(HOSTS_FILE):
            fields = line.split("#", 1)[0].split()
            if len(fields) >= 2:
                entries.append((fields[0], fields[1:]))
        return entries

    # ── Swap ────────────────────────────────────────────────────

    def active_swap_devices(self) -> list[str]:
        """Devices listed in ``/proc/swaps`` (header line skipped)."""
        text = self.read_text(PROC_SWAPS)
        if text is None:
            return []
        devices = []
        for line in text.splitlines()[1:]:
            fields = line.split()
            if fields:
                devices.append(fields[0])
        return devices

    def fstab_swap_entries(self) -> list[str]:
        """Active (uncommented) fstab lines whose filesystem type is swap."""
        entries = []
        for line in self.config_lines(FSTAB_FILE):
            fields = line.split()
            if len(fields) >= 3 and fields[2] == "swap":
                entries.append(line)
        return entries

    # ── Kernel ──────────────────────────────────────────────────

    def module_loaded(self, name: str) -> bool:
        """Whether a kernel module is loaded (or built in)."""
        text = self.read_text(PROC_MODULES) or ""
        loaded = {line.split()[0] for line in text.splitlines() if line.strip()}
        if name in loaded:
            return True
        return self.path(f"/sys/module/{name}").is_dir()

    def sysctl_value(self, key: str) -> str | None:
        text = self.read_text("/proc/sys/" + key.replace(".", "/"))
        return text.strip() if text is not None else None

    # ── Packages ────────────────────────────────────────────────

    def package_version(self, name: str) -> str | None:
        """Installed version of a dpkg package, or None if not installed."""
        result = self._run(["dpkg-query", "-W", "-f=${Status} ${Version}", name])
        if not result.ok:
            return None
        parts = result.stdout.split()
        # "install ok installed 1.29.2-1.1"
        if len(parts) == 4 and parts[:3] == ["install", "ok", "installed"]:
            return parts[3]
        return None

    def architecture(self) -> str | None:
        """dpkg architecture name (amd64, arm64, ...)."""
        result = self._run(["dpkg", "--print-architecture"])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def held_packages(self) -> set[str]:
        result = self._run(["apt-mark", "showhold"])
        if not result.ok:
            raise StepCheckError(result.failure_detail())
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    # ── Services ────────────────────────────────────────────────

    def service_active(self, name: str) -> bool:
        return self._run(["systemctl", "is-active", "--quiet", name]).ok

    def service_enabled(self, name: str) -> bool:
        return self._run(["systemctl", "is-enabled", "--quiet", name]).ok

    def service_started_at(self, name: str) -> float | None:
        """Unix time the unit last entered the active state."""
        result = self._run([
            "systemctl", "show", name,
            "--property=ActiveEnterTimestamp", "--timestamp=unix",
        ])
        if not result.ok:
            return None
        _, _, value = result.stdout.strip().partition("=")
        value = value.lstrip("@")
        try:
            return float(value)
        except ValueError:
            return None

    # ── Cluster membership ──────────────────────────────────────

    def cluster_initialized(self) -> bool:
        """kubeadm init has already run on this node."""
        return self.exists(APISERVER_MANIFEST) and self.exists(ADMIN_KUBECONFIG)

    def api_server_ready(self, kubeconfig: str = ADMIN_KUBECONFIG) -> bool:
        """The API server behind ``kubeconfig`` answers its readiness endpoint."""
        result = self._run(
            ["kubectl", "--kubeconfig", str(self.path(kubeconfig)), "get", "--raw=/readyz"],
        )
        if not result.ok:
            logger.debug("API server not ready: %s", result.failure_detail())
        return result.ok

    def kubelet_joined(self) -> bool:
        """The local kubelet already holds cluster credentials."""
        return self.exists(KUBELET_KUBECONFIG)

    def manifest_applied(self, url: str, kubeconfig: str = ADMIN_KUBECONFIG) -> bool:
        """Every object in the manifest exists in the cluster."""
        result = self._run(
            ["kubectl", "--kubeconfig", str(self.path(kubeconfig)), "get", "-f", url],
            timeout=60,
        )
        return result.ok

    def cluster_nodes(self, kubeconfig: str = ADMIN_KUBECONFIG) -> CommandResult:
        return self._run(
            ["kubectl", "--kubeconfig", str(self.path(kubeconfig)), "get", "nodes", "-o", "wide"],
            timeout=60,
        )

    # ── Snapshot ────────────────────────────────────────────────

    def snapshot(self) -> list[HostFact]:
        """Collect every known fact. Individual probe failures are recorded."""
        facts: list[HostFact] = []

        def add(key: str, source: str, read: Callable[[], Any]) -> None:
            try:
                facts.append(HostFact(key=key, value=read(), source=source))
            except StepCheckError as e:
                facts.append(HostFact(key=key, source=source, error=str(e)))

        add("host.name", "hostname", self.hostname)
        add("host.primary_ip", "hostname -I", self.primary_ip)
        add("host.os", OS_RELEASE_FILE, lambda: self.os_release().get("ID"))
        add("host.is_root", "geteuid", self.is_root)
        add("swap.active", PROC_SWAPS, self.active_swap_devices)
        add("swap.fstab", FSTAB_FILE, self.fstab_swap_entries)
        for module in _SNAPSHOT_MODULES:
            add(f"module.{module}", PROC_MODULES, lambda m=module: self.module_loaded(m))
        for key in _SNAPSHOT_SYSCTLS:
            add(f"sysctl.{key}", "/proc/sys", lambda k=key: self.sysctl_value(k))
        for pkg in _SNAPSHOT_PACKAGES:
            add(f"package.{pkg}", "dpkg-query", lambda p=pkg: self.package_version(p))
        add("package.held", "apt-mark showhold", lambda: sorted(self.held_packages()))
        for svc in _SNAPSHOT_SERVICES:
            add(f"service.{svc}.active", "systemctl", lambda s=svc: self.service_active(s))
            add(f"service.{svc}.enabled", "systemctl", lambda s=svc: self.service_enabled(s))
        add("cluster.initialized", APISERVER_MANIFEST, self.cluster_initialized)
        add("cluster.kubelet_joined", KUBELET_KUBECONFIG, self.kubelet_joined)
        return facts

    # ── Internals ───────────────────────────────────────────────

    def _run(self, cmd: list[str], timeout: int = _PROBE_TIMEOUT) -> CommandResult:
        result = self.runner.run(cmd, timeout=timeout)
        logger.debug("probe %s → %s", " ".join(cmd), "ok" if result.ok else "fail")
        return result
