"""
Shared test fixtures — a fake host tree driven by a scripted MockRunner.

``host_root`` is an unprovisioned Ubuntu host. ``provisioned`` turns it
into one where every step is already satisfied. ``simulate`` wires
command effects so that applying steps really converges the fake host.
"""

import os
import time
from pathlib import Path

import pytest

from nodeprov.adapters.mock import MockRunner
from nodeprov.core.models.config import DEFAULT_K8S_VERSION
from nodeprov.core.probe.host import HostProbe
from nodeprov.core.steps.packages import DOCKER_SOURCE, KUBERNETES_SOURCE

DPKG_QUERY = ("dpkg-query", "-W", "-f=${Status} ${Version}")

SWAPS_HEADER = "Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority\n"

CA_HASH = "sha256:" + "0123456789abcdef" * 4
JOIN_LINE = (
    f"kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef "
    f"--discovery-token-ca-cert-hash {CA_HASH}"
)

CONTAINERD_DEFAULT = """\
version = 2

[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc]
  runtime_type = "io.containerd.runc.v2"
  [plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
    SystemdCgroup = false
"""

_SYSCTL_PATHS = (
    "proc/sys/net/bridge/bridge-nf-call-iptables",
    "proc/sys/net/bridge/bridge-nf-call-ip6tables",
    "proc/sys/net/ipv4/ip_forward",
)


def write(root: Path, host_path: str, text: str) -> Path:
    """Create ``host_path`` under the fake root."""
    path = root / host_path.lstrip("/")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the caller's NODEPROV_* environment out of every test."""
    for name in list(os.environ):
        if name.startswith("NODEPROV_"):
            monkeypatch.delenv(name)


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    """A fresh Ubuntu host: swap on, no modules, nothing installed."""
    root = tmp_path / "host"
    write(root, "/etc/hosts", "127.0.0.1 localhost\n")
    write(root, "/etc/os-release", 'ID=ubuntu\nVERSION_ID="22.04"\nVERSION_CODENAME=jammy\n')
    write(root, "/etc/fstab", "UUID=abcd / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n")
    write(root, "/proc/swaps", SWAPS_HEADER + "/swap.img file 2097148 0 -2\n")
    write(root, "/proc/modules", "")
    for path in _SYSCTL_PATHS:
        write(root, path, "0\n")
    return root


@pytest.fixture
def runner() -> MockRunner:
    mock = MockRunner()
    mock.on("hostname", stdout="node1\n")
    mock.on("hostname", "-I", stdout="10.0.0.10 172.17.0.1\n")
    return mock


@pytest.fixture
def probe(runner: MockRunner, host_root: Path) -> HostProbe:
    return HostProbe(runner, root=host_root)


@pytest.fixture
def provisioned(host_root: Path, runner: MockRunner):
    """Factory: make the fake host look fully provisioned for ``role``."""

    def make(role: str = "control-plane") -> Path:
        write(host_root, "/etc/hosts", "127.0.0.1 localhost\n10.0.0.10 node1\n")
        write(host_root, "/etc/fstab", "UUID=abcd / ext4 defaults 0 1\n#/swap.img none swap sw 0 0\n")
        write(host_root, "/proc/swaps", SWAPS_HEADER)
        write(host_root, "/proc/modules", "overlay 151552 0 - Live 0x0\nbr_netfilter 32768 0 - Live 0x0\n")
        write(host_root, "/etc/modules-load.d/k8s.conf", "overlay\nbr_netfilter\n")
        for path in _SYSCTL_PATHS:
            write(host_root, path, "1\n")
        write(
            host_root,
            "/etc/sysctl.d/k8s.conf",
            "net.bridge.bridge-nf-call-iptables = 1\n"
            "net.bridge.bridge-nf-call-ip6tables = 1\n"
            "net.ipv4.ip_forward = 1\n",
        )

        for name in ("docker", "kubernetes"):
            write(host_root, f"/etc/apt/keyrings/{name}.gpg", "key")
        write(
            host_root,
            "/etc/apt/sources.list.d/docker.list",
            DOCKER_SOURCE.format(
                arch="amd64", keyring="/etc/apt/keyrings/docker.gpg", codename="jammy"
            ) + "\n",
        )
        write(
            host_root,
            "/etc/apt/sources.list.d/kubernetes.list",
            KUBERNETES_SOURCE.format(keyring="/etc/apt/keyrings/kubernetes.gpg", minor="1.29") + "\n",
        )

        for name in ("ca-certificates", "curl", "gnupg", "containerd.io"):
            runner.on(*DPKG_QUERY, name, stdout="install ok installed 1.0")
        for name in ("kubelet", "kubeadm", "kubectl"):
            runner.on(*DPKG_QUERY, name, stdout=f"install ok installed {DEFAULT_K8S_VERSION}")
        runner.on("apt-mark", "showhold", stdout="kubeadm\nkubectl\nkubelet\n")

        write(host_root, "/etc/containerd/config.toml", CONTAINERD_DEFAULT.replace("false", "true"))
        runner.on("systemctl", "show", stdout=f"ActiveEnterTimestamp=@{int(time.time())}")

        if role == "control-plane":
            write(host_root, "/etc/kubernetes/manifests/kube-apiserver.yaml", "kind: Pod\n")
            write(host_root, "/etc/kubernetes/admin.conf", "apiVersion: v1\nkind: Config\n")
            write(host_root, "/root/.kube/config", "apiVersion: v1\nkind: Config\n")
            write(host_root, "/var/lib/nodeprov/join-command.txt", JOIN_LINE + "\n")
        else:
            write(host_root, "/etc/kubernetes/kubelet.conf", "apiVersion: v1\nkind: Config\n")
        return host_root

    return make


@pytest.fixture
def simulate(host_root: Path, runner: MockRunner) -> MockRunner:
    """Script command effects so applied steps change the fake host."""
    held: set[str] = set()

    def swapoff(cmd, _input):
        write(host_root, "/proc/swaps", SWAPS_HEADER)

    def modprobe(cmd, _input):
        path = host_root / "proc/modules"
        path.write_text(path.read_text() + f"{cmd[1]} 16384 0 - Live 0x0\n")

    def sysctl(cmd, _input):
        key, _, value = cmd[-1].partition("=")
        write(host_root, "/proc/sys/" + key.replace(".", "/"), value + "\n")

    def gpg(cmd, key):
        Path(cmd[cmd.index("-o") + 1]).write_text(key or "")

    def apt_install(cmd, _input):
        for pkg in cmd[3:]:
            if pkg.startswith("--"):
                continue
            name, _, version = pkg.partition("=")
            runner.on(*DPKG_QUERY, name, stdout=f"install ok installed {version or '1.0'}")

    def apt_hold(cmd, _input):
        held.update(cmd[2:])
        runner.on("apt-mark", "showhold", stdout="\n".join(sorted(held)) + "\n")

    def service_started(cmd, _input):
        runner.on("systemctl", "show", cmd[2], stdout=f"ActiveEnterTimestamp=@{int(time.time())}")

    def kubeadm_init(cmd, _input):
        write(host_root, "/etc/kubernetes/manifests/kube-apiserver.yaml", "kind: Pod\n")
        write(host_root, "/etc/kubernetes/admin.conf", "apiVersion: v1\nkind: Config\n")

    def kubeadm_join(cmd, _input):
        write(host_root, "/etc/kubernetes/kubelet.conf", "apiVersion: v1\nkind: Config\n")

    runner.on("swapoff", effect=swapoff)
    runner.on("modprobe", effect=modprobe)
    runner.on("sysctl", "-w", effect=sysctl)
    runner.on("curl", stdout="-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
    runner.on("gpg", effect=gpg)
    runner.on("apt-get", "install", effect=apt_install)
    runner.on("apt-mark", "hold", effect=apt_hold)
    runner.on("containerd", "config", "default", stdout=CONTAINERD_DEFAULT)
    runner.on("systemctl", "restart", effect=service_started)
    runner.on("systemctl", "start", effect=service_started)
    runner.on("kubeadm", "init", effect=kubeadm_init)
    runner.on("kubeadm", "token", "create", stdout=JOIN_LINE + "\n")
    runner.on("kubeadm", "join", effect=kubeadm_join)
    return runner
