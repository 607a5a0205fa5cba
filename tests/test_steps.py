"""
Tests for individual steps — check/apply against a fake host tree.
"""

import os
import stat

from nodeprov.core.models.config import JoinCredential
from nodeprov.core.steps import (
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
    SwapOffStep,
    SysctlStep,
    WorkerJoinStep,
)
from nodeprov.core.steps.base import atomic_write, with_line
from nodeprov.core.steps.packages import KUBERNETES_KEY_URL, KUBERNETES_SOURCE
from nodeprov.core.steps.runtime import cgroup_settings

from conftest import CA_HASH, CONTAINERD_DEFAULT, DPKG_QUERY, JOIN_LINE, SWAPS_HEADER, write

# ── Helpers ──────────────────────────────────────────────────────────


class TestFileHelpers:
    def test_with_line_adds_missing_newline(self):
        assert with_line("a", "b") == "a\nb\n"
        assert with_line("", "b") == "b\n"

    def test_atomic_write_keeps_mode(self, tmp_path):
        target = tmp_path / "etc" / "conf"
        atomic_write(target, "one\n", mode=0o600)
        atomic_write(target, "two\n")
        assert target.read_text() == "two\n"
        assert stat.S_IMODE(target.stat().st_mode) == 0o600
        assert [p.name for p in target.parent.iterdir()] == ["conf"]


# ── Host basics ──────────────────────────────────────────────────────


class TestHostsEntryStep:
    def test_apply_then_unchanged(self, probe, host_root):
        s = HostsEntryStep(probe, "10.0.0.10", "node1")
        assert not s.check()

        first = s.apply()
        assert first.changed
        assert "10.0.0.10 node1" in (host_root / "etc/hosts").read_text().splitlines()
        assert s.check()

        second = s.apply()
        assert second.outcome == "unchanged"
        assert (host_root / "etc/hosts").read_text().count("node1") == 1

    def test_similar_names_do_not_satisfy(self, probe, host_root):
        write(host_root, "/etc/hosts", "10.0.0.10 node10\n# 10.0.0.10 node1\n10.0.0.100 node1x\n")
        assert not HostsEntryStep(probe, "10.0.0.10", "node1").check()

    def test_alias_on_existing_line_satisfies(self, probe, host_root):
        write(host_root, "/etc/hosts", "10.0.0.10 node1.lan node1  # primary\n")
        assert HostsEntryStep(probe, "10.0.0.10", "node1").check()


class TestSwapOffStep:
    def test_disables_swap_and_comments_fstab(self, probe, runner, host_root):
        runner.on("swapoff", effect=lambda cmd, _: write(host_root, "/proc/swaps", SWAPS_HEADER))
        s = SwapOffStep(probe)

        result = s.apply()
        assert result.changed
        assert "commented 1 fstab entry" in result.detail
        assert "#/swap.img none swap sw 0 0" in (host_root / "etc/fstab").read_text()
        assert s.check()
        assert s.apply().outcome == "unchanged"
        assert len(runner.calls_to("swapoff")) == 1

    def test_fstab_only(self, probe, runner, host_root):
        write(host_root, "/proc/swaps", SWAPS_HEADER)
        s = SwapOffStep(probe)
        assert not s.check()
        s.apply()
        assert runner.calls_to("swapoff") == []
        assert s.check()

    def test_swapoff_failure(self, probe, runner):
        runner.on("swapoff", return_code=255, stderr="swapoff: /swap.img: Device or resource busy")
        result = SwapOffStep(probe).apply()
        assert not result.ok
        assert "Device or resource busy" in result.detail


# ── Kernel ───────────────────────────────────────────────────────────


class TestKernelModuleStep:
    def test_loads_and_persists(self, probe, runner, host_root):
        def modprobe(cmd, _):
            write(host_root, "/proc/modules", f"{cmd[1]} 16384 0 - Live 0x0\n")

        runner.on("modprobe", effect=modprobe)
        s = KernelModuleStep(probe, "br_netfilter")
        assert s.id == "kernel-module-br_netfilter"

        assert s.apply().changed
        assert "br_netfilter" in (host_root / "etc/modules-load.d/k8s.conf").read_text()
        assert s.check()
        assert s.apply().outcome == "unchanged"
        assert runner.calls_to("modprobe") == [["modprobe", "br_netfilter"]]

    def test_builtin_module_is_loaded(self, probe, host_root):
        (host_root / "sys/module/overlay").mkdir(parents=True)
        write(host_root, "/etc/modules-load.d/k8s.conf", "overlay\n")
        assert KernelModuleStep(probe, "overlay").check()

    def test_modprobe_failure(self, probe, runner):
        runner.on("modprobe", return_code=1, stderr="modprobe: FATAL: Module overlay not found")
        result = KernelModuleStep(probe, "overlay").apply()
        assert not result.ok
        assert "not found" in result.detail


class TestSysctlStep:
    def test_sets_and_persists(self, probe, runner, host_root):
        def sysctl(cmd, _):
            write(host_root, "/proc/sys/net/ipv4/ip_forward", "1\n")

        runner.on("sysctl", "-w", effect=sysctl)
        write(host_root, "/etc/sysctl.d/k8s.conf", "# managed\nnet.ipv4.ip_forward = 0\n")
        s = SysctlStep(probe, "net.ipv4.ip_forward", "1")

        assert s.apply().changed
        assert (host_root / "etc/sysctl.d/k8s.conf").read_text() == "# managed\nnet.ipv4.ip_forward = 1\n"
        assert runner.calls_to("sysctl") == [["sysctl", "-w", "net.ipv4.ip_forward=1"]]
        assert s.check()

    def test_runtime_value_alone_is_not_enough(self, probe, host_root):
        write(host_root, "/proc/sys/net/ipv4/ip_forward", "1\n")
        assert not SysctlStep(probe, "net.ipv4.ip_forward", "1").check()


# ── Packages ─────────────────────────────────────────────────────────


class TestAptRepositoryStep:
    def _step(self, probe):
        return AptRepositoryStep(
            probe,
            "kubernetes",
            KUBERNETES_KEY_URL.format(minor="1.29"),
            KUBERNETES_SOURCE.replace("{minor}", "1.29"),
        )

    def test_installs_key_and_source(self, probe, runner, host_root):
        runner.on("curl", stdout="-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
        runner.on("gpg", effect=lambda cmd, key: write(host_root, "/etc/apt/keyrings/kubernetes.gpg", key))
        s = self._step(probe)

        assert s.apply().changed
        assert runner.inputs[runner.call_log.index(runner.calls_to("gpg")[0])].startswith("-----BEGIN")
        source = (host_root / "etc/apt/sources.list.d/kubernetes.list").read_text()
        assert source == (
            "deb [signed-by=/etc/apt/keyrings/kubernetes.gpg] "
            "https://pkgs.k8s.io/core:/stable:/v1.29/deb/ /\n"
        )
        assert s.check()

    def test_key_download_failure(self, probe, runner):
        runner.on("curl", return_code=22, stderr="curl: (22) The requested URL returned error: 404")
        result = self._step(probe).apply()
        assert not result.ok
        assert result.metadata["stage"] == "fetch-key"
        assert "404" in result.detail

    def test_docker_source_uses_arch_and_codename(self, probe, runner):
        from nodeprov.core.steps.packages import DOCKER_KEY_URL, DOCKER_SOURCE

        runner.on("dpkg", "--print-architecture", stdout="arm64\n")
        s = AptRepositoryStep(probe, "docker", DOCKER_KEY_URL, DOCKER_SOURCE)
        assert s.source_line() == (
            "deb [arch=arm64 signed-by=/etc/apt/keyrings/docker.gpg] "
            "https://download.docker.com/linux/ubuntu jammy stable"
        )


class TestPackageInstallStep:
    def test_only_missing_packages_are_installed(self, probe, runner):
        runner.on(*DPKG_QUERY, "kubelet", stdout="install ok installed 1.29.2-1.1")
        runner.on(*DPKG_QUERY, "kubeadm", stdout="install ok installed 1.28.0-1.1")
        runner.on(*DPKG_QUERY, "kubectl", return_code=1, stderr="no packages found")
        s = PackageInstallStep(
            probe,
            {"kubelet": "1.29.2-1.1", "kubeadm": "1.29.2-1.1", "kubectl": "1.29.2-1.1"},
            step_id="kube-packages-install",
        )

        assert s.missing() == {"kubeadm": "1.29.2-1.1", "kubectl": "1.29.2-1.1"}
        result = s.apply()
        assert result.ok
        install = runner.calls_to("apt-get", "install")[0]
        assert install[-2:] == ["kubeadm=1.29.2-1.1", "kubectl=1.29.2-1.1"]
        assert runner.calls_to("apt-get", "update")

    def test_half_installed_is_missing(self, probe, runner):
        runner.on(*DPKG_QUERY, "curl", stdout="deinstall ok config-files 7.81.0")
        s = PackageInstallStep(probe, {"curl": None}, step_id="apt-prerequisites")
        assert s.missing() == {"curl": None}

    def test_install_failure_stage(self, probe, runner):
        runner.on("apt-get", "install", return_code=100,
                  stderr="E: Version '1.29.2-1.1' for 'kubelet' was not found")
        s = PackageInstallStep(probe, {"kubelet": "1.29.2-1.1"}, step_id="kube-packages-install")
        result = s.apply()
        assert result.metadata["stage"] == "install"
        assert "was not found" in result.detail

    def test_update_failure_stage(self, probe, runner):
        runner.on("apt-get", "update", return_code=100, stderr="E: Could not get lock")
        result = PackageInstallStep(probe, {"curl": None}, step_id="apt-prerequisites").apply()
        assert result.metadata["stage"] == "update"
        assert runner.calls_to("apt-get", "install") == []


class TestPackageHoldStep:
    def test_holds_only_unheld(self, probe, runner):
        runner.on("apt-mark", "showhold", stdout="kubelet\n")
        s = PackageHoldStep(probe, ["kubelet", "kubeadm"], step_id="kube-packages-hold")
        assert not s.check()
        s.apply()
        assert runner.calls_to("apt-mark", "hold") == [["apt-mark", "hold", "kubeadm"]]


# ── Runtime and services ─────────────────────────────────────────────


class TestContainerdConfigStep:
    def test_generates_when_missing(self, probe, runner, host_root):
        runner.on("containerd", "config", "default", stdout=CONTAINERD_DEFAULT)
        s = ContainerdConfigStep(probe)
        assert not s.check()

        result = s.apply()
        assert result.changed
        text = (host_root / "etc/containerd/config.toml").read_text()
        assert cgroup_settings(text) == ["true"]
        assert "runtime_type" in text
        assert s.check()

    def test_patches_existing_config(self, probe, runner, host_root):
        write(host_root, "/etc/containerd/config.toml", CONTAINERD_DEFAULT)
        assert ContainerdConfigStep(probe).apply().changed
        assert runner.calls_to("containerd") == []
        assert "SystemdCgroup = true" in (host_root / "etc/containerd/config.toml").read_text()

    def test_generate_failure_stage(self, probe, runner):
        runner.on("containerd", "config", "default", return_code=127, stderr="containerd: not found")
        result = ContainerdConfigStep(probe).apply()
        assert not result.ok
        assert result.metadata["stage"] == "generate"

    def test_patch_failure_stage(self, probe, runner):
        runner.on("containerd", "config", "default", stdout="version = 2\n")
        result = ContainerdConfigStep(probe).apply()
        assert not result.ok
        assert result.metadata["stage"] == "patch"


class TestServiceStep:
    def test_restarts_when_config_is_newer(self, probe, runner, host_root):
        write(host_root, "/etc/containerd/config.toml", "x")
        runner.on("systemctl", "show", "containerd", stdout="ActiveEnterTimestamp=@1")
        s = ServiceStep(probe, "containerd", watch=["/etc/containerd/config.toml"])

        assert not s.check()
        assert s.apply().ok
        assert runner.calls_to("systemctl", "restart") == [["systemctl", "restart", "containerd"]]

    def test_fresh_start_is_satisfied(self, probe, runner, host_root):
        write(host_root, "/etc/containerd/config.toml", "x")
        runner.on("systemctl", "show", "containerd", stdout="ActiveEnterTimestamp=@2000")
        os.utime(host_root / "etc/containerd/config.toml", (1000.4, 1000.4))
        assert ServiceStep(probe, "containerd", watch=["/etc/containerd/config.toml"]).check()

    def test_restart_in_same_second_as_config_write(self, probe, runner, host_root):
        path = write(host_root, "/etc/containerd/config.toml", "x")
        os.utime(path, (1000.4, 1000.4))
        runner.on("systemctl", "show", "containerd", stdout="ActiveEnterTimestamp=@1000")
        assert ServiceStep(probe, "containerd", watch=["/etc/containerd/config.toml"]).check()

    def test_start_a_second_before_config_write_is_stale(self, probe, runner, host_root):
        path = write(host_root, "/etc/containerd/config.toml", "x")
        os.utime(path, (1001.2, 1001.2))
        runner.on("systemctl", "show", "containerd", stdout="ActiveEnterTimestamp=@1000")
        assert not ServiceStep(probe, "containerd", watch=["/etc/containerd/config.toml"]).check()

    def test_enables_disabled_unit(self, probe, runner):
        runner.on("systemctl", "is-enabled", return_code=1)
        runner.on("systemctl", "enable",
                  effect=lambda cmd, _: runner.on("systemctl", "is-enabled", return_code=0))
        s = ServiceStep(probe, "kubelet", require_active=False)

        assert s.apply().ok
        assert runner.calls_to("systemctl", "enable") == [["systemctl", "enable", "kubelet"]]
        assert runner.calls_to("systemctl", "start") == [["systemctl", "start", "kubelet"]]
        assert s.verify()

    def test_kubelet_need_not_be_active(self, probe, runner):
        runner.on("systemctl", "is-active", return_code=3)
        assert ServiceStep(probe, "kubelet", require_active=False).check()
        assert not ServiceStep(probe, "containerd").check()


# ── Cluster ──────────────────────────────────────────────────────────

LOG_PATH = "/var/log/nodeprov/kubeadm-init.log"


class TestClusterInitStep:
    def test_skipped_when_initialized(self, probe, runner, host_root):
        write(host_root, "/etc/kubernetes/manifests/kube-apiserver.yaml", "")
        write(host_root, "/etc/kubernetes/admin.conf", "")
        s = ClusterInitStep(probe, "10.0.0.10", "10.244.0.0/16", LOG_PATH)

        assert s.check()
        assert s.apply().outcome == "unchanged"
        assert runner.calls_to("kubeadm") == []
        assert runner.calls_to("kubectl")[-1][-2:] == ["get", "--raw=/readyz"]

    def test_unreachable_api_server_is_not_satisfied(self, probe, runner, host_root):
        write(host_root, "/etc/kubernetes/manifests/kube-apiserver.yaml", "")
        write(host_root, "/etc/kubernetes/admin.conf", "")
        kubeconfig = str(probe.path("/etc/kubernetes/admin.conf"))
        runner.on("kubectl", "--kubeconfig", kubeconfig, "get", "--raw=/readyz", return_code=1,
                  stderr="The connection to the server 10.0.0.10:6443 was refused")
        s = ClusterInitStep(probe, "10.0.0.10", "10.244.0.0/16", LOG_PATH)

        assert not s.check()
        result = s.apply()
        assert not result.ok
        assert result.metadata == {"stage": "api-server", "log_path": LOG_PATH}
        assert "kubeadm reset" in result.detail
        assert runner.calls_to("kubeadm") == []

    def test_runs_init_and_writes_log(self, probe, runner, host_root):
        runner.on("kubeadm", "init", stdout="Your Kubernetes control-plane has initialized successfully!\n")
        s = ClusterInitStep(probe, "10.0.0.10", "10.244.0.0/16", LOG_PATH)

        result = s.apply()
        assert result.ok
        assert runner.calls_to("kubeadm", "init") == [[
            "kubeadm", "init",
            "--apiserver-advertise-address=10.0.0.10",
            "--pod-network-cidr=10.244.0.0/16",
        ]]
        log = host_root / LOG_PATH.lstrip("/")
        assert "initialized successfully" in log.read_text()
        assert stat.S_IMODE(log.stat().st_mode) == 0o600

    def test_failure_names_log(self, probe, runner, host_root):
        runner.on("kubeadm", "init", return_code=1,
                  stderr="[ERROR Port-6443]: Port 6443 is in use\n")
        result = ClusterInitStep(probe, "10.0.0.10", "10.244.0.0/16", LOG_PATH).apply()

        assert not result.ok
        assert result.metadata == {"stage": "init", "log_path": LOG_PATH}
        assert f"see {LOG_PATH}" in result.detail
        assert "Port 6443 is in use" in (host_root / LOG_PATH.lstrip("/")).read_text()

    def test_image_pull_failure_skips_init(self, probe, runner):
        runner.on("kubeadm", "config", "images", "pull", return_code=1, stderr="pull failed")
        result = ClusterInitStep(probe, "10.0.0.10", "10.244.0.0/16", LOG_PATH).apply()
        assert result.metadata["stage"] == "images"
        assert runner.calls_to("kubeadm", "init") == []


class TestAdminKubeconfigStep:
    def test_copies_admin_conf(self, probe, host_root):
        write(host_root, "/etc/kubernetes/admin.conf", "kind: Config\n")
        s = AdminKubeconfigStep(probe)
        assert s.apply().changed
        assert (host_root / "root/.kube/config").read_text() == "kind: Config\n"
        assert s.check()

    def test_missing_source(self, probe):
        assert not AdminKubeconfigStep(probe).apply().ok


class TestNetworkAddonStep:
    def test_applies_manifest(self, probe, runner):
        url = "https://example.test/flannel.yml"
        kubeconfig = str(probe.path("/etc/kubernetes/admin.conf"))
        runner.on("kubectl", "--kubeconfig", kubeconfig, "get", return_code=1, stderr="not found")
        s = NetworkAddonStep(probe, url)

        assert not s.check()
        assert s.apply().changed
        assert runner.calls_to("kubectl", "--kubeconfig", kubeconfig, "apply") == [
            ["kubectl", "--kubeconfig", kubeconfig, "apply", "-f", url]
        ]

    def test_apply_failure(self, probe, runner):
        runner.on("kubectl", return_code=1, stderr="The connection to the server was refused")
        result = NetworkAddonStep(probe, "https://example.test/flannel.yml").apply()
        assert not result.ok
        assert "connection to the server was refused" in result.detail


class TestJoinCommandStep:
    PATH = "/var/lib/nodeprov/join-command.txt"

    def test_writes_join_command(self, probe, runner, host_root):
        runner.on("kubeadm", "token", "create", stdout=JOIN_LINE + "\n")
        s = JoinCommandStep(probe, self.PATH)
        assert not s.check()

        assert s.apply().changed
        out = host_root / self.PATH.lstrip("/")
        assert out.read_text() == JOIN_LINE + "\n"
        assert stat.S_IMODE(out.stat().st_mode) == 0o600
        assert s.check()

    def test_existing_valid_file_is_kept(self, probe, runner, host_root):
        write(host_root, self.PATH, JOIN_LINE + "\n")
        assert JoinCommandStep(probe, self.PATH).apply().outcome == "unchanged"
        assert runner.calls_to("kubeadm") == []

    def test_garbage_file_is_replaced(self, probe, host_root):
        write(host_root, self.PATH, "not a join command\n")
        assert not JoinCommandStep(probe, self.PATH).check()

    def test_unusable_output(self, probe, runner):
        runner.on("kubeadm", "token", "create", stdout="kubeadm join 10.0.0.5:6443\n")
        result = JoinCommandStep(probe, self.PATH).apply()
        assert not result.ok
        assert "missing --token" in result.detail


class TestWorkerJoinStep:
    CREDENTIAL = JoinCredential(
        endpoint="10.0.0.5:6443",
        token="abcdef.0123456789abcdef",
        ca_cert_hash=CA_HASH,
    )

    def test_join_runs_exactly_once(self, probe, runner, host_root):
        runner.on("kubeadm", "join",
                  effect=lambda cmd, _: write(host_root, "/etc/kubernetes/kubelet.conf", ""))
        s = WorkerJoinStep(probe, self.CREDENTIAL)

        assert s.apply().changed
        assert s.apply().outcome == "unchanged"
        assert runner.calls_to("kubeadm", "join") == [[
            "kubeadm", "join", "10.0.0.5:6443",
            "--token", "abcdef.0123456789abcdef",
            "--discovery-token-ca-cert-hash", CA_HASH,
        ]]

    def test_already_joined(self, probe, runner, host_root):
        write(host_root, "/etc/kubernetes/kubelet.conf", "")
        s = WorkerJoinStep(probe, self.CREDENTIAL)
        assert s.check()
        assert runner.calls_to("kubeadm") == []

    def test_failure_detail_hides_token(self, probe, runner):
        runner.on("kubeadm", "join", return_code=1,
                  stderr="couldn't validate the identity of the API Server")
        result = WorkerJoinStep(probe, self.CREDENTIAL).apply()
        assert not result.ok
        assert "abcdef.0123456789abcdef" not in result.detail
        assert "<token>" in result.detail
