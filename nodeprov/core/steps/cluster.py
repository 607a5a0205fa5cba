"""
Cluster steps — kubeadm bootstrap on the control plane, join on workers.

``kubeadm init`` is not idempotent: running it again on an initialized
node would break the cluster. The init step is satisfied when the static
API-server manifest and admin kubeconfig exist and the API server
answers. If the files exist but the API server does not, an earlier
init stopped part-way; the step fails and points at ``kubeadm reset``
instead of re-running init.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from nodeprov.adapters.base import CommandResult
from nodeprov.core.models.config import JoinCredential
from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import ADMIN_KUBECONFIG, HostProbe
from nodeprov.core.steps.base import Step

logger = logging.getLogger(__name__)

ROOT_KUBECONFIG = "/root/.kube/config"


class ClusterInitStep(Step):
    """Pull control-plane images and run ``kubeadm init``.

    Output of both commands is written to ``log_path`` whether or not
    they succeed; a failure's detail names that file.
    """

    category = "cluster-init"

    def __init__(
        self,
        probe: HostProbe,
        advertise_address: str,
        pod_cidr: str,
        log_path: str,
        **kwargs,
    ):
        super().__init__(
            kwargs.pop("step_id", "cluster-init"),
            f"Initialize control plane on {advertise_address} (pods {pod_cidr})",
            probe,
            **kwargs,
        )
        self.advertise_address = advertise_address
        self.pod_cidr = pod_cidr
        self.log_path = log_path

    def check(self) -> bool:
        return self.probe.cluster_initialized() and self.probe.api_server_ready()

    def _apply(self) -> ApplyResult:
        if self.probe.cluster_initialized():
            return ApplyResult.failure(
                "control-plane files from an earlier kubeadm init exist but the API "
                f"server does not answer; inspect {self.log_path}, then run "
                "`kubeadm reset -f` before provisioning again",
                stage="api-server", log_path=self.log_path,
            )

        results: list[CommandResult] = []

        pulled = self.run(["kubeadm", "config", "images", "pull"])
        results.append(pulled)
        if not pulled.ok:
            self._write_log(results)
            return ApplyResult.failure(
                f"{pulled.failure_detail()}; see {self.log_path}",
                stage="images", log_path=self.log_path,
            )

        init = self.run([
            "kubeadm", "init",
            f"--apiserver-advertise-address={self.advertise_address}",
            f"--pod-network-cidr={self.pod_cidr}",
        ])
        results.append(init)
        self._write_log(results)

        if not init.ok:
            return ApplyResult.failure(
                f"{init.failure_detail()}; see {self.log_path}",
                stage="init", log_path=self.log_path,
            )
        return ApplyResult.success("control plane initialized", log_path=self.log_path)

    def _write_log(self, results: list[CommandResult]) -> None:
        stamp = datetime.now(UTC).isoformat()
        chunks = [f"# nodeprov cluster-init {stamp}\n"]
        for r in results:
            chunks.append(f"\n$ {r.display}\n")
            if r.stdout:
                chunks.append(r.stdout if r.stdout.endswith("\n") else r.stdout + "\n")
            if r.stderr:
                chunks.append(r.stderr if r.stderr.endswith("\n") else r.stderr + "\n")
            status = r.error or f"exit {r.return_code}"
            chunks.append(f"# {status}\n")
        self.write_file(self.log_path, "".join(chunks), mode=0o600)
        logger.info("kubeadm output written to %s", self.log_path)


class AdminKubeconfigStep(Step):
    """Copy the cluster admin kubeconfig to root's ``~/.kube/config``."""

    category = "file"

    def __init__(self, probe: HostProbe, target: str = ROOT_KUBECONFIG, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "admin-kubeconfig"),
            f"Install admin kubeconfig at {target}",
            probe,
            **kwargs,
        )
        self.target = target

    def check(self) -> bool:
        source = self.probe.read_text(ADMIN_KUBECONFIG)
        return source is not None and self.probe.read_text(self.target) == source

    def _apply(self) -> ApplyResult:
        source = self.probe.read_text(ADMIN_KUBECONFIG)
        if source is None:
            return ApplyResult.failure(f"{ADMIN_KUBECONFIG} does not exist")
        self.write_file(self.target, source, mode=0o600)
        return ApplyResult.success(f"copied {ADMIN_KUBECONFIG} to {self.target}")


class NetworkAddonStep(Step):
    """Apply the pod network add-on manifest."""

    category = "cluster-addon"

    def __init__(self, probe: HostProbe, manifest_url: str, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "network-addon"),
            f"Apply network add-on {manifest_url}",
            probe,
            **kwargs,
        )
        self.manifest_url = manifest_url

    def check(self) -> bool:
        return self.probe.manifest_applied(self.manifest_url)

    def _apply(self) -> ApplyResult:
        result = self.run([
            "kubectl", "--kubeconfig", str(self.probe.path(ADMIN_KUBECONFIG)),
            "apply", "-f", self.manifest_url,
        ])
        if not result.ok:
            return ApplyResult.failure(result.failure_detail())
        return ApplyResult.success("network add-on applied")


class JoinCommandStep(Step):
    """Write a worker join command to ``path`` as one line."""

    category = "join-credential"

    def __init__(self, probe: HostProbe, path: str, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "join-command"),
            f"Write worker join command to {path}",
            probe,
            **kwargs,
        )
        self.path = path

    def current(self) -> JoinCredential | None:
        text = self.probe.read_text(self.path)
        if not text or not text.strip():
            return None
        try:
            return JoinCredential.from_command(text.strip().splitlines()[0])
        except ValueError:
            return None

    def check(self) -> bool:
        return self.current() is not None

    def _apply(self) -> ApplyResult:
        result = self.run(["kubeadm", "token", "create", "--print-join-command"])
        if not result.ok:
            return ApplyResult.failure(result.failure_detail())

        line = result.stdout.strip()
        try:
            credential = JoinCredential.from_command(line)
        except ValueError as e:
            return ApplyResult.failure(f"kubeadm printed an unusable join command: {e}")

        self.write_file(self.path, credential.to_command() + "\n", mode=0o600)
        return ApplyResult.success(f"join command written to {self.path}", path=self.path)


class WorkerJoinStep(Step):
    """Join this node to an existing cluster with ``kubeadm join``."""

    category = "cluster-join"

    def __init__(self, probe: HostProbe, credential: JoinCredential, **kwargs):
        super().__init__(
            kwargs.pop("step_id", "worker-join"),
            f"Join cluster at {credential.endpoint}",
            probe,
            **kwargs,
        )
        self.credential = credential

    def check(self) -> bool:
        return self.probe.kubelet_joined()

    def _apply(self) -> ApplyResult:
        logger.info("Running %s", self.credential.redacted())
        result = self.run(self.credential.to_args())
        if not result.ok:
            # the token must not leak into reports
            detail = result.failure_detail().replace(self.credential.token, "<token>")
            return ApplyResult.failure(detail)
        return ApplyResult.success(f"joined {self.credential.endpoint}")
