"""
Provisioning configuration and the worker join credential.

Values come from (highest precedence first) CLI flags, ``NODEPROV_*``
environment variables, the YAML config file, and the defaults below.
The defaults match the versions the node bootstrap was written against.
"""

from __future__ import annotations

import re
import shlex
from ipaddress import IPv4Address, IPv4Network
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Role = Literal["control-plane", "worker"]
ROLES: tuple[str, ...] = ("control-plane", "worker")

DEFAULT_K8S_VERSION = "1.29.2-1.1"
DEFAULT_POD_CIDR = "10.244.0.0/16"
DEFAULT_ADDON_URL = (
    "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
)
DEFAULT_JOIN_COMMAND_PATH = "/var/lib/nodeprov/join-command.txt"
DEFAULT_INIT_LOG_PATH = "/var/log/nodeprov/kubeadm-init.log"

_TOKEN_RE = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")
_HASH_RE = re.compile(r"^sha256:[a-f0-9]{64}$")
_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)(-[\w.]+)?$")


class JoinCredential(BaseModel):
    """Everything a worker needs to authenticate into a cluster."""

    endpoint: str                 # host:port of the API server
    token: str
    ca_cert_hash: str

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, v: str) -> str:
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"endpoint must be host:port, got {v!r}")
        return v

    @field_validator("token")
    @classmethod
    def _check_token(cls, v: str) -> str:
        if not _TOKEN_RE.match(v):
            raise ValueError("token must look like 'abcdef.0123456789abcdef'")
        return v

    @field_validator("ca_cert_hash")
    @classmethod
    def _check_hash(cls, v: str) -> str:
        v = v.lower()
        if not _HASH_RE.match(v):
            raise ValueError("ca_cert_hash must be 'sha256:' followed by 64 hex characters")
        return v

    @classmethod
    def from_command(cls, command: str) -> JoinCredential:
        """Parse the one-line output of ``kubeadm token create --print-join-command``.

        A leading ``sudo`` is tolerated. Raises ``ValueError`` when the
        line is not a join command or lacks token / hash.
        """
        try:
            parts = shlex.split(command.strip())
        except ValueError as e:
            raise ValueError(f"Cannot parse join command: {e}") from e

        if parts and parts[0] == "sudo":
            parts = parts[1:]
        if len(parts) < 3 or parts[:2] != ["kubeadm", "join"]:
            raise ValueError("Join command must start with 'kubeadm join'")

        endpoint = ""
        opts: dict[str, str] = {}
        it = iter(parts[2:])
        for token in it:
            if token.startswith("--"):
                name, eq, value = token[2:].partition("=")
                if not eq:
                    value = next(it, "")
                opts[name] = value
            elif not endpoint:
                endpoint = token

        missing = [] if endpoint else ["endpoint"]
        for flag in ("token", "discovery-token-ca-cert-hash"):
            if not opts.get(flag):
                missing.append(f"--{flag}")
        if missing:
            raise ValueError(f"Join command is missing {', '.join(missing)}")

        return cls(
            endpoint=endpoint,
            token=opts["token"],
            ca_cert_hash=opts["discovery-token-ca-cert-hash"],
        )

    def to_args(self) -> list[str]:
        """Argument list for ``kubeadm join``."""
        return [
            "kubeadm", "join", self.endpoint,
            "--token", self.token,
            "--discovery-token-ca-cert-hash", self.ca_cert_hash,
        ]

    def to_command(self) -> str:
        """Single-line command form, as written to the hand-off file."""
        return shlex.join(self.to_args())

    def redacted(self) -> str:
        """Command form safe for logs (token secret half masked)."""
        token_id = self.token.split(".", 1)[0]
        return (
            f"kubeadm join {self.endpoint} --token {token_id}.**************** "
            f"--discovery-token-ca-cert-hash {self.ca_cert_hash}"
        )


class ProvisionConfig(BaseModel):
    """Role-independent provisioning settings."""

    kubernetes_version: str = DEFAULT_K8S_VERSION
    pod_cidr: str = DEFAULT_POD_CIDR
    node_ip: str | None = None              # None = detect from `hostname -I`
    network_addon_url: str = DEFAULT_ADDON_URL
    join_command_path: str = DEFAULT_JOIN_COMMAND_PATH
    init_log_path: str = DEFAULT_INIT_LOG_PATH

    halt_on_failure: bool = True
    command_timeout: int = Field(default=300, gt=0)
    init_timeout: int = Field(default=900, gt=0)
    allow_unsupported_os: bool = False

    join: JoinCredential | None = None

    @field_validator("kubernetes_version")
    @classmethod
    def _check_version(cls, v: str) -> str:
        v = v.lstrip("v")
        if not _VERSION_RE.match(v):
            raise ValueError(
                f"kubernetes_version must be an exact package version like "
                f"'{DEFAULT_K8S_VERSION}', got {v!r}"
            )
        return v

    @field_validator("pod_cidr")
    @classmethod
    def _check_cidr(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError(f"pod_cidr must be an IPv4 CIDR with a prefix length, got {v!r}")
        try:
            return str(IPv4Network(v))
        except ValueError as e:
            raise ValueError(f"pod_cidr must be an IPv4 CIDR, got {v!r}: {e}") from e

    @field_validator("node_ip")
    @classmethod
    def _check_node_ip(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            return str(IPv4Address(v))
        except ValueError as e:
            raise ValueError(f"node_ip must be an IPv4 address, got {v!r}") from e

    @field_validator("join", mode="before")
    @classmethod
    def _parse_join(cls, v: object) -> object:
        # Accept the raw command line as well as the structured form.
        if isinstance(v, str):
            return JoinCredential.from_command(v) if v.strip() else None
        return v

    @property
    def kubernetes_minor(self) -> str:
        """``1.29.2-1.1`` → ``1.29`` (selects the package repository)."""
        major, minor, _ = self.kubernetes_version.split(".", 2)
        return f"{major}.{minor}"
