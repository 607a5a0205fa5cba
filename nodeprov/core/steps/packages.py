"""
Package steps — apt repositories, pinned installs, holds.

Install steps only touch what is missing: packages already present at
the pinned version are left out of the ``apt-get install`` command.
"""

from __future__ import annotations

import os

from nodeprov.core.errors import StepCheckError
from nodeprov.core.models.result import ApplyResult
from nodeprov.core.probe.host import HostProbe
from nodeprov.core.steps.base import Step

KEYRING_DIR = "/etc/apt/keyrings"
SOURCES_DIR = "/etc/apt/sources.list.d"

DOCKER_KEY_URL = "https://download.docker.com/linux/ubuntu/gpg"
DOCKER_SOURCE = (
    "deb [arch={arch} signed-by={keyring}] "
    "https://download.docker.com/linux/ubuntu {codename} stable"
)
KUBERNETES_KEY_URL = "https://pkgs.k8s.io/core:/stable:/v{minor}/deb/Release.key"
KUBERNETES_SOURCE = "deb [signed-by={keyring}] https://pkgs.k8s.io/core:/stable:/v{minor}/deb/ /"


class AptRepositoryStep(Step):
    """Install a repository signing key and its sources.list entry.

    ``source_template`` may reference ``{arch}``, ``{codename}`` and
    ``{keyring}``; the first two are read from the host when needed.
    """

    category = "repository"

    def __init__(
        self,
        probe: HostProbe,
        name: str,
        key_url: str,
        source_template: str,
        **kwargs,
    ):
        super().__init__(
            kwargs.pop("step_id", f"apt-repo-{name}"),
            f"Configure apt repository '{name}'",
            probe,
            **kwargs,
        )
        self.name = name
        self.key_url = key_url
        self.source_template = source_template
        self.keyring = f"{KEYRING_DIR}/{name}.gpg"
        self.list_file = f"{SOURCES_DIR}/{name}.list"

    def source_line(self) -> str:
        values = {"keyring": self.keyring, "arch": "", "codename": ""}
        if "{arch}" in self.source_template:
            values["arch"] = self.probe.architecture() or "amd64"
        if "{codename}" in self.source_template:
            values["codename"] = self.probe.os_release().get("VERSION_CODENAME", "")
        return self.source_template.format(**values)

    def check(self) -> bool:
        return (
            self.probe.exists(self.keyring)
            and self.probe.config_lines(self.list_file) == [self.source_line()]
        )

    def _apply(self) -> ApplyResult:
        if not self.probe.exists(self.keyring):
            fetched = self.run(["curl", "-fsSL", self.key_url])
            if not fetched.ok:
                return ApplyResult.failure(fetched.failure_detail(), stage="fetch-key")

            keyring_path = self.probe.path(self.keyring)
            keyring_path.parent.mkdir(parents=True, exist_ok=True)
            dearmored = self.run(
                ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring_path)],
                input=fetched.stdout,
            )
            if not dearmored.ok:
                return ApplyResult.failure(dearmored.failure_detail(), stage="dearmor-key")
            if keyring_path.exists():
                os.chmod(keyring_path, 0o644)

        self.write_file(self.list_file, self.source_line() + "\n", mode=0o644)
        return ApplyResult.success(f"repository {self.name} configured")


class PackageInstallStep(Step):
    """Install packages, pinned to an exact version where one is given."""

    category = "package"

    def __init__(
        self,
        probe: HostProbe,
        packages: dict[str, str | None],
        step_id: str,
        **kwargs,
    ):
        names = ", ".join(
            f"{name}={version}" if version else name for name, version in packages.items()
        )
        super().__init__(step_id, f"Install {names}", probe, **kwargs)
        self.packages = dict(packages)

    def missing(self) -> dict[str, str | None]:
        """Packages absent or at a different version than pinned."""
        out = {}
        for name, version in self.packages.items():
            installed = self.probe.package_version(name)
            if installed is None or (version and installed != version):
                out[name] = version
        return out

    def check(self) -> bool:
        return not self.missing()

    def _apply(self) -> ApplyResult:
        missing = self.missing()

        updated = self.run(["apt-get", "update", "-y"])
        if not updated.ok:
            return ApplyResult.failure(updated.failure_detail(), stage="update")

        specs = [f"{name}={version}" if version else name for name, version in missing.items()]
        installed = self.run([
            "apt-get", "install", "-y",
            "--allow-downgrades", "--allow-change-held-packages",
            *specs,
        ])
        if not installed.ok:
            return ApplyResult.failure(installed.failure_detail(), stage="install")

        return ApplyResult.success(f"installed {' '.join(specs)}", packages=specs)


class PackageHoldStep(Step):
    """Mark packages held so unattended upgrades leave them alone."""

    category = "package-hold"

    def __init__(self, probe: HostProbe, names: list[str], step_id: str, **kwargs):
        super().__init__(step_id, f"Hold {', '.join(names)}", probe, **kwargs)
        self.names = list(names)

    def check(self) -> bool:
        return set(self.names) <= self.probe.held_packages()

    def _apply(self) -> ApplyResult:
        try:
            held = self.probe.held_packages()
        except StepCheckError:
            held = set()
        todo = [n for n in self.names if n not in held]

        result = self.run(["apt-mark", "hold", *todo])
        if not result.ok:
            return ApplyResult.failure(result.failure_detail())
        return ApplyResult.success(f"held {' '.join(todo)}")
