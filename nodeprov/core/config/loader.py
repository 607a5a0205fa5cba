"""
Configuration loader — reads the YAML config file into ProvisionConfig.

Resolution order (highest first): CLI flags, NODEPROV_* environment
variables (both handled by click), the config file, model defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from nodeprov.core.models.config import ProvisionConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/nodeprov/config.yml")
CONFIG_ENV_VAR = "NODEPROV_CONFIG"


class ConfigError(Exception):
    """Raised when provisioning configuration is invalid or missing."""


def find_config_file(explicit: Path | None = None) -> Path | None:
    """Locate the config file.

    An explicit path (``--config``) must exist. Otherwise
    ``$NODEPROV_CONFIG`` and then ``/etc/nodeprov/config.yml`` are used
    when present; running without any config file is fine.
    """
    if explicit is not None:
        if not explicit.is_file():
            raise ConfigError(f"Config file not found: {explicit}")
        return explicit

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = Path(env_path)
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path} (from ${CONFIG_ENV_VAR})")
        return path

    if DEFAULT_CONFIG_PATH.is_file():
        return DEFAULT_CONFIG_PATH
    return None


def load_config(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ProvisionConfig:
    """Load and validate configuration.

    Args:
        path: Config file to read, or None for defaults only.
        overrides: Values that win over the file (CLI flags / env).
            ``None`` values are ignored.

    Raises:
        ConfigError: If the file is unreadable or the result is invalid.
    """
    data: dict[str, Any] = {}

    if path is not None:
        logger.debug("Loading config from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")

        # The file may wrap everything under a "provision" key or be flat
        section = loaded.get("provision", loaded)
        if section is None:
            section = {}
        if not isinstance(section, dict):
            raise ConfigError(
                f"Expected a mapping under 'provision' in {path}, "
                f"got {type(section).__name__}"
            )
        data = dict(section)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        config = ProvisionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {_format_errors(e)}") from e

    logger.info(
        "Config: kubernetes %s, pod CIDR %s%s",
        config.kubernetes_version,
        config.pod_cidr,
        f", from {path}" if path else "",
    )
    return config


def _format_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "config"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
