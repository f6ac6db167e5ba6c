# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/config/loader.py

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .models import LauncherConfig
from ..launch.errors import ConfigurationError

log = logging.getLogger("netlaunch")

DEFAULT_CONFIG_NAME = "netlaunch.yaml"


def find_config_file(explicit: Optional[Path] = None) -> Path | None:
    """
    Locate the launcher config using this priority:

    1. an explicit path (must exist)
    2. NETLAUNCH_CONFIG environment variable
    3. netlaunch.yaml in the current directory
    """
    if explicit is not None:
        if not Path(explicit).is_file():
            raise ConfigurationError(f"config file {explicit} does not exist")
        return Path(explicit)

    env = os.environ.get("NETLAUNCH_CONFIG")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("NETLAUNCH_CONFIG=%s does not exist, using defaults", env)
        return None

    p = Path.cwd() / DEFAULT_CONFIG_NAME
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def load_config(path: str | Path | None = None) -> LauncherConfig:
    """
    Load and validate the launcher config.

    Every key is optional; with no file at all the built-in defaults apply.
    ``${ENV_VAR}`` placeholders are resolved at load time.
    """
    found = find_config_file(Path(path) if path is not None else None)
    if found is None:
        log.debug("No config file found, using defaults")
        return LauncherConfig()

    log.debug("Loading config from %s", found)
    try:
        data = _load_yaml(found)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"config file {found} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {found} must contain a mapping")

    try:
        return LauncherConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid config file {found}:\n{exc}") from exc
