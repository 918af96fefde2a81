# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from dockmachine.errors import MachineError
from .models import Settings

log = logging.getLogger("dockmachine")

DEFAULT_CONFIG_PATH = Path("~/.machine/config.yaml")

# environment variable -> Settings field
ENV_OVERRIDES = {
    "MACHINE_USER": "user",
    "MACHINE_CERT_FILE": "cert",
    "MACHINE_PASSWORD": "password",
    "MACHINE_ORGANIZATION": "organization",
    "MACHINE_CERTPATH": "certpath",
}


def _config_path(path: str | Path | None) -> Path:
    if path:
        return Path(path).expanduser()
    env = os.environ.get("MACHINE_CONFIG")
    if env:
        return Path(env).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise MachineError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Resolve Settings from, lowest to highest precedence:

      1. model defaults
      2. the YAML file at ``path``, ``$MACHINE_CONFIG`` or ``~/.machine/config.yaml``
      3. ``MACHINE_*`` environment variables

    A missing config file is not an error.
    """
    cfg_path = _config_path(path)
    data: dict = {}
    if cfg_path.is_file():
        try:
            data = _load_yaml(cfg_path)
        except yaml.YAMLError as exc:
            raise MachineError(f"Unable to parse {cfg_path}: {exc}") from exc
        log.debug("loaded settings from %s", cfg_path)

    for env, key in ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if value:
            data[key] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise MachineError(f"Invalid settings in {cfg_path}: {exc}") from exc
