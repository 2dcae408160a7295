"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads ledger settings from YAML into ``ledger_config.schema`` dataclasses
and applies environment overrides.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structural problems  -> ``ValueError`` from the schema.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerSettings

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_DATABASE_URL = "LEDGER_DATABASE_URL"
ENV_LOG_LEVEL = "LEDGER_LOG_LEVEL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    path: Path | str | None = None,
    environ: dict[str, str] | None = None,
) -> LedgerSettings:
    """
    Build settings from the packaged defaults, an optional override file and
    the environment.

    Keys in ``path`` replace the defaults (mappings merge, lists replace).
    ``LEDGER_DATABASE_URL`` and ``LEDGER_LOG_LEVEL`` win over both.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = _merge(data, load_yaml_file(Path(path)))

    env = os.environ if environ is None else environ
    if env.get(ENV_DATABASE_URL):
        data["database_url"] = env[ENV_DATABASE_URL]
    if env.get(ENV_LOG_LEVEL):
        data["log_level"] = env[ENV_LOG_LEVEL]

    return LedgerSettings.from_dict(data)
