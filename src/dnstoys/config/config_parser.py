"""Configuration loading helpers for dnstoys.

Brief:
  Reads one or more YAML files, merges them in order (later files override
  earlier ones key by key), validates the result into an AppConfig and checks
  that every enabled service has the settings it needs.

Inputs:
  - YAML config paths or already-parsed mappings

Outputs:
  - AppConfig instances; ConfigError on any problem
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .config_schema import AppConfig

logger = logging.getLogger(__name__)


def merge_config(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Brief: Recursively merge override into a copy of base.

    Inputs:
      - base: Mapping loaded from an earlier config file.
      - override: Mapping loaded from a later config file.

    Outputs:
      - dict: New mapping; nested mappings are merged, other values replaced.

    Example:
      >>> merge_config({"fx": {"enabled": True}}, {"fx": {"api_key": "k"}})
      {'fx': {'enabled': True, 'api_key': 'k'}}
    """

    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = value
    return merged


def load_yaml_file(path: str) -> Dict[str, Any]:
    """Brief: Read a single YAML config file.

    Inputs:
      - path: Filesystem path.

    Outputs:
      - dict: Parsed mapping (empty for an empty file).

    Raises:
      - ConfigError: When the file cannot be read or parsed, or its root is
        not a mapping.
    """

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"error reading config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"error parsing config {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {path}: root must be a mapping")
    return data


def check_required(cfg: AppConfig) -> None:
    """Brief: Verify that each enabled service has its required settings.

    Inputs:
      - cfg: Validated AppConfig.

    Outputs:
      - None.

    Raises:
      - ConfigError: Listing every missing key.
    """

    missing: List[str] = []

    if (cfg.timezones.enabled or cfg.weather.enabled) and not cfg.timezones.geo_filepath:
        missing.append("timezones.geo_filepath")

    if cfg.fx.enabled:
        if not cfg.fx.api_key:
            missing.append("fx.api_key")
        if cfg.fx.refresh_interval is None:
            missing.append("fx.refresh_interval")

    if cfg.weather.enabled:
        if cfg.weather.max_entries is None:
            missing.append("weather.max_entries")
        if cfg.weather.cache_ttl is None:
            missing.append("weather.cache_ttl")

    if missing:
        raise ConfigError("missing required configuration: " + ", ".join(missing))


def build_config(data: Mapping[str, Any]) -> AppConfig:
    """Brief: Validate a raw mapping into an AppConfig.

    Inputs:
      - data: Mapping shaped like the YAML configuration.

    Outputs:
      - AppConfig.

    Raises:
      - ConfigError: On validation errors or missing required settings.
    """

    try:
        cfg = AppConfig(**dict(data))
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
    check_required(cfg)
    return cfg


def parse_config_files(paths: Iterable[str]) -> AppConfig:
    """Brief: Load, merge and validate config files in order.

    Inputs:
      - paths: Iterable of YAML file paths; later files win.

    Outputs:
      - AppConfig.

    Raises:
      - ConfigError: When no file is given, a file is unreadable or the merged
        configuration is invalid.
    """

    merged: Dict[str, Any] = {}
    count = 0
    for path in paths:
        logger.info("reading config: %s", path)
        merged = merge_config(merged, load_yaml_file(path))
        count += 1

    if count == 0:
        raise ConfigError("no configuration files given")
    return build_config(merged)
