"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Reads YAML settings and parses them into ``InventoryCoreConfig``.  The
packaged ``defaults.yaml`` is the base; a site file overrides it key by
key (``retry`` is merged one level deep).

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys  -> ``ValueError`` naming them.
* Invalid values  -> ``ValueError`` from the schema's ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import InventoryCoreConfig, RetrySettings
from inventory_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load one YAML file as a dict (empty file -> empty dict).

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Override ``base`` key by key; nested ``retry`` mappings are merged."""
    merged = dict(base)
    for key, value in override.items():
        if key == "retry" and isinstance(value, dict):
            merged["retry"] = {**merged.get("retry", {}), **value}
        else:
            merged[key] = value
    return merged


def parse_config(data: dict[str, Any]) -> InventoryCoreConfig:
    """
    Build an ``InventoryCoreConfig`` from a settings dict.

    Raises:
        ValueError: on unknown keys or invalid values.
    """
    known = {f.name for f in fields(InventoryCoreConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    retry_known = {f.name for f in fields(RetrySettings)}
    retry_data = data.get("retry") or {}
    retry_unknown = sorted(set(retry_data) - retry_known)
    if retry_unknown:
        raise ValueError(f"Unknown retry keys: {', '.join(retry_unknown)}")

    values = dict(data)
    values["retry"] = RetrySettings(**retry_data)
    return InventoryCoreConfig.from_dict(values)


def load_config(path: str | Path | None = None) -> InventoryCoreConfig:
    """
    Load settings: packaged defaults, overridden by ``path`` when given.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_settings(data, load_yaml_file(Path(path)))
    config = parse_config(data)
    logger.info(
        "inventory_config_loaded",
        extra={
            "source": str(path) if path is not None else "defaults",
            "checksum": compute_checksum(data),
        },
    )
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of a settings dict."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
