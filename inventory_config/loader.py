"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Reads a YAML file into an ``InventoryConfig`` and computes a deterministic
checksum for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import InventoryConfig

ROOT_KEY = "inventory"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_config(data: dict[str, Any]) -> InventoryConfig:
    """Accepts either a flat mapping or one nested under ``inventory:``."""
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping")
    if ROOT_KEY in data:
        if set(data) != {ROOT_KEY}:
            raise ValueError(f"Only '{ROOT_KEY}' may appear at the root")
        data = data[ROOT_KEY] or {}
    return InventoryConfig.from_dict(data)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; identical data, identical hash."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
