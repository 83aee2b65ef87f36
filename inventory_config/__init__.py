"""
inventory_config -- entrypoint for inventory engine configuration.

Responsibility:
    Produces the ``InventoryConfig`` the services run with, either from a
    YAML file (``load_config``) or from the process environment
    (``from_env``).

Architecture position:
    Configuration -- sits above ``inventory_kernel``; the kernel MUST NEVER
    import from ``inventory_config``.  Services receive the config object
    explicitly.

Environment:
    INVENTORY_CONFIG        path to a YAML file; defaults apply when unset.
    INVENTORY_DATABASE_URL  overrides ``database_url`` from any source.

Audit relevance:
    Every successful load emits an ``INVENTORY_CONFIG_TRACE`` log entry with
    the source and the checksum of the effective settings.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from inventory_config.loader import compute_checksum, load_yaml_file, parse_config
from inventory_config.schema import DEFAULT_DATABASE_URL, InventoryConfig
from inventory_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "INVENTORY_CONFIG"
DATABASE_URL_ENV = "INVENTORY_DATABASE_URL"


def load_config(path: str | Path) -> InventoryConfig:
    """Read and validate a YAML configuration file.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: unknown keys or invalid values.
    """
    path = Path(path)
    config = parse_config(load_yaml_file(path))
    _trace(config, source=str(path))
    return config


def from_env(environ: Mapping[str, str] | None = None) -> InventoryConfig:
    """Configuration selected by the environment."""
    env = os.environ if environ is None else environ
    path = env.get(CONFIG_PATH_ENV)
    if path:
        config = parse_config(load_yaml_file(Path(path)))
        source = path
    else:
        config = InventoryConfig()
        source = "defaults"

    url = env.get(DATABASE_URL_ENV)
    if url:
        config = config.with_overrides(database_url=url)
        source = f"{source}+{DATABASE_URL_ENV}"

    _trace(config, source=source)
    return config


def _trace(config: InventoryConfig, source: str) -> None:
    data = config.to_dict()
    data.pop("database_url")
    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "config_source": source,
            "checksum": compute_checksum(data),
            "allocation_policy": config.default_allocation_policy.value,
            "require_inspection": config.require_inspection,
        },
    )


__all__ = [
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
    "DEFAULT_DATABASE_URL",
    "InventoryConfig",
    "compute_checksum",
    "from_env",
    "load_config",
    "parse_config",
]
