"""Load and validate application configuration from YAML files."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


DEFAULT_TASK_HOPS = 100
DEFAULT_SUBTASK_HOPS = 1000


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _get_required(data: dict, key: str, context: str = "config") -> Any:
    """Get a required (dotted) key from a dict, raising ValueError with a clear message."""
    keys = key.split(".")
    current = data
    for k in keys:
        if not isinstance(current, dict) or k not in current:
            raise ValueError(f"Missing required key '{key}' in {context}")
        current = current[k]
    return current


def _validate_range(value: Any, name: str, minimum: int = 1, maximum: int | None = None) -> None:
    """Validate a numeric config value is within bounds."""
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"Config '{name}' must be an integer >= {minimum}, got {value!r}")
    if maximum is not None and value > maximum:
        raise ValueError(f"Config '{name}' must be <= {maximum}, got {value!r}")


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------


@dataclass
class HierarchyConfig:
    """Bounds for the ancestor walks performed on parent changes."""

    max_task_hops: int = DEFAULT_TASK_HOPS
    max_subtask_hops: int = DEFAULT_SUBTASK_HOPS


@dataclass
class AppConfig:
    """Top-level settings loaded from config/app.yaml."""

    app_name: str
    db_path: str
    dashboard_host: str
    dashboard_port: int
    hierarchy: HierarchyConfig = field(default_factory=HierarchyConfig)
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:8000", "http://localhost:3000"]
    )


def load_app_config(path: Path) -> AppConfig:
    """Load application configuration from a YAML file.

    Parameters
    ----------
    path:
        Path to the YAML file (e.g. ``config/app.yaml``).

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If a required key is missing or a numeric value is out of range.
    """
    if not path.exists():
        raise FileNotFoundError(f"App config not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    hierarchy_raw = data.get("hierarchy") or {}
    hierarchy = HierarchyConfig(
        max_task_hops=hierarchy_raw.get("max_task_hops", DEFAULT_TASK_HOPS),
        max_subtask_hops=hierarchy_raw.get("max_subtask_hops", DEFAULT_SUBTASK_HOPS),
    )

    config = AppConfig(
        app_name=_get_required(data, "app_name", path.name),
        db_path=str(Path(_get_required(data, "database.path", path.name)).expanduser()),
        dashboard_host=_get_required(data, "dashboard.host", path.name),
        dashboard_port=_get_required(data, "dashboard.port", path.name),
        hierarchy=hierarchy,
    )
    cors_raw = data.get("cors_origins")
    if cors_raw:
        if isinstance(cors_raw, str):
            cors_raw = cors_raw.split(",")
        config.cors_origins = [o.strip() for o in cors_raw if o and o.strip()]

    _validate_range(config.dashboard_port, "dashboard.port", 1, 65535)
    _validate_range(hierarchy.max_task_hops, "hierarchy.max_task_hops", 1)
    _validate_range(hierarchy.max_subtask_hops, "hierarchy.max_subtask_hops", 1)

    logger.debug("Loaded config %s from %s", config.app_name, path)
    return config
