"""Shared pausegraph configuration utilities.

Centralises reading of ~/.pausegraph/configuration.json plus environment
overrides so the engine, the stores and the runtime facade share one
implementation.

Example configuration.json:

    {
      "storage": {"path": "~/.pausegraph/storage", "keep_last": 500},
      "engine": {"step_timeout_seconds": 30, "max_steps": 200}
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pausegraph.storage.retention import RetentionPolicy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

PAUSEGRAPH_CONFIG_FILE = Path.home() / ".pausegraph" / "configuration.json"

DEFAULT_MAX_STEPS = 100


def get_pausegraph_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.pausegraph/configuration.json (or `path`)."""
    config_file = path or PAUSEGRAPH_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {config_file}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _env_number(name: str, cast: type) -> Any:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return None


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_storage_path() -> Path | None:
    """Return the snapshot storage directory, or None for in-memory storage."""
    raw = os.environ.get("PAUSEGRAPH_STORAGE_PATH")
    if not raw:
        raw = get_pausegraph_config().get("storage", {}).get("path")
    return Path(raw).expanduser() if raw else None


def get_step_timeout() -> float | None:
    """Return the default per-step timeout in seconds (None disables it)."""
    value = _env_number("PAUSEGRAPH_STEP_TIMEOUT", float)
    if value is None:
        value = get_pausegraph_config().get("engine", {}).get("step_timeout_seconds")
    return float(value) if value else None


def get_max_steps() -> int:
    """Return the per-invocation step limit."""
    value = _env_number("PAUSEGRAPH_MAX_STEPS", int)
    if value is None:
        value = get_pausegraph_config().get("engine", {}).get("max_steps", DEFAULT_MAX_STEPS)
    return int(value)


def get_max_conflict_retries() -> int:
    """Return how often invoke() reloads and retries after a write conflict."""
    value = _env_number("PAUSEGRAPH_MAX_CONFLICT_RETRIES", int)
    if value is None:
        value = get_pausegraph_config().get("engine", {}).get("max_conflict_retries", 0)
    return int(value)


def get_retention_policy() -> RetentionPolicy:
    """Return the snapshot retention policy from the storage section."""
    storage = get_pausegraph_config().get("storage", {})
    return RetentionPolicy(
        keep_last=storage.get("keep_last"),
        max_age_days=storage.get("max_age_days"),
    )


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.pausegraph/configuration.json and env."""

    storage_path: Path | None = field(default_factory=get_storage_path)
    step_timeout_seconds: float | None = field(default_factory=get_step_timeout)
    max_steps: int = field(default_factory=get_max_steps)
    max_conflict_retries: int = field(default_factory=get_max_conflict_retries)
    retention: RetentionPolicy = field(default_factory=get_retention_policy)
