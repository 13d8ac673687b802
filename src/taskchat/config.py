"""Engine configuration loader.

Loads engine settings from a YAML file with safe defaults, then applies
environment overrides.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DELEGATE_PROVIDERS = ("stub", "http")


@dataclass
class EngineConfig:
    """Settings for the chat command engine."""

    delegate_url: str | None = None
    delegate_token: str | None = None
    delegate_timeout_seconds: float = 30.0
    delegate_provider: str = "stub"
    confirm_fuzzy_matches: bool = False
    confirmation_expiry_seconds: int = 120
    max_suggestions: int = 3
    overload_project_threshold: int = 5
    overload_task_threshold: int = 20
    split_goal_task_threshold: int = 5
    # In-memory session limits per owner; 0 disables either one
    session_idle_seconds: int = 1800
    max_sessions: int = 500

    def suggestion_thresholds(self) -> dict[str, int]:
        """Threshold keyword arguments for suggestion snapshots."""
        return {
            "overload_project_threshold": self.overload_project_threshold,
            "overload_task_threshold": self.overload_task_threshold,
            "split_goal_task_threshold": self.split_goal_task_threshold,
        }


def _parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse a configuration dictionary into an EngineConfig.

    Raises:
        ValueError: If a field is unknown or has the wrong type
    """
    known = {f.name: f for f in fields(EngineConfig)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")

    if "confirm_fuzzy_matches" in data and not isinstance(data["confirm_fuzzy_matches"], bool):
        raise ValueError("Field 'confirm_fuzzy_matches' must be a boolean")

    for name in (
        "confirmation_expiry_seconds",
        "max_suggestions",
        "overload_project_threshold",
        "overload_task_threshold",
        "split_goal_task_threshold",
        "session_idle_seconds",
        "max_sessions",
    ):
        if name in data:
            value = data[name]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Field '{name}' must be an integer")
            if value < 0:
                raise ValueError(f"Field '{name}' must be non-negative")

    if "delegate_timeout_seconds" in data:
        timeout = data["delegate_timeout_seconds"]
        if isinstance(timeout, bool) or not isinstance(timeout, int | float) or timeout <= 0:
            raise ValueError("Field 'delegate_timeout_seconds' must be a positive number")

    if "delegate_provider" in data and data["delegate_provider"] not in DELEGATE_PROVIDERS:
        raise ValueError(f"Field 'delegate_provider' must be one of: {', '.join(DELEGATE_PROVIDERS)}")

    for name in ("delegate_url", "delegate_token"):
        if name in data and data[name] is not None and not isinstance(data[name], str):
            raise ValueError(f"Field '{name}' must be a string")

    return replace(EngineConfig(), **data)


def _apply_env_overrides(config: EngineConfig) -> EngineConfig:
    overrides: dict[str, Any] = {}
    if os.getenv("TASKCHAT_DELEGATE_URL"):
        overrides["delegate_url"] = os.environ["TASKCHAT_DELEGATE_URL"]
    if os.getenv("TASKCHAT_DELEGATE_TOKEN"):
        overrides["delegate_token"] = os.environ["TASKCHAT_DELEGATE_TOKEN"]

    provider = os.getenv("TASKCHAT_DELEGATE_PROVIDER")
    if provider:
        if provider.lower() in DELEGATE_PROVIDERS:
            overrides["delegate_provider"] = provider.lower()
        else:
            logger.warning("Ignoring unknown TASKCHAT_DELEGATE_PROVIDER: %s", provider)

    timeout = os.getenv("TASKCHAT_DELEGATE_TIMEOUT")
    if timeout:
        try:
            value = float(timeout)
        except ValueError:
            logger.warning("Ignoring invalid TASKCHAT_DELEGATE_TIMEOUT: %s", timeout)
        else:
            if value > 0:
                overrides["delegate_timeout_seconds"] = value
            else:
                logger.warning("Ignoring non-positive TASKCHAT_DELEGATE_TIMEOUT: %s", timeout)

    return replace(config, **overrides) if overrides else config


def load_engine_config(config_path: str | None = None) -> EngineConfig:
    """Load engine configuration from a YAML file.

    Args:
        config_path: Path to the YAML file. If None, uses TASKCHAT_CONFIG_PATH
                    or the default path: config/engine.yaml

    Returns:
        EngineConfig with environment overrides applied. If the file is
        missing or invalid, the defaults are used.
    """
    if config_path is None:
        project_root = Path(__file__).parent.parent.parent
        config_path = os.getenv("TASKCHAT_CONFIG_PATH") or os.path.join(project_root, "config", "engine.yaml")

    config = EngineConfig()
    if os.path.exists(config_path):
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)

            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError("Config file must contain a YAML dictionary")

            config = _parse_engine_config(data.get("engine", data))

        except (yaml.YAMLError, ValueError, TypeError, OSError) as e:
            logger.warning("Failed to load engine config from %s: %s", config_path, e)
            logger.warning("Using default engine configuration")
            config = EngineConfig()

    return _apply_env_overrides(config)


_cached_config: EngineConfig | None = None


def get_engine_config(config_path: str | None = None) -> EngineConfig:
    """Get the engine configuration (cached)."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_engine_config(config_path)
    return _cached_config


def clear_engine_config_cache() -> None:
    """Clear the cached configuration (used by tests)."""
    global _cached_config
    _cached_config = None
