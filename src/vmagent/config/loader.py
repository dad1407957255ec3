"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reset support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, TypeVar

import yaml

from vmagent.config.merge import merge_configs
from vmagent.config.paths import get_config_paths
from vmagent.config.schema import (
    AgentConfig,
    Config,
    LLMConfig,
    LoggingConfig,
    SandboxConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("vmagent.config")

_cached_config: Config | None = None

_T = TypeVar("_T")

_SECTIONS: dict[str, type] = {
    "llm": LLMConfig,
    "agent": AgentConfig,
    "sandbox": SandboxConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config layer from environment variables.

    API keys are NOT loaded here; use fetch_secret() for those.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("VMAGENT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    model = os.environ.get("VMAGENT_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    return overrides


def _build_section(cls: type[_T], data: Any, section: str) -> _T:
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
    unknown = set(data) - known
    if unknown:
        _log.warning("Ignoring unknown %s config keys: %s", section, ", ".join(sorted(unknown)))
    return cls(**{k: v for k, v in data.items() if k in known})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    sections = {
        name: _build_section(cls, data.get(name, {}), name)
        for name, cls in _SECTIONS.items()
    }
    extra = {k: v for k, v in data.items() if k not in _SECTIONS}
    return Config(extra=extra, **sections)


def load_config(workspace_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<workspace_root>/.vmagent/config.yaml)
    3. User config
    4. System config

    Only the global config (no workspace_root) is cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and workspace_root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(workspace_root):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded config from %s", path)
            layers.append(layer)

    env_layer = env_overrides()
    if env_layer:
        layers.append(env_layer)

    config = dict_to_config(merge_configs(*layers))

    if workspace_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config (tests, forced reload)."""
    global _cached_config
    _cached_config = None
