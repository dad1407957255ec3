"""Configuration management for vmagent.

Hierarchical YAML configuration:
- System-level config (/etc/vmagent/ or %PROGRAMDATA%)
- User-level config (~/.config/vmagent/, ~/.vmagent/ or %APPDATA%)
- Project-level config (<workspace_root>/.vmagent/)
- Environment variable overrides (highest priority)

Example usage:
    from vmagent.config import load_config

    config = load_config(workspace_root="/srv/app")
    print(config.agent.max_concurrent_sessions)
"""

from vmagent.config.loader import (
    dict_to_config,
    get_config,
    load_config,
    reset_config,
)
from vmagent.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from vmagent.config.schema import (
    AgentConfig,
    Config,
    LLMConfig,
    LoggingConfig,
    SandboxConfig,
)
from vmagent.config.secrets import clear_secret_cache, fetch_secret

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "dict_to_config",
    # Schema types
    "AgentConfig",
    "LLMConfig",
    "LoggingConfig",
    "SandboxConfig",
    # Secrets
    "fetch_secret",
    "clear_secret_cache",
    # Paths
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
