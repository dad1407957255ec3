"""Configuration schema dataclasses for vmagent.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial YAML files merge cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMConfig:
    """Model service configuration."""

    model: str = "claude-sonnet-4-20250514"
    api_base: str | None = None  # Custom endpoint
    max_tokens: int = 4096
    temperature: float = 0.2
    plan_max_tokens: int = 1024
    plan_temperature: float = 0.3
    timeout: float = 120.0  # Seconds per model request


@dataclass
class AgentConfig:
    """Orchestrator and loop limits."""

    max_concurrent_sessions: int = 10  # running/planning across the process
    daily_sessions_free: int = 2
    daily_sessions_pro: int = 15
    max_iterations: int = 30  # Model turns per run
    poll_interval: float = 0.5  # Seconds, pause/permission wait fallback
    max_model_retries: int = 3
    retry_base_delay: float = 2.0  # Seconds, doubled per retry


@dataclass
class SandboxConfig:
    """Tool execution limits for one agent session."""

    max_file_size: int = 512 * 1024
    max_files_per_session: int = 30
    command_timeout: float = 60.0
    search_timeout: float = 10.0
    max_search_results: int = 20
    stdout_limit: int = 50_000
    stderr_limit: int = 20_000
    max_command_length: int = 4096
    context_file_limit: int = 100_000  # Current-file bytes sent as context


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys
