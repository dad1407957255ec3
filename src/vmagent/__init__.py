"""vmagent: delegate code edits and shell work on a remote machine to a tool-calling model."""

__version__ = "0.1.0"

# Public API
from vmagent.config import Config, get_config, load_config
from vmagent.core import LiteLLMProvider, LLMProvider, Message, Role, ToolCallingProvider
from vmagent.errors import (
    AdmissionError,
    AgentError,
    InfrastructureError,
    InvalidStateError,
    SessionNotFoundError,
    ToolError,
)
from vmagent.remote import BackupManager, ExecResult, LocalChannel, RemoteChannel
from vmagent.session import (
    AgentContext,
    AgentEvent,
    AgentOptions,
    AgentOrchestrator,
    AgentSession,
    AgentState,
    EventKind,
    SessionHandle,
)

__all__ = [
    # Main entry points
    "AgentOrchestrator",
    "SessionHandle",
    # Session types
    "AgentContext",
    "AgentOptions",
    "AgentSession",
    "AgentState",
    "AgentEvent",
    "EventKind",
    # Remote collaborators
    "BackupManager",
    "ExecResult",
    "LocalChannel",
    "RemoteChannel",
    # Errors
    "AgentError",
    "AdmissionError",
    "InfrastructureError",
    "InvalidStateError",
    "SessionNotFoundError",
    "ToolError",
    # Config
    "Config",
    "load_config",
    "get_config",
    # LLM
    "LLMProvider",
    "LiteLLMProvider",
    "ToolCallingProvider",
    "Message",
    "Role",
]
