"""Agent sessions: validation, sandboxed tools, the model loop and orchestration."""

from vmagent.session.events import AgentEvent, EventKind, EventSink
from vmagent.session.loop import ConversationLoop, LoopResult
from vmagent.session.models import (
    AgentContext,
    AgentOptions,
    AgentSession,
    AgentState,
    FileAction,
    FileChange,
    PendingPermission,
    PermissionDecision,
    SessionSummary,
    ToolCallRecord,
)
from vmagent.session.orchestrator import AgentOrchestrator, SessionHandle
from vmagent.session.registry import SessionRegistry
from vmagent.session.sandbox import Sandbox
from vmagent.session.tools import ToolRequest, parse_tool_call, tool_schemas
from vmagent.session.validator import (
    PermissionCheck,
    Violation,
    ViolationKind,
    check_tool_permission,
    redact_secrets,
    validate_command,
    validate_path,
)

__all__ = [
    # Orchestration
    "AgentOrchestrator",
    "SessionHandle",
    "SessionRegistry",
    "ConversationLoop",
    "LoopResult",
    "Sandbox",
    # Data model
    "AgentContext",
    "AgentOptions",
    "AgentSession",
    "AgentState",
    "FileAction",
    "FileChange",
    "PendingPermission",
    "PermissionDecision",
    "SessionSummary",
    "ToolCallRecord",
    # Events
    "AgentEvent",
    "EventKind",
    "EventSink",
    # Tools and validation
    "ToolRequest",
    "parse_tool_call",
    "tool_schemas",
    "PermissionCheck",
    "Violation",
    "ViolationKind",
    "check_tool_permission",
    "redact_secrets",
    "validate_command",
    "validate_path",
]
