"""Typed event stream emitted by agent sessions."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    SESSION_CREATED = "session_created"
    STATE_CHANGE = "state_change"
    PLAN = "plan"
    AGENT_TEXT = "agent_text"
    TOOL_START = "tool_start"
    TOOL_COMPLETE = "tool_complete"
    TOOL_ERROR = "tool_error"
    EDIT_DELTA = "edit_delta"
    FILE_CREATED = "file_created"
    FILE_DELETED = "file_deleted"
    CMD_START = "cmd_start"
    CMD_COMPLETE = "cmd_complete"
    PERMISSION_REQUIRED = "permission_required"
    DONE = "done"
    ERROR = "error"
    ROLLBACK_COMPLETE = "rollback_complete"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    type: EventKind
    payload: dict[str, Any]
    session_id: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


# Receives every event of a session, in production order
EventSink = Callable[[AgentEvent], None]

# What the loop calls; the orchestrator binds the session id
Emit = Callable[[EventKind, dict[str, Any]], None]
