"""Agent session data model."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vmagent.remote.backup import Snapshot


class AgentState(str, Enum):
    PLANNING = "planning"
    RUNNING = "running"
    AWAITING_PERMISSION = "awaiting_permission"
    PAUSED = "paused"
    DONE = "done"
    FAILED = "failed"
    STOPPED = "stopped"
    ROLLING_BACK = "rolling_back"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.DONE, AgentState.FAILED, AgentState.STOPPED)

    @property
    def is_active(self) -> bool:
        """Counted against the global concurrency cap."""
        return self in (AgentState.PLANNING, AgentState.RUNNING)


class FileAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class PermissionDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True, slots=True)
class AgentContext:
    """What the operator was looking at when delegating the task."""

    workspace_root: str
    current_file: str | None = None
    selection: str | None = None
    folder_path: str | None = None
    whole_repo: bool = False


@dataclass(frozen=True, slots=True)
class AgentOptions:
    auto_run_commands: bool = True
    auto_fix_failures: bool = True
    auto_install_deps: bool = True
    is_pro: bool = False
    allow_system_access: bool = False  # Elevate every tool call (hard-deny still applies)


@dataclass(slots=True)
class PendingPermission:
    """A tool call waiting for the operator. Present only while awaiting_permission."""

    tool: str
    args: dict[str, Any]
    reason: str
    decision: PermissionDecision | None = None
    deny_reason: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """One executor invocation, appended once it finishes."""

    id: str
    tool: str
    args: dict[str, Any]
    result: str | None = None
    error: str | None = None
    duration_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class FileChange:
    """A file mutation made by the agent.

    Only the first mutation of a path in a session carries a snapshot.
    """

    path: str
    action: FileAction
    snapshot: Snapshot | None = None
    new_path: str | None = None  # Destination, for renamed


@dataclass
class AgentSession:
    """One delegated task.

    Only the orchestrator writes ``state``. Control calls flip fields and
    call notify(); the session's loop task observes them in its waits.
    """

    id: str
    remote_ref: str
    prompt: str
    context: AgentContext
    options: AgentOptions = field(default_factory=AgentOptions)
    state: AgentState = AgentState.PLANNING
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    file_changes: list[FileChange] = field(default_factory=list)
    summary: str | None = None
    error: str | None = None
    pending_permission: PendingPermission | None = None
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    _wake: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False, compare=False)

    def notify(self) -> None:
        """Wake the loop task if it is waiting on this session."""
        self._wake.set()

    async def wait_for_change(self, timeout: float) -> None:
        """Sleep until notify() or ``timeout`` seconds, whichever comes first."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    def to_summary(self) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            prompt=self.prompt,
            state=self.state,
            summary=self.summary,
            error=self.error,
            files_changed=len({change.path for change in self.file_changes}),
            tool_call_count=len(self.tool_calls),
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """History entry for one session."""

    id: str
    prompt: str
    state: AgentState
    summary: str | None
    error: str | None
    files_changed: int
    tool_call_count: int
    started_at: float
    completed_at: float | None
