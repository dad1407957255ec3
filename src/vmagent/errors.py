"""Exception hierarchy for vmagent.

Four families, by how far a failure propagates:

- ToolError: local to one tool call. The loop feeds the message back to
  the model as a tool result so the model can recover.
- InfrastructureError: fatal to the agent session (state -> failed).
- AdmissionError: raised by start_session before any session exists.
- SessionNotFoundError / InvalidStateError: rejected control calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vmagent.session.validator import Violation


class AgentError(Exception):
    """Base class for all vmagent errors."""


# -----------------------------------------------------------------------------
# Tool errors
# -----------------------------------------------------------------------------


class ToolError(AgentError):
    """A tool call failed; reported to the model, never fatal."""


class ValidationError(ToolError):
    """A path or command failed validation."""

    def __init__(self, violation: Violation) -> None:
        super().__init__(violation.message)
        self.violation = violation


class ToolArgumentError(ToolError):
    """Unknown tool name or malformed arguments."""


class SandboxError(ToolError):
    """A sandbox limit or precondition was violated."""


@dataclass
class PermissionDeniedError(ToolError):
    """The operator denied a tool call at the permission handshake."""

    tool: str
    reason: str

    def __str__(self) -> str:
        return f"User denied permission. Reason: {self.reason}"


class SessionStoppedError(ToolError):
    """The executor observed a stopped session."""


# -----------------------------------------------------------------------------
# Infrastructure errors
# -----------------------------------------------------------------------------


class InfrastructureError(AgentError):
    """A collaborator failed; the agent session cannot continue."""


class RemoteSessionNotFoundError(InfrastructureError):
    """The owning remote-execution session does not exist."""

    def __init__(self, remote_ref: str) -> None:
        super().__init__(f"Remote session not found: {remote_ref}")
        self.remote_ref = remote_ref


class ModelServiceError(InfrastructureError):
    """The model service call failed."""


class ModelRateLimitError(ModelServiceError):
    """The model service throttled the request. Retryable."""


# -----------------------------------------------------------------------------
# Admission and control errors
# -----------------------------------------------------------------------------


class AdmissionError(AgentError):
    """A new session was refused before allocation."""


class ConcurrencyLimitError(AdmissionError):
    """Too many sessions are running or planning process-wide."""


class QuotaExceededError(AdmissionError):
    """The remote reference used up its sessions for the trailing 24 hours."""


class SessionNotFoundError(AgentError):
    """No agent session with the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Agent session not found: {session_id}")
        self.session_id = session_id


class InvalidStateError(AgentError):
    """A control call is not valid in the session's current state."""
