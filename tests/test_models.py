"""Tests for the session data model and events."""

from __future__ import annotations

import asyncio

import pytest

from vmagent.session import (
    AgentContext,
    AgentEvent,
    AgentSession,
    AgentState,
    EventKind,
    FileAction,
    FileChange,
    ToolCallRecord,
)


def make_session() -> AgentSession:
    return AgentSession(id="s-1", remote_ref="vm-1", prompt="Go", context=AgentContext("/srv/app"))


class TestAgentState:
    """Test state classification."""

    def test_terminal_states(self) -> None:
        terminal = {s for s in AgentState if s.is_terminal}
        assert terminal == {AgentState.DONE, AgentState.FAILED, AgentState.STOPPED}

    def test_active_states(self) -> None:
        """Test which states count against the concurrency cap."""
        active = {s for s in AgentState if s.is_active}
        assert active == {AgentState.PLANNING, AgentState.RUNNING}


class TestAgentSession:
    """Test session helpers."""

    def test_summary_counts_distinct_paths(self) -> None:
        """Test that repeated changes to one path count once."""
        session = make_session()
        session.file_changes.extend(
            [
                FileChange("/srv/app/a", FileAction.MODIFIED),
                FileChange("/srv/app/a", FileAction.MODIFIED),
                FileChange("/srv/app/b", FileAction.CREATED),
            ]
        )
        session.tool_calls.append(ToolCallRecord(id="t", tool="write_file", args={}))

        summary = session.to_summary()
        assert summary.files_changed == 2
        assert summary.tool_call_count == 1
        assert summary.state is AgentState.PLANNING

    @pytest.mark.asyncio
    async def test_notify_wakes_waiter(self) -> None:
        """Test that notify() ends wait_for_change early."""
        session = make_session()
        loop = asyncio.get_running_loop()
        started = loop.time()

        loop.call_later(0.01, session.notify)
        await session.wait_for_change(5.0)

        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_wait_times_out(self) -> None:
        """Test the poll fallback."""
        session = make_session()
        await session.wait_for_change(0.01)


class TestAgentEvent:
    """Test event serialization."""

    def test_to_dict(self) -> None:
        event = AgentEvent(EventKind.DONE, {"summary": "ok"}, session_id="s-1", timestamp=12.5)
        assert event.to_dict() == {
            "type": "done",
            "session_id": "s-1",
            "payload": {"summary": "ok"},
            "timestamp": 12.5,
        }
