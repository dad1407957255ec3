"""End-to-end agent sessions against an in-memory host."""

from __future__ import annotations

import asyncio

import pytest

from tests.utils import EventRecorder, MemoryChannel, ScriptedProvider, text_turn, tool_turn
from vmagent.errors import ConcurrencyLimitError
from vmagent.session import (
    AgentContext,
    AgentOptions,
    AgentOrchestrator,
    AgentState,
    EventKind,
    FileAction,
)

REMOTE = "vm-1"
WORKSPACE = "/srv/app"
CONFIG_PATH = f"{WORKSPACE}/config.json"


class TestAgentScenarios:
    """Full sessions from start to done."""

    @pytest.mark.asyncio
    async def test_add_health_check(
        self,
        orchestrator: AgentOrchestrator,
        provider: ScriptedProvider,
        channel: MemoryChannel,
        recorder: EventRecorder,
        context: AgentContext,
    ) -> None:
        """Test a session that reads, edits, creates and runs tests."""
        provider.responses = [
            tool_turn(("list_dir", {"path": WORKSPACE}), text="Let me look around."),
            tool_turn(("read_file", {"path": f"{WORKSPACE}/src/main.py"})),
            tool_turn(
                ("create_file", {"path": f"{WORKSPACE}/src/health.py", "content": "def health():\n    return 'ok'\n"}),
                ("write_file", {"path": f"{WORKSPACE}/src/main.py", "content": "from health import health\n"}),
            ),
            tool_turn(("run_cmd", {"command": "python3 -m pytest -q"})),
            text_turn("Added a health check in src/health.py."),
        ]

        handle = await orchestrator.start_session(
            REMOTE, "add health check", context, AgentOptions(auto_run_commands=True), emit=recorder
        )
        session = await handle.wait()

        assert session.state is AgentState.DONE
        assert session.summary == "Added a health check in src/health.py."
        assert {(c.path, c.action) for c in session.file_changes} == {
            (f"{WORKSPACE}/src/health.py", FileAction.CREATED),
            (f"{WORKSPACE}/src/main.py", FileAction.MODIFIED),
        }
        assert len(recorder.of(EventKind.TOOL_START)) == len(recorder.of(EventKind.TOOL_COMPLETE)) == 5
        assert recorder.of(EventKind.FILE_CREATED)[0].payload["path"] == f"{WORKSPACE}/src/health.py"
        assert channel.commands == [(f"cd {WORKSPACE} && python3 -m pytest -q", False)]
        assert not recorder.of(EventKind.PERMISSION_REQUIRED)

    @pytest.mark.asyncio
    async def test_denied_system_command(
        self,
        orchestrator: AgentOrchestrator,
        provider: ScriptedProvider,
        channel: MemoryChannel,
        recorder: EventRecorder,
        context: AgentContext,
    ) -> None:
        """Test that a denied system command is never run."""
        provider.responses = [
            tool_turn(("run_cmd", {"command": "sudo systemctl restart nginx"})),
            text_turn("I could not restart nginx; please do it manually."),
        ]

        handle = await orchestrator.start_session(REMOTE, "restart nginx", context, emit=recorder)
        event = await recorder.wait_for(EventKind.PERMISSION_REQUIRED)
        assert event.payload["reason"] == "System command: sudo systemctl restart nginx"

        orchestrator.deny_permission(handle.id)
        session = await handle.wait()

        assert session.state is AgentState.DONE
        assert channel.commands == []
        assert "User denied permission" in recorder.of(EventKind.TOOL_ERROR)[0].payload["error"]
        assert not recorder.of(EventKind.TOOL_COMPLETE)

    @pytest.mark.asyncio
    async def test_two_writes_one_snapshot(
        self,
        orchestrator: AgentOrchestrator,
        provider: ScriptedProvider,
        channel: MemoryChannel,
        context: AgentContext,
    ) -> None:
        """Test that repeated writes share one snapshot and roll back exactly."""
        original = channel.files[CONFIG_PATH]
        provider.responses = [
            tool_turn(("write_file", {"path": CONFIG_PATH, "content": '{"debug": true}'})),
            tool_turn(("write_file", {"path": CONFIG_PATH, "content": '{"debug": true, "port": 8080}'})),
            text_turn("Updated config."),
        ]

        handle = await orchestrator.start_session(REMOTE, "update config", context)
        session = await handle.wait()

        snapshots = [c.snapshot for c in session.file_changes if c.snapshot is not None]
        assert len(session.file_changes) == 2
        assert len(snapshots) == 1
        backups = [p for p in channel.files if ".vmagent-backups" in p]
        assert len(backups) == 1

        await orchestrator.rollback_session(handle.id)
        assert channel.files[CONFIG_PATH] == original

    @pytest.mark.asyncio
    async def test_hard_deny_overrides_system_access(
        self,
        orchestrator: AgentOrchestrator,
        provider: ScriptedProvider,
        channel: MemoryChannel,
        recorder: EventRecorder,
        context: AgentContext,
    ) -> None:
        """Test that rm -rf / is refused even with system access."""
        provider.responses = [tool_turn(("run_cmd", {"command": "rm -rf /"})), text_turn("Refused.")]

        handle = await orchestrator.start_session(
            REMOTE, "wipe it", context, AgentOptions(allow_system_access=True), emit=recorder
        )
        await handle.wait()

        assert channel.commands == []
        assert not recorder.of(EventKind.TOOL_COMPLETE)
        assert not recorder.of(EventKind.PERMISSION_REQUIRED)
        assert len(recorder.of(EventKind.TOOL_ERROR)) == 1

    @pytest.mark.asyncio
    async def test_eleventh_session_rejected(
        self,
        orchestrator: AgentOrchestrator,
        provider: ScriptedProvider,
        channels: dict[str, MemoryChannel],
        context: AgentContext,
    ) -> None:
        """Test the global cap of ten active sessions."""
        provider.gate = asyncio.Event()
        for i in range(11):
            channels[f"vm-{i + 2}"] = MemoryChannel()

        handles = [await orchestrator.start_session(f"vm-{i + 2}", "Go", context) for i in range(9)]
        # One below the cap still admits
        handles.append(await orchestrator.start_session(REMOTE, "Go", context))
        assert orchestrator.registry.active_count() == 10

        with pytest.raises(ConcurrencyLimitError):
            await orchestrator.start_session("vm-12", "Go", context)
        assert len(orchestrator.registry) == 10
        assert orchestrator.get_session_history("vm-12") == []

        provider.gate.set()
        await asyncio.gather(*(h.wait() for h in handles))


class TestStopIsPrompt:
    """Test that stop is observed from every wait point."""

    @pytest.mark.asyncio
    async def test_stop_while_paused(
        self,
        orchestrator: AgentOrchestrator,
        provider: ScriptedProvider,
        channel: MemoryChannel,
        recorder: EventRecorder,
        context: AgentContext,
    ) -> None:
        """Test that a paused session stops without running its tool."""
        provider.gate = asyncio.Event()
        provider.responses = [tool_turn(("delete_file", {"path": f"{WORKSPACE}/README.md"}))]

        handle = await orchestrator.start_session(REMOTE, "Delete readme", context, emit=recorder)
        while handle.session.state is not AgentState.RUNNING:
            await asyncio.sleep(0.005)
        orchestrator.pause(handle.id)
        provider.gate.set()
        await recorder.wait_for(EventKind.TOOL_START)

        orchestrator.stop(handle.id)
        session = await asyncio.wait_for(handle.wait(), timeout=1.0)

        assert session.state is AgentState.STOPPED
        assert f"{WORKSPACE}/README.md" in channel.files
        assert recorder.of(EventKind.TOOL_ERROR)[0].payload["error"] == "Session stopped"
