"""Agent orchestrator: session lifecycle, admission and the permission handshake.

State machine::

    planning -> running <-> paused
                running <-> awaiting_permission
                running -> done | failed
    any -> stopped                       (stop)
    done | failed | stopped -> rolling_back -> stopped
    done | failed | stopped -> planning  (continue)

The orchestrator is the only writer of ``AgentSession.state``. Each session
runs its ConversationLoop in its own asyncio task; control calls (pause,
resume, grant, deny, stop) only flip session fields and wake the task.
The Sandbox is only ever called from that task, through the executor.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vmagent.config.schema import Config
from vmagent.core.llm.provider import ToolCallingProvider
from vmagent.errors import (
    InvalidStateError,
    PermissionDeniedError,
    RemoteSessionNotFoundError,
    SessionNotFoundError,
    SessionStoppedError,
)
from vmagent.logging import get_logger
from vmagent.remote.backup import BackupManager, SnapshotStore
from vmagent.remote.protocol import ChannelResolver, RemoteChannel
from vmagent.session.context import build_context_info
from vmagent.session.events import AgentEvent, EventKind, EventSink
from vmagent.session.loop import ConversationLoop, ToolExecutor
from vmagent.session.models import (
    AgentContext,
    AgentOptions,
    AgentSession,
    AgentState,
    PendingPermission,
    PermissionDecision,
    SessionSummary,
    ToolCallRecord,
)
from vmagent.session.registry import AdmissionLimits, SessionEntry, SessionRegistry
from vmagent.session.sandbox import Sandbox
from vmagent.session.tools import (
    CreateFile,
    DeleteFile,
    ListDir,
    ReadFile,
    RenameFile,
    RunCommand,
    SearchFiles,
    ToolRequest,
    WriteFile,
    parse_tool_call,
)
from vmagent.session.validator import check_tool_permission

log = get_logger("session.orchestrator")


def _discard(event: AgentEvent) -> None:
    pass


@dataclass(frozen=True, slots=True)
class SessionHandle:
    """A started (or continued) session and the task running its loop."""

    session: AgentSession
    task: asyncio.Task[None]

    @property
    def id(self) -> str:
        return self.session.id

    async def wait(self) -> AgentSession:
        """Wait for the loop task to finish and return the session."""
        await asyncio.wait({self.task})
        return self.session


class AgentOrchestrator:
    """Owns agent sessions and drives them.

    Args:
        channels: Resolves a remote reference to its RemoteChannel.
        provider: Tool-calling model service shared by all sessions.
        snapshots: Snapshot store; defaults to a BackupManager over ``channels``.
        config: Limits and model settings.
        registry: Session map; a fresh one by default.
        clock: Wall clock in seconds, used for quotas and timestamps.
        loop_factory: Builds a ConversationLoop per session.
    """

    def __init__(
        self,
        channels: ChannelResolver,
        provider: ToolCallingProvider,
        *,
        snapshots: SnapshotStore | None = None,
        config: Config | None = None,
        registry: SessionRegistry | None = None,
        clock: Callable[[], float] = time.time,
        loop_factory: Callable[[], ConversationLoop] | None = None,
    ) -> None:
        self._channels = channels
        self._provider = provider
        self._config = config or Config()
        self._snapshots = snapshots or BackupManager(channels)
        self._registry = registry or SessionRegistry()
        self._clock = clock
        self._loop_factory = loop_factory or (
            lambda: ConversationLoop.from_config(provider, self._config.llm, self._config.agent)
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _channel(self, remote_ref: str) -> RemoteChannel:
        channel = self._channels.get(remote_ref)
        if channel is None:
            raise RemoteSessionNotFoundError(remote_ref)
        return channel

    def _require(self, session_id: str) -> SessionEntry:
        entry = self._registry.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry

    def _emit(self, entry: SessionEntry, kind: EventKind, payload: dict[str, Any]) -> None:
        entry.sink(AgentEvent(type=kind, payload=payload, session_id=entry.session.id))

    def _set_state(self, entry: SessionEntry, state: AgentState) -> None:
        session = entry.session
        previous = session.state
        session.state = state
        session.notify()
        log.debug("Session %s: %s -> %s", session.id, previous.value, state.value)
        self._emit(entry, EventKind.STATE_CHANGE, {"state": state.value, "previous": previous.value})

    async def _retire_task(self, entry: SessionEntry) -> None:
        """Cancel a stopped session's loop task if it is still unwinding.

        A stopped loop can still be inside a model call; it must be gone
        before anything else touches the session's sandbox or history.
        """
        task = entry.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        entry.loop.cancel()
        task.cancel()
        await asyncio.wait({task})
        log.debug("Session %s: retired previous loop task", entry.session.id)

    def _is_current(self, entry: SessionEntry) -> bool:
        return asyncio.current_task() is entry.task

    def _limits(self, options: AgentOptions) -> AdmissionLimits:
        agent = self._config.agent
        if options.is_pro:
            return AdmissionLimits(agent.max_concurrent_sessions, agent.daily_sessions_pro, "pro")
        return AdmissionLimits(agent.max_concurrent_sessions, agent.daily_sessions_free, "free")

    # -------------------------------------------------------------------------
    # Starting and continuing
    # -------------------------------------------------------------------------

    async def start_session(
        self,
        remote_ref: str,
        prompt: str,
        context: AgentContext,
        options: AgentOptions | None = None,
        emit: EventSink | None = None,
    ) -> SessionHandle:
        """Admit, register and start a new agent session.

        Raises:
            RemoteSessionNotFoundError: ``remote_ref`` is unknown.
            ConcurrencyLimitError: The process-wide active cap is reached.
            QuotaExceededError: ``remote_ref`` used up its 24-hour quota.
        """
        self._channel(remote_ref)
        options = options or AgentOptions()
        sink = emit or _discard
        now = self._clock()

        def create_entry() -> SessionEntry:
            session = AgentSession(
                id=str(uuid.uuid4()),
                remote_ref=remote_ref,
                prompt=prompt,
                context=context,
                options=options,
                started_at=now,
            )
            sandbox = Sandbox(
                remote_ref,
                context.workspace_root,
                self._channels,
                self._snapshots,
                self._config.sandbox,
                changes=session.file_changes,
                allow_system_access=options.allow_system_access,
            )
            return SessionEntry(session=session, sandbox=sandbox, loop=self._loop_factory(), sink=sink)

        entry = self._registry.admit(remote_ref, self._limits(options), now, create_entry)
        session = entry.session
        log.info("Started agent session %s for %s", session.id, remote_ref)

        self._emit(entry, EventKind.SESSION_CREATED, {"session_id": session.id, "state": session.state.value})

        entry.task = asyncio.create_task(
            self._supervise(entry, prompt, context, is_continuation=False),
            name=f"agent-session-{session.id}",
        )
        return SessionHandle(session=session, task=entry.task)

    async def continue_session(
        self,
        session_id: str,
        prompt: str,
        context: AgentContext | None = None,
        emit: EventSink | None = None,
    ) -> SessionHandle:
        """Run a follow-up prompt on a finished session, extending its conversation.

        The sandbox keeps its workspace root; ``context`` only changes the
        context text sent with the prompt.
        """
        entry = self._require(session_id)
        session = entry.session
        if not session.state.is_terminal:
            raise InvalidStateError(f"Cannot continue session in state: {session.state.value}")
        await self._retire_task(entry)
        if not session.state.is_terminal:
            raise InvalidStateError(f"Cannot continue session in state: {session.state.value}")

        if emit is not None:
            entry.sink = emit

        session.prompt = prompt
        session.summary = None
        session.error = None
        session.completed_at = None
        session.pending_permission = None
        entry.loop.clear_cancel()
        self._set_state(entry, AgentState.PLANNING)

        entry.task = asyncio.create_task(
            self._supervise(entry, prompt, context or session.context, is_continuation=True),
            name=f"agent-session-{session.id}",
        )
        return SessionHandle(session=session, task=entry.task)

    async def plan_only(self, remote_ref: str, prompt: str, context: AgentContext) -> str:
        """Describe what the agent would do, without running any tools."""
        channel = self._channel(remote_ref)
        context_info = await build_context_info(
            channel, context, file_limit=self._config.sandbox.context_file_limit
        )
        return await self._loop_factory().plan_only(prompt, context_info)

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def _supervise(
        self,
        entry: SessionEntry,
        prompt: str,
        context: AgentContext,
        is_continuation: bool,
    ) -> None:
        """Run the loop and write any uncaught failure back into the session."""
        session = entry.session
        try:
            await self._run(entry, prompt, context, is_continuation)
        except asyncio.CancelledError:
            entry.loop.cancel()
            if not session.state.is_terminal:
                session.pending_permission = None
                session.completed_at = self._clock()
                self._set_state(entry, AgentState.STOPPED)
            raise
        except Exception as e:
            log.error("Agent session %s failed: %s", session.id, e)
            if not self._is_current(entry):
                return
            session.error = str(e)
            session.completed_at = self._clock()
            session.pending_permission = None
            if session.state is not AgentState.STOPPED:
                self._set_state(entry, AgentState.FAILED)
            self._emit(entry, EventKind.ERROR, {"error": str(e), "fatal": True})

    async def _run(
        self,
        entry: SessionEntry,
        prompt: str,
        context: AgentContext,
        is_continuation: bool,
    ) -> None:
        session = entry.session
        channel = self._channel(session.remote_ref)
        context_info = await build_context_info(
            channel, context, file_limit=self._config.sandbox.context_file_limit
        )

        if session.state is AgentState.STOPPED:
            return
        self._set_state(entry, AgentState.RUNNING)

        result = await entry.loop.run(
            prompt,
            context_info,
            self._make_executor(entry),
            lambda kind, payload: self._emit(entry, kind, payload),
            is_continuation,
        )
        if not self._is_current(entry):
            return

        session.summary = result.summary
        if session.state is AgentState.STOPPED:
            return
        session.completed_at = self._clock()
        self._set_state(entry, AgentState.DONE if result.success else AgentState.FAILED)

        self._emit(
            entry,
            EventKind.DONE,
            {
                "summary": result.summary,
                "success": result.success,
                "files_changed": len({c.path for c in session.file_changes}),
                "tool_calls": len(session.tool_calls),
            },
        )

    def _make_executor(self, entry: SessionEntry) -> ToolExecutor:
        """Build the executor the loop calls for every tool use."""

        async def execute(tool_name: str, args: dict[str, Any]) -> Any:
            session = entry.session
            if not self._is_current(entry):
                raise SessionStoppedError("Session stopped")
            await self._wait_while_paused(session)

            request = parse_tool_call(tool_name, args)
            check = check_tool_permission(
                request, session.context.workspace_root, session.options.auto_run_commands
            )
            elevated = False
            if check.requires_permission:
                await self._await_permission(entry, request, args, check.reason or "System access required")
                elevated = True

            call_id = str(uuid.uuid4())
            start = time.perf_counter()
            try:
                result = await self._dispatch(entry, request, elevated)
            except Exception as e:
                session.tool_calls.append(
                    ToolCallRecord(
                        id=call_id,
                        tool=tool_name,
                        args=dict(args),
                        error=str(e),
                        duration_ms=(time.perf_counter() - start) * 1000,
                    )
                )
                raise

            session.tool_calls.append(
                ToolCallRecord(
                    id=call_id,
                    tool=tool_name,
                    args=dict(args),
                    result=json.dumps(result),
                    duration_ms=(time.perf_counter() - start) * 1000,
                )
            )
            return result

        return execute

    async def _wait_while_paused(self, session: AgentSession) -> None:
        poll = self._config.agent.poll_interval
        while session.state is AgentState.PAUSED:
            await session.wait_for_change(poll)
        if session.state is AgentState.STOPPED:
            raise SessionStoppedError("Session stopped")

    async def _await_permission(
        self,
        entry: SessionEntry,
        request: ToolRequest,
        args: dict[str, Any],
        reason: str,
    ) -> None:
        """Park the session until the operator grants or denies ``request``.

        Raises:
            PermissionDeniedError: The operator denied it.
            SessionStoppedError: The session was stopped while waiting.
        """
        session = entry.session
        pending = PendingPermission(tool=request.name, args=dict(args), reason=reason)
        session.pending_permission = pending
        self._set_state(entry, AgentState.AWAITING_PERMISSION)
        self._emit(
            entry,
            EventKind.PERMISSION_REQUIRED,
            {"tool": pending.tool, "args": pending.args, "reason": pending.reason},
        )

        poll = self._config.agent.poll_interval
        while session.state is AgentState.AWAITING_PERMISSION:
            await session.wait_for_change(poll)

        if session.state is AgentState.STOPPED:
            raise SessionStoppedError("Session stopped while awaiting permission")
        if pending.decision is PermissionDecision.DENIED:
            raise PermissionDeniedError(tool=pending.tool, reason=pending.deny_reason or pending.reason)

    async def _dispatch(self, entry: SessionEntry, request: ToolRequest, elevated: bool) -> Any:
        sandbox = entry.sandbox
        emit = self._emit

        match request:
            case ListDir(path=path):
                entries = await sandbox.list_dir(path, elevated=elevated)
                return {
                    "entries": [
                        {"name": e.name, "type": "directory" if e.is_dir else "file", "size": e.size}
                        for e in entries
                    ]
                }
            case ReadFile(path=path):
                content = await sandbox.read_file(path, elevated=elevated)
                return {"content": content.content, "size": content.size}
            case WriteFile(path=path, content=content):
                written = await sandbox.write_file(path, content, elevated=elevated)
                emit(entry, EventKind.EDIT_DELTA, {"path": path, "content": content, "action": "write"})
                return {"ok": True, "size": written.size}
            case CreateFile(path=path, content=content):
                written = await sandbox.create_file(path, content, elevated=elevated)
                emit(entry, EventKind.FILE_CREATED, {"path": path, "content": content})
                return {"ok": True, "size": written.size}
            case DeleteFile(path=path):
                await sandbox.delete_file(path, elevated=elevated)
                emit(entry, EventKind.FILE_DELETED, {"path": path})
                return {"ok": True}
            case RenameFile(old_path=old_path, new_path=new_path):
                await sandbox.rename_file(old_path, new_path, elevated=elevated)
                emit(
                    entry,
                    EventKind.EDIT_DELTA,
                    {"path": old_path, "new_path": new_path, "action": "rename"},
                )
                return {"ok": True}
            case SearchFiles(query=query, path=path):
                matches = await sandbox.search_files(query, path, elevated=elevated)
                return {"matches": matches}
            case RunCommand(command=command, cwd=cwd):
                emit(entry, EventKind.CMD_START, {"command": command, "cwd": cwd})
                result = await sandbox.run_command(command, cwd, elevated=elevated)
                output = {
                    "exit_code": result.exit_code,
                    "stdout": result.stdout,
                    "stderr": result.stderr,
                    "duration_ms": result.duration_ms,
                }
                emit(entry, EventKind.CMD_COMPLETE, {"command": command, **output, "timed_out": result.timed_out})
                return output
        raise TypeError(f"Unhandled tool request: {request!r}")

    # -------------------------------------------------------------------------
    # Control calls
    # -------------------------------------------------------------------------

    def pause(self, session_id: str) -> None:
        entry = self._require(session_id)
        if entry.session.state is not AgentState.RUNNING:
            raise InvalidStateError("Session is not running")
        self._set_state(entry, AgentState.PAUSED)

    def resume(self, session_id: str) -> None:
        entry = self._require(session_id)
        state = entry.session.state
        if state is AgentState.AWAITING_PERMISSION:
            raise InvalidStateError("Cannot resume. Session is awaiting user permission.")
        if state is not AgentState.PAUSED:
            raise InvalidStateError("Session is not paused")
        self._set_state(entry, AgentState.RUNNING)

    def _decide(self, session_id: str, decision: PermissionDecision, reason: str | None) -> None:
        entry = self._require(session_id)
        session = entry.session
        if session.state is not AgentState.AWAITING_PERMISSION:
            raise InvalidStateError("Session is not awaiting permission")
        pending = session.pending_permission
        if pending is not None:
            pending.decision = decision
            pending.deny_reason = reason
        session.pending_permission = None
        log.info("Session %s: permission %s", session_id, decision.value)
        self._set_state(entry, AgentState.RUNNING)

    def grant_permission(self, session_id: str) -> None:
        self._decide(session_id, PermissionDecision.GRANTED, None)

    def deny_permission(self, session_id: str, reason: str | None = None) -> None:
        """Deny the pending tool call; ``reason`` defaults to why it was asked."""
        self._decide(session_id, PermissionDecision.DENIED, reason)

    def stop(self, session_id: str) -> None:
        """Stop a session from any state. Stopping a stopped session does nothing."""
        entry = self._require(session_id)
        entry.loop.cancel()
        session = entry.session
        if session.state is AgentState.STOPPED:
            return
        session.pending_permission = None
        session.completed_at = self._clock()
        self._set_state(entry, AgentState.STOPPED)

    async def rollback_session(self, session_id: str) -> list[str]:
        """Undo every file change of a finished session.

        Returns the restored paths; the session ends up stopped.
        """
        entry = self._require(session_id)
        session = entry.session
        if not session.state.is_terminal:
            raise InvalidStateError(f"Cannot roll back session in state: {session.state.value}")
        await self._retire_task(entry)
        if not session.state.is_terminal:
            raise InvalidStateError(f"Cannot roll back session in state: {session.state.value}")

        self._set_state(entry, AgentState.ROLLING_BACK)
        try:
            restored = await entry.sandbox.rollback_all()
        finally:
            session.completed_at = self._clock()
            self._set_state(entry, AgentState.STOPPED)

        log.info("Session %s: rolled back %d file(s)", session_id, len(restored))
        self._emit(entry, EventKind.ROLLBACK_COMPLETE, {"restored_files": restored})
        return restored

    # -------------------------------------------------------------------------
    # Queries and cleanup
    # -------------------------------------------------------------------------

    def get_session(self, session_id: str) -> AgentSession | None:
        entry = self._registry.get(session_id)
        return entry.session if entry is not None else None

    def get_session_history(self, remote_ref: str) -> list[SessionSummary]:
        """Summaries of ``remote_ref``'s sessions, newest first."""
        summaries = [
            e.session.to_summary() for e in self._registry.entries() if e.session.remote_ref == remote_ref
        ]
        summaries.sort(key=lambda s: s.started_at, reverse=True)
        return summaries

    def delete_session(self, session_id: str, remote_ref: str) -> bool:
        """Forget a session owned by ``remote_ref``, cancelling its loop.

        Returns False if there is no such session for that owner. The
        24-hour quota still counts the deleted session.
        """
        entry = self._registry.get(session_id)
        if entry is None or entry.session.remote_ref != remote_ref:
            return False

        entry.loop.cancel()
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()
        self._registry.remove(session_id)
        log.info("Deleted agent session %s", session_id)
        return True

    async def close(self) -> None:
        """Cancel every running session task and wait for them to finish."""
        tasks = []
        for entry in self._registry.entries():
            entry.loop.cancel()
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
                tasks.append(entry.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
