"""Shared fakes and helpers for vmagent tests."""

from __future__ import annotations

import asyncio
import itertools
import posixpath
from typing import Any

from vmagent.core.llm.provider import (
    CompletionResult,
    Message,
    ModelResponse,
    Role,
    TextBlock,
    ToolUseBlock,
    Turn,
)
from vmagent.remote.protocol import ExecResult, RemoteEntry, RemoteStat
from vmagent.session.events import AgentEvent, EventKind

_call_ids = itertools.count(1)


class MemoryChannel:
    """In-memory RemoteChannel.

    Files live in ``files`` (path -> bytes), directories in ``dirs``.
    Commands are recorded in ``commands`` and answered by ``exec_handler``
    (or a successful empty result).
    """

    def __init__(self, files: dict[str, str | bytes] | None = None) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {"/"}
        self.commands: list[tuple[str, bool]] = []
        self.exec_handler: Any = None
        for path, data in (files or {}).items():
            self.add_file(path, data)

    def add_file(self, path: str, data: str | bytes) -> None:
        self._make_dirs(posixpath.dirname(path))
        self.files[path] = data.encode() if isinstance(data, str) else bytes(data)

    def text(self, path: str) -> str:
        return self.files[path].decode()

    def _make_dirs(self, path: str) -> None:
        while path and path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)

    async def exec(self, command: str, timeout: float, elevated: bool = False) -> ExecResult:
        self.commands.append((command, elevated))
        if self.exec_handler is not None:
            return self.exec_handler(command)
        return ExecResult(exit_code=0, stdout="", stderr="", duration_ms=1.0)

    async def stat(self, path: str) -> RemoteStat | None:
        if path in self.files:
            return RemoteStat(size=len(self.files[path]), is_dir=False)
        if path in self.dirs:
            return RemoteStat(size=0, is_dir=True)
        return None

    async def read_file(self, path: str) -> bytes:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def write_file(self, path: str, data: bytes) -> None:
        if posixpath.dirname(path) not in self.dirs:
            raise FileNotFoundError(posixpath.dirname(path))
        self.files[path] = bytes(data)

    async def rename(self, old_path: str, new_path: str) -> None:
        if old_path not in self.files:
            raise FileNotFoundError(old_path)
        self.files[new_path] = self.files.pop(old_path)

    async def unlink(self, path: str) -> None:
        if path not in self.files:
            raise FileNotFoundError(path)
        del self.files[path]

    async def mkdir(self, path: str) -> None:
        self._make_dirs(path)

    async def rmdir(self, path: str) -> None:
        if path not in self.dirs:
            raise FileNotFoundError(path)
        if any(posixpath.dirname(p) == path for p in (*self.files, *self.dirs)):
            raise OSError(f"Directory not empty: {path}")
        self.dirs.remove(path)

    async def readdir(self, path: str) -> list[RemoteEntry]:
        if path not in self.dirs:
            raise FileNotFoundError(path)
        entries = [
            RemoteEntry(name=posixpath.basename(p), is_dir=False, size=len(data))
            for p, data in self.files.items()
            if posixpath.dirname(p) == path
        ]
        entries.extend(
            RemoteEntry(name=posixpath.basename(d), is_dir=True, size=0)
            for d in self.dirs
            if d != path and posixpath.dirname(d) == path
        )
        return entries


class ScriptedProvider:
    """ToolCallingProvider that replays queued responses.

    Queue items are ModelResponses or exceptions to raise. When the queue
    is empty the model answers "Done.". If ``gate`` is set, every converse
    call waits for it first.
    """

    model = "scripted-model"

    def __init__(
        self,
        responses: list[ModelResponse | Exception] | None = None,
        plan: str = "1. Edit the file",
    ) -> None:
        self.responses = list(responses or [])
        self.plan = plan
        self.calls: list[dict[str, Any]] = []
        self.complete_calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def converse(
        self,
        history: list[Turn],
        tools: list[dict[str, Any]],
        system: str,
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {
                "history": list(history),
                "tools": tools,
                "system": system,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return text_turn("Done.")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        self.complete_calls.append(
            {"messages": messages, "max_tokens": max_tokens, "temperature": temperature}
        )
        if self.responses and isinstance(self.responses[0], Exception):
            raise self.responses.pop(0)
        return CompletionResult(content=self.plan, finish_reason="stop")


class EventRecorder:
    """EventSink that keeps every event."""

    def __init__(self) -> None:
        self.events: list[AgentEvent] = []

    def __call__(self, event: AgentEvent) -> None:
        self.events.append(event)

    def types(self) -> list[EventKind]:
        return [e.type for e in self.events]

    def of(self, kind: EventKind) -> list[AgentEvent]:
        return [e for e in self.events if e.type is kind]

    async def wait_for(self, kind: EventKind, count: int = 1, timeout: float = 2.0) -> AgentEvent:
        """Wait until ``count`` events of ``kind`` were recorded; return the last."""

        async def poll() -> AgentEvent:
            while len(self.of(kind)) < count:
                await asyncio.sleep(0.005)
            return self.of(kind)[count - 1]

        return await asyncio.wait_for(poll(), timeout=timeout)


def text_turn(text: str) -> ModelResponse:
    """An assistant turn with only text: the model is done."""
    return ModelResponse(turn=Turn(Role.ASSISTANT, (TextBlock(text),)), stop_reason="end_turn")


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelResponse:
    """An assistant turn requesting one or more tool calls."""
    blocks: list[Any] = [TextBlock(text)] if text else []
    for name, args in calls:
        blocks.append(ToolUseBlock(id=f"call_{next(_call_ids)}", name=name, args=args))
    return ModelResponse(turn=Turn(Role.ASSISTANT, tuple(blocks)), stop_reason="tool_use")


def create_mock_llm_response(
    content: str | None = "Test response",
    tool_calls: list[tuple[str, str, str]] | None = None,
    finish_reason: str = "stop",
) -> Any:
    """Create a mock litellm response.

    Args:
        content: Assistant text.
        tool_calls: (id, name, JSON arguments) triples.
        finish_reason: Reported finish reason.
    """
    from unittest.mock import Mock

    response = Mock()
    response.choices = [Mock()]
    message = Mock()
    message.content = content
    calls = []
    for call_id, name, arguments in tool_calls or []:
        call = Mock()
        call.id = call_id
        call.function = Mock()
        call.function.name = name
        call.function.arguments = arguments
        calls.append(call)
    message.tool_calls = calls or None
    response.choices[0].message = message
    response.choices[0].finish_reason = finish_reason

    response.usage = Mock()
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 20
    response.usage.total_tokens = 30

    return response
