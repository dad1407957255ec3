"""Conversational tool-calling loop.

One ConversationLoop belongs to one agent session. run() drives the model
until it answers without tool calls, the turn cap is hit, or cancel() is
called. Tool calls go through a caller-supplied executor; the loop never
touches the sandbox itself.

The conversation survives between runs of the same instance, which is how
a follow-up prompt sees the earlier exchange.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from vmagent.config.schema import AgentConfig, LLMConfig
from vmagent.core.llm.provider import (
    Message,
    ModelResponse,
    Role,
    ToolCallingProvider,
    ToolResultBlock,
    Turn,
)
from vmagent.errors import ModelRateLimitError, ToolError
from vmagent.logging import get_logger
from vmagent.session.events import Emit, EventKind
from vmagent.session.prompts import AGENT_SYSTEM_PROMPT, PLAN_SYSTEM_PROMPT
from vmagent.session.tools import tool_schemas
from vmagent.session.validator import redact_secrets

log = get_logger("session.loop")

T = TypeVar("T")

ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[Any]]

STOPPED_SUMMARY = "Agent was stopped by user."
MAX_ITERATIONS_SUMMARY = "Agent reached maximum iterations without completing."
NO_RESPONSE_SUMMARY = "No response from AI model"
DEFAULT_SUMMARY = "Changes completed."
PLAN_FALLBACK = "Unable to generate plan."
CANCELLED_RESULT = "Cancelled: the session was stopped before this tool ran"


@dataclass(frozen=True, slots=True)
class LoopResult:
    summary: str
    success: bool


def format_user_message(prompt: str, context_info: str, is_continuation: bool = False) -> str:
    """Frame the prompt and (already redacted) context for the model."""
    if is_continuation:
        if context_info:
            return f"Follow-up prompt: {prompt}\n\nCurrent Context:\n{context_info}"
        return f"Follow-up prompt: {prompt}"
    if context_info:
        return f"{prompt}\n\n--- Context ---\n{context_info}"
    return prompt


def format_tool_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2)


class ConversationLoop:
    """Multi-turn exchange with a tool-calling model.

    Args:
        provider: Model service.
        llm_config: Token and temperature settings for both modes.
        max_iterations: Cap on model turns per run().
        max_retries: Attempts per model call; only rate limits are retried.
        retry_base_delay: First backoff delay in seconds, doubled per retry.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        provider: ToolCallingProvider,
        llm_config: LLMConfig | None = None,
        *,
        max_iterations: int = 30,
        max_retries: int = 3,
        retry_base_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._llm = llm_config or LLMConfig()
        self._max_iterations = max_iterations
        self._max_retries = max(1, max_retries)
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._history: list[Turn] = []
        self._cancelled = False

    @classmethod
    def from_config(
        cls,
        provider: ToolCallingProvider,
        llm_config: LLMConfig,
        agent_config: AgentConfig,
    ) -> ConversationLoop:
        return cls(
            provider,
            llm_config,
            max_iterations=agent_config.max_iterations,
            max_retries=agent_config.max_model_retries,
            retry_base_delay=agent_config.retry_base_delay,
        )

    @property
    def history(self) -> list[Turn]:
        return list(self._history)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop at the next check: between tool calls or before the next turn."""
        self._cancelled = True

    def clear_cancel(self) -> None:
        """Allow a stopped loop to run again (follow-up prompts)."""
        self._cancelled = False

    async def run(
        self,
        prompt: str,
        context_info: str,
        executor: ToolExecutor,
        emit: Emit,
        is_continuation: bool = False,
    ) -> LoopResult:
        """Run until a final answer, the turn cap or cancellation.

        Tool failures (ToolError, OSError) are returned to the model as
        error results. Model service failures propagate.
        """
        message = format_user_message(prompt, redact_secrets(context_info), is_continuation)
        if is_continuation:
            self._history.append(Turn.user_text(message))
        else:
            self._history = [Turn.user_text(message)]

        emit(EventKind.PLAN, {"status": "Agent is analyzing the request..."})

        schemas = tool_schemas()
        iterations = 0

        while iterations < self._max_iterations and not self._cancelled:
            iterations += 1
            log.debug("Model turn %d", iterations)

            response: ModelResponse = await self._with_retries(
                lambda: self._provider.converse(
                    self._history,
                    schemas,
                    AGENT_SYSTEM_PROMPT,
                    max_tokens=self._llm.max_tokens,
                    temperature=self._llm.temperature,
                ),
                "converse",
            )

            turn = response.turn
            if not turn.blocks:
                return LoopResult(NO_RESPONSE_SUMMARY, success=False)
            self._history.append(turn)

            if turn.text:
                emit(EventKind.AGENT_TEXT, {"text": turn.text})

            tool_uses = turn.tool_uses
            if not tool_uses:
                return LoopResult(turn.text or DEFAULT_SUMMARY, success=True)

            results: list[ToolResultBlock] = []
            for tool_use in tool_uses:
                if self._cancelled:
                    # Every tool use needs a result for the history to stay valid
                    results.append(ToolResultBlock(tool_use.id, CANCELLED_RESULT, is_error=True))
                    continue

                emit(
                    EventKind.TOOL_START,
                    {"tool": tool_use.name, "args": tool_use.args, "tool_id": tool_use.id},
                )
                try:
                    result = await executor(tool_use.name, tool_use.args)
                except (ToolError, OSError) as e:
                    emit(
                        EventKind.TOOL_ERROR,
                        {"tool": tool_use.name, "tool_id": tool_use.id, "error": str(e)},
                    )
                    results.append(ToolResultBlock(tool_use.id, str(e), is_error=True))
                    continue

                emit(
                    EventKind.TOOL_COMPLETE,
                    {"tool": tool_use.name, "tool_id": tool_use.id, "result": result},
                )
                results.append(ToolResultBlock(tool_use.id, format_tool_result(result)))

            self._history.append(Turn(Role.USER, tuple(results)))

        if self._cancelled:
            return LoopResult(STOPPED_SUMMARY, success=False)
        return LoopResult(MAX_ITERATIONS_SUMMARY, success=False)

    async def plan_only(self, prompt: str, context_info: str) -> str:
        """Ask for a short numbered plan; no tools, no history."""
        message = format_user_message(prompt, redact_secrets(context_info))
        messages = [
            Message(Role.SYSTEM, PLAN_SYSTEM_PROMPT),
            Message(Role.USER, message),
        ]
        result = await self._with_retries(
            lambda: self._provider.complete(
                messages,
                max_tokens=self._llm.plan_max_tokens,
                temperature=self._llm.plan_temperature,
            ),
            "plan",
        )
        text = (result.content or "").strip()
        return text or PLAN_FALLBACK

    async def _with_retries(self, call: Callable[[], Awaitable[T]], label: str) -> T:
        """Await ``call()``, retrying rate-limit errors with exponential backoff."""
        for attempt in range(self._max_retries):
            try:
                return await call()
            except ModelRateLimitError:
                if attempt >= self._max_retries - 1:
                    raise
                delay = self._retry_base_delay * (2**attempt)
                log.warning("Model rate limited (%s), retrying in %.1fs", label, delay)
                await self._sleep(delay)
        raise AssertionError("unreachable")
