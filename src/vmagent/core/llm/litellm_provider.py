"""LiteLLM provider implementation.

Supports 100+ LLM providers through litellm:
- Anthropic: "claude-sonnet-4-20250514"
- Bedrock: "bedrock/us.anthropic.claude-3-5-sonnet-20241022-v2:0"
- OpenAI: "gpt-4o"
- Local: "ollama/llama3"

Tool calling uses the OpenAI message format that litellm normalizes to:
assistant messages carry ``tool_calls`` and every tool result is a
separate ``tool`` message keyed by ``tool_call_id``.
"""

from __future__ import annotations

import json
from typing import Any

import litellm

from vmagent.core.llm.provider import (
    CompletionResult,
    Message,
    ModelResponse,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
)
from vmagent.config.secrets import fetch_secret
from vmagent.errors import ModelRateLimitError, ModelServiceError
from vmagent.logging import get_logger

log = get_logger("llm")


def turns_to_messages(history: list[Turn], system: str | None = None) -> list[dict[str, Any]]:
    """Convert conversation turns to litellm/OpenAI chat messages."""
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})

    for turn in history:
        if turn.role is Role.ASSISTANT:
            entry: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
            tool_uses = turn.tool_uses
            if tool_uses:
                entry["tool_calls"] = [
                    {
                        "id": use.id,
                        "type": "function",
                        "function": {"name": use.name, "arguments": json.dumps(use.args)},
                    }
                    for use in tool_uses
                ]
            messages.append(entry)
            continue

        results = [b for b in turn.blocks if isinstance(b, ToolResultBlock)]
        for result in results:
            content = f"Error: {result.content}" if result.is_error else result.content
            messages.append(
                {"role": "tool", "tool_call_id": result.tool_use_id, "content": content}
            )
        if turn.text:
            messages.append({"role": turn.role.value, "content": turn.text})

    return messages


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        log.warning("Model sent unparsable tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def response_to_turn(response: Any) -> ModelResponse:
    """Convert a litellm completion response to a ModelResponse."""
    choice = response.choices[0]
    message = choice.message
    blocks: list[TextBlock | ToolUseBlock] = []

    if message.content:
        blocks.append(TextBlock(message.content))

    for index, call in enumerate(getattr(message, "tool_calls", None) or []):
        blocks.append(
            ToolUseBlock(
                id=call.id or f"tool_{index}",
                name=call.function.name or "unknown",
                args=_parse_arguments(call.function.arguments),
            )
        )

    return ModelResponse(turn=Turn(Role.ASSISTANT, tuple(blocks)), stop_reason=choice.finish_reason)


class LiteLLMProvider:
    """Model service backed by litellm.

    Usage:
        provider = LiteLLMProvider("claude-sonnet-4-20250514")
        provider = LiteLLMProvider("gpt-4o", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float | None = 120.0,
        **kwargs: Any,
    ) -> None:
        """Initialize the provider.

        Args:
            model: Model identifier (e.g., "claude-sonnet-4-20250514", "gpt-4o")
            api_key: API key (uses env vars if not provided)
            api_base: Custom API base URL
            timeout: Per-request timeout in seconds
            **kwargs: Additional litellm options
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._timeout = timeout
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        temperature: float | None,
        stop: list[str] | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
            **self._kwargs,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        if stop:
            kwargs["stop"] = stop
        if tools:
            kwargs["tools"] = tools
        return kwargs

    async def _acompletion(self, kwargs: dict[str, Any]) -> Any:
        try:
            return await litellm.acompletion(**kwargs)
        except litellm.RateLimitError as e:
            raise ModelRateLimitError(str(e)) from e
        except Exception as e:
            raise ModelServiceError(f"Model request failed: {e}") from e

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Generate a completion (non-streaming)."""
        kwargs = self._build_kwargs(
            [{"role": m.role.value, "content": m.content} for m in messages],
            max_tokens=max_tokens,
            temperature=temperature,
            stop=stop,
        )
        response = await self._acompletion(kwargs)

        content = response.choices[0].message.content or ""
        finish_reason = response.choices[0].finish_reason

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(content=content, finish_reason=finish_reason, usage=usage)

    async def converse(
        self,
        history: list[Turn],
        tools: list[dict[str, Any]],
        system: str,
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> ModelResponse:
        """Request the next assistant turn with tools attached."""
        kwargs = self._build_kwargs(
            turns_to_messages(history, system),
            max_tokens=max_tokens,
            temperature=temperature,
            tools=tools,
        )
        response = await self._acompletion(kwargs)
        return response_to_turn(response)


# Model name prefix -> environment variable holding its API key
_API_KEY_ENV = (
    ("claude", "ANTHROPIC_API_KEY"),
    ("anthropic/", "ANTHROPIC_API_KEY"),
    ("gpt", "OPENAI_API_KEY"),
    ("openai/", "OPENAI_API_KEY"),
    ("gemini", "GEMINI_API_KEY"),
    ("deepseek", "DEEPSEEK_API_KEY"),
)


def api_key_env_for(model: str) -> str | None:
    name = model.lower()
    for prefix, env_var in _API_KEY_ENV:
        if name.startswith(prefix):
            return env_var
    return None


def create_provider(model: str = "claude-sonnet-4-20250514", **kwargs: Any) -> LiteLLMProvider:
    """Create a provider, looking up the API key if none is given.

    Bedrock, Ollama and other providers without a known key variable fall
    back to litellm's own credential discovery.
    """
    if kwargs.get("api_key") is None:
        env_var = api_key_env_for(model)
        if env_var:
            kwargs["api_key"] = fetch_secret(env_var)
    return LiteLLMProvider(model, **kwargs)
