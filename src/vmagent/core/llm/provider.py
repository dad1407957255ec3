"""Model service protocol and conversation types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Message:
    """A plain text message, used for single-shot completions."""

    role: Role
    content: str


@dataclass(slots=True)
class CompletionResult:
    """Result from a non-streaming completion."""

    content: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool-calling conversation
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    args: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolResultBlock:
    """The outcome of one ToolUseBlock, keyed by its id."""

    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True, slots=True)
class Turn:
    """One entry of the conversation history.

    User turns carry text, or the bundled tool results of the previous
    assistant turn. Assistant turns carry text and tool uses.
    """

    role: Role
    blocks: tuple[ContentBlock, ...]

    @classmethod
    def user_text(cls, text: str) -> Turn:
        return cls(Role.USER, (TextBlock(text),))

    @property
    def text(self) -> str:
        """Text blocks joined by newlines."""
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock) and b.text)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]


@dataclass(frozen=True, slots=True)
class ModelResponse:
    """An assistant turn plus why the model stopped."""

    turn: Turn
    stop_reason: str | None = None


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for single-shot completions (plan-only mode)."""

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Generate a completion.

        Raises:
            ModelRateLimitError: The service throttled the request.
            ModelServiceError: Any other transport or API failure.
        """
        ...


@runtime_checkable
class ToolCallingProvider(LLMProvider, Protocol):
    """Protocol for multi-turn tool-calling exchanges."""

    async def converse(
        self,
        history: list[Turn],
        tools: list[dict[str, Any]],
        system: str,
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> ModelResponse:
        """Request the next assistant turn.

        Args:
            history: Conversation so far, oldest first.
            tools: Tool schemas in OpenAI function format.
            system: System instruction.

        Raises:
            ModelRateLimitError: The service throttled the request.
            ModelServiceError: Any other transport or API failure.
        """
        ...
