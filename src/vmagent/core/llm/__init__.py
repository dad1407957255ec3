"""Model service abstraction."""

from vmagent.core.llm.litellm_provider import LiteLLMProvider, create_provider
from vmagent.core.llm.provider import (
    CompletionResult,
    LLMProvider,
    Message,
    ModelResponse,
    Role,
    TextBlock,
    ToolCallingProvider,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
)

__all__ = [
    # Protocols and implementations
    "LLMProvider",
    "ToolCallingProvider",
    "LiteLLMProvider",
    "create_provider",
    # Conversation types
    "CompletionResult",
    "Message",
    "ModelResponse",
    "Role",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "Turn",
]
