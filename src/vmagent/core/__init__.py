"""Core runtime modules."""

from vmagent.core.llm import LiteLLMProvider, LLMProvider, Message, Role, ToolCallingProvider

__all__ = [
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
    "ToolCallingProvider",
]
