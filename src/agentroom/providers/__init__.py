"""Backend adapters, one per ``ProviderType``."""

from .anthropic import AnthropicProvider
from .base import Provider, ProviderOptions, ProviderRequest
from .claude_code import ClaudeCodeProvider
from .openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "ClaudeCodeProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderOptions",
    "ProviderRequest",
]
