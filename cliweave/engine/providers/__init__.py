"""Providers: one per external CLI agent."""
from .base import Provider
from .registry import ProviderRegistry, build_provider_registry
from .claude_provider import ClaudeProvider
from .gemini_provider import GeminiProvider
from .cline_provider import ClineProvider
from .cursor_provider import CursorProvider
from .copilot_provider import CopilotProvider

__all__ = [
    "Provider",
    "ProviderRegistry",
    "build_provider_registry",
    "ClaudeProvider",
    "GeminiProvider",
    "ClineProvider",
    "CursorProvider",
    "CopilotProvider",
]
