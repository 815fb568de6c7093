"""Protocol normalizers, one per external CLI dialect."""
from .base import StreamNormalizer
from .claude import ClaudeNormalizer
from .cline import ClineNormalizer
from .copilot import CopilotNormalizer
from .cursor import CursorNormalizer
from .gemini import GeminiNormalizer

NORMALIZERS: dict[str, type[StreamNormalizer]] = {
    "claude": ClaudeNormalizer,
    "gemini": GeminiNormalizer,
    "cline": ClineNormalizer,
    "cursor": CursorNormalizer,
    "copilot": CopilotNormalizer,
}


def normalizer_for(provider_type: str) -> StreamNormalizer:
    """Instantiate the normalizer for a provider type id."""
    try:
        return NORMALIZERS[provider_type]()
    except KeyError:
        raise KeyError(
            f"No normalizer for provider type '{provider_type}'. "
            f"Known: {', '.join(NORMALIZERS)}"
        ) from None


__all__ = [
    "NORMALIZERS",
    "StreamNormalizer",
    "ClaudeNormalizer",
    "ClineNormalizer",
    "CopilotNormalizer",
    "CursorNormalizer",
    "GeminiNormalizer",
    "normalizer_for",
]
