"""Stderr cleanup and failure classification.

A failed turn's stderr is stripped of known-benign diagnostics and
then classified as an authentication failure or a generic one.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .models import AuthErrorEvent, ErrorEvent, FailureKind

if TYPE_CHECKING:
    from .providers.base import Provider

logger = logging.getLogger(__name__)

_BENIGN_PREFIXES = (
    "[STARTUP]",
    "Recording metric",
    "Loaded cached credentials",
    "Full report available at:",
    "Hook registry initialized",
    "StartupProfiler",
)
_STACK_FRAME = re.compile(r"^\s*at\s+")

AUTH_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE) for p in (
        r"not authenticated",
        r"authentication.*failed",
        r"no authentication",
        r"invalid.*token",
        r"expired.*token",
        r"unauthorized",
        r"auth.*required",
        r"please.*login",
        r"please.*sign in",
        r"api.?key.*invalid",
        r"access.*denied",
        r"set an auth method",
        r"GEMINI_API_KEY",
        r"GOOGLE_GENAI_USE_VERTEXAI",
        r"auth setup failed",
        r"could not open a new TTY",
    )
)


def clean_stderr(text: str | None) -> str:
    """Drop startup banners, metric lines and stack frames."""
    if not text:
        return ""
    kept = [
        line for line in text.splitlines()
        if not line.strip().startswith(_BENIGN_PREFIXES)
        and not _STACK_FRAME.match(line)
    ]
    return "\n".join(kept).strip()


def is_authentication_error(text: str | None) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in AUTH_PATTERNS)


def classify(text: str | None) -> FailureKind:
    return FailureKind.AUTH if is_authentication_error(text) else FailureKind.GENERIC


def failure_event(
    stderr: str | None,
    default_message: str,
    provider: Provider,
) -> AuthErrorEvent | ErrorEvent:
    """Build the terminal event for a failed turn."""
    message = clean_stderr(stderr) or default_message
    if classify(message) == FailureKind.AUTH:
        logger.warning(
            "%s authentication failure: %s", provider.display_name, message[:200],
        )
        return AuthErrorEvent(
            message=message,
            auth_command=provider.auth_command,
            provider_name=provider.display_name,
        )
    logger.warning("%s failed: %s", provider.display_name, message[:200])
    return ErrorEvent(message=message)
