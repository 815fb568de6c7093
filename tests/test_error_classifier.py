"""Tests for stderr cleanup and auth/generic failure classification."""
from __future__ import annotations

import pytest

from cliweave.engine.error_classifier import (
    classify,
    clean_stderr,
    failure_event,
    is_authentication_error,
)
from cliweave.engine.models import AuthErrorEvent, ErrorEvent, FailureKind
from cliweave.engine.providers.claude_provider import ClaudeProvider
from cliweave.engine.providers.gemini_provider import GeminiProvider


def test_clean_stderr_strips_benign_lines_and_stack_frames():
    raw = "\n".join([
        "[STARTUP] StartupProfiler.flush() called",
        "Loaded cached credentials.",
        "Error: quota exceeded",
        "    at runTurn (cli.js:10:5)",
        "Recording metric tokens",
        "Full report available at: /tmp/x.json",
    ])
    assert clean_stderr(raw) == "Error: quota exceeded"
    assert clean_stderr(None) == ""


@pytest.mark.parametrize("text", [
    "Error: not authenticated, please login",
    "Authentication has FAILED for user",
    "401 Unauthorized",
    "Your token is invalid or expired: invalid refresh token",
    "Please set an auth method in settings.json",
    "GEMINI_API_KEY environment variable not found",
    "Error: could not open a new TTY",
    "API key is invalid",
])
def test_auth_patterns_match(text):
    assert is_authentication_error(text)
    assert classify(text) == FailureKind.AUTH


@pytest.mark.parametrize("text", [
    "Error: rate limit exceeded",
    "ENOENT: no such file",
    "",
])
def test_generic_failures(text):
    assert not is_authentication_error(text)
    assert classify(text) == FailureKind.GENERIC


def test_failure_event_auth_carries_provider_details():
    event = failure_event("Error: not authenticated, please login", "exit 1", ClaudeProvider())
    assert isinstance(event, AuthErrorEvent)
    assert event.auth_command == "claude auth login"
    assert event.provider_name == "Claude Code"
    assert event.message == "Error: not authenticated, please login"


def test_failure_event_generic_uses_default_when_stderr_empty():
    event = failure_event("[STARTUP] only banners\n", "No response received from CLI", GeminiProvider())
    assert event == ErrorEvent(message="No response received from CLI")
