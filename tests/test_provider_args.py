"""Tests for per-provider argv, prompt delivery and environment."""
from __future__ import annotations

import pytest

from cliweave.engine.config import EngineConfig
from cliweave.engine.models import (
    AccessLevel,
    AuthErrorEvent,
    OperationMode,
    SessionActiveEvent,
    ThinkingLevel,
    TurnSettings,
)
from cliweave.engine.platform import reset_platform_caches
from cliweave.engine.providers.claude_provider import ClaudeProvider, permission_flags
from cliweave.engine.providers.cline_provider import ClineProvider
from cliweave.engine.providers.copilot_provider import CopilotProvider
from cliweave.engine.providers.cursor_provider import CursorProvider
from cliweave.engine.providers.gemini_provider import GeminiProvider


def _settings(mode=OperationMode.ASK_BEFORE_EDIT, access=AccessLevel.ASK_PERMISSION, **kw):
    return TurnSettings(mode=mode, access_level=access, **kw)


# ── claude ──


@pytest.mark.parametrize("mode,access,expected", [
    (OperationMode.QUICK_PLAN, AccessLevel.FULL_ACCESS, ["--permission-mode", "plan"]),
    (OperationMode.EDIT_AUTOMATICALLY, AccessLevel.READ_ONLY, ["--permission-mode", "plan"]),
    (
        OperationMode.EDIT_AUTOMATICALLY, AccessLevel.FULL_ACCESS,
        ["--dangerously-skip-permissions", "--permission-mode", "bypassPermissions"],
    ),
    (OperationMode.EDIT_AUTOMATICALLY, AccessLevel.ASK_PERMISSION, ["--permission-mode", "bypassPermissions"]),
    (OperationMode.ASK_BEFORE_EDIT, AccessLevel.FULL_ACCESS, ["--permission-mode", "bypassPermissions"]),
    (OperationMode.ASK_BEFORE_EDIT, AccessLevel.ASK_PERMISSION, ["--permission-mode", "default"]),
])
def test_claude_permission_matrix(mode, access, expected):
    assert permission_flags(_settings(mode, access)) == expected


def test_claude_first_turn_uses_print_then_resume():
    provider = ClaudeProvider()
    session = provider.registry.get_or_create("p")
    args = provider.build_cli_args(_settings(), session)
    assert args[:4] == ["--output-format", "stream-json", "--include-partial-messages", "--verbose"]
    assert "--print" in args
    assert "--resume" not in args

    session.session_id = "abc"
    args = provider.build_cli_args(_settings(), session)
    assert args[args.index("--resume") + 1] == "abc"
    assert "--print" not in args


def test_claude_persistent_args_never_print():
    provider = ClaudeProvider()
    session = provider.registry.get_or_create()
    args = provider.build_persistent_args(_settings(model="opus"), session)
    assert "--print" not in args
    assert args[-2:] == ["--model", "opus"]
    assert provider.supports_persistent


def test_configured_model_wins_and_invalid_dropped():
    session = ClaudeProvider().registry.get_or_create()
    provider = ClaudeProvider(model="sonnet")
    assert provider.resolve_model(_settings(model="opus")) == "sonnet"
    assert ClaudeProvider().resolve_model(_settings(model="opus; rm -rf /")) is None
    args = ClaudeProvider().build_cli_args(_settings(model="bad model"), session)
    assert "--model" not in args


def test_claude_env_thinking_budget_and_api_key(monkeypatch):
    monkeypatch.setenv("MY_CLAUDE_KEY", "sk-test")
    provider = ClaudeProvider(api_key_env="MY_CLAUDE_KEY")
    env = provider.extra_env(_settings(thinking_level=ThinkingLevel.HIGH))
    assert env == {"MAX_THINKING_TOKENS": "16000", "ANTHROPIC_API_KEY": "sk-test"}
    assert ClaudeProvider().extra_env(_settings(thinking_level=ThinkingLevel.NONE)) == {
        "MAX_THINKING_TOKENS": "0",
    }


def test_build_env_keeps_host_environment(monkeypatch):
    monkeypatch.setenv("CLIWEAVE_TEST_MARKER", "1")
    reset_platform_caches()
    env = ClaudeProvider().build_env(_settings())
    assert env["CLIWEAVE_TEST_MARKER"] == "1"
    assert env["MAX_THINKING_TOKENS"] == "8000"
    reset_platform_caches()


# ── gemini ──


def test_gemini_sandbox_for_plan_and_read_only():
    provider = GeminiProvider()
    session = provider.registry.get_or_create()
    assert "--sandbox" in provider.build_cli_args(_settings(OperationMode.DETAILED_PLAN), session)
    assert "--sandbox" in provider.build_cli_args(_settings(access=AccessLevel.READ_ONLY), session)


def test_gemini_yolo_for_full_access_or_auto_edit():
    provider = GeminiProvider()
    session = provider.registry.get_or_create()
    assert "--yolo" in provider.build_cli_args(_settings(access=AccessLevel.FULL_ACCESS), session)
    assert "--yolo" in provider.build_cli_args(_settings(OperationMode.EDIT_AUTOMATICALLY), session)
    plain = provider.build_cli_args(_settings(), session)
    assert "--yolo" not in plain and "--sandbox" not in plain


def test_gemini_only_known_per_turn_models_pass_through():
    provider = GeminiProvider()
    session = provider.registry.get_or_create()
    args = provider.build_cli_args(_settings(model="gemini-2.5-pro"), session)
    assert args[args.index("-m") + 1] == "gemini-2.5-pro"
    assert "-m" not in provider.build_cli_args(_settings(model="claude-opus"), session)
    configured = GeminiProvider(model="gemini-custom-1")
    assert configured.resolve_model(_settings(model="gemini-2.5-pro")) == "gemini-custom-1"


def test_gemini_resume_and_no_persistent_mode():
    provider = GeminiProvider()
    session = provider.registry.get_or_create()
    session.session_id = "g-1"
    assert provider.build_cli_args(_settings(), session)[-2:] == ["--resume", "g-1"]
    assert not provider.supports_persistent


# ── cline ──


def test_cline_mode_flags():
    provider = ClineProvider()
    session = provider.registry.get_or_create()
    assert provider.build_cli_args(_settings(OperationMode.QUICK_PLAN), session) == [
        "--output-format", "json", "--mode", "plan",
    ]
    assert provider.build_cli_args(
        _settings(OperationMode.EDIT_AUTOMATICALLY, AccessLevel.FULL_ACCESS), session,
    ) == ["--output-format", "json", "--mode", "act", "--yolo"]


def test_cline_prompt_positional_or_stdin_when_long():
    provider = ClineProvider(config=EngineConfig(max_arg_length=10))
    assert provider.prompt_args("short") == (["short"], None)
    long_prompt = "x" * 11
    assert provider.prompt_args(long_prompt) == (["-"], long_prompt)


def test_cline_synthetic_session_event():
    provider = ClineProvider()
    session = provider.registry.get_or_create("panel-9")
    [event] = provider.preamble_events(session)
    assert isinstance(event, SessionActiveEvent)
    assert event.session_id.startswith("cline-panel-9-")
    assert session.session_id_synthetic
    # The same id is reported again on later turns.
    assert provider.preamble_events(session) == [event]


# ── cursor ──


def test_cursor_args_default_model_and_force():
    provider = CursorProvider()
    session = provider.registry.get_or_create()
    args = provider.build_cli_args(_settings(), session)
    assert args == [
        "--output-format", "stream-json", "--print", "--stream-partial-output",
        "--model", "auto",
    ]
    forced = provider.build_cli_args(
        _settings(OperationMode.EDIT_AUTOMATICALLY, AccessLevel.FULL_ACCESS, model="gpt-5"),
        session,
    )
    assert forced[-3:] == ["--model", "gpt-5", "--force"]
    assert provider.prompt_args("do it") == (["-p", "do it"], None)


def test_cursor_api_key_goes_through_env(monkeypatch):
    monkeypatch.setenv("CURSOR_KEY_SOURCE", "cur-123")
    provider = CursorProvider(api_key_env="CURSOR_KEY_SOURCE")
    session = provider.registry.get_or_create()
    assert "cur-123" not in provider.build_cli_args(_settings(), session)
    assert provider.extra_env(_settings()) == {"CURSOR_API_KEY": "cur-123"}


# ── copilot ──


def test_copilot_tool_permissions():
    provider = CopilotProvider()
    session = provider.registry.get_or_create()
    assert provider.build_cli_args(_settings(access=AccessLevel.READ_ONLY), session) == [
        "--deny-tool", "shell", "--deny-tool", "write",
    ]
    assert provider.build_cli_args(_settings(access=AccessLevel.FULL_ACCESS), session) == [
        "--allow-all-tools",
    ]
    assert provider.build_cli_args(_settings(), session) == []


def test_copilot_never_resumes_synthetic_id():
    provider = CopilotProvider()
    session = provider.registry.get_or_create()
    provider.preamble_events(session)
    assert session.session_id is not None
    assert "--resume" not in provider.build_cli_args(_settings(), session)


def test_copilot_post_stream_auth_check():
    provider = CopilotProvider()
    session = provider.registry.get_or_create()
    event = provider.post_stream_failure(session, "Error: not authenticated\n")
    assert event == AuthErrorEvent(
        message="Error: not authenticated",
        auth_command="copilot",
        provider_name="GitHub Copilot",
    )
    assert provider.post_stream_failure(session, "warning: slow network") is None
