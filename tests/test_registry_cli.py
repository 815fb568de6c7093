"""Tests for the provider registry and the JSON-lines CLI."""
from __future__ import annotations

import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cliweave.engine.cli import build_parser, main, run_turn
from cliweave.engine.config import EngineConfig
from cliweave.engine.errors import ProviderNotFoundError
from cliweave.engine.models import DoneEvent, ErrorEvent, TextEvent, UsageSnapshot
from cliweave.engine.providers import (
    ClaudeProvider,
    GeminiProvider,
    ProviderRegistry,
    build_provider_registry,
)
from cliweave.engine.yaml_config import ProviderConfig


class FakeProvider:
    display_name = "Fake"
    command = "fake"
    persistent_enabled = False

    def __init__(self, events):
        self.events = events
        self.calls = []
        self.shut_down = False

    async def send_message(self, prompt, settings=None, *, panel_id=None, tracker=None, cwd=None):
        self.calls.append((prompt, settings, panel_id))
        for event in self.events:
            yield event

    async def shutdown(self):
        self.shut_down = True


# ── registry ──


def test_default_registry_has_every_builtin_provider():
    registry = build_provider_registry()
    assert registry.list_names() == ["claude", "gemini", "cline", "cursor", "copilot"]
    assert registry.count == 5
    assert "cursor" in registry
    assert registry.get("cursor").command == "agent"


def test_registry_from_configs_skips_unknown_types():
    engine = EngineConfig(persistent_processes=True)
    registry = build_provider_registry({
        "fast": ProviderConfig(type="gemini", model="gemini-2.5-flash", command="/opt/gemini"),
        "main": ProviderConfig(type="claude", persistent=False),
        "odd": ProviderConfig(type="mystery"),
    }, engine)
    assert registry.list_names() == ["fast", "main"]
    fast = registry.get("fast")
    assert isinstance(fast, GeminiProvider)
    assert fast.command == "/opt/gemini"
    assert fast.default_model == "gemini-2.5-flash"
    assert fast.persistent_enabled is True
    main_provider = registry.get("main")
    assert isinstance(main_provider, ClaudeProvider)
    assert main_provider.persistent_enabled is False


def test_get_or_raise_lists_available():
    registry = ProviderRegistry()
    registry.register("claude", ClaudeProvider())
    with pytest.raises(ProviderNotFoundError) as exc_info:
        registry.get_or_raise("cursor")
    assert exc_info.value.available == ["claude"]
    assert "Available providers: claude" in str(exc_info.value)


def test_availability_report():
    registry = ProviderRegistry()
    registry.register("claude", ClaudeProvider())
    registry.register("gemini", GeminiProvider())
    with patch(
        "cliweave.engine.providers.base.resolve_executable",
        side_effect=lambda cmd: "/usr/bin/claude" if cmd == "claude" else None,
    ):
        assert registry.validate() == {"claude": True, "gemini": False}


@pytest.mark.asyncio
async def test_shutdown_all_continues_past_failures():
    registry = ProviderRegistry()
    broken = MagicMock()
    broken.shutdown = AsyncMock(side_effect=RuntimeError("boom"))
    healthy = FakeProvider([])
    registry.register("broken", broken)
    registry.register("healthy", healthy)
    await registry.shutdown_all()
    assert healthy.shut_down


# ── cli ──


def test_parser_defaults():
    args = build_parser().parse_args(["hello"])
    assert args.prompt == "hello"
    assert args.provider is None
    assert args.mode == "ask-before-edit"
    assert args.access == "ask-permission"
    assert args.thinking == "medium"
    assert not args.persistent


def test_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--mode", "yolo", "hi"])


@pytest.mark.asyncio
async def test_run_turn_writes_json_lines_and_exit_status():
    fake = FakeProvider([
        TextEvent(content="Hi"),
        DoneEvent(usage=UsageSnapshot(input_tokens=1, output_tokens=2)),
    ])
    registry = ProviderRegistry()
    registry.register("claude", fake)
    args = build_parser().parse_args([
        "--panel", "p7", "--mode", "quick-plan", "--model", "opus", "hello",
    ])
    out = io.StringIO()
    with patch(
        "cliweave.engine.providers.registry.build_provider_registry",
        return_value=registry,
    ):
        status = await run_turn(args, "hello", out=out)

    assert status == 0
    lines = [json.loads(line) for line in out.getvalue().splitlines()]
    assert lines == [
        {"type": "text", "content": "Hi"},
        {"type": "done", "usage": {"input_tokens": 1, "output_tokens": 2}},
    ]
    prompt, settings, panel = fake.calls[0]
    assert (prompt, panel) == ("hello", "p7")
    assert settings.is_plan_mode
    assert settings.model == "opus"
    assert fake.shut_down


@pytest.mark.asyncio
async def test_run_turn_failure_event_sets_status():
    registry = ProviderRegistry()
    registry.register("claude", FakeProvider([ErrorEvent(message="nope")]))
    out = io.StringIO()
    with patch(
        "cliweave.engine.providers.registry.build_provider_registry",
        return_value=registry,
    ):
        status = await run_turn(build_parser().parse_args(["x"]), "x", out=out)
    assert status == 1
    assert json.loads(out.getvalue()) == {"type": "error", "message": "nope"}


@pytest.mark.asyncio
async def test_run_turn_unknown_provider():
    args = build_parser().parse_args(["--provider", "nope", "hi"])
    with pytest.raises(ProviderNotFoundError):
        await run_turn(args, "hi", out=io.StringIO())


def test_main_requires_a_prompt(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 2
    assert "Provide a prompt" in capsys.readouterr().err


def test_main_rejects_missing_prompt_file(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main(["--prompt-file", str(tmp_path / "missing.md")])
    assert exc_info.value.code == 2


def test_main_reads_prompt_file_and_exits_with_turn_status(tmp_path):
    prompt_file = tmp_path / "prompt.md"
    prompt_file.write_text("  do the thing \n")
    with patch("cliweave.engine.cli.run_turn", new=AsyncMock(return_value=1)) as run:
        with pytest.raises(SystemExit) as exc_info:
            main(["-f", str(prompt_file)])
    assert exc_info.value.code == 1
    assert run.call_args.args[1] == "do the thing"
