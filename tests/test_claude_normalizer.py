"""Tests for the Claude stream-json normalizer."""
from __future__ import annotations

import json

from cliweave.engine.models import (
    AskUserQuestionEvent,
    ExitPlanModeEvent,
    SessionActiveEvent,
    TextEvent,
    ThinkingEvent,
    ToolResultEvent,
    ToolStatus,
    ToolUseEvent,
    UsageSnapshot,
)
from cliweave.engine.normalizers.claude import ClaudeNormalizer
from cliweave.engine.session import SessionRegistry


def _stream(event: dict) -> str:
    return json.dumps({"type": "stream_event", "event": event})


def _session(normalizer: ClaudeNormalizer, prompt: str = "hi"):
    registry = SessionRegistry(normalizer.new_state)
    session = registry.get_or_create("p1")
    normalizer.begin_turn(session, prompt)
    return session


def test_text_delta():
    n = ClaudeNormalizer()
    s = _session(n)
    event = n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "text_delta", "text": "Hello"},
    }), s)
    assert event == TextEvent(content="Hello")


def test_thinking_block_start_and_delta():
    n = ClaudeNormalizer()
    s = _session(n)
    start = n.parse(_stream({
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "thinking"},
    }), s)
    delta = n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "thinking_delta", "thinking": "Let me see"},
    }), s)
    assert start == ThinkingEvent(content="")
    assert delta == ThinkingEvent(content="Let me see")


def test_tool_input_fragments_accumulate_until_block_stop():
    n = ClaudeNormalizer()
    s = _session(n)
    use = n.parse(_stream({
        "type": "content_block_start", "index": 1,
        "content_block": {"type": "tool_use", "id": "t1", "name": "Read"},
    }), s)
    assert isinstance(use, ToolUseEvent)
    assert use.tool_call.id == "t1"
    assert use.tool_call.name == "Read"
    assert use.tool_call.input == {}

    for fragment in ('{"file_pa', 'th": "/a.', 'py"}'):
        assert n.parse(_stream({
            "type": "content_block_delta", "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": fragment},
        }), s) is None
    assert s.pending_tools[1].input_buffer == '{"file_path": "/a.py"}'

    result = n.parse(_stream({"type": "content_block_stop", "index": 1}), s)
    assert isinstance(result, ToolResultEvent)
    assert result.tool_call.input == {"file_path": "/a.py"}
    assert result.tool_call.status == ToolStatus.RUNNING
    assert result.tool_call.output is None
    assert 1 not in s.pending_tools


def test_unparseable_tool_input_becomes_empty_dict():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "tool_use", "id": "t1", "name": "Bash"},
    }), s)
    n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "input_json_delta", "partial_json": '{"command": '},
    }), s)
    result = n.parse(_stream({"type": "content_block_stop", "index": 0}), s)
    assert result.tool_call.input == {}


def test_block_stop_without_open_tool_clears_pending(caplog):
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "tool_use", "id": "t1", "name": "Read"},
    }), s)
    with caplog.at_level("DEBUG", logger="cliweave.engine.normalizers.claude"):
        assert n.parse(_stream({"type": "content_block_stop", "index": 5}), s) is None
    assert s.pending_tools == {}
    assert "closed without an open tool" in caplog.text


def test_ask_user_question_tool_becomes_question_event():
    n = ClaudeNormalizer()
    s = _session(n)
    assert n.parse(_stream({
        "type": "content_block_start", "index": 2,
        "content_block": {"type": "tool_use", "id": "q1", "name": "AskUserQuestion"},
    }), s) is None
    questions = {"questions": [{
        "question": "Which database?",
        "header": "Database choice here",
        "options": [{"label": "Postgres", "description": "SQL"}, {"label": "Mongo"}],
        "multiSelect": True,
    }]}
    n.parse(_stream({
        "type": "content_block_delta", "index": 2,
        "delta": {"type": "input_json_delta", "partial_json": json.dumps(questions)},
    }), s)
    event = n.parse(_stream({"type": "content_block_stop", "index": 2}), s)
    assert isinstance(event, AskUserQuestionEvent)
    assert event.tool_call_id == "q1"
    q = event.questions[0]
    assert q.question == "Which database?"
    assert q.header == "Database cho"  # truncated to 12 chars
    assert [o.label for o in q.options] == ["Postgres", "Mongo"]
    assert q.multi_select is True


def test_exit_plan_mode_tool():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "tool_use", "id": "p1", "name": "ExitPlanMode"},
    }), s)
    n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "input_json_delta", "partial_json": '{"plan_file_path": "/tmp/plan.md"}'},
    }), s)
    event = n.parse(_stream({"type": "content_block_stop", "index": 0}), s)
    assert event == ExitPlanModeEvent(tool_call_id="p1", plan_file_path="/tmp/plan.md")


def test_system_init_captures_session_id_first_wins():
    n = ClaudeNormalizer()
    s = _session(n)
    first = n.parse(json.dumps({"type": "system", "subtype": "init", "session_id": "abc"}), s)
    second = n.parse(json.dumps({"type": "system", "subtype": "init", "session_id": "xyz"}), s)
    assert first == SessionActiveEvent(session_id="abc")
    assert second == SessionActiveEvent(session_id="abc")
    assert s.session_id == "abc"


def test_result_text_suppressed_after_streamed_text():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "text_delta", "text": "Hello"},
    }), s)
    assert n.parse(json.dumps({"type": "result", "result": "Hello"}), s) is None


def test_result_text_emitted_when_nothing_streamed():
    n = ClaudeNormalizer()
    s = _session(n, "/compact")
    event = n.parse(json.dumps({"type": "result", "result": "Compacted."}), s)
    assert event == TextEvent(content="Compacted.")


def test_has_streamed_text_resets_each_turn():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "text_delta", "text": "x"},
    }), s)
    n.begin_turn(s, "next")
    assert n.parse(json.dumps({"type": "result", "result": "r"}), s) == TextEvent(content="r")


def test_result_usage_overwrites_message_delta_usage():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({"type": "message_delta", "usage": {"input_tokens": 1, "output_tokens": 2}}), s)
    n.parse(json.dumps({"type": "result", "usage": {
        "input_tokens": 10, "output_tokens": 20, "cache_read_input_tokens": 5,
    }}), s)
    assert s.take_usage() == UsageSnapshot(
        input_tokens=10, output_tokens=20, cache_read_input_tokens=5,
    )
    assert s.take_usage() is None


def test_compaction_summary_drops_other_units_until_summary():
    n = ClaudeNormalizer()
    s = _session(n, "/compact")
    notice = n.parse(json.dumps({
        "type": "system", "subtype": "compact_boundary",
        "compact_metadata": {"pre_tokens": 45200},
    }), s)
    assert notice == TextEvent(content="Conversation compacted (was ~45k tokens)")

    # Anything but the summary is swallowed while awaiting it.
    assert n.parse(_stream({
        "type": "content_block_delta", "index": 0,
        "delta": {"type": "text_delta", "text": "ignored"},
    }), s) is None

    summary = n.parse(json.dumps({"type": "user", "message": {
        "content": "This session is being continued from before.\nSummary: did things",
    }}), s)
    assert summary == TextEvent(content="Summary: did things")
    assert s.stream_state.awaiting_compact_summary is False


def test_assistant_message_announces_only_unannounced_tools():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "tool_use", "id": "t1", "name": "Read"},
    }), s)
    message = {"type": "assistant", "message": {"content": [
        {"type": "text", "text": "hi"},
        {"type": "tool_use", "id": "t1", "name": "Read", "input": {}},
        {"type": "tool_use", "id": "t2", "name": "Grep", "input": {"pattern": "x"}},
    ]}}
    event = n.parse(json.dumps(message), s)
    assert isinstance(event, ToolUseEvent)
    assert event.tool_call.id == "t2"
    assert event.tool_call.input == {"pattern": "x"}
    assert n.parse(json.dumps(message), s) is None


def test_user_tool_result_block():
    n = ClaudeNormalizer()
    s = _session(n)
    event = n.parse(json.dumps({"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": "t1", "content": "file body", "is_error": True},
    ]}}), s)
    assert isinstance(event, ToolResultEvent)
    assert event.tool_call.id == "t1"
    assert event.tool_call.output == "file body"
    assert event.tool_call.status == ToolStatus.FAILED


def test_non_json_line_passes_through_as_text():
    n = ClaudeNormalizer()
    s = _session(n)
    assert n.parse("plain output", s) == TextEvent(content="plain output")


def test_begin_turn_drops_stale_pending_tools():
    n = ClaudeNormalizer()
    s = _session(n)
    n.parse(_stream({
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "tool_use", "id": "t1", "name": "Read"},
    }), s)
    assert s.pending_tools
    n.begin_turn(s, "again")
    assert s.pending_tools == {}
    assert s.last_user_input == "again"


def test_response_boundary_is_result():
    n = ClaudeNormalizer()
    assert n.is_response_boundary('{"type": "result", "result": ""}')
    assert not n.is_response_boundary('{"type": "assistant"}')
    assert not n.is_response_boundary("not json")
