"""Gemini CLI ``stream-json`` dialect.

Event types: init, message, tool_use, tool_result, error, result.
Tool calls arrive fully formed and are tracked by string ``tool_id``
until their result.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from ..models import (
    AskUserQuestionEvent,
    ErrorEvent,
    PendingToolCall,
    StreamEvent,
    TextEvent,
    ToolCall,
    ToolResultEvent,
    ToolStatus,
    ToolUseEvent,
    UsageSnapshot,
)
from ..reassembler import NoiseFilter
from ..session import Session
from .base import (
    ASK_USER_TOOL_NAMES,
    StreamNormalizer,
    build_questions,
    load_json_object,
    parse_tool_input,
    stringify_output,
)

logger = logging.getLogger(__name__)

GEMINI_NOISE = NoiseFilter(patterns=[
    r"(?i)^\s*\[STARTUP\]",
    r"(?i)^\s*Recording metric",
    r"(?i)^\s*Loaded cached credentials",
    r"(?i)^\s*Full report available at:",
    r"(?i)^\s*StartupProfiler",
    r"(?i)^\s*Hook registry initialized",
    r"^\s*at\s+",
])

# Returned by handle_tool_event() for event types it does not know.
UNHANDLED = object()


def handle_tool_event(
    normalizer: StreamNormalizer, data: dict[str, Any], session: Session,
) -> Any:
    """Map one gemini-shaped JSON event; UNHANDLED for unknown types.

    Shared with dialects that emit the same event shapes.
    """
    kind = data.get("type")

    if kind == "init":
        return normalizer.capture_session_id(session, data.get("session_id"))

    if kind == "message":
        if data.get("role") == "assistant" and data.get("content"):
            return TextEvent(content=str(data["content"]))
        return None

    if kind == "tool_use":
        tool_id = str(data.get("tool_id") or "")
        name = str(data.get("tool_name") or "")
        params = data.get("parameters") if isinstance(data.get("parameters"), dict) else {}
        if name in ASK_USER_TOOL_NAMES and isinstance(params.get("questions"), list):
            logger.info("%s: %s converted to ask_user_question", normalizer.name, name)
            return AskUserQuestionEvent(
                tool_call_id=tool_id, questions=build_questions(params["questions"]),
            )
        session.pending_tools[tool_id] = PendingToolCall(
            id=tool_id, name=name, input_buffer=json.dumps(params),
        )
        return ToolUseEvent(ToolCall(id=tool_id, name=name, input=params))

    if kind == "tool_result":
        tool_id = str(data.get("tool_id") or "")
        pending = session.pending_tools.pop(tool_id, None)
        return ToolResultEvent(ToolCall(
            id=tool_id,
            name=pending.name if pending else "",
            input=parse_tool_input(pending.input_buffer) if pending else {},
            output=stringify_output(data.get("output") or ""),
            status=(
                ToolStatus.COMPLETED if data.get("status") == "success"
                else ToolStatus.FAILED
            ),
        ))

    if kind == "error":
        return ErrorEvent(
            message=str(data.get("message") or data.get("error") or "Unknown error"),
        )

    if kind == "result":
        stats = data.get("stats")
        if isinstance(stats, dict):
            session.store_usage(UsageSnapshot(
                input_tokens=int(stats.get("input_tokens") or stats.get("total_tokens") or 0),
                output_tokens=int(stats.get("output_tokens") or 0),
            ))
        return None

    return UNHANDLED


class GeminiNormalizer(StreamNormalizer):
    name = "gemini"
    noise = GEMINI_NOISE

    def is_response_boundary(self, unit: str) -> bool:
        data = load_json_object(unit)
        return data is not None and data.get("type") == "result"

    def parse(self, unit: str, session: Session) -> StreamEvent | None:
        data = load_json_object(unit)
        if data is None:
            return self.fallback_text(unit)
        event = handle_tool_event(self, data, session)
        if event is UNHANDLED:
            logger.debug("gemini: unknown event type %r", data.get("type"))
            return None
        return event
