"""Cursor agent CLI ``stream-json`` dialect.

With ``--stream-partial-output`` every ``assistant`` event carries
all text generated so far in the current segment, not a delta, so
only the unseen suffix is forwarded. Tool calls nest their kind as a
key inside ``tool_call`` (``{"readToolCall": {"args": ...}}``).
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
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

# Plain-text lines that are log prefixes or stray single characters.
CURSOR_NOISE = NoiseFilter(["["], min_length=2)

TOOL_TYPE_MAP = {
    "shellToolCall": "bash",
    "readToolCall": "read",
    "writeToolCall": "write",
    "editToolCall": "edit",
    "grepToolCall": "grep",
    "globToolCall": "glob",
    "lsToolCall": "ls",
    "todoToolCall": "todowrite",
    "updateTodosToolCall": "todowrite",
    "deleteToolCall": "delete",
}

_TOOL_CALL_SUFFIX = re.compile(r"ToolCall$")


@dataclass
class CursorStreamState:
    # Characters of the current text segment already forwarded.
    streamed_text_length: int = 0


def _assistant_text(data: dict[str, Any]) -> str:
    content = (data.get("message") or {}).get("content")
    text = ""
    if isinstance(content, list):
        text = "".join(
            str(c.get("text") or "") for c in content
            if isinstance(c, dict) and c.get("type") == "text"
        )
    if not text:
        delta = data.get("delta") if isinstance(data.get("delta"), dict) else {}
        text = (
            data.get("content") or data.get("text")
            or delta.get("text") or delta.get("content") or ""
        )
    return text if isinstance(text, str) else ""


def _tool_identity(tool_call: dict[str, Any]) -> tuple[str, dict[str, Any], dict[str, Any]]:
    """Return (canonical name, input, raw tool payload)."""
    key = next(
        (k for k in tool_call if k.endswith("ToolCall") or k == "function"), None,
    )
    payload = tool_call.get(key) if key else None
    payload = payload if isinstance(payload, dict) else {}

    if key == "function":
        name = str(payload.get("name") or "tool")
        return name, parse_tool_input(payload.get("arguments")), payload
    if key is None:
        return "tool", {}, payload

    name = TOOL_TYPE_MAP.get(key) or _TOOL_CALL_SUFFIX.sub("", key).lower()
    args = dict(payload["args"]) if isinstance(payload.get("args"), dict) else {}
    if "globPattern" in args:
        args["pattern"] = args.pop("globPattern")
    if "targetDirectory" in args:
        args["path"] = args.pop("targetDirectory")
    return name, args, payload


class CursorNormalizer(StreamNormalizer):
    name = "cursor"
    noise = CURSOR_NOISE

    def new_state(self) -> CursorStreamState:
        return CursorStreamState()

    def reset_turn(self, session: Session) -> None:
        session.stream_state.streamed_text_length = 0

    def is_response_boundary(self, unit: str) -> bool:
        data = load_json_object(unit)
        return data is not None and data.get("type") == "result"

    def fallback_text(self, unit: str) -> TextEvent | None:
        if self.noise.is_noise(unit):
            return None
        return TextEvent(content=unit.strip())

    def parse(self, unit: str, session: Session) -> StreamEvent | None:
        data = load_json_object(unit)
        if data is None:
            return self.fallback_text(unit)
        state: CursorStreamState = session.stream_state
        kind = data.get("type")

        if kind == "system":
            if data.get("subtype") == "init" or data.get("model"):
                return self.capture_session_id(session, data.get("session_id"))
            return None

        if kind == "assistant":
            text = _assistant_text(data)
            if len(text) <= state.streamed_text_length:
                return None
            suffix = text[state.streamed_text_length:]
            state.streamed_text_length = len(text)
            return TextEvent(content=suffix)

        if kind == "tool_call" and isinstance(data.get("tool_call"), dict):
            # A tool call starts a new text segment.
            state.streamed_text_length = 0
            return self._tool_call(data, session)

        if kind == "result":
            state.streamed_text_length = 0
            if data.get("duration_ms") or data.get("stats"):
                stats = data.get("stats") if isinstance(data.get("stats"), dict) else {}
                session.store_usage(UsageSnapshot(
                    input_tokens=int(stats.get("input_tokens") or 0),
                    output_tokens=int(stats.get("output_tokens") or 0),
                ))
                logger.debug("cursor: result in %sms", data.get("duration_ms"))
            return None

        if kind == "error":
            return ErrorEvent(
                message=str(data.get("error") or data.get("message") or "Unknown Cursor error"),
            )

        if kind in ("done", "complete"):
            state.streamed_text_length = 0
            return None

        if kind != "user":
            logger.debug("cursor: unrecognized event type %r", kind)
        return None

    def _tool_call(self, data: dict[str, Any], session: Session) -> StreamEvent | None:
        tool_id = str(data.get("call_id") or f"tool_{int(time.time() * 1000)}")
        name, tool_input, payload = _tool_identity(data["tool_call"])

        if name in ASK_USER_TOOL_NAMES and isinstance(tool_input.get("questions"), list):
            return AskUserQuestionEvent(
                tool_call_id=tool_id, questions=build_questions(tool_input["questions"]),
            )

        subtype = data.get("subtype")
        if subtype == "started":
            session.pending_tools[tool_id] = PendingToolCall(
                id=tool_id, name=name, input_buffer=json.dumps(tool_input),
            )
            return ToolUseEvent(ToolCall(id=tool_id, name=name, input=tool_input))

        if subtype == "completed":
            pending = session.pending_tools.pop(tool_id, None)
            if pending is None:
                logger.debug("cursor: completion for unknown tool call %s", tool_id)
            result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
            output = ""
            if result.get("success") is not None:
                output = stringify_output(result["success"], indent=2)
            elif result.get("rejected"):
                output = stringify_output(result["rejected"], indent=2)
            return ToolResultEvent(ToolCall(
                id=tool_id,
                name=pending.name if pending else name,
                input=parse_tool_input(pending.input_buffer) if pending else tool_input,
                output=output,
                status=ToolStatus.COMPLETED,
            ))
        return None
