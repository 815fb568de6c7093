"""Claude CLI ``stream-json`` dialect (with ``--include-partial-messages``).

Partial message events arrive wrapped as ``{"type": "stream_event",
"event": {...}}`` and carry Anthropic content-block events keyed by
an integer block index. Tool input streams in as ``input_json_delta``
fragments that only parse once the block closes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..models import (
    AskUserQuestionEvent,
    ErrorEvent,
    ExitPlanModeEvent,
    PendingToolCall,
    StreamEvent,
    TextEvent,
    ThinkingEvent,
    ToolCall,
    ToolResultEvent,
    ToolStatus,
    ToolUseEvent,
    UsageSnapshot,
)
from ..session import Session
from .base import (
    StreamNormalizer,
    build_questions,
    load_json_object,
    parse_tool_input,
    stringify_output,
)

logger = logging.getLogger(__name__)

ASK_USER_TOOL = "AskUserQuestion"
EXIT_PLAN_TOOL = "ExitPlanMode"
COMPACTION_SUMMARY_MARKER = "session is being continued"


@dataclass
class ClaudeStreamState:
    has_streamed_text: bool = False
    awaiting_compact_summary: bool = False
    # Tool ids already announced via content_block_start this turn.
    announced_tool_ids: set[str] = field(default_factory=set)


class ClaudeNormalizer(StreamNormalizer):
    name = "claude"

    def new_state(self) -> ClaudeStreamState:
        return ClaudeStreamState()

    def reset_turn(self, session: Session) -> None:
        state: ClaudeStreamState = session.stream_state
        state.has_streamed_text = False
        state.awaiting_compact_summary = False
        state.announced_tool_ids.clear()

    def is_response_boundary(self, unit: str) -> bool:
        data = load_json_object(unit)
        return data is not None and data.get("type") == "result"

    def parse(self, unit: str, session: Session) -> StreamEvent | None:
        data = load_json_object(unit)
        if data is None:
            return self.fallback_text(unit)

        state: ClaudeStreamState = session.stream_state
        if state.awaiting_compact_summary:
            return self._compaction_summary(data, state)

        kind = data.get("type")
        if kind == "stream_event":
            return self._stream_event(data.get("event") or {}, session, state)
        if kind == "result":
            return self._result(data, session, state)
        if kind == "system":
            return self._system(data, session, state)
        if kind == "assistant":
            return self._assistant(data, state)
        if kind == "user":
            return self._user_tool_result(data)
        if kind == "tool_result":
            return ToolResultEvent(ToolCall(
                id=str(data.get("tool_use_id") or data.get("tool_id") or ""),
                name=str(data.get("tool_name") or ""),
                output=stringify_output(data.get("content") or ""),
                status=ToolStatus.FAILED if data.get("is_error") else ToolStatus.COMPLETED,
            ))
        if kind == "error":
            error = data.get("error")
            message = error.get("message") if isinstance(error, dict) else error
            return ErrorEvent(message=str(message or data.get("message") or "Unknown error"))
        return None

    # ── stream_event ──

    def _stream_event(
        self, event: dict[str, Any], session: Session, state: ClaudeStreamState,
    ) -> StreamEvent | None:
        kind = event.get("type")
        index = event.get("index", -1)

        if kind == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                tool_id = str(block.get("id") or "")
                name = str(block.get("name") or "")
                session.pending_tools[index] = PendingToolCall(id=tool_id, name=name)
                if name == ASK_USER_TOOL:
                    # Announced once its input is complete.
                    return None
                state.announced_tool_ids.add(tool_id)
                return ToolUseEvent(ToolCall(id=tool_id, name=name))
            if block.get("type") == "thinking":
                return ThinkingEvent(content="")
            return None

        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                state.has_streamed_text = True
                return TextEvent(content=delta.get("text") or "")
            if delta_type == "thinking_delta":
                return ThinkingEvent(content=delta.get("thinking") or "")
            if delta_type == "input_json_delta":
                pending = session.pending_tools.get(index)
                if pending is None:
                    logger.debug("claude: input delta for unknown block %s", index)
                else:
                    pending.input_buffer += delta.get("partial_json") or ""
            return None

        if kind == "content_block_stop":
            pending = session.pending_tools.pop(index, None)
            if pending is None:
                logger.debug(
                    "claude: block %s closed without an open tool; dropping %d pending",
                    index, len(session.pending_tools),
                )
                session.pending_tools.clear()
                return None
            return self._close_tool(pending)

        if kind == "message_delta":
            usage = event.get("usage")
            if isinstance(usage, dict):
                session.store_usage(UsageSnapshot.from_payload(usage))
            return None

        return None

    def _close_tool(self, pending: PendingToolCall) -> StreamEvent:
        parsed = parse_tool_input(pending.input_buffer)
        if pending.name == ASK_USER_TOOL and parsed.get("questions"):
            questions = build_questions(parsed["questions"])
            logger.info("claude: %s with %d question(s)", ASK_USER_TOOL, len(questions))
            return AskUserQuestionEvent(tool_call_id=pending.id, questions=questions)
        if pending.name == EXIT_PLAN_TOOL:
            raw_path = parsed.get("plan_file_path") or parsed.get("planFilePath")
            return ExitPlanModeEvent(
                tool_call_id=pending.id,
                plan_file_path=raw_path if isinstance(raw_path, str) else None,
            )
        return ToolResultEvent(ToolCall(
            id=pending.id, name=pending.name, input=parsed, status=ToolStatus.RUNNING,
        ))

    # ── complete messages ──

    def _result(
        self, data: dict[str, Any], session: Session, state: ClaudeStreamState,
    ) -> StreamEvent | None:
        usage = data.get("usage")
        if isinstance(usage, dict):
            session.store_usage(UsageSnapshot.from_payload(usage))
        result = data.get("result")
        # Streamed turns already delivered this text; pass-through
        # commands (e.g. /compact) only report it here.
        if not state.has_streamed_text and isinstance(result, str) and result:
            return TextEvent(content=result)
        return None

    def _system(
        self, data: dict[str, Any], session: Session, state: ClaudeStreamState,
    ) -> StreamEvent | None:
        subtype = data.get("subtype")
        if subtype == "init":
            return self.capture_session_id(
                session, data.get("session_id") or data.get("sessionId"),
            )
        if subtype == "compact_boundary":
            metadata = data.get("compact_metadata") or {}
            pre_tokens = metadata.get("pre_tokens") or 0
            state.awaiting_compact_summary = True
            logger.info("claude: compact boundary (pre_tokens=%s)", pre_tokens)
            return TextEvent(
                content=f"Conversation compacted (was ~{round(pre_tokens / 1000)}k tokens)"
            )
        return None

    def _compaction_summary(
        self, data: dict[str, Any], state: ClaudeStreamState,
    ) -> StreamEvent | None:
        if data.get("type") != "user":
            return None
        content = (data.get("message") or {}).get("content")
        if not isinstance(content, str) or COMPACTION_SUMMARY_MARKER not in content:
            return None
        state.awaiting_compact_summary = False
        marker = content.find("Summary:")
        return TextEvent(content=content[marker:] if marker >= 0 else content)

    def _assistant(
        self, data: dict[str, Any], state: ClaudeStreamState,
    ) -> StreamEvent | None:
        for block in (data.get("message") or {}).get("content") or []:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            tool_id = str(block.get("id") or "")
            if tool_id in state.announced_tool_ids or block.get("name") == ASK_USER_TOOL:
                continue
            state.announced_tool_ids.add(tool_id)
            return ToolUseEvent(ToolCall(
                id=tool_id,
                name=str(block.get("name") or ""),
                input=block.get("input") if isinstance(block.get("input"), dict) else {},
            ))
        return None

    @staticmethod
    def _user_tool_result(data: dict[str, Any]) -> StreamEvent | None:
        content = (data.get("message") or {}).get("content")
        if not isinstance(content, list):
            return None
        for block in content:
            if isinstance(block, dict) and block.get("type") == "tool_result":
                return ToolResultEvent(ToolCall(
                    id=str(block.get("tool_use_id") or ""),
                    name="",
                    output=stringify_output(block.get("content")),
                    status=ToolStatus.FAILED if block.get("is_error") else ToolStatus.COMPLETED,
                ))
        return None
