"""Cline CLI ``--output-format json`` dialect.

Cline pretty-prints each event across several lines, so this
dialect runs in block mode. Its model narration arrives as
``say: text`` (shown as thinking); the user-facing answer is
``say: completion_result``. An ``ask`` means Cline is waiting on the
user, which ends the turn.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..models import (
    AskUserQuestion,
    AskUserQuestionEvent,
    ErrorEvent,
    PendingToolCall,
    QuestionOption,
    StreamEvent,
    TextEvent,
    ThinkingEvent,
    ToolCall,
    ToolResultEvent,
    ToolStatus,
    ToolUseEvent,
    UsageSnapshot,
)
from ..reassembler import NoiseFilter
from ..session import Session
from .base import (
    StreamNormalizer,
    load_json_object,
    parse_tool_input,
    stringify_output,
)

logger = logging.getLogger(__name__)

CLINE_NOISE = NoiseFilter(
    [
        "[DEBUG]",
        "[updater]",
        "Starting new Cline",
        "Starting cline-",
        "Logging cline-",
        "Looking for cline-",
        "Executable path:",
        "Bin directory:",
        "Install directory:",
        "Using production mode",
        "Using system node",
        "NODE_PATH set to:",
        "Started cline-",
        "Waiting for services",
        "Services started",
        "Started instance at",
        "Mode set to:",
        "Task created",
        "Using instance:",
        "Press Ctrl+C",
        "Conversation history",
    ],
    exact=["**"],
    patterns=[r"ports.*core|core.*ports"],
)

DEFAULT_ASK_OPTIONS = (
    QuestionOption(label="Yes", description="Accept"),
    QuestionOption(label="No", description="Decline"),
)


def _tool_status(raw: Any, default: ToolStatus) -> ToolStatus:
    try:
        return ToolStatus(raw)
    except ValueError:
        return default


@dataclass
class ClineStreamState:
    completed_tool_ids: set[str] = field(default_factory=set)
    # Set once Cline asks the user something; the turn is over.
    ask_received: bool = False


class ClineNormalizer(StreamNormalizer):
    name = "cline"
    block_mode = True
    noise = CLINE_NOISE

    def new_state(self) -> ClineStreamState:
        return ClineStreamState()

    def reset_turn(self, session: Session) -> None:
        session.stream_state.ask_received = False

    def parse(self, unit: str, session: Session) -> StreamEvent | None:
        data = load_json_object(unit)
        if data is None:
            return self.fallback_text(unit)
        state: ClineStreamState = session.stream_state
        kind = data.get("type")
        logger.debug("cline: event type=%s say=%s ask=%s", kind, data.get("say"), data.get("ask"))

        if kind == "say":
            return self._say(data, session)
        if kind == "ask":
            return self._ask(data, session, state)

        if kind == "text" and data.get("content"):
            if self.is_echo(session, data["content"]):
                return None
            return TextEvent(content=str(data["content"]))

        if kind == "thinking" and data.get("content"):
            return ThinkingEvent(content=str(data["content"]))

        if kind in ("tool_use", "tool_result") and isinstance(data.get("toolCall"), dict):
            return self._tool(kind, data["toolCall"], session, state)

        if kind == "error":
            return ErrorEvent(
                message=str(data.get("error") or data.get("message") or "Unknown error"),
            )

        if kind in ("done", "complete"):
            usage = data.get("usage") or data.get("tokens")
            if isinstance(usage, dict):
                session.store_usage(UsageSnapshot.from_payload(usage))
            return None

        if kind == "usage" and isinstance(data.get("tokens"), dict):
            session.store_usage(UsageSnapshot.from_payload(data["tokens"]))
            return None

        return None

    def _say(self, data: dict[str, Any], session: Session) -> StreamEvent | None:
        say = data.get("say")
        text = data.get("text")

        if say == "reasoning" and data.get("reasoning"):
            return ThinkingEvent(content=str(data["reasoning"]))
        if say == "text" and text:
            if self.is_echo(session, text):
                return None
            return ThinkingEvent(content=str(text))
        if say == "completion_result" and text:
            return TextEvent(content=str(text))
        if say == "error" and text:
            return ErrorEvent(message=str(text))
        if say == "api_req_started" and text:
            return self._streaming_failure(text)
        # checkpoint_created, error_retry, ...
        return None

    @staticmethod
    def _streaming_failure(text: str) -> StreamEvent | None:
        request = load_json_object(text)
        failed = request.get("streamingFailedMessage") if request else None
        if isinstance(failed, str):
            failed = load_json_object(failed)
        if not isinstance(failed, dict) or not failed.get("message"):
            return None
        model_info = f" (model: {failed['modelId']})" if failed.get("modelId") else ""
        logger.warning("cline: streaming failed: %s", failed["message"])
        return ErrorEvent(message=f"{failed['message']}{model_info}")

    def _ask(
        self, data: dict[str, Any], session: Session, state: ClineStreamState,
    ) -> StreamEvent | None:
        ask = data.get("ask")
        if ask == "completion_result":
            state.ask_received = True
            return None
        text = data.get("text")
        if not text:
            return None

        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            if ask == "api_req_failed":
                state.ask_received = True
                return ErrorEvent(message=str(text))
            return None

        if ask == "api_req_failed" and payload.get("message"):
            state.ask_received = True
            model_info = f" (model: {payload['modelId']})" if payload.get("modelId") else ""
            return ErrorEvent(message=f"{payload['message']}{model_info}")

        question = payload.get("question")
        if not question:
            return None
        if self.is_echo(session, str(question)):
            return None
        state.ask_received = True
        raw_options = payload.get("options")
        if isinstance(raw_options, list):
            options = [
                QuestionOption(
                    label=str(o.get("label") or "") if isinstance(o, dict) else str(o),
                    description=str(o.get("description") or "") if isinstance(o, dict) else "",
                )
                for o in raw_options
            ]
        else:
            options = list(DEFAULT_ASK_OPTIONS)
        return AskUserQuestionEvent(
            tool_call_id=f"cline-ask-{int(time.time() * 1000)}",
            questions=[AskUserQuestion(
                question=str(question), header="Question", options=options,
            )],
        )

    @staticmethod
    def _tool(
        kind: str, call: dict[str, Any], session: Session, state: ClineStreamState,
    ) -> StreamEvent | None:
        tool_id = str(call.get("id") or "")
        if tool_id in state.completed_tool_ids:
            return None
        name = str(call.get("name") or "")
        if kind == "tool_use":
            params = call.get("input") if isinstance(call.get("input"), dict) else {}
            session.pending_tools[tool_id] = PendingToolCall(
                id=tool_id, name=name, input_buffer=json.dumps(params),
            )
            return ToolUseEvent(ToolCall(
                id=tool_id, name=name, input=params,
                status=_tool_status(call.get("status"), ToolStatus.RUNNING),
            ))

        state.completed_tool_ids.add(tool_id)
        pending = session.pending_tools.pop(tool_id, None)
        return ToolResultEvent(ToolCall(
            id=tool_id,
            name=name or (pending.name if pending else ""),
            input=parse_tool_input(pending.input_buffer) if pending else {},
            output=stringify_output(call.get("output") or ""),
            status=_tool_status(call.get("status"), ToolStatus.COMPLETED),
        ))
