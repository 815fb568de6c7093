"""Core data models for the stream engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class OperationMode(str, Enum):
    """How much the external agent may change without asking."""
    ASK_BEFORE_EDIT = "ask-before-edit"
    EDIT_AUTOMATICALLY = "edit-automatically"
    QUICK_PLAN = "quick-plan"
    DETAILED_PLAN = "detailed-plan"


class AccessLevel(str, Enum):
    """File and shell access granted to the external agent."""
    READ_ONLY = "read-only"
    ASK_PERMISSION = "ask-permission"
    FULL_ACCESS = "full-access"


class ThinkingLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PersistentState(str, Enum):
    """Persistent process states. See lifecycle.py for transition rules."""
    ABSENT = "absent"
    SPAWNING = "spawning"
    READY = "ready"
    BUSY = "busy"
    DEAD = "dead"


class FailureKind(str, Enum):
    """Classification of a failed turn's diagnostic text."""
    AUTH = "auth"
    GENERIC = "generic"


PLAN_MODES = frozenset({OperationMode.QUICK_PLAN, OperationMode.DETAILED_PLAN})


def _enum_value(enum_cls, raw, default):
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        return default


@dataclass
class TurnSettings:
    """Per-turn settings handed in by the caller alongside the prompt."""
    mode: OperationMode = OperationMode.ASK_BEFORE_EDIT
    access_level: AccessLevel = AccessLevel.ASK_PERMISSION
    thinking_level: ThinkingLevel = ThinkingLevel.MEDIUM
    model: str | None = None
    session_id: str | None = None
    autonomous_mode: bool = False

    @property
    def is_plan_mode(self) -> bool:
        return self.mode in PLAN_MODES

    @property
    def is_read_only(self) -> bool:
        return self.access_level == AccessLevel.READ_ONLY

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TurnSettings:
        """Build settings from a loosely-typed dict (camelCase or snake_case)."""
        data = data or {}

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        return cls(
            mode=_enum_value(
                OperationMode, pick("mode"), OperationMode.ASK_BEFORE_EDIT,
            ),
            access_level=_enum_value(
                AccessLevel,
                pick("access_level", "accessLevel"),
                AccessLevel.ASK_PERMISSION,
            ),
            thinking_level=_enum_value(
                ThinkingLevel,
                pick("thinking_level", "thinkingLevel"),
                ThinkingLevel.MEDIUM,
            ),
            model=pick("model") or None,
            session_id=pick("session_id", "sessionId") or None,
            autonomous_mode=bool(pick("autonomous_mode", "autonomousMode")),
        )


@dataclass
class UsageSnapshot:
    """Token counts reported by the external agent for one turn."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> UsageSnapshot:
        """Accept both snake_case and camelCase token keys."""
        def first(*keys: str) -> Any:
            for key in keys:
                value = payload.get(key)
                if value is not None:
                    return value
            return None

        return cls(
            input_tokens=int(first("input_tokens", "inputTokens") or 0),
            output_tokens=int(first("output_tokens", "outputTokens") or 0),
            cache_creation_input_tokens=first(
                "cache_creation_input_tokens", "cacheCreationInputTokens",
            ),
            cache_read_input_tokens=first(
                "cache_read_input_tokens", "cacheReadInputTokens",
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }
        if self.cache_creation_input_tokens is not None:
            out["cache_creation_input_tokens"] = self.cache_creation_input_tokens
        if self.cache_read_input_tokens is not None:
            out["cache_read_input_tokens"] = self.cache_read_input_tokens
        return out


@dataclass
class PendingToolCall:
    """A tool call whose structured input is still streaming in.

    Keyed by an int content-block index for one dialect and a string
    call id for the others.
    """
    id: str
    name: str
    input_buffer: str = ""


@dataclass
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str | None = None
    status: ToolStatus = ToolStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "input": self.input,
            "status": self.status.value,
        }
        if self.output is not None:
            out["output"] = self.output
        return out


@dataclass
class QuestionOption:
    label: str
    description: str = ""


@dataclass
class AskUserQuestion:
    question: str
    header: str = ""
    options: list[QuestionOption] = field(default_factory=list)
    multi_select: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "header": self.header,
            "options": [
                {"label": o.label, "description": o.description}
                for o in self.options
            ],
            "multiSelect": self.multi_select,
        }


# ── Normalized events ──────────────────────────────────────────────
#
# The closed event vocabulary every dialect is normalized into.
# Each event carries a ``type`` tag and serializes via to_dict().


@dataclass
class TextEvent:
    content: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass
class ThinkingEvent:
    content: str
    type: str = field(default="thinking", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass
class ToolUseEvent:
    tool_call: ToolCall
    type: str = field(default="tool_use", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "toolCall": self.tool_call.to_dict()}


@dataclass
class ToolResultEvent:
    tool_call: ToolCall
    type: str = field(default="tool_result", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "toolCall": self.tool_call.to_dict()}


@dataclass
class AskUserQuestionEvent:
    tool_call_id: str
    questions: list[AskUserQuestion]
    type: str = field(default="ask_user_question", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "questions": [q.to_dict() for q in self.questions],
        }


@dataclass
class ExitPlanModeEvent:
    """The agent finished a plan and wrote it to ``plan_file_path``."""
    tool_call_id: str
    plan_file_path: str | None = None
    type: str = field(default="exit_plan_mode", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "planFilePath": self.plan_file_path,
        }


@dataclass
class SessionActiveEvent:
    session_id: str
    type: str = field(default="session_active", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "sessionId": self.session_id}


@dataclass
class ErrorEvent:
    message: str
    type: str = field(default="error", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message}


@dataclass
class AuthErrorEvent:
    message: str
    auth_command: str
    provider_name: str
    type: str = field(default="auth_error", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "authCommand": self.auth_command,
            "providerName": self.provider_name,
        }


@dataclass
class DoneEvent:
    usage: UsageSnapshot | None = None
    type: str = field(default="done", init=False)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        if self.usage is not None:
            out["usage"] = self.usage.to_dict()
        return out


StreamEvent = Union[
    TextEvent,
    ThinkingEvent,
    ToolUseEvent,
    ToolResultEvent,
    AskUserQuestionEvent,
    ExitPlanModeEvent,
    SessionActiveEvent,
    ErrorEvent,
    AuthErrorEvent,
    DoneEvent,
]

TERMINAL_EVENT_TYPES = frozenset({"done", "error", "auth_error"})
