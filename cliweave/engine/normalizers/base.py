"""Shared contract and helpers for protocol normalizers.

A normalizer turns one logical unit from a CLI's stdout into zero
or one normalized events. It may read and mutate only the session
it is handed: the pending tool map, the usage snapshot, the
continuation token and its own ``session.stream_state``.
"""
from __future__ import annotations

import abc
import json
import logging
from typing import Any

from ..models import (
    AskUserQuestion,
    QuestionOption,
    SessionActiveEvent,
    StreamEvent,
    TextEvent,
)
from ..reassembler import (
    NO_NOISE,
    BlockReassembler,
    LineReassembler,
    NoiseFilter,
    Reassembler,
)
from ..session import Session

logger = logging.getLogger(__name__)

ASK_USER_TOOL_NAMES = frozenset({"ask_user", "AskUserQuestion", "ask_user_question"})
QUESTION_HEADER_MAX = 12


def load_json_object(unit: str) -> dict[str, Any] | None:
    """Parse ``unit`` as a JSON object; None for anything else."""
    try:
        data = json.loads(unit.strip())
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_tool_input(raw: str | None) -> dict[str, Any]:
    """Parse accumulated tool input, substituting {} on failure."""
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.debug("Unparseable tool input, using {}: %.200s", raw)
        return {}
    return data if isinstance(data, dict) else {}


def stringify_output(value: Any, indent: int | None = None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=indent)


def build_questions(raw: Any) -> list[AskUserQuestion]:
    """Normalize a loosely-shaped questions list."""
    questions = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        options = []
        for opt in item.get("options") or []:
            if isinstance(opt, dict):
                options.append(QuestionOption(
                    label=str(opt.get("label") or ""),
                    description=str(opt.get("description") or ""),
                ))
            else:
                options.append(QuestionOption(label=str(opt)))
        questions.append(AskUserQuestion(
            question=str(item.get("question") or ""),
            header=str(item.get("header") or "")[:QUESTION_HEADER_MAX],
            options=options,
            multi_select=bool(item.get("multiSelect") or item.get("multi_select")),
        ))
    return questions


class StreamNormalizer(abc.ABC):
    """One external CLI dialect.

    Subclasses set ``name`` and ``noise`` and implement parse().
    ``block_mode`` selects multi-line JSON reassembly.
    """

    name: str = ""
    block_mode: bool = False
    noise: NoiseFilter = NO_NOISE

    def new_state(self) -> Any:
        """Fresh dialect accumulation state for a new or cleared session."""
        return None

    def make_reassembler(self) -> Reassembler:
        if self.block_mode:
            return BlockReassembler(self.noise)
        return LineReassembler(self.noise)

    def begin_turn(self, session: Session, prompt: str) -> None:
        """Reset per-turn bookkeeping before the first unit is read."""
        session.last_user_input = prompt.strip()
        if session.pending_tools:
            logger.warning(
                "%s: dropping %d pending tool call(s) left over from a previous turn",
                self.name, len(session.pending_tools),
            )
            session.pending_tools.clear()
        if session.stream_state is None:
            session.stream_state = self.new_state()
        self.reset_turn(session)

    def reset_turn(self, session: Session) -> None:
        """Dialect hook for per-turn resets."""

    @abc.abstractmethod
    def parse(self, unit: str, session: Session) -> StreamEvent | None:
        """Convert one logical unit into zero or one events."""

    def is_response_boundary(self, unit: str) -> bool:
        """Whether ``unit`` ends a turn for a persistent process."""
        return False

    # ── shared helpers ──

    def capture_session_id(
        self, session: Session, token: Any,
    ) -> SessionActiveEvent | None:
        """Record the agent's continuation token; first report wins."""
        if not token:
            return None
        token = str(token)
        if session.session_id is None or session.session_id_synthetic:
            session.session_id = token
            session.session_id_synthetic = False
            logger.info("%s: session id %s (panel=%s)", self.name, token, session.panel_id)
        elif session.session_id != token:
            logger.debug(
                "%s: ignoring new session id %s, keeping %s",
                self.name, token, session.session_id,
            )
        return SessionActiveEvent(session_id=session.session_id)

    @staticmethod
    def is_echo(session: Session, text: str | None) -> bool:
        stripped = (text or "").strip()
        return bool(stripped) and stripped == session.last_user_input

    def fallback_text(self, unit: str) -> TextEvent | None:
        """Opaque display text for an unparseable unit, unless noise."""
        if not unit.strip() or self.noise.is_noise(unit):
            return None
        return TextEvent(content=unit)
