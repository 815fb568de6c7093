"""GitHub Copilot CLI dialect.

Copilot prints plain terminal text in programmatic (``-p``) mode.
Each line is reformatted as markdown; JSON lines with the gemini
event shapes are honoured if they ever appear.
"""
from __future__ import annotations

import logging

from ..models import StreamEvent, TextEvent
from ..session import Session
from .base import StreamNormalizer, load_json_object
from .gemini import UNHANDLED, handle_tool_event

logger = logging.getLogger(__name__)


def format_terminal_line(line: str) -> str:
    """Render one terminal UI line as markdown."""
    stripped = line.strip()
    if stripped.startswith("✓"):
        return f"\n{line}\n"
    if stripped.startswith("$"):
        return f"\n`{stripped}`\n"
    if stripped.startswith("└"):
        return f"  {line}\n"
    return f"{line}\n"


class CopilotNormalizer(StreamNormalizer):
    name = "copilot"

    def parse(self, unit: str, session: Session) -> StreamEvent | None:
        if not unit.strip():
            return None
        data = load_json_object(unit)
        if data is not None:
            event = handle_tool_event(self, data, session)
            if event is UNHANDLED:
                logger.debug("copilot: unknown JSON event %r", data.get("type"))
                return TextEvent(content=unit)
            return event
        if self.is_echo(session, unit):
            return None
        return TextEvent(content=format_terminal_line(unit))
