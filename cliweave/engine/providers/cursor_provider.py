"""Cursor agent CLI provider.

Runs ``agent --print --output-format stream-json --stream-partial-output``
with the prompt passed via ``-p``. The API key, when configured, is
exported as CURSOR_API_KEY rather than put on the command line.
"""
from __future__ import annotations

from ..models import AccessLevel, OperationMode, StreamEvent, TurnSettings
from ..normalizers.cursor import CursorNormalizer
from ..session import Session
from .base import Provider

DEFAULT_MODEL = "auto"


class CursorProvider(Provider):
    default_command = "agent"
    display_name = "Cursor"
    auth_command = "agent login"
    normalizer_class = CursorNormalizer
    api_key_var = "CURSOR_API_KEY"

    @property
    def name(self) -> str:
        return "cursor"

    def build_cli_args(self, settings: TurnSettings, session: Session) -> list[str]:
        args = [
            "--output-format", "stream-json",
            "--print",
            "--stream-partial-output",
            "--model", self.resolve_model(settings) or DEFAULT_MODEL,
        ]
        if (
            settings.mode == OperationMode.EDIT_AUTOMATICALLY
            and settings.access_level == AccessLevel.FULL_ACCESS
        ):
            args.append("--force")
        return args

    def prompt_args(self, prompt: str) -> tuple[list[str], str | None]:
        return ["-p", prompt], None

    def preamble_events(self, session: Session) -> list[StreamEvent]:
        return [self.synthetic_session_event(session)]
