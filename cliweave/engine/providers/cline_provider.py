"""Cline CLI provider.

The prompt is the trailing positional argument. Prompts too long for
argv are sent on stdin behind a ``-`` placeholder. Cline has no
per-request model flag; its model is configured via ``cline auth``.
"""
from __future__ import annotations

import logging

from ..models import AccessLevel, OperationMode, StreamEvent, TurnSettings
from ..normalizers.cline import ClineNormalizer, ClineStreamState
from ..session import Session
from .base import Provider

logger = logging.getLogger(__name__)


class ClineProvider(Provider):
    default_command = "cline"
    display_name = "Cline"
    auth_command = "cline auth"
    normalizer_class = ClineNormalizer
    uses_thinking_tokens = True

    @property
    def name(self) -> str:
        return "cline"

    def build_cli_args(self, settings: TurnSettings, session: Session) -> list[str]:
        args = ["--output-format", "json"]
        if settings.is_plan_mode or settings.is_read_only:
            args += ["--mode", "plan"]
        else:
            args += ["--mode", "act"]
        if (
            settings.mode == OperationMode.EDIT_AUTOMATICALLY
            and settings.access_level == AccessLevel.FULL_ACCESS
        ):
            args.append("--yolo")
        return args

    def prompt_args(self, prompt: str) -> tuple[list[str], str | None]:
        if len(prompt) > self.config.max_arg_length:
            logger.info(
                "cline: prompt is %d chars (> %d), sending via stdin",
                len(prompt), self.config.max_arg_length,
            )
            return ["-"], prompt
        return [prompt], None

    def preamble_events(self, session: Session) -> list[StreamEvent]:
        return [self.synthetic_session_event(session)]

    def should_stop_reading(self, session: Session) -> bool:
        # An ask means Cline is waiting on the user; the process would idle.
        state: ClineStreamState = session.stream_state
        return state.ask_received
