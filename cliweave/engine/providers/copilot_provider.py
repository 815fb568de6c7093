"""GitHub Copilot CLI provider.

Copilot has no structured output flag: ``copilot -p <prompt>`` prints
terminal text. It never reports a session id on stdout, so a local
one is minted for display and never passed back as ``--resume``.
"""
from __future__ import annotations

import logging

from ..error_classifier import is_authentication_error
from ..models import (
    AccessLevel,
    AuthErrorEvent,
    OperationMode,
    StreamEvent,
    TurnSettings,
)
from ..normalizers.copilot import CopilotNormalizer
from ..session import Session
from .base import Provider

logger = logging.getLogger(__name__)


class CopilotProvider(Provider):
    default_command = "copilot"
    display_name = "GitHub Copilot"
    auth_command = "copilot"
    normalizer_class = CopilotNormalizer

    @property
    def name(self) -> str:
        return "copilot"

    def build_cli_args(self, settings: TurnSettings, session: Session) -> list[str]:
        args: list[str] = []
        model = self.resolve_model(settings)
        if model:
            args += ["--model", model]

        if settings.is_plan_mode or settings.is_read_only:
            args += ["--deny-tool", "shell", "--deny-tool", "write"]
        elif (
            settings.access_level == AccessLevel.FULL_ACCESS
            or settings.mode == OperationMode.EDIT_AUTOMATICALLY
        ):
            args.append("--allow-all-tools")

        resume = session.resumable_session_id
        if resume:
            args += ["--resume", resume]
        return args

    def prompt_args(self, prompt: str) -> tuple[list[str], str | None]:
        return ["-p", prompt], None

    def preamble_events(self, session: Session) -> list[StreamEvent]:
        return [self.synthetic_session_event(session)]

    def post_stream_failure(
        self, session: Session, stderr: str,
    ) -> StreamEvent | None:
        # Copilot can print an auth complaint and still exit 0.
        if stderr and is_authentication_error(stderr):
            logger.warning("copilot: authentication error in stderr after clean exit")
            return AuthErrorEvent(
                message=stderr.strip(),
                auth_command=self.auth_command,
                provider_name=self.display_name,
            )
        return None
