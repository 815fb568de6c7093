"""Gemini CLI provider.

Runs ``gemini --output-format stream-json`` with the prompt on stdin
and resumes sessions via ``--resume {session_id}``.
"""
from __future__ import annotations

import logging

from ..models import AccessLevel, OperationMode, TurnSettings
from ..normalizers.gemini import GeminiNormalizer
from ..session import Session
from ..validation import validate_model_name
from .base import Provider

logger = logging.getLogger(__name__)

KNOWN_MODELS = (
    "gemini-3-pro-preview",
    "gemini-3-flash-preview",
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
)


class GeminiProvider(Provider):
    """Provider backed by the Gemini CLI.

    Auth: uses the CLI's cached credentials. If api_key_env is set,
    its value is exported as GEMINI_API_KEY.
    """

    default_command = "gemini"
    display_name = "Gemini"
    auth_command = "gemini"
    normalizer_class = GeminiNormalizer
    api_key_var = "GEMINI_API_KEY"

    @property
    def name(self) -> str:
        return "gemini"

    def resolve_model(self, settings: TurnSettings) -> str | None:
        # A configured model always wins; a per-turn model is only passed
        # through when it is a Gemini model (callers may share one
        # model setting across providers).
        if self.default_model:
            error = validate_model_name(self.default_model)
            if error is None:
                return self.default_model.strip()
            logger.warning("gemini: invalid configured model %r: %s", self.default_model, error)
        if settings.model in KNOWN_MODELS:
            return settings.model
        if settings.model:
            logger.debug("gemini: ignoring non-Gemini model %r", settings.model)
        return None

    def build_cli_args(self, settings: TurnSettings, session: Session) -> list[str]:
        args = ["--output-format", "stream-json"]
        model = self.resolve_model(settings)
        if model:
            args += ["-m", model]

        if settings.is_plan_mode or settings.is_read_only:
            args.append("--sandbox")
        elif (
            settings.access_level == AccessLevel.FULL_ACCESS
            or settings.mode == OperationMode.EDIT_AUTOMATICALLY
        ):
            args.append("--yolo")

        resume = session.resumable_session_id
        if resume:
            args += ["--resume", resume]
        return args
