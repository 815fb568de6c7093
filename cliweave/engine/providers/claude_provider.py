"""Claude Code CLI provider.

Drives ``claude --output-format stream-json --include-partial-messages``
with the prompt on stdin. Supports resuming a session via
``--resume {session_id}`` and a persistent interactive process
(the same flags without ``--print``).
"""
from __future__ import annotations

import logging

from ..models import AccessLevel, OperationMode, TurnSettings
from ..normalizers.claude import ClaudeNormalizer
from ..session import Session
from .base import Provider

logger = logging.getLogger(__name__)

_STREAM_ARGS = ("--output-format", "stream-json", "--include-partial-messages", "--verbose")


def permission_flags(settings: TurnSettings) -> list[str]:
    """Map operation mode and access level to Claude permission flags."""
    if settings.is_plan_mode or settings.is_read_only:
        return ["--permission-mode", "plan"]
    mode, access = settings.mode, settings.access_level
    if mode == OperationMode.EDIT_AUTOMATICALLY and access == AccessLevel.FULL_ACCESS:
        return ["--dangerously-skip-permissions", "--permission-mode", "bypassPermissions"]
    if mode == OperationMode.EDIT_AUTOMATICALLY and access == AccessLevel.ASK_PERMISSION:
        return ["--permission-mode", "bypassPermissions"]
    if mode == OperationMode.ASK_BEFORE_EDIT and access == AccessLevel.FULL_ACCESS:
        return ["--permission-mode", "bypassPermissions"]
    return ["--permission-mode", "default"]


class ClaudeProvider(Provider):
    """Provider backed by the Claude Code CLI.

    Auth: uses the CLI's own login. If api_key_env is set, its value
    is exported as ANTHROPIC_API_KEY.
    """

    default_command = "claude"
    display_name = "Claude Code"
    auth_command = "claude auth login"
    normalizer_class = ClaudeNormalizer
    api_key_var = "ANTHROPIC_API_KEY"
    uses_thinking_tokens = True

    @property
    def name(self) -> str:
        return "claude"

    def build_cli_args(self, settings: TurnSettings, session: Session) -> list[str]:
        args = list(_STREAM_ARGS) + permission_flags(settings)
        resume = session.resumable_session_id
        if resume:
            args += ["--resume", resume]
            logger.debug("claude: continuing session %s", resume)
        else:
            args.append("--print")
        model = self.resolve_model(settings)
        if model:
            args += ["--model", model]
        return args

    def build_persistent_args(
        self, settings: TurnSettings, session: Session,
    ) -> list[str] | None:
        # No --print: the CLI stays alive reading prompts from stdin.
        args = list(_STREAM_ARGS) + permission_flags(settings)
        resume = session.resumable_session_id
        if resume:
            args += ["--resume", resume]
        model = self.resolve_model(settings)
        if model:
            args += ["--model", model]
        return args
