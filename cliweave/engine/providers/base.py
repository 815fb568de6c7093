"""Abstract base for CLI agent providers.

Each provider wraps one external agent CLI (Claude Code, Gemini CLI,
Cline, Cursor agent, GitHub Copilot CLI). The base class owns the
turn loop: spawn, feed the prompt, normalize stdout, classify the
outcome and always clean up. Subclasses supply argv, prompt delivery
and a handful of hooks.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import os
import time
from typing import AsyncIterator

from ..config import EngineConfig
from ..error_classifier import failure_event
from ..errors import (
    PersistentProcessError,
    ProcessInputError,
    ProcessSpawnError,
    ProcessTimeoutError,
)
from ..models import (
    DoneEvent,
    ErrorEvent,
    SessionActiveEvent,
    StreamEvent,
    ThinkingLevel,
    TurnSettings,
)
from ..normalizers.base import StreamNormalizer
from ..persistent import PersistentProcessCoordinator
from ..platform import get_enriched_env, resolve_executable
from ..reassembler import iter_units
from ..session import Session, SessionRegistry
from ..supervisor import CancelToken, ProcessSupervisor, ProcessTracker
from ..validation import validate_model_name

logger = logging.getLogger(__name__)

NO_RESPONSE_MESSAGE = "No response received from CLI"

# MAX_THINKING_TOKENS budget for CLIs that honour it.
THINKING_TOKEN_BUDGET: dict[ThinkingLevel, int] = {
    ThinkingLevel.NONE: 0,
    ThinkingLevel.LOW: 4000,
    ThinkingLevel.MEDIUM: 8000,
    ThinkingLevel.HIGH: 16000,
}


class Provider(abc.ABC):
    """Abstract provider interface.

    Subclasses set ``default_command``, ``display_name``,
    ``auth_command`` and ``normalizer_class`` and implement
    ``name`` and ``build_cli_args()``.
    """

    default_command: str = ""
    display_name: str = ""
    auth_command: str = ""
    normalizer_class: type[StreamNormalizer]
    # Environment variable the CLI reads its API key from, if any.
    api_key_var: str | None = None
    # Whether MAX_THINKING_TOKENS is exported for this CLI.
    uses_thinking_tokens: bool = False

    def __init__(
        self,
        command: str | None = None,
        *,
        model: str | None = None,
        api_key_env: str | None = None,
        persistent: bool | None = None,
        config: EngineConfig | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.command = command or self.default_command
        self.default_model = model
        self.api_key_env = api_key_env
        self.persistent_enabled = (
            self.config.persistent_processes if persistent is None else persistent
        )
        self.normalizer = self.normalizer_class()
        self.registry = SessionRegistry(self.normalizer.new_state)
        self.supervisor = supervisor or ProcessSupervisor(self.config)
        self.coordinator = PersistentProcessCoordinator(self.supervisor)

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider id (e.g. 'claude', 'cline')."""

    # ── argv / env ──

    @abc.abstractmethod
    def build_cli_args(self, settings: TurnSettings, session: Session) -> list[str]:
        """Arguments for a single-shot turn, excluding the prompt."""

    def build_persistent_args(
        self, settings: TurnSettings, session: Session,
    ) -> list[str] | None:
        """Arguments for a kept-alive interactive process; None if unsupported."""
        return None

    @property
    def supports_persistent(self) -> bool:
        return type(self).build_persistent_args is not Provider.build_persistent_args

    def prompt_args(self, prompt: str) -> tuple[list[str], str | None]:
        """Return (argv suffix, stdin payload) for delivering ``prompt``.

        Default: the whole prompt is written to stdin.
        """
        return [], prompt

    def resolve_model(self, settings: TurnSettings) -> str | None:
        """Configured model override, else the per-turn model.

        Names that fail validate_model_name() are dropped with a warning.
        """
        model = self.default_model or settings.model
        if not model:
            return None
        error = validate_model_name(model)
        if error:
            logger.warning("%s: ignoring model %r: %s", self.name, model, error)
            return None
        return model.strip()

    def extra_env(self, settings: TurnSettings) -> dict[str, str]:
        env: dict[str, str] = {}
        if self.uses_thinking_tokens:
            env["MAX_THINKING_TOKENS"] = str(
                THINKING_TOKEN_BUDGET.get(settings.thinking_level, 0)
            )
        if self.api_key_env and self.api_key_var:
            key = os.environ.get(self.api_key_env)
            if key:
                env[self.api_key_var] = key
            else:
                logger.debug("%s: %s is not set", self.name, self.api_key_env)
        return env

    def build_env(self, settings: TurnSettings) -> dict[str, str]:
        return get_enriched_env(self.extra_env(settings), command=self.command)

    # ── turn hooks ──

    def preamble_events(self, session: Session) -> list[StreamEvent]:
        """Events yielded right after spawn, before any stdout is read."""
        return []

    def should_stop_reading(self, session: Session) -> bool:
        """Whether the turn is over even though stdout is still open."""
        return False

    def post_stream_failure(
        self, session: Session, stderr: str,
    ) -> StreamEvent | None:
        """Terminal failure detected after a clean exit, if any."""
        return None

    def synthetic_session_event(self, session: Session) -> SessionActiveEvent:
        """Mint a local session id when the agent never reports one."""
        if session.session_id is None:
            session.session_id = f"{self.name}-{session.panel_id}-{int(time.time() * 1000)}"
            session.session_id_synthetic = True
        return SessionActiveEvent(session_id=session.session_id)

    # ── the turn ──

    async def send_message(
        self,
        prompt: str,
        settings: TurnSettings | None = None,
        *,
        panel_id: str | None = None,
        tracker: ProcessTracker | None = None,
        cwd: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run one turn and yield normalized events.

        Exactly one terminal event (done, error or auth_error) ends the
        stream, unless the turn was cancelled, in which case nothing
        further is yielded.
        """
        settings = settings or TurnSettings()
        session = self.registry.get_or_create(panel_id)
        session.autonomous_mode = settings.autonomous_mode
        if settings.session_id and session.session_id is None:
            session.session_id = settings.session_id
            session.session_id_synthetic = False
        session.cancel_token = CancelToken()
        self.normalizer.begin_turn(session, prompt)
        cwd = self.config.resolve_cwd(cwd)

        timeout = self.supervisor.timeout_for(session)
        deadline = asyncio.get_running_loop().time() + timeout

        if self.persistent_enabled and self.supports_persistent:
            produced = 0
            try:
                async for event in self.coordinator.run_turn(
                    session, self, prompt, settings, cwd=cwd, deadline=deadline,
                ):
                    produced += 1
                    yield event
            except ProcessTimeoutError:
                logger.error("%s: persistent turn timed out after %ss", self.name, timeout)
                if not session.cancel_token.cancelled:
                    yield ErrorEvent(message=f"{self.display_name} timed out after {timeout:g}s")
                return
            except (PersistentProcessError, OSError) as exc:
                logger.warning("%s: %s; falling back to single-shot", self.name, exc)
                await self.coordinator.dispose(session)
                if produced:
                    if not session.cancel_token.cancelled:
                        yield failure_event(None, str(exc), self)
                    return
            else:
                if not session.cancel_token.cancelled:
                    yield DoneEvent(usage=session.take_usage())
                return

        async for event in self._run_single_shot(
            session, prompt, settings, tracker=tracker, cwd=cwd,
            deadline=deadline, timeout=timeout,
        ):
            yield event

    async def _run_single_shot(
        self,
        session: Session,
        prompt: str,
        settings: TurnSettings,
        *,
        tracker: ProcessTracker | None,
        cwd: str,
        deadline: float,
        timeout: float,
    ) -> AsyncIterator[StreamEvent]:
        prompt_argv, stdin_payload = self.prompt_args(prompt)
        args = self.build_cli_args(settings, session) + prompt_argv
        try:
            handle = await self.supervisor.spawn(
                self.command,
                args,
                cwd=cwd,
                env=self.build_env(settings),
                stdin=stdin_payload is not None,
            )
        except ProcessSpawnError as exc:
            logger.error("%s: %s", self.name, exc)
            yield ErrorEvent(message=str(exc))
            return

        session.process = handle
        if tracker is not None:
            tracker.register_process(session.panel_id, handle)
        token = session.cancel_token
        loop = asyncio.get_running_loop()
        produced = 0
        try:
            if stdin_payload is not None:
                try:
                    await self.supervisor.send_input(
                        handle, stdin_payload, close=True, deadline=deadline,
                    )
                except ProcessInputError as exc:
                    # The exit code and stderr decide how the turn failed.
                    logger.warning("%s: %s", self.name, exc)

            for event in self.preamble_events(session):
                yield event

            stopped_early = False
            reader = self.normalizer.make_reassembler()
            async for unit in iter_units(handle.iter_stdout(deadline), reader):
                if token.cancelled:
                    return
                event = self.normalizer.parse(unit, session)
                if event is not None:
                    produced += 1
                    yield event
                if self.should_stop_reading(session):
                    stopped_early = True
                    break
            if token.cancelled:
                return

            if stopped_early:
                logger.info("%s: turn ended by agent; stopping pid=%s", self.name, handle.pid)
                await self.supervisor.terminate(handle)
                yield DoneEvent(usage=session.take_usage())
                return

            code = await self.supervisor.await_exit(handle, deadline - loop.time())
            if token.cancelled:
                return
            stderr = await handle.settle_stderr()

            if code != 0:
                yield failure_event(
                    stderr, f"{self.display_name} exited with code {code}", self,
                )
                return
            if produced == 0:
                yield failure_event(stderr, NO_RESPONSE_MESSAGE, self)
                return
            late_failure = self.post_stream_failure(session, stderr)
            if late_failure is not None:
                yield late_failure
                return
            yield DoneEvent(usage=session.take_usage())
        except ProcessTimeoutError:
            logger.error("%s (pid=%s) timed out after %ss", self.name, handle.pid, timeout)
            if not token.cancelled:
                yield ErrorEvent(message=f"{self.display_name} timed out after {timeout:g}s")
        finally:
            await self.supervisor.terminate(handle)
            if tracker is not None:
                tracker.clear_process(session.panel_id)
            session.process = None

    # ── session control ──

    async def cancel_current_request(self, panel_id: str | None = None) -> bool:
        """Stop the panel's in-flight turn. Returns False if nothing was running."""
        session = self.registry.get(panel_id)
        if session is None:
            return False
        session.cancel_token.cancel()
        if await self.coordinator.interrupt(session):
            return True
        if session.process is not None:
            logger.info("%s: cancelling pid=%s (panel=%s)", self.name, session.process.pid, session.panel_id)
            await self.supervisor.terminate(session.process)
            return True
        return False

    def clear_session(self, panel_id: str | None = None) -> None:
        self.registry.clear(panel_id)

    def has_session(self, panel_id: str | None = None) -> bool:
        return self.registry.has_session(panel_id)

    def get_session_id(self, panel_id: str | None = None) -> str | None:
        return self.registry.get_session_id(panel_id)

    async def dispose_persistent_process(self, panel_id: str | None = None) -> None:
        session = self.registry.get(panel_id)
        if session is not None:
            await self.coordinator.dispose(session)

    def is_available(self) -> bool:
        """Check if this provider's CLI is installed (on the enriched PATH)."""
        return resolve_executable(self.command) is not None

    async def shutdown(self) -> None:
        """Terminate every process this provider still owns."""
        sessions = list(self.registry.sessions())
        for session in sessions:
            session.cancel_token.cancel()
            if session.process is not None:
                await self.supervisor.terminate(session.process)
        await self.coordinator.dispose_all(sessions)
