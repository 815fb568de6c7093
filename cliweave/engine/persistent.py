"""Persistent (kept-alive) CLI processes.

One interactive process per panel is reused across turns. Each turn
writes the prompt plus a newline, then reads until the dialect's
response-boundary unit. Cancellation writes an interrupt byte
instead of killing, so the process survives for the next turn.

Everything here is best-effort: failures raise PersistentProcessError
and the provider falls back to a single-shot process.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncIterator

from .errors import (
    PersistentProcessError,
    ProcessInputError,
    ProcessSpawnError,
    ProcessTimeoutError,
)
from .models import PersistentState, StreamEvent, TurnSettings
from .reassembler import Reassembler
from .session import Session
from .supervisor import ProcessHandle, ProcessSupervisor

if TYPE_CHECKING:
    from .providers.base import Provider

logger = logging.getLogger(__name__)

INTERRUPT_BYTE = "\x03"


class PersistentProcessCoordinator:
    """Owns the persistent process lifecycle for every session of a provider."""

    def __init__(self, supervisor: ProcessSupervisor) -> None:
        self.supervisor = supervisor
        self._watchers: dict[str, asyncio.Task] = {}

    async def acquire(
        self,
        session: Session,
        provider: Provider,
        settings: TurnSettings,
        cwd: str | None = None,
    ) -> ProcessHandle | None:
        """Reuse a healthy process or spawn one; None if unsupported."""
        loop = asyncio.get_running_loop()
        handle = session.persistent_process
        if handle is not None and handle.is_alive and session.persistent_ready:
            session.last_health_check = loop.time()
            return handle
        if handle is not None:
            logger.info(
                "%s: discarding unusable persistent process (pid=%s, state=%s)",
                provider.name, handle.pid, session.persistent_state.value,
            )
            await self.dispose(session)

        args = provider.build_persistent_args(settings, session)
        if args is None:
            return None

        session.set_persistent_state(PersistentState.SPAWNING)
        try:
            handle = await self.supervisor.spawn(
                provider.command,
                args,
                cwd=cwd,
                env=provider.build_env(settings),
            )
        except ProcessSpawnError as exc:
            session.clear_persistent()
            raise PersistentProcessError(provider.name, str(exc)) from exc

        session.persistent_process = handle
        session.persistent_reader = provider.normalizer.make_reassembler()
        session.last_health_check = loop.time()
        session.set_persistent_state(PersistentState.READY)
        self._watch(session, handle, provider.name)
        logger.info(
            "%s: persistent process ready (pid=%s, panel=%s)",
            provider.name, handle.pid, session.panel_id,
        )
        return handle

    def _watch(self, session: Session, handle: ProcessHandle, name: str) -> None:
        async def _on_exit() -> None:
            code = await handle.proc.wait()
            if session.persistent_process is handle:
                logger.warning(
                    "%s: persistent process exited (pid=%s, code=%s)",
                    name, handle.pid, code,
                )
                session.clear_persistent()

        previous = self._watchers.pop(session.panel_id, None)
        if previous is not None:
            previous.cancel()
        self._watchers[session.panel_id] = asyncio.ensure_future(_on_exit())

    async def run_turn(
        self,
        session: Session,
        provider: Provider,
        prompt: str,
        settings: TurnSettings,
        *,
        cwd: str | None = None,
        deadline: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield normalized events for one turn on the persistent process.

        Raises PersistentProcessError before yielding anything when the
        process cannot be used. Raises ProcessTimeoutError when the
        deadline passes.
        """
        handle = await self.acquire(session, provider, settings, cwd)
        if handle is None:
            raise PersistentProcessError(provider.name, "persistent mode not supported")

        reader = session.persistent_reader
        session.set_persistent_state(PersistentState.BUSY)
        try:
            await self.supervisor.send_input(handle, prompt + "\n", deadline=deadline)
        except ProcessInputError as exc:
            await self.dispose(session)
            raise PersistentProcessError(provider.name, str(exc)) from exc
        except ProcessTimeoutError:
            await self.dispose(session)
            raise

        normalizer = provider.normalizer
        produced = 0
        boundary = False
        try:
            while not boundary:
                if session.cancel_token.cancelled:
                    break
                chunk = await handle.read_chunk(deadline)
                units = reader.feed(chunk) if chunk else reader.flush()
                for unit in units:
                    if boundary:
                        logger.debug("%s: dropping unit after boundary: %.80s", provider.name, unit)
                        continue
                    boundary = normalizer.is_response_boundary(unit)
                    # Cancelled turns still look for the boundary but emit nothing.
                    if session.cancel_token.cancelled:
                        continue
                    event = normalizer.parse(unit, session)
                    if event is not None:
                        produced += 1
                        yield event
                if not chunk:
                    break
        except ProcessTimeoutError:
            await self.dispose(session)
            raise

        if session.cancel_token.cancelled:
            if not boundary:
                await self._drain_after_interrupt(session, provider, handle, reader)
            elif self._owns(session, handle):
                session.set_persistent_state(PersistentState.READY)
            return

        if produced == 0:
            await self.dispose(session)
            raise PersistentProcessError(provider.name, "Persistent process ended unexpectedly")

        if boundary and self._owns(session, handle):
            session.set_persistent_state(PersistentState.READY)
            session.last_health_check = asyncio.get_running_loop().time()
            return

        # EOF without a boundary: the process is gone.
        await self.dispose(session)
        logger.warning(
            "%s: persistent process closed stdout mid-turn after %d event(s)",
            provider.name, produced,
        )

    async def _drain_after_interrupt(
        self,
        session: Session,
        provider: Provider,
        handle: ProcessHandle,
        reader: Reassembler,
    ) -> None:
        """Discard output of an interrupted turn up to its boundary."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.supervisor.config.kill_grace_seconds
        try:
            while True:
                chunk = await handle.read_chunk(deadline)
                units = reader.feed(chunk) if chunk else reader.flush()
                boundary = any(provider.normalizer.is_response_boundary(u) for u in units)
                if boundary and self._owns(session, handle):
                    session.set_persistent_state(PersistentState.READY)
                    logger.info("%s: interrupted turn drained (pid=%s)", provider.name, handle.pid)
                    return
                if not chunk:
                    break
        except ProcessTimeoutError:
            logger.warning("%s: no boundary after interrupt; discarding process", provider.name)
        await self.dispose(session)

    @staticmethod
    def _owns(session: Session, handle: ProcessHandle) -> bool:
        """Whether ``handle`` is still the session's live busy process."""
        return (
            session.persistent_process is handle
            and handle.is_alive
            and session.persistent_state == PersistentState.BUSY
        )

    async def interrupt(self, session: Session) -> bool:
        """Send Ctrl+C to a busy persistent process."""
        handle = session.persistent_process
        if handle is None or session.persistent_state != PersistentState.BUSY:
            return False
        try:
            await self.supervisor.send_input(handle, INTERRUPT_BYTE)
        except ProcessInputError as exc:
            logger.warning("Interrupt failed (pid=%s): %s", handle.pid, exc)
            return False
        logger.info("Sent interrupt to persistent process (pid=%s)", handle.pid)
        return True

    async def dispose(self, session: Session) -> None:
        """Terminate the session's persistent process, if any."""
        watcher = self._watchers.pop(session.panel_id, None)
        if watcher is not None:
            watcher.cancel()
        handle = session.persistent_process
        session.clear_persistent()
        if handle is not None:
            await self.supervisor.terminate(handle)

    async def dispose_all(self, sessions) -> None:
        for session in sessions:
            await self.dispose(session)
