"""Process supervision for external CLI agents.

Spawns CLIs with array-based argv (no shell), wires stderr into a
diagnostic buffer, reads stdout in bounded chunks against a turn
deadline, and performs graceful-then-forced termination.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, AsyncIterator, Protocol

from .config import EngineConfig
from .errors import ProcessInputError, ProcessSpawnError, ProcessTimeoutError

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
# How long to wait for the stderr drain to finish after exit.
STDERR_SETTLE_SECONDS = 1.0


class CancelToken:
    """Cooperative cancellation flag for one turn.

    The read loop checks it once per logical unit and stops without
    emitting anything further once it is set.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ProcessHandle:
    """A running CLI process plus its stderr diagnostic buffer."""

    def __init__(
        self, proc: asyncio.subprocess.Process, command: str,
    ) -> None:
        self.proc = proc
        self.command = command
        self._stderr_parts: list[str] = []
        self._stderr_task: asyncio.Task | None = None
        if proc.stderr is not None:
            self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> int | None:
        return self.proc.returncode

    @property
    def is_alive(self) -> bool:
        return self.proc.returncode is None

    @property
    def stderr_text(self) -> str:
        return "".join(self._stderr_parts)

    async def _drain_stderr(self) -> None:
        stream = self.proc.stderr
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace")
            self._stderr_parts.append(text)
            logger.debug("%s stderr (pid=%s): %s", self.command, self.pid, text.rstrip())

    async def settle_stderr(self) -> str:
        """Wait briefly for the stderr drain to reach EOF, then return it."""
        task = self._stderr_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), STDERR_SETTLE_SECONDS)
            except asyncio.TimeoutError:
                logger.debug("%s stderr still open after exit (pid=%s)", self.command, self.pid)
        return self.stderr_text

    def stop_stderr(self) -> None:
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()

    async def read_chunk(self, deadline: float | None = None) -> bytes:
        """Read the next stdout chunk; b"" at EOF.

        Raises ProcessTimeoutError once ``deadline`` (loop time) passes.
        """
        stream = self.proc.stdout
        if stream is None:
            return b""
        if deadline is None:
            return await stream.read(READ_CHUNK_SIZE)
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise ProcessTimeoutError(self.command, 0)
        try:
            return await asyncio.wait_for(stream.read(READ_CHUNK_SIZE), remaining)
        except asyncio.TimeoutError:
            raise ProcessTimeoutError(self.command, remaining) from None

    async def iter_stdout(self, deadline: float | None = None) -> AsyncIterator[bytes]:
        """Yield raw stdout chunks until EOF."""
        while True:
            chunk = await self.read_chunk(deadline)
            if not chunk:
                return
            yield chunk


class ProcessTracker(Protocol):
    """External collaborator that can cancel a turn by panel id."""

    def register_process(self, panel_id: str, handle: ProcessHandle) -> None: ...

    def clear_process(self, panel_id: str) -> None: ...


class PanelProcessTracker:
    """Default in-memory tracker of the active process per panel."""

    def __init__(self) -> None:
        self._handles: dict[str, ProcessHandle] = {}

    def register_process(self, panel_id: str, handle: ProcessHandle) -> None:
        self._handles[panel_id] = handle

    def clear_process(self, panel_id: str) -> None:
        self._handles.pop(panel_id, None)

    def get(self, panel_id: str) -> ProcessHandle | None:
        return self._handles.get(panel_id)

    def active_panels(self) -> list[str]:
        return [p for p, h in self._handles.items() if h.is_alive]


class ProcessSupervisor:
    """Spawns, feeds, awaits and terminates CLI processes."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def timeout_for(self, session: Session) -> float:
        if session.autonomous_mode:
            return self.config.autonomous_timeout_seconds
        return self.config.process_timeout_seconds

    async def spawn(
        self,
        command: str,
        args: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        stdin: bool = True,
    ) -> ProcessHandle:
        """Start ``command args...`` with piped stdout/stderr."""
        cwd = cwd or os.getcwd()
        try:
            # Safe array-based subprocess, no shell
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise ProcessSpawnError(
                command, "executable not found (is the CLI installed and on PATH?)",
            ) from None
        except PermissionError as exc:
            raise ProcessSpawnError(command, f"permission denied: {exc}") from exc
        except OSError as exc:
            raise ProcessSpawnError(command, str(exc)) from exc

        handle = ProcessHandle(proc, os.path.basename(command))
        logger.info(
            "Spawned %s (pid=%s, argc=%d, cwd=%s)",
            handle.command, handle.pid, len(args), cwd,
        )
        return handle

    async def send_input(
        self,
        handle: ProcessHandle,
        text: str,
        *,
        close: bool = False,
        deadline: float | None = None,
    ) -> None:
        """Write ``text`` to stdin and wait for it to drain.

        Raises ProcessTimeoutError once ``deadline`` (loop time) passes
        with the pipe still full.
        """
        stdin = handle.proc.stdin
        if stdin is None:
            raise ProcessInputError(handle.pid, "stdin is not piped")
        try:
            stdin.write(text.encode("utf-8"))
            if deadline is None:
                await stdin.drain()
            else:
                remaining = deadline - asyncio.get_running_loop().time()
                if remaining <= 0:
                    raise ProcessTimeoutError(handle.command, 0)
                try:
                    await asyncio.wait_for(stdin.drain(), remaining)
                except asyncio.TimeoutError:
                    logger.error(
                        "%s (pid=%s) did not read stdin within %ss",
                        handle.command, handle.pid, remaining,
                    )
                    raise ProcessTimeoutError(handle.command, remaining) from None
            if close:
                stdin.close()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ProcessInputError(handle.pid, str(exc) or type(exc).__name__) from exc

    async def await_exit(
        self, handle: ProcessHandle, timeout: float | None = None,
    ) -> int:
        """Wait for exit; on timeout terminate and raise ProcessTimeoutError."""
        if timeout is not None and timeout <= 0:
            if handle.returncode is not None:
                return handle.returncode
            await self.terminate(handle)
            raise ProcessTimeoutError(handle.command, 0)
        try:
            code = await asyncio.wait_for(handle.proc.wait(), timeout)
        except asyncio.TimeoutError:
            logger.error(
                "%s (pid=%s) did not exit within %ss",
                handle.command, handle.pid, timeout,
            )
            await self.terminate(handle)
            raise ProcessTimeoutError(handle.command, timeout) from None
        logger.info("%s (pid=%s) exited with code %s", handle.command, handle.pid, code)
        return code

    async def terminate(self, handle: ProcessHandle) -> None:
        """SIGTERM, wait the grace period, then SIGKILL. Idempotent."""
        proc = handle.proc
        if proc.returncode is None:
            grace = self.config.kill_grace_seconds
            try:
                proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning(
                        "%s (pid=%s) ignored SIGTERM for %ss; killing",
                        handle.command, handle.pid, grace,
                    )
                    proc.kill()
                    await proc.wait()
                logger.info("%s stopped (pid=%s)", handle.command, handle.pid)
            except ProcessLookupError:
                pass  # Already exited
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        await handle.settle_stderr()
        handle.stop_stderr()
