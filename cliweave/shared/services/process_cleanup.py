"""Best-effort reaping of orphaned agent CLI processes.

Targets dialect CLIs that a previous cliweave run spawned (each in
its own session) and that outlived it, for example after the host
process was SIGKILLed mid-turn.
"""

from __future__ import annotations

import os
import re
import signal
import subprocess
from dataclasses import dataclass
from typing import Callable

# argv signatures of the CLIs cliweave spawns, keyed by provider id.
DIALECT_SIGNATURES: dict[str, str] = {
    "claude": r"\bclaude\b.*--output-format\s+stream-json\b.*--include-partial-messages\b",
    "gemini": r"\bgemini\b.*--output-format\s+stream-json\b",
    "cline": r"\bcline\b.*--output-format\s+json\b.*--mode\s+(?:plan|act)\b",
    "cursor": r"\bagent\b.*--output-format\s+stream-json\b.*--stream-partial-output\b",
    "copilot": r"\bcopilot\b.*(?:--allow-all-tools|--deny-tool|\s-p\s)",
}

_ANCESTOR_MARKERS = ("cliweave.engine.cli", "bin/cliweave")


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    args: str


def _list_processes() -> dict[int, ProcessInfo]:
    """Return the process table keyed by PID, parsed from ``ps``."""
    out = subprocess.check_output(
        ["ps", "-eo", "pid=,ppid=,args="],
        text=True,
        stderr=subprocess.DEVNULL,
    )
    table: dict[int, ProcessInfo] = {}
    for line in out.splitlines():
        parts = line.strip().split(maxsplit=2)
        if len(parts) < 3:
            continue
        try:
            table[int(parts[0])] = ProcessInfo(
                pid=int(parts[0]), ppid=int(parts[1]), args=parts[2],
            )
        except ValueError:
            continue
    return table


def _has_cliweave_ancestor(
    proc: ProcessInfo,
    table: dict[int, ProcessInfo],
    current_pid: int,
) -> bool:
    """True when a live cliweave process (or this one) is an ancestor."""
    cur = proc
    for _ in range(32):
        if cur.pid == current_pid:
            return True
        if any(marker in cur.args for marker in _ANCESTOR_MARKERS):
            return True
        parent = table.get(cur.ppid)
        if parent is None:
            return False
        cur = parent
    return False


def matching_dialect(args: str, providers: tuple[str, ...] | None = None) -> str | None:
    """Provider id whose argv signature ``args`` matches, if any."""
    for name, pattern in DIALECT_SIGNATURES.items():
        if providers is not None and name not in providers:
            continue
        if re.search(pattern, args):
            return name
    return None


def cleanup_stale_runtime_processes(
    *,
    current_pid: int | None = None,
    providers: tuple[str, ...] | None = None,
    log: Callable[[str], None] | None = None,
    table: dict[int, ProcessInfo] | None = None,
) -> int:
    """SIGTERM orphaned dialect CLI processes; return how many were signalled.

    A process is reaped only when:
    - its argv matches a dialect signature, and
    - it is orphaned (parent is PID 1 or missing), and
    - it has no cliweave ancestor.
    """
    pid = current_pid or os.getpid()
    logger = log or (lambda _: None)
    table = table if table is not None else _list_processes()
    killed = 0

    for proc in table.values():
        if proc.pid == pid:
            continue
        dialect = matching_dialect(proc.args, providers)
        if dialect is None:
            continue
        if proc.ppid != 1 and proc.ppid in table:
            continue
        if _has_cliweave_ancestor(proc, table, pid):
            continue

        try:
            os.kill(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            continue
        except PermissionError as exc:
            logger(f"Cannot reap {dialect} process pid={proc.pid}: {exc}")
            continue
        killed += 1
        logger(
            f"Reaped stale {dialect} process pid={proc.pid} "
            f"ppid={proc.ppid} cmd={proc.args[:180]}"
        )

    return killed
