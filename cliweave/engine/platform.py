"""Process environment and executable lookup.

Both the enriched environment and resolved executable paths are
process-wide caches: built lazily on first use, reused afterwards,
and invalidated explicitly via reset_platform_caches() after an
external install changes what is on disk.
"""
from __future__ import annotations

import logging
import os
import shutil
import sys

logger = logging.getLogger(__name__)

_base_env: dict[str, str] | None = None
_resolved: dict[str, str | None] = {}


def _common_cli_dirs() -> list[str]:
    dirs: list[str] = []
    node = shutil.which("node")
    if node:
        dirs.append(os.path.dirname(os.path.realpath(node)))
    dirs.append("/usr/local/bin")
    if sys.platform == "darwin":
        dirs.append("/opt/homebrew/bin")
    nvm_dir = os.environ.get("NVM_DIR") or os.path.join(os.path.expanduser("~"), ".nvm")
    nvm_current = os.path.join(nvm_dir, "current", "bin")
    if os.path.isdir(nvm_current):
        dirs.append(nvm_current)
    for extra in ("~/.local/bin", "~/.npm-global/bin"):
        path = os.path.expanduser(extra)
        if os.path.isdir(path):
            dirs.append(path)
    return dirs


def _prepend_path(path_value: str, front: list[str]) -> str:
    """Move ``front`` dirs to the start of PATH, dropping duplicates."""
    ordered: list[str] = []
    for d in front:
        if d and d not in ordered:
            ordered.append(d)
    rest = [p for p in path_value.split(os.pathsep) if p and p not in ordered]
    return os.pathsep.join(ordered + rest)


def _build_base_env() -> dict[str, str]:
    env = dict(os.environ)
    env["PATH"] = _prepend_path(env.get("PATH", ""), _common_cli_dirs())
    logger.debug("Built enriched environment PATH=%s", env["PATH"])
    return env


def get_enriched_env(
    extra: dict[str, str] | None = None,
    command: str | None = None,
) -> dict[str, str]:
    """Host environment with common CLI directories at the front of PATH.

    When ``command`` is an absolute/relative path, its own directory is
    prepended too so ``#!/usr/bin/env node`` style shebangs resolve
    even under a stripped-down host PATH.
    """
    global _base_env
    if _base_env is None:
        _base_env = _build_base_env()
    env = dict(_base_env)
    if command and os.path.dirname(command):
        exe_dir = os.path.dirname(os.path.abspath(command))
        env["PATH"] = _prepend_path(env.get("PATH", ""), [exe_dir])
    if extra:
        env.update(extra)
    return env


def resolve_executable(command: str) -> str | None:
    """Resolve ``command`` against the enriched PATH (cached)."""
    if command in _resolved:
        return _resolved[command]
    path = shutil.which(command, path=get_enriched_env().get("PATH"))
    _resolved[command] = path
    if path is None:
        logger.debug("Executable %s not found on enriched PATH", command)
    return path


def reset_platform_caches() -> None:
    """Forget the enriched environment and resolved paths."""
    global _base_env
    _base_env = None
    _resolved.clear()
