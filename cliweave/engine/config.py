"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CLIWEAVE_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Stream engine configuration."""

    default_provider: str = "claude"
    # Working directory for spawned CLIs. None means os.getcwd().
    default_cwd: str | None = None

    # Wall-clock budget for one turn, covering the stdout read and
    # the wait for exit.
    process_timeout_seconds: float = 300.0
    # Budget used instead when the session runs in autonomous mode.
    autonomous_timeout_seconds: float = 1800.0
    # Time between SIGTERM and SIGKILL.
    kill_grace_seconds: float = 5.0

    # Keep one CLI alive per panel and reuse it across turns, for
    # providers that support it.
    persistent_processes: bool = False

    # Prompts longer than this go through stdin instead of argv
    # for providers that take the prompt as an argument.
    max_arg_length: int = 200_000

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from CLIWEAVE_* environment variables."""
        cw_vars = {
            k: v for k, v in os.environ.items() if k.startswith("CLIWEAVE_")
        }
        if cw_vars:
            logger.info(
                "EngineConfig.from_env: CLIWEAVE_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(cw_vars.items())),
            )
        else:
            logger.debug(
                "EngineConfig.from_env: no CLIWEAVE_* env vars set, using defaults"
            )

        config = cls(
            default_provider=os.getenv(
                "CLIWEAVE_DEFAULT_PROVIDER", cls.default_provider
            ),
            default_cwd=os.getenv("CLIWEAVE_DEFAULT_CWD") or None,
            process_timeout_seconds=float(os.getenv(
                "CLIWEAVE_PROCESS_TIMEOUT", str(cls.process_timeout_seconds)
            )),
            autonomous_timeout_seconds=float(os.getenv(
                "CLIWEAVE_AUTONOMOUS_TIMEOUT",
                str(cls.autonomous_timeout_seconds),
            )),
            kill_grace_seconds=float(os.getenv(
                "CLIWEAVE_KILL_GRACE", str(cls.kill_grace_seconds)
            )),
            persistent_processes=(
                os.getenv("CLIWEAVE_PERSISTENT", "").lower() in _TRUTHY
            ),
            max_arg_length=int(os.getenv(
                "CLIWEAVE_MAX_ARG_LENGTH", str(cls.max_arg_length)
            )),
            log_level=os.getenv("CLIWEAVE_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: provider=%s timeout=%ss persistent=%s log_level=%s",
            config.default_provider, config.process_timeout_seconds,
            config.persistent_processes, config.log_level,
        )
        return config

    def resolve_cwd(self, cwd: str | None = None) -> str:
        """Caller's workspace root, else the configured default, else cwd."""
        return cwd or self.default_cwd or os.getcwd()
