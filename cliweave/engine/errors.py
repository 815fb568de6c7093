"""Exception hierarchy for the stream engine.

Raised inside the supervisor and coordinator, converted into
normalized error events only at the provider turn boundary.
"""
from __future__ import annotations


class StreamEngineError(Exception):
    """Base exception for all stream engine errors."""


class ProcessSpawnError(StreamEngineError):
    """Failed to start an external CLI process."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start {command}: {reason}")


class ProcessTimeoutError(StreamEngineError):
    """Process exceeded its wall-clock budget for one turn."""
    def __init__(self, command: str, timeout_seconds: float):
        self.command = command
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{command} timed out after {timeout_seconds:g}s"
        )


class ProcessInputError(StreamEngineError):
    """Writing to the process's standard input failed."""
    def __init__(self, pid: int | None, reason: str):
        self.pid = pid
        self.reason = reason
        super().__init__(f"Cannot write to process {pid}: {reason}")


class PersistentProcessError(StreamEngineError):
    """The kept-alive process is unusable for this turn.

    Always recovered by the provider falling back to a single-shot
    process, never surfaced directly.
    """
    def __init__(self, provider_name: str, reason: str):
        self.provider_name = provider_name
        self.reason = reason
        super().__init__(
            f"Persistent {provider_name} process failed: {reason}"
        )


class ProviderNotFoundError(StreamEngineError):
    """Requested provider id is not registered."""
    def __init__(self, provider_name: str, available: list[str]):
        self.provider_name = provider_name
        self.available = available
        avail_str = ", ".join(available) if available else "none"
        super().__init__(
            f"Provider '{provider_name}' not found. "
            f"Available providers: {avail_str}"
        )


class ConfigError(StreamEngineError):
    """Configuration file is missing or malformed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
