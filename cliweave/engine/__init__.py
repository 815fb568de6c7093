"""cliweave stream engine: drive external CLI agents as one streaming service."""
from .models import (
    AccessLevel,
    AskUserQuestion,
    AskUserQuestionEvent,
    AuthErrorEvent,
    DoneEvent,
    ErrorEvent,
    ExitPlanModeEvent,
    OperationMode,
    PersistentState,
    QuestionOption,
    SessionActiveEvent,
    StreamEvent,
    TextEvent,
    ThinkingEvent,
    ThinkingLevel,
    ToolCall,
    ToolResultEvent,
    ToolStatus,
    ToolUseEvent,
    TurnSettings,
    UsageSnapshot,
)
from .config import EngineConfig
from .errors import (
    ConfigError,
    PersistentProcessError,
    ProcessInputError,
    ProcessSpawnError,
    ProcessTimeoutError,
    ProviderNotFoundError,
    StreamEngineError,
)

__all__ = [
    # Models
    "AccessLevel",
    "AskUserQuestion",
    "AskUserQuestionEvent",
    "AuthErrorEvent",
    "DoneEvent",
    "ErrorEvent",
    "ExitPlanModeEvent",
    "OperationMode",
    "PersistentState",
    "QuestionOption",
    "SessionActiveEvent",
    "StreamEvent",
    "TextEvent",
    "ThinkingEvent",
    "ThinkingLevel",
    "ToolCall",
    "ToolResultEvent",
    "ToolStatus",
    "ToolUseEvent",
    "TurnSettings",
    "UsageSnapshot",
    # Config
    "EngineConfig",
    # YAML config (lazy import)
    "StreamConfig",
    "load_yaml_config",
    # Providers (lazy import)
    "Provider",
    "ProviderRegistry",
    "build_provider_registry",
    # Errors
    "ConfigError",
    "PersistentProcessError",
    "ProcessInputError",
    "ProcessSpawnError",
    "ProcessTimeoutError",
    "ProviderNotFoundError",
    "StreamEngineError",
]


def __getattr__(name: str):
    if name == "StreamConfig":
        from .yaml_config import StreamConfig
        return StreamConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "Provider":
        from .providers.base import Provider
        return Provider
    if name == "ProviderRegistry":
        from .providers.registry import ProviderRegistry
        return ProviderRegistry
    if name == "build_provider_registry":
        from .providers.registry import build_provider_registry
        return build_provider_registry
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
