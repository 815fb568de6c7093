"""Provider registry: maps provider ids to Provider instances."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..config import EngineConfig
from ..errors import ProviderNotFoundError
from .base import Provider

if TYPE_CHECKING:
    from ..yaml_config import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of CLI agent providers, keyed by id (e.g. 'claude', 'cline')."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, name: str, provider: Provider) -> None:
        self._providers[name] = provider
        logger.info(
            "Provider registered: %s (%s, command=%s)",
            name, provider.display_name, provider.command,
        )

    def get(self, name: str) -> Provider | None:
        return self._providers.get(name)

    def get_or_raise(self, name: str) -> Provider:
        """Get a provider by id, raising ProviderNotFoundError if missing."""
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(name, self.list_names())
        return provider

    def list_names(self) -> list[str]:
        return list(self._providers.keys())

    def get_availability_report(self) -> dict[str, bool]:
        """Map each provider id to whether its CLI is installed."""
        return {
            name: p.is_available()
            for name, p in self._providers.items()
        }

    def validate(self) -> dict[str, bool]:
        """Log which providers' CLIs are installed and return the report."""
        report = self.get_availability_report()
        available = [n for n, ok in report.items() if ok]
        unavailable = [n for n, ok in report.items() if not ok]
        if available:
            logger.info("Available providers: %s", ", ".join(available))
        if unavailable:
            logger.warning(
                "Unavailable providers (CLI not installed): %s",
                ", ".join(unavailable),
            )
        return report

    async def shutdown_all(self) -> None:
        """Terminate every process owned by every provider."""
        for name, provider in self._providers.items():
            try:
                await provider.shutdown()
            except Exception as exc:
                logger.error("Error shutting down provider '%s': %s", name, exc)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    @property
    def count(self) -> int:
        return len(self._providers)


def build_provider_registry(
    provider_configs: dict[str, ProviderConfig] | None = None,
    engine_config: EngineConfig | None = None,
) -> ProviderRegistry:
    """Build a ProviderRegistry from YAML-sourced provider configs.

    With no configs, every built-in provider is registered under its
    own id with default commands.
    """
    from .claude_provider import ClaudeProvider
    from .cline_provider import ClineProvider
    from .copilot_provider import CopilotProvider
    from .cursor_provider import CursorProvider
    from .gemini_provider import GeminiProvider

    classes: dict[str, type[Provider]] = {
        "claude": ClaudeProvider,
        "gemini": GeminiProvider,
        "cline": ClineProvider,
        "cursor": CursorProvider,
        "copilot": CopilotProvider,
    }
    engine_config = engine_config or EngineConfig()
    registry = ProviderRegistry()

    if not provider_configs:
        for name, cls in classes.items():
            registry.register(name, cls(config=engine_config))
        registry.validate()
        return registry

    for name, cfg in provider_configs.items():
        cls = classes.get(cfg.type)
        if cls is None:
            logger.warning(
                "Unknown provider type '%s' for '%s', skipping", cfg.type, name,
            )
            continue
        registry.register(name, cls(
            command=cfg.command,
            model=cfg.model,
            api_key_env=cfg.api_key_env,
            persistent=cfg.persistent,
            config=engine_config,
        ))

    registry.validate()
    return registry
