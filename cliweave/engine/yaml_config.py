"""YAML configuration loader.

Example YAML:
    engine:
      default_provider: gemini
      process_timeout_seconds: 600
      persistent_processes: true

    providers:
      claude:
        type: claude
        persistent: true
      gemini:
        type: gemini
        model: gemini-2.5-pro
        api_key_env: MY_GEMINI_KEY
      cursor:
        type: cursor
        command: /opt/cursor/bin/agent
        api_key_env: CURSOR_API_KEY

When no YAML is given, EngineConfig.from_env() and the built-in
provider defaults are used instead.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

PROVIDER_TYPES = ("claude", "gemini", "cline", "cursor", "copilot")

_FLOAT_FIELDS = {
    "process_timeout_seconds",
    "autonomous_timeout_seconds",
    "kill_grace_seconds",
}
_INT_FIELDS = {"max_arg_length"}
_BOOL_FIELDS = {"persistent_processes"}


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    type: str  # one of PROVIDER_TYPES
    command: str | None = None  # path to the CLI binary
    model: str | None = None  # model override passed to the CLI
    api_key_env: str | None = None  # env var holding the API key
    persistent: bool | None = None  # None = follow engine.persistent_processes


@dataclass
class StreamConfig:
    """Fully parsed configuration."""
    engine: EngineConfig
    providers: dict[str, ProviderConfig] = field(default_factory=dict)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _parse_engine(
    engine_raw: dict[str, Any], base: EngineConfig, path: Path,
) -> EngineConfig:
    known = {f.name for f in dataclasses.fields(EngineConfig)}
    overrides: dict[str, Any] = {}
    for key, value in engine_raw.items():
        if key not in known:
            logger.warning("Unknown engine setting '%s' in %s, ignoring", key, path.name)
            continue
        try:
            if key in _FLOAT_FIELDS:
                value = float(value)
            elif key in _INT_FIELDS:
                value = int(value)
            elif key in _BOOL_FIELDS:
                value = _coerce_bool(value)
            elif value is not None:
                value = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(path), f"engine.{key}: {exc}") from exc
        overrides[key] = value
    return dataclasses.replace(base, **overrides)


def _parse_providers(
    providers_raw: dict[str, Any], path: Path,
) -> dict[str, ProviderConfig]:
    providers: dict[str, ProviderConfig] = {}
    for name, cfg in providers_raw.items():
        cfg = cfg or {}
        if not isinstance(cfg, dict):
            raise ConfigError(str(path), f"providers.{name} must be a mapping")
        ptype = str(cfg.get("type", name))
        if ptype not in PROVIDER_TYPES:
            logger.warning(
                "Unknown provider type '%s' for '%s' in %s, skipping",
                ptype, name, path.name,
            )
            continue
        persistent = cfg.get("persistent")
        providers[str(name)] = ProviderConfig(
            type=ptype,
            command=cfg.get("command"),
            model=cfg.get("model"),
            api_key_env=cfg.get("api_key_env"),
            persistent=None if persistent is None else _coerce_bool(persistent),
        )
    return providers


def load_yaml_config(
    path: str | Path, base: EngineConfig | None = None,
) -> StreamConfig:
    """Load and parse a YAML config file.

    ``engine:`` values override ``base`` (defaults, or the env-derived
    config the caller passes in). Raises ConfigError when the file is
    missing, unparseable or structurally wrong.
    """
    path = Path(path)
    logger.info("load_yaml_config: loading %s", path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise ConfigError(str(path), "file not found") from None
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    engine_raw = raw.get("engine") or {}
    providers_raw = raw.get("providers") or {}
    if not isinstance(engine_raw, dict):
        raise ConfigError(str(path), "'engine' must be a mapping")
    if not isinstance(providers_raw, dict):
        raise ConfigError(str(path), "'providers' must be a mapping")

    engine = _parse_engine(engine_raw, base or EngineConfig(), path)
    providers = _parse_providers(providers_raw, path)
    logger.info(
        "Parsed YAML config %s: %d provider(s) (%s), default=%s",
        path.name, len(providers), ", ".join(providers) or "none",
        engine.default_provider,
    )
    return StreamConfig(engine=engine, providers=providers)
