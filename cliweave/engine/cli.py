"""CLI entry point for the stream engine.

Runs one turn against one provider and prints every normalized event
as a JSON line on stdout.

Usage:
    python -m cliweave.engine.cli "Explain this repository"
    python -m cliweave.engine.cli --provider gemini --mode quick-plan "Plan a refactor"
    python -m cliweave.engine.cli --config cliweave.yaml --prompt-file prompt.md
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import EngineConfig
from .errors import StreamEngineError
from .models import (
    AccessLevel,
    OperationMode,
    ThinkingLevel,
    TurnSettings,
)
from .supervisor import PanelProcessTracker

logger = logging.getLogger(__name__)

FAILURE_EVENT_TYPES = frozenset({"error", "auth_error"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cliweave",
        description="Drive an external CLI agent and stream normalized events as JSON lines",
    )
    parser.add_argument(
        "prompt",
        nargs="?",
        default=None,
        help="The prompt to send (inline string)",
    )
    parser.add_argument(
        "--prompt-file", "-f",
        default=None,
        help="Read the prompt from a file",
    )
    parser.add_argument(
        "--provider",
        default=None,
        help="Provider id (default: from config, else claude)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file with engine and providers sections",
    )
    parser.add_argument(
        "--panel",
        default=None,
        help="Panel/conversation id (default: 'default')",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the CLI (default: current dir)",
    )
    parser.add_argument("--model", default=None, help="Model to request")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in OperationMode],
        default=OperationMode.ASK_BEFORE_EDIT.value,
    )
    parser.add_argument(
        "--access",
        choices=[a.value for a in AccessLevel],
        default=AccessLevel.ASK_PERMISSION.value,
    )
    parser.add_argument(
        "--thinking",
        choices=[t.value for t in ThinkingLevel],
        default=ThinkingLevel.MEDIUM.value,
    )
    parser.add_argument(
        "--session-id",
        default=None,
        help="Continuation token to resume",
    )
    parser.add_argument(
        "--autonomous",
        action="store_true",
        help="Use the autonomous (longer) timeout",
    )
    parser.add_argument(
        "--persistent",
        action="store_true",
        help="Use a kept-alive process where the provider supports one",
    )
    parser.add_argument(
        "--reap-stale",
        action="store_true",
        help="Terminate orphaned agent CLI processes before starting",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (rotated at 2 MB)",
    )
    return parser


def configure_logging(verbose: bool, log_file: str | None, level_name: str = "INFO") -> None:
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    # Logs go to stderr; stdout carries only events.
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=5, encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
        ))
        logging.getLogger().addHandler(handler)


def _resolve_prompt(inline: str | None, file_path: str | None) -> str:
    """Get the prompt from the inline arg or a file. Exactly one must be given."""
    if inline and file_path:
        print("Error: Provide either a prompt or --prompt-file, not both.", file=sys.stderr)
        sys.exit(2)
    if file_path:
        p = Path(file_path)
        if not p.is_file():
            print(f"Error: Prompt file not found: {file_path}", file=sys.stderr)
            sys.exit(2)
        return p.read_text(encoding="utf-8").strip()
    if inline:
        return inline
    print("Error: Provide a prompt or --prompt-file.", file=sys.stderr)
    sys.exit(2)


def _reap_stale() -> None:
    from cliweave.shared.services.process_cleanup import (
        cleanup_stale_runtime_processes,
    )

    try:
        reaped = cleanup_stale_runtime_processes(log=logger.info)
    except (OSError, ValueError) as exc:
        logger.warning("Stale process cleanup failed: %s", exc)
        return
    if reaped:
        logger.info("Reaped %d stale agent process(es)", reaped)


async def run_turn(args: argparse.Namespace, prompt: str, out=None) -> int:
    """Run one turn; return the process exit status."""
    from .providers.registry import build_provider_registry
    from .yaml_config import load_yaml_config

    out = out or sys.stdout
    engine_config = EngineConfig.from_env()
    provider_configs = None
    if args.config:
        stream_config = load_yaml_config(args.config, base=engine_config)
        engine_config = stream_config.engine
        provider_configs = stream_config.providers
    if args.persistent:
        engine_config.persistent_processes = True
    if args.cwd:
        engine_config.default_cwd = args.cwd

    registry = build_provider_registry(provider_configs, engine_config)
    provider = registry.get_or_raise(args.provider or engine_config.default_provider)
    if args.persistent:
        provider.persistent_enabled = True

    settings = TurnSettings(
        mode=OperationMode(args.mode),
        access_level=AccessLevel(args.access),
        thinking_level=ThinkingLevel(args.thinking),
        model=args.model,
        session_id=args.session_id,
        autonomous_mode=args.autonomous,
    )

    tracker = PanelProcessTracker()
    status = 0
    try:
        async for event in provider.send_message(
            prompt, settings, panel_id=args.panel, tracker=tracker,
        ):
            out.write(json.dumps(event.to_dict()) + "\n")
            out.flush()
            if event.type in FAILURE_EVENT_TYPES:
                status = 1
    finally:
        live = tracker.active_panels()
        if live:
            logger.warning("Stopping agent process for panel(s): %s", ", ".join(live))
        await registry.shutdown_all()
    return status


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.log_file, os.getenv("CLIWEAVE_LOG_LEVEL", "INFO"))

    prompt = _resolve_prompt(args.prompt, args.prompt_file)
    if args.reap_stale:
        _reap_stale()

    try:
        status = asyncio.run(run_turn(args, prompt))
    except StreamEngineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(status)


if __name__ == "__main__":
    main()
