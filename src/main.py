# src/main.py — v3
"""CLI entry point — ask, cache-sweep, spend commands.

Usage:
    chatpipe ask <text> [--system FILE] [--history FILE] [--image FILE ...] [--session ID] [--stream]
    chatpipe cache-sweep [--all]
    chatpipe spend
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import logging
import mimetypes
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from chatpipe.version import __version__

if TYPE_CHECKING:
    from chatpipe.config.settings import Settings

logger = logging.getLogger(__name__)

_DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from chatpipe.config.settings import ConfigurationError, load_settings

    try:
        settings = load_settings()
    except (ConfigurationError, ValidationError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    _setup_logging(settings, args.verbose)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="chatpipe",
        description=f"chatpipe v{__version__} — budgeted chat-completion client",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- ask ---
    p_ask = subparsers.add_parser("ask", help="Send one user turn")
    p_ask.add_argument("text", help="User message")
    p_ask.add_argument(
        "--system", type=Path, default=None,
        help="File holding the system prompt",
    )
    p_ask.add_argument(
        "--history", type=Path, default=None,
        help="JSON file with prior conversation messages",
    )
    p_ask.add_argument(
        "--image", type=Path, action="append", default=[],
        help="Image to attach (repeatable); should already be downscaled",
    )
    p_ask.add_argument(
        "--session", default=None,
        help="Conversation id shown in log records",
    )
    p_ask.add_argument(
        "--stream", action="store_true",
        help="Stream the reply as it is generated",
    )
    p_ask.set_defaults(func=_cmd_ask)

    # --- cache-sweep ---
    p_sweep = subparsers.add_parser("cache-sweep", help="Remove expired cache entries")
    p_sweep.add_argument(
        "--all", action="store_true",
        help="Remove every entry, not only expired ones",
    )
    p_sweep.set_defaults(func=_cmd_cache_sweep)

    # --- spend ---
    p_spend = subparsers.add_parser("spend", help="Show this month's estimated spend")
    p_spend.set_defaults(func=_cmd_spend)

    return parser


async def _cmd_ask(args: argparse.Namespace, settings: Settings) -> int:
    """Send one turn and print the reply."""
    from chatpipe.llm.models import ConversationMessage
    from chatpipe.llm.pipeline import ChatPipeline

    system_prompt = _DEFAULT_SYSTEM_PROMPT
    if args.system is not None:
        system_prompt = args.system.read_text(encoding="utf-8")

    history: list[ConversationMessage] = []
    if args.history is not None:
        adapter = TypeAdapter(list[ConversationMessage])
        history = adapter.validate_json(args.history.read_bytes())

    photos = tuple(_to_data_uri(p) for p in args.image) or None
    history.append(
        ConversationMessage(
            id=f"msg-{uuid.uuid4().hex[:12]}",
            role="user",
            content=args.text,
            photos=photos,
            timestamp=datetime.now(timezone.utc),
        )
    )

    pipeline = ChatPipeline.from_settings(settings)
    try:
        if args.stream:
            result = await pipeline.stream(
                system_prompt, history, on_chunk=_write_chunk, session_id=args.session,
            )
            print()
        else:
            result = await pipeline.send(system_prompt, history, session_id=args.session)
            print(result.content)
    finally:
        await pipeline.aclose()

    source = "cache" if result.cached else result.model
    logger.info(
        "Reply from %s: %d prompt / %d completion tokens",
        source, result.usage.prompt_tokens, result.usage.completion_tokens,
    )
    return 0


async def _cmd_cache_sweep(args: argparse.Namespace, settings: Settings) -> int:
    """Remove expired (or all) cache entries."""
    from chatpipe.llm.pipeline import ChatPipeline

    pipeline = ChatPipeline.from_settings(settings)
    try:
        if pipeline.cache is None:
            print("Cache disabled.")
            return 0
        removed = await (pipeline.cache.clear() if args.all else pipeline.sweep_cache())
    finally:
        await pipeline.aclose()
    print(f"Removed {removed} cache entries.")
    return 0


async def _cmd_spend(args: argparse.Namespace, settings: Settings) -> int:
    """Print this month's estimated spend against the budget."""
    from chatpipe.tracking.cost_calculator import pricing_from_settings
    from chatpipe.tracking.usage_ledger import UsageLedger

    ledger = UsageLedger(settings.usage_ledger_path, pricing_from_settings(settings))
    spent = ledger.monthly_spend()
    limit = settings.budget_limit_usd
    print("\nSpend this month:")
    print(f"  Calls:     {len(ledger.records)}")
    print(f"  Spent:     ${spent:.4f}")
    print(f"  Budget:    ${limit:.2f}")
    print(f"  Within:    {'yes' if spent < limit else 'no'}")
    return 0


def _to_data_uri(path: Path) -> str:
    """Encode an image file as a base64 data URI."""
    media_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    b64 = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{media_type};base64,{b64}"


def _write_chunk(delta: str) -> None:
    sys.stdout.write(delta)
    sys.stdout.flush()


def _setup_logging(settings: Settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from chatpipe.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
