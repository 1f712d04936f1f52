"""quotestream CLI entrypoint.

Subcommands: watch.

`watch` subscribes to the given symbols and prints every quote update as a
JSON line on stdout until interrupted or the connection fails.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import IO, Optional

import orjson

from quotestream.client import connect
from quotestream.config import ClientConfig, ClientConfigLoader
from quotestream.errors import QuoteStreamError
from quotestream.transport import Transport
from quotestream.types import ErrorContext, QuoteData


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="quotestream")
    p.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for stderr",
    )
    sub = p.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Stream quotes for symbols as JSON lines")
    watch.add_argument("symbols", nargs="*", help="Symbols, e.g. OANDA:EURUSD")
    watch.add_argument("--config", type=Path, required=False, help="Path to a TOML config")
    watch.add_argument("--url", required=False, help="Override the websocket URL")
    return p


def format_quote(symbol: str, data: QuoteData) -> bytes:
    """One JSON line per update; absent fields are left out."""
    return orjson.dumps({"symbol": symbol, **data.to_dict()}) + b"\n"


async def run_watch(
    config: ClientConfig,
    symbols: list[str],
    out: Optional[IO[bytes]] = None,
    transport: Optional[Transport] = None,
) -> int:
    """Stream until the connection closes. Returns the process exit code."""
    sink = out if out is not None else sys.stdout.buffer
    failures: list[QuoteStreamError] = []

    async def on_quote(symbol: str, data: QuoteData) -> None:
        sink.write(format_quote(symbol, data))
        sink.flush()

    async def on_error(error: QuoteStreamError, context: ErrorContext) -> None:
        failures.append(error)
        print(f"{context.value} error: {error}", file=sys.stderr)

    try:
        client = await connect(
            on_quote, on_error, symbols=symbols, config=config, transport=transport
        )
    except QuoteStreamError:
        return 1

    try:
        await client.wait_closed()
    finally:
        await client.close()

    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint wrapper compatible with setuptools scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.config is not None:
            settings = ClientConfigLoader().load(str(args.config))
        else:
            settings = None
        config = settings.to_config() if settings else ClientConfig()
        if args.url:
            config = replace(config, url=args.url)
    except (QuoteStreamError, FileNotFoundError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    symbols = list(args.symbols) or (list(settings.symbols) if settings else [])
    if not symbols:
        print("No symbols given", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run_watch(config, symbols))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
