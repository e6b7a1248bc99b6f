"""Command line entry point: MCP tools over stdio, or the HTTP proxy."""

import argparse
import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv

from .config import get_settings

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storefront-mcp-server",
        description="Storefront browsing, cart and checkout for a Zoho Commerce store",
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="stdio serves the MCP tools; http serves the /api and /webhook proxy",
    )
    parser.add_argument(
        "--env-file",
        metavar="PATH",
        help="Load settings from this .env file, overriding the environment",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS, default="INFO")

    proxy = parser.add_argument_group("http mode")
    proxy.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    proxy.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    proxy.add_argument("--reload", action="store_true", help="Restart on source changes")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.env_file:
        load_dotenv(args.env_file, override=True)
        # Settings may already have been read from the previous environment
        get_settings.cache_clear()

    if args.mode == "http":
        from .http_server import run_http_server

        logging.getLogger().setLevel(args.log_level)
        run_http_server(host=args.host, port=args.port, reload=args.reload)
    else:
        from .server import main as server_main

        logging.getLogger().setLevel(args.log_level)
        asyncio.run(server_main())


if __name__ == "__main__":
    main()
