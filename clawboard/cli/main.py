"""clawboard console entry point."""

from __future__ import annotations

import argparse
import sys

from clawboard import __version__
from clawboard.cli.api_client import ClawboardAPIClient
from clawboard.cli.tui.app import ClawboardApp
from clawboard.config import config, derive_ws_url
from clawboard.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clawboard", description="Live message queue for an agent gateway.")
    parser.add_argument(
        "--base-url",
        default=None,
        help=f"Dashboard API base URL (default: {config.api.base_url}).",
    )
    parser.add_argument("--token", default=None, help="Bearer token (default: $CLAWBOARD_TOKEN).")
    parser.add_argument("--log-level", default=None, help="Log level (default: $CLAWBOARD_LOG_LEVEL or INFO).")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_client(args: argparse.Namespace) -> ClawboardAPIClient:
    """Client from CLI overrides; a --base-url without a configured ws_url derives the push URL from it."""
    base_url = args.base_url.rstrip("/") if args.base_url else None
    ws_url = derive_ws_url(base_url) if base_url else None
    return ClawboardAPIClient(base_url, ws_url=ws_url, token=args.token)


def _main_impl(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        log_path = setup_logging(args.log_level)
    except ValueError as e:
        sys.stderr.write(f"clawboard error: {e}\n")
        return 2

    client = build_client(args)
    logger.info("Starting clawboard", base_url=client.base_url, ws_url=client.ws_url, log_path=str(log_path))
    ClawboardApp(client).run()
    return 0


def main(argv: list[str] | None = None) -> None:
    try:
        sys.exit(_main_impl(argv))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
