"""ssogate entry point."""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from ssogate.config import get_settings
from ssogate.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("ssogate")
    except PackageNotFoundError:
        return "unknown"


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="ssogate",
        description="OAuth2 authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ssogate serve                      Start the server on 127.0.0.1:3000
  ssogate serve --host 0.0.0.0       Listen on all interfaces
  ssogate serve --dev                Auto-reload on code changes
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")

    subparsers = parser.add_subparsers(dest="command")
    serve = subparsers.add_parser("serve", help="Run the authorization server")
    serve.add_argument("--host", default=None, help="Bind address (default from config)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from config)")
    serve.add_argument("--dev", action="store_true", help="Enable auto-reload")

    args = parser.parse_args(argv)
    if args.command != "serve":
        parser.print_help()
        return

    settings = get_settings()
    setup_logging(level=settings.log_level)

    from ssogate.api.serve import run_server

    run_server(
        host=args.host or settings.host,
        port=args.port or settings.port,
        dev=args.dev,
    )


if __name__ == "__main__":
    main()
