"""
=============================================================================
FILE SERVER CLI ENTRY POINT
=============================================================================

    # Historical defaults: port 2000, all interfaces, current directory
    python -m filemux

    # Custom port and directory
    python -m filemux --port 2100 --dir /srv/files

    # Localhost only, verbose
    python -m filemux --host 127.0.0.1 --log-level DEBUG

Configuration priority: command line > FILEMUX_* environment > defaults.

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .config import LOG_FORMATS, ServerConfig
from .server import FileServer


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Defaults come from the environment-aware config, so a flag only
    needs to be given to override it.
    """
    parser = argparse.ArgumentParser(
        prog="filemux",
        description="Minimal remote file-management server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m filemux                          # Port 2000, current directory
  python -m filemux --port 2100              # Custom port
  python -m filemux --dir /srv/files         # Serve another directory
  python -m filemux --allow-overwrite        # R may replace existing files
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Address to bind to (default: {defaults.host})",
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})",
    )

    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=defaults.timeout,
        help=f"Seconds a connection may live from accept to completion (default: {defaults.timeout:g})",
    )

    # ─────────────────────────────────────────────────────────────────────
    # FILESYSTEM ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--dir", "-d",
        dest="root_dir",
        default=defaults.root_dir,
        help="Directory to serve (default: current directory)",
    )

    parser.add_argument(
        "--allow-overwrite",
        action="store_true",
        default=defaults.allow_overwrite,
        help="Let rename replace an existing destination file",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        default=defaults.log_level.upper(),
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=defaults.log_format,
        help="Access log format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"filemux {__version__}",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Server CLI entry point.

    Exit codes:
        0  Clean shutdown
        1  Server error (e.g. port already in use)
        2  Usage or configuration error
    """
    try:
        defaults = ServerConfig.from_env()
    except ValueError as e:
        print(f"Invalid FILEMUX_* environment: {e}", file=sys.stderr)
        return 2

    args = build_parser(defaults).parse_args(argv)

    config = ServerConfig(
        host=args.host,
        port=args.port,
        root_dir=args.root_dir,
        timeout=args.timeout,
        allow_overwrite=args.allow_overwrite,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    try:
        server = FileServer(config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
