#!/usr/bin/env python3
"""
Launcher for the runbook engine API.
"""
import argparse
import logging
import sys
from typing import Optional

import uvicorn
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from config import config  # noqa: E402


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Runbook engine API server")
    parser.add_argument("--host", default=config.api_server.host, help="Address to bind")
    parser.add_argument("--port", type=int, default=config.api_server.port, help="Port to bind")
    parser.add_argument("--workers", type=int, default=config.api_server.workers,
                        help="Number of uvicorn workers")
    parser.add_argument("--log-level", default=None,
                        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    return parser.parse_args(argv)


def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Set up logging configuration with colored output.

    Args:
        log_level: Optional override for the log level
    """
    level = (log_level or config.system.log_level).upper()

    COLORS = {
        'DEBUG': '\033[2;3;36m',    # Dim Italic Cyan
        'INFO': '\033[2;32m',       # Dim Green
        'WARNING': '\033[38;5;208m',  # Bright Orange
        'ERROR': '\033[31m',        # Dim Red
        'CRITICAL': '\033[2;37;41m',  # Dim White on Red Background
        'RESET': '\033[0m'          # Reset
    }

    class ColoredFormatter(logging.Formatter):
        """Formatter wrapping each record in its level's color."""

        def format(self, record):
            color = COLORS.get(record.levelname, '')
            return f"{color}{super().format(record)}{COLORS['RESET']}"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColoredFormatter('%(levelname)s │ %(name)s │ %(message)s'))
    root.addHandler(handler)

    # Disable noisy HTTP library loggers
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)


def main(argv=None):
    """Start the API server."""
    args = parse_arguments(argv)
    setup_logging(args.log_level)

    log_level = (args.log_level or config.api_server.log_level).lower()
    logging.getLogger(__name__).info(f"Starting runbook engine on {args.host}:{args.port}")

    if args.workers > 1 and not args.reload:
        # Multi-worker mode (production)
        uvicorn.run(
            "api.app:app",
            host=args.host,
            port=args.port,
            workers=args.workers,
            log_level=log_level
        )
    else:
        # Single worker mode (development)
        uvicorn.run(
            "api.app:app",
            host=args.host,
            port=args.port,
            log_level=log_level,
            reload=args.reload
        )


if __name__ == "__main__":
    main()
