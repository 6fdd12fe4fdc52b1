"""
Command-line entry point: validate the configuration, then serve with uvicorn.
"""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn

from similarity_service.app import create_app
from similarity_service.config import CONFIG_PATH_ENV, ConfigurationError, get_settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="similarity-service",
        description="Serve text/image cosine similarity over HTTP and WebSocket.",
    )
    parser.add_argument(
        "--config",
        help=f"Path to the YAML configuration (overrides ${CONFIG_PATH_ENV})",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Run the service.

    Returns:
        Process exit code; 1 when the configuration is invalid
    """
    args = parse_args(argv)
    if args.config:
        os.environ[CONFIG_PATH_ENV] = args.config

    try:
        settings = get_settings()
    except ConfigurationError as e:
        # Logging is configured from these settings, so stderr is all there is
        print(f"FATAL: Configuration error\n{e}", file=sys.stderr)
        return 1

    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        # Application logs go through the service's own handler
        log_level="warning",
        access_log=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
