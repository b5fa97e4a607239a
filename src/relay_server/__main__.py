"""CLI entry point for relay-server.

This module provides the command-line interface for starting the relay-server.
It can be invoked as `relay-server` (via the script entry point) or
`python -m relay_server`.
"""

import argparse
import logging
import sys

import uvicorn

from relay_server import __version__, create_app
from relay_server.config import RelayServerSettings


def main() -> None:
    """Main entry point for the relay-server CLI.

    Parses command-line arguments and starts the uvicorn server with the
    FastAPI application.
    """
    parser = argparse.ArgumentParser(
        prog="relay-server",
        description="Headless server for tool-using LLM conversations",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"relay-server {__version__}",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind the server to (default: 127.0.0.1, can be set via RELAY_HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind the server to (default: 8000, can be set via RELAY_PORT)",
    )

    parser.add_argument(
        "--provider-url",
        type=str,
        default=None,
        help="Chat completions endpoint (can be set via RELAY_PROVIDER_URL)",
    )

    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Base directory for all data (default: ., can be set via RELAY_DATA_DIR)",
    )

    parser.add_argument(
        "--workspace-dir",
        type=str,
        default=None,
        help="Directory tools run in and the sandbox root (can be set via RELAY_WORKSPACE_DIR)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, can be set via RELAY_LOG_LEVEL)",
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (uvicorn --reload)",
    )

    args = parser.parse_args()

    # CLI args override environment variables
    settings_kwargs = {}
    if args.host is not None:
        settings_kwargs["host"] = args.host
    if args.port is not None:
        settings_kwargs["port"] = args.port
    if args.provider_url is not None:
        settings_kwargs["provider_url"] = args.provider_url
    if args.data_dir is not None:
        settings_kwargs["data_dir"] = args.data_dir
    if args.workspace_dir is not None:
        settings_kwargs["workspace_dir"] = args.workspace_dir
    if args.log_level is not None:
        settings_kwargs["log_level"] = args.log_level

    settings = RelayServerSettings(**settings_kwargs)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=args.reload,
    )


if __name__ == "__main__":
    sys.exit(main())
