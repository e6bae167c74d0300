"""
Standalone entrypoint for the Deckhand HTTP server.

Usage:
    python -m deckhand_server [OPTIONS]
    deckhand-server [OPTIONS]  (after pip install)

Configuration is read from DECKHAND_* environment variables (see
deckhand_common.config). Command-line arguments override the bind
address and port.
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from deckhand_common.config import DeckhandConfig
from deckhand_common.errors import DeckhandError
from deckhand_controller.services import Services, create_services

from . import app as server_app

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Deckhand - remote control surface for a git repository and its containers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Required Environment Variables:
  DECKHAND_REPO_PATH       Git working copy to manage
  DECKHAND_COMPOSE_FILE    Compose file defining the containers
  DECKHAND_CONTAINERS      Comma-separated container names
  DECKHAND_API_TOKEN_HASH  SHA-256 of the API token (or DECKHAND_API_TOKEN)

Examples:
  # Run with settings from the environment
  deckhand-server

  # Listen on all interfaces
  deckhand-server --host 0.0.0.0 --port 8080

  # Enable debug logging
  deckhand-server --log-level DEBUG
        """,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Bind address (default: DECKHAND_HOST env or 127.0.0.1)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: DECKHAND_PORT env or 3000)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> DeckhandConfig:
    """
    Load configuration from the environment and apply CLI overrides.

    Raises:
        ConfigError: If the configuration is missing or invalid
    """
    config = DeckhandConfig.from_env()
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    config.validate_server()
    return config


def prepare_services(config: DeckhandConfig) -> Services:
    """
    Build the controllers and run the fail-fast startup checks.

    Runs before uvicorn starts; a bad repository or an unreachable
    runtime ends the process with exit status 1.

    Raises:
        DeckhandError: If the repository, compose file or runtime is invalid
    """
    services = create_services(config)
    try:
        asyncio.run(services.validate())
    except DeckhandError:
        services.close()
        raise
    return services


def main(argv: list[str] | None = None) -> int:
    """
    Main entrypoint for the server.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args)
    except DeckhandError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info("Starting Deckhand")
    logger.info(f"  Repository: {config.repo_path} ({config.git_remote}/{config.git_branch})")
    logger.info(f"  Compose file: {config.compose_file}")
    logger.info(f"  Containers: {', '.join(config.containers)}")
    logger.info(f"  Listening on: {config.host}:{config.port}")

    try:
        services = prepare_services(config)
    except DeckhandError as e:
        logger.error(f"Startup validation failed ({e.kind}): {e}")
        return 1

    server_app.configure(config, services)

    try:
        uvicorn.run(
            server_app.app,
            host=config.host,
            port=config.port,
            log_level=args.log_level.lower(),
        )
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
