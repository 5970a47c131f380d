"""
Standalone entrypoint for running the Kova server.

The server hosts the HTTP/WebSocket API, the status hub and the build
worker in one process.

Usage:
    python -m kova_server [OPTIONS]
    kova-server [OPTIONS]  (after pip install)

Environment Variables:
    KOVA_DB_PATH: Database path (default: kova.db)
    KOVA_REPO_BASE_PATH: Root for cloned sources (default: /data/kova/repo)
    KOVA_SERVICES_BASE_PATH: Root for compose descriptors (default: /data/kova/services)
    KOVA_NETWORK_NAME: Shared overlay network (default: proxy)
    KOVA_QUEUE_SIZE: Build queue capacity (default: 100)
    KOVA_STAGE_TIMEOUT: Seconds a pipeline stage may run, 0 disables (default: 1800)
    KOVA_APP_PORT: Container port routed by the proxy (default: 3000)
    KOVA_HUB_SEND_TIMEOUT: Seconds a WebSocket write may take (default: 5.0)
"""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from kova_server.app import create_app
from kova_server.config import ServerConfig

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Kova - single-worker deployment pipeline with live status",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Note: Command-line arguments override environment variables.

Examples:
  # Run with default settings
  kova-server

  # Use custom data directories
  kova-server --repo-base-path /srv/kova/repo --services-base-path /srv/kova/services

  # Bound each pipeline stage to 10 minutes
  kova-server --stage-timeout 600

  # Enable debug logging
  kova-server --log-level DEBUG
        """,
    )

    parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8080, help="Bind port")
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Path to SQLite database file (default: KOVA_DB_PATH env or kova.db)",
    )
    parser.add_argument(
        "--repo-base-path",
        type=str,
        default=None,
        help="Root directory for cloned repositories",
    )
    parser.add_argument(
        "--services-base-path",
        type=str,
        default=None,
        help="Root directory for generated compose descriptors",
    )
    parser.add_argument(
        "--network-name",
        type=str,
        default=None,
        help="Shared overlay network the stacks attach to",
    )
    parser.add_argument(
        "--stage-timeout",
        type=float,
        default=None,
        help="Seconds a pipeline stage may run, 0 disables the bound",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    """
    Merge command-line arguments over the environment configuration.

    Args:
        args: Parsed command-line arguments

    Returns:
        Server configuration
    """
    config = ServerConfig.from_env()

    if args.db_path:
        config.db_path = args.db_path
    if args.repo_base_path:
        config.build.repo_base_path = Path(args.repo_base_path)
    if args.services_base_path:
        config.build.services_base_path = Path(args.services_base_path)
    if args.network_name:
        config.build.network_name = args.network_name
    if args.stage_timeout is not None:
        config.build.stage_timeout = args.stage_timeout if args.stage_timeout > 0 else None

    return config


def main() -> int:
    """
    Main entrypoint for the server.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = build_config(args)

    logger.info("Starting Kova server")
    logger.info(f"  Database: {config.db_path}")
    logger.info(f"  Repo base path: {config.build.repo_base_path}")
    logger.info(f"  Services base path: {config.build.services_base_path}")
    logger.info(f"  Network: {config.build.network_name}")
    logger.info(f"  Stage timeout: {config.build.stage_timeout or 'none'}")

    try:
        uvicorn.run(
            create_app(config),
            host=args.host,
            port=args.port,
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
