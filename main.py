"""
Athena query tracker - server entry point.

Loads .env and settings, configures logging, then serves the HTTP API with
uvicorn. The reconciliation loop runs inside the application lifespan.
"""

import argparse
import os
import sys

from dotenv import load_dotenv

from src.infra.config import load_settings
from src.infra.logging_config import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Athena query tracker HTTP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Defaults from environment / .env
  python main.py

  # JSON config file and explicit port
  python main.py --config config.json --port 8080
        """
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON config file (aws / server / storage sections)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="HTTP port. Overrides PORT and the config file"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Bind address. Overrides HOST and the config file"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="DEBUG, INFO, WARNING, ERROR"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Run the HTTP server. Returns the process exit code."""
    load_dotenv()
    args = parse_args(argv)

    try:
        settings = load_settings(args.config, port=args.port)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    log_level = (args.log_level or settings.log_level).upper()
    logger = setup_logging(log_level, settings.log_dir)

    if args.config:
        # The application lifespan resolves settings from the same file
        os.environ["QUERY_TRACKER_CONFIG"] = os.path.abspath(args.config)

    host = args.host or settings.host

    logger.info("=" * 60)
    logger.info("Athena query tracker")
    logger.info(f"  - database: {settings.athena_database or '(none)'}")
    logger.info(f"  - job store: {settings.db_path}")
    logger.info(f"  - results: {settings.results_dir}")
    logger.info(f"  - poll interval: {settings.poll_interval}s")
    logger.info(f"  - listening: http://{host}:{settings.port}")
    logger.info("=" * 60)

    import uvicorn
    from src.api.main import app

    uvicorn.run(app, host=host, port=settings.port, log_level=log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
