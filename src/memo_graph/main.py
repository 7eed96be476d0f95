#!/usr/bin/env python
"""Main entry point for the memo graph MCP server."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

from memo_graph.config import config
from memo_graph.exceptions import ConfigurationError, MemoGraphError
from memo_graph.models.db_models import init_db
from memo_graph.observability import configure_logging, metrics
from memo_graph.server.mcp_server import MemoGraphMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Memo Graph MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("MEMO_GRAPH_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("MEMO_GRAPH_LOG_LEVEL", "INFO")
    )
    parser.add_argument(
        "--threshold",
        help="Minimum similarity score for an edge (-1 to 1)",
        type=float,
        default=None
    )
    parser.add_argument(
        "--limit",
        help="Maximum number of similarity edges written per note",
        type=int,
        default=None
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.threshold is not None:
        config.similarity_threshold = args.threshold
    if args.limit is not None:
        config.similarity_limit = args.limit
    config.log_level = args.log_level


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info(
                f"Metrics saved to {metrics.get_metrics_file()} on shutdown"
            )
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def main(argv=None):
    """Run the memo graph MCP server."""
    args = parse_args(argv)
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    atexit.register(_save_metrics_on_exit)

    # Invalid threshold/limit/policy/dimension: refuse to serve
    try:
        config.check_similarity_settings()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    # Building the server loads the embedder and checks vector dimensions
    try:
        server = MemoGraphMcpServer(engine=engine)
    except MemoGraphError as e:
        logger.error(f"Startup check failed: {e}")
        sys.exit(1)

    try:
        logger.info("Starting memo graph MCP server")
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
