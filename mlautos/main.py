"""
Command line entry point of the MercadoLibre autos scraper.

Without a command it prepares the collections table and checks the database,
which is what the Docker container runs before handing over to Celery. The
scrape and export commands run the same work as the Celery tasks in the
current process, without a broker.

Attributes:
    logger: Logger for registering main module events.

Functions:
    signal_handler: Signal handler for proper shutdown.
    build_parser: Argument parser of the command line.
    main: Entry point; returns the process exit code.
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, List, NoReturn, Optional

from mlautos.core.database import check_connection, init_db
from mlautos.core.models import SessionStatus
from mlautos.core.storage import SQLKeyValueStore
from mlautos.scraper.mercadolibre import MercadoLibreScraper
from mlautos.utils.exporter import export_collections
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)


def signal_handler(signum: int, frame: Any) -> NoReturn:
    """
    Signal handler for proper shutdown.

    Args:
        signum (int): Signal number (e.g., SIGINT = 2, SIGTERM = 15).
        frame (Any): Current execution frame.
    """
    logger.info(f"Received signal {signum}. Shutting down...")
    sys.exit(0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mlautos", description="Scraper of autos.mercadolibre.com.ar listings"
    )
    commands = parser.add_subparsers(dest="command")

    scrape = commands.add_parser("scrape", help="Scrape one brand/model and store the cars")
    scrape.add_argument("brand", help='Brand path segment, e.g. "toyota"')
    scrape.add_argument("model", help='Model path segment, e.g. "corolla"')
    scrape.add_argument("--max-pages", type=int, default=None)
    scrape.add_argument("--delay-ms", type=int, default=None)
    scrape.add_argument("--enrich", action="store_true", default=None,
                        help="Visit the detail page of every car")
    scrape.add_argument("--no-store", action="store_true", help="Do not write to the database")

    commands.add_parser("export", help="Write every stored collection to a JSON file")
    return parser


def _prepare_database() -> bool:
    logger.info("Initializing database...")
    init_db()
    if not check_connection():
        logger.critical("Database is not reachable")
        return False
    return True


def _scrape(args: argparse.Namespace) -> int:
    summary = asyncio.run(
        MercadoLibreScraper().scrape_query(
            args.brand,
            args.model,
            max_pages=args.max_pages,
            delay_ms=args.delay_ms,
            store_result=not args.no_store,
            enrich=args.enrich,
        )
    )
    print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))
    if summary["status"] == SessionStatus.FAILED.value:
        return 1
    store_result = summary.get("storeResult")
    return 0 if store_result is None or store_result["success"] else 1


def _export() -> int:
    export_file = export_collections(SQLKeyValueStore())
    if not export_file:
        logger.error("Failed to create collections export")
        return 1
    print(export_file)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line.

    Args:
        argv (Optional[List[str]]): Arguments without the program name,
            sys.argv by default.

    Returns:
        int: Process exit code.

    Examples:
        >>> main(["scrape", "toyota", "corolla", "--max-pages", "2"])
        0
    """
    args = build_parser().parse_args(argv)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if not _prepare_database():
            return 1
        if args.command == "scrape":
            return _scrape(args)
        if args.command == "export":
            return _export()
    except Exception as e:
        logger.critical(f"Critical error: {str(e)}", exc_info=True)
        return 1

    logger.info("Application ready to work. Use Celery tasks to launch scraping")
    logger.info(
        "For manual scraping launch use: celery -A mlautos call "
        "mlautos.tasks.scraping.manual_scrape --args='[\"toyota\", \"corolla\"]'"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
