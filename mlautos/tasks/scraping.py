"""
Celery tasks for MercadoLibre autos scraping (asynchronous launch).

This module contains Celery tasks for scheduled and manual launch of the
scraper. Tasks run the asynchronous MercadoLibreScraper with asyncio.run
and report a JSON-serializable result.

Attributes:
    logger: Logger for registering scraping events.
    celery_app: Celery application instance imported from configuration.

Functions:
    scrape_configured_queries: Scheduled batch over SCRAPER_QUERIES.
    manual_scrape: Manual scrape of one brand/model query.
    manual_batch: Manual batch over given queries.
"""

import asyncio
from typing import Dict, List, Optional

from mlautos.config.celery_config import celery_app
from mlautos.config.settings import SCRAPER_QUERIES
from mlautos.scraper.mercadolibre import MercadoLibreScraper, build_batch_summary
from mlautos.utils.exporter import save_batch_summary
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)


def _run_batch(queries: List[Dict[str, str]], **options) -> dict:
    scraper = MercadoLibreScraper()
    outcomes = asyncio.run(scraper.scrape_batch(queries, **options))
    summary = build_batch_summary(outcomes)
    save_batch_summary(summary)
    logger.info(
        f"Batch completed. {summary['successful']}/{summary['totalQueries']} queries "
        f"succeeded, {summary['totalCars']} cars collected"
    )
    return summary


@celery_app.task(
    bind=True, max_retries=3, name="mlautos.tasks.scraping.scrape_configured_queries"
)
def scrape_configured_queries(self):
    """
    Task for launching the batch scrape on schedule.

    Scrapes every brand/model pair of SCRAPER_QUERIES. Individual query
    failures are part of the result; only an error of the batch itself
    restarts the task, up to three times with exponential delay.

    Returns:
        dict: Batch summary with status "success", or status "error" with the error text.
    """
    logger.info(f"Starting scheduled batch of {len(SCRAPER_QUERIES)} queries")

    try:
        summary = _run_batch(SCRAPER_QUERIES)
        return {"status": "success", **summary}
    except Exception as e:
        logger.error(f"Error executing scraping task: {str(e)}", exc_info=True)
        # Retry task on error with exponential delay
        self.retry(exc=e, countdown=60 * (2**self.request.retries))

        return {"status": "error", "error": str(e)}


@celery_app.task(name="mlautos.tasks.scraping.manual_scrape")
def manual_scrape(
    brand: str,
    model: str,
    max_pages: Optional[int] = None,
    store_result: bool = True,
    enrich: Optional[bool] = None,
):
    """
    Task for manual scrape of one brand/model query.

    Examples:
        >>> result = manual_scrape.delay("toyota", "corolla", max_pages=3)
    """
    logger.info(f"Starting manual scraping of {brand}/{model}")

    try:
        scraper = MercadoLibreScraper()
        summary = asyncio.run(
            scraper.scrape_query(
                brand, model, max_pages=max_pages, store_result=store_result, enrich=enrich
            )
        )
        logger.info(
            f"Manual scraping completed: {summary['totalCars']} cars, status {summary['status']}"
        )
        return {"status": "success", **summary}
    except Exception as e:
        logger.error(f"Error executing manual scraping: {str(e)}", exc_info=True)
        return {"status": "error", "error": str(e), "brand": brand, "model": model}


@celery_app.task(name="mlautos.tasks.scraping.manual_batch")
def manual_batch(queries: List[Dict[str, str]], delay_between_ms: Optional[int] = None):
    """
    Task for manual batch over the given queries.

    Examples:
        >>> manual_batch.delay([{"brand": "ford", "model": "focus"}], 3000)
    """
    try:
        return {"status": "success", **_run_batch(queries, delay_between_ms=delay_between_ms)}
    except Exception as e:
        logger.error(f"Error executing manual batch: {str(e)}", exc_info=True)
        return {"status": "error", "error": str(e)}
