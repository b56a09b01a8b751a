"""
Main scraper class for MercadoLibre Argentina autos (asynchronous, httpx+bs4).

This module implements the session orchestrator: for each brand/model query
it runs the pagination controller, deduplicates the gathered records,
optionally enriches them from their detail pages and hands the finished
session to the key-value store. Batches of queries run sequentially with an
inter-query delay; one failing query never aborts the batch.

Attributes:
    logger: Logger for registering scraping events.

Classes:
    MercadoLibreScraper: Orchestrator of single and batch scrapes.

Functions:
    build_batch_summary: Report of a batch run.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from mlautos.config.settings import (
    DETAIL_DELAY_MS,
    ENRICH_DETAILS,
    MAX_ELAPSED_MS,
    MAX_PAGES_TO_PARSE,
    PAGE_DELAY_MAX_MS,
    PAGE_DELAY_MIN_MS,
    QUERY_DELAY_MS,
    SCRAPER_BASE_URL,
)
from mlautos.core.exceptions import FetchError
from mlautos.core.listing_urls import search_url
from mlautos.core.models import Budget, ListingRecord, Query, ScrapeSession, SessionStatus
from mlautos.core.storage import KeyValueStore, SQLKeyValueStore, store_session
from mlautos.scraper.dedup import Deduplicator
from mlautos.scraper.fetcher import Fetcher, HttpxFetcher, build_browser_headers
from mlautos.scraper.pagination import PaginationController
from mlautos.scraper.parsers.car_page import CarPageParser
from mlautos.scraper.parsers.search_page import SearchPageParser
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

QueryLike = Union[Query, Dict[str, str]]


def _as_query(item: QueryLike) -> Query:
    if isinstance(item, Query):
        return item
    brand = item.get("brandKey") or item.get("brand")
    model = item.get("modelKey") or item.get("model")
    if not brand or not model:
        raise ValueError(f"Query needs a brand and a model: {item}")
    return Query(brand_key=brand, model_key=model)


def build_batch_summary(outcomes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Report of a batch run.

    Args:
        outcomes (List[Dict[str, Any]]): Outcomes returned by scrape_batch.

    Returns:
        Dict[str, Any]: totalQueries, successful, failed, totalCars, results
            and generatedAt.
    """
    successful = [o for o in outcomes if o.get("success")]
    return {
        "totalQueries": len(outcomes),
        "successful": len(successful),
        "failed": len(outcomes) - len(successful),
        "totalCars": sum(o.get("totalCars") or 0 for o in successful),
        "results": outcomes,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


class MercadoLibreScraper:
    """
    Asynchronous scraper for autos.mercadolibre.com.ar.

    Attributes:
        fetcher (Optional[Fetcher]): Fetch collaborator; when None an
            HttpxFetcher is opened for each query.
        store (KeyValueStore): Target store of finished sessions.
        search_parser (SearchPageParser): Results page parser.
        car_parser (CarPageParser): Detail page parser for enrichment.
        deduplicator (Deduplicator): Merges the records of a session.
        base_url (str): Site root.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        store: Optional[KeyValueStore] = None,
        search_parser: Optional[SearchPageParser] = None,
        car_parser: Optional[CarPageParser] = None,
        deduplicator: Optional[Deduplicator] = None,
        base_url: str = SCRAPER_BASE_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.store = store if store is not None else SQLKeyValueStore()
        self.base_url = base_url
        self.search_parser = search_parser or SearchPageParser(base_url=base_url)
        self.car_parser = car_parser or CarPageParser()
        self.deduplicator = deduplicator or Deduplicator()
        self._sleep = sleep
        self._clock = clock

    @asynccontextmanager
    async def _error_handler(self, operation: str, url: str):
        """
        Asynchronous context manager for handling errors.

        Logs exceptions raised during operation, then re-raises them.

        Args:
            operation (str): Name of the operation for logging.
            url (str): URL associated with the operation.
        """
        try:
            yield
        except Exception as e:
            logger.error(f"Error during {operation} ({url}): {str(e)}", exc_info=True)
            raise

    @asynccontextmanager
    async def _open_fetcher(self) -> AsyncIterator[Fetcher]:
        if self.fetcher is not None:
            yield self.fetcher
        else:
            async with HttpxFetcher() as fetcher:
                yield fetcher

    async def _enrich_records(
        self,
        fetcher: Fetcher,
        records: List[ListingRecord],
        referer: str,
        budget: Optional[Budget] = None,
        started: Optional[float] = None,
    ) -> List[ListingRecord]:
        """
        Fill empty fields of records from their detail pages.

        Each distinct listing is fetched once, with a politeness delay between
        fetches. A failed fetch leaves the record as it was. Once the time
        budget of the session is consumed the remaining records are left
        unenriched.
        """
        enriched: Dict[str, ListingRecord] = {}
        fetched = 0
        for record in self.deduplicator.merge(records).unique:
            if not record.id or record.id in enriched:
                continue
            if budget is not None and started is not None:
                elapsed_ms = (self._clock() - started) * 1000
                if budget.time_exhausted(elapsed_ms):
                    logger.warning(
                        f"Time budget consumed after {fetched} detail pages ({elapsed_ms:.0f} ms), "
                        f"skipping enrichment of the remaining cars"
                    )
                    break
            fetched += 1
            if enriched:
                await self._sleep(DETAIL_DELAY_MS / 1000)
            try:
                response = await fetcher.fetch(record.link, build_browser_headers(referer))
            except FetchError as e:
                logger.warning(f"Detail page not fetched for {record.link}: {e}")
                enriched[record.id] = record
                continue
            details = self.car_parser.extract_details(response.body)
            enriched[record.id] = self.search_parser.extractor.enrich(record, details)

        logger.info(f"Enriched {fetched} cars from detail pages")
        return [enriched.get(record.id, record) if record.id else record for record in records]

    async def run_query(
        self,
        brand_key: str,
        model_key: str,
        max_pages: Optional[int] = MAX_PAGES_TO_PARSE,
        max_elapsed_ms: Optional[int] = MAX_ELAPSED_MS,
        delay_ms: Optional[int] = None,
        enrich: bool = ENRICH_DETAILS,
    ) -> ScrapeSession:
        """
        Scrape one brand/model query into a finalized session.

        Args:
            brand_key (str): Brand path segment, e.g. "toyota".
            model_key (str): Model path segment, e.g. "corolla".
            max_pages (Optional[int]): Page ceiling, falsy for none.
            max_elapsed_ms (Optional[int]): Time budget, falsy for none.
            delay_ms (Optional[int]): Minimum delay between pages; the delay is
                drawn from [delay_ms, 1.5 * delay_ms]. Settings range by default.
            enrich (bool): Visit detail pages of the deduplicated records. Detail
                fetches count against max_elapsed_ms.

        Returns:
            ScrapeSession: Finalized (deduplicated) session.
        """
        query = Query(brand_key=brand_key, model_key=model_key)
        start_url = search_url(brand_key, model_key, self.base_url)
        budget = Budget(max_pages=max_pages or None, max_elapsed_ms=max_elapsed_ms or None)
        if delay_ms is None:
            delay_range = (PAGE_DELAY_MIN_MS, PAGE_DELAY_MAX_MS)
        else:
            delay_range = (delay_ms, int(delay_ms * 1.5))

        logger.info(
            f"Starting MercadoLibre scrape for {query.storage_key}: {start_url} "
            f"(max pages: {max_pages or 'unlimited'})"
        )
        started = self._clock()
        async with self._error_handler("scraping query", start_url):
            async with self._open_fetcher() as fetcher:
                controller = PaginationController(
                    fetcher,
                    self.search_parser,
                    delay_range_ms=delay_range,
                    sleep=self._sleep,
                    clock=self._clock,
                )
                session = await controller.run(
                    start_url, budget, query, build_browser_headers()
                )
                if enrich and session.records:
                    session.replace_records(
                        await self._enrich_records(
                            fetcher, session.records, start_url, budget, started
                        )
                    )

        session.finalize(self.deduplicator)
        logger.info(
            f"Scrape of {query.storage_key} finished: {len(session.records)} unique cars "
            f"({session.duplicates_removed} duplicates removed), status {session.status.value}"
        )
        return session

    async def scrape_query(
        self,
        brand_key: str,
        model_key: str,
        max_pages: Optional[int] = None,
        delay_ms: Optional[int] = None,
        store_result: bool = True,
        enrich: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Scrape one query and store its records.

        Partial results of failed sessions are stored too. A storage failure
        is reported in storeResult and never discards the scrape result.

        Returns:
            Dict[str, Any]: Session summary plus storeResult.
        """
        session = await self.run_query(
            brand_key,
            model_key,
            max_pages=MAX_PAGES_TO_PARSE if max_pages is None else max_pages,
            delay_ms=delay_ms,
            enrich=ENRICH_DETAILS if enrich is None else enrich,
        )
        summary = session.summary()
        summary["storeResult"] = None
        if store_result and session.records:
            summary["storeResult"] = store_session(self.store, session)
        elif store_result:
            logger.info(f"No cars to store for {session.query.storage_key}")
        return summary

    async def scrape_batch(
        self,
        queries: Iterable[QueryLike],
        delay_between_ms: Optional[int] = None,
        **per_query: Any,
    ) -> List[Dict[str, Any]]:
        """
        Scrape several queries sequentially.

        Args:
            queries (Iterable[QueryLike]): Query objects or dicts with
                brand/model (or brandKey/modelKey) keys.
            delay_between_ms (Optional[int]): Delay between queries,
                QUERY_DELAY_MS by default. Not applied after the last query.
            **per_query: Options passed to scrape_query.

        Returns:
            List[Dict[str, Any]]: One outcome per query with brandKey,
                modelKey, success, status, pagesScraped and totalCars or
                errorMessage.
        """
        items = list(queries)
        delay_ms = QUERY_DELAY_MS if delay_between_ms is None else delay_between_ms
        outcomes: List[Dict[str, Any]] = []

        for index, item in enumerate(items):
            brand_key = model_key = None
            try:
                query = _as_query(item)
                brand_key, model_key = query.brand_key, query.model_key
                logger.info(f"Batch query {index + 1}/{len(items)}: {query.storage_key}")
                summary = await self.scrape_query(brand_key, model_key, **per_query)
            except Exception as e:
                logger.error(f"Batch query {item} failed: {e}", exc_info=True)
                outcomes.append(
                    {
                        "brandKey": brand_key,
                        "modelKey": model_key,
                        "success": False,
                        "errorMessage": str(e),
                        "status": SessionStatus.FAILED.value,
                        "pagesScraped": 0,
                    }
                )
            else:
                outcome = {
                    "brandKey": brand_key,
                    "modelKey": model_key,
                    "status": summary["status"],
                    "pagesScraped": summary["pagesScraped"],
                }
                if summary["status"] == SessionStatus.FAILED.value:
                    outcome.update(success=False, errorMessage=summary["error"])
                else:
                    outcome.update(success=True, totalCars=summary["totalCars"])
                outcomes.append(outcome)

            if index < len(items) - 1 and delay_ms:
                logger.info(f"Waiting {delay_ms} ms before next query")
                await self._sleep(delay_ms / 1000)

        succeeded = sum(1 for o in outcomes if o["success"])
        logger.info(f"Batch completed: {succeeded}/{len(outcomes)} queries succeeded")
        return outcomes


# For manual launch
if __name__ == "__main__":
    scraper = MercadoLibreScraper()
    result = asyncio.run(scraper.scrape_query("toyota", "corolla", max_pages=2))
    logger.info(f"Result: {result}")
