"""
Pagination over MercadoLibre search results.

The controller fetches results pages strictly in order, parses each one and
decides from the page itself whether another page follows. It stops on the
end of results, on sparse or repeated pages, on a failed fetch and when the
page or time budget runs out. The politeness delay between pages is awaited
before the next fetch.

Attributes:
    logger: Logger for registering pagination events.

Classes:
    PaginationController: Runs one scrape session over all result pages.

Functions:
    detect_next_page: Evaluates the next-page signals of a results page.
"""

import asyncio
import random
import re
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from bs4.element import Tag

from mlautos.config.settings import (
    MIN_RESULTS_PER_PAGE,
    OVERLAP_THRESHOLD,
    PAGE_DELAY_MAX_MS,
    PAGE_DELAY_MIN_MS,
    SCRAPER_PAGE_SIZE,
)
from mlautos.core.exceptions import FetchError
from mlautos.core.listing_urls import page_url
from mlautos.core.models import (
    Budget,
    NextPageSignals,
    PageResult,
    Query,
    ScrapeSession,
    SessionStatus,
)
from mlautos.scraper.base import BaseScraper, Markup
from mlautos.scraper.fetcher import Fetcher, build_browser_headers
from mlautos.scraper.parsers.search_page import SearchPageParser
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

NEXT_CONTROL_SELECTOR = (
    'a[title="Siguiente"], .andes-pagination__button--next, '
    ".ui-search-pagination__button--next"
)
PAGINATION_LINK_SELECTOR = (
    ".andes-pagination a, .ui-search-pagination a, [class*='pagination'] a"
)
END_OF_RESULTS = re.compile(
    r"no hay más resultados|sin resultados|no se encontraron más|fin de los resultados"
    r"|no more results|end of results|class=\"[^\"]*no-results",
    re.IGNORECASE,
)


def _is_enabled(control: Tag) -> bool:
    for element in [control] + control.find_all("a"):
        classes = " ".join(element.get("class", [])).lower()
        if "disabled" in classes or element.has_attr("disabled"):
            return False
        if str(element.get("aria-disabled", "")).lower() == "true":
            return False
    return True


def detect_next_page(
    html: Markup, current_page: int, page_size: int = SCRAPER_PAGE_SIZE
) -> NextPageSignals:
    """
    Evaluate the next-page signals of a results page.

    Args:
        html (Markup): Page HTML code.
        current_page (int): 1-based index of the page.
        page_size (int): Listings per page.

    Returns:
        NextPageSignals: Enabled "Siguiente" control, next page number in the
            pagination widget, next offset URL in the markup and the end of
            results veto.
    """
    soup = BaseScraper.get_soup(html)
    raw = html if isinstance(html, str) else str(html)
    next_number = str(current_page + 1)

    enabled_next = any(_is_enabled(c) for c in soup.select(NEXT_CONTROL_SELECTOR))
    number_listed = bool(soup.select(f'a[aria-label="{next_number}"]')) or any(
        a.get_text(strip=True) == next_number for a in soup.select(PAGINATION_LINK_SELECTOR)
    )
    next_offset = f"_Desde_{current_page * page_size + 1}" in raw
    end_marker = bool(END_OF_RESULTS.search(raw))

    return NextPageSignals(
        enabled_next_control=enabled_next,
        next_page_number_listed=number_listed,
        next_offset_url=next_offset,
        end_of_results=end_marker,
    )


class PaginationController:
    """
    Runs a scrape session page by page.

    Attributes:
        fetcher (Fetcher): Page fetch collaborator.
        parser (SearchPageParser): Results page parser.
        page_size (int): Listings per page, the offset step of page URLs.
        min_results (int): Pages with fewer records end the session.
        overlap_threshold (float): Share of already seen ids ending the session.
        delay_range_ms (Tuple[int, int]): Politeness delay bounds.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        parser: Optional[SearchPageParser] = None,
        page_size: int = SCRAPER_PAGE_SIZE,
        min_results: int = MIN_RESULTS_PER_PAGE,
        overlap_threshold: float = OVERLAP_THRESHOLD,
        delay_range_ms: Tuple[int, int] = (PAGE_DELAY_MIN_MS, PAGE_DELAY_MAX_MS),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.parser = parser or SearchPageParser()
        self.page_size = page_size
        self.min_results = min_results
        self.overlap_threshold = overlap_threshold
        self.delay_range_ms = delay_range_ms
        self._sleep = sleep
        self._clock = clock

    def _politeness_delay(self) -> float:
        low, high = sorted(self.delay_range_ms)
        return random.uniform(low, high) / 1000

    def _stop_status(
        self, session: ScrapeSession, page: PageResult, elapsed_ms: float
    ) -> Optional[SessionStatus]:
        """Status ending the session after page, or None to continue."""
        if page.cars_extracted == 0:
            logger.info(f"No cars on page {page.page_index}, no more results")
            return SessionStatus.NO_MORE_RESULTS
        if page.duplicate_ratio >= self.overlap_threshold:
            logger.info(
                f"Page {page.page_index} repeats {page.duplicate_ratio:.0%} of seen ids, stopping"
            )
            return SessionStatus.COMPLETED
        if not page.next_signal.should_continue:
            logger.info(f"No next page after page {page.page_index}")
            return SessionStatus.COMPLETED
        if page.cars_extracted < self.min_results:
            logger.info(
                f"Only {page.cars_extracted} cars on page {page.page_index}, treating as last page"
            )
            return SessionStatus.COMPLETED
        if session.budget.pages_exhausted(page.page_index):
            logger.info(f"Reached limit of {session.budget.max_pages} pages")
            return SessionStatus.BUDGET_EXCEEDED
        if session.budget.time_exhausted(elapsed_ms):
            logger.info(f"Time budget nearly consumed after {elapsed_ms:.0f} ms")
            return SessionStatus.BUDGET_EXCEEDED
        return None

    async def run(
        self,
        start_url: str,
        budget: Budget,
        query: Query,
        headers: Optional[Dict[str, str]] = None,
    ) -> ScrapeSession:
        """
        Scrape every results page of a query.

        Args:
            start_url (str): URL of the first results page.
            budget (Budget): Page and time ceiling.
            query (Query): Brand/model of the session.
            headers (Optional[Dict[str, str]]): Browser headers; the Referer
                is replaced by the previous page URL after the first page.

        Returns:
            ScrapeSession: Terminated (not yet finalized) session holding the
                records of every parsed page.
        """
        session = ScrapeSession(query=query, start_url=start_url, budget=budget)
        base_headers = dict(headers or build_browser_headers())
        started = self._clock()
        page_index = 1
        previous_url: Optional[str] = None

        while True:
            url = page_url(start_url, page_index, self.page_size)
            request_headers = dict(base_headers)
            if previous_url:
                request_headers["Referer"] = previous_url

            logger.info(f"Parsing search page {page_index}: {url}")
            try:
                response = await self.fetcher.fetch(url, request_headers)
            except FetchError as e:
                logger.error(f"Fetch failed on page {page_index}: {e}", exc_info=True)
                session.terminate(SessionStatus.FAILED, str(e))
                break

            parsed = self.parser.parse_page(response.body)
            seen = session.seen_ids()
            ids = [record.id for record in parsed.records if record.id]
            ratio = sum(1 for i in ids if i in seen) / len(ids) if ids else 0.0
            page = PageResult(
                page_index=page_index,
                url=url,
                fragments_found=parsed.fragments_found,
                cars_extracted=len(parsed.records),
                rejected=parsed.rejected,
                mode=parsed.mode,
                next_signal=detect_next_page(response.body, page_index, self.page_size),
                duplicate_ratio=ratio,
            )
            session.add_page(page, parsed.records)

            elapsed_ms = (self._clock() - started) * 1000
            status = self._stop_status(session, page, elapsed_ms)
            if status is not None:
                session.terminate(status)
                break

            delay = self._politeness_delay()
            logger.debug(f"Waiting {delay:.2f} sec before page {page_index + 1}")
            await self._sleep(delay)
            previous_url = url
            page_index += 1

        logger.info(
            f"Session for {query.storage_key} ended with {session.status.value}: "
            f"{len(session.records)} cars from {session.pages_scraped} pages"
        )
        return session
