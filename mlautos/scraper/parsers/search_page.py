"""
MercadoLibre search results page parser.

Locates the listing fragments of a results page with a prioritized selector
list and hands each fragment to the ListingExtractor. When no selector
matches, the parser falls back to a link-scan mode that starts one record per
listing anchor found anywhere on the page.

Attributes:
    logger: Logger for registering parsing events.
    FRAGMENT_SELECTORS: Fragment selectors, most specific first.

Classes:
    PageParseResult: Records of one page plus extraction counters.
    PageAccumulator: Holder of the in-progress partial record of a page.
    SearchPageParser: Parser for search results pages.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from bs4.element import Tag

from mlautos.config.settings import SCRAPER_BASE_URL
from mlautos.core.exceptions import ExtractionRejected
from mlautos.core.listing_urls import canonicalize_link, is_listing_url, parse_listing_id
from mlautos.core.models import ListingRecord
from mlautos.scraper.base import BaseScraper, Markup
from mlautos.scraper.parsers.listing import ListingExtractor, PartialRecord
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

FRAGMENT_SELECTORS = (
    ".poly-card",
    ".ui-search-result__wrapper",
    ".ui-search-result",
    '[data-testid="result"]',
    ".polycard",
    ".ui-search-layout__item",
    ".ui-search-results__item",
    ".shops__result-wrapper",
)

SELECTOR_MODE = "selector"
LINK_SCAN_MODE = "link-scan"
SURROUNDING_TEXT_LIMIT = 200


@dataclass(frozen=True)
class PageParseResult:
    records: List[ListingRecord]
    fragments_found: int
    rejected: int
    mode: str


class PageAccumulator:
    """
    Accumulator of the records of one page.

    Holds at most one in-progress PartialRecord. Starting a new partial
    flushes the previous one through the validity predicate; finalize()
    flushes the last one and is a no-op when called again.

    Attributes:
        extractor (ListingExtractor): Extractor whose settings validate drafts.
        current (Optional[PartialRecord]): In-progress partial record.
        records (List[ListingRecord]): Accepted records in page order.
        rejected (int): Number of drafts that failed validation.
        finalized (bool): True once finalize() has run.
    """

    def __init__(self, extractor: ListingExtractor):
        self.extractor = extractor
        self.current: Optional[PartialRecord] = None
        self.records: List[ListingRecord] = []
        self.rejected = 0
        self.finalized = False

    def start(self, draft: PartialRecord) -> None:
        if self.finalized:
            raise RuntimeError("Page accumulator is finalized")
        self._flush()
        self.current = draft

    def _flush(self) -> None:
        draft, self.current = self.current, None
        if draft is None:
            return
        try:
            self.records.append(draft.to_record(self.extractor.current_year))
        except ExtractionRejected as e:
            self.rejected += 1
            logger.debug(f"Partial record rejected: {e}")

    def finalize(self) -> List[ListingRecord]:
        if not self.finalized:
            self._flush()
            self.finalized = True
        return list(self.records)


class SearchPageParser(BaseScraper):
    """
    Parser for MercadoLibre search results pages.

    Attributes:
        extractor (ListingExtractor): Extractor invoked per fragment.
        base_url (str): Site root used to resolve relative links.
        selectors (Tuple[str, ...]): Fragment selectors in priority order.
    """

    def __init__(
        self,
        extractor: Optional[ListingExtractor] = None,
        base_url: str = SCRAPER_BASE_URL,
        selectors: Tuple[str, ...] = FRAGMENT_SELECTORS,
    ):
        self.base_url = base_url
        self.extractor = extractor or ListingExtractor(base_url=base_url)
        self.selectors = selectors

    def find_fragments(self, soup) -> Tuple[Optional[str], List[Tag]]:
        """
        Locate listing fragments.

        Returns:
            Tuple[Optional[str], List[Tag]]: The first selector with at least
                one match and its fragments, or (None, []) when none matched.
        """
        for selector in self.selectors:
            fragments = soup.select(selector)
            if fragments:
                return selector, fragments
        return None, []

    def _start_fragment(self, accumulator: PageAccumulator, fragment: Tag) -> None:
        try:
            draft = self.extractor.extract_partial(fragment)
        except Exception as e:
            logger.warning(f"Fragment extraction failed: {e}", exc_info=True)
            accumulator.rejected += 1
            return
        accumulator.start(draft)

    def _link_scan(self, soup, accumulator: PageAccumulator) -> int:
        """Start one partial record per listing anchor; consecutive anchors of one id extend it."""
        started = 0
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"]
            if not is_listing_url(href, self.base_url):
                continue
            listing_id = parse_listing_id(canonicalize_link(href, self.base_url))
            draft = accumulator.current
            if draft is None or not listing_id or draft.id != listing_id:
                draft = PartialRecord()
                accumulator.start(draft)
                started += 1
            draft.set_link(href, self.base_url)
            if not draft.title:
                self._title_from_surroundings(draft, anchor)
            container = anchor.parent
            if isinstance(container, Tag) and self._holds_single_listing(container):
                try:
                    self.extractor.extract_partial(container, prior=draft)
                except Exception as e:
                    logger.warning(f"Link-scan extraction failed: {e}", exc_info=True)
        return started

    def _title_from_surroundings(self, draft: PartialRecord, anchor: Tag) -> None:
        if draft.add_title(anchor.get("title") or anchor.get_text(" ")):
            return
        parent = anchor.parent
        if isinstance(parent, Tag):
            draft.add_title(self.clean_text(parent.get_text(" "))[:SURROUNDING_TEXT_LIMIT])

    def _holds_single_listing(self, container: Tag) -> bool:
        ids = {
            parse_listing_id(canonicalize_link(a["href"], self.base_url))
            for a in container.find_all("a", href=True)
            if is_listing_url(a["href"], self.base_url)
        }
        return len(ids) == 1

    def parse_page(self, html: Markup) -> PageParseResult:
        """
        Extract the listing records of a results page.

        Args:
            html (Markup): Page HTML code.

        Returns:
            PageParseResult: Accepted records in page order, the number of
                fragments (or listing anchors in link-scan mode) and the
                number of rejected candidates.
        """
        soup = self.get_soup(html)
        accumulator = PageAccumulator(self.extractor)

        selector, fragments = self.find_fragments(soup)
        if fragments:
            mode = SELECTOR_MODE
            for fragment in fragments:
                self._start_fragment(accumulator, fragment)
            found = len(fragments)
            logger.debug(f"Found {found} fragments with selector {selector}")
        else:
            mode = LINK_SCAN_MODE
            found = self._link_scan(soup, accumulator)
            logger.info(f"No fragment selector matched, link-scan found {found} listing anchors")

        records = accumulator.finalize()
        logger.info(
            f"Extracted {len(records)} cars from {found} candidates "
            f"({accumulator.rejected} rejected, mode={mode})"
        )
        return PageParseResult(
            records=records, fragments_found=found, rejected=accumulator.rejected, mode=mode
        )

    def parse(self, html: Markup) -> List[ListingRecord]:
        return self.parse_page(html).records
