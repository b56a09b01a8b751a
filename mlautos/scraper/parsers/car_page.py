"""
MercadoLibre listing detail page parser.

Extracts the data that only the detail page carries (description, publish
date, seller info, specifications table) for the optional enrichment pass.
The page is fetched by the orchestrator; this parser only reads HTML.

Attributes:
    logger: Logger for registering parsing events.

Classes:
    CarPageParser: Parser for listing detail pages.
"""

import re
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from mlautos.scraper.base import BaseScraper, Markup
from mlautos.scraper.parsers.listing import detect_seller
from mlautos.core.models import Seller
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

YEAR_SPEC = re.compile(r"Año[:\s]*(\d{4})", re.IGNORECASE)
KM_SPEC = re.compile(r"Kilómetros?[:\s]*(\d+(?:\.\d+)*)", re.IGNORECASE)
CLOSED_MARKERS = ("publicación finalizada", "publicación pausada", "esta publicación no está disponible")


class CarPageParser(BaseScraper):
    """
    Parser for extracting detail information from a listing page.

    Methods:
        extract_details: Parses every detail field of the page.
        _extract_*: Helper methods for extracting specific data.
        _is_closed_listing: Checks whether the listing is no longer active.
    """

    def _extract_description(self, soup: BeautifulSoup) -> Optional[str]:
        """Extract listing description."""
        tag = soup.select_one(
            ".ui-pdp-description__content, .item-description, .vip-description, "
            '[data-testid="description"]'
        )
        text = self.clean_text(tag.get_text(" ")) if tag else ""
        return text or None

    def _extract_published_date(self, soup: BeautifulSoup) -> Optional[str]:
        """Extract the "Publicado hace ..." subtitle."""
        for tag in soup.select(".ui-pdp-color--GRAY, .ui-pdp-subtitle"):
            text = self.clean_text(tag.get_text(" "))
            if "publicado" in text.lower():
                return text
        return None

    def _extract_location(self, soup: BeautifulSoup) -> Optional[str]:
        tag = soup.select_one(".ui-pdp-media__location, .ui-vip-location__text")
        text = self.clean_text(tag.get_text(" ")) if tag else ""
        return text or None

    def _extract_seller(self, soup: BeautifulSoup) -> Optional[Seller]:
        """Extract seller type and name from the seller box."""
        box = soup.select_one(".ui-box-component-pdp__seller-info, .ui-vip-seller-info")
        if not box:
            return None
        strings = [self.clean_text(s) for s in box.stripped_strings]
        seller = detect_seller(strings)
        if not seller.name:
            name_tag = box.select_one("h3, .ui-pdp-seller__header__title")
            name = self.clean_text(name_tag.get_text(" ")) if name_tag else ""
            if name:
                seller = Seller(type=seller.type, name=name)
        return None if seller.is_empty else seller

    def _extract_specifications(self, soup: BeautifulSoup) -> Dict[str, str]:
        """Extract the key/value rows of the specifications table."""
        specs: Dict[str, str] = {}
        for row in soup.select(".ui-vip-specs__table tr, .andes-table__row"):
            header = row.select_one("th, .andes-table__header")
            cells = row.select("td, .andes-table__cell")
            if header and cells:
                key, value = header.get_text(" "), cells[0].get_text(" ")
            elif len(cells) >= 2:
                key, value = cells[0].get_text(" "), cells[1].get_text(" ")
            else:
                continue
            key, value = self.clean_text(key), self.clean_text(value)
            if key and value:
                specs[key] = value
        return specs

    def _extract_year(self, text: str) -> Optional[int]:
        match = YEAR_SPEC.search(text)
        return int(match.group(1)) if match else None

    def _extract_kilometers(self, text: str) -> Optional[int]:
        match = KM_SPEC.search(text)
        return int(match.group(1).replace(".", "")) if match else None

    def _is_closed_listing(self, soup: BeautifulSoup) -> bool:
        text = self.clean_text(soup.get_text(" ")).lower()
        return any(marker in text for marker in CLOSED_MARKERS)

    def extract_details(self, html: Markup) -> Dict[str, Any]:
        """
        Parse the detail fields of a listing page.

        Args:
            html (Markup): Detail page HTML code.

        Returns:
            Dict[str, Any]: Found fields among description, published_date,
                location, seller, specifications, year and kilometers. Empty
                for closed listings.
        """
        soup = self.get_soup(html)
        if self._is_closed_listing(soup):
            logger.info("Listing closed or paused, no details extracted")
            return {}

        specifications = self._extract_specifications(soup)
        spec_text = " ".join(f"{k}: {v}" for k, v in specifications.items())
        page_text = self.clean_text(soup.get_text(" "))

        details = {
            "description": self._extract_description(soup),
            "published_date": self._extract_published_date(soup),
            "location": self._extract_location(soup),
            "seller": self._extract_seller(soup),
            "specifications": specifications,
            "year": self._extract_year(spec_text) or self._extract_year(page_text),
            "kilometers": self._extract_kilometers(spec_text)
            or self._extract_kilometers(page_text),
        }
        found = {key: value for key, value in details.items() if value}
        logger.debug(f"Extracted detail fields: {sorted(found)}")
        return found

    def parse(self, html: Markup) -> Dict[str, Any]:
        return self.extract_details(html)
