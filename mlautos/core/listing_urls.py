"""
Listing URL patterns of the MercadoLibre autos site.

Every listing id is parsed from its link here, with one ordered list of
patterns, so that the extractor, the record constructor and the deduplicator
agree on identity.

Functions:
    parse_listing_id: Parses the listing id from a listing URL.
    canonicalize_link: Absolute URL without query string and fragment.
    is_listing_url: Loose check used to pick listing anchors.
    is_strict_listing_url: Strict check used by the validity predicate.
    search_url: Builds the search URL for a brand/model query.
    page_url: Builds the URL of the n-th results page.
"""

import re
from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from mlautos.config.settings import SCRAPER_BASE_URL, SCRAPER_PAGE_SIZE

# Checked in order, first match wins
ID_PATTERNS = (
    re.compile(r"MLA-?(\d+)", re.IGNORECASE),
    re.compile(r"/p/MLA(\d+)", re.IGNORECASE),
    re.compile(r"/(\d+)(?:[?#]|$)"),
)

STRICT_LISTING_URL = re.compile(
    r"^https?://autos?\.mercadolibre\.com\.ar/MLA-\d+", re.IGNORECASE
)
LOOSE_LISTING_URL = re.compile(r"/MLA-?\d+|/p/MLA\d+", re.IGNORECASE)
SITE_HOST = re.compile(r"(^|\.)mercadolibre\.com\.ar$", re.IGNORECASE)


def parse_listing_id(url: Optional[str]) -> Optional[str]:
    """
    Parse the listing id from a listing URL.

    Args:
        url (Optional[str]): Listing URL (absolute or relative).

    Returns:
        Optional[str]: Numeric id as string, or None when no pattern matches.

    Examples:
        >>> parse_listing_id("https://auto.mercadolibre.com.ar/MLA-1234567890-toyota-corolla-_JM")
        '1234567890'
    """
    if not url:
        return None
    for pattern in ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def canonicalize_link(href: str, base_url: str = SCRAPER_BASE_URL) -> str:
    """Join href onto the site root and drop the query string and fragment."""
    absolute = urljoin(base_url + "/", href.strip())
    parts = urlsplit(absolute)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def is_listing_url(href: Optional[str], base_url: str = SCRAPER_BASE_URL) -> bool:
    """
    Check whether an anchor target looks like a listing page.

    Listing paths (/MLA-, /p/MLA) on any site host are accepted; links to
    the homepage tracker host (hp.mercadolibre.com.ar) are not.
    """
    if not href:
        return False
    absolute = urljoin(base_url + "/", href.strip())
    host = urlsplit(absolute).hostname or ""
    if not SITE_HOST.search(host) or host.startswith("hp."):
        return False
    return bool(LOOSE_LISTING_URL.search(absolute))


def is_strict_listing_url(url: Optional[str]) -> bool:
    """Check the canonical auto(s).mercadolibre.com.ar/MLA-<id> shape."""
    return bool(url and STRICT_LISTING_URL.match(url))


def is_preferred_host(url: str) -> bool:
    """Links on the autos sub-site win over links on other site hosts."""
    host = urlsplit(url).hostname or ""
    return host in ("auto.mercadolibre.com.ar", "autos.mercadolibre.com.ar")


def search_url(brand_key: str, model_key: str, base_url: str = SCRAPER_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/{brand_key}/{model_key}"


def page_url(start_url: str, page_index: int, page_size: int = SCRAPER_PAGE_SIZE) -> str:
    """
    Build the URL of a results page.

    The site paginates with a "_Desde_<offset>" path suffix where offset is
    the 1-based position of the first listing on the page.

    Args:
        start_url (str): URL of the first results page.
        page_index (int): 1-based page number.
        page_size (int): Listings per page.

    Returns:
        str: URL of the requested page.
    """
    if page_index <= 1:
        return start_url
    return f"{start_url}_Desde_{(page_index - 1) * page_size + 1}"
