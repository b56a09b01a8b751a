"""
Error taxonomy of the scraper.

Classes:
    ScraperError: Base class for all scraper errors.
    ExtractionFieldError: A single field could not be parsed.
    ExtractionRejected: A candidate record failed the listing-validity predicate.
    FetchError: A page could not be fetched (network error, non-2xx status, timeout).
    StorageError: The key-value store failed to read or write a value.

Note:
    Running out of the page or time budget is not an error; it is reported
    through SessionStatus.BUDGET_EXCEEDED.
"""

from typing import Optional


class ScraperError(Exception):
    """Base class for scraper errors."""


class ExtractionFieldError(ScraperError):
    """A field strategy failed; the field is left empty."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class ExtractionRejected(ScraperError):
    """The candidate record is not a listing and must be skipped."""


class FetchError(ScraperError):
    """
    Page fetch failure.

    Attributes:
        url (str): URL that failed.
        status (Optional[int]): HTTP status when the server answered, None for
            network errors and timeouts.
    """

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class StorageError(ScraperError):
    """Key-value store read or write failure."""
