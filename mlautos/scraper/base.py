"""
Base parser class.

This module provides an abstract base class for all parsers in the project.
Defines the common interface and HTML helpers shared by the listing,
search page and car page parsers.

Attributes:
    logger: Logger for registering parsing events.

Classes:
    BaseScraper: Abstract base class for all parsers.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

Markup = Union[str, Tag]

WHITESPACE = re.compile(r"\s+")


class BaseScraper(ABC):
    """
    Base class for parsers.

    Methods:
        get_soup: Creates BeautifulSoup object from HTML code.
        clean_text: Collapses whitespace of a text fragment.
        parse: Abstract method for parsing data, must be implemented in inheritors.
    """

    @staticmethod
    def get_soup(html: Markup) -> Union[BeautifulSoup, Tag]:
        """
        Create BeautifulSoup object from HTML.

        Already parsed elements are returned unchanged so that a fragment
        located by the page parser can be handed to the extractor as is.
        Uses the lxml parser for better performance and reliability.

        Args:
            html (Markup): Page HTML code or an already parsed element.

        Returns:
            Union[BeautifulSoup, Tag]: Parsed markup.

        Examples:
            >>> html = "<html><body><h1>Title</h1></body></html>"
            >>> soup = BaseScraper.get_soup(html)
            >>> soup.h1.text
            'Title'
        """
        if isinstance(html, Tag):
            return html
        return BeautifulSoup(html or "", "lxml")

    @staticmethod
    def clean_text(text: Optional[str]) -> str:
        if not text:
            return ""
        return WHITESPACE.sub(" ", text).strip()

    @abstractmethod
    def parse(self, *args, **kwargs) -> Any:
        """
        Abstract parsing method.

        Must be implemented in child classes to extract data from specific
        types of pages.

        Raises:
            NotImplementedError: If method is not overridden in child class.
        """
        pass
