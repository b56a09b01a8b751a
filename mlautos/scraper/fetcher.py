"""
Page fetching (asynchronous, httpx).

The pagination controller and the orchestrator only depend on the Fetcher
protocol: fetch(url, headers) returning status, body and final URL. The
httpx implementation retries temporary refusals (503, 429) with a growing
wait and turns every other failure into FetchError.

Attributes:
    logger: Logger for registering fetch events.
    ua: Random User-Agent header generator.

Classes:
    FetchResponse: Answer of a successful fetch.
    Fetcher: Fetch collaborator protocol.
    HttpxFetcher: Fetcher on top of httpx.AsyncClient.

Functions:
    build_browser_headers: Realistic browser headers for a request.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import httpx  # type: ignore
from fake_useragent import UserAgent

from mlautos.config.settings import (
    FETCH_RETRIES,
    FETCH_RETRY_DELAY_SECONDS,
    FETCH_TIMEOUT_SECONDS,
    SCRAPER_BASE_URL,
)
from mlautos.core.exceptions import FetchError
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

ua = UserAgent()

RETRY_STATUSES = (429, 503)


def build_browser_headers(referer: Optional[str] = None) -> Dict[str, str]:
    """
    Build browser-like request headers.

    Args:
        referer (Optional[str]): Referer URL, the site root by default.

    Returns:
        Dict[str, str]: User-Agent, Accept, Accept-Language and Referer headers.
    """
    return {
        "User-Agent": ua.random,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "es-ES,es;q=0.9,en;q=0.8",
        "Referer": referer or f"{SCRAPER_BASE_URL.rstrip('/')}/",
    }


@dataclass(frozen=True)
class FetchResponse:
    status: int
    body: str
    url: str


class Fetcher(Protocol):
    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        ...


class HttpxFetcher:
    """
    Fetcher backed by httpx.AsyncClient.

    Usable as an async context manager; a client passed in by the caller is
    not closed by the fetcher.

    Attributes:
        timeout (float): Hard timeout of one request in seconds.
        max_retries (int): Attempts on 503/429 answers.
        retry_delay (float): Base wait between attempts in seconds.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        max_retries: int = FETCH_RETRIES,
        retry_delay: float = FETCH_RETRY_DELAY_SECONDS,
    ):
        self.timeout = timeout
        self.max_retries = max(max_retries, 1)
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def __aenter__(self) -> "HttpxFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _retry_wait(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        # Increase wait time with each attempt
        return self.retry_delay + random.uniform(0, self.retry_delay) * attempt

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """
        Fetch a page.

        Args:
            url (str): Page URL.
            headers (Optional[Dict[str, str]]): Request headers.

        Returns:
            FetchResponse: Status, body and final URL of a 2xx answer.

        Raises:
            FetchError: On network errors, timeouts, non-2xx answers and
                exhausted retries.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self.client.get(url, headers=headers, timeout=self.timeout)
            except httpx.TimeoutException as e:
                raise FetchError(url, f"Timeout fetching {url}: {e}") from e
            except httpx.HTTPError as e:
                raise FetchError(url, f"Network error fetching {url}: {e}") from e

            if response.status_code in RETRY_STATUSES and attempt < self.max_retries:
                wait_time = self._retry_wait(response, attempt)
                logger.warning(
                    f"Received {response.status_code} status for {url}. "
                    f"Retry {attempt}/{self.max_retries} in {wait_time:.1f} sec."
                )
                await asyncio.sleep(wait_time)
                continue

            if not 200 <= response.status_code < 300:
                raise FetchError(
                    url,
                    f"HTTP {response.status_code} fetching {url}",
                    status=response.status_code,
                )
            return FetchResponse(
                status=response.status_code, body=response.text, url=str(response.url)
            )

        raise FetchError(url, f"All attempts exhausted for {url}")
