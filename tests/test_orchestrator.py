import asyncio
import itertools

import pytest

from conftest import FakeFetcher, failing_on, numbered_page
from mlautos.core.exceptions import FetchError
from mlautos.core.models import SessionStatus
from mlautos.core.storage import load_records
from mlautos.scraper.mercadolibre import MercadoLibreScraper, build_batch_summary

DETAIL_PAGE = """
<html><body>
  <div class="ui-pdp-description__content">Unico dueño, service oficiales.</div>
  <table class="andes-table">
    <tr class="andes-table__row"><th>Color</th><td>Gris</td></tr>
  </table>
</body></html>
"""


def scraper_for(responder, store, fake_sleep, **kwargs):
    fetcher = FakeFetcher(responder)
    return fetcher, MercadoLibreScraper(fetcher=fetcher, store=store, sleep=fake_sleep, **kwargs)


def test_scrape_query_stores_collection(memory_store, fake_sleep):
    _, scraper = scraper_for(numbered_page, memory_store, fake_sleep)

    summary = asyncio.run(scraper.scrape_query("toyota", "corolla", max_pages=2, enrich=False))

    assert summary["status"] == SessionStatus.BUDGET_EXCEEDED.value
    assert summary["pagesScraped"] == 2
    assert summary["totalCars"] == 12
    assert summary["scrapingMethod"] == "fixed"
    assert summary["storeResult"]["success"]
    assert summary["storeResult"]["key"] == "toyota-corolla"
    assert memory_store.get("toyota-corolla")["count"] == 12


def test_failed_session_keeps_partial_results(memory_store, fake_sleep):
    _, scraper = scraper_for(failing_on(2), memory_store, fake_sleep)

    summary = asyncio.run(scraper.scrape_query("toyota", "corolla", max_pages=5, enrich=False))

    assert summary["status"] == SessionStatus.FAILED.value
    assert summary["totalCars"] == 6
    assert "HTTP 500" in summary["error"]
    assert summary["storeResult"]["stored"] == 6


def test_nothing_stored_without_records(memory_store, fake_sleep):
    _, scraper = scraper_for(failing_on(1), memory_store, fake_sleep)

    summary = asyncio.run(scraper.scrape_query("toyota", "corolla", enrich=False))

    assert summary["storeResult"] is None
    assert memory_store.list() == []


def test_enrichment_fills_missing_fields(memory_store, fake_sleep, sleeps):
    def respond(url):
        if "/MLA-" in url:
            return DETAIL_PAGE
        return numbered_page(url, cars_per_page=5)

    fetcher, scraper = scraper_for(respond, memory_store, fake_sleep)

    summary = asyncio.run(scraper.scrape_query("toyota", "corolla", max_pages=1, enrich=True))

    detail_calls = [url for url, _ in fetcher.calls if "/MLA-" in url]
    assert len(detail_calls) == 5
    assert len(set(detail_calls)) == 5
    assert summary["totalCars"] == 5
    records = load_records(memory_store.get("toyota-corolla"))
    assert all(r.description == "Unico dueño, service oficiales." for r in records)
    assert all(r.specifications == {"Color": "Gris"} for r in records)
    # Values from the results page are kept
    assert all(r.year == 2020 for r in records)
    # Politeness delay between detail fetches only
    assert len(sleeps) == 4


def test_failed_detail_fetch_keeps_record(memory_store, fake_sleep):
    def respond(url):
        if "/MLA-" in url:
            return FetchError(url, "HTTP 404", status=404)
        return numbered_page(url, cars_per_page=5)

    _, scraper = scraper_for(respond, memory_store, fake_sleep)

    summary = asyncio.run(scraper.scrape_query("toyota", "corolla", max_pages=1, enrich=True))

    assert summary["totalCars"] == 5
    assert summary["status"] == SessionStatus.BUDGET_EXCEEDED.value


def test_enrichment_stops_when_time_budget_is_consumed(memory_store, fake_sleep):
    def respond(url):
        if "/MLA-" in url:
            return DETAIL_PAGE
        return numbered_page(url, cars_per_page=5)

    # Seconds: query start, pagination start, after page 1, then past 80% of 10 s
    ticks = itertools.chain([0.0, 0.0, 1.0, 2.0], itertools.repeat(9.0))
    fetcher, scraper = scraper_for(
        respond, memory_store, fake_sleep, clock=lambda: next(ticks)
    )

    session = asyncio.run(
        scraper.run_query("toyota", "corolla", max_pages=1, max_elapsed_ms=10_000, enrich=True)
    )

    detail_calls = [url for url, _ in fetcher.calls if "/MLA-" in url]
    assert len(detail_calls) == 1
    assert len(session.records) == 5
    described = [r for r in session.records if r.description]
    assert len(described) == 1
    assert described[0].link == detail_calls[0]


def test_enrichment_skipped_when_pagination_used_the_budget(memory_store, fake_sleep):
    def respond(url):
        if "/MLA-" in url:
            return DETAIL_PAGE
        return numbered_page(url, cars_per_page=5)

    ticks = itertools.count(0.0, 1.0)
    fetcher, scraper = scraper_for(
        respond, memory_store, fake_sleep, clock=lambda: next(ticks)
    )

    session = asyncio.run(
        scraper.run_query("toyota", "corolla", max_elapsed_ms=1000, enrich=True)
    )

    assert session.status == SessionStatus.BUDGET_EXCEEDED
    assert session.pages_scraped == 1
    assert not [url for url, _ in fetcher.calls if "/MLA-" in url]
    assert all(r.description is None for r in session.records)


def test_batch_continues_after_failed_query(memory_store, fake_sleep, sleeps):
    def respond(url):
        if "/ford/" in url:
            return FetchError(url, f"HTTP 503 fetching {url}", status=503)
        return numbered_page(url)

    _, scraper = scraper_for(respond, memory_store, fake_sleep)
    queries = [
        {"brand": "toyota", "model": "corolla"},
        {"brandKey": "ford", "modelKey": "focus"},
        {"brand": "fiat", "model": "cronos"},
    ]

    outcomes = asyncio.run(
        scraper.scrape_batch(queries, delay_between_ms=5000, max_pages=1, enrich=False)
    )

    assert [o["success"] for o in outcomes] == [True, False, True]
    assert outcomes[0]["totalCars"] == 6
    assert outcomes[1]["status"] == SessionStatus.FAILED.value
    assert "HTTP 503" in outcomes[1]["errorMessage"]
    assert outcomes[2]["brandKey"] == "fiat"
    assert sleeps == [5.0, 5.0]
    assert memory_store.list() == ["fiat-cronos", "toyota-corolla"]


def test_batch_reports_invalid_query(memory_store, fake_sleep, sleeps):
    _, scraper = scraper_for(numbered_page, memory_store, fake_sleep)

    outcomes = asyncio.run(
        scraper.scrape_batch(
            [{"brand": "toyota"}, {"brand": "toyota", "model": "etios"}],
            delay_between_ms=0,
            max_pages=1,
            enrich=False,
        )
    )

    assert not outcomes[0]["success"]
    assert "brand and a model" in outcomes[0]["errorMessage"]
    assert outcomes[1]["success"]
    assert sleeps == []


def test_build_batch_summary():
    outcomes = [
        {"brandKey": "toyota", "modelKey": "corolla", "success": True, "totalCars": 12},
        {"brandKey": "ford", "modelKey": "focus", "success": False, "errorMessage": "HTTP 503"},
    ]

    summary = build_batch_summary(outcomes)

    assert summary["totalQueries"] == 2
    assert summary["successful"] == 1
    assert summary["failed"] == 1
    assert summary["totalCars"] == 12
    assert summary["results"] is outcomes
    assert "generatedAt" in summary


def test_unexpected_errors_propagate_from_run_query(memory_store, fake_sleep):
    def respond(url):
        raise KeyError("boom")

    _, scraper = scraper_for(respond, memory_store, fake_sleep)

    with pytest.raises(KeyError):
        asyncio.run(scraper.run_query("toyota", "corolla"))
