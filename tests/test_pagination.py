import asyncio

from conftest import (
    BASE_URL,
    FakeFetcher,
    card_html,
    failing_on,
    numbered_page,
    page_index_of,
    results_page,
)
from mlautos.core.models import Budget, Query, SessionStatus
from mlautos.scraper.dedup import Deduplicator
from mlautos.scraper.pagination import PaginationController, detect_next_page

START_URL = f"{BASE_URL}/toyota/corolla"
QUERY = Query("toyota", "corolla")


def run(controller, budget):
    return asyncio.run(controller.run(START_URL, budget, QUERY, {"User-Agent": "test"}))


def controller_for(responder, fake_sleep, **kwargs):
    fetcher = FakeFetcher(responder)
    return fetcher, PaginationController(
        fetcher, delay_range_ms=(1500, 3000), sleep=fake_sleep, **kwargs
    )


def test_detect_next_page_signals():
    cards = [card_html(1, "Toyota Corolla")]

    assert detect_next_page(results_page(cards), 1).enabled_next_control
    assert detect_next_page(results_page(cards), 1).next_offset_url
    assert detect_next_page(results_page(cards), 1).should_continue
    assert not detect_next_page(results_page(cards, has_next=False), 1).should_continue


def test_disabled_next_control_is_ignored():
    html = """
    <ul class="andes-pagination">
      <li class="andes-pagination__button andes-pagination__button--next andes-pagination__button--disabled">
        <a title="Siguiente" aria-disabled="true">Siguiente</a>
      </li>
    </ul>
    """

    signals = detect_next_page(html, 4)

    assert not signals.enabled_next_control
    assert not signals.should_continue


def test_next_page_number_listed():
    html = """
    <nav class="andes-pagination">
      <a href="#">1</a><a href="#">2</a><a href="#">3</a>
    </nav>
    """

    assert detect_next_page(html, 2).next_page_number_listed
    assert not detect_next_page(html, 3).next_page_number_listed
    assert detect_next_page('<a aria-label="5" href="#">5</a>', 4).next_page_number_listed


def test_next_offset_url_uses_page_size():
    html = f'<link rel="next" href="{START_URL}_Desde_97">'

    assert detect_next_page(html, 2).next_offset_url
    assert not detect_next_page(html, 1).next_offset_url


def test_end_of_results_vetoes_other_signals():
    cards = [card_html(1, "Toyota Corolla")]

    signals = detect_next_page(results_page(cards, end_marker=True), 1)

    assert signals.enabled_next_control
    assert signals.end_of_results
    assert not signals.should_continue


def test_page_budget_stops_at_exactly_max_pages(fake_sleep, sleeps):
    fetcher, controller = controller_for(numbered_page, fake_sleep)

    session = run(controller, Budget(max_pages=3))

    assert session.status == SessionStatus.BUDGET_EXCEEDED
    assert session.pages_scraped == 3
    assert len(fetcher.calls) == 3
    assert len(session.records) == 18
    assert [p.page_index for p in session.pages] == [1, 2, 3]
    assert fetcher.calls[1][0] == f"{START_URL}_Desde_49"
    assert fetcher.calls[2][0] == f"{START_URL}_Desde_97"
    # Delays only between pages, each inside the configured range
    assert len(sleeps) == 2
    assert all(1.5 <= s <= 3.0 for s in sleeps)


def test_referer_is_previous_page(fake_sleep):
    fetcher, controller = controller_for(numbered_page, fake_sleep)

    run(controller, Budget(max_pages=2))

    assert fetcher.calls[0][1]["User-Agent"] == "test"
    assert fetcher.calls[1][1]["Referer"] == START_URL


def test_fetch_error_keeps_partial_results(fake_sleep):
    fetcher, controller = controller_for(failing_on(3), fake_sleep)

    session = run(controller, Budget(max_pages=5))

    assert session.status == SessionStatus.FAILED
    assert session.pages_scraped == 2
    assert "HTTP 500" in session.error
    session.finalize(Deduplicator())
    assert len(session.records) == 12
    assert {r.id for r in session.records} == {str(1000 + p * 100 + i) for p in (1, 2) for i in range(6)}


def test_empty_page_ends_with_no_more_results(fake_sleep):
    def respond(url):
        if page_index_of(url) == 2:
            return results_page([], current_page=2)
        return numbered_page(url)

    _, controller = controller_for(respond, fake_sleep)

    session = run(controller, Budget())

    assert session.status == SessionStatus.NO_MORE_RESULTS
    assert session.pages_scraped == 2
    assert len(session.records) == 6


def test_missing_next_signal_completes(fake_sleep, sleeps):
    def respond(url):
        cards = [card_html(500 + i, "Ford Focus") for i in range(6)]
        return results_page(cards, has_next=False)

    _, controller = controller_for(respond, fake_sleep)

    session = run(controller, Budget())

    assert session.status == SessionStatus.COMPLETED
    assert session.pages_scraped == 1
    assert sleeps == []


def test_end_marker_completes(fake_sleep):
    def respond(url):
        index = page_index_of(url)
        cards = [card_html(600 + index * 10 + i, "Ford Focus") for i in range(6)]
        return results_page(cards, current_page=index, end_marker=index == 2)

    _, controller = controller_for(respond, fake_sleep)

    session = run(controller, Budget())

    assert session.status == SessionStatus.COMPLETED
    assert session.pages_scraped == 2


def test_sparse_page_is_treated_as_last(fake_sleep):
    def respond(url):
        index = page_index_of(url)
        count = 6 if index == 1 else 3
        cards = [card_html(700 + index * 10 + i, "Chevrolet Onix") for i in range(count)]
        return results_page(cards, current_page=index)

    _, controller = controller_for(respond, fake_sleep)

    session = run(controller, Budget())

    assert session.status == SessionStatus.COMPLETED
    assert session.pages_scraped == 2
    assert len(session.records) == 9


def test_repeated_page_stops_on_overlap(fake_sleep):
    def respond(url):
        cards = [card_html(800 + i, "Renault Clio") for i in range(6)]
        return results_page(cards, current_page=page_index_of(url))

    _, controller = controller_for(respond, fake_sleep)

    session = run(controller, Budget(max_pages=10))

    assert session.status == SessionStatus.COMPLETED
    assert session.pages_scraped == 2
    assert session.pages[1].duplicate_ratio == 1.0
    result = Deduplicator().merge(session.records)
    assert len(result.unique) == 6
    assert result.duplicates_removed == 6


def test_time_budget_stops_at_eighty_percent(fake_sleep):
    ticks = iter([0.0, 0.5, 0.85])
    fetcher = FakeFetcher(numbered_page)
    controller = PaginationController(
        fetcher, sleep=fake_sleep, clock=lambda: next(ticks)
    )

    session = run(controller, Budget(max_elapsed_ms=1000))

    assert session.status == SessionStatus.BUDGET_EXCEEDED
    assert session.pages_scraped == 2


def test_eighty_percent_overlap_stops(fake_sleep):
    def respond(url):
        index = page_index_of(url)
        # Page 2 repeats 4 of its 5 ids
        ids = [900, 901, 902, 903, 904] if index == 1 else [900, 901, 902, 903, 950]
        return results_page([card_html(i, "Renault Clio") for i in ids], current_page=index)

    _, controller = controller_for(respond, fake_sleep)

    session = run(controller, Budget(max_pages=10))

    assert session.status == SessionStatus.COMPLETED
    assert session.pages_scraped == 2
    assert session.pages[1].duplicate_ratio == 0.8
