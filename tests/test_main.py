import json
from functools import partial

import pytest

from conftest import FakeFetcher, card_html, results_page
from mlautos import main
from mlautos.scraper.mercadolibre import MercadoLibreScraper
from mlautos.utils import exporter


def single_page(url):
    cards = [card_html(3000 + i, f"Ford Ka Se {2016 + i}") for i in range(5)]
    return results_page(cards, has_next=False)


@pytest.fixture
def offline(monkeypatch, memory_store, fake_sleep):
    calls = {"init_db": 0}

    def init_db():
        calls["init_db"] += 1

    monkeypatch.setattr(main.signal, "signal", lambda *args: None)
    monkeypatch.setattr(main, "init_db", init_db)
    monkeypatch.setattr(main, "check_connection", lambda: True)
    monkeypatch.setattr(
        main,
        "MercadoLibreScraper",
        lambda: MercadoLibreScraper(
            fetcher=FakeFetcher(single_page), store=memory_store, sleep=fake_sleep
        ),
    )
    monkeypatch.setattr(main, "SQLKeyValueStore", lambda: memory_store)
    return calls


def test_no_command_prepares_database(offline):
    assert main.main([]) == 0
    assert offline["init_db"] == 1


def test_unreachable_database_fails(offline, monkeypatch):
    monkeypatch.setattr(main, "check_connection", lambda: False)

    assert main.main(["scrape", "ford", "ka"]) == 1


def test_scrape_command_stores_cars(offline, memory_store, capsys):
    assert main.main(["scrape", "ford", "ka", "--max-pages", "1"]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["totalCars"] == 5
    assert summary["storeResult"]["success"]
    assert memory_store.get("ford-ka")["count"] == 5


def test_scrape_command_without_store(offline, memory_store, capsys):
    assert main.main(["scrape", "ford", "ka", "--no-store"]) == 0

    assert json.loads(capsys.readouterr().out)["storeResult"] is None
    assert memory_store.list() == []


def test_export_command(offline, memory_store, monkeypatch, tmp_path, capsys):
    memory_store.put("ford-ka", {"count": 5, "cars": []})
    monkeypatch.setattr(
        main, "export_collections", partial(exporter.export_collections, exports_dir=tmp_path)
    )

    assert main.main(["export"]) == 0

    (export_file,) = tmp_path.glob("mlautos_export_*.json")
    assert capsys.readouterr().out.strip() == str(export_file)
    assert json.loads(export_file.read_text(encoding="utf-8"))["totalCars"] == 5
