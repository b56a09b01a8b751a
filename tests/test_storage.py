import pytest

from mlautos.core.exceptions import StorageError
from mlautos.core.models import Collection, ListingRecord, Query, ScrapeSession, SessionStatus
from mlautos.core.storage import KeyValueStore, load_records, store_session
from mlautos.scraper.dedup import Deduplicator


def listing(listing_id, **fields):
    return ListingRecord(
        title="Toyota Corolla Xei",
        link=f"https://auto.mercadolibre.com.ar/MLA-{listing_id}-corolla-_JM",
        **fields,
    )


def finalized_session(records):
    session = ScrapeSession(
        query=Query("toyota", "corolla"),
        start_url="https://autos.mercadolibre.com.ar/toyota/corolla",
    )
    session.replace_records(records)
    session.terminate(SessionStatus.COMPLETED)
    return session.finalize(Deduplicator())


class BrokenStore(KeyValueStore):
    def get(self, key):
        raise StorageError("connection refused")

    def put(self, key, value):
        raise StorageError("connection refused")

    def list(self):
        return []

    def delete(self, key):
        return False


def test_sql_store_crud(sql_store):
    assert sql_store.get("toyota-corolla") is None

    sql_store.put("toyota-corolla", {"cars": [], "count": 0})
    sql_store.put("ford-focus", {"cars": [], "count": 0})
    sql_store.put("toyota-corolla", {"cars": [], "count": 3})

    assert sql_store.get("toyota-corolla") == {"cars": [], "count": 3}
    assert sql_store.list() == ["ford-focus", "toyota-corolla"]
    assert sql_store.delete("ford-focus")
    assert not sql_store.delete("ford-focus")
    assert sql_store.list() == ["toyota-corolla"]


def test_corrupt_value_raises_storage_error(sql_store, session_factory):
    with session_factory() as db:
        db.add(Collection(key="broken", value="{not json"))
        db.commit()

    with pytest.raises(StorageError):
        sql_store.get("broken")


def test_store_session_writes_collection(sql_store):
    session = finalized_session([listing(1, year=2019), listing(2)])

    result = store_session(sql_store, session)

    assert result["success"]
    assert result["key"] == "toyota-corolla"
    assert result["stored"] == 2
    assert result["mergedWithExisting"] == 0
    value = sql_store.get("toyota-corolla")
    assert value["count"] == 2
    assert value["brand"] == "toyota"
    assert value["scrapingMethod"] == "infinite"
    assert [r.id for r in load_records(value)] == ["1", "2"]


def test_store_session_merges_with_existing(sql_store):
    store_session(sql_store, finalized_session([listing(1, description="Unico dueño"), listing(2)]))

    result = store_session(sql_store, finalized_session([listing(1, year=2020), listing(3)]))

    assert result["mergedWithExisting"] == 2
    assert result["stored"] == 3
    records = {r.id: r for r in load_records(sql_store.get("toyota-corolla"))}
    assert set(records) == {"1", "2", "3"}
    assert records["1"].year == 2020
    assert records["1"].description == "Unico dueño"


def test_store_session_without_merge_overwrites(memory_store):
    store_session(memory_store, finalized_session([listing(1), listing(2)]))

    result = store_session(memory_store, finalized_session([listing(3)]), merge=False)

    assert result["stored"] == 1
    assert memory_store.get("toyota-corolla")["count"] == 1


def test_store_failure_is_reported():
    result = store_session(BrokenStore(), finalized_session([listing(1)]))

    assert result == {"success": False, "key": "toyota-corolla", "error": "connection refused"}


def test_load_records_skips_invalid_entries():
    value = {
        "cars": [
            listing(1).to_dict(),
            {"id": "2", "title": "", "link": "https://auto.mercadolibre.com.ar/MLA-2-x"},
        ]
    }

    assert [r.id for r in load_records(value)] == ["1"]


def test_load_records_skips_malformed_entries():
    # Year stored as text fails the year comparison
    wrong_type = {"title": "Fiat Uno", "link": "https://auto.mercadolibre.com.ar/MLA-9-uno-_JM", "year": "2010"}
    value = {"cars": ["garbage", None, 42, wrong_type, listing(1).to_dict()]}

    assert [r.id for r in load_records(value)] == ["1"]
    assert load_records(["not", "a", "collection"]) == []
    assert load_records({"cars": "garbage"}) == []
    assert load_records(None) == []


def test_store_session_recovers_from_malformed_stored_value(memory_store):
    memory_store.data["toyota-corolla"] = {"cars": ["garbage", listing(1).to_dict()]}

    result = store_session(memory_store, finalized_session([listing(2)]))

    assert result["success"]
    assert result["mergedWithExisting"] == 1
    assert {car["id"] for car in memory_store.get("toyota-corolla")["cars"]} == {"1", "2"}

    memory_store.data["toyota-corolla"] = "garbage"
    assert store_session(memory_store, finalized_session([listing(3)]))["success"]


def test_repeated_stores_do_not_grow_unidentified_records(memory_store):
    unidentified = ListingRecord(title="Auto usado", link="https://autos.mercadolibre.com.ar/varios")

    for _ in range(3):
        result = store_session(memory_store, finalized_session([unidentified, listing(1)]))

    assert result["stored"] == 2
    assert memory_store.get("toyota-corolla")["count"] == 2
