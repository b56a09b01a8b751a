import pytest

from mlautos.core.models import ListingRecord, Seller, SellerType
from mlautos.scraper.dedup import Deduplicator, merge_for_store


def listing(listing_id, title="Toyota Corolla", **fields):
    return ListingRecord(
        title=title,
        link=f"https://auto.mercadolibre.com.ar/MLA-{listing_id}-corolla-_JM",
        **fields,
    )


def test_first_occurrence_wins_and_keeps_order():
    records = [listing(1, "A Corolla"), listing(2), listing(1, "B Corolla"), listing(3)]

    result = Deduplicator(policy="first").merge(records)

    assert [r.id for r in result.unique] == ["1", "2", "3"]
    assert result.unique[0].title == "A Corolla"
    assert result.duplicates_removed == 1


def test_last_occurrence_wins_at_first_position():
    records = [listing(1, "A Corolla"), listing(2), listing(1, "B Corolla")]

    result = Deduplicator(policy="last").merge(records)

    assert [r.id for r in result.unique] == ["1", "2"]
    assert result.unique[0].title == "B Corolla"


def test_enrich_fills_empty_fields_from_duplicate():
    records = [
        listing(1, year=2018),
        listing(1, year=2015, kilometers=90000, seller=Seller(SellerType.DEALER)),
    ]

    kept = Deduplicator(enrich=True).merge(records).unique[0]

    assert kept.year == 2018
    assert kept.kilometers == 90000
    assert kept.seller.type == SellerType.DEALER


def test_without_enrich_duplicate_is_discarded():
    records = [listing(1), listing(1, kilometers=90000)]

    kept = Deduplicator(enrich=False).merge(records).unique[0]

    assert kept.kilometers is None


def test_unidentified_records():
    unidentified = ListingRecord(title="Auto usado", link="https://autos.mercadolibre.com.ar/varios")
    records = [unidentified, listing(1), unidentified]

    kept = Deduplicator(keep_unidentified=True).merge(records)
    dropped = Deduplicator(keep_unidentified=False).merge(records)

    assert len(kept.unique) == 3
    assert kept.duplicates_removed == 0
    assert [r.id for r in dropped.unique] == ["1"]
    assert dropped.duplicates_removed == 2


def test_merge_is_idempotent():
    records = [listing(1), listing(2), listing(1), listing(3), listing(2)]
    deduplicator = Deduplicator()

    once = deduplicator.merge(records).unique
    twice = deduplicator.merge(once)

    assert twice.unique == once
    assert twice.duplicates_removed == 0


def test_unknown_policy():
    with pytest.raises(ValueError):
        Deduplicator(policy="newest")


def test_merge_for_store_keeps_stored_details():
    existing = [listing(1, description="Unico dueño"), listing(2)]
    new = [listing(1, year=2020), listing(3)]

    merged = merge_for_store(existing, new)

    assert [r.id for r in merged] == ["2", "1", "3"]
    updated = merged[1]
    assert updated.year == 2020
    assert updated.description == "Unico dueño"


def test_merge_for_store_matches_unidentified_records_by_link():
    unidentified = ListingRecord(title="Auto usado", link="https://autos.mercadolibre.com.ar/varios")
    other = ListingRecord(title="Otro auto", link="https://autos.mercadolibre.com.ar/otros")

    collection = []
    for _ in range(3):
        collection = merge_for_store(collection, [unidentified, listing(1)])

    assert len(collection) == 2
    assert [r.link for r in collection if not r.id] == [unidentified.link]

    merged = merge_for_store(collection, [listing(2)])
    assert [r.id for r in merged] == [None, "1", "2"]

    merged = merge_for_store([unidentified, unidentified, other], [listing(1)])
    assert [r.link for r in merged if not r.id] == [unidentified.link, other.link]
