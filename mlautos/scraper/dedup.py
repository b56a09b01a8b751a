"""
Deduplication of scraped listings.

Merges records gathered over several pages (or several scrapes) into a set
that is unique by listing id.

Classes:
    DedupResult: Unique records plus the number of removed duplicates.
    Deduplicator: Single-pass merge with a configurable keep policy.

Functions:
    merge_for_store: Merge freshly scraped records into a stored collection.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from mlautos.config.settings import DEDUP_ENRICH, DEDUP_POLICY, KEEP_UNIDENTIFIED
from mlautos.core.models import ListingRecord
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

POLICIES = ("first", "last")


@dataclass(frozen=True)
class DedupResult:
    unique: List[ListingRecord]
    duplicates_removed: int


class Deduplicator:
    """
    Single-pass deduplicator keyed by listing id.

    Attributes:
        policy (str): "first" keeps the first occurrence, "last" keeps the
            newest one. Either way the record stays at its first-seen position.
        enrich (bool): When True, the discarded duplicate fills empty fields
            of the kept record.
        keep_unidentified (bool): Records without an id cannot be
            deduplicated; they are passed through when True and dropped
            (counted as removed) when False.
    """

    def __init__(
        self,
        policy: str = DEDUP_POLICY,
        enrich: bool = DEDUP_ENRICH,
        keep_unidentified: bool = KEEP_UNIDENTIFIED,
    ):
        if policy not in POLICIES:
            raise ValueError(f"Unknown dedup policy: {policy}")
        self.policy = policy
        self.enrich = enrich
        self.keep_unidentified = keep_unidentified

    def _resolve(self, kept: ListingRecord, incoming: ListingRecord) -> ListingRecord:
        if self.policy == "last":
            winner, loser = incoming, kept
        else:
            winner, loser = kept, incoming
        if self.enrich:
            return winner.fill_from(loser)
        return winner

    def merge(self, records: Sequence[ListingRecord]) -> DedupResult:
        """
        Merge records into a set unique by id.

        Args:
            records (Sequence[ListingRecord]): Records in first-seen order.

        Returns:
            DedupResult: Unique records in first-seen order and the number of
                records removed.
        """
        unique: List[ListingRecord] = []
        positions: Dict[str, int] = {}
        removed = 0

        for record in records:
            if not record.id:
                if self.keep_unidentified:
                    unique.append(record)
                else:
                    removed += 1
                continue
            position = positions.get(record.id)
            if position is None:
                positions[record.id] = len(unique)
                unique.append(record)
                continue
            unique[position] = self._resolve(unique[position], record)
            removed += 1

        if removed:
            logger.info(
                f"Deduplication: {len(records)} records -> {len(unique)} unique "
                f"({removed} removed, policy={self.policy})"
            )
        return DedupResult(unique=unique, duplicates_removed=removed)


def merge_for_store(
    existing: Sequence[ListingRecord], new: Sequence[ListingRecord]
) -> List[ListingRecord]:
    """
    Merge new records into a stored collection.

    New records win on conflicting ids, but their empty fields are filled
    from the stored record so that detail-page data gathered earlier is kept
    when a later scrape skips enrichment. Records without an id are matched
    by link. Stored records absent from new are preserved and listed first,
    followed by the new records.

    Args:
        existing (Sequence[ListingRecord]): Records read from the store.
        new (Sequence[ListingRecord]): Records of the current scrape.

    Returns:
        List[ListingRecord]: Merged collection.
    """
    stored_by_id = {record.id: record for record in existing if record.id}
    new_ids = {record.id for record in new if record.id}
    seen_links = {record.link for record in new if not record.id}

    kept = []
    for record in existing:
        if record.id:
            if record.id not in new_ids:
                kept.append(record)
        elif record.link not in seen_links:
            seen_links.add(record.link)
            kept.append(record)
    merged_new = [
        record.fill_from(stored_by_id[record.id])
        if record.id in stored_by_id
        else record
        for record in new
    ]
    return kept + merged_new
