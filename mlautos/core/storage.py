"""
Key-value storage of scraped collections.

One value is stored per brand/model query under the key "<brand>-<model>".
The value is a JSON document:

    {brand, model, cars: [ListingRecord], count, lastUpdated,
     scrapingMethod: "fixed" | "infinite", pagesScraped, executionTimeMs}

Classes:
    KeyValueStore: Storage contract (get, put, list, delete).
    SQLKeyValueStore: Store backed by the SQLAlchemy "collections" table.

Functions:
    build_collection_value: Builds the stored document for a finished session.
    load_records: Reads the records of a stored collection.
    store_session: Writes a session, merging with an existing collection.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError  # type: ignore
from sqlalchemy.orm import sessionmaker  # type: ignore

from mlautos.core.database import SessionLocal, get_db
from mlautos.core.exceptions import ExtractionRejected, StorageError
from mlautos.core.models import Collection, ListingRecord, ScrapeSession
from mlautos.scraper.dedup import merge_for_store
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Storage contract consumed by the orchestrator and the query service."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored value or None when the key is absent."""

    @abstractmethod
    def put(self, key: str, value: Dict[str, Any]) -> None:
        """Create or replace the value at key."""

    @abstractmethod
    def list(self) -> List[str]:
        """Return all stored keys."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key; return False when it did not exist."""


class SQLKeyValueStore(KeyValueStore):
    """
    Key-value store on top of the collections table.

    Every SQLAlchemy or JSON failure is raised as StorageError.

    Attributes:
        session_factory (sessionmaker): Factory of database sessions.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            with get_db(self.session_factory) as db:
                row = db.get(Collection, key)
                raw = row.value if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read key {key}: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Stored value at {key} is not valid JSON: {e}") from e

    def put(self, key: str, value: Dict[str, Any]) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key} is not serializable: {e}") from e
        try:
            with get_db(self.session_factory) as db:
                row = db.get(Collection, key)
                now = datetime.now(timezone.utc)
                if row:
                    row.value = payload
                    row.updated_at = now
                else:
                    db.add(Collection(key=key, value=payload, updated_at=now))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write key {key}: {e}") from e
        logger.debug(f"Stored value at key {key}")

    def list(self) -> List[str]:
        try:
            with get_db(self.session_factory) as db:
                return [key for (key,) in db.query(Collection.key).order_by(Collection.key)]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list keys: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            with get_db(self.session_factory) as db:
                row = db.get(Collection, key)
                if not row:
                    return False
                db.delete(row)
                return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete key {key}: {e}") from e


def load_records(value: Optional[Dict[str, Any]]) -> List[ListingRecord]:
    """Records of a stored collection; malformed entries are skipped."""
    if not isinstance(value, dict):
        if value is not None:
            logger.warning(f"Ignoring stored collection of type {type(value).__name__}")
        return []
    cars = value.get("cars") or []
    if not isinstance(cars, list):
        logger.warning(f"Ignoring stored cars of type {type(cars).__name__}")
        return []

    records = []
    for car in cars:
        if not isinstance(car, dict):
            logger.warning(f"Skipping stored record of type {type(car).__name__}")
            continue
        try:
            records.append(ListingRecord.from_dict(car))
        except (ExtractionRejected, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping invalid stored record {car.get('id')}: {e}")
    return records


def build_collection_value(
    session: ScrapeSession, records: List[ListingRecord]
) -> Dict[str, Any]:
    return {
        "brand": session.query.brand_key,
        "model": session.query.model_key,
        "cars": [record.to_dict() for record in records],
        "count": len(records),
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
        "scrapingMethod": session.scraping_method,
        "pagesScraped": session.pages_scraped,
        "executionTimeMs": session.execution_time_ms,
    }


def store_session(
    store: KeyValueStore, session: ScrapeSession, merge: bool = True
) -> Dict[str, Any]:
    """
    Persist the records of a finalized session.

    With merge enabled the existing value at the session key is read first
    and its records are merged with the new ones (new wins on conflicting
    ids). A storage failure never raises: it is reported in the result so the
    scrape result stays intact.

    Args:
        store (KeyValueStore): Target store.
        session (ScrapeSession): Finalized session.
        merge (bool): Read-modify-write against the existing collection.

    Returns:
        Dict[str, Any]: {success, key, stored, mergedWithExisting, lastUpdated,
            pagesScraped, executionTimeMs} or {success: False, key, error}.
    """
    key = session.query.storage_key
    try:
        records = list(session.records)
        merged_with = 0
        if merge:
            existing = load_records(store.get(key))
            if existing:
                merged_with = len(existing)
                records = merge_for_store(existing, records)
                logger.info(
                    f"Merging {len(session.records)} scraped cars with "
                    f"{merged_with} stored cars for {key}"
                )
        value = build_collection_value(session, records)
        store.put(key, value)
    except StorageError as e:
        logger.error(f"Auto-store failed for {key}: {e}", exc_info=True)
        return {"success": False, "key": key, "error": str(e)}

    logger.info(f"Stored {value['count']} cars for {key}")
    return {
        "success": True,
        "key": key,
        "stored": value["count"],
        "mergedWithExisting": merged_with,
        "lastUpdated": value["lastUpdated"],
        "pagesScraped": value["pagesScraped"],
        "executionTimeMs": value["executionTimeMs"],
    }
