"""
Read side over stored collections.

Aggregates the collections written by the scraper for reporting callers
(an API or CLI layer): paginated listing, free-text search with price and
year filters, per-collection access and store-wide statistics.

Classes:
    CarQueryService: Query and report operations over a KeyValueStore.
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from mlautos.core.exceptions import StorageError
from mlautos.core.storage import KeyValueStore
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)


def _dedup_by_id(cars: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    unique = []
    for car in cars:
        car_id = car.get("id")
        if car_id:
            if car_id in seen:
                continue
            seen.add(car_id)
        unique.append(car)
    return unique


def _extracted_at(car: Dict[str, Any]) -> float:
    try:
        return datetime.fromisoformat(car.get("extractedAt") or "").timestamp()
    except ValueError:
        return float("-inf")


def _price_amount(car: Dict[str, Any]) -> float:
    price = car.get("price") or {}
    try:
        return float(price.get("amount") or 0)
    except (TypeError, ValueError):
        return 0.0


def _paginate(cars: List[Dict[str, Any]], page: int, limit: int) -> Dict[str, Any]:
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    end = start + limit
    return {
        "cars": cars[start:end],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": len(cars),
            "totalPages": math.ceil(len(cars) / limit),
            "hasNext": end < len(cars),
            "hasPrev": page > 1,
        },
    }


class CarQueryService:
    """
    Query operations over the stored collections.

    Attributes:
        store (KeyValueStore): Collections store.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def collection_key(brand: str, model: str) -> str:
        return f"{brand.lower()}-{model.lower()}"

    def _collections(self) -> List[Dict[str, Any]]:
        collections = []
        for key in self.store.list():
            value = self.store.get(key)
            if value:
                collections.append(dict(value, key=key))
        return collections

    def _all_cars(self) -> List[Dict[str, Any]]:
        cars: List[Dict[str, Any]] = []
        for collection in self._collections():
            cars.extend(collection.get("cars") or [])
        return cars

    def get_all_cars(
        self,
        page: int = 1,
        limit: int = 20,
        brand: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        List cars of every collection, newest extraction first.

        Args:
            page (int): 1-based page number.
            limit (int): Page size.
            brand (Optional[str]): Keep cars whose title mentions the brand.
            model (Optional[str]): Keep cars whose title mentions the model.

        Returns:
            Dict[str, Any]: {cars, pagination, filters}.
        """
        cars = self._all_cars()
        if brand:
            cars = [c for c in cars if brand.lower() in (c.get("title") or "").lower()]
        if model:
            cars = [c for c in cars if model.lower() in (c.get("title") or "").lower()]

        unique = _dedup_by_id(cars)
        unique.sort(key=_extracted_at, reverse=True)
        response = _paginate(unique, page, limit)
        response["filters"] = {"brand": brand, "model": model}
        return response

    def search_cars(
        self,
        query: str,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        year: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        Free-text search over title and location.

        Raises:
            ValueError: When query is empty.
        """
        if not query or not query.strip():
            raise ValueError("Query parameter required")
        needle = query.strip().lower()

        cars = [
            c
            for c in self._all_cars()
            if needle in (c.get("title") or "").lower()
            or needle in (c.get("location") or "").lower()
        ]
        if min_price is not None:
            cars = [c for c in cars if _price_amount(c) >= min_price]
        if max_price is not None:
            cars = [c for c in cars if _price_amount(c) <= max_price]
        if year is not None:
            cars = [c for c in cars if c.get("year") == year]

        unique = _dedup_by_id(cars)
        unique.sort(key=_extracted_at, reverse=True)
        response = _paginate(unique, page, limit)
        response["query"] = needle
        response["filters"] = {"minPrice": min_price, "maxPrice": max_price, "year": year}
        return response

    def get_collection(self, brand: str, model: str) -> Optional[Dict[str, Any]]:
        return self.store.get(self.collection_key(brand, model))

    def delete_collection(self, brand: str, model: str) -> bool:
        key = self.collection_key(brand, model)
        deleted = self.store.delete(key)
        if deleted:
            logger.info(f"Collection {key} deleted")
        return deleted

    def get_all_collections(self) -> Dict[str, Any]:
        """
        Every stored collection, most recently updated first.

        A collection whose value cannot be read is reported with an error
        entry instead of failing the whole listing.
        """
        collections = []
        total_cars = 0
        for key in self.store.list():
            try:
                value = self.store.get(key)
            except StorageError as e:
                logger.error(f"Error processing key {key}: {e}")
                collections.append({"key": key, "error": "Failed to parse data"})
                continue
            if not value:
                continue
            collections.append(
                {
                    "key": key,
                    "brand": value.get("brand"),
                    "model": value.get("model"),
                    "count": value.get("count"),
                    "lastUpdated": value.get("lastUpdated"),
                    "cars": value.get("cars") or [],
                }
            )
            total_cars += value.get("count") or 0

        collections.sort(key=lambda c: c.get("lastUpdated") or "", reverse=True)
        return {
            "totalCollections": len(collections),
            "totalCars": total_cars,
            "collections": collections,
            "retrievedAt": datetime.now().astimezone().isoformat(),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Totals, brands (first title word), distinct locations and year range."""
        collections = self._collections()
        total_cars = 0
        brands = set()
        locations = set()
        years = set()
        summaries = []

        for collection in collections:
            cars = collection.get("cars") or []
            total_cars += len(cars)
            summaries.append(
                {
                    "key": collection["key"],
                    "brand": collection.get("brand"),
                    "model": collection.get("model"),
                    "totalCars": len(cars),
                    "lastUpdated": collection.get("lastUpdated"),
                }
            )
            for car in cars:
                words = (car.get("title") or "").lower().split()
                if words:
                    brands.add(words[0])
                if car.get("location"):
                    locations.add(car["location"])
                if car.get("year"):
                    years.add(car["year"])

        summaries.sort(key=lambda c: c.get("lastUpdated") or "", reverse=True)
        return {
            "totalCars": total_cars,
            "totalCollections": len(collections),
            "brands": sorted(brands),
            "uniqueLocations": len(locations),
            "yearRange": {"min": min(years), "max": max(years)} if years else None,
            "collections": summaries,
        }
