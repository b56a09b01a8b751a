"""
Data models of the scraper.

This module contains the typed records produced by extraction, the state of
one scrape session, and the SQLAlchemy ORM model backing the key-value store
of scraped collections.

Classes:
    Currency, SellerType, SessionStatus: Closed value sets.
    Price, Seller: Value objects of a listing.
    ListingRecord: One extracted listing; validated at construction.
    Query, Budget: Input of a scrape session.
    NextPageSignals, PageResult: Per-page outcome.
    ScrapeSession: State of one query's scrape, frozen once finalized.
    Base: Base class for all SQLAlchemy ORM models.
    Collection: Key-value row holding one stored brand/model collection.
"""

import enum
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Column, DateTime, String, Text  # type: ignore
from sqlalchemy.orm import declarative_base  # type: ignore

from mlautos.config.settings import YEAR_MIN
from mlautos.core.exceptions import ExtractionRejected
from mlautos.core.listing_urls import parse_listing_id

Base = declarative_base()

MAX_KILOMETERS = 1_000_000


class Currency(str, enum.Enum):
    ARS = "ARS"
    USD = "USD"
    UNKNOWN = "unknown"


class SellerType(str, enum.Enum):
    DEALER = "Dealer"
    PRIVATE_OWNER = "PrivateOwner"
    UNKNOWN = "unknown"


class SessionStatus(str, enum.Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    BUDGET_EXCEEDED = "BudgetExceeded"
    NO_MORE_RESULTS = "NoMoreResults"
    FAILED = "Failed"


def is_plausible_year(
    year: Optional[int], current_year: Optional[int] = None, min_year: int = YEAR_MIN
) -> bool:
    """Model year inside [min_year, current_year + 1]."""
    if year is None:
        return False
    if current_year is None:
        current_year = datetime.now().year
    return min_year <= year <= current_year + 1


def is_plausible_kilometers(kilometers: Optional[int]) -> bool:
    return kilometers is not None and 0 < kilometers < MAX_KILOMETERS


@dataclass(frozen=True)
class Price:
    currency: Currency
    amount: Decimal

    def __post_init__(self):
        if self.amount <= 0:
            raise ExtractionRejected(f"Price amount must be positive: {self.amount}")

    def to_dict(self) -> Dict[str, Any]:
        return {"currency": self.currency.value, "amount": float(self.amount)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Price"]:
        if not data or data.get("amount") in (None, ""):
            return None
        try:
            amount = Decimal(str(data["amount"]))
            currency = Currency(data.get("currency") or Currency.UNKNOWN.value)
        except (InvalidOperation, ValueError):
            return None
        if amount <= 0:
            return None
        return cls(currency=currency, amount=amount)


@dataclass(frozen=True)
class Seller:
    type: SellerType = SellerType.UNKNOWN
    name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.type == SellerType.UNKNOWN and not self.name

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "name": self.name}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Seller":
        if not data:
            return cls()
        try:
            seller_type = SellerType(data.get("type") or SellerType.UNKNOWN.value)
        except ValueError:
            seller_type = SellerType.UNKNOWN
        return cls(type=seller_type, name=data.get("name") or None)


@dataclass(frozen=True)
class ListingRecord:
    """
    One vehicle listing.

    The constructor enforces the record invariants: a non-empty title and
    link, an id equal to the one parsed from the link, a positive price,
    a plausible year and a plausible mileage. Violations raise
    ExtractionRejected. Records are never mutated; deduplication builds new
    instances with dataclasses.replace.

    Attributes:
        id (Optional[str]): Listing id parsed from link, None when no pattern matches.
        title (str): Listing title.
        link (str): Canonical absolute listing URL.
        price (Optional[Price]): Asking price.
        year (Optional[int]): Model year.
        kilometers (Optional[int]): Odometer reading.
        location (Optional[str]): Free-text location.
        thumbnail (Optional[str]): Image URL.
        seller (Seller): Seller type and name.
        features (Tuple[str, ...]): Ordered unique short tags.
        extracted_at (datetime): UTC extraction time.
        description (Optional[str]): Detail page description.
        published_date (Optional[str]): Detail page publish date text.
        specifications (Dict[str, str]): Detail page specifications table.
    """

    title: str
    link: str
    id: Optional[str] = None
    price: Optional[Price] = None
    year: Optional[int] = None
    kilometers: Optional[int] = None
    location: Optional[str] = None
    thumbnail: Optional[str] = None
    seller: Seller = field(default_factory=Seller)
    features: Tuple[str, ...] = ()
    extracted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    description: Optional[str] = None
    published_date: Optional[str] = None
    specifications: Dict[str, str] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise ExtractionRejected("Listing without title")
        if not self.link:
            raise ExtractionRejected("Listing without link")
        derived_id = parse_listing_id(self.link)
        if self.id is None:
            object.__setattr__(self, "id", derived_id)
        elif self.id != derived_id:
            raise ExtractionRejected(
                f"Id {self.id} does not match link {self.link}"
            )
        if self.year is not None and not is_plausible_year(self.year):
            raise ExtractionRejected(f"Implausible year: {self.year}")
        if self.kilometers is not None and not is_plausible_kilometers(self.kilometers):
            raise ExtractionRejected(f"Implausible kilometers: {self.kilometers}")
        object.__setattr__(self, "features", tuple(dict.fromkeys(self.features)))

    def empty_fields(self) -> List[str]:
        """Names of optional fields that hold no value."""
        empty = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "seller":
                if value.is_empty:
                    empty.append(f.name)
            elif value is None or value in ((), {}, ""):
                empty.append(f.name)
        return empty

    def fill_from(self, other: "ListingRecord") -> "ListingRecord":
        """
        Return a copy whose empty fields are taken from other.

        Fields already holding a value are never overwritten. Identity fields
        (id, link, title) are left untouched.
        """
        updates: Dict[str, Any] = {}
        for name in self.empty_fields():
            if name in ("id", "link", "title"):
                continue
            value = getattr(other, name)
            if name == "seller":
                if not value.is_empty:
                    updates[name] = value
            elif value not in (None, (), {}, ""):
                updates[name] = value
        # Partial seller: keep type, fill name (or the reverse)
        if "seller" not in updates and not self.seller.is_empty:
            seller = self.seller
            if seller.type == SellerType.UNKNOWN and other.seller.type != SellerType.UNKNOWN:
                seller = replace(seller, type=other.seller.type)
            if not seller.name and other.seller.name:
                seller = replace(seller, name=other.seller.name)
            if seller != self.seller:
                updates["seller"] = seller
        return replace(self, **updates) if updates else self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price.to_dict() if self.price else None,
            "year": self.year,
            "kilometers": self.kilometers,
            "location": self.location,
            "link": self.link,
            "thumbnail": self.thumbnail,
            "seller": self.seller.to_dict(),
            "features": list(self.features),
            "extractedAt": self.extracted_at.isoformat(),
            "description": self.description,
            "publishedDate": self.published_date,
            "specifications": dict(self.specifications),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingRecord":
        """
        Rebuild a record from its stored JSON shape.

        Raises:
            ExtractionRejected: When the stored data violates record invariants.
        """
        extracted_at = data.get("extractedAt")
        try:
            extracted = (
                datetime.fromisoformat(extracted_at)
                if extracted_at
                else datetime.now(timezone.utc)
            )
        except ValueError:
            extracted = datetime.now(timezone.utc)
        return cls(
            id=data.get("id") or None,
            title=data.get("title") or "",
            link=data.get("link") or "",
            price=Price.from_dict(data.get("price")),
            year=data.get("year"),
            kilometers=data.get("kilometers"),
            location=data.get("location") or None,
            thumbnail=data.get("thumbnail") or None,
            seller=Seller.from_dict(data.get("seller")),
            features=tuple(data.get("features") or ()),
            extracted_at=extracted,
            description=data.get("description") or None,
            published_date=data.get("publishedDate") or None,
            specifications=dict(data.get("specifications") or {}),
        )


@dataclass(frozen=True)
class Query:
    brand_key: str
    model_key: str

    @property
    def storage_key(self) -> str:
        return f"{self.brand_key.lower()}-{self.model_key.lower()}"


@dataclass(frozen=True)
class Budget:
    """Page and wall-clock ceiling of a session; None or 0 means unbounded."""

    max_pages: Optional[int] = None
    max_elapsed_ms: Optional[int] = None

    @property
    def is_page_bounded(self) -> bool:
        return bool(self.max_pages)

    def pages_exhausted(self, pages_done: int) -> bool:
        return bool(self.max_pages) and pages_done >= self.max_pages

    def time_exhausted(self, elapsed_ms: float, margin: float = 0.8) -> bool:
        """True once margin of the time budget is consumed."""
        return bool(self.max_elapsed_ms) and elapsed_ms >= self.max_elapsed_ms * margin


@dataclass(frozen=True)
class NextPageSignals:
    enabled_next_control: bool = False
    next_page_number_listed: bool = False
    next_offset_url: bool = False
    end_of_results: bool = False

    @property
    def should_continue(self) -> bool:
        positive = (
            self.enabled_next_control
            or self.next_page_number_listed
            or self.next_offset_url
        )
        return positive and not self.end_of_results


@dataclass(frozen=True)
class PageResult:
    page_index: int
    url: str
    fragments_found: int
    cars_extracted: int
    rejected: int = 0
    mode: str = "selector"
    next_signal: NextPageSignals = field(default_factory=NextPageSignals)
    duplicate_ratio: float = 0.0


@dataclass
class ScrapeSession:
    """
    State of one query's scrape.

    Created by the orchestrator, filled page by page by the pagination
    controller, then finalized (deduplicated). A finalized session rejects
    further mutation.
    """

    query: Query
    start_url: str
    budget: Budget = field(default_factory=Budget)
    pages: List[PageResult] = field(default_factory=list)
    records: List[ListingRecord] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    status: SessionStatus = SessionStatus.RUNNING
    error: Optional[str] = None
    total_before_dedup: int = 0
    duplicates_removed: int = 0
    finalized: bool = False

    def _check_mutable(self) -> None:
        if self.finalized:
            raise RuntimeError("Scrape session is finalized and cannot be modified")

    def add_page(self, page: PageResult, records: List[ListingRecord]) -> None:
        self._check_mutable()
        self.pages.append(page)
        self.records.extend(records)

    def seen_ids(self) -> set:
        return {record.id for record in self.records if record.id}

    def terminate(self, status: SessionStatus, error: Optional[str] = None) -> None:
        self._check_mutable()
        self.status = status
        self.error = error
        self.finished_at = datetime.now(timezone.utc)

    def replace_records(self, records: List[ListingRecord]) -> None:
        self._check_mutable()
        self.records = list(records)

    def finalize(self, deduplicator) -> "ScrapeSession":
        """Deduplicate the accumulated records and freeze the session."""
        self._check_mutable()
        result = deduplicator.merge(self.records)
        self.total_before_dedup = len(self.records)
        self.records = result.unique
        self.duplicates_removed = result.duplicates_removed
        if self.finished_at is None:
            self.finished_at = datetime.now(timezone.utc)
        self.finalized = True
        return self

    @property
    def pages_scraped(self) -> int:
        return len(self.pages)

    @property
    def execution_time_ms(self) -> int:
        end = self.finished_at or datetime.now(timezone.utc)
        return int((end - self.started_at).total_seconds() * 1000)

    @property
    def scraping_method(self) -> str:
        return "fixed" if self.budget.is_page_bounded else "infinite"

    def summary(self) -> Dict[str, Any]:
        return {
            "brand": self.query.brand_key,
            "model": self.query.model_key,
            "searchUrl": self.start_url,
            "status": self.status.value,
            "totalCars": len(self.records),
            "totalCarsBeforeDedup": self.total_before_dedup or len(self.records),
            "duplicatesRemoved": self.duplicates_removed,
            "pagesScraped": self.pages_scraped,
            "executionTimeMs": self.execution_time_ms,
            "scrapingMethod": self.scraping_method,
            "error": self.error,
        }


class Collection(Base):
    """
    Key-value row of the collections store.

    Attributes:
        key (str): "<brand>-<model>" storage key.
        value (str): JSON document of the stored collection.
        updated_at (datetime): Time of the last write.
    """

    __tablename__ = "collections"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def __repr__(self):
        return f"<Collection(key='{self.key}', updated_at='{self.updated_at}')>"
