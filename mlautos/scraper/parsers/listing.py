"""
Listing record extractor.

Turns the HTML fragment of one search result (or a whole page when no
fragment could be isolated) into a ListingRecord. Every field is resolved by
an ordered list of named strategies: the first strategy that produces a
plausible value wins and later strategies only fill fields that are still
empty. A field that fails to parse stays empty; only the listing-validity
predicate decides whether a record is kept.

Attributes:
    logger: Logger for registering extraction events.
    TITLE_SELECTORS, LOCATION_SELECTORS, ATTRIBUTE_SELECTORS: CSS selectors,
        most specific first.
    NOISE_PHRASES: Site chrome phrases rejected as title text.
    BRAND_KEYWORDS, CAR_KEYWORDS: Keywords accepted by the validity predicate.

Classes:
    FieldCandidate: Resolved value of a field and the strategy that produced it.
    FieldStrategy: Named extraction strategy.
    FragmentView: Parsed fragment shared by the strategies.
    PartialRecord: Mutable draft of a record under extraction.
    ListingExtractor: Extractor entry point.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bs4.element import Tag

from mlautos.config.settings import SCRAPER_BASE_URL, YEAR_MIN
from mlautos.core.exceptions import ExtractionFieldError, ExtractionRejected
from mlautos.core.listing_urls import (
    canonicalize_link,
    is_listing_url,
    is_preferred_host,
    is_strict_listing_url,
    parse_listing_id,
)
from mlautos.core.models import (
    Currency,
    ListingRecord,
    Price,
    Seller,
    SellerType,
    is_plausible_kilometers,
    is_plausible_year,
)
from mlautos.scraper.base import BaseScraper, Markup
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

TITLE_SELECTORS = (
    ".poly-component__title",
    ".poly-card__title",
    ".polycard__title",
    ".ui-search-item__title",
    '[data-testid="item-title"]',
    "h2",
    "h3",
)
LOCATION_SELECTORS = (
    ".poly-component__location",
    ".ui-search-item__location",
    ".polycard__location",
    ".ui-search-item__group__element--location",
)
ATTRIBUTE_SELECTORS = (
    ".poly-attributes_list__item",
    ".poly-attributes-list__item",
    ".poly-component__attributes-list li",
    ".ui-search-card-attributes__attribute",
    ".ui-search-item__attributes li",
)
SELLER_SELECTORS = (
    ".poly-component__seller",
    ".ui-search-official-store-label",
    '[class*="seller"]',
)
MONEY_SELECTOR = ".andes-money-amount"
PRICE_CLASS_SELECTOR = '[class*="price"], [class*="money"]'

NOISE_PHRASES = (
    "mercado libre",
    "acerca de",
    "otros sitios",
    "ayuda",
    "mi cuenta",
    "suscripciones",
    "temporadas",
    "categorías",
    "ofertas",
    "cupones",
    "vender",
    "buscar",
    "filtros",
    "ordenar",
    "anterior",
    "siguiente",
    "inicio",
)
MIN_TITLE_LENGTH = 3

BRAND_KEYWORDS = (
    "toyota", "ford", "chevrolet", "volkswagen", "fiat", "honda", "nissan",
    "peugeot", "renault", "hyundai", "citroen", "citroën", "jeep", "kia",
    "audi", "bmw", "mercedes", "mercedes-benz", "chery", "suzuki", "mitsubishi",
    "dodge", "ram", "subaru", "volvo",
)
CAR_KEYWORDS = (
    "cv", "sedan", "sedán", "hatchback", "suv", "pickup", "pick-up", "coupe",
    "cupé", "km", "motor", "nafta", "diesel", "diésel", "automático",
    "automática", "manual", "puertas", "cvt", "4x4",
)
BRAND_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in BRAND_KEYWORDS) + r")\b", re.IGNORECASE
)
CAR_WORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in CAR_KEYWORDS) + r")\b", re.IGNORECASE
)

YEAR_TOKEN = re.compile(r"\b(?:19|20)\d{2}\b")
EXACT_YEAR = re.compile(r"^(?:19|20)\d{2}$")
NUMBER_TOKEN = re.compile(r"\d[\d.,]*")
CURRENCY_PRICE = re.compile(r"(US\$|U\$S|USD|ARS|\$)\s*(\d[\d.,]*)", re.IGNORECASE)
EXACT_KM = re.compile(r"^(\d{1,3}(?:\.\d{3})+|\d+)\s*km$", re.IGNORECASE)
FRAGMENT_KM = re.compile(r"(\d{1,3}(?:\.\d{3})+|\d+)\s*(?:km|kilómetros?)\b", re.IGNORECASE)
FUZZY_KM = (
    re.compile(r"(\d+)\s*mil\s*km\b", re.IGNORECASE),
    re.compile(r"(\d+)\s*k\s*km\b", re.IGNORECASE),
)
PIPE_LOCATION = re.compile(
    r"\|\s*([A-ZÁÉÍÓÚÑ][\wáéíóúñ]+(?:\s+[A-ZÁÉÍÓÚÑ][\wáéíóúñ]+)*)"
)
ENGINE_POWER = re.compile(r"\b(\d{2,3})\s?cv\b", re.IGNORECASE)
TRANSMISSION = re.compile(r"\b(automático|automática|automatico|manual|cvt)\b", re.IGNORECASE)
FUEL = re.compile(r"\b(nafta|diésel|diesel|gnc|híbrido|hibrido|eléctrico)\b", re.IGNORECASE)


# Field parsers
def is_noise_text(text: str) -> bool:
    """Site chrome phrases and very short strings are not title text."""
    lowered = text.lower()
    return len(text) < MIN_TITLE_LENGTH or any(phrase in lowered for phrase in NOISE_PHRASES)


def detect_currency(text: str) -> Currency:
    upper = text.upper()
    if "US$" in upper or "U$S" in upper or "USD" in upper:
        return Currency.USD
    if "ARS" in upper or "$" in upper:
        return Currency.ARS
    return Currency.UNKNOWN


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Parse a locale formatted amount.

    When both "." and "," occur, the right-most one is the decimal separator.
    With a single kind of separator, a final group of at most two digits is
    decimal, otherwise every separator is thousands grouping.

    Args:
        text (str): Text containing the amount.

    Returns:
        Optional[Decimal]: Positive amount, None when absent or not positive.

    Raises:
        ExtractionFieldError: When the number token is malformed.

    Examples:
        >>> parse_amount("1.234.567,89")
        Decimal('1234567.89')
        >>> parse_amount("1.234")
        Decimal('1234')
    """
    match = NUMBER_TOKEN.search(text or "")
    if not match:
        return None
    token = match.group(0).rstrip(".,")

    if "." in token and "," in token:
        decimal_sep = "," if token.rfind(",") > token.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        normalized = token.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "." in token or "," in token:
        sep = "." if "." in token else ","
        groups = token.split(sep)
        if len(groups[-1]) <= 2:
            normalized = "".join(groups[:-1]) + "." + groups[-1]
        else:
            normalized = "".join(groups)
    else:
        normalized = token

    try:
        amount = Decimal(normalized)
    except InvalidOperation:
        raise ExtractionFieldError("price", f"Malformed amount {token!r}")
    return amount if amount > 0 else None


def parse_price(text: str) -> Optional[Price]:
    amount = parse_amount(text)
    if amount is None:
        return None
    return Price(currency=detect_currency(text), amount=amount)


def first_plausible_year(
    text: str, current_year: Optional[int] = None, min_year: int = YEAR_MIN
) -> Optional[int]:
    for token in YEAR_TOKEN.findall(text or ""):
        year = int(token)
        if is_plausible_year(year, current_year, min_year):
            return year
    return None


def parse_kilometers(text: str) -> Optional[int]:
    """Parse "45.000 km" style mileage, dots being thousands separators."""
    match = EXACT_KM.match((text or "").strip()) or FRAGMENT_KM.search(text or "")
    if not match:
        return None
    value = int(match.group(1).replace(".", ""))
    return value if is_plausible_kilometers(value) else None


def parse_fuzzy_kilometers(text: str) -> Optional[int]:
    for pattern in FUZZY_KM:
        match = pattern.search(text or "")
        if match:
            value = int(match.group(1)) * 1000
            if is_plausible_kilometers(value):
                return value
    return None


def detect_seller(strings: Iterable[str]) -> Seller:
    seller_type = SellerType.UNKNOWN
    name = None
    for text in strings:
        lowered = text.lower()
        if seller_type == SellerType.UNKNOWN:
            if "concesionaria" in lowered:
                seller_type = SellerType.DEALER
            elif "dueño directo" in lowered or "particular" in lowered:
                seller_type = SellerType.PRIVATE_OWNER
        if name is None and text.startswith("Por "):
            name = text[4:].strip() or None
    return Seller(type=seller_type, name=name)


def extract_features(text: str) -> Tuple[str, ...]:
    features: List[str] = []
    for match in ENGINE_POWER.finditer(text or ""):
        features.append(f"{match.group(1)}cv")
    for pattern in (TRANSMISSION, FUEL):
        for match in pattern.finditer(text or ""):
            features.append(match.group(1).lower())
    return tuple(dict.fromkeys(features))


def is_valid_listing(
    title: Optional[str], link: Optional[str], current_year: Optional[int] = None
) -> bool:
    """
    Listing-validity predicate.

    A candidate is a listing when it has a title and a link, and either the
    title mentions a brand or a car-specific word, carries a plausible model
    year, or the link has the strict listing URL shape.

    Args:
        title (Optional[str]): Candidate title.
        link (Optional[str]): Candidate canonical link.
        current_year (Optional[int]): Reference year, today's year by default.

    Returns:
        bool: True when the candidate should be kept.
    """
    if not title or not title.strip() or not link:
        return False
    return bool(
        BRAND_PATTERN.search(title)
        or CAR_WORD_PATTERN.search(title)
        or first_plausible_year(title, current_year) is not None
        or is_strict_listing_url(link)
    )


# Strategies
@dataclass(frozen=True)
class FieldCandidate:
    value: Any
    confidence: float
    strategy: str


@dataclass(frozen=True)
class FieldStrategy:
    """
    Named extraction strategy for one field.

    Attributes:
        name (str): Strategy name, recorded on the draft as the field source.
        confidence (float): Reliability of the signal, higher is stronger.
        func (Callable): Function of a FragmentView returning a value or None.
    """

    name: str
    confidence: float
    func: Callable[["FragmentView"], Any]

    def apply(self, view: "FragmentView") -> Optional[FieldCandidate]:
        try:
            value = self.func(view)
        except (ExtractionFieldError, ExtractionRejected, ValueError, AttributeError, TypeError) as e:
            logger.debug(f"Strategy {self.name} failed: {e}")
            return None
        if value is None or value in ((), ""):
            return None
        return FieldCandidate(value=value, confidence=self.confidence, strategy=self.name)


def resolve_field(
    strategies: Sequence[FieldStrategy], view: "FragmentView"
) -> Optional[FieldCandidate]:
    """Apply strategies in order; the first one producing a value wins."""
    for strategy in strategies:
        candidate = strategy.apply(view)
        if candidate is not None:
            return candidate
    return None


class FragmentView:
    """
    Parsed fragment shared by all strategies of one extraction.

    Attributes:
        node (Tag): Fragment root.
        base_url (str): Site root for relative links.
        current_year (Optional[int]): Reference year for plausibility checks.
        min_year (int): Oldest plausible model year.
        title (str): Title resolved so far, used by title-based strategies.
    """

    def __init__(
        self,
        node: Tag,
        base_url: str = SCRAPER_BASE_URL,
        current_year: Optional[int] = None,
        min_year: int = YEAR_MIN,
    ):
        self.node = node
        self.base_url = base_url
        self.current_year = current_year
        self.min_year = min_year
        self.title = ""
        self._strings: Optional[List[str]] = None
        self._text: Optional[str] = None

    @property
    def strings(self) -> List[str]:
        if self._strings is None:
            self._strings = [
                BaseScraper.clean_text(s) for s in self.node.stripped_strings
            ]
        return self._strings

    @property
    def text(self) -> str:
        if self._text is None:
            self._text = " ".join(self.strings)
        return self._text

    def select(self, selector: str) -> List[Tag]:
        return self.node.select(selector)

    def anchors(self) -> List[Tag]:
        found = self.node.find_all("a", href=True)
        if self.node.name == "a" and self.node.has_attr("href"):
            found.insert(0, self.node)
        return found

    def attribute_items(self) -> List[str]:
        for selector in ATTRIBUTE_SELECTORS:
            items = [BaseScraper.clean_text(i.get_text(" ")) for i in self.select(selector)]
            items = [i for i in items if i]
            if items:
                return items
        return []


def _title_from_selectors(view: FragmentView) -> Optional[str]:
    for selector in TITLE_SELECTORS:
        parts = [
            BaseScraper.clean_text(el.get_text(" ")) for el in view.select(selector)
        ]
        parts = [p for p in parts if p and not is_noise_text(p)]
        if parts:
            return " ".join(parts)
    return None


def _title_from_image(view: FragmentView) -> Optional[str]:
    for img in view.select("img"):
        text = BaseScraper.clean_text(img.get("title") or img.get("alt"))
        if text and not is_noise_text(text):
            return text
    return None


def _title_from_anchor(view: FragmentView) -> Optional[str]:
    for anchor in view.anchors():
        if is_listing_url(anchor.get("href"), view.base_url):
            text = BaseScraper.clean_text(anchor.get("title") or anchor.get_text(" "))
            if text and not is_noise_text(text):
                return text
    return None


def _link_from_anchors(view: FragmentView) -> Optional[str]:
    chosen = None
    for anchor in view.anchors():
        href = anchor.get("href")
        if not is_listing_url(href, view.base_url):
            continue
        link = canonicalize_link(href, view.base_url)
        if is_preferred_host(link):
            return link
        if chosen is None:
            chosen = link
    return chosen


def _price_from_money_widget(view: FragmentView) -> Optional[Price]:
    for widget in view.select(MONEY_SELECTOR):
        classes = " ".join(widget.get("class", []))
        if "--previous" in classes or widget.find_parent("s") is not None:
            continue
        fraction = widget.select_one(".andes-money-amount__fraction")
        if not fraction:
            continue
        symbol = widget.select_one(".andes-money-amount__currency-symbol")
        cents = widget.select_one(".andes-money-amount__cents")
        text = f"{symbol.get_text(strip=True) if symbol else ''} {fraction.get_text(strip=True)}"
        if cents and cents.get_text(strip=True):
            text += f",{cents.get_text(strip=True)}"
        price = parse_price(text)
        if price:
            return price
    return None


def _price_from_price_class(view: FragmentView) -> Optional[Price]:
    for element in view.select(PRICE_CLASS_SELECTOR):
        if element.find_parent("s") is not None:
            continue
        text = BaseScraper.clean_text(element.get_text(" "))
        if "consultar" in text.lower():
            continue
        match = CURRENCY_PRICE.search(text)
        if match:
            price = parse_price(match.group(0))
            if price:
                return price
    return None


def _price_from_text(view: FragmentView) -> Optional[Price]:
    for match in CURRENCY_PRICE.finditer(view.text):
        price = parse_price(match.group(0))
        if price:
            return price
    return None


def _year_from_attributes(view: FragmentView) -> Optional[int]:
    for item in view.attribute_items():
        if EXACT_YEAR.match(item):
            year = int(item)
            if is_plausible_year(year, view.current_year, view.min_year):
                return year
    return None


def _year_from_title(view: FragmentView) -> Optional[int]:
    return first_plausible_year(view.title, view.current_year, view.min_year)


def _year_from_text(view: FragmentView) -> Optional[int]:
    return first_plausible_year(view.text, view.current_year, view.min_year)


def _km_from_attributes(view: FragmentView) -> Optional[int]:
    for item in view.attribute_items():
        match = EXACT_KM.match(item)
        if match:
            return parse_kilometers(item)
    return None


def _km_from_text(view: FragmentView) -> Optional[int]:
    for match in FRAGMENT_KM.finditer(view.text):
        value = int(match.group(1).replace(".", ""))
        if is_plausible_kilometers(value):
            return value
    return None


def _km_fuzzy(view: FragmentView) -> Optional[int]:
    return parse_fuzzy_kilometers(view.text)


def _location_from_element(view: FragmentView) -> Optional[str]:
    for selector in LOCATION_SELECTORS:
        element = view.node.select_one(selector)
        if element:
            text = BaseScraper.clean_text(element.get_text(" "))
            if text:
                return text
    return None


def _looks_like_place(text: str) -> bool:
    return (
        0 < len(text) <= 80
        and text[0].isalpha()
        and text[0].isupper()
        and not any(ch.isdigit() for ch in text)
    )


def _location_from_dash_segment(view: FragmentView) -> Optional[str]:
    title = view.title.lower()
    for text in reversed(view.strings):
        if " - " not in text or (title and text.lower() in title):
            continue
        segment = text.split(" - ")[-1].strip()
        if _looks_like_place(segment):
            return segment
    return None


def _location_from_pipe(view: FragmentView) -> Optional[str]:
    match = PIPE_LOCATION.search(view.text)
    return match.group(1).strip() if match else None


def _seller_from_element(view: FragmentView) -> Optional[Seller]:
    for selector in SELLER_SELECTORS:
        strings = [
            BaseScraper.clean_text(s)
            for element in view.select(selector)
            for s in element.stripped_strings
        ]
        if strings:
            seller = detect_seller(strings)
            if not seller.is_empty:
                return seller
    return None


def _seller_from_text(view: FragmentView) -> Optional[Seller]:
    seller = detect_seller(view.strings)
    return None if seller.is_empty else seller


def _features_from_text(view: FragmentView) -> Tuple[str, ...]:
    return extract_features(view.text)


def _thumbnail_from_images(view: FragmentView) -> Optional[str]:
    fallback = None
    for img in view.select("img"):
        src = img.get("data-src") or img.get("src") or ""
        if not src.startswith("http"):
            continue
        if "mlstatic.com" in src:
            return src
        if fallback is None:
            fallback = src
    return fallback


FIELD_STRATEGIES: Dict[str, Tuple[FieldStrategy, ...]] = {
    "title": (
        FieldStrategy("title_selectors", 0.9, _title_from_selectors),
        FieldStrategy("image_alt", 0.5, _title_from_image),
        FieldStrategy("anchor_text", 0.4, _title_from_anchor),
    ),
    "link": (FieldStrategy("listing_anchor", 1.0, _link_from_anchors),),
    "price": (
        FieldStrategy("money_widget", 0.9, _price_from_money_widget),
        FieldStrategy("price_class", 0.7, _price_from_price_class),
        FieldStrategy("currency_text", 0.4, _price_from_text),
    ),
    "year": (
        FieldStrategy("attributes_list", 0.9, _year_from_attributes),
        FieldStrategy("title_regex", 0.6, _year_from_title),
        FieldStrategy("fragment_regex", 0.3, _year_from_text),
    ),
    "kilometers": (
        FieldStrategy("attributes_list", 0.9, _km_from_attributes),
        FieldStrategy("km_suffix", 0.6, _km_from_text),
        FieldStrategy("fuzzy_km", 0.3, _km_fuzzy),
    ),
    "location": (
        FieldStrategy("location_element", 0.9, _location_from_element),
        FieldStrategy("dash_segment", 0.4, _location_from_dash_segment),
        FieldStrategy("pipe_segment", 0.3, _location_from_pipe),
    ),
    "seller": (
        FieldStrategy("seller_element", 0.8, _seller_from_element),
        FieldStrategy("seller_keywords", 0.4, _seller_from_text),
    ),
    "features": (FieldStrategy("feature_keywords", 0.5, _features_from_text),),
    "thumbnail": (FieldStrategy("image_src", 0.8, _thumbnail_from_images),),
}

# Title first: title-based strategies read view.title
FIELD_ORDER = (
    "title", "link", "price", "year", "kilometers",
    "location", "seller", "features", "thumbnail",
)


@dataclass
class PartialRecord:
    """
    Mutable draft of a listing under extraction.

    Fields are only ever filled while empty; sources records which strategy
    set each field.
    """

    title_parts: List[str] = field(default_factory=list)
    link: Optional[str] = None
    price: Optional[Price] = None
    year: Optional[int] = None
    kilometers: Optional[int] = None
    location: Optional[str] = None
    thumbnail: Optional[str] = None
    seller: Optional[Seller] = None
    features: Tuple[str, ...] = ()
    description: Optional[str] = None
    published_date: Optional[str] = None
    specifications: Dict[str, str] = field(default_factory=dict)
    extracted_at: Optional[datetime] = None
    sources: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ListingRecord) -> "PartialRecord":
        draft = cls(
            title_parts=[record.title],
            link=record.link,
            price=record.price,
            year=record.year,
            kilometers=record.kilometers,
            location=record.location,
            thumbnail=record.thumbnail,
            seller=None if record.seller.is_empty else record.seller,
            features=record.features,
            description=record.description,
            published_date=record.published_date,
            specifications=dict(record.specifications),
            extracted_at=record.extracted_at,
        )
        draft.sources = {name: "prior" for name in FIELD_ORDER if draft.get(name)}
        return draft

    @property
    def title(self) -> str:
        return " ".join(self.title_parts).strip()

    @property
    def id(self) -> Optional[str]:
        return parse_listing_id(self.link)

    def get(self, name: str) -> Any:
        if name == "title":
            return self.title
        return getattr(self, name)

    def offer(self, name: str, candidate: Optional[FieldCandidate]) -> bool:
        """Fill field name with candidate unless it already holds a value."""
        if candidate is None or self.get(name):
            return False
        if name == "title":
            self.title_parts.append(candidate.value)
        else:
            setattr(self, name, candidate.value)
        self.sources[name] = candidate.strategy
        return True

    def add_title(self, text: Optional[str]) -> bool:
        text = BaseScraper.clean_text(text)
        if not text or is_noise_text(text):
            return False
        self.title_parts.append(text)
        return True

    def set_link(self, href: Optional[str], base_url: str = SCRAPER_BASE_URL) -> bool:
        """Take href when it is a listing URL and no link (or a weaker host) is set."""
        if not is_listing_url(href, base_url):
            return False
        link = canonicalize_link(href, base_url)
        if self.link and (is_preferred_host(self.link) or not is_preferred_host(link)):
            return False
        self.link = link
        self.sources["link"] = "anchor"
        return True

    def to_record(self, current_year: Optional[int] = None) -> ListingRecord:
        """
        Build the record.

        Raises:
            ExtractionRejected: When the draft fails the validity predicate or
                a record invariant.
        """
        title = self.title
        if not is_valid_listing(title, self.link, current_year):
            raise ExtractionRejected(f"Not a listing: title={title!r} link={self.link!r}")
        # Caller bounds may be wider than the record invariant
        year = self.year if is_plausible_year(self.year) else None
        kilometers = self.kilometers if is_plausible_kilometers(self.kilometers) else None
        return ListingRecord(
            title=title,
            link=self.link,
            price=self.price,
            year=year,
            kilometers=kilometers,
            location=self.location,
            thumbnail=self.thumbnail,
            seller=self.seller or Seller(),
            features=self.features,
            description=self.description,
            published_date=self.published_date,
            specifications=self.specifications,
            extracted_at=self.extracted_at or datetime.now(timezone.utc),
        )


class ListingExtractor(BaseScraper):
    """
    Extractor of one listing from a fragment.

    Attributes:
        base_url (str): Site root used to resolve relative links.
        current_year (Optional[int]): Reference year, today's year when None.
        min_year (int): Oldest plausible model year.
        strategies (Dict[str, Tuple[FieldStrategy, ...]]): Ordered strategies per field.
    """

    def __init__(
        self,
        base_url: str = SCRAPER_BASE_URL,
        current_year: Optional[int] = None,
        min_year: int = YEAR_MIN,
        strategies: Optional[Dict[str, Tuple[FieldStrategy, ...]]] = None,
    ):
        self.base_url = base_url
        self.current_year = current_year
        self.min_year = min_year
        self.strategies = strategies or FIELD_STRATEGIES

    def view(self, markup: Markup) -> FragmentView:
        return FragmentView(
            self.get_soup(markup), self.base_url, self.current_year, self.min_year
        )

    def extract_partial(
        self, markup: Markup, prior: Optional[PartialRecord] = None
    ) -> PartialRecord:
        """
        Run every field strategy over markup, filling only empty fields of prior.

        Args:
            markup (Markup): Fragment HTML or parsed element.
            prior (Optional[PartialRecord]): Draft to complete.

        Returns:
            PartialRecord: Completed draft (prior itself when given).
        """
        draft = prior if prior is not None else PartialRecord()
        view = self.view(markup)
        for name in FIELD_ORDER:
            if name == "link":
                # Keep an already found link unless a preferred-host link shows up
                candidate = resolve_field(self.strategies[name], view)
                if candidate:
                    draft.set_link(candidate.value, self.base_url)
            elif not draft.get(name):
                draft.offer(name, resolve_field(self.strategies[name], view))
            if name == "title":
                view.title = draft.title
        return draft

    def extract(
        self, markup: Markup, prior: Optional[ListingRecord] = None
    ) -> Optional[ListingRecord]:
        """
        Extract a listing record.

        Never raises: field failures leave the field empty and a candidate
        failing the validity predicate yields None.

        Args:
            markup (Markup): Fragment HTML, page text or parsed element.
            prior (Optional[ListingRecord]): Earlier extraction of the same
                listing whose fields take precedence.

        Returns:
            Optional[ListingRecord]: Record or None when rejected.
        """
        try:
            draft = PartialRecord.from_record(prior) if prior else None
            return self.extract_partial(markup, draft).to_record(self.current_year)
        except ExtractionRejected as e:
            logger.debug(f"Fragment rejected: {e}")
            return None
        except Exception as e:
            logger.warning(f"Unexpected extraction failure: {e}", exc_info=True)
            return None

    def parse(self, markup: Markup) -> Optional[ListingRecord]:
        return self.extract(markup)

    def enrich(self, record: ListingRecord, details: Dict[str, Any]) -> ListingRecord:
        """
        Fill empty fields of record with detail page data.

        Fields set by the summary pass are never overwritten; invalid detail
        values are ignored. Any failure returns record unchanged.

        Args:
            record (ListingRecord): Accepted record.
            details (Dict[str, Any]): Output of CarPageParser.extract_details.

        Returns:
            ListingRecord: Enriched record.
        """
        try:
            updates = dict(details or {})
            year = updates.get("year")
            if year is not None and not (
                is_plausible_year(year, self.current_year, self.min_year) and is_plausible_year(year)
            ):
                updates.pop("year")
            kilometers = updates.get("kilometers")
            if kilometers is not None and not is_plausible_kilometers(kilometers):
                updates.pop("kilometers")
            seller = updates.get("seller")
            if seller is not None and not isinstance(seller, Seller):
                updates["seller"] = Seller.from_dict(seller)
            candidate = ListingRecord(
                title=record.title,
                link=record.link,
                year=updates.get("year"),
                kilometers=updates.get("kilometers"),
                location=updates.get("location"),
                seller=updates.get("seller") or Seller(),
                features=tuple(updates.get("features") or ()),
                description=updates.get("description"),
                published_date=updates.get("published_date"),
                specifications=dict(updates.get("specifications") or {}),
            )
            return record.fill_from(candidate)
        except (ExtractionRejected, TypeError, ValueError) as e:
            logger.warning(f"Enrichment skipped for {record.link}: {e}")
            return record
