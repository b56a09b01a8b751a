import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="mlautos-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP}/mlautos.db")
os.environ.setdefault("LOGS_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("EXPORTS_DIR", os.path.join(_TMP, "exports"))

import re
from typing import Callable, Dict, List, Optional, Union

import pytest
from sqlalchemy.orm import sessionmaker

from mlautos.core.database import create_db_engine, init_db
from mlautos.core.exceptions import FetchError
from mlautos.core.storage import KeyValueStore, SQLKeyValueStore
from mlautos.scraper.fetcher import FetchResponse

BASE_URL = "https://autos.mercadolibre.com.ar"
PAGE_SIZE = 48


def card_html(
    listing_id: int,
    title: str,
    price: str = "15.000.000",
    symbol: str = "$",
    year: str = "2020",
    km: str = "45.000 Km",
    location: str = "Palermo - Capital Federal",
) -> str:
    return f"""
    <li class="ui-search-layout__item">
      <div class="poly-card">
        <div class="poly-card__portada">
          <img data-src="https://http2.mlstatic.com/D_{listing_id}.webp" src="data:image/gif;base64,R0lG">
        </div>
        <div class="poly-card__content">
          <h3 class="poly-component__title-wrapper">
            <a class="poly-component__title"
               href="https://auto.mercadolibre.com.ar/MLA-{listing_id}-car-_JM#polycard_client=search">{title}</a>
          </h3>
          <div class="poly-component__price">
            <span class="andes-money-amount">
              <span class="andes-money-amount__currency-symbol">{symbol}</span>
              <span class="andes-money-amount__fraction">{price}</span>
            </span>
          </div>
          <ul class="poly-attributes_list">
            <li class="poly-attributes_list__item">{year}</li>
            <li class="poly-attributes_list__item">{km}</li>
          </ul>
          <span class="poly-component__location">{location}</span>
        </div>
      </div>
    </li>
    """


NAVIGATION_CARD = """
    <li class="ui-search-layout__item">
      <div class="poly-card">
        <h3 class="poly-component__title">Inicio | Ofertas | Ayuda</h3>
        <a href="https://www.mercadolibre.com.ar/ayuda">Ayuda</a>
      </div>
    </li>
"""


def results_page(
    cards: List[str],
    current_page: int = 1,
    has_next: bool = True,
    end_marker: bool = False,
) -> str:
    nav = ""
    if has_next:
        offset = current_page * PAGE_SIZE + 1
        nav = f"""
        <nav class="andes-pagination">
          <li class="andes-pagination__button andes-pagination__button--next">
            <a href="{BASE_URL}/toyota/corolla_Desde_{offset}" title="Siguiente">Siguiente</a>
          </li>
        </nav>
        """
    end = "<p class='ui-search-rescue__title'>No hay más resultados</p>" if end_marker else ""
    return f"""
    <html><body>
      <section class="ui-search-results">
        <ol class="ui-search-layout">{''.join(cards)}</ol>
      </section>
      {nav}{end}
    </body></html>
    """


def page_index_of(url: str) -> int:
    match = re.search(r"_Desde_(\d+)", url)
    return (int(match.group(1)) - 1) // PAGE_SIZE + 1 if match else 1


def numbered_page(url: str, cars_per_page: int = 6) -> str:
    """Results page with distinct ids per page and a next control."""
    index = page_index_of(url)
    cards = [
        card_html(1000 + index * 100 + i, f"Toyota Corolla Xei {2015 + i}")
        for i in range(cars_per_page)
    ]
    return results_page(cards, current_page=index)


class FakeFetcher:
    """Fetcher serving pages from a function of the URL; exceptions are raised."""

    def __init__(self, responder: Callable[[str], Union[str, Exception]]):
        self.responder = responder
        self.calls: List[tuple] = []

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        self.calls.append((url, dict(headers or {})))
        body = self.responder(url)
        if isinstance(body, Exception):
            raise body
        return FetchResponse(status=200, body=body, url=url)


def failing_on(page: int, responder=numbered_page):
    def respond(url):
        if page_index_of(url) == page:
            return FetchError(url, f"HTTP 500 fetching {url}", status=500)
        return responder(url)

    return respond


class MemoryStore(KeyValueStore):
    def __init__(self):
        self.data: Dict[str, dict] = {}

    def get(self, key):
        return self.data.get(key)

    def put(self, key, value):
        self.data[key] = value

    def list(self):
        return sorted(self.data)

    def delete(self, key):
        return self.data.pop(key, None) is not None


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path}/kv.db")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SQLKeyValueStore(session_factory)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)

    return _sleep
