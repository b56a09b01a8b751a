"""
Main application settings.

This module contains all main configuration parameters for the MercadoLibre
autos scraper. Settings are loaded from environment variables using
python-dotenv, with default values in case of missing variables.

Attributes:
    BASE_DIR (Path): Base application directory.
    EXPORTS_DIR (Path): Directory for storing JSON snapshots of stored collections.
    LOGS_DIR (Path): Directory for storing application logs.

    POSTGRES_DB (str): PostgreSQL database name.
    POSTGRES_USER (str): PostgreSQL username.
    POSTGRES_PASSWORD (str): PostgreSQL user password.
    POSTGRES_HOST (str): PostgreSQL host.
    POSTGRES_PORT (str): PostgreSQL port.
    DATABASE_URL (str): Full URL for database connection.

    REDIS_HOST (str): Redis host.
    REDIS_PORT (str): Redis port.
    REDIS_URL (str): Full URL for Redis connection.

    CELERY_BROKER_URL (str): Message broker URL for Celery.
    CELERY_RESULT_BACKEND (str): Result backend URL for Celery.

    SCRAPER_BASE_URL (str): Root of the vehicle search site.
    SCRAPER_PAGE_SIZE (int): Number of listings per search page (offset step).
    SCRAPER_QUERIES (list): Brand/model pairs scraped by the scheduled batch.
    SCRAPER_START_TIME (str): Daily batch start time in "HH:MM" format.
    EXPORT_TIME (str): Daily JSON export time in "HH:MM" format.
    MAX_PAGES_TO_PARSE (int): Page ceiling per query (0 - no limit).
    MAX_ELAPSED_MS (int): Wall-clock budget per query in ms (0 - no limit).
    PAGE_DELAY_MIN_MS (int): Lower bound of the politeness delay between pages.
    PAGE_DELAY_MAX_MS (int): Upper bound of the politeness delay between pages.
    QUERY_DELAY_MS (int): Delay between queries of a batch.
    FETCH_TIMEOUT_SECONDS (float): Hard timeout of a single page fetch.
    FETCH_RETRIES (int): Attempts per page fetch on 503/429 answers.
    FETCH_RETRY_DELAY_SECONDS (float): Base wait before a fetch retry.
    DETAIL_DELAY_MS (int): Delay between detail page fetches during enrichment.
    MIN_RESULTS_PER_PAGE (int): Pages with fewer records are treated as the last one.
    OVERLAP_THRESHOLD (float): Share of already seen ids that ends pagination.
    YEAR_MIN (int): Oldest plausible model year.
    DEDUP_POLICY (str): "first" or "last" occurrence wins on duplicate ids.
    DEDUP_ENRICH (bool): Let duplicates fill empty fields of the kept record.
    KEEP_UNIDENTIFIED (bool): Keep records without an id (not deduplicated).
    ENRICH_DETAILS (bool): Visit detail pages to fill missing fields.

    LOG_LEVEL (str): Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    LOG_FILE (str): Log file name.
    LOG_FORMAT (str): Log entry format.
    LOG_DATE_FORMAT (str): Date and time format in logs.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _parse_queries(raw: str) -> list:
    """Parse "brand:model,brand:model" into a list of query dicts."""
    queries = []
    for pair in raw.split(","):
        brand, _, model = pair.strip().partition(":")
        if brand and model:
            queries.append({"brand": brand.strip(), "model": model.strip()})
    return queries


# Base paths
BASE_DIR = Path(os.getenv("BASE_DIR", str(Path(__file__).resolve().parents[2])))
EXPORTS_DIR = Path(os.getenv("EXPORTS_DIR", str(BASE_DIR / "exports")))
LOGS_DIR = Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))

# Create directories if they don't exist
EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Database settings
POSTGRES_DB = os.getenv("POSTGRES_DB", "mlautos")
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres_password")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Redis settings
REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = os.getenv("REDIS_PORT", "6379")
REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}/0"

# Celery settings
CELERY_BROKER_URL = REDIS_URL
CELERY_RESULT_BACKEND = REDIS_URL

# Scraper settings
SCRAPER_BASE_URL = os.getenv("SCRAPER_BASE_URL", "https://autos.mercadolibre.com.ar")
SCRAPER_PAGE_SIZE = int(os.getenv("SCRAPER_PAGE_SIZE", "48"))
SCRAPER_QUERIES = _parse_queries(
    os.getenv(
        "SCRAPER_QUERIES",
        "toyota:corolla,toyota:yaris,toyota:hilux,ford:focus,ford:fiesta,ford:ranger,"
        "chevrolet:cruze,chevrolet:onix,volkswagen:gol,volkswagen:polo,honda:civic,"
        "honda:fit,nissan:march,nissan:sentra,peugeot:208,peugeot:307,renault:clio,"
        "renault:sandero,fiat:palio,fiat:uno",
    )
)
SCRAPER_START_TIME = os.getenv("SCRAPER_START_TIME", "12:00")
EXPORT_TIME = os.getenv("EXPORT_TIME", "00:00")
MAX_PAGES_TO_PARSE = int(os.getenv("MAX_PAGES_TO_PARSE", "0"))  # 0 - no limit
MAX_ELAPSED_MS = int(os.getenv("MAX_ELAPSED_MS", "600000"))  # 0 - no limit
PAGE_DELAY_MIN_MS = int(os.getenv("PAGE_DELAY_MIN_MS", "1500"))
PAGE_DELAY_MAX_MS = int(os.getenv("PAGE_DELAY_MAX_MS", "3000"))
QUERY_DELAY_MS = int(os.getenv("QUERY_DELAY_MS", "5000"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
FETCH_RETRIES = int(os.getenv("FETCH_RETRIES", "3"))
FETCH_RETRY_DELAY_SECONDS = float(os.getenv("FETCH_RETRY_DELAY_SECONDS", "5"))
DETAIL_DELAY_MS = int(os.getenv("DETAIL_DELAY_MS", "1000"))
MIN_RESULTS_PER_PAGE = int(os.getenv("MIN_RESULTS_PER_PAGE", "5"))
OVERLAP_THRESHOLD = float(os.getenv("OVERLAP_THRESHOLD", "0.8"))
YEAR_MIN = int(os.getenv("YEAR_MIN", "1990"))
DEDUP_POLICY = os.getenv("DEDUP_POLICY", "first")
DEDUP_ENRICH = _get_bool("DEDUP_ENRICH", "false")
KEEP_UNIDENTIFIED = _get_bool("KEEP_UNIDENTIFIED", "true")
ENRICH_DETAILS = _get_bool("ENRICH_DETAILS", "false")

# Logging settings
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "scraper.log")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
