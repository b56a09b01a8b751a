"""
Celery settings for managing scraping tasks.

This module initializes and configures a Celery instance for scheduling
and executing the batch scrape and the JSON export of stored collections.
Settings are loaded from the settings.py module.

The module automatically creates two periodic tasks:
1. Daily batch scrape of the configured brand/model queries
2. Daily JSON snapshot of every stored collection

Attributes:
    celery_app (Celery): Celery application instance.

    scraper_hour (int): Scraper start hour, extracted from SCRAPER_START_TIME.
    scraper_minute (int): Scraper start minute, extracted from SCRAPER_START_TIME.
    export_hour (int): Export start hour, extracted from EXPORT_TIME.
    export_minute (int): Export start minute, extracted from EXPORT_TIME.

Note:
    Celery requires a running Redis server specified in settings.
    Default timezone is set to 'America/Argentina/Buenos_Aires'.
    Worker is configured to restart after each task to avoid memory leaks.
"""

from celery import Celery
from celery.schedules import crontab

from mlautos.config.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    EXPORT_TIME,
    SCRAPER_START_TIME,
)

# Create Celery instance
celery_app = Celery(
    "mlautos_scraper",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["mlautos.tasks.scraping", "mlautos.tasks.export"],
)

# Celery settings
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Argentina/Buenos_Aires",
    enable_utc=True,
    worker_max_tasks_per_child=1,  # Restart worker after each task to avoid memory leaks
)

# Parse time from settings
scraper_hour, scraper_minute = map(int, SCRAPER_START_TIME.split(":"))
export_hour, export_minute = map(int, EXPORT_TIME.split(":"))

# Configure periodic tasks
celery_app.conf.beat_schedule = {
    "scrape-mercadolibre-daily": {
        "task": "mlautos.tasks.scraping.scrape_configured_queries",
        "schedule": crontab(hour=scraper_hour, minute=scraper_minute),
    },
    "export-collections-daily": {
        "task": "mlautos.tasks.export.create_collections_export",
        "schedule": crontab(hour=export_hour, minute=export_minute),
    },
}

if __name__ == "__main__":
    celery_app.start()
