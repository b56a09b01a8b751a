"""
Root package of the MercadoLibre autos scraper application.

This package contains all application components for collecting vehicle
listings from autos.mercadolibre.com.ar, including the scraper, Celery
tasks, the collections store and utilities.

Package structure:
    config: Configuration modules (settings, Celery configuration).
    core: Base components (data models, database, collections store, queries).
    scraper: Data collection components (parsers, pagination, orchestrator).
    tasks: Celery tasks for automation.
    utils: Helper utilities (logging, JSON exports).

Attributes:
    celery_app: Celery application instance imported from configuration.
"""

from mlautos.config.celery_config import celery_app

__all__ = ["celery_app"]
