"""
The config package contains application settings.

This package includes all configuration files for the MercadoLibre autos
scraper, providing centralized access to database, Redis, Celery, logging
settings and scraping parameters (budgets, delays, heuristic thresholds).

Modules:
    settings: Main application settings, including paths, database and logging parameters.
    celery_config: Celery settings for scheduling the batch scrape and export tasks.
"""
