"""
Celery tasks package for scraping and exports.

This package contains Celery tasks that are executed on schedule or can be
run manually: the batch scrape of configured brand/model queries and the
JSON export of stored collections.

Modules:
    scraping: Tasks for scheduled and manual scraping.
    export: Tasks for scheduled and manual collection exports.
"""
