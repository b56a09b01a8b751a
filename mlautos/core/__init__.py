"""
The core package contains base application components.

This package includes the data model of scraped listings and sessions, the
error taxonomy and the persistence of scraped collections.

Modules:
    models: Listing, session and ORM model definitions.
    exceptions: Scraper error classes.
    listing_urls: Listing URL patterns, id parsing and page URLs.
    database: Engine, session factory and initialization of the database.
    storage: Key-value store of collections and merge-on-store.
    queries: Query and report operations over stored collections.
"""
