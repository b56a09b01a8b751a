"""
The scraper package contains data collection components.

This package implements asynchronous scraping of MercadoLibre autos search
results. Implementation uses a combination of httpx for HTTP requests and
BeautifulSoup for HTML parsing.

Modules:
    base: Abstract base class for all parsers.
    fetcher: Fetch collaborator and browser-like headers.
    pagination: Next-page detection and the pagination controller.
    dedup: Deduplication of scraped listings.
    mercadolibre: Session orchestrator for single queries and batches.

Subpackages:
    parsers: Specialized parsers for different types of pages:
        - listing: Record extractor for one listing fragment.
        - search_page: Search results page parser.
        - car_page: Listing detail page parser (enrichment).
"""
