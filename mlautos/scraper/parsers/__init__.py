"""
The parsers package contains HTML parsers of MercadoLibre autos pages.

Modules:
    listing: Record extractor for one listing fragment.
    search_page: Search results page parser.
    car_page: Listing detail page parser (enrichment).
"""
