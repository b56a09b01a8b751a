"""
The utils package contains helper utilities.

Modules:
    logger: Logging system setup and function for getting module logger.
    exporter: JSON exports of stored collections and batch reports.
"""
