"""Scraper orchestration, taxonomy mapping and request security for supermarket price comparison."""

__version__ = "0.1.0"
