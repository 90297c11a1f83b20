"""Scraper for Disco (VTEX storefront)."""

from __future__ import annotations

from ..models import StoreName
from .vtex import VtexScraper


class DiscoScraper(VtexScraper):
    """Discover categories and scrape products from Disco."""

    store = StoreName.DISCO.value
    display_name = "Disco"
    url = "https://www.disco.com.ar/"
