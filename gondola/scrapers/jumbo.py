"""Scraper for Jumbo (VTEX storefront)."""

from __future__ import annotations

from ..models import StoreName
from .vtex import VtexScraper


class JumboScraper(VtexScraper):
    """Discover categories and scrape products from Jumbo."""

    store = StoreName.JUMBO.value
    display_name = "Jumbo"
    url = "https://www.jumbo.com.ar/"
