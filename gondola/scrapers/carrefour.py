"""Scraper for Carrefour (VTEX storefront)."""

from __future__ import annotations

from ..models import StoreName
from .vtex import VtexScraper


class CarrefourScraper(VtexScraper):
    """Discover categories and scrape products from Carrefour."""

    store = StoreName.CARREFOUR.value
    display_name = "Carrefour"
    url = "https://www.carrefour.com.ar/"
