"""Scraper for Vea (VTEX storefront)."""

from __future__ import annotations

from ..models import StoreName
from .vtex import VtexScraper


class VeaScraper(VtexScraper):
    """Discover categories and scrape products from Vea."""

    store = StoreName.VEA.value
    display_name = "Vea"
    url = "https://www.vea.com.ar/"
