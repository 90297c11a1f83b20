"""Scraper for Día (VTEX storefront)."""

from __future__ import annotations

from ..models import StoreName
from .vtex import VtexScraper


class DiaScraper(VtexScraper):
    """Discover categories and scrape products from Día."""

    store = StoreName.DIA.value
    display_name = "Día"
    url = "https://diaonline.supermercadosdia.com.ar/"
