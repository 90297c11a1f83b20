"""Shared helpers for scrapers and storage."""

from __future__ import annotations

import re
from datetime import datetime, UTC

from .matching import normalize_label

CURRENCY_MAP = {
    "ars": "ARS",
    "u$s": "USD",
    "usd": "USD",
    "$": "ARS",
}


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


def slugify(text: str) -> str:
    """URL-safe slug: "Lácteos y Frescos" becomes "lacteos-y-frescos"."""
    return normalize_label(text).replace(" ", "-")


def parse_price(price_text: str | float | int | None) -> tuple[float | None, str | None]:
    """Parse price text into (amount, currency).

    Handles formats like:
    - "$ 1.299,00"
    - "$1.299"
    - "u$s 19.95"
    - "1299.5"
    """
    if price_text is None:
        return None, None
    if isinstance(price_text, (int, float)):
        return float(price_text), None

    text = price_text.strip().lower()
    if not text:
        return None, None

    # Find currency
    currency = None
    for symbol, normalized in CURRENCY_MAP.items():
        if symbol in text:
            currency = normalized
            text = text.replace(symbol, "")
            break

    # Remove common prefixes
    text = re.sub(r"^(desde|antes|precio)\s+", "", text.strip())

    # Extract numeric chunk and normalize thousands/decimal separators.
    if not (match := re.search(r"[\d][\d\s.,]*", text)):
        return None, currency

    num = match.group(0).replace(" ", "").replace("\xa0", "").rstrip(".,")

    last_comma = num.rfind(",")
    last_dot = num.rfind(".")

    if last_comma != -1 and last_dot != -1:
        # Assume last separator is decimal; the other is thousands.
        if last_comma > last_dot:
            num = num.replace(".", "").replace(",", ".")
        else:
            num = num.replace(",", "")
    elif last_comma != -1:
        digits_after = len(num) - last_comma - 1
        if 1 <= digits_after <= 2:
            num = num.replace(".", "").replace(",", ".")
        else:
            num = num.replace(",", "")
    elif last_dot != -1:
        digits_after = len(num) - last_dot - 1
        if 1 <= digits_after <= 2:
            num = num.replace(",", "")
        else:
            num = num.replace(".", "")

    try:
        return float(num), currency
    except ValueError:
        return None, currency
