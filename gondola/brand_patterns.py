"""Brands known ahead of time: national brands and each chain's private labels."""

from __future__ import annotations

from .matching import normalize_label
from .models import StoreName

# National brands stocked by every chain
COMMON_BRANDS = [
    "Coca Cola",
    "Pepsi",
    "Nestlé",
    "Unilever",
    "Procter & Gamble",
    "Danone",
    "Mondelez",
    "Mars",
    "Kraft",
    "General Mills",
    "Kellogg's",
    "Frito Lay",
    "Bimbo",
    "Arcor",
    "Molinos",
    "La Serenísima",
    "Sancor",
    "Williner",
    "Ilolay",
    "Verónica",
    "Mastellone",
]

# Store brands, keyed by store
PRIVATE_LABELS: dict[str, list[str]] = {
    StoreName.COTO.value: ["Coto", "CotoMax", "Coto Selection", "Coto Basics"],
    StoreName.CARREFOUR.value: ["Carrefour", "Carrefour Bio", "Carrefour Discount", "Carrefour Selection"],
    StoreName.JUMBO.value: ["Jumbo", "Jumbo Selection", "Jumbo Bio", "Jumbo Basics", "Cuisine & Co"],
    StoreName.DIA.value: ["Dia", "Dia Basics", "Dia Selection"],
    StoreName.VEA.value: ["Vea", "Vea Selection", "Vea Bio", "Cuisine & Co"],
    StoreName.DISCO.value: ["Disco", "Disco Selection", "Disco Bio", "Cuisine & Co"],
    StoreName.LA_ANONIMA.value: ["La Anónima", "Best"],
}


def known_brands(store: str | None = None) -> list[dict]:
    """
    Known brands as dictionary entries, private labels of `store` first.

    Args:
        store: Store whose private labels are included; None for national brands only
    """
    entries = [{"name": name} for name in PRIVATE_LABELS.get(store or "", [])]
    entries.extend({"name": name} for name in COMMON_BRANDS)
    return entries


def is_private_label(store: str, brand: str) -> bool:
    key = normalize_label(brand)
    return any(normalize_label(label) == key for label in PRIVATE_LABELS.get(store, []))
