"""Extraction of candidate brand and category labels from scraped products.

Brands are segmented from product titles in three passes, first hit wins:

1. Dictionary: a canonical brand, a national brand or one of the store's
   private labels appears in the title as a whole-word n-gram, or a leading
   n-gram is a close fuzzy match (typos, "CocaCola").
2. Store field: the brand the store itself reports for the product.
3. Leading prefix: the title's opening words before the first number, unit or
   stop word, extended while other titles share the longer prefix.

Categories are the leaf of each product's category path, plus leaf categories
discovered by crawl jobs.
"""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import TYPE_CHECKING, Iterable

from .brand_patterns import is_private_label, known_brands
from .errors import PartialExtractionFailure, ValidationError
from .matching import normalize_label, similarity
from .models import STORE_DEFAULTS, ExtractedLabel, LabelKind

if TYPE_CHECKING:
    from .db import CatalogDatabase

logger = logging.getLogger(__name__)

ALL_SCOPE = "all"

STOP_WORDS = {
    "de", "la", "el", "con", "sin", "para", "por", "en", "y", "e", "o", "u",
    "un", "una", "unos", "unas", "del", "al", "los", "las", "se", "su", "sus",
}
UNIT_WORDS = {
    "kg", "g", "gr", "grs", "mg", "ml", "cc", "l", "lt", "lts", "mm", "cm", "m",
    "x", "pack", "packs", "unidad", "unidades", "ud", "uds", "un",
    "litro", "litros", "mililitro", "mililitros", "gramos", "kilo", "kilos",
}

DICTIONARY_CONFIDENCE = 0.9
PRIVATE_LABEL_CONFIDENCE = 0.95
STORE_FIELD_CONFIDENCE = 0.9
HEURISTIC_CONFIDENCE = 0.6
FUZZY_BRAND_THRESHOLD = 0.85
MAX_PREFIX_WORDS = 3
MIN_PREFIX_SUPPORT = 2
# Fuzzy brand matches are only tried near the start of the title
FUZZY_WINDOW = 4
MAX_EXAMPLES = 5

CATEGORY_BASE_CONFIDENCE = 0.6
CATEGORY_CONFIDENCE_STEP = 0.1
CATEGORY_MAX_CONFIDENCE = 0.9


@dataclass
class Observation:
    """One label occurrence in one product."""

    name: str
    normalized: str
    store: str
    confidence: float
    example: str | None


def _is_boundary(token: str) -> bool:
    return any(ch.isdigit() for ch in token) or token in STOP_WORDS or token in UNIT_WORDS


def leading_run(tokens: list[str]) -> list[str]:
    """Opening tokens before the first number, unit or stop word (at most 3)."""
    run = []
    for token in tokens:
        if _is_boundary(token):
            break
        run.append(token)
        if len(run) == MAX_PREFIX_WORDS:
            break
    return run


def raw_prefix(title: str, token_count: int) -> str:
    """The title's own words that make up the first `token_count` normalized tokens."""
    taken: list[str] = []
    count = 0
    for word in title.split():
        width = len(normalize_label(word).split())
        if count + width > token_count:
            break
        taken.append(word)
        count += width
        if count == token_count:
            break
    if count == token_count and taken:
        return " ".join(taken).strip(" -,.")
    return " ".join(normalize_label(title).split()[:token_count]).title()


class BrandDictionary:
    """Canonical brand names indexed for whole-word and fuzzy lookups."""

    def __init__(self, brands: Iterable[dict]):
        self.by_normalized: dict[str, str] = {}
        for brand in brands:
            for name in brand.get("names") or [brand["name"]]:
                key = normalize_label(name)
                if key:
                    self.by_normalized.setdefault(key, brand["name"])
        self._lengths = sorted({len(k.split()) for k in self.by_normalized}, reverse=True)

    def __bool__(self) -> bool:
        return bool(self.by_normalized)

    def match(self, tokens: list[str]) -> str | None:
        """Canonical brand name found in the tokens, longest match first."""
        for length in self._lengths:
            for start in range(0, len(tokens) - length + 1):
                gram = " ".join(tokens[start:start + length])
                if gram in self.by_normalized:
                    return self.by_normalized[gram]

        best_name = None
        best_score = FUZZY_BRAND_THRESHOLD
        window = tokens[:FUZZY_WINDOW]
        for key, name in self.by_normalized.items():
            key_len = len(key.split())
            for length in {max(1, key_len - 1), key_len, key_len + 1}:
                for start in range(0, len(window) - length + 1):
                    gram = " ".join(window[start:start + length])
                    # Cheap pruning before the edit-distance matrix
                    if gram[0] != key[0] or abs(len(gram) - len(key)) > len(key) * 0.3:
                        continue
                    sim = similarity(gram, key)
                    if sim >= best_score:
                        best_name, best_score = name, sim
        return best_name


def extract_brand_observations(
    store: str,
    samples: list[dict],
    dictionary: BrandDictionary,
) -> list[Observation]:
    """Segment one brand label per sampled product."""
    tokenized = [(s, normalize_label(s.get("title") or "").split()) for s in samples]

    # Support of each leading prefix across the sample
    support: Counter[str] = Counter()
    for _, tokens in tokenized:
        run = leading_run(tokens)
        for k in range(1, len(run) + 1):
            support[" ".join(run[:k])] += 1

    observations = []
    for sample, tokens in tokenized:
        title = (sample.get("title") or "").strip()
        if not tokens:
            continue

        if dictionary:
            canonical = dictionary.match(tokens)
            if canonical:
                confidence = PRIVATE_LABEL_CONFIDENCE if is_private_label(store, canonical) else DICTIONARY_CONFIDENCE
                observations.append(
                    Observation(canonical, normalize_label(canonical), store, confidence, title)
                )
                continue

        store_brand = (sample.get("store_brand") or "").strip()
        if store_brand and normalize_label(store_brand):
            observations.append(
                Observation(store_brand, normalize_label(store_brand), store, STORE_FIELD_CONFIDENCE, title)
            )
            continue

        run = leading_run(tokens)
        if not run:
            continue
        head_support = support[run[0]]
        k = 1
        for length in range(2, len(run) + 1):
            prefix_support = support[" ".join(run[:length])]
            if prefix_support >= MIN_PREFIX_SUPPORT and prefix_support == head_support:
                k = length
            else:
                break
        observations.append(
            Observation(raw_prefix(title, k), " ".join(run[:k]), store, HEURISTIC_CONFIDENCE, title)
        )
    return observations


def extract_category_observations(
    store: str,
    samples: list[dict],
    discovered_leaves: list[dict],
) -> list[Observation]:
    """Category labels from product paths, plus discovered leaves no product references."""
    observations = []
    seen: set[str] = set()
    for sample in samples:
        path = sample.get("category_path") or []
        if not path:
            continue
        leaf = str(path[-1]).strip()
        key = normalize_label(leaf)
        if not key:
            continue
        seen.add(key)
        observations.append(
            Observation(leaf, key, store, CATEGORY_BASE_CONFIDENCE, sample.get("title"))
        )
    for leaf in discovered_leaves:
        key = normalize_label(leaf["name"])
        if key and key not in seen:
            seen.add(key)
            observations.append(Observation(leaf["name"], key, store, CATEGORY_BASE_CONFIDENCE, None))
    return observations


def aggregate(kind: str, scope: str, observations: list[Observation]) -> list[ExtractedLabel]:
    """Group observations by normalized label into frequency-ranked labels."""
    groups: dict[str, list[Observation]] = defaultdict(list)
    for obs in observations:
        groups[obs.normalized].append(obs)

    now = datetime.now(UTC)
    labels = []
    for key, group in groups.items():
        # Most common spelling wins, ties go to the first seen
        spellings = Counter(o.name for o in group)
        name = max(spellings, key=lambda s: (spellings[s], -[o.name for o in group].index(s)))
        frequency = len(group)
        if kind == LabelKind.CATEGORY.value:
            confidence = min(
                CATEGORY_BASE_CONFIDENCE + CATEGORY_CONFIDENCE_STEP * (frequency - 1),
                CATEGORY_MAX_CONFIDENCE,
            )
        else:
            confidence = sum(o.confidence for o in group) / frequency
        examples: list[str] = []
        for obs in group:
            if obs.example and obs.example not in examples:
                examples.append(obs.example)
            if len(examples) == MAX_EXAMPLES:
                break
        labels.append(
            ExtractedLabel(
                kind=kind,
                name=name,
                normalized=key,
                frequency=frequency,
                sources=sorted({o.store for o in group}),
                confidence=round(confidence, 4),
                examples=examples,
                last_extracted=now,
                scope=scope,
            )
        )
    labels.sort(key=lambda label: (-label.frequency, label.normalized))
    return labels


class ExtractionJob:
    """Runs label extraction for one scope and replaces that scope's previous output."""

    def __init__(self, db: CatalogDatabase, sample_size: int = 1000):
        self.db = db
        self.sample_size = sample_size

    def run(self, kind: str, scope: str = ALL_SCOPE, sample_size: int | None = None) -> dict:
        """
        Extract labels of a kind from a store (or every store with products).

        A store that fails is reported in `errors` and the run continues with
        the other stores. Labels a failed store contributed to the previous
        run are carried over, so a transient failure never empties the scope.

        Args:
            kind: "brand" or "category"
            scope: Store name or "all"
            sample_size: Products sampled per store (defaults to the job's)

        Returns:
            Dict with scope, kind, extractedCount, storesProcessed and errors
        """
        if kind not in {k.value for k in LabelKind}:
            raise ValidationError(f"Unknown label kind '{kind}'")
        if scope != ALL_SCOPE and scope not in STORE_DEFAULTS:
            raise ValidationError(f"Unknown store '{scope}'")
        limit = sample_size or self.sample_size
        if limit < 1:
            raise ValidationError("sampleSize must be >= 1")

        stores = self.db.stores_with_products() if scope == ALL_SCOPE else [scope]
        canonical = self.db.list_entities(LabelKind.BRAND.value) if kind == LabelKind.BRAND.value else []

        observations: list[Observation] = []
        failures: list[PartialExtractionFailure] = []
        processed = 0
        for store in stores:
            try:
                observations.extend(self._extract_store(kind, store, limit, canonical))
                processed += 1
            except Exception as exc:
                failures.append(PartialExtractionFailure(store, str(exc)))
                logger.warning(f"Extraction of {kind} labels failed for {store}: {exc}")

        labels = aggregate(kind, scope, observations)
        if failures:
            labels = self._carry_over(kind, scope, labels, {f.store for f in failures})
        self.save_labels(kind, scope, labels)
        logger.info(
            f"Extracted {len(labels)} {kind} labels for scope {scope} "
            f"({processed}/{len(stores)} stores)"
        )
        return {
            "scope": scope,
            "kind": kind,
            "extractedCount": len(labels),
            "storesProcessed": processed,
            "errors": [{"store": f.store, "message": f.reason} for f in failures],
        }

    def _extract_store(
        self,
        kind: str,
        store: str,
        limit: int,
        canonical: list[dict],
    ) -> list[Observation]:
        samples = self.db.sample_products(store, limit)
        if kind == LabelKind.BRAND.value:
            # Operator brands first so their spelling wins over the built-in list
            dictionary = BrandDictionary([*canonical, *known_brands(store)])
            return extract_brand_observations(store, samples, dictionary)
        leaves = self.db.list_store_categories(store, leaves_only=True)
        return extract_category_observations(store, samples, leaves)

    def _carry_over(
        self,
        kind: str,
        scope: str,
        labels: list[ExtractedLabel],
        failed: set[str],
    ) -> list[ExtractedLabel]:
        """Merge in the previous labels of (kind, scope) that failed stores contributed to."""
        fresh = {label.normalized: label for label in labels}
        for previous in list_labels(self.db, kind, scope if scope != ALL_SCOPE else None):
            if previous.scope != scope or not failed.intersection(previous.sources):
                continue
            current = fresh.get(previous.normalized)
            if current is None:
                fresh[previous.normalized] = previous
            else:
                current.sources = sorted(set(current.sources) | (failed & set(previous.sources)))
        return sorted(fresh.values(), key=lambda label: (-label.frequency, label.normalized))

    def save_labels(self, kind: str, scope: str, labels: list[ExtractedLabel]) -> None:
        """Replace all labels of (kind, scope) in one transaction."""
        with self.db.transaction() as conn:
            conn.execute(
                "DELETE FROM extracted_labels WHERE kind = ? AND scope = ?",
                (kind, scope),
            )
            conn.executemany(
                """
                INSERT INTO extracted_labels (
                    kind, scope, normalized, name, frequency, sources,
                    confidence, examples, last_extracted
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        kind,
                        scope,
                        label.normalized,
                        label.name,
                        label.frequency,
                        json.dumps(label.sources),
                        label.confidence,
                        json.dumps(label.examples, ensure_ascii=False),
                        label.last_extracted.isoformat(),
                    )
                    for label in labels
                ],
            )


def list_labels(db: CatalogDatabase, kind: str, store: str | None = None) -> list[ExtractedLabel]:
    """
    Extracted labels of a kind, optionally restricted to one store's scope.

    A store's scope covers labels extracted for that store and labels of an
    "all" run that the store contributed to. Store-specific rows win on
    duplicates.
    """
    with db.connect() as conn:
        rows = conn.execute(
            """
            SELECT * FROM extracted_labels WHERE kind = ?
            ORDER BY CASE WHEN scope = ? THEN 0 ELSE 1 END, frequency DESC, normalized
            """,
            (kind, ALL_SCOPE if store is None else store),
        ).fetchall()

    labels: dict[str, ExtractedLabel] = {}
    for row in rows:
        sources = json.loads(row["sources"])
        if store is not None and row["scope"] != store:
            if row["scope"] != ALL_SCOPE or store not in sources:
                continue
        if row["normalized"] in labels:
            continue
        labels[row["normalized"]] = ExtractedLabel(
            id=row["id"],
            kind=row["kind"],
            scope=row["scope"],
            name=row["name"],
            normalized=row["normalized"],
            frequency=row["frequency"],
            sources=sources,
            confidence=row["confidence"],
            examples=json.loads(row["examples"]),
            last_extracted=datetime.fromisoformat(row["last_extracted"]),
        )
    return sorted(labels.values(), key=lambda label: (-label.frequency, label.normalized))
