"""Fuzzy string matching and confidence scoring for taxonomy mapping."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

from rapidfuzz.distance import Levenshtein

# Fixed policy weights for the confidence blend.
NAME_WEIGHT = 0.5
FREQUENCY_WEIGHT = 0.2
EXTRACTION_WEIGHT = 0.3

# Frequency at which the frequency component saturates.
FREQUENCY_SATURATION = 100

_NON_WORD_RE = re.compile(r"[^\w]+", re.UNICODE)
_UNDERSCORE_RE = re.compile(r"_+")
_SPACES_RE = re.compile(r"\s+")


def similarity(a: str, b: str) -> float:
    """
    Normalized Levenshtein similarity between two strings.

    Comparison is case-insensitive. Two empty strings are identical.

    Returns:
        Float in [0, 1], where 1.0 means identical after lower-casing
    """
    a_lower = a.lower()
    b_lower = b.lower()
    longest = max(len(a_lower), len(b_lower))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a_lower, b_lower) / longest


def normalize_label(text: str) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    spaced = _UNDERSCORE_RE.sub(" ", _NON_WORD_RE.sub(" ", stripped))
    return _SPACES_RE.sub(" ", spaced).strip()


def label_similarity(a: str, b: str) -> float:
    """Similarity of the normalized forms, so "Coca-Cola" matches "Coca Cola"."""
    return similarity(normalize_label(a), normalize_label(b))


def best_similarity(label: str, names: Iterable[str]) -> float:
    """Highest label similarity against an entity's name and synonyms."""
    return max((label_similarity(label, name) for name in names if name), default=0.0)


def score(
    name_similarity: float,
    frequency: int,
    extraction_confidence: float,
) -> float:
    """
    Blend name similarity, extraction frequency and extraction confidence.

    Args:
        name_similarity: Similarity in [0, 1] between extracted label and target name
        frequency: Number of sampled products the label was seen in
        extraction_confidence: Confidence in [0, 1] assigned by the extractor

    Returns:
        Combined confidence in [0, 1]
    """
    frequency_component = min(max(frequency, 0) / FREQUENCY_SATURATION, 1.0)
    name_component = min(max(name_similarity, 0.0), 1.0)
    extraction_component = min(max(extraction_confidence, 0.0), 1.0)
    return (
        NAME_WEIGHT * name_component
        + FREQUENCY_WEIGHT * frequency_component
        + EXTRACTION_WEIGHT * extraction_component
    )


def score_label(
    label_name: str,
    frequency: int,
    extraction_confidence: float,
    target_names: Iterable[str],
) -> float:
    """Score an extracted label against a target entity's names."""
    return score(best_similarity(label_name, target_names), frequency, extraction_confidence)
