"""Persistence of label-to-entity mappings and batch auto-mapping."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from .errors import ConflictError, NotFoundError, ValidationError
from .extraction import ALL_SCOPE, list_labels
from .matching import best_similarity, normalize_label, score, score_label
from .models import STORE_DEFAULTS, LabelKind, MappingMethod
from .utils import utcnow_iso

if TYPE_CHECKING:
    from .db import CatalogDatabase

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 50

# Upsert used by auto-map. Validated and non-auto rows are left alone, and an
# auto row is only replaced by a strictly better candidate.
_AUTO_UPSERT_SQL = """
    INSERT INTO mappings (
        kind, extracted_label, normalized_label, entity_id, confidence,
        method, store_name, mapped_at, validated
    )
    VALUES (?, ?, ?, ?, ?, 'auto', ?, ?, 0)
    ON CONFLICT(kind, normalized_label, store_name) DO UPDATE SET
        extracted_label = excluded.extracted_label,
        entity_id = excluded.entity_id,
        confidence = excluded.confidence,
        mapped_at = excluded.mapped_at
    WHERE mappings.validated = 0
      AND mappings.method = 'auto'
      AND mappings.confidence < excluded.confidence
"""


def mapping_to_dict(row: sqlite3.Row | dict) -> dict:
    """Convert a mapping row to the dict shape the admin panel expects."""
    return {
        "id": row["id"],
        "kind": row["kind"],
        "extractedLabel": row["extracted_label"],
        "normalizedLabel": row["normalized_label"],
        "mappedEntityId": row["entity_id"],
        "confidence": row["confidence"],
        "method": row["method"],
        "storeName": row["store_name"],
        "mappedAt": row["mapped_at"],
        "validated": bool(row["validated"]),
    }


def _check_kind(kind: str) -> None:
    if kind not in {k.value for k in LabelKind}:
        raise ValidationError(f"Unknown kind '{kind}'")


def _check_store(store: str, allow_all: bool = True) -> None:
    if store in STORE_DEFAULTS or (allow_all and store == ALL_SCOPE):
        return
    raise ValidationError(f"Unknown store '{store}'")


class MappingStore:
    """Mappings from extracted labels to canonical brands and categories."""

    def __init__(self, db: CatalogDatabase, threshold: float | None = None):
        if threshold is None:
            from .config import get_settings

            threshold = get_settings().auto_map_threshold
        self.db = db
        self.threshold = threshold

    def add_mapping(
        self,
        kind: str,
        extracted_label: str,
        entity_id: int,
        store_name: str,
        method: str = MappingMethod.MANUAL.value,
        confidence: float = 1.0,
        overwrite: bool = False,
    ) -> dict:
        """
        Map an extracted label to a canonical entity for one store.

        Args:
            kind: "brand" or "category"
            extracted_label: Label as extracted (normalized for the uniqueness key)
            entity_id: Target brand or category id
            store_name: Store the mapping applies to, or "all"
            method: "manual", "auto" or "ai"
            confidence: Confidence in [0, 1]
            overwrite: Replace an existing mapping instead of failing

        Returns:
            The stored mapping

        Raises:
            ValidationError: Bad kind, store, method, confidence or empty label
            NotFoundError: If the target entity does not exist
            ConflictError: If a mapping already exists and overwrite is False
        """
        _check_kind(kind)
        _check_store(store_name)
        if method not in {m.value for m in MappingMethod}:
            raise ValidationError(f"Unknown mapping method '{method}'")
        try:
            confidence = float(confidence)
        except (TypeError, ValueError) as exc:
            raise ValidationError("confidence must be a number") from exc
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError("confidence must be between 0 and 1")
        label = (extracted_label or "").strip()
        normalized = normalize_label(label)
        if not normalized:
            raise ValidationError("extractedLabel is required")

        self.db.get_entity(kind, entity_id)
        now = utcnow_iso()

        with self.db.transaction() as conn:
            existing = conn.execute(
                """
                SELECT id FROM mappings
                WHERE kind = ? AND normalized_label = ? AND store_name = ?
                """,
                (kind, normalized, store_name),
            ).fetchone()
            if existing and not overwrite:
                raise ConflictError(
                    f"'{label}' is already mapped for {store_name}",
                    mappingId=existing["id"],
                )
            if existing:
                conn.execute(
                    """
                    UPDATE mappings
                    SET extracted_label = ?, entity_id = ?, confidence = ?,
                        method = ?, mapped_at = ?, validated = 0
                    WHERE id = ?
                    """,
                    (label, entity_id, confidence, method, now, existing["id"]),
                )
                mapping_id = existing["id"]
            else:
                cursor = conn.execute(
                    """
                    INSERT INTO mappings (
                        kind, extracted_label, normalized_label, entity_id,
                        confidence, method, store_name, mapped_at, validated
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)
                    """,
                    (kind, label, normalized, entity_id, confidence, method, store_name, now),
                )
                mapping_id = cursor.lastrowid

        logger.info(f"Mapped {kind} '{label}' ({store_name}) to {entity_id} via {method}")
        return self.get_mapping(mapping_id)

    def get_mapping(self, mapping_id: int) -> dict:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM mappings WHERE id = ?", (mapping_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return mapping_to_dict(row)

    def remove_mapping(self, mapping_id: int, kind: str | None = None, entity_id: int | None = None) -> bool:
        """
        Delete a mapping. Returns False if no mapping matched.

        Args:
            mapping_id: Mapping to delete
            kind: Only delete it if it maps this kind
            entity_id: Only delete it if it points at this entity
        """
        query = "DELETE FROM mappings WHERE id = ?"
        params: list = [mapping_id]
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind)
        if entity_id is not None:
            query += " AND entity_id = ?"
            params.append(entity_id)
        with self.db.connect() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount > 0

    def validate(self, mapping_id: int) -> dict:
        """Mark a mapping as operator-confirmed, leaving its confidence as is."""
        with self.db.connect() as conn:
            cursor = conn.execute("UPDATE mappings SET validated = 1 WHERE id = ?", (mapping_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return self.get_mapping(mapping_id)

    def list_mappings(
        self,
        kind: str,
        entity_id: int | None = None,
        store: str | None = None,
    ) -> list[dict]:
        _check_kind(kind)
        query = "SELECT * FROM mappings WHERE kind = ?"
        params: list = [kind]
        if entity_id is not None:
            query += " AND entity_id = ?"
            params.append(entity_id)
        if store:
            query += " AND store_name = ?"
            params.append(store)
        query += " ORDER BY confidence DESC, id"
        with self.db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [mapping_to_dict(row) for row in rows]

    def _mapped_labels(self, kind: str, store: str | None) -> set[str]:
        query = "SELECT DISTINCT normalized_label FROM mappings WHERE kind = ?"
        params: list = [kind]
        if store:
            query += " AND store_name = ?"
            params.append(store)
        with self.db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return {row[0] for row in rows}

    def auto_map(
        self,
        kind: str,
        store: str,
        entity_id: int | None = None,
        threshold: float | None = None,
    ) -> int:
        """
        Map a store's extracted labels to their best-scoring canonical entity.

        Labels whose best candidate scores below the threshold stay unmapped.
        Re-running is safe: validated and manual mappings are kept, and an
        existing auto mapping only changes for a strictly higher score.

        Args:
            kind: "brand" or "category"
            store: Store name, or "all" to run for every store
            entity_id: Only consider this entity as a target
            threshold: Acceptance threshold (defaults to the configured one)

        Returns:
            Number of mappings created or replaced
        """
        _check_kind(kind)
        _check_store(store)
        threshold = self.threshold if threshold is None else threshold

        if entity_id is not None:
            entities = [self.db.get_entity(kind, entity_id)]
        else:
            entities = self.db.list_entities(kind)
        if not entities:
            logger.info(f"No canonical {kind} entities to map against")
            return 0

        stores = list(STORE_DEFAULTS) if store == ALL_SCOPE else [store]
        mapped = 0
        for store_name in stores:
            mapped += self._auto_map_store(kind, store_name, entities, threshold)
        logger.info(f"Auto-mapped {mapped} {kind} labels for {store} (threshold {threshold})")
        return mapped

    def _auto_map_store(self, kind: str, store: str, entities: list[dict], threshold: float) -> int:
        candidates = []
        for label in list_labels(self.db, kind, store):
            best_entity = None
            best_score = -1.0
            for entity in entities:
                candidate_score = score_label(label.name, label.frequency, label.confidence, entity["names"])
                if candidate_score > best_score:
                    best_entity, best_score = entity, candidate_score
            if best_entity is not None and best_score >= threshold:
                candidates.append((label, best_entity, round(best_score, 4)))

        if not candidates:
            return 0

        now = utcnow_iso()
        mapped = 0
        with self.db.transaction() as conn:
            for label, entity, candidate_score in candidates:
                cursor = conn.execute(
                    _AUTO_UPSERT_SQL,
                    (kind, label.name, label.normalized, entity["id"], candidate_score, store, now),
                )
                mapped += cursor.rowcount
        return mapped

    def candidates_for_entity(
        self,
        kind: str,
        entity_id: int,
        store: str | None = None,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[dict]:
        """
        Unmapped extracted labels ranked by their score against one entity.

        Each entry is the label dict plus `score` and `nameSimilarity`.
        """
        _check_kind(kind)
        if store:
            _check_store(store, allow_all=False)
        entity = self.db.get_entity(kind, entity_id)
        mapped = self._mapped_labels(kind, store)

        ranked = []
        for label in list_labels(self.db, kind, store):
            if label.normalized in mapped:
                continue
            name_similarity = best_similarity(label.name, entity["names"])
            entry = label.to_dict()
            entry["nameSimilarity"] = round(name_similarity, 4)
            entry["score"] = round(score(name_similarity, label.frequency, label.confidence), 4)
            ranked.append(entry)
        ranked.sort(key=lambda e: (-e["score"], -e["frequency"], e["normalized"]))
        return ranked[:limit]

    def extraction_stats(self, kind: str, entity_id: int | None = None) -> dict:
        """Totals of extracted labels and how many of them are mapped."""
        _check_kind(kind)
        with self.db.connect() as conn:
            total = conn.execute(
                "SELECT COUNT(DISTINCT normalized) FROM extracted_labels WHERE kind = ?",
                (kind,),
            ).fetchone()[0]
            mapped_all = conn.execute(
                """
                SELECT COUNT(DISTINCT normalized_label) FROM mappings
                WHERE kind = ? AND normalized_label IN (
                    SELECT normalized FROM extracted_labels WHERE kind = ?
                )
                """,
                (kind, kind),
            ).fetchone()[0]

            query = "SELECT method, validated, COUNT(*) AS n FROM mappings WHERE kind = ?"
            params: list = [kind]
            if entity_id is not None:
                query += " AND entity_id = ?"
                params.append(entity_id)
            query += " GROUP BY method, validated"
            rows = conn.execute(query, params).fetchall()

        by_method = {m.value: 0 for m in MappingMethod}
        validated = 0
        for row in rows:
            by_method[row["method"]] = by_method.get(row["method"], 0) + row["n"]
            if row["validated"]:
                validated += row["n"]
        return {
            "kind": kind,
            "entityId": entity_id,
            "totalLabels": total,
            "mappedLabels": mapped_all,
            "unmappedLabels": total - mapped_all,
            "totalMappings": sum(by_method.values()),
            "validatedMappings": validated,
            "byMethod": by_method,
        }

    def store_categories_needing_mapping(
        self,
        category_id: int,
        store: str | None = None,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[dict]:
        """
        Discovered leaf store categories with no category mapping yet,
        ranked by similarity to a canonical category's names and keywords.
        """
        category = self.db.get_entity(LabelKind.CATEGORY.value, category_id)
        names = [*category["names"], *category.get("keywords", [])]
        stores = [store] if store else list(STORE_DEFAULTS)
        if store:
            _check_store(store, allow_all=False)

        ranked = []
        for store_name in stores:
            mapped = self._mapped_labels(LabelKind.CATEGORY.value, store_name)
            for node in self.db.list_store_categories(store_name, leaves_only=True):
                normalized = normalize_label(node["name"])
                if not normalized or normalized in mapped:
                    continue
                ranked.append(
                    {
                        "store": store_name,
                        "externalId": node["external_id"],
                        "name": node["name"],
                        "idPath": node["id_path"],
                        "similarity": round(best_similarity(node["name"], names), 4),
                    }
                )
        ranked.sort(key=lambda e: (-e["similarity"], e["store"], e["name"]))
        return ranked[:limit]
