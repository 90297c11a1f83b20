import tempfile
import unittest
from pathlib import Path


class TestMappingStore(unittest.TestCase):
    def setUp(self):
        from gondola.db import CatalogDatabase
        from gondola.mappings import MappingStore

        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "test.db"
        self.db = CatalogDatabase(db_path=self.db_path)
        self.store = MappingStore(self.db, threshold=0.75)

    def tearDown(self):
        self._tmp.cleanup()

    def _extract_coca_cola(self):
        from gondola.extraction import ExtractionJob
        from gondola.models import Product

        brand = self.db.create_brand("Coca Cola")
        titles = ["Coca Cola 1.5L", "Coca-Cola Zero", "Pepsi 2L"]
        for i, title in enumerate(titles):
            self.db.save_product(Product(store="jumbo", external_id=str(i), title=title))
        ExtractionJob(self.db).run("brand", "jumbo")
        return brand

    def test_add_mapping_twice_conflicts(self):
        from gondola.errors import ConflictError

        brand = self.db.create_brand("Arcor")
        first = self.store.add_mapping("brand", "ARCOR", brand["id"], "jumbo")
        self.assertEqual(first["normalizedLabel"], "arcor")
        self.assertEqual(first["method"], "manual")
        self.assertEqual(first["confidence"], 1.0)

        with self.assertRaises(ConflictError) as ctx:
            self.store.add_mapping("brand", "Arcor", brand["id"], "jumbo")
        self.assertEqual(ctx.exception.details["mappingId"], first["id"])

        # another store is a different key
        self.store.add_mapping("brand", "Arcor", brand["id"], "dia")

    def test_overwrite_replaces_and_clears_validation(self):
        arcor = self.db.create_brand("Arcor")
        bagley = self.db.create_brand("Bagley")
        mapping = self.store.add_mapping("brand", "Arcor", arcor["id"], "jumbo")
        self.store.validate(mapping["id"])

        updated = self.store.add_mapping("brand", "arcor", bagley["id"], "jumbo", overwrite=True)
        self.assertEqual(updated["id"], mapping["id"])
        self.assertEqual(updated["mappedEntityId"], bagley["id"])
        self.assertFalse(updated["validated"])

    def test_add_mapping_validation(self):
        from gondola.errors import NotFoundError, ValidationError

        brand = self.db.create_brand("Arcor")
        with self.assertRaises(ValidationError):
            self.store.add_mapping("brand", "  ", brand["id"], "jumbo")
        with self.assertRaises(ValidationError):
            self.store.add_mapping("brand", "Arcor", brand["id"], "walmart")
        with self.assertRaises(ValidationError):
            self.store.add_mapping("brand", "Arcor", brand["id"], "jumbo", confidence=1.5)
        with self.assertRaises(ValidationError):
            self.store.add_mapping("brand", "Arcor", brand["id"], "jumbo", method="guess")
        with self.assertRaises(NotFoundError):
            self.store.add_mapping("brand", "Arcor", 999, "jumbo")

    def test_remove_and_validate(self):
        from gondola.errors import NotFoundError

        brand = self.db.create_brand("Arcor")
        mapping = self.store.add_mapping("brand", "Arcor", brand["id"], "all")
        self.assertTrue(self.store.validate(mapping["id"])["validated"])
        self.assertTrue(self.store.remove_mapping(mapping["id"]))
        self.assertFalse(self.store.remove_mapping(mapping["id"]))
        with self.assertRaises(NotFoundError):
            self.store.validate(mapping["id"])

    def test_remove_only_matches_kind_and_entity(self):
        arcor = self.db.create_brand("Arcor")
        bagley = self.db.create_brand("Bagley")
        mapping = self.store.add_mapping("brand", "Arcor", arcor["id"], "jumbo")

        self.assertFalse(self.store.remove_mapping(mapping["id"], kind="brand", entity_id=bagley["id"]))
        self.assertFalse(self.store.remove_mapping(mapping["id"], kind="category", entity_id=arcor["id"]))
        self.assertEqual(self.store.get_mapping(mapping["id"])["mappedEntityId"], arcor["id"])

        self.assertTrue(self.store.remove_mapping(mapping["id"], kind="brand", entity_id=arcor["id"]))

    def test_auto_map_respects_threshold(self):
        brand = self._extract_coca_cola()

        self.assertEqual(self.store.auto_map("brand", "jumbo", threshold=0.8), 0)
        self.assertEqual(self.store.list_mappings("brand"), [])

        self.assertEqual(self.store.auto_map("brand", "jumbo"), 1)
        [mapping] = self.store.list_mappings("brand", entity_id=brand["id"])
        self.assertEqual(mapping["normalizedLabel"], "coca cola")
        self.assertEqual(mapping["method"], "auto")
        self.assertEqual(mapping["storeName"], "jumbo")
        self.assertGreaterEqual(mapping["confidence"], 0.75)

    def test_auto_map_is_idempotent(self):
        self._extract_coca_cola()

        self.assertEqual(self.store.auto_map("brand", "jumbo"), 1)
        before = self.store.list_mappings("brand")
        self.assertEqual(self.store.auto_map("brand", "jumbo"), 0)
        self.assertEqual(self.store.list_mappings("brand"), before)

    def test_auto_map_leaves_validated_and_manual_rows(self):
        brand = self._extract_coca_cola()
        self.store.auto_map("brand", "jumbo")
        [mapping] = self.store.list_mappings("brand")

        with self.db.connect() as conn:
            conn.execute("UPDATE mappings SET confidence = 0.1 WHERE id = ?", (mapping["id"],))
        self.store.validate(mapping["id"])
        self.assertEqual(self.store.auto_map("brand", "jumbo"), 0)
        self.assertEqual(self.store.get_mapping(mapping["id"])["confidence"], 0.1)

        with self.db.connect() as conn:
            conn.execute("UPDATE mappings SET validated = 0 WHERE id = ?", (mapping["id"],))
        self.assertEqual(self.store.auto_map("brand", "jumbo"), 1)
        self.assertGreater(self.store.get_mapping(mapping["id"])["confidence"], 0.75)

        self.store.add_mapping("brand", "Pepsi", brand["id"], "jumbo", confidence=0.2)
        self.store.auto_map("brand", "jumbo", threshold=0.0)
        pepsi = [m for m in self.store.list_mappings("brand") if m["normalizedLabel"] == "pepsi"]
        self.assertEqual(pepsi[0]["method"], "manual")
        self.assertEqual(pepsi[0]["confidence"], 0.2)

    def test_candidates_rank_by_score_and_skip_mapped(self):
        brand = self._extract_coca_cola()

        candidates = self.store.candidates_for_entity("brand", brand["id"], store="jumbo")
        self.assertEqual([c["normalized"] for c in candidates], ["coca cola", "pepsi"])
        self.assertEqual(candidates[0]["nameSimilarity"], 1.0)
        self.assertGreater(candidates[0]["score"], candidates[1]["score"])

        self.store.auto_map("brand", "jumbo")
        candidates = self.store.candidates_for_entity("brand", brand["id"], store="jumbo")
        self.assertEqual([c["normalized"] for c in candidates], ["pepsi"])

    def test_extraction_stats(self):
        brand = self._extract_coca_cola()
        self.store.auto_map("brand", "jumbo")

        stats = self.store.extraction_stats("brand")
        self.assertEqual(stats["totalLabels"], 2)
        self.assertEqual(stats["mappedLabels"], 1)
        self.assertEqual(stats["unmappedLabels"], 1)
        self.assertEqual(stats["byMethod"]["auto"], 1)
        self.assertEqual(stats["validatedMappings"], 0)

        self.assertEqual(self.store.extraction_stats("brand", entity_id=brand["id"])["totalMappings"], 1)

    def test_deleting_entity_drops_its_mappings(self):
        brand = self.db.create_brand("Arcor")
        self.store.add_mapping("brand", "Arcor", brand["id"], "jumbo")
        self.db.delete_entity("brand", brand["id"])
        self.assertEqual(self.store.list_mappings("brand"), [])

    def test_store_categories_needing_mapping(self):
        from gondola.models import CategoryNode

        category = self.db.create_category("Bebidas", keywords=["gaseosas"])
        self.db.save_store_categories(
            [
                CategoryNode("jumbo", "1", "Gaseosas", None, "/1/"),
                CategoryNode("jumbo", "2", "Aceites", None, "/2/"),
                CategoryNode("dia", "7", "Aguas", None, "/7/"),
            ]
        )
        self.store.add_mapping("category", "Aguas", category["id"], "dia")

        pending = self.store.store_categories_needing_mapping(category["id"])
        self.assertEqual([p["name"] for p in pending], ["Gaseosas", "Aceites"])
        self.assertEqual(pending[0]["similarity"], 1.0)
        self.assertEqual(pending[0]["idPath"], "/1/")

        only_dia = self.store.store_categories_needing_mapping(category["id"], store="dia")
        self.assertEqual(only_dia, [])
