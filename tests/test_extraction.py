import tempfile
import unittest
from pathlib import Path
from unittest import mock


def _product(store, external_id, title, brand=None, category_path=None):
    from gondola.models import Product

    return Product(
        store=store,
        external_id=external_id,
        title=title,
        brand=brand,
        category_path=category_path or [],
        price=100.0,
    )


class TestBrandSegmentation(unittest.TestCase):
    def test_leading_run_stops_at_numbers_units_and_stop_words(self):
        from gondola.extraction import leading_run

        self.assertEqual(leading_run("coca cola 1 5l".split()), ["coca", "cola"])
        self.assertEqual(leading_run("leche la serenisima".split()), ["leche"])
        self.assertEqual(leading_run("aceite x 900 ml".split()), ["aceite"])
        self.assertEqual(leading_run("a b c d e".split()), ["a", "b", "c"])
        self.assertEqual(leading_run("2 alfajores".split()), [])

    def test_raw_prefix_keeps_original_spelling(self):
        from gondola.extraction import raw_prefix

        self.assertEqual(raw_prefix("Coca-Cola Zero 500ml", 2), "Coca-Cola")
        self.assertEqual(raw_prefix("Coca Cola 1.5L", 2), "Coca Cola")

    def test_dictionary_prefers_longest_whole_word_match(self):
        from gondola.extraction import BrandDictionary

        dictionary = BrandDictionary([{"name": "La"}, {"name": "La Serenísima"}])
        self.assertEqual(dictionary.match("leche la serenisima 1l".split()), "La Serenísima")
        self.assertIsNone(BrandDictionary([{"name": "Arcor"}]).match("pepsi 2l".split()))

    def test_private_labels_are_per_store(self):
        from gondola.brand_patterns import is_private_label, known_brands

        self.assertTrue(is_private_label("dia", "DIA"))
        self.assertTrue(is_private_label("la_anonima", "La Anonima"))
        self.assertFalse(is_private_label("jumbo", "Dia"))

        names = [entry["name"] for entry in known_brands("coto")]
        self.assertEqual(names[0], "Coto")
        self.assertIn("Arcor", names)
        self.assertNotIn("Coto", [entry["name"] for entry in known_brands()])

    def test_dictionary_fuzzy_match_near_title_start(self):
        from gondola.extraction import BrandDictionary

        dictionary = BrandDictionary([{"name": "Quilmes"}])
        self.assertEqual(dictionary.match("quilmess cristal 1l".split()), "Quilmes")

    def test_observation_passes_in_order(self):
        from gondola.extraction import BrandDictionary, extract_brand_observations

        samples = [
            {"title": "Coca Cola 1.5L", "store_brand": "Otra Marca"},
            {"title": "Leche Entera 1L", "store_brand": "La Serenísima"},
            {"title": "Galletitas Surtidas 300g", "store_brand": None},
        ]
        observations = extract_brand_observations(
            "jumbo", samples, BrandDictionary([{"name": "Coca Cola"}])
        )
        self.assertEqual(
            [(o.name, o.confidence) for o in observations],
            [("Coca Cola", 0.9), ("La Serenísima", 0.9), ("Galletitas", 0.6)],
        )

    def test_prefix_extends_only_while_shared(self):
        from gondola.extraction import BrandDictionary, extract_brand_observations

        samples = [
            {"title": "Villa del Sur 1.5L"},
            {"title": "Don Satur Bizcochos 200g"},
            {"title": "Don Satur Negritos 200g"},
        ]
        observations = extract_brand_observations("dia", samples, BrandDictionary([]))
        self.assertEqual([o.normalized for o in observations], ["villa", "don satur", "don satur"])


class TestAggregate(unittest.TestCase):
    def test_category_confidence_grows_with_frequency(self):
        from gondola.extraction import Observation, aggregate

        observations = [Observation("Gaseosas", "gaseosas", "jumbo", 0.6, f"t{i}") for i in range(6)]
        observations.append(Observation("Aceites", "aceites", "dia", 0.6, "t"))

        labels = aggregate("category", "all", observations)
        self.assertEqual([l.normalized for l in labels], ["gaseosas", "aceites"])
        self.assertAlmostEqual(labels[0].confidence, 0.9)
        self.assertAlmostEqual(labels[1].confidence, 0.6)
        self.assertEqual(len(labels[0].examples), 5)

    def test_most_common_spelling_wins(self):
        from gondola.extraction import Observation, aggregate

        observations = [
            Observation("Coca-Cola", "coca cola", "jumbo", 0.6, None),
            Observation("Coca Cola", "coca cola", "dia", 0.6, None),
            Observation("Coca Cola", "coca cola", "dia", 0.9, None),
        ]
        [label] = aggregate("brand", "all", observations)
        self.assertEqual(label.name, "Coca Cola")
        self.assertEqual(label.frequency, 3)
        self.assertEqual(label.sources, ["dia", "jumbo"])
        self.assertAlmostEqual(label.confidence, 0.7)


class TestExtractionJob(unittest.TestCase):
    def setUp(self):
        from gondola.db import CatalogDatabase

        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "test.db"
        self.db = CatalogDatabase(db_path=self.db_path)

    def tearDown(self):
        self._tmp.cleanup()

    def _seed_titles(self, store, titles):
        for i, title in enumerate(titles):
            self.db.save_product(_product(store, f"{store}-{i}", title))

    def test_coca_cola_ranks_above_pepsi(self):
        from gondola.extraction import ExtractionJob, list_labels

        self.db.create_brand("Coca Cola")
        self._seed_titles("jumbo", ["Coca Cola 1.5L", "Coca-Cola Zero", "Pepsi 2L"])

        result = ExtractionJob(self.db).run("brand", "jumbo")
        self.assertEqual(result["extractedCount"], 2)
        self.assertEqual(result["storesProcessed"], 1)
        self.assertEqual(result["errors"], [])

        labels = list_labels(self.db, "brand", "jumbo")
        self.assertEqual([l.name for l in labels], ["Coca Cola", "Pepsi"])
        self.assertEqual(labels[0].frequency, 2)
        self.assertAlmostEqual(labels[0].confidence, 0.9)
        self.assertIn("Coca-Cola Zero", labels[0].examples)

    def test_rerun_replaces_previous_output(self):
        from gondola.extraction import ExtractionJob

        self._seed_titles("jumbo", ["Coca Cola 1.5L", "Pepsi 2L"])
        job = ExtractionJob(self.db)
        first = job.run("brand", "jumbo")
        second = job.run("brand", "jumbo")

        self.assertEqual(first["extractedCount"], second["extractedCount"])
        with self.db.connect() as conn:
            rows = conn.execute("SELECT COUNT(*) FROM extracted_labels").fetchone()[0]
        self.assertEqual(rows, second["extractedCount"])

    def test_all_scope_tracks_sources(self):
        from gondola.extraction import ExtractionJob, list_labels

        self._seed_titles("jumbo", ["Arcor Bon o Bon x 30"])
        self._seed_titles("dia", ["Arcor Mogul 500g", "Terrabusi Tita"])

        result = ExtractionJob(self.db).run("brand")
        self.assertEqual(result["scope"], "all")
        self.assertEqual(result["storesProcessed"], 2)

        arcor = next(l for l in list_labels(self.db, "brand") if l.normalized == "arcor")
        self.assertEqual(arcor.sources, ["dia", "jumbo"])
        self.assertEqual([l.normalized for l in list_labels(self.db, "brand", "jumbo")], ["arcor"])

    def test_single_title_prefix_keeps_first_word(self):
        from gondola.extraction import ExtractionJob, list_labels

        # one title cannot support a longer prefix
        self._seed_titles("jumbo", ["Don Satur Bizcochos 200g"])
        ExtractionJob(self.db).run("brand", "jumbo")
        self.assertEqual([l.normalized for l in list_labels(self.db, "brand", "jumbo")], ["don"])

    def test_known_brands_and_private_labels(self):
        from gondola.extraction import ExtractionJob, list_labels

        self._seed_titles("jumbo", ["Leche Entera La Serenísima 1L", "Fideos Cuisine & Co 500g"])
        self._seed_titles("dia", ["Fideos Cuisine & Co 500g"])
        ExtractionJob(self.db).run("brand", "jumbo")
        ExtractionJob(self.db).run("brand", "dia")

        jumbo = {l.name: l for l in list_labels(self.db, "brand", "jumbo")}
        self.assertEqual(set(jumbo), {"La Serenísima", "Cuisine & Co"})
        self.assertAlmostEqual(jumbo["Cuisine & Co"].confidence, 0.95)
        self.assertAlmostEqual(jumbo["La Serenísima"].confidence, 0.9)
        # not a private label of dia, so the prefix heuristic applies
        self.assertEqual([l.normalized for l in list_labels(self.db, "brand", "dia")], ["fideos"])

    def test_partial_failure_keeps_other_stores(self):
        from gondola.db import CatalogDatabase
        from gondola.extraction import ExtractionJob, list_labels

        self._seed_titles("jumbo", ["Don Satur Bizcochos 200g", "Don Satur Negritos 200g"])
        self._seed_titles("dia", ["Terrabusi Tita"])
        original = CatalogDatabase.sample_products

        def flaky(db, store, limit):
            if store == "dia":
                raise RuntimeError("database is locked")
            return original(db, store, limit)

        with mock.patch.object(CatalogDatabase, "sample_products", autospec=True, side_effect=flaky):
            result = ExtractionJob(self.db).run("brand", "all")

        self.assertEqual(result["storesProcessed"], 1)
        self.assertEqual(result["errors"], [{"store": "dia", "message": "database is locked"}])
        self.assertEqual([l.normalized for l in list_labels(self.db, "brand")], ["don satur"])

    def test_failed_rerun_keeps_previous_store_labels(self):
        from gondola.db import CatalogDatabase
        from gondola.extraction import ExtractionJob, list_labels

        self._seed_titles("jumbo", ["Coca Cola 1.5L", "Pepsi 2L"])
        job = ExtractionJob(self.db)
        self.assertEqual(job.run("brand", "jumbo")["extractedCount"], 2)

        with mock.patch.object(
            CatalogDatabase, "sample_products", autospec=True, side_effect=RuntimeError("db hiccup")
        ):
            result = job.run("brand", "jumbo")

        self.assertEqual(result["storesProcessed"], 0)
        self.assertEqual(result["errors"][0]["message"], "db hiccup")
        self.assertEqual(result["extractedCount"], 2)
        self.assertEqual(
            [l.normalized for l in list_labels(self.db, "brand", "jumbo")], ["coca cola", "pepsi"]
        )

    def test_failed_store_labels_survive_all_scope_rerun(self):
        from gondola.db import CatalogDatabase
        from gondola.extraction import ExtractionJob, list_labels

        self._seed_titles("jumbo", ["Arcor Bon o Bon x 30"])
        self._seed_titles("dia", ["Arcor Mogul 500g", "Pepsi 2L"])
        job = ExtractionJob(self.db)
        job.run("brand")
        original = CatalogDatabase.sample_products

        def flaky(db, store, limit):
            if store == "dia":
                raise RuntimeError("database is locked")
            return original(db, store, limit)

        with mock.patch.object(CatalogDatabase, "sample_products", autospec=True, side_effect=flaky):
            job.run("brand")

        labels = {l.normalized: l for l in list_labels(self.db, "brand")}
        self.assertEqual(set(labels), {"arcor", "pepsi"})
        self.assertEqual(labels["arcor"].sources, ["dia", "jumbo"])
        self.assertEqual(labels["pepsi"].sources, ["dia"])

    def test_category_labels_include_discovered_leaves(self):
        from gondola.extraction import ExtractionJob, list_labels
        from gondola.models import CategoryNode

        for i in range(2):
            self.db.save_product(_product("jumbo", f"g{i}", f"Gaseosa {i}", category_path=["Bebidas", "Gaseosas"]))
        self.db.save_product(_product("jumbo", "a0", "Aceite", category_path=["Almacén", "Aceites"]))
        self.db.save_store_categories(
            [CategoryNode("jumbo", "9", "Vinos", None, "/1/9/", parent_external_id="1", depth=1)]
        )

        ExtractionJob(self.db).run("category", "jumbo")
        labels = {l.normalized: l for l in list_labels(self.db, "category", "jumbo")}

        self.assertEqual(set(labels), {"gaseosas", "aceites", "vinos"})
        self.assertEqual(labels["gaseosas"].frequency, 2)
        self.assertAlmostEqual(labels["gaseosas"].confidence, 0.7)
        self.assertEqual(labels["vinos"].examples, [])

    def test_run_validates_inputs(self):
        from gondola.errors import ValidationError
        from gondola.extraction import ExtractionJob

        job = ExtractionJob(self.db)
        with self.assertRaises(ValidationError):
            job.run("color", "jumbo")
        with self.assertRaises(ValidationError):
            job.run("brand", "walmart")
        with self.assertRaises(ValidationError):
            job.run("brand", "jumbo", sample_size=-1)
