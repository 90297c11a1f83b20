import unittest


class TestSimilarity(unittest.TestCase):
    def test_identical_strings_score_one(self):
        from gondola.matching import similarity

        for text in ["a", "Coca Cola", "lácteos", "x" * 40]:
            self.assertEqual(similarity(text, text), 1.0)

    def test_empty_strings_are_identical(self):
        from gondola.matching import similarity

        self.assertEqual(similarity("", ""), 1.0)
        self.assertEqual(similarity("", "abc"), 0.0)

    def test_case_insensitive_and_symmetric(self):
        from gondola.matching import similarity

        self.assertEqual(similarity("PEPSI", "pepsi"), 1.0)
        pairs = [("kitten", "sitting"), ("Coca", "cola"), ("Quilmes", "quilmes cristal")]
        for a, b in pairs:
            self.assertAlmostEqual(similarity(a, b), similarity(b, a))

    def test_known_distance(self):
        from gondola.matching import similarity

        self.assertAlmostEqual(similarity("kitten", "sitting"), 1 - 3 / 7)

    def test_normalize_label_strips_accents_and_punctuation(self):
        from gondola.matching import normalize_label

        self.assertEqual(normalize_label("  Coca-Cola  "), "coca cola")
        self.assertEqual(normalize_label("Lácteos_y   Frescos!"), "lacteos y frescos")

    def test_label_similarity_ignores_punctuation(self):
        from gondola.matching import label_similarity

        self.assertEqual(label_similarity("Coca-Cola", "Coca Cola"), 1.0)

    def test_best_similarity_uses_synonyms(self):
        from gondola.matching import best_similarity

        self.assertEqual(best_similarity("bebidas", ["Bebidas y Licores", "bebidas"]), 1.0)
        self.assertEqual(best_similarity("x", []), 0.0)


class TestScore(unittest.TestCase):
    def test_weights(self):
        from gondola.matching import score

        self.assertAlmostEqual(score(1.0, 100, 1.0), 1.0)
        self.assertAlmostEqual(score(0.0, 0, 0.0), 0.0)
        self.assertAlmostEqual(score(1.0, 50, 0.5), 0.5 + 0.1 + 0.15)

    def test_frequency_saturates(self):
        from gondola.matching import score

        self.assertEqual(score(0.5, 100, 0.5), score(0.5, 5000, 0.5))

    def test_monotonic_in_each_input(self):
        from gondola.matching import score

        steps = [i / 10 for i in range(11)]
        for fixed in (0.0, 0.4, 1.0):
            by_similarity = [score(s, 10, fixed) for s in steps]
            by_confidence = [score(fixed, 10, c) for c in steps]
            by_frequency = [score(fixed, f, fixed) for f in range(0, 150, 10)]
            for series in (by_similarity, by_confidence, by_frequency):
                self.assertEqual(series, sorted(series))

    def test_inputs_are_clamped(self):
        from gondola.matching import score

        self.assertAlmostEqual(score(2.0, -5, 1.5), 0.5 + 0.0 + 0.3)

    def test_score_label_compares_normalized_names(self):
        from gondola.matching import score_label

        self.assertAlmostEqual(score_label("Coca-Cola", 0, 0.0, ["Coca Cola"]), 0.5)
