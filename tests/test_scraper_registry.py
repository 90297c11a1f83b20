import unittest


class TestScraperRegistry(unittest.TestCase):
    def test_list_scrapers_includes_package_scrapers(self):
        from gondola.scrapers import list_scrapers

        self.assertEqual(
            set(list_scrapers()),
            {"carrefour", "dia", "disco", "jumbo", "la_anonima", "vea"},
        )

    def test_get_scraper_returns_store_instance(self):
        from gondola.scrapers import get_scraper

        scraper = get_scraper("jumbo")
        self.assertEqual(scraper.store, "jumbo")
        self.assertTrue(scraper.supports("discover-subcategories"))

    def test_store_without_scraper_is_rejected(self):
        from gondola.errors import ValidationError
        from gondola.scrapers import ensure_supported, get_scraper, supports

        self.assertFalse(supports("coto", "scrape-products"))
        with self.assertRaises(ValidationError):
            ensure_supported("coto", "scrape-products")
        with self.assertRaises(ValidationError):
            ensure_supported("walmart", "scrape-products")
        with self.assertRaises(ValidationError):
            get_scraper("coto")

    def test_every_scraper_handles_all_job_types(self):
        from gondola.models import JobType
        from gondola.scrapers import SCRAPERS, ensure_supported

        for store in SCRAPERS:
            for job_type in JobType:
                ensure_supported(store, job_type.value)

    def test_display_names(self):
        from gondola.scrapers import get_scraper_display_name

        self.assertEqual(get_scraper_display_name("la_anonima"), "La Anónima")
        self.assertEqual(get_scraper_display_name("coto"), "Coto")
