import os
import tempfile
import unittest
from pathlib import Path


_module_tmp: tempfile.TemporaryDirectory | None = None
_previous_data_dir: str | None = None


def setUpModule():
    # Importing the app module builds a default app; keep its database out of the tree
    global _module_tmp, _previous_data_dir
    from gondola.config import reset_settings

    _module_tmp = tempfile.TemporaryDirectory()
    _previous_data_dir = os.environ.get("GONDOLA_DATA_DIR")
    os.environ["GONDOLA_DATA_DIR"] = _module_tmp.name
    reset_settings()


def tearDownModule():
    from gondola.config import reset_settings

    if _previous_data_dir is None:
        os.environ.pop("GONDOLA_DATA_DIR", None)
    else:
        os.environ["GONDOLA_DATA_DIR"] = _previous_data_dir
    reset_settings()
    _module_tmp.cleanup()


class ApiTestCase(unittest.TestCase):
    password = "secret"

    def setUp(self):
        from fastapi.testclient import TestClient

        from gondola.config import Settings
        from gondola.db import CatalogDatabase
        from gondola.webapp.app import create_app

        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.settings = Settings(data_dir=root, admin_password=self.password)
        self.db = CatalogDatabase(db_path=self.settings.db_path)
        self.app = create_app(db=self.db, settings=self.settings, auto_start_scheduler=False)
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        self._tmp.cleanup()

    def login(self):
        response = self.client.post("/api/panel/auth/login", json={"password": self.password})
        self.assertEqual(response.status_code, 200)
        return response


class TestAuth(ApiTestCase):
    def test_health_is_public(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["status"], "ok")
        self.assertFalse(data["scheduler"]["running"])

    def test_panel_requires_session(self):
        response = self.client.get("/api/panel/scraper/status")

        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()["success"])

    def test_wrong_password_is_rejected(self):
        response = self.client.post("/api/panel/auth/login", json={"password": "nope"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"success": False, "message": "Invalid password"})
        self.assertNotIn("session_token", response.cookies)

    def test_login_then_logout(self):
        response = self.login()
        self.assertIn("session_token", response.cookies)
        self.assertEqual(self.client.get("/api/panel/brands").status_code, 200)

        self.client.post("/api/panel/auth/logout")
        self.client.cookies.clear()
        self.assertEqual(self.client.get("/api/panel/brands").status_code, 401)

    def test_malformed_body_uses_error_envelope(self):
        response = self.client.post("/api/panel/auth/login", json={})

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["details"]["errors"][0]["field"], "password")


class TestScraperRoutes(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.login()

    def test_status_lists_every_store(self):
        stores = {s["id"]: s for s in self.client.get("/api/panel/scraper/status").json()["data"]}

        self.assertEqual(
            set(stores),
            {"carrefour", "coto", "dia", "disco", "jumbo", "la_anonima", "vea"},
        )
        self.assertFalse(stores["coto"]["hasScraper"])
        self.assertEqual(stores["coto"]["jobTypes"], [])
        self.assertEqual(stores["jumbo"]["status"], "idle")
        self.assertEqual(stores["jumbo"]["settings"]["retryCount"], 3)
        self.assertEqual(stores["la_anonima"]["name"], "La Anónima")

    def test_enqueue_list_and_cancel(self):
        response = self.client.post(
            "/api/panel/scraper/scrape-products",
            json={"storeName": "jumbo", "priority": 5, "categoryId": "1/10"},
        )
        self.assertEqual(response.status_code, 200)
        job_id = response.json()["data"]["jobId"]

        queue = self.client.get("/api/panel/scraper/queue", params={"store": "jumbo"}).json()["data"]
        self.assertEqual(queue["counts"]["waiting"], 1)
        job = queue["jobs"][0]
        self.assertEqual(job["id"], job_id)
        self.assertEqual(job["priority"], 5)
        self.assertEqual(job["payload"], {"categoryId": "1/10"})

        cancelled = self.client.delete(f"/api/panel/scraper/jobs/{job_id}")
        self.assertEqual(cancelled.json()["data"], {"jobId": job_id, "status": "failed"})

        again = self.client.delete(f"/api/panel/scraper/jobs/{job_id}")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(self.client.delete("/api/panel/scraper/jobs/9999").status_code, 404)

    def test_store_without_scraper_is_rejected(self):
        response = self.client.post("/api/panel/scraper/scrape-products", json={"storeName": "coto"})

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_scrape_all_skips_stores_with_pending_scrapes(self):
        self.client.patch("/api/panel/scraper/vea/settings", json={"enabled": False})

        first = self.client.post("/api/panel/scraper/scrape-all").json()["data"]
        self.assertEqual(
            {q["store"] for q in first["queued"]},
            {"carrefour", "dia", "disco", "jumbo", "la_anonima"},
        )
        second = self.client.post("/api/panel/scraper/scrape-all").json()["data"]
        self.assertEqual(second["queued"], [])
        self.assertEqual(len(second["skipped"]), 5)

    def test_update_settings(self):
        response = self.client.patch(
            "/api/panel/scraper/jumbo/settings",
            json={"maxConcurrency": 3, "delayBetweenRequests": 0},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["max_concurrency"], 3)
        self.assertEqual(self.db.get_scraper_settings("jumbo")["delay_between_requests"], 0)

        invalid = self.client.patch("/api/panel/scraper/jumbo/settings", json={"maxConcurrency": 0})
        self.assertEqual(invalid.status_code, 400)
        unknown = self.client.patch("/api/panel/scraper/walmart/settings", json={"enabled": True})
        self.assertEqual(unknown.status_code, 404)

    def test_pause_stop_and_resume(self):
        self.client.post("/api/panel/scraper/discover-categories", json={"storeName": "dia"})

        self.client.post("/api/panel/scraper/dia/pause")
        stores = {s["id"]: s for s in self.client.get("/api/panel/scraper/status").json()["data"]}
        self.assertEqual(stores["dia"]["status"], "paused")

        stopped = self.client.post("/api/panel/scraper/dia/stop").json()["data"]
        self.assertEqual(stopped["stopped"], 1)

        resumed = self.client.post("/api/panel/scraper/dia/resume").json()["data"]
        self.assertFalse(resumed["paused"])
        self.assertEqual(self.client.get("/api/panel/scraper/dia/logs").json()["data"], [])

    def test_purge_queue_removes_finished_jobs(self):
        job_id = self.client.post("/api/panel/scraper/scrape-products", json={"storeName": "vea"}).json()["data"]["jobId"]
        self.client.post("/api/panel/scraper/scrape-products", json={"storeName": "disco"})
        self.client.delete(f"/api/panel/scraper/jobs/{job_id}")

        response = self.client.post("/api/panel/scraper/purge-queue")

        self.assertEqual(response.json()["data"], {"deleted": 1})
        counts = self.client.get("/api/panel/scraper/queue").json()["data"]["counts"]
        self.assertEqual(counts["waiting"], 1)
        self.assertEqual(counts["failed"], 0)

    def test_price_history_records_changes_only(self):
        from gondola.models import Product

        for price in (100.0, 100.0, 120.0):
            self.db.save_product(Product(store="dia", external_id="7", title="Yerba 1kg", price=price))
        with self.db.connect() as conn:
            product_id = conn.execute("SELECT id FROM products").fetchone()[0]

        data = self.client.get(f"/api/panel/products/{product_id}/price-history").json()["data"]
        self.assertEqual(data["store"], "dia")
        self.assertEqual([h["price"] for h in data["history"]], [100.0, 120.0])

        missing = self.client.get(f"/api/panel/products/{product_id + 1}/price-history")
        self.assertEqual(missing.status_code, 404)


class TestTaxonomyRoutes(ApiTestCase):
    def setUp(self):
        from gondola.models import Product

        super().setUp()
        self.login()
        for external_id, title in (("1", "Quilmes Cristal 1L"), ("2", "Quilmes Stout 340ml")):
            self.db.save_product(
                Product(
                    store="jumbo",
                    external_id=external_id,
                    title=title,
                    category_path=["Bebidas", "Cervezas"],
                    price=1500.0,
                )
            )

    def test_brand_extraction_and_auto_map(self):
        brand = self.client.post("/api/panel/brands", json={"name": "Quilmes"}).json()["data"]
        duplicate = self.client.post("/api/panel/brands", json={"name": "quilmes"})
        self.assertEqual(duplicate.status_code, 409)

        extracted = self.client.post(
            "/api/panel/brands/extract-from-products", json={"storeName": "jumbo"}
        ).json()["data"]
        self.assertEqual(extracted["extractedCount"], 1)
        self.assertEqual(extracted["errors"], [])

        candidates = self.client.get(
            f"/api/panel/brands/{brand['id']}/extracted-brands", params={"storeName": "jumbo"}
        ).json()["data"]
        self.assertEqual([c["normalized"] for c in candidates], ["quilmes"])
        self.assertEqual(candidates[0]["nameSimilarity"], 1.0)

        mapped = self.client.post("/api/panel/brands/auto-map", json={"storeName": "jumbo"}).json()["data"]
        self.assertEqual(mapped, {"mappedCount": 1})

        mappings = self.client.get(f"/api/panel/brands/{brand['id']}/mappings").json()["data"]
        self.assertEqual(len(mappings), 1)
        self.assertEqual(mappings[0]["method"], "auto")

        conflict = self.client.post(
            f"/api/panel/brands/{brand['id']}/mappings",
            json={"extractedLabel": "Quilmes", "storeName": "jumbo"},
        )
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["details"]["mappingId"], mappings[0]["id"])

        validated = self.client.post(f"/api/panel/mappings/{mappings[0]['id']}/validate").json()["data"]
        self.assertTrue(validated["validated"])

        removed = self.client.delete(f"/api/panel/brands/{brand['id']}/mappings/{mappings[0]['id']}")
        self.assertEqual(removed.json()["data"], {"deleted": True})

    def test_unknown_brand_is_not_found(self):
        self.assertEqual(self.client.get("/api/panel/brands/42/mappings").status_code, 404)
        self.assertEqual(self.client.delete("/api/panel/brands/42").status_code, 404)

    def test_category_seed_and_manual_mapping(self):
        created = self.client.post("/api/panel/categories/seed").json()["data"]["created"]
        self.assertGreater(created, 0)
        self.assertEqual(self.client.post("/api/panel/categories/seed").json()["data"], {"created": 0})

        categories = self.client.get("/api/panel/categories").json()["data"]
        self.assertEqual(len(categories), created)
        bebidas = next(c for c in categories if c["name"] == "Bebidas y Licores")

        response = self.client.post(
            f"/api/panel/categories/{bebidas['id']}/mappings",
            json={"extractedLabel": "Cervezas", "storeName": "jumbo"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["method"], "manual")

        invalid = self.client.post(
            f"/api/panel/categories/{bebidas['id']}/mappings",
            json={"extractedLabel": "Cervezas", "storeName": "jumbo", "confidence": 2},
        )
        self.assertEqual(invalid.status_code, 400)

    def test_mapping_delete_is_scoped_to_path_entity(self):
        self.client.post("/api/panel/categories/seed")
        category = self.client.get("/api/panel/categories").json()["data"][0]
        brand = self.client.post("/api/panel/brands", json={"name": "Quilmes"}).json()["data"]
        mapping = self.client.post(
            f"/api/panel/categories/{category['id']}/mappings",
            json={"extractedLabel": "Cervezas", "storeName": "jumbo"},
        ).json()["data"]

        wrong_kind = self.client.delete(f"/api/panel/brands/{brand['id']}/mappings/{mapping['id']}")
        self.assertEqual(wrong_kind.json()["data"], {"deleted": False})
        wrong_entity = self.client.delete(
            f"/api/panel/categories/{category['id'] + 1}/mappings/{mapping['id']}"
        )
        self.assertEqual(wrong_entity.json()["data"], {"deleted": False})

        remaining = self.client.get(f"/api/panel/categories/{category['id']}/mappings").json()["data"]
        self.assertEqual([m["id"] for m in remaining], [mapping["id"]])

        removed = self.client.delete(f"/api/panel/categories/{category['id']}/mappings/{mapping['id']}")
        self.assertEqual(removed.json()["data"], {"deleted": True})


class TestSecurityRoutes(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.login()

    def test_ip_rule_crud(self):
        created = self.client.post(
            "/api/panel/security/ip-rules",
            json={"ip": "198.51.100.0/24", "type": "blacklist", "reason": "scraping"},
        )
        self.assertEqual(created.status_code, 200)
        rule = created.json()["data"]
        self.assertEqual(rule["createdBy"], "admin")

        duplicate = self.client.post(
            "/api/panel/security/ip-rules", json={"ip": "198.51.100.0/24", "type": "whitelist"}
        )
        self.assertEqual(duplicate.status_code, 409)
        bad = self.client.post("/api/panel/security/ip-rules", json={"ip": "not-an-ip", "type": "blacklist"})
        self.assertEqual(bad.status_code, 400)

        listed = self.client.get("/api/panel/security/ip-rules", params={"type": "blacklist"}).json()["data"]
        self.assertEqual([r["id"] for r in listed], [rule["id"]])

        self.assertEqual(self.client.delete(f"/api/panel/security/ip-rules/{rule['id']}").status_code, 200)
        self.assertEqual(self.client.delete(f"/api/panel/security/ip-rules/{rule['id']}").status_code, 404)

    def test_config_update_validates(self):
        config = self.client.get("/api/panel/image-proxy/config").json()["data"]
        self.assertEqual(config["rateLimitPerMinute"], 100)
        self.assertTrue(config["isActive"])

        updated = self.client.put("/api/panel/image-proxy/config", json={"cacheTTL": 120})
        self.assertEqual(updated.json()["data"]["cacheTTL"], 120)
        self.assertEqual(self.app.state.image_cache.ttl, 120)

        invalid = self.client.put("/api/panel/image-proxy/config", json={"cacheTTL": 10})
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(self.client.get("/api/panel/image-proxy/config").json()["data"]["cacheTTL"], 120)

    def test_blocked_ip_is_rejected_by_middleware(self):
        blocked = self.client.post("/api/panel/image-proxy/block", json={"ip": "203.0.113.5"})
        self.assertEqual(blocked.json()["data"]["blacklistedIPs"], ["203.0.113.5"])

        response = self.client.get("/api/panel/brands", headers={"X-Forwarded-For": "203.0.113.5"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["visitorState"], "IP_BLOCKED")

        self.client.post("/api/panel/image-proxy/unblock", json={"ip": "203.0.113.5"})
        response = self.client.get("/api/panel/brands", headers={"X-Forwarded-For": "203.0.113.5"})
        self.assertEqual(response.status_code, 200)

    def test_trap_path_blacklists_client(self):
        headers = {"X-Forwarded-For": "203.0.113.66"}

        trapped = self.client.get("/wp-login.php", headers=headers)
        self.assertEqual(trapped.status_code, 403)
        self.assertEqual(trapped.json()["visitorState"], "IP_BLOCKED")

        self.assertEqual(self.client.get("/api/panel/brands", headers=headers).status_code, 403)
        self.assertEqual(self.client.get("/api/panel/brands").status_code, 200)

        rules = self.client.get("/api/panel/security/ip-rules", params={"type": "blacklist"}).json()["data"]
        self.assertEqual([(r["ip"], r["createdBy"]) for r in rules], [("203.0.113.66", "honeypot")])

    def test_rate_limit_returns_retry_after(self):
        self.app.state.proxy_config.update({"rateLimitPerMinute": 1})
        headers = {"X-Forwarded-For": "192.0.2.44"}

        responses = [self.client.get("/api/panel/brands", headers=headers) for _ in range(3)]

        limited = [r for r in responses if r.status_code == 429]
        self.assertTrue(limited)
        self.assertIn("Retry-After", limited[0].headers)

    def test_logs_and_metrics(self):
        self.client.get("/api/panel/brands", headers={"X-Forwarded-For": "192.0.2.10"})

        logs = self.client.get("/api/panel/security/logs", params={"ip": "192.0.2.10"}).json()["data"]
        self.assertEqual(logs["pagination"]["total"], 1)
        self.assertEqual(logs["logs"][0]["ip"], "192.0.2.10")

        metrics = self.client.get("/api/panel/security/metrics")
        self.assertEqual(metrics.status_code, 200)
        self.assertTrue(metrics.json()["success"])

        invalid = self.client.get("/api/panel/security/logs", params={"visitorState": "EVIL"})
        self.assertEqual(invalid.status_code, 400)


class TestImageProxy(ApiTestCase):
    def setUp(self):
        import httpx

        from gondola.models import Product

        super().setUp()
        self.fetches = []
        self.upstream_status = 200

        def handler(request: httpx.Request) -> httpx.Response:
            self.fetches.append(str(request.url))
            return httpx.Response(
                self.upstream_status,
                content=b"\xff\xd8jpeg",
                headers={"content-type": "image/jpeg"},
            )

        self.app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.db.save_product(
            Product(
                store="jumbo",
                external_id="1",
                title="Quilmes Cristal 1L",
                price=1500.0,
                image_url="https://cdn.example.com/quilmes.jpg",
            )
        )
        self.db.save_product(Product(store="jumbo", external_id="2", title="Sin imagen", price=10.0))
        self.product_id = self._product_id("1")
        self.bare_product_id = self._product_id("2")

    def _product_id(self, external_id: str) -> int:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT id FROM products WHERE store = ? AND external_id = ?",
                ("jumbo", external_id),
            ).fetchone()
        return row["id"]

    def test_miss_then_hit(self):
        first = self.client.get(f"/images/{self.product_id}")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.headers["X-Cache"], "MISS")
        self.assertEqual(first.headers["Cache-Control"], "public, max-age=3600")
        self.assertEqual(first.content, b"\xff\xd8jpeg")

        second = self.client.get(f"/images/{self.product_id}")
        self.assertEqual(second.headers["X-Cache"], "HIT")
        self.assertEqual(self.fetches, ["https://cdn.example.com/quilmes.jpg"])

    def test_upstream_error_is_bad_gateway(self):
        self.upstream_status = 500

        response = self.client.get(f"/images/{self.product_id}")

        self.assertEqual(response.status_code, 502)
        self.assertFalse(response.json()["success"])
        self.assertIsNone(self.app.state.image_cache.get(str(self.product_id)))

    def test_missing_product_or_image(self):
        self.assertEqual(self.client.get("/images/9999").status_code, 404)
        self.assertEqual(self.client.get(f"/images/{self.bare_product_id}").status_code, 404)

    def test_inactive_proxy_redirects_upstream(self):
        self.app.state.proxy_config.update({"isActive": False})

        response = self.client.get(f"/images/{self.product_id}", follow_redirects=False)

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers["location"], "https://cdn.example.com/quilmes.jpg")
        self.assertEqual(self.fetches, [])

    def test_hotlinked_image_is_rejected(self):
        self.app.state.proxy_config.update(
            {"hotlinkProtectionEnabled": True, "allowedDomains": ["gondola.com.ar"]}
        )

        rejected = self.client.get(f"/images/{self.product_id}", headers={"Referer": "https://evil.example/"})
        allowed = self.client.get(f"/images/{self.product_id}", headers={"Referer": "https://gondola.com.ar/p/1"})

        self.assertEqual(rejected.status_code, 403)
        self.assertEqual(allowed.status_code, 200)
