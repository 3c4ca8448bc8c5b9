from __future__ import annotations

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

_SITES_DIR = tempfile.mkdtemp(prefix="siteclone-sites-")
os.environ["SITES_DIR"] = _SITES_DIR

from fastapi.testclient import TestClient  # noqa: E402

from siteclone import main  # noqa: E402
from siteclone.cloner import WebsiteCloner  # noqa: E402
from siteclone.errors import CloneTimeoutError  # noqa: E402
from siteclone.events import EventLog  # noqa: E402

from support import FakeAcquirer, make_transport  # noqa: E402

PAGE = "<html><head><title>Old Hotel</title></head><body><h1>Old Hotel</h1></body></html>"
PAYLOAD = {"url": "https://oldhotel.example.com/", "identity": {"name": "New Hotel"}}


def tearDownModule() -> None:
    shutil.rmtree(_SITES_DIR, ignore_errors=True)


def fake_cloner() -> WebsiteCloner:
    transport, _calls = make_transport({})
    return WebsiteCloner(settings=main.settings, acquirer=FakeAcquirer(PAGE), transport=transport)


class TimingOutCloner:
    def __init__(self) -> None:
        self.events = EventLog()

    async def clone(self, source_url, identity, output_dir=None, previous_identity=None):
        raise CloneTimeoutError(source_url, 1.0)


def timing_out_cloner() -> TimingOutCloner:
    return TimingOutCloner()


class SitesApiTest(unittest.TestCase):
    def setUp(self) -> None:
        main.app.dependency_overrides[main.get_cloner] = fake_cloner
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        main.app.dependency_overrides.clear()

    def test_root(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("running", response.json()["message"])

    def test_invalid_url_is_a_bad_request(self) -> None:
        response = self.client.post("/api/sites/clone", json={"url": "not a url", "identity": {"name": "X"}})
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertIn("Invalid URL format", body["error"])

    def test_missing_name_is_a_bad_request(self) -> None:
        response = self.client.post("/api/sites/clone", json={"url": PAYLOAD["url"], "identity": {}})
        self.assertEqual(response.status_code, 400)

    def test_clone_list_serve_and_delete(self) -> None:
        response = self.client.post("/api/sites/clone", json=PAYLOAD)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertFalse(body["is_fallback"])
        folder = body["folder_name"]
        self.assertEqual(body["site_url"], f"/sites/{folder}/")

        listing = self.client.get("/api/sites").json()
        self.assertIn(folder, [site["folder_name"] for site in listing["sites"]])

        page = self.client.get(f"/sites/{folder}/")
        self.assertEqual(page.status_code, 200)
        self.assertIn("New Hotel", page.text)
        self.assertNotIn("Old Hotel", page.text)

        self.assertEqual(self.client.delete(f"/api/sites/{folder}").status_code, 200)
        self.assertEqual(self.client.delete(f"/api/sites/{folder}").status_code, 404)

    def test_timeout_is_a_gateway_timeout(self) -> None:
        main.app.dependency_overrides[main.get_cloner] = timing_out_cloner
        response = self.client.post("/api/sites/clone", json=PAYLOAD)
        self.assertEqual(response.status_code, 504)
        self.assertIn("timed out", response.json()["error"])


class BackgroundCloneTest(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def test_unknown_request_is_not_found(self) -> None:
        self.assertEqual(self.client.get("/api/clone/unknown").status_code, 404)

    def test_background_clone_completes(self) -> None:
        with patch.object(main, "get_cloner", fake_cloner):
            accepted = self.client.post("/api/clone", json=PAYLOAD)
        self.assertEqual(accepted.status_code, 200)
        request_id = accepted.json()["request_id"]

        result = self.client.get(f"/api/clone/{request_id}").json()
        self.assertEqual(result["status"], "completed")
        self.assertFalse(result["is_fallback"])
        self.assertTrue(result["site_url"].startswith("/sites/new-hotel-cloned-"))

        with self.client.websocket_connect(f"/ws/{request_id}") as websocket:
            self.assertEqual(websocket.receive_json()["status"], "completed")

    def test_background_failure_is_recorded(self) -> None:
        with patch.object(main, "get_cloner", timing_out_cloner):
            request_id = self.client.post("/api/clone", json=PAYLOAD).json()["request_id"]

        result = self.client.get(f"/api/clone/{request_id}").json()
        self.assertEqual(result["status"], "failed")
        self.assertIn("timed out", result["error"])


if __name__ == "__main__":
    unittest.main()
