import asyncio
import logging

from wiki.http.bridge import PAGE_SAVED_ADDRESS
from tests.base import TestCase

logger = logging.getLogger(__name__)


class TestApi(TestCase):
    async def asyncSetUp(self):
        self.deployment = await self.deploy()
        self.client = self.get_client(self.deployment)

    async def test_play_with_api(self):
        response = await self.client.post(
            "/api/pages", json={"name": "Sample", "markdown": "# A page"}
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json(), {"success": True})

        response = await self.client.get("/api/pages")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"success": True, "pages": [{"id": 0, "name": "Sample"}]}
        )

        response = await self.client.put(
            "/api/pages/0", json={"id": 0, "markdown": "Oh Yeah!"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])

        response = await self.client.get("/api/pages/0")
        self.assertEqual(response.json()["page"]["markdown"], "Oh Yeah!")

        response = await self.client.delete("/api/pages/0")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])

        response = await self.client.get("/api/pages")
        self.assertEqual(response.json(), {"success": True, "pages": []})

    async def test_get_page(self):
        await self.client.post("/api/pages", json={"name": "Hello", "markdown": "# Hello"})
        response = await self.client.get("/api/pages/0")
        self.assertEqual(response.status_code, 200)
        page = response.json()["page"]
        self.assertEqual(page["id"], 0)
        self.assertEqual(page["name"], "Hello")
        self.assertEqual(page["markdown"], "# Hello")
        self.assertEqual(page["html"], "<h1>Hello</h1>")

    async def test_page_not_found(self):
        response = await self.client.get("/api/pages/42")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json(), {"success": False, "error": "There is no page with ID 42"}
        )

    async def test_bad_payloads(self):
        response = await self.client.post("/api/pages", json={"name": "No markdown"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"success": False, "error": "Bad request payload"})

        response = await self.client.post(
            "/api/pages", content=b"not json", headers={"Content-Type": "application/json"}
        )
        self.assertEqual(response.status_code, 400)

        response = await self.client.put("/api/pages/0", json={"client": "x"})
        self.assertEqual(response.status_code, 400)

        response = await self.client.put("/api/pages/0", json=["markdown"])
        self.assertEqual(response.status_code, 400)

        for payload in [
            {"name": ["x"], "markdown": "a"},
            {"name": "N", "markdown": None},
            {"name": "N", "markdown": 42},
        ]:
            response = await self.client.post("/api/pages", json=payload)
            self.assertEqual(response.status_code, 400, payload)
            self.assertEqual(
                response.json(), {"success": False, "error": "Bad request payload"}
            )
        self.assertFalse((await self.deployment.database.service.fetch_page("N")).found)

        await self.client.post("/api/pages", json={"name": "Typed", "markdown": "ok"})
        for payload in [{"markdown": {"a": 1}}, {"markdown": "x", "client": 7}]:
            response = await self.client.put("/api/pages/0", json=payload)
            self.assertEqual(response.status_code, 400, payload)
        response = await self.client.get("/api/pages/0")
        self.assertEqual(response.json()["page"]["markdown"], "ok")

    async def test_bad_id(self):
        response = await self.client.get("/api/pages/abc")
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

        response = await self.client.delete("/api/pages/abc")
        self.assertEqual(response.status_code, 400)

    async def test_duplicate_page(self):
        payload = {"name": "Twice", "markdown": "text"}
        response = await self.client.post("/api/pages", json=payload)
        self.assertEqual(response.status_code, 201)
        response = await self.client.post("/api/pages", json=payload)
        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertIn("Twice", body["error"])

    async def test_update_publishes_page_saved(self):
        await self.client.post("/api/pages", json={"name": "Watched", "markdown": ""})
        saved = asyncio.get_running_loop().create_future()
        self.deployment.bus.consumer(
            PAGE_SAVED_ADDRESS, lambda message: saved.set_result(message.body)
        )

        response = await self.client.put(
            "/api/pages/0", json={"markdown": "new", "client": "client-1"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(await asyncio.wait_for(saved, 1), {"id": 0, "client": "client-1"})

    async def test_stale_update_after_delete(self):
        await self.client.post("/api/pages", json={"name": "A", "markdown": "a"})
        await self.client.post("/api/pages", json={"name": "B", "markdown": "b"})
        await self.client.delete("/api/pages/1")
        response = await self.client.post("/api/pages", json={"name": "C", "markdown": "c"})
        self.assertEqual(response.status_code, 201)

        saved = []
        self.deployment.bus.consumer(
            PAGE_SAVED_ADDRESS, lambda message: saved.append(message.body)
        )
        response = await self.client.put(
            "/api/pages/1", json={"markdown": "stale write for B", "client": "old-tab"}
        )
        self.assertEqual(response.status_code, 200)

        response = await self.client.get("/api/pages")
        self.assertEqual(
            response.json()["pages"], [{"id": 0, "name": "A"}, {"id": 2, "name": "C"}]
        )
        response = await self.client.get("/api/pages/2")
        self.assertEqual(response.json()["page"]["markdown"], "c")
        # nothing was saved, so nothing is announced
        await asyncio.sleep(0.05)
        self.assertEqual(saved, [])

    async def test_token_without_auth(self):
        response = await self.client.get("/api/token")
        self.assertEqual(response.status_code, 404)

    async def test_markdown_rendering(self):
        response = await self.client.post("/app/markdown", content=b"*hi*")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "<p><em>hi</em></p>")

    async def test_static_editor(self):
        response = await self.client.get("/app/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("wiki.js", response.text)
        self.assertIn("no-cache", response.headers["cache-control"])

        response = await self.client.get("/app/wiki.js")
        self.assertEqual(response.status_code, 200)
        self.assertIn("app.markdown", response.text)
