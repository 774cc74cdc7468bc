import asyncio
import json
import unittest

from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from wiki.config import Config
from wiki.database.proxy import WikiDatabaseServiceProxy
from wiki.eventbus import EventBus
from wiki.http.app import create_app
from wiki.http.bridge import (
    MARKDOWN_ADDRESS,
    PAGE_SAVED_ADDRESS,
    EventBusBridge,
    register_markdown_renderer,
)
from tests.base import TestCase


class FakeWebSocket:
    def __init__(self, texts=()):
        self.sent = []
        self.texts = list(texts)

    async def accept(self):
        pass

    async def receive_text(self):
        if not self.texts:
            raise WebSocketDisconnect()
        return self.texts.pop(0)

    async def send_json(self, data):
        self.sent.append(data)


class TestBridgeFrames(TestCase):
    async def asyncSetUp(self):
        self.bus = EventBus(request_timeout=1)
        self.bridge = EventBusBridge(self.bus)
        self.websocket = FakeWebSocket()
        self.registrations = {}
        register_markdown_renderer(self.bus)
        self.addAsyncCleanup(self.bus.close)

    async def frame(self, frame):
        await self.bridge.on_frame(self.websocket, frame, self.registrations)

    async def test_ping(self):
        await self.frame({"type": "ping"})
        self.assertEqual(self.websocket.sent, [{"type": "pong"}])

    async def test_markdown_request(self):
        await self.frame(
            {
                "type": "send",
                "address": MARKDOWN_ADDRESS,
                "body": "# Hello",
                "replyAddress": "reply-1",
            }
        )
        self.assertEqual(
            self.websocket.sent,
            [{"type": "rec", "address": "reply-1", "body": "<h1>Hello</h1>"}],
        )

    async def test_access_denied(self):
        await self.frame({"type": "send", "address": "wikidb.queue", "body": {}})
        await self.frame({"type": "publish", "address": PAGE_SAVED_ADDRESS, "body": {}})
        await self.frame({"type": "register", "address": "wikidb.queue"})
        self.assertEqual(len(self.websocket.sent), 3)
        for frame in self.websocket.sent:
            self.assertEqual(frame["type"], "err")
            self.assertEqual(frame["message"], "access_denied")
        self.assertEqual(self.registrations, {})

    async def test_invalid_frames(self):
        await self.frame(None)
        await self.frame({"address": MARKDOWN_ADDRESS})
        await self.frame({"type": "shout"})
        self.assertEqual(
            [frame["message"] for frame in self.websocket.sent],
            ["invalid_frame", "invalid_frame", "unknown_type"],
        )

    async def test_failed_request(self):
        bridge = EventBusBridge(self.bus, inbound_permitted=["app.nobody"])
        await bridge.on_frame(
            self.websocket,
            {"type": "send", "address": "app.nobody", "replyAddress": "reply-2"},
            self.registrations,
        )
        self.assertEqual(self.websocket.sent[0]["type"], "err")
        self.assertEqual(self.websocket.sent[0]["address"], "reply-2")
        self.assertEqual(self.websocket.sent[0]["failureCode"], "NO_HANDLERS")

    async def test_register_and_forward(self):
        await self.frame({"type": "register", "address": PAGE_SAVED_ADDRESS})
        await self.frame({"type": "register", "address": PAGE_SAVED_ADDRESS})
        self.assertEqual(self.bus.publish(PAGE_SAVED_ADDRESS, {"id": 3, "client": "c1"}), 1)
        await asyncio.sleep(0.01)
        self.assertEqual(
            self.websocket.sent,
            [{"type": "rec", "address": PAGE_SAVED_ADDRESS, "body": {"id": 3, "client": "c1"}}],
        )

        await self.frame({"type": "unregister", "address": PAGE_SAVED_ADDRESS})
        self.assertEqual(self.bus.publish(PAGE_SAVED_ADDRESS, {"id": 3}), 0)


class TestBridgeWebSocket(unittest.TestCase):
    def setUp(self):
        self.bus = EventBus(request_timeout=1)
        register_markdown_renderer(self.bus)
        config = Config()
        config.http.session_secret = "test-session-secret"
        self.app = create_app(
            config, WikiDatabaseServiceProxy(self.bus, config.database.queue), self.bus
        )

    def test_websocket(self):
        with TestClient(self.app) as client:
            with client.websocket_connect("/eventbus") as websocket:
                websocket.send_json(
                    {
                        "type": "send",
                        "address": MARKDOWN_ADDRESS,
                        "body": "*hi*",
                        "replyAddress": "reply-1",
                    }
                )
                self.assertEqual(
                    websocket.receive_json(),
                    {"type": "rec", "address": "reply-1", "body": "<p><em>hi</em></p>"},
                )

                websocket.send_text("not json")
                self.assertEqual(websocket.receive_json()["message"], "invalid_frame")

                websocket.send_json({"type": "register", "address": PAGE_SAVED_ADDRESS})
                # frames are handled in order, so the pong means the registration is done
                websocket.send_json({"type": "ping"})
                self.assertEqual(websocket.receive_json(), {"type": "pong"})

                async def publish():
                    return self.bus.publish(PAGE_SAVED_ADDRESS, {"id": 0, "client": None})

                self.assertEqual(client.portal.call(publish), 1)
                self.assertEqual(
                    json.loads(websocket.receive_text()),
                    {"type": "rec", "address": PAGE_SAVED_ADDRESS, "body": {"id": 0, "client": None}},
                )


class TestBridgeConnection(TestCase):
    async def test_unregister_on_disconnect(self):
        bus = EventBus(request_timeout=1)
        self.addAsyncCleanup(bus.close)
        bridge = EventBusBridge(bus)
        websocket = FakeWebSocket(
            [json.dumps({"type": "register", "address": PAGE_SAVED_ADDRESS}), "{"]
        )
        await bridge.handle(websocket)
        self.assertEqual(websocket.sent[0]["message"], "invalid_frame")
        self.assertFalse(bus.has_consumers(PAGE_SAVED_ADDRESS))
        self.assertEqual(bridge.connections, 0)
