"""
Websocket bridge between the browsers and the event bus.

Frames are JSON objects. From the browser:

    {"type": "send", "address": ..., "body": ..., "replyAddress": ...}
    {"type": "publish", "address": ..., "body": ...}
    {"type": "register", "address": ...}
    {"type": "unregister", "address": ...}
    {"type": "ping"}

To the browser:

    {"type": "rec", "address": ..., "body": ...}
    {"type": "err", "address": ..., "failureCode": ..., "message": ...}
    {"type": "pong"}

Only the permitted addresses can be reached: inbound ones for send and
publish, outbound ones for register.
"""

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from wiki.errors import ReplyException
from wiki.eventbus import EventBus, Message, MessageConsumer
from wiki.render import render_markdown

logger = logging.getLogger(__name__)

MARKDOWN_ADDRESS = "app.markdown"
PAGE_SAVED_ADDRESS = "page.saved"


def register_markdown_renderer(bus: EventBus) -> MessageConsumer:
    """
    Replies to each markdown text sent to app.markdown with its HTML.
    """

    def on_markdown(message: Message) -> None:
        message.reply(render_markdown(message.body or ""))

    return bus.consumer(MARKDOWN_ADDRESS, on_markdown)


class EventBusBridge:
    """
    Relays frames of each websocket connection to and from the bus.
    """

    def __init__(
        self,
        bus: EventBus,
        inbound_permitted: list[str] | None = None,
        outbound_permitted: list[str] | None = None,
    ):
        self.bus = bus
        self.inbound_permitted = inbound_permitted or [MARKDOWN_ADDRESS]
        self.outbound_permitted = outbound_permitted or [PAGE_SAVED_ADDRESS]
        self.connections = 0

    async def handle(self, websocket: WebSocket) -> None:
        """
        Serve a websocket connection until the browser disconnects.
        """
        await websocket.accept()
        self.connections += 1
        logger.info("Bridge connected (total: %d)", self.connections)
        registrations: dict[str, MessageConsumer] = {}
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    frame = json.loads(text)
                except ValueError:
                    frame = None
                await self.on_frame(websocket, frame, registrations)
        except WebSocketDisconnect:
            pass
        finally:
            for consumer in registrations.values():
                consumer.unregister()
            self.connections -= 1
            logger.info("Bridge disconnected (total: %d)", self.connections)

    async def on_frame(
        self,
        websocket: WebSocket,
        frame: Any,
        registrations: dict[str, MessageConsumer],
    ) -> None:
        if not isinstance(frame, dict) or "type" not in frame:
            await self.send_error(websocket, None, "invalid_frame")
            return

        frame_type = frame["type"]
        address = frame.get("address")
        if frame_type == "ping":
            await websocket.send_json({"type": "pong"})
        elif frame_type in ("send", "publish"):
            if address not in self.inbound_permitted:
                logger.warning("Bridge denied %s to address=%s", frame_type, address)
                await self.send_error(websocket, address, "access_denied")
                return
            await self.on_inbound(websocket, frame_type, frame)
        elif frame_type == "register":
            if address not in self.outbound_permitted:
                logger.warning("Bridge denied register to address=%s", address)
                await self.send_error(websocket, address, "access_denied")
                return
            if address not in registrations:
                registrations[address] = self.bus.consumer(
                    address, self.forward_to(websocket)
                )
        elif frame_type == "unregister":
            consumer = registrations.pop(address, None)
            if consumer:
                consumer.unregister()
        else:
            await self.send_error(websocket, address, "unknown_type")

    async def on_inbound(self, websocket: WebSocket, frame_type: str, frame: dict) -> None:
        address = frame["address"]
        body = frame.get("body")
        headers = frame.get("headers") or {}
        reply_address = frame.get("replyAddress")

        if frame_type == "publish":
            self.bus.publish(address, body, headers)
        elif not reply_address:
            self.bus.send(address, body, headers)
        else:
            try:
                reply = await self.bus.request(address, body, headers)
            except ReplyException as e:
                await websocket.send_json(
                    {
                        "type": "err",
                        "address": reply_address,
                        "failureCode": e.failure_code,
                        "message": e.message,
                    }
                )
                return
            await websocket.send_json(
                {"type": "rec", "address": reply_address, "body": reply.body}
            )

    def forward_to(self, websocket: WebSocket):
        async def forward(message: Message) -> None:
            await websocket.send_json(
                {"type": "rec", "address": message.address, "body": message.body}
            )

        return forward

    async def send_error(self, websocket: WebSocket, address: str | None, error: str) -> None:
        await websocket.send_json({"type": "err", "address": address, "message": error})
