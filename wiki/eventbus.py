"""
In-process event bus.

Consumers register on a string address. Messages can be sent point to point
with a reply (`request`), point to point without a reply (`send`), or to all
the consumers of an address (`publish`). Point to point delivery rotates
between the consumers of the address.

Bodies must be JSON-serializable: each delivery gets its own decoded copy, so
consumers never share state with the sender.
"""

import asyncio
import inspect
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from wiki.errors import ReplyException

logger = logging.getLogger(__name__)

Handler = Callable[["Message"], Awaitable[None] | None]


def copy_body(body: Any) -> Any:
    """
    Encode and decode the body, as if it travelled over the wire.
    """
    if body is None:
        return None
    return json.loads(json.dumps(body))


@dataclass
class Message:
    """
    A message as received by a consumer.
    """

    address: str
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    reply_future: asyncio.Future | None = None

    @property
    def expects_reply(self) -> bool:
        return self.reply_future is not None

    def reply(self, body: Any = None, headers: dict[str, str] | None = None) -> None:
        """
        Reply to the sender. Ignored if the sender does not expect a reply.
        """
        if self.reply_future is None or self.reply_future.done():
            return
        self.reply_future.set_result(
            Message(address=self.address, body=copy_body(body), headers=headers or {})
        )

    def fail(self, failure_code: str, message: str) -> None:
        """
        Fail the request, the sender gets a ReplyException.
        """
        if self.reply_future is None or self.reply_future.done():
            return
        self.reply_future.set_exception(ReplyException(failure_code, message))


class MessageConsumer:
    """
    A registration of a handler on an address.
    """

    def __init__(self, bus: "EventBus", address: str, handler: Handler):
        self.bus = bus
        self.address = address
        self.handler = handler

    def __repr__(self) -> str:
        return f"<MessageConsumer address={self.address}>"

    def unregister(self) -> None:
        self.bus.unregister(self)


class EventBus:
    """
    Asynchronous in-process message relay.
    """

    def __init__(self, request_timeout: float = 30.0):
        self.request_timeout = request_timeout
        self._consumers: dict[str, list[MessageConsumer]] = {}
        self._round_robin: dict[str, itertools.count] = {}
        self._tasks: set[asyncio.Task] = set()

    def consumer(self, address: str, handler: Handler) -> MessageConsumer:
        """
        Register a handler on an address.
        """
        consumer = MessageConsumer(self, address, handler)
        self._consumers.setdefault(address, []).append(consumer)
        logger.debug("Registered consumer on address=%s", address)
        return consumer

    def unregister(self, consumer: MessageConsumer) -> None:
        consumers = self._consumers.get(consumer.address, [])
        if consumer in consumers:
            consumers.remove(consumer)
            logger.debug("Unregistered consumer on address=%s", consumer.address)
        if not consumers:
            self._consumers.pop(consumer.address, None)
            self._round_robin.pop(consumer.address, None)

    def has_consumers(self, address: str) -> bool:
        return bool(self._consumers.get(address))

    def _next_consumer(self, address: str) -> MessageConsumer | None:
        consumers = self._consumers.get(address)
        if not consumers:
            return None
        counter = self._round_robin.setdefault(address, itertools.count())
        return consumers[next(counter) % len(consumers)]

    async def request(
        self,
        address: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Message:
        """
        Send a message to one consumer and wait for its reply.

        Raises ReplyException if there is no consumer, if the consumer fails
        or does not reply in time.
        """
        consumer = self._next_consumer(address)
        if consumer is None:
            raise ReplyException(
                ReplyException.NO_HANDLERS, f"No handlers for address {address}"
            )
        reply_future = asyncio.get_running_loop().create_future()
        message = Message(
            address=address,
            body=copy_body(body),
            headers=dict(headers or {}),
            reply_future=reply_future,
        )
        self._dispatch(consumer, message)
        timeout = self.request_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(reply_future, timeout)
        except asyncio.TimeoutError as e:
            raise ReplyException(
                ReplyException.TIMEOUT,
                f"Timed out after waiting {timeout}s for a reply on address {address}",
            ) from e

    def send(
        self, address: str, body: Any = None, headers: dict[str, str] | None = None
    ) -> None:
        """
        Send a message to one consumer, not waiting for any reply.
        """
        consumer = self._next_consumer(address)
        if consumer is None:
            logger.debug("Dropping message to address=%s, no consumers", address)
            return
        self._dispatch(
            consumer,
            Message(address=address, body=copy_body(body), headers=dict(headers or {})),
        )

    def publish(
        self, address: str, body: Any = None, headers: dict[str, str] | None = None
    ) -> int:
        """
        Send a message to all the consumers of the address.

        Returns how many consumers it was delivered to.
        """
        consumers = list(self._consumers.get(address, []))
        for consumer in consumers:
            self._dispatch(
                consumer,
                Message(
                    address=address, body=copy_body(body), headers=dict(headers or {})
                ),
            )
        logger.debug("Published to address=%s consumers=%d", address, len(consumers))
        return len(consumers)

    def _dispatch(self, consumer: MessageConsumer, message: Message) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(consumer, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, consumer: MessageConsumer, message: Message) -> None:
        try:
            result = consumer.handler(message)
            if inspect.isawaitable(result):
                await result
        except ReplyException as e:
            message.fail(e.failure_code, e.message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.exception("Consumer failed on address=%s", message.address)
            if message.expects_reply:
                message.fail(ReplyException.RECIPIENT_FAILURE, str(e))

    async def close(self) -> None:
        """
        Drop all the consumers and wait for the pending deliveries.
        """
        self._consumers.clear()
        self._round_robin.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
