"""
Access to a WikiDatabaseService over the event bus.

`bind_service` exposes an implementation on an address, and
`WikiDatabaseServiceProxy` is a WikiDatabaseService that sends each call to
that address. The operation goes in the `action` header, the arguments and
the result are JSON bodies.
"""

import logging
from typing import Any, Awaitable, Callable

from wiki.database.service import WikiDatabaseService
from wiki.errors import DatabaseError, DuplicatePageError, ReplyException
from wiki.eventbus import EventBus, Message, MessageConsumer
from wiki.types import PageLookup, PageRecord

logger = logging.getLogger(__name__)

DB_ERROR = "DB_ERROR"
DUPLICATE_PAGE = "DUPLICATE_PAGE"
BAD_ACTION = "BAD_ACTION"


def _actions(
    service: WikiDatabaseService,
) -> dict[str, Callable[[dict], Awaitable[Any]]]:
    async def fetch_all_pages(body: dict):
        return await service.fetch_all_pages()

    async def fetch_all_pages_data(body: dict):
        return [page.to_dict() for page in await service.fetch_all_pages_data()]

    async def fetch_page(body: dict):
        return (await service.fetch_page(body["name"])).to_dict()

    async def fetch_page_by_id(body: dict):
        return (await service.fetch_page_by_id(int(body["id"]))).to_dict()

    async def create_page(body: dict):
        await service.create_page(body["name"], body["markdown"])

    async def save_page(body: dict):
        return await service.save_page(int(body["id"]), body["markdown"])

    async def delete_page(body: dict):
        await service.delete_page(int(body["id"]))

    return {
        "fetch-all-pages": fetch_all_pages,
        "fetch-all-pages-data": fetch_all_pages_data,
        "fetch-page": fetch_page,
        "fetch-page-by-id": fetch_page_by_id,
        "create-page": create_page,
        "save-page": save_page,
        "delete-page": delete_page,
    }


def bind_service(
    bus: EventBus, address: str, service: WikiDatabaseService
) -> MessageConsumer:
    """
    Register a consumer at address that runs the requested action on service.
    """
    actions = _actions(service)

    async def on_message(message: Message) -> None:
        action = message.headers.get("action")
        if action not in actions:
            logger.error("Bad action=%s on address=%s", action, address)
            message.fail(BAD_ACTION, f"Bad action: {action}")
            return
        body = message.body or {}
        try:
            result = await actions[action](body)
        except DuplicatePageError as e:
            message.fail(DUPLICATE_PAGE, str(e))
            return
        except DatabaseError as e:
            message.fail(DB_ERROR, str(e))
            return
        except (KeyError, ValueError, TypeError) as e:
            logger.error("Bad payload for action=%s: %s", action, e)
            message.fail(BAD_ACTION, f"Bad payload for {action}: {e}")
            return
        message.reply(result)

    logger.info("Binding %s at address=%s", service, address)
    return bus.consumer(address, on_message)


class WikiDatabaseServiceProxy(WikiDatabaseService):
    """
    Stand-in for the database service, calling it over the event bus.
    """

    def __init__(self, bus: EventBus, address: str):
        self.bus = bus
        self.address = address

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} address={self.address}>"

    async def _request(self, action: str, body: dict | None = None) -> Any:
        try:
            reply = await self.bus.request(
                self.address, body or {}, headers={"action": action}
            )
        except ReplyException as e:
            if e.failure_code == DUPLICATE_PAGE and body:
                raise DuplicatePageError(body["name"]) from e
            logger.error(
                "Request action=%s failed code=%s: %s", action, e.failure_code, e.message
            )
            raise DatabaseError(e.message) from e
        return reply.body

    async def fetch_all_pages(self) -> list[str]:
        return await self._request("fetch-all-pages")

    async def fetch_all_pages_data(self) -> list[PageRecord]:
        pages = await self._request("fetch-all-pages-data")
        return [PageRecord.from_dict(page) for page in pages]

    async def fetch_page(self, name: str) -> PageLookup:
        return PageLookup.from_dict(await self._request("fetch-page", {"name": name}))

    async def fetch_page_by_id(self, id: int) -> PageLookup:
        return PageLookup.from_dict(
            await self._request("fetch-page-by-id", {"id": id})
        )

    async def create_page(self, name: str, markdown: str) -> None:
        await self._request("create-page", {"name": name, "markdown": markdown})

    async def save_page(self, id: int, markdown: str) -> bool:
        return bool(await self._request("save-page", {"id": id, "markdown": markdown}))

    async def delete_page(self, id: int) -> None:
        await self._request("delete-page", {"id": id})
