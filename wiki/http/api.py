"""
JSON API over the pages.

Every response is `{"success": true, ...}` or `{"success": false, "error": ...}`.
"""

import json
import logging
from typing import Any

import fastapi
import fastapi.responses

from wiki.auth import AuthStore, TokenIssuer
from wiki.database.service import WikiDatabaseService
from wiki.eventbus import EventBus
from wiki.http.bridge import PAGE_SAVED_ADDRESS
from wiki.http.security import Security, require_permission
from wiki.render import render_markdown

logger = logging.getLogger(__name__)


def api_response(status_code: int = 200, **fields: Any) -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(
        {"success": True, **fields}, status_code=status_code
    )


def api_failure(status_code: int, error: str) -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(
        {"success": False, "error": error}, status_code=status_code
    )


class BadRequest(Exception):
    """
    The request id or payload is not valid. Answered with a 400.
    """


def parse_id(id: str) -> int:
    try:
        return int(id)
    except ValueError as e:
        logger.error("Bad page id: %s", id)
        raise BadRequest("Bad request payload") from e


async def read_page_document(request: fastapi.Request, *expected_keys: str) -> dict:
    """
    Read the JSON body, checking it has all the expected keys as strings.
    The optional `client` must be a string or null.
    """
    try:
        page = await request.json()
    except (ValueError, UnicodeDecodeError) as e:
        raise BadRequest("Bad request payload") from e
    if (
        not isinstance(page, dict)
        or not all(isinstance(page.get(key), str) for key in expected_keys)
        or not isinstance(page.get("client"), (str, type(None)))
    ):
        client = request.client.host if request.client else "unknown"
        logger.error("Bad page JSON payload: %s from %s", json.dumps(page), client)
        raise BadRequest("Bad request payload")
    return page


def create_api_router(
    db: WikiDatabaseService,
    bus: EventBus,
    security: Security,
    auth_store: AuthStore | None = None,
    tokens: TokenIssuer | None = None,
) -> fastapi.APIRouter:
    """
    Create the /api routes.
    """
    router = fastapi.APIRouter(prefix="/api")

    @router.get("/pages")
    async def api_root(request: fastapi.Request):
        security.token_user(request)
        pages = await db.fetch_all_pages_data()
        return api_response(pages=[{"id": page.id, "name": page.name} for page in pages])

    @router.get("/pages/{id}")
    async def api_get_page(request: fastapi.Request, id: str):
        security.token_user(request)
        page_id = parse_id(id)
        page = await db.fetch_page_by_id(page_id)
        if not page.found:
            return api_failure(404, f"There is no page with ID {page_id}")
        return api_response(
            page={
                "id": page.id,
                "name": page.name,
                "markdown": page.content,
                "html": render_markdown(page.content),
            }
        )

    @router.post("/pages")
    async def api_create_page(request: fastapi.Request):
        require_permission(security.token_user(request), "create")
        page = await read_page_document(request, "name", "markdown")
        await db.create_page(page["name"], page["markdown"])
        return api_response(status_code=201)

    @router.put("/pages/{id}")
    async def api_update_page(request: fastapi.Request, id: str):
        require_permission(security.token_user(request), "update")
        page_id = parse_id(id)
        page = await read_page_document(request, "markdown")
        if await db.save_page(page_id, page["markdown"]):
            bus.publish(PAGE_SAVED_ADDRESS, {"id": page_id, "client": page.get("client")})
        return api_response()

    @router.delete("/pages/{id}")
    async def api_delete_page(request: fastapi.Request, id: str):
        require_permission(security.token_user(request), "delete")
        await db.delete_page(parse_id(id))
        return api_response()

    @router.get("/token")
    async def api_token(request: fastapi.Request):
        """
        Get a token for the credentials in the `login` and `password` headers.
        """
        if not security.enabled or auth_store is None or tokens is None:
            return api_failure(404, "Authentication is not enabled")
        principal = await auth_store.authenticate(
            request.headers.get("login"), request.headers.get("password")
        )
        return fastapi.responses.PlainTextResponse(tokens.issue(principal))

    return router
