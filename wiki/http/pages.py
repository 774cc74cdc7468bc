"""
Server rendered wiki pages, and the form actions behind them.
"""

import logging
from urllib.parse import quote

import fastapi
import fastapi.responses

from wiki.auth import AuthStore
from wiki.database.service import WikiDatabaseService
from wiki.errors import AuthenticationError, BackupError
from wiki.eventbus import EventBus
from wiki.http.api import BadRequest, parse_id
from wiki.http.backup import BackupClient
from wiki.http.bridge import PAGE_SAVED_ADDRESS
from wiki.http.security import Security, require_permission
from wiki.render import TemplateRenderer, render_markdown
from wiki.types import Principal

logger = logging.getLogger(__name__)

EMPTY_PAGE_MARKDOWN = "# A new page\n\nFeel-free to write in Markdown!\n"


def redirect(location: str) -> fastapi.responses.RedirectResponse:
    return fastapi.responses.RedirectResponse(url=location, status_code=303)


def safe_return_url(return_url: str | None) -> str:
    """
    Only redirect back inside the wiki. Browsers read a backslash as a slash
    and drop tabs and newlines, so those never make it into a redirect.
    """
    if (
        not return_url
        or not return_url.startswith("/")
        or return_url.startswith("//")
        or "\\" in return_url
        or any(ord(char) < 0x20 or ord(char) == 0x7F for char in return_url)
    ):
        return "/"
    return return_url


def create_pages_router(
    db: WikiDatabaseService,
    bus: EventBus,
    templates: TemplateRenderer,
    security: Security,
    backup: BackupClient,
    auth_store: AuthStore | None = None,
) -> fastapi.APIRouter:
    """
    Create the HTML routes.
    """
    router = fastapi.APIRouter()

    async def render_html(template: str, status_code: int = 200, **context):
        html = await templates.render(template, context)
        return fastapi.responses.HTMLResponse(content=html, status_code=status_code)

    async def render_index(principal: Principal, backup_gist_url: str | None = None):
        return await render_html(
            "index.html",
            title="Wiki home",
            pages=await db.fetch_all_pages(),
            username=principal.username,
            auth_enabled=security.enabled,
            can_create_page=principal.can_create,
            backup_gist_url=backup_gist_url,
        )

    @router.get("/")
    async def index(request: fastapi.Request):
        return await render_index(security.require_user(request))

    @router.get("/wiki/{page}")
    async def page_rendering(request: fastapi.Request, page: str):
        principal = security.require_user(request)
        lookup = await db.fetch_page(page)
        raw_content = (lookup.content or "") if lookup.found else EMPTY_PAGE_MARKDOWN
        return await render_html(
            "page.html",
            title=page,
            id=lookup.id if lookup.found else -1,
            new_page="no" if lookup.found else "yes",
            raw_content=raw_content,
            content=render_markdown(raw_content),
            username=principal.username,
            auth_enabled=security.enabled,
            can_save_page=principal.can_update if lookup.found else principal.can_create,
            can_delete_page=principal.can_delete,
        )

    @router.post("/action/save")
    async def page_update(request: fastapi.Request):
        principal = security.require_user(request)
        form = await request.form()
        title = form.get("title")
        markdown = form.get("markdown", "")
        if not title:
            raise BadRequest("Missing page title")

        if form.get("newPage") == "yes":
            require_permission(principal, "create")
            await db.create_page(title, markdown)
        else:
            require_permission(principal, "update")
            page_id = parse_id(form.get("id", ""))
            if await db.save_page(page_id, markdown):
                bus.publish(PAGE_SAVED_ADDRESS, {"id": page_id, "client": None})
        return redirect(f"/wiki/{quote(title)}")

    @router.post("/action/create")
    async def page_create(request: fastapi.Request):
        require_permission(security.require_user(request), "create")
        form = await request.form()
        name = form.get("name")
        if not name:
            return redirect("/")
        return redirect(f"/wiki/{quote(name)}")

    @router.post("/action/delete")
    async def page_deletion(request: fastapi.Request):
        require_permission(security.require_user(request), "delete")
        form = await request.form()
        await db.delete_page(parse_id(form.get("id", "")))
        return redirect("/")

    @router.get("/action/backup")
    async def backup_handler(request: fastapi.Request):
        principal = security.require_user(request)
        pages = await db.fetch_all_pages_data()
        try:
            url = await backup.backup(pages)
        except BackupError as e:
            return fastapi.responses.PlainTextResponse(str(e), status_code=502)
        return await render_index(principal, backup_gist_url=url)

    @router.get("/login")
    async def login(request: fastapi.Request, return_url: str = "/"):
        if not security.enabled:
            return redirect("/")
        return await render_html(
            "login.html", title="Login", return_url=safe_return_url(return_url)
        )

    @router.post("/login-auth")
    async def login_auth(request: fastapi.Request):
        if not security.enabled or auth_store is None:
            return redirect("/")
        form = await request.form()
        return_url = safe_return_url(form.get("return_url"))
        try:
            principal = await auth_store.authenticate(
                form.get("username"), form.get("password")
            )
        except AuthenticationError as e:
            return await render_html(
                "login.html",
                status_code=401,
                title="Login",
                return_url=return_url,
                error=str(e),
            )
        security.login(request, principal)
        return redirect(return_url)

    @router.get("/logout")
    async def logout(request: fastapi.Request):
        security.logout(request)
        return redirect("/")

    return router
