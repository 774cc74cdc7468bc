import logging
import random
import traceback
from pathlib import Path

import fastapi
import fastapi.middleware.cors
import fastapi.responses
import fastapi.staticfiles
from starlette.middleware.sessions import SessionMiddleware

from wiki.auth import AuthStore, TokenIssuer
from wiki.config import Config
from wiki.database.service import WikiDatabaseService
from wiki.errors import (
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
)
from wiki.eventbus import EventBus
from wiki.http.api import BadRequest, api_failure, create_api_router
from wiki.http.backup import BackupClient
from wiki.http.bridge import EventBusBridge
from wiki.http.pages import create_pages_router
from wiki.http.security import LoginRequired, Security
from wiki.render import TemplateRenderer, render_markdown
from wiki.setup import trace_id_var

logger = logging.getLogger(__name__)

WEBROOT_PATH = Path(__file__).parent.parent / "webroot"


def is_api(request: fastapi.Request) -> bool:
    return request.url.path.startswith("/api/")


def create_app(
    config: Config,
    db: WikiDatabaseService,
    bus: EventBus,
    auth_store: AuthStore | None = None,
    backup: BackupClient | None = None,
) -> fastapi.FastAPI:
    """
    Create the FastAPI app.
    """
    app = fastapi.FastAPI(title="Wiki", docs_url=None, redoc_url=None)  # type: ignore

    tokens = TokenIssuer(config.auth) if config.auth.enabled else None
    security = Security(config.auth, tokens)
    templates = TemplateRenderer()
    bridge = EventBusBridge(bus)
    backup = backup or BackupClient(config.backup)

    app.state.security = security
    app.state.bridge = bridge

    if config.http.allow_origins:
        app.add_middleware(
            fastapi.middleware.cors.CORSMiddleware,
            allow_origins=config.http.allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(SessionMiddleware, secret_key=config.http.session_secret)

    @app.middleware("http")
    async def set_trace_id(request: fastapi.Request, call_next):
        def trace_id():
            return f"{random.getrandbits(64):016x}"

        trace_id = request.headers.get("x-trace-id") or trace_id()
        request.state.trace_id = trace_id
        token = trace_id_var.set(trace_id)
        try:
            response = await call_next(request)
        finally:
            trace_id_var.reset(token)
        if request.url.path.startswith("/app/"):
            response.headers["Cache-Control"] = "no-cache, no-store"
        return response

    @app.exception_handler(LoginRequired)
    async def on_login_required(request: fastapi.Request, exc: LoginRequired):
        return fastapi.responses.RedirectResponse(url=exc.login_url, status_code=303)

    @app.exception_handler(AuthenticationError)
    async def on_authentication_error(request: fastapi.Request, exc: AuthenticationError):
        if is_api(request):
            return api_failure(401, str(exc))
        return fastapi.responses.PlainTextResponse("Unauthorized", status_code=401)

    @app.exception_handler(AuthorizationError)
    async def on_authorization_error(request: fastapi.Request, exc: AuthorizationError):
        if is_api(request):
            return api_failure(403, str(exc))
        return fastapi.responses.PlainTextResponse("Forbidden", status_code=403)

    @app.exception_handler(BadRequest)
    async def on_bad_request(request: fastapi.Request, exc: BadRequest):
        if is_api(request):
            return api_failure(400, str(exc))
        return fastapi.responses.PlainTextResponse(str(exc), status_code=400)

    @app.exception_handler(DatabaseError)
    async def on_database_error(request: fastapi.Request, exc: DatabaseError):
        logger.error("Request to %s failed: %s", request.url.path, exc)
        if is_api(request):
            return api_failure(500, str(exc))
        if config.debug:
            return fastapi.responses.PlainTextResponse(
                "Internal Server Error: " + "".join(traceback.format_exception(exc)),
                status_code=500,
            )
        return fastapi.responses.PlainTextResponse(
            "Internal Server Error", status_code=500
        )

    app.include_router(
        create_pages_router(
            db=db,
            bus=bus,
            templates=templates,
            security=security,
            backup=backup,
            auth_store=auth_store,
        )
    )
    app.include_router(
        create_api_router(
            db=db, bus=bus, security=security, auth_store=auth_store, tokens=tokens
        )
    )

    @app.post("/app/markdown")
    async def app_markdown(request: fastapi.Request):
        body = await request.body()
        return fastapi.responses.HTMLResponse(
            content=render_markdown(body.decode("utf-8", errors="replace"))
        )

    @app.websocket("/eventbus")
    async def eventbus(websocket: fastapi.WebSocket):
        await bridge.handle(websocket)

    app.mount(
        "/app",
        fastapi.staticfiles.StaticFiles(directory=WEBROOT_PATH, html=True),
        name="app",
    )

    return app
