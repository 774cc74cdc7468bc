"""
Ordered startup of the wiki.

The wiki is made of units: the database unit owns the page store and serves
it on the event bus, the HTTP unit serves the web application, talking to the
database unit only over the bus. Units start one after the other, each one
only once the previous one started. If any fails, the ones already started
are stopped in reverse order and the deployment fails.
"""

import asyncio
import logging
import socket

import fastapi
import uvicorn

from wiki.auth import AuthStore
from wiki.config import Config
from wiki.database.pool import ConnectionPool
from wiki.database.proxy import WikiDatabaseServiceProxy, bind_service
from wiki.database.queries import load_queries
from wiki.database.sqlite import SqliteWikiDatabaseService
from wiki.errors import DeploymentError
from wiki.eventbus import EventBus, MessageConsumer
from wiki.http.app import create_app
from wiki.http.backup import BackupClient
from wiki.http.bridge import register_markdown_renderer

logger = logging.getLogger(__name__)


class Unit:
    """
    An independently deployable part of the wiki.
    """

    name = "unit"

    async def start(self) -> None:
        raise NotImplementedError(f"start not implemented in {self.__class__.__name__}")

    async def stop(self) -> None:
        raise NotImplementedError(f"stop not implemented in {self.__class__.__name__}")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


class DatabaseUnit(Unit):
    """
    Opens the connection pool, prepares the schema, and binds the database
    service to the configured queue.
    """

    name = "database"

    def __init__(self, config: Config, bus: EventBus):
        self.config = config
        self.bus = bus
        self.pool: ConnectionPool | None = None
        self.service: SqliteWikiDatabaseService | None = None
        self.auth_store: AuthStore | None = None
        self._consumer: MessageConsumer | None = None

    async def start(self) -> None:
        db_config = self.config.database
        self.pool = ConnectionPool(
            db_config.url, max_pool_size=db_config.max_pool_size, driver=db_config.driver
        )
        try:
            self.service = SqliteWikiDatabaseService(
                self.pool, load_queries(db_config.sql_queries)
            )
            await self.service.make_migrations()
            if self.config.auth.enabled:
                self.auth_store = AuthStore(self.pool, self.config.auth)
                await self.auth_store.make_migrations()
        except Exception:
            self.pool.close()
            self.pool = None
            raise
        self._consumer = bind_service(self.bus, db_config.queue, self.service)

    async def stop(self) -> None:
        if self._consumer:
            self._consumer.unregister()
            self._consumer = None
        if self.pool:
            await asyncio.get_running_loop().run_in_executor(None, self.pool.close)
            self.pool = None


class HttpUnit(Unit):
    """
    Serves the web application. With `serve=False` the app is built but no
    socket is opened, which is how the tests drive it.
    """

    name = "http"

    def __init__(
        self,
        config: Config,
        bus: EventBus,
        auth_store: AuthStore | None = None,
        backup: BackupClient | None = None,
        serve: bool = True,
    ):
        self.config = config
        self.bus = bus
        self.auth_store = auth_store
        self.backup = backup
        self.serve = serve
        self.app: fastapi.FastAPI | None = None
        self.server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None
        self._consumers: list[MessageConsumer] = []

    async def start(self) -> None:
        db = WikiDatabaseServiceProxy(self.bus, self.config.database.queue)
        self._consumers.append(register_markdown_renderer(self.bus))
        self.app = create_app(
            self.config, db, self.bus, auth_store=self.auth_store, backup=self.backup
        )
        if self.serve:
            await self.start_server()

    def bind_socket(self) -> socket.socket:
        host, port = self.config.http.host, self.config.http.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def start_server(self) -> None:
        sock = self.bind_socket()
        self.server = uvicorn.Server(
            uvicorn.Config(self.app, log_config=None, lifespan="off")
        )
        self._task = asyncio.create_task(self.server.serve(sockets=[sock]))
        while not self.server.started:
            if self._task.done():
                self._task.result()
                raise RuntimeError("HTTP server stopped while starting")
            await asyncio.sleep(0.05)
        logger.info(
            "HTTP server running on %s:%s", self.config.http.host, self.config.http.port
        )

    async def wait(self) -> None:
        """
        Wait until the server stops, for example on SIGINT.
        """
        if self._task:
            await self._task

    async def stop(self) -> None:
        if self.server and self._task:
            self.server.should_exit = True
            await self._task
        self.server = None
        self._task = None
        for consumer in self._consumers:
            consumer.unregister()
        self._consumers.clear()


class Deployment:
    """
    Deploys the database unit, and then the HTTP unit.
    """

    def __init__(self, config: Config, serve: bool = True, backup: BackupClient | None = None):
        self.config = config
        self.bus = EventBus(request_timeout=config.eventbus.request_timeout)
        self.database = DatabaseUnit(config, self.bus)
        self.http: HttpUnit | None = None
        self.serve = serve
        self.backup = backup
        self.deployed: list[Unit] = []

    def steps(self):
        yield self.database
        self.http = HttpUnit(
            self.config,
            self.bus,
            auth_store=self.database.auth_store,
            backup=self.backup,
            serve=self.serve,
        )
        yield self.http

    async def deploy(self) -> None:
        """
        Start all the units in order. Raises DeploymentError on the first
        failure, after stopping the units already started.
        """
        for unit in self.steps():
            logger.info("Deploying %s", unit)
            try:
                await unit.start()
            except Exception as e:
                logger.error("Could not deploy %s: %s", unit, e)
                await self.undeploy()
                raise DeploymentError(unit.name, e) from e
            self.deployed.append(unit)
        logger.info("Deployed units=%s", [unit.name for unit in self.deployed])

    async def undeploy(self) -> None:
        while self.deployed:
            unit = self.deployed.pop()
            logger.info("Undeploying %s", unit)
            await unit.stop()
        await self.bus.close()
