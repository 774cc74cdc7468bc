"""
Connection pool for the SQLite database.

Each worker thread owns one connection. Statements run on the workers, so
the event loop never waits on the database.
"""

import asyncio
import logging
import os
import sqlite3
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, TypeVar

from wiki.errors import DatabaseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUPPORTED_DRIVERS = ["sqlite3"]


def parse_url(url: str) -> tuple[str, bool]:
    """
    Get the sqlite3 database and whether it is an URI from a `sqlite://` url.

    Plain `:memory:` databases are turned into named shared cache ones, so all
    the connections of the pool see the same data.
    """
    if not url.startswith("sqlite://"):
        raise ValueError("Database URL must start with sqlite://")
    database = url.replace("sqlite://", "", 1)
    if database == ":memory:":
        return f"file:wiki-{uuid.uuid4().hex}?mode=memory&cache=shared", True
    if database.startswith("file:"):
        return database, True
    return database, False


class ConnectionPool:
    """
    A fixed size pool of sqlite3 connections. It is not resized once created.
    """

    def __init__(self, url: str, max_pool_size: int = 30, driver: str = "sqlite3"):
        if driver not in SUPPORTED_DRIVERS:
            raise ValueError(
                f"Unsupported database driver {driver}. Supported: {SUPPORTED_DRIVERS}"
            )
        if max_pool_size < 1:
            raise ValueError("max_pool_size must be at least 1")
        self.url = url
        self.max_pool_size = max_pool_size
        self.database, self.uri = parse_url(url)
        if not self.uri:
            os.makedirs(Path(self.database).parent, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._executor: ThreadPoolExecutor | None = ThreadPoolExecutor(
            max_workers=max_pool_size, thread_name_prefix="wiki-db"
        )

    def __repr__(self) -> str:
        return f"<ConnectionPool url={self.url} max_pool_size={self.max_pool_size}>"

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            logger.debug("Connecting to database: %s", self.database)
            conn = sqlite3.connect(
                self.database, uri=self.uri, check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    def _call(self, fn: Callable[..., T], args: tuple) -> T:
        return fn(self._connection(), *args)

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """
        Run `fn(connection, *args)` on a pool worker.
        """
        if self._executor is None:
            raise DatabaseError("Connection pool is closed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._call, fn, args)

    def close(self) -> None:
        """
        Wait for the running statements and close all the connections.
        """
        if self._executor is None:
            return
        self._executor.shutdown(wait=True)
        self._executor = None
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        logger.debug("Closed connection pool url=%s", self.url)
