"""
Database store implementation.
"""

import logging
import sqlite3

from wiki.database.pool import ConnectionPool
from wiki.database.queries import DEFAULT_QUERIES, SqlQuery
from wiki.database.service import WikiDatabaseService
from wiki.errors import DatabaseError, DuplicatePageError
from wiki.types import PageLookup, PageRecord

logger = logging.getLogger(__name__)


class SqliteWikiDatabaseService(WikiDatabaseService):
    """
    Page store backed by the Pages table.
    """

    def __init__(
        self, pool: ConnectionPool, queries: dict[SqlQuery, str] | None = None
    ):
        self.pool = pool
        self.queries = queries or dict(DEFAULT_QUERIES)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} pool={self.pool}>"

    async def make_migrations(self) -> None:
        """
        Create the Pages table and its id sequence if missing.
        """

        def run(conn: sqlite3.Connection):
            with conn:
                conn.execute(self.queries[SqlQuery.CREATE_PAGES_TABLE])
                conn.execute(self.queries[SqlQuery.INIT_PAGES_SEQUENCE])

        await self._run(run)

    async def _run(self, fn, *args):
        try:
            return await self.pool.run(fn, *args)
        except sqlite3.Error as e:
            logger.error("Database error: %s", e)
            raise DatabaseError(str(e)) from e

    async def fetch_all_pages(self) -> list[str]:
        def run(conn: sqlite3.Connection):
            rows = conn.execute(self.queries[SqlQuery.ALL_PAGES]).fetchall()
            return [row[0] for row in rows]

        return await self._run(run)

    async def fetch_all_pages_data(self) -> list[PageRecord]:
        def run(conn: sqlite3.Connection):
            rows = conn.execute(self.queries[SqlQuery.ALL_PAGES_DATA]).fetchall()
            return [PageRecord(id=row[0], name=row[1], content=row[2]) for row in rows]

        return await self._run(run)

    async def fetch_page(self, name: str) -> PageLookup:
        def run(conn: sqlite3.Connection):
            rows = conn.execute(self.queries[SqlQuery.GET_PAGE], (name,)).fetchall()
            return rows[0] if rows else None

        row = await self._run(run)
        if row is None:
            return PageLookup.not_found()
        return PageLookup(found=True, id=row[0], name=name, content=row[1])

    async def fetch_page_by_id(self, id: int) -> PageLookup:
        def run(conn: sqlite3.Connection):
            rows = conn.execute(self.queries[SqlQuery.GET_PAGE_BY_ID], (id,)).fetchall()
            return rows[0] if rows else None

        row = await self._run(run)
        if row is None:
            return PageLookup.not_found()
        return PageLookup(found=True, id=row[0], name=row[1], content=row[2])

    async def create_page(self, name: str, markdown: str) -> None:
        def run(conn: sqlite3.Connection):
            with conn:
                conn.execute(self.queries[SqlQuery.CREATE_PAGE], (name, markdown))

        try:
            await self.pool.run(run)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e).upper():
                logger.warning("Page name=%s already exists", name)
                raise DuplicatePageError(name) from e
            raise DatabaseError(str(e)) from e
        except sqlite3.Error as e:
            logger.error("Failed to create page name=%s: %s", name, e)
            raise DatabaseError(str(e)) from e
        logger.info("Created page name=%s", name)

    async def save_page(self, id: int, markdown: str) -> bool:
        def run(conn: sqlite3.Connection):
            with conn:
                return conn.execute(
                    self.queries[SqlQuery.SAVE_PAGE], (markdown, id)
                ).rowcount

        rowcount = await self._run(run)
        if rowcount == 0:
            logger.debug("Save of page_id=%s changed nothing, maybe it does not exist", id)
        else:
            logger.info("Saved page_id=%s", id)
        return rowcount > 0

    async def delete_page(self, id: int) -> None:
        def run(conn: sqlite3.Connection):
            with conn:
                return conn.execute(self.queries[SqlQuery.DELETE_PAGE], (id,)).rowcount

        rowcount = await self._run(run)
        if rowcount == 0:
            logger.debug("Delete of page_id=%s changed nothing, maybe it does not exist", id)
        else:
            logger.info("Deleted page_id=%s", id)
