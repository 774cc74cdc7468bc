"""
SQL statements used by the page store.

The defaults can be replaced from a YAML file mapping the query name (in any
case) to the statement, for example:

    all_pages: SELECT Name FROM Pages ORDER BY Name
"""

import enum
import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class SqlQuery(enum.Enum):
    CREATE_PAGES_TABLE = "create_pages_table"
    INIT_PAGES_SEQUENCE = "init_pages_sequence"
    ALL_PAGES = "all_pages"
    ALL_PAGES_DATA = "all_pages_data"
    GET_PAGE = "get_page"
    GET_PAGE_BY_ID = "get_page_by_id"
    CREATE_PAGE = "create_page"
    SAVE_PAGE = "save_page"
    DELETE_PAGE = "delete_page"


DEFAULT_QUERIES: dict[SqlQuery, str] = {
    SqlQuery.CREATE_PAGES_TABLE: (
        "CREATE TABLE IF NOT EXISTS Pages "
        "(Id INTEGER PRIMARY KEY AUTOINCREMENT, Name VARCHAR(255) UNIQUE, Content TEXT)"
    ),
    # the first page gets id 0
    SqlQuery.INIT_PAGES_SEQUENCE: (
        "INSERT INTO sqlite_sequence (name, seq) SELECT 'Pages', -1 "
        "WHERE NOT EXISTS (SELECT 1 FROM sqlite_sequence WHERE name = 'Pages')"
    ),
    SqlQuery.ALL_PAGES: "SELECT Name FROM Pages ORDER BY Name",
    SqlQuery.ALL_PAGES_DATA: "SELECT Id, Name, Content FROM Pages ORDER BY Name",
    SqlQuery.GET_PAGE: "SELECT Id, Content FROM Pages WHERE Name = ?",
    SqlQuery.GET_PAGE_BY_ID: "SELECT Id, Name, Content FROM Pages WHERE Id = ?",
    # ids start at 0 and are never handed out twice: sqlite_sequence keeps the
    # largest id ever used, even after that page is deleted
    SqlQuery.CREATE_PAGE: (
        "INSERT INTO Pages (Id, Name, Content) "
        "SELECT MAX("
        "COALESCE((SELECT seq + 1 FROM sqlite_sequence WHERE name = 'Pages'), 0), "
        "COALESCE(MAX(Id) + 1, 0)"
        "), ?, ? FROM Pages"
    ),
    SqlQuery.SAVE_PAGE: "UPDATE Pages SET Content = ? WHERE Id = ?",
    SqlQuery.DELETE_PAGE: "DELETE FROM Pages WHERE Id = ?",
}


def load_queries(path: Path | None = None) -> dict[SqlQuery, str]:
    """
    Get the SQL statements, with the overrides from the given YAML file.
    """
    queries = dict(DEFAULT_QUERIES)
    if path is None:
        return queries

    with open(path, "r", encoding="utf-8") as fd:
        data = yaml.safe_load(fd) or {}

    for name, statement in data.items():
        try:
            query = SqlQuery(name.lower())
        except ValueError as e:
            raise ValueError(
                f"Unknown SQL query {name} at {path}. Known queries: {[q.value for q in SqlQuery]}"
            ) from e
        queries[query] = statement
        logger.debug("Overriding query=%s from=%s", query.name, path)
    return queries
