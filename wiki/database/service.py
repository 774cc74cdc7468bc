from abc import ABC, abstractmethod

from wiki.types import PageLookup, PageRecord


class WikiDatabaseService(ABC):
    """
    Port for the page store operations.

    All operations are single shot: there are no transactions spanning
    several calls. Failures raise DatabaseError, or DuplicatePageError when
    creating a page with a name already in use.
    """

    @abstractmethod
    async def fetch_all_pages(self) -> list[str]:
        """Names of all pages, sorted by the query (by name by default)."""

    @abstractmethod
    async def fetch_all_pages_data(self) -> list[PageRecord]:
        """All pages with their content, in the same order as fetch_all_pages."""

    @abstractmethod
    async def fetch_page(self, name: str) -> PageLookup:
        """Look a page up by name."""

    @abstractmethod
    async def fetch_page_by_id(self, id: int) -> PageLookup:
        """Look a page up by id."""

    @abstractmethod
    async def create_page(self, name: str, markdown: str) -> None:
        """Create a new page."""

    @abstractmethod
    async def save_page(self, id: int, markdown: str) -> bool:
        """
        Replace the content of a page. Unknown ids are ignored, and return
        False.
        """

    @abstractmethod
    async def delete_page(self, id: int) -> None:
        """Delete a page. Unknown ids are ignored."""
