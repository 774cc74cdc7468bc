"""
Backup of all the pages to a snippet service.
"""

import logging

import httpx

from wiki.config import BackupConfig
from wiki.errors import BackupError
from wiki.types import PageRecord

logger = logging.getLogger(__name__)


class BackupClient:
    """
    Posts a snapshot of the pages as a snippet, one file per page.
    """

    def __init__(self, config: BackupConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.transport = transport

    def payload(self, pages: list[PageRecord]) -> dict:
        return {
            "language": "plaintext",
            "title": self.config.title,
            "public": True,
            "files": [{"name": page.name, "content": page.content} for page in pages],
        }

    async def backup(self, pages: list[PageRecord]) -> str:
        """
        Post the pages, and return the URL of the created snippet.

        Raises BackupError if the service is unreachable or does not accept it.
        """
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Token {self.config.token}"

        logger.debug("Backing up pages=%d url=%s", len(pages), self.config.url)
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    self.config.url, json=self.payload(pages), headers=headers
                )
        except httpx.HTTPError as e:
            logger.error("Backup request to %s failed: %s", self.config.url, e)
            raise BackupError(f"Backup request failed: {e}") from e

        if response.status_code not in (200, 201):
            logger.error(
                "Backup rejected status=%s body=%s", response.status_code, response.text
            )
            raise BackupError(f"Backup service returned {response.status_code}")

        try:
            url = response.json()["url"]
        except (ValueError, KeyError) as e:
            raise BackupError("Backup service returned no snippet URL") from e
        logger.info("Backed up pages=%d to %s", len(pages), url)
        return url
