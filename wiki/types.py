"""
Types for the wiki.
"""

from dataclasses import dataclass, field
from typing import Any, Self


@dataclass
class PageRecord:
    """
    A stored page: the id, the unique name and the markdown content.
    """

    id: int
    name: str
    content: str

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """
        Load a page record from a dictionary.
        """
        return cls(id=data["id"], name=data["name"], content=data["content"])

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the page record to a JSON-serializable dictionary.
        """
        return {"id": self.id, "name": self.name, "content": self.content}


@dataclass
class PageLookup:
    """
    Result of looking a page up by name or by id.

    If not found, the other fields are not set.
    """

    found: bool
    id: int | None = None
    name: str | None = None
    content: str | None = None

    @classmethod
    def not_found(cls) -> Self:
        return cls(found=False)

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """
        Load a page lookup from a dictionary.
        """
        return cls(
            found=data["found"],
            id=data.get("id"),
            name=data.get("name"),
            content=data.get("content"),
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the page lookup to a JSON-serializable dictionary.
        """
        if not self.found:
            return {"found": False}
        return {
            "found": True,
            "id": self.id,
            "name": self.name,
            "content": self.content,
        }


PERMISSIONS = ("create", "update", "delete")


@dataclass
class Principal:
    """
    The logged in user, and what it is allowed to do with pages.
    """

    username: str
    permissions: set[str] = field(default_factory=set)

    def can(self, permission: str) -> bool:
        return permission in self.permissions

    @property
    def can_create(self) -> bool:
        return self.can("create")

    @property
    def can_update(self) -> bool:
        return self.can("update")

    @property
    def can_delete(self) -> bool:
        return self.can("delete")

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the principal to a JSON-serializable dictionary, as kept in the session.
        """
        return {"username": self.username, "permissions": sorted(self.permissions)}

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        return cls(username=data["username"], permissions=set(data.get("permissions", [])))


@dataclass
class UserDefinition:
    """
    A user to seed into the user tables.
    """

    username: str
    password: str
    roles: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """
        Load a user definition from a dictionary.
        """
        return cls(
            username=data["username"],
            password=data["password"],
            roles=data.get("roles", []),
        )
