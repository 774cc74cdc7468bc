import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

import yaml

from wiki.types import UserDefinition


@dataclass
class HttpConfig:
    """
    The HTTP server configuration.
    """

    host: str = "0.0.0.0"
    port: int = 8080
    session_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    allow_origins: list[str] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict) -> Self:
        """
        Load the HTTP configuration from a dictionary.
        """
        return HttpConfig(**data)


@dataclass
class DatabaseConfig:
    """
    The page database configuration.

    The url is `sqlite://<path>`. `sqlite://:memory:` and
    `sqlite://file:<name>?mode=memory&cache=shared` style URIs are also accepted.
    """

    queue: str = "wikidb.queue"
    url: str = "sqlite://db/wiki.db"
    driver: str = "sqlite3"
    max_pool_size: int = 30
    sql_queries: Path | None = None

    @staticmethod
    def from_dict(data: dict) -> Self:
        """
        Load the database configuration from a dictionary.
        """
        sql_queries = data.get("sql_queries")
        return DatabaseConfig(
            queue=data.get("queue", "wikidb.queue"),
            url=data.get("url", "sqlite://db/wiki.db"),
            driver=data.get("driver", "sqlite3"),
            max_pool_size=int(data.get("max_pool_size", 30)),
            sql_queries=Path(sql_queries) if sql_queries else None,
        )


@dataclass
class EventBusConfig:
    """
    The event bus configuration. Timeouts are in seconds.
    """

    request_timeout: float = 30.0

    @staticmethod
    def from_dict(data: dict) -> Self:
        return EventBusConfig(**data)


DEFAULT_USERS = [
    UserDefinition(username="root", password="admin", roles=["admin"]),
    UserDefinition(username="foo", password="bar", roles=["editor", "writer"]),
    UserDefinition(username="bar", password="baz", roles=["writer"]),
    UserDefinition(username="baz", password="baz", roles=["editor"]),
]

DEFAULT_ROLES = {
    "admin": ["create", "delete", "update"],
    "editor": ["create", "delete", "update"],
    "writer": ["update"],
}


@dataclass
class AuthConfig:
    """
    The authentication configuration.

    Users are only seeded when the user table is empty.
    """

    enabled: bool = False
    jwt_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    jwt_issuer: str = "wiki"
    jwt_expires_minutes: int = 60
    bcrypt_rounds: int = 12
    users: list[UserDefinition] = field(default_factory=lambda: list(DEFAULT_USERS))
    roles: dict[str, list[str]] = field(default_factory=lambda: dict(DEFAULT_ROLES))

    @staticmethod
    def from_dict(data: dict) -> Self:
        """
        Load the authentication configuration from a dictionary.
        """
        config = AuthConfig(enabled=data.get("enabled", False))
        if "jwt_secret" in data:
            config.jwt_secret = data["jwt_secret"]
        config.jwt_issuer = data.get("jwt_issuer", config.jwt_issuer)
        config.jwt_expires_minutes = int(
            data.get("jwt_expires_minutes", config.jwt_expires_minutes)
        )
        config.bcrypt_rounds = int(data.get("bcrypt_rounds", config.bcrypt_rounds))
        if "users" in data:
            config.users = [UserDefinition.from_dict(user) for user in data["users"]]
        if "roles" in data:
            config.roles = {role: list(perms) for role, perms in data["roles"].items()}
        return config


@dataclass
class BackupConfig:
    """
    The backup service configuration.
    """

    url: str = "https://snippets.glot.io/snippets"
    token: str | None = None
    title: str = "wiki-backup"
    timeout: float = 30.0

    @staticmethod
    def from_dict(data: dict) -> Self:
        return BackupConfig(**data)


ENVIRONMENT_OVERRIDES = {
    "WIKI_HTTP_PORT": ("http", "port", int),
    "WIKI_DB_QUEUE": ("database", "queue", str),
    "WIKI_DB_URL": ("database", "url", str),
    "WIKI_DB_DRIVER": ("database", "driver", str),
    "WIKI_DB_MAX_POOL_SIZE": ("database", "max_pool_size", int),
}


@dataclass
class Config:
    """
    The configuration for the wiki.
    """

    debug: bool = False
    http: HttpConfig = field(default_factory=HttpConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    eventbus: EventBusConfig = field(default_factory=EventBusConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)

    @staticmethod
    def read(path: str | Path) -> Self:
        """
        Read the configuration from a file.
        """
        with open(path, "r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}
            return Config.from_dict(data)

    @staticmethod
    def from_dict(data: dict) -> Self:
        """
        Load the configuration from a dictionary.
        """
        return Config(
            debug=data.get("debug", False),
            http=HttpConfig.from_dict(data.get("http", {})),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            eventbus=EventBusConfig.from_dict(data.get("eventbus", {})),
            auth=AuthConfig.from_dict(data.get("auth", {})),
            backup=BackupConfig.from_dict(data.get("backup", {})),
        )

    def apply_environment(self, environ: dict[str, str] | None = None) -> Self:
        """
        Override values from WIKI_* environment variables.
        """
        if environ is None:
            environ = dict(os.environ)
        for variable, (section, key, cast) in ENVIRONMENT_OVERRIDES.items():
            if variable in environ:
                setattr(getattr(self, section), key, cast(environ[variable]))
        return self
