"""
Users, roles and permissions.

Users are kept in the same database as the pages, with their roles and the
permissions of each role:

    user(username, password)
    user_roles(username, role)
    roles_perms(role, perm)

Passwords are stored as bcrypt hashes. API tokens are HS256 JWTs carrying the
username and the page permissions.
"""

import datetime
import logging
import sqlite3

import bcrypt
import jwt

from wiki.config import AuthConfig
from wiki.database.pool import ConnectionPool
from wiki.errors import AuthenticationError, DatabaseError
from wiki.types import PERMISSIONS, Principal

logger = logging.getLogger(__name__)

SQL_CREATE_USER_TABLES = [
    "CREATE TABLE IF NOT EXISTS user "
    "(username VARCHAR(255) PRIMARY KEY, password VARCHAR(255) NOT NULL)",
    "CREATE TABLE IF NOT EXISTS user_roles "
    "(username VARCHAR(255) NOT NULL, role VARCHAR(255) NOT NULL, PRIMARY KEY (username, role))",
    "CREATE TABLE IF NOT EXISTS roles_perms "
    "(role VARCHAR(255) NOT NULL, perm VARCHAR(255) NOT NULL, PRIMARY KEY (role, perm))",
]
SQL_COUNT_USERS = "SELECT COUNT(*) FROM user"
SQL_INSERT_USER = "INSERT INTO user (username, password) VALUES (?, ?)"
SQL_INSERT_USER_ROLE = "INSERT OR IGNORE INTO user_roles (username, role) VALUES (?, ?)"
SQL_INSERT_ROLE_PERM = "INSERT OR IGNORE INTO roles_perms (role, perm) VALUES (?, ?)"
SQL_GET_PASSWORD = "SELECT password FROM user WHERE username = ?"
SQL_GET_PERMISSIONS = (
    "SELECT DISTINCT roles_perms.perm FROM user_roles "
    "JOIN roles_perms ON user_roles.role = roles_perms.role "
    "WHERE user_roles.username = ?"
)

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(
        password.encode()[:MAX_PASSWORD_BYTES], bcrypt.gensalt(rounds=rounds)
    ).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode()[:MAX_PASSWORD_BYTES], password_hash.encode())


class AuthStore:
    """
    Authenticates users against the user tables.
    """

    def __init__(self, pool: ConnectionPool, config: AuthConfig):
        self.pool = pool
        self.config = config

    async def _run(self, fn, *args):
        try:
            return await self.pool.run(fn, *args)
        except sqlite3.Error as e:
            logger.error("Database error: %s", e)
            raise DatabaseError(str(e)) from e

    async def make_migrations(self) -> None:
        """
        Create the user tables, and seed them from the configuration if there
        are no users yet.
        """
        config = self.config

        def run(conn: sqlite3.Connection):
            with conn:
                for statement in SQL_CREATE_USER_TABLES:
                    conn.execute(statement)
                for role, perms in config.roles.items():
                    for perm in perms:
                        conn.execute(SQL_INSERT_ROLE_PERM, (role, perm))
                if conn.execute(SQL_COUNT_USERS).fetchall()[0][0] > 0:
                    return 0
                for user in config.users:
                    conn.execute(
                        SQL_INSERT_USER,
                        (user.username, hash_password(user.password, config.bcrypt_rounds)),
                    )
                    for role in user.roles:
                        conn.execute(SQL_INSERT_USER_ROLE, (user.username, role))
                return len(config.users)

        seeded = await self._run(run)
        if seeded:
            logger.info("Seeded %d users", seeded)

    async def get_principal(self, username: str) -> Principal:
        """
        Get the principal for a known user, with its page permissions.
        """

        def run(conn: sqlite3.Connection):
            rows = conn.execute(SQL_GET_PERMISSIONS, (username,)).fetchall()
            return {row[0] for row in rows}

        permissions = await self._run(run)
        return Principal(
            username=username,
            permissions={perm for perm in permissions if perm in PERMISSIONS},
        )

    async def authenticate(self, username: str | None, password: str | None) -> Principal:
        """
        Check the credentials. Raises AuthenticationError if they are wrong.
        """
        if not username or not password:
            raise AuthenticationError("Missing credentials")

        def run(conn: sqlite3.Connection):
            rows = conn.execute(SQL_GET_PASSWORD, (username,)).fetchall()
            if not rows:
                return False
            return verify_password(password, rows[0][0])

        if not await self._run(run):
            logger.warning("Authentication failed for username=%s", username)
            raise AuthenticationError("Invalid username or password")
        logger.info("Authenticated username=%s", username)
        return await self.get_principal(username)


class TokenIssuer:
    """
    Issues and verifies the API tokens.
    """

    ALGORITHM = "HS256"

    def __init__(self, config: AuthConfig):
        self.config = config

    def issue(self, principal: Principal) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        claims = {
            "sub": principal.username,
            "iss": self.config.jwt_issuer,
            "iat": now,
            "exp": now + datetime.timedelta(minutes=self.config.jwt_expires_minutes),
            "canCreate": principal.can_create,
            "canDelete": principal.can_delete,
            "canUpdate": principal.can_update,
        }
        return jwt.encode(claims, self.config.jwt_secret, algorithm=self.ALGORITHM)

    def verify(self, token: str) -> Principal:
        """
        Get the principal from a token. Raises AuthenticationError if the
        token is invalid or expired.
        """
        try:
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=[self.ALGORITHM],
                issuer=self.config.jwt_issuer,
                options={"require": ["sub", "exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid token: %s", e)
            raise AuthenticationError(f"Invalid token: {e}") from e

        permissions = {
            perm
            for perm, claim in (
                ("create", "canCreate"),
                ("delete", "canDelete"),
                ("update", "canUpdate"),
            )
            if claims.get(claim)
        }
        return Principal(username=claims["sub"], permissions=permissions)
