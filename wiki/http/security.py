"""
Resolves who is making a request, and what it may do.

With authentication disabled every request acts as an anonymous principal
with all the page permissions.
"""

import logging
from urllib.parse import quote

import fastapi

from wiki.auth import TokenIssuer
from wiki.config import AuthConfig
from wiki.errors import AuthenticationError, AuthorizationError
from wiki.types import PERMISSIONS, Principal

logger = logging.getLogger(__name__)

SESSION_KEY = "user"

ANONYMOUS = Principal(username="anonymous", permissions=set(PERMISSIONS))


class LoginRequired(Exception):
    """
    The HTML route needs a logged in user. Handled by redirecting to the login page.
    """

    def __init__(self, return_url: str):
        super().__init__(f"Login required for {return_url}")
        self.return_url = return_url

    @property
    def login_url(self) -> str:
        return f"/login?return_url={quote(self.return_url, safe='')}"


def require_permission(principal: Principal, permission: str) -> None:
    if not principal.can(permission):
        logger.warning(
            "username=%s lacks permission=%s", principal.username, permission
        )
        raise AuthorizationError(permission)


class Security:
    """
    Principal resolution for the session based HTML routes and the token
    based API routes.
    """

    def __init__(self, config: AuthConfig, tokens: TokenIssuer | None = None):
        self.config = config
        self.tokens = tokens

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def session_user(self, request: fastapi.Request) -> Principal | None:
        """
        The logged in principal, if any.
        """
        if not self.enabled:
            return ANONYMOUS
        data = request.session.get(SESSION_KEY)
        if not data:
            return None
        return Principal.from_dict(data)

    def require_user(self, request: fastapi.Request) -> Principal:
        principal = self.session_user(request)
        if principal is None:
            return_url = request.url.path
            if request.url.query:
                return_url = f"{return_url}?{request.url.query}"
            raise LoginRequired(return_url)
        return principal

    def login(self, request: fastapi.Request, principal: Principal) -> None:
        request.session[SESSION_KEY] = principal.to_dict()

    def logout(self, request: fastapi.Request) -> None:
        request.session.clear()

    def token_user(self, request: fastapi.Request) -> Principal:
        """
        The principal of the bearer token. Raises AuthenticationError if
        missing or invalid.
        """
        if not self.enabled:
            return ANONYMOUS
        authorization = request.headers.get("authorization", "")
        if not authorization.startswith("Bearer "):
            raise AuthenticationError("Missing bearer token")
        return self.tokens.verify(authorization[len("Bearer ") :].strip())
