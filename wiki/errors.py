"""
Exceptions raised by the wiki services.
"""


class WikiError(Exception):
    """
    Base class for all the wiki errors.
    """


class DatabaseError(WikiError):
    """
    The page store could not run a statement.
    """


class DuplicatePageError(DatabaseError):
    """
    A page with the same name already exists.
    """

    def __init__(self, name: str):
        super().__init__(f"Page already exists: {name}")
        self.name = name


class ReplyException(WikiError):
    """
    A request over the event bus failed.

    The failure code tells the kind of failure: NO_HANDLERS, TIMEOUT or
    RECIPIENT_FAILURE for the bus itself, or any code set by the consumer.
    """

    NO_HANDLERS = "NO_HANDLERS"
    TIMEOUT = "TIMEOUT"
    RECIPIENT_FAILURE = "RECIPIENT_FAILURE"

    def __init__(self, failure_code: str, message: str):
        super().__init__(message)
        self.failure_code = failure_code
        self.message = message

    def __repr__(self) -> str:
        return f"<ReplyException failure_code={self.failure_code} message={self.message!r}>"


class AuthenticationError(WikiError):
    """
    Bad credentials, or a missing or invalid token.
    """


class AuthorizationError(WikiError):
    """
    The principal lacks the permission for the operation.
    """

    def __init__(self, permission: str):
        super().__init__(f"Missing permission: {permission}")
        self.permission = permission


class BackupError(WikiError):
    """
    The backup service did not accept the snapshot.
    """


class DeploymentError(WikiError):
    """
    A unit failed to start, so the deployment was rolled back.
    """

    def __init__(self, unit: str, cause: BaseException):
        super().__init__(f"Failed to deploy {unit}: {cause}")
        self.unit = unit
        self.cause = cause
