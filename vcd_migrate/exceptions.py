"""Exceptions raised by the vCD migration tool.

Every error aborts the current run. The only conditions that are not errors
are "already exists" (the task is skipped) and "feature disabled" (the block
is omitted from the rewritten document).
"""


class VcdMigrationError(Exception):
    """Base exception for all vCD migration errors."""

    pass


class ConfigurationError(VcdMigrationError):
    """Raised when the operator input or configuration cannot drive a run."""

    pass


class AuthError(VcdMigrationError):
    """Raised when a session cannot be opened (bad credentials, refused connection)."""

    pass


class RestError(VcdMigrationError):
    """Raised on a non-success HTTP response or a transport failure."""

    def __init__(
        self,
        message: str,
        method: str | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ):
        """Initialize REST error.

        Args:
            message: Error message as reported by the server or transport
            method: HTTP method of the failed call
            url: URL of the failed call
            status_code: HTTP status code, None for transport failures
        """
        self.message = message
        self.method = method
        self.url = url
        self.status_code = status_code
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and request line."""
        msg = self.message
        if self.method and self.url:
            msg = f"{self.method} {self.url}: {msg}"
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        return msg


class NotFoundError(VcdMigrationError):
    """Raised when an object, link or reference is absent."""

    pass


class AmbiguousError(VcdMigrationError):
    """Raised when more than one match exists where exactly one was required."""

    pass


class UnresolvedReferenceError(VcdMigrationError):
    """Raised when a source reference has no equivalent object on the target."""

    def __init__(self, kind: str, name: str | None, detail: str | None = None):
        self.kind = kind
        self.name = name
        message = f"Unresolved {kind} reference '{name}' on target"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnsupportedTopologyError(VcdMigrationError):
    """Raised for source layouts the migration does not handle."""

    pass


class ReadinessTimeoutError(VcdMigrationError, TimeoutError):
    """Raised when an object never reports ready within the polling policy."""

    pass
