"""Error types raised by the library core and translated to HTTP responses by the API."""


class LibraryError(Exception):
    """Base class for errors that map to a JSON ``{"error": message}`` response."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(LibraryError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(LibraryError):
    """Bad credentials. The message stays generic so callers cannot probe for accounts."""

    status_code = 401
    default_message = "Invalid credentials"


class UnauthorizedError(LibraryError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(LibraryError):
    status_code = 404
    default_message = "Not found"


class ConflictError(LibraryError):
    status_code = 409
    default_message = "Conflict"


class ExternalServiceError(LibraryError):
    status_code = 502
    default_message = "Catalog search failed"


class InternalError(LibraryError):
    status_code = 500


class HashingError(InternalError):
    pass
