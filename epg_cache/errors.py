"""
Error taxonomy for the EPG cache.

Service errors carry the HTTP status code they map to; the FastAPI exception
handler in ``epg_cache.main`` turns them into ``{"error": message}`` bodies.
Upstream errors are raised by the TVHeadend client and are handled inside the
refresh scheduler.
"""


class EpgCacheError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidParameterError(EpgCacheError):
    """A required parameter is missing or malformed."""

    status_code = 400


class NotFoundError(EpgCacheError):
    """The requested channel, event or picon does not exist."""

    status_code = 404


class RefreshConflictError(EpgCacheError):
    """A refresh was requested while one is already running."""

    status_code = 409


class ServiceUnavailableError(EpgCacheError):
    """A feature is not configured for this process."""

    status_code = 503


class UpstreamError(Exception):
    """Raised when the TVHeadend backend cannot be queried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamBadRequestError(UpstreamError):
    def __init__(self, message: str = "Bad request"):
        super().__init__(message, 400)


class UpstreamAuthenticationError(UpstreamError):
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, 401)


class UpstreamAuthorizationError(UpstreamError):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, 403)


class UpstreamNotFoundError(UpstreamError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class UpstreamNetworkError(UpstreamError):
    """Connection failures and timeouts that survived every retry."""
