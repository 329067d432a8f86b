class TakaroMapError(Exception):
    """Base class for all exceptions in takaro-map."""


class CacheError(TakaroMapError):
    """Exception raised for cache-related errors."""


class CacheUnavailableError(CacheError):
    """Raised by a remote backend when the shared store cannot be reached."""


class UpstreamError(TakaroMapError):
    """Raised when a call to the Takaro API fails.

    Args:
        message: Human-readable message, best effort from the upstream payload
        status_code: HTTP status of the failed response, if there was one
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ClientNotInitializedError(TakaroMapError):
    """Raised when an operation needs an upstream client that was never set up."""


class AuthenticationError(TakaroMapError):
    """Raised when a request carries no usable Takaro session."""
