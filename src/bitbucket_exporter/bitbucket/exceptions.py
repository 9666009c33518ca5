"""Exceptions raised while talking to the Bitbucket API."""


class BitbucketError(Exception):
    """Base exception for Bitbucket exporter errors."""


class AuthenticationError(BitbucketError):
    """Raised when credentials are missing or unusable."""


class TransportError(BitbucketError):
    """Raised when a request cannot be built, sent, or gets a non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DecodeError(BitbucketError):
    """Raised when a response body does not match the expected shape."""


class PaginationError(BitbucketError):
    """Raised when a next-page link cannot be turned into a page number."""
