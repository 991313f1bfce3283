from __future__ import annotations

from typing import Optional


class BooruError(Exception):
    """Base class for everything a provider call can raise."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class TransportError(BooruError):
    """The request never produced an HTTP response (DNS, timeout, reset...)."""


class ResponseStatusError(BooruError):
    """The server answered with something other than 200."""


class BadRequest(ResponseStatusError):
    pass


class Unauthorized(ResponseStatusError):
    pass


class Forbidden(ResponseStatusError):
    pass


class NotFound(ResponseStatusError):
    pass


class PaginationExhausted(ResponseStatusError):
    """410 Gone, which boorus use when a page index runs past the end."""


class RateLimited(ResponseStatusError):
    pass


class InvalidParameters(ResponseStatusError):
    pass


class ServerError(ResponseStatusError):
    pass


class ServiceUnavailable(ResponseStatusError):
    pass


class UnknownStatus(ResponseStatusError):
    pass


class UnparseableResponse(BooruError):
    """The body could not be read as JSON or XML, or had no record container."""


class LoginRequired(BooruError):
    pass


class InvalidProviderURL(ValueError):
    pass
