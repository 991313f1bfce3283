from __future__ import annotations

from typing import Callable, Dict, Tuple, Type, TypeVar
from urllib.parse import parse_qs, urlsplit

from booru_utils.errors import (
    BadRequest,
    Forbidden,
    InvalidParameters,
    NotFound,
    PaginationExhausted,
    RateLimited,
    ResponseStatusError,
    ServerError,
    ServiceUnavailable,
    Unauthorized,
    UnknownStatus,
)

T = TypeVar("T")

STATUS_ERRORS: Dict[int, Tuple[Type[ResponseStatusError], str]] = {
    400: (BadRequest, "400 Bad Request!"),
    401: (Unauthorized, "401 Unauthorized!"),
    403: (Forbidden, "403 Forbidden!"),
    404: (NotFound, "404 Not Found!"),
    410: (PaginationExhausted, "410 Gone! This usually means you've hit the pagination limit."),
    421: (RateLimited, "You are being throttled by the server. Please try again later!"),
    429: (RateLimited, "429 Too Many Requests! Please try again later."),
    424: (InvalidParameters, "Invalid parameters!"),
    500: (ServerError, "500 Internal Server Error! Please try again later."),
    503: (ServiceUnavailable, "503 Service Unavailable! Please try again later."),
}


def status_error(status: int, url: str) -> ResponseStatusError:
    """Build the typed error for a non-200 *status*."""
    error_cls, message = STATUS_ERRORS.get(status, (UnknownStatus, f"Unknown error occurred! Status: {status}"))
    if error_cls is InvalidParameters:
        params = parse_qs(urlsplit(url).query)
        message = f"{message} Query passed in: {params}"
    return error_cls(f"{message} Attempted URL: {url}", url=url, status=status)


def handle_response(status: int, url: str, on_success: Callable[[], T]) -> T:
    """Run *on_success* for a 200, raise the matching error otherwise.

    Nothing is retried here; callers decide what a failure means for them.
    """
    if status == 200:
        return on_success()
    raise status_error(status, url)
