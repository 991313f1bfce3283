import pytest

from booru_utils.errors import (
    BadRequest,
    BooruError,
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
from booru_utils.response_handler import handle_response, status_error
from booru_utils.url_params import obj_to_url_params

URL = "https://gelbooru.com/index.php?page=dapi&s=post&tags=ran"


def test_success_runs_callback():
    assert handle_response(200, URL, lambda: "parsed") == "parsed"


@pytest.mark.parametrize(
    "status, error_cls",
    [
        (400, BadRequest),
        (401, Unauthorized),
        (403, Forbidden),
        (404, NotFound),
        (410, PaginationExhausted),
        (421, RateLimited),
        (429, RateLimited),
        (424, InvalidParameters),
        (500, ServerError),
        (503, ServiceUnavailable),
        (418, UnknownStatus),
    ],
)
def test_status_maps_to_typed_error(status, error_cls):
    callback_ran = []
    with pytest.raises(error_cls) as info:
        handle_response(status, URL, lambda: callback_ran.append(True))
    assert not callback_ran
    assert info.value.status == status
    assert info.value.url == URL
    assert isinstance(info.value, ResponseStatusError)
    assert isinstance(info.value, BooruError)


def test_invalid_parameters_lists_query():
    error = status_error(424, URL)
    assert "'tags': ['ran']" in str(error)


def test_url_params_omit_unset_values():
    params = obj_to_url_params({"tags": "ran", "limit": 10, "pid": None, "cid": "", "random": False, "json": True})
    assert params == {"tags": "ran", "limit": "10", "random": "false", "json": "true"}
    assert obj_to_url_params(None) == {}
