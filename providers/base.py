from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Mapping, Optional, Protocol, TypeVar, runtime_checkable
from urllib.parse import urlsplit

import requests

from booru_utils.errors import InvalidProviderURL, TransportError
from booru_utils.normalizer import Payload, RecordShape, decode_json, normalize
from booru_utils.posts import Post
from booru_utils.response_handler import handle_response

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "booru-crawler/1.0"
DEFAULT_TIMEOUT = 20


@dataclass
class LoginDetails:
    username: Optional[str] = None
    api_key: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.username or self.api_key)


@dataclass
class BooruResult(Generic[T]):
    """One page of results. ``count`` is the server-side total when reported."""

    results: List[T]
    total_results: int
    count: Optional[int] = None
    was_xml: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Provider(Protocol):
    name: str
    base_url: str

    def login(self, username: Optional[str], api_key: Optional[str]) -> None: ...

    async def search(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Post]: ...

    async def tags(self, *args: Any, **kwargs: Any) -> BooruResult[Dict[str, Any]]: ...

    async def user(self, *args: Any, **kwargs: Any) -> BooruResult[Dict[str, Any]]: ...

    async def comments(self, *args: Any, **kwargs: Any) -> BooruResult[Dict[str, Any]]: ...


def normalize_base_url(url: str) -> str:
    url = (url or "").strip().rstrip("/")
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidProviderURL(f"Invalid URL! {url!r}")
    return url


@dataclass
class RawResponse:
    status: int
    text: str
    url: str


class BooruTransport:
    """HTTP plumbing for one site: a keep-alive session run off the event loop."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(self, path: str, params: Optional[Mapping[str, str]] = None) -> RawResponse:
        url = self.url_for(path)
        try:
            resp = await asyncio.to_thread(self.session.get, url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error(f"Request to {url} failed: {exc}")
            raise TransportError(f"Request failed: {exc}", url=url) from exc
        return RawResponse(resp.status_code, resp.text, resp.url or url)

    async def fetch_payload(self, path: str, params: Optional[Mapping[str, str]], shape: RecordShape) -> Payload:
        raw = await self.get(path, params)
        return handle_response(raw.status, raw.url, lambda: normalize(raw.text, shape, raw.url))

    async def fetch_json(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        raw = await self.get(path, params)
        return handle_response(raw.status, raw.url, lambda: decode_json(raw.text, raw.url))

    async def fetch_text(self, path: str, params: Optional[Mapping[str, str]] = None) -> str:
        raw = await self.get(path, params)
        return handle_response(raw.status, raw.url, lambda: raw.text)

    def close(self) -> None:
        self.session.close()


class ProviderCore:
    """Identity, credentials and session lifetime shared by every provider."""

    name = "booru"
    default_url = ""
    languages = ["en", "ja"]

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        login: Optional[LoginDetails] = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.http = BooruTransport(url or self.default_url, timeout=timeout, session=session)
        self.base_url = self.http.base_url
        self.login_details = LoginDetails()
        if login:
            self.login(login.username, login.api_key)

    def login(self, username: Optional[str], api_key: Optional[str]) -> None:
        self.login_details = LoginDetails(username, api_key)

    @property
    def info(self) -> Dict[str, Any]:
        return {"name": self.name, "base_url": self.base_url, "languages": list(self.languages)}

    def _warn_anonymous(self) -> None:
        if not self.login_details:
            logger.warning(f"{self.name}: login details not provided, many endpoints will refuse anonymous calls")

    def _page(self, payload: Payload, records: List[T], **extra: Any) -> BooruResult[T]:
        return BooruResult(records, len(records), payload.count, payload.was_xml, dict(extra))

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
