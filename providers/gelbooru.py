from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from booru_utils.normalizer import COMMENT_SHAPE, POST_SHAPE, TAG_SHAPE, USER_SHAPE
from booru_utils.posts import DEFAULT_FIELDS, GELBOORU_RATINGS, Post
from booru_utils.url_params import obj_to_url_params
from providers.base import BooruResult, ProviderCore

logger = logging.getLogger(__name__)

GEL_API_PATH = "index.php"
# Gelbooru 0.2 calls the md5 "hash" and sends sample as 0/1, 0.3 uses "md5" and booleans
GELBOORU_FIELDS = dict(DEFAULT_FIELDS)


class GelbooruProvider(ProviderCore):
    name = "Gelbooru"
    default_url = "https://gelbooru.com"

    def _dapi_params(self, section: str, options: Optional[Mapping[str, Any]] = None, **fixed: Any) -> Dict[str, str]:
        params = {"page": "dapi", "s": section, "q": "index", "json": 1, **fixed}
        params.update(options or {})
        params["api_key"] = self.login_details.api_key
        params["user_id"] = self.login_details.username
        return obj_to_url_params(params)

    async def search(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Post]:
        """Search posts. *options* may carry ``limit``, ``pid``, ``cid`` and ``id``."""
        self._warn_anonymous()
        payload = await self.http.fetch_payload(GEL_API_PATH, self._dapi_params("post", options, tags=query), POST_SHAPE)
        posts = [Post.from_record(r, ratings=GELBOORU_RATINGS, fields=GELBOORU_FIELDS) for r in payload.records]
        return self._page(payload, posts)

    async def tags(self, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Dict[str, Any]]:
        """Tag list; *options* takes ``name``, ``names``, ``name_pattern``, ``limit``, ``order``, ``orderby``."""
        payload = await self.http.fetch_payload(GEL_API_PATH, self._dapi_params("tag", options), TAG_SHAPE)
        return self._page(payload, payload.records)

    async def user(self, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Dict[str, Any]]:
        payload = await self.http.fetch_payload(GEL_API_PATH, self._dapi_params("user", options), USER_SHAPE)
        return self._page(payload, payload.records)

    async def comments(self, post_id: Any, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Dict[str, Any]]:
        if self.base_url == self.default_url:
            logger.warning("Gelbooru has disabled its comment API upstream, returning no comments")
            return BooruResult([], 0, extra={"api_disabled": True})
        params = self._dapi_params("comment", options, post_id=post_id)
        payload = await self.http.fetch_payload(GEL_API_PATH, params, COMMENT_SHAPE)
        return self._page(payload, payload.records)

    async def autocomplete(self, term: str) -> BooruResult[Dict[str, Any]]:
        params = obj_to_url_params(
            {
                "page": "autocomplete2",
                "term": term,
                "type": "tag_query",
                "api_key": self.login_details.api_key,
                "user_id": self.login_details.username,
            }
        )
        data = await self.http.fetch_json(GEL_API_PATH, params)
        items = data if isinstance(data, list) else []
        return BooruResult(items, len(items))
