from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from booru_utils.normalizer import COMMENT_SHAPE, POST_SHAPE, TAG_SHAPE, USER_SHAPE, RecordShape
from booru_utils.posts import DANBOORU_RATINGS, DEFAULT_FIELDS, Post
from booru_utils.url_params import obj_to_url_params
from providers.base import BooruResult, ProviderCore

DANBOORU_FIELDS = {
    **DEFAULT_FIELDS,
    "tags": ("tag_string", "tags"),
    "width": ("image_width", "width"),
    "height": ("image_height", "height"),
    "sample_url": ("large_file_url", "sample_url"),
    "preview_url": ("preview_file_url", "preview_url"),
    "owner": ("uploader_name", "owner"),
    "creator_id": ("uploader_id", "creator_id"),
}

AUTOCOMPLETE_SHAPE = RecordShape("autocomplete", "item", id_key="value")


class DanbooruProvider(ProviderCore):
    name = "Danbooru"
    default_url = "https://danbooru.donmai.us"
    post_ratings = DANBOORU_RATINGS
    post_fields = DANBOORU_FIELDS

    def _with_auth(self, params: Mapping[str, Any]) -> Dict[str, str]:
        merged = dict(params)
        merged["login"] = self.login_details.username
        merged["api_key"] = self.login_details.api_key
        return obj_to_url_params(merged)

    async def search(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Post]:
        """Search posts; *options* may carry ``limit``, ``page`` and ``random``."""
        self._warn_anonymous()
        params = self._with_auth({"tags": query, **(options or {})})
        payload = await self.http.fetch_payload("posts.json", params, POST_SHAPE)
        posts = [Post.from_record(r, ratings=self.post_ratings, fields=self.post_fields) for r in payload.records]
        return self._page(payload, posts)

    async def tags(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Dict[str, Any]]:
        params = self._with_auth({"search[name_matches]": query, **(options or {})})
        payload = await self.http.fetch_payload("tags.json", params, TAG_SHAPE)
        return self._page(payload, payload.records)

    async def user(
        self,
        id: Optional[int] = None,
        name: Optional[str] = None,
        level: Optional[int] = None,
        order: Optional[str] = None,
    ) -> BooruResult[Dict[str, Any]]:
        if id is not None and name is None and level is None and order is None:
            payload = await self.http.fetch_payload(f"users/{id}.json", self._with_auth({}), USER_SHAPE)
            return self._page(payload, payload.records)
        params = self._with_auth(
            {
                "search[id]": id,
                "search[name_matches]": name,
                "search[level]": level,
                "search[order]": order,
            }
        )
        payload = await self.http.fetch_payload("users.json", params, USER_SHAPE)
        return self._page(payload, payload.records)

    async def comments(self, post_id: Any, limit: int = 20, page: Optional[int] = None) -> BooruResult[Dict[str, Any]]:
        params = self._with_auth({"search[post_id]": post_id, "limit": limit, "page": page})
        payload = await self.http.fetch_payload("comments.json", params, COMMENT_SHAPE)
        return self._page(payload, payload.records)

    async def autocomplete(self, query: str, limit: int = 20) -> BooruResult[Dict[str, Any]]:
        params = self._with_auth(
            {
                "search[query]": query,
                "search[type]": "tag_query",
                "version": 1,
                "limit": limit,
            }
        )
        payload = await self.http.fetch_payload("autocomplete.json", params, AUTOCOMPLETE_SHAPE)
        return self._page(payload, payload.records)
