from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from booru_utils.errors import LoginRequired, UnparseableResponse
from booru_utils.normalizer import COMMENT_SHAPE, POST_SHAPE, TAG_SHAPE, USER_SHAPE
from booru_utils.posts import DEFAULT_FIELDS, MOEBOORU_RATINGS, Post, RatingBucket
from booru_utils.url_params import obj_to_url_params
from providers.base import BooruResult, ProviderCore

# Everything is included by default; questionable/explicit posts are opt-out.
DEFAULT_SEARCH_OPTS = {
    "page": 1,
    "limit": 100,
    "questionable": True,
    "explicit": True,
}
MAX_LIMIT = 100
TAG_TYPES = ("general", "artist", "copyright", "character", "circle", "faults")


class MoebooruProvider(ProviderCore):
    name = "Moebooru"
    default_url = "https://konachan.net"

    async def search(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Post]:
        """Search posts, dropping questionable/explicit ones when the options opt out.

        The result's ``extra["filtered"]`` tells how many posts were dropped.
        """
        opts = {**DEFAULT_SEARCH_OPTS, **(options or {})}
        if not query:
            raise ValueError("Query is required")
        if opts["limit"] and int(opts["limit"]) > MAX_LIMIT:
            raise ValueError(f"Limit must be at most {MAX_LIMIT}")
        params = obj_to_url_params({"tags": query, "limit": opts["limit"], "page": opts["page"]})
        payload = await self.http.fetch_payload("post.json", params, POST_SHAPE)

        posts: List[Post] = []
        filtered = 0
        for record in payload.records:
            post = Post.from_record(record, ratings=MOEBOORU_RATINGS, fields=DEFAULT_FIELDS)
            if not opts["questionable"] and post.rating_bucket is RatingBucket.SENSITIVE:
                filtered += 1
                continue
            if not opts["explicit"] and post.rating_bucket is RatingBucket.EXPLICIT:
                filtered += 1
                continue
            posts.append(post)
        return self._page(payload, posts, filtered=filtered)

    async def tags(self, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Dict[str, Any]]:
        """Tags by ``name``, ``id``, ``order``, ``limit``, ``page``..."""
        payload = await self.http.fetch_payload("tag.json", obj_to_url_params(options), TAG_SHAPE)
        return self._page(payload, payload.records)

    async def tags_related(self, tag: str, type: Optional[str] = None) -> BooruResult[List[Any]]:
        if type is not None and type not in TAG_TYPES:
            raise ValueError(f"Unknown tag type {type!r}")
        data = await self.http.fetch_json("tag/related.json", obj_to_url_params({"tags": tag, "type": type}))
        if not isinstance(data, dict):
            raise UnparseableResponse("Related tags response is not an object")
        related = data.get(tag) or []
        return BooruResult(related, len(related))

    async def user(
        self,
        id: Optional[int] = None,
        name: Optional[str] = None,
        login_required: bool = True,
    ) -> BooruResult[Dict[str, Any]]:
        """Look a user up by id or by name (id wins if both are given)."""
        if login_required and not self.login_details:
            raise LoginRequired("You must be logged in to perform this action! Call login(username, api_key) first.")
        params = {
            "login": self.login_details.username,
            "password_hash": self.login_details.api_key,
        }
        if id:
            params["id"] = id
        elif name:
            params["name"] = name
        payload = await self.http.fetch_payload("user.json", obj_to_url_params(params), USER_SHAPE)
        return self._page(payload, payload.records)

    async def comments(
        self,
        post_id: Any = None,
        options: Optional[Mapping[str, Any]] = None,
        *,
        comment_id: Optional[int] = None,
    ) -> BooruResult[Dict[str, Any]]:
        if comment_id is not None:
            payload = await self.http.fetch_payload(
                "comment/show.json", obj_to_url_params({"id": comment_id}), COMMENT_SHAPE
            )
        else:
            params = obj_to_url_params({"post_id": post_id, **(options or {})})
            payload = await self.http.fetch_payload("comment.json", params, COMMENT_SHAPE)
        return self._page(payload, payload.records)
