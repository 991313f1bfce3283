from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from booru_utils.errors import UnparseableResponse
from booru_utils.normalizer import POST_SHAPE, TAG_SHAPE, decode_json
from booru_utils.posts import DEFAULT_FIELDS, MOEBOORU_RATINGS, Post, ensure_numeric_id, to_bool
from booru_utils.url_params import obj_to_url_params
from providers.base import BooruResult
from providers.danbooru import DanbooruProvider


def decode_tag_summary(data: str) -> List[Dict[str, Any]]:
    """Decode the packed ``kind`tag`alias`alias`` list served by /tag/summary."""
    entries = []
    for entry in data.split():
        parts = entry.split("`")
        if len(parts) < 2 or not parts[1]:
            continue
        entries.append(
            {
                "kind": ensure_numeric_id(parts[0]),
                "tag": parts[1],
                "aliases": [alias for alias in parts[2:] if alias],
            }
        )
    return entries


def tag_from_node(node: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    tag_id = ensure_numeric_id(node.get("id"))
    name = node.get("name")
    if tag_id is None or name is None:
        return None
    return {
        "id": tag_id,
        "name": str(name),
        "count": ensure_numeric_id(node.get("count")) or 0,
        "type": ensure_numeric_id(node.get("type")) or 0,
        "ambiguous": bool(to_bool(node.get("ambiguous"))),
    }


class YandereProvider(DanbooruProvider):
    """yande.re: Danbooru-style users/comments, Moebooru XML for posts and tags."""

    name = "Yandere"
    default_url = "https://yande.re"
    post_ratings = MOEBOORU_RATINGS
    post_fields = DEFAULT_FIELDS

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.autocomplete_cache: Optional[List[Dict[str, Any]]] = None

    async def search(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Post]:
        self._warn_anonymous()
        params = self._with_auth({"tags": query, **(options or {})})
        payload = await self.http.fetch_payload("post.xml", params, POST_SHAPE)
        posts = [Post.from_record(r, ratings=self.post_ratings, fields=self.post_fields) for r in payload.records]
        return self._page(payload, posts)

    async def tags(self, query: Optional[str] = None, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Dict[str, Any]]:
        params = obj_to_url_params({"name": query, **(options or {})})
        payload = await self.http.fetch_payload("tag.xml", params, TAG_SHAPE)
        tags = [tag for tag in map(tag_from_node, payload.records) if tag is not None]
        return self._page(payload, tags)

    async def prefetch_autocomplete(self) -> None:
        text = await self.http.fetch_text("tag/summary.json")
        summary = text
        if text.lstrip().startswith("{"):
            data = decode_json(text)
            summary = data.get("data") if isinstance(data, dict) else None
            if not isinstance(summary, str):
                raise UnparseableResponse("Tag summary has no data field")
        self.autocomplete_cache = decode_tag_summary(summary)

    async def autocomplete(self, query: str, limit: Optional[int] = None) -> BooruResult[Dict[str, Any]]:
        if self.autocomplete_cache is None:
            await self.prefetch_autocomplete()
        needle = query.lower()
        matches = [
            entry
            for entry in self.autocomplete_cache or []
            if needle in entry["tag"].lower() or any(needle in alias.lower() for alias in entry["aliases"])
        ]
        if limit:
            matches = matches[:limit]
        return BooruResult(matches, len(matches))
