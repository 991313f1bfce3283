import re
from typing import Any, Dict, List, Mapping, Optional
from unittest.mock import MagicMock

import pytest

from booru_utils.posts import GELBOORU_RATINGS, Post
from providers.base import BooruResult


def make_post(post_id, rating="general", tags="touhou yakumo_ran", file_url=None, **extra) -> Post:
    record = {
        "id": post_id,
        "rating": rating,
        "tags": tags,
        "file_url": file_url if file_url is not None else f"https://img.example.com/images/{post_id}.jpg",
        **extra,
    }
    return Post.from_record(record, ratings=GELBOORU_RATINGS)


class FakeProvider:
    """In-memory board answering ``id:<N`` cursor queries and ``id:N`` lookups, newest first."""

    name = "Fake"
    base_url = "https://fake.example.com"

    def __init__(self, posts: List[Post], errors: Optional[Dict[str, Exception]] = None):
        self.posts = sorted(posts, key=lambda p: p.id, reverse=True)
        self.errors = errors or {}
        self.calls: List[Dict[str, Any]] = []

    async def search(self, query: str, options: Optional[Mapping[str, Any]] = None) -> BooruResult[Post]:
        options = dict(options or {})
        self.calls.append({"query": query, "options": options})
        if query in self.errors:
            raise self.errors[query]
        limit = int(options.get("limit", 100))
        below = re.search(r"id:<(\d+)", query)
        exact = re.search(r"id:(\d+)(?:\s|$)", query)
        matches = self.posts
        if below:
            matches = [p for p in matches if p.id < int(below.group(1))]
        elif exact:
            matches = [p for p in matches if p.id == int(exact.group(1))]
        page = matches[:limit]
        return BooruResult(page, len(page), count=len(matches))

    def cursors(self) -> List[Optional[int]]:
        found = []
        for call in self.calls:
            match = re.search(r"id:<(\d+)", call["query"])
            found.append(int(match.group(1)) if match else None)
        return found


def fake_response(status=200, text="", url="https://example.com/"):
    response = MagicMock()
    response.status_code = status
    response.text = text
    response.url = url
    return response


@pytest.fixture
def post_factory():
    return make_post


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def response_factory():
    return fake_response
