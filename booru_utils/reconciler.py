"""
Resolve locally-known post ids to remote metadata.

Paging walks ``<query> id:<cursor`` from just above the highest local id
downwards; whatever paging cannot find is looked up one id at a time. Ids
that still do not resolve are reported as missing, never raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from booru_utils.crawler import with_cursor
from booru_utils.errors import BooruError
from booru_utils.local_files import ImageFile
from booru_utils.metadata import MetadataRecord, build_record
from booru_utils.posts import Post, ensure_numeric_id
from booru_utils.ratelimiter import RateLimiter

logger = logging.getLogger(__name__)

MAX_POSTS_PER_REQUEST = 100
MAX_EMPTY_BATCHES_WITHOUT_MATCH = 50
METADATA_REQ_PER_SECOND = 8
METADATA_MAX_CONCURRENT = 4


@dataclass
class QueryWorkload:
    query: str
    groups: Dict[int, List[ImageFile]]


@dataclass
class QuerySummary:
    query: str
    total_ids: int
    resolved_ids: int
    missing_ids: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "totalIds": self.total_ids,
            "resolvedIds": self.resolved_ids,
            "missingIds": self.missing_ids,
        }


@dataclass
class WorkloadResult:
    records: List[MetadataRecord] = field(default_factory=list)
    missing_ids: List[int] = field(default_factory=list)
    summary: Optional[QuerySummary] = None
    hit_empty_batch_limit: bool = False


def pending_groups(groups: Mapping[Any, Sequence[ImageFile]]) -> Dict[int, List[ImageFile]]:
    """Key groups by numeric id, dropping ids that are not finite integers."""
    pending: Dict[int, List[ImageFile]] = {}
    for raw_id, files in groups.items():
        post_id = ensure_numeric_id(raw_id)
        if post_id is None:
            logger.warning(f"Ignoring non-numeric id {raw_id!r}")
            continue
        pending.setdefault(post_id, []).extend(files)
    return pending


async def fetch_posts_with_cursor(provider: Any, query: str, cursor: int, limit: int = MAX_POSTS_PER_REQUEST) -> List[Post]:
    query_with_cursor = with_cursor(query, cursor)
    try:
        result = await provider.search(query_with_cursor, {"limit": limit})
    except BooruError as e:
        logger.warning(f"Failed to fetch metadata for query {query_with_cursor!r}: {e}")
        return []
    return list(result.results or [])


async def fetch_post_by_id(provider: Any, post_id: int) -> Optional[Post]:
    try:
        result = await provider.search(f"id:{post_id}", {"limit": 1})
    except BooruError as e:
        logger.warning(f"Failed to fetch metadata for {post_id}: {e}")
        return None
    for post in result.results or []:
        if post.id == post_id:
            return post
    return None


async def reconcile_workload(
    provider: Any,
    workload: QueryWorkload,
    limiter: RateLimiter,
    *,
    batch_limit: int = MAX_POSTS_PER_REQUEST,
    max_empty_batches: int = MAX_EMPTY_BATCHES_WITHOUT_MATCH,
    on_record: Optional[Callable[[MetadataRecord], None]] = None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> WorkloadResult:
    """
    Resolve every id of *workload*.

    ``on_record`` sees each record as soon as it is built (sidecars are written
    from there); ``on_progress`` receives the number of ids settled by a step.
    """
    pending = pending_groups(workload.groups)
    total = len(pending)
    result = WorkloadResult()

    def resolve(post: Post, files: List[ImageFile]) -> None:
        record = build_record(post, files)
        result.records.append(record)
        if on_record is not None:
            on_record(record)

    cursor: Optional[int] = max(pending) + 1 if pending else None
    empty_batches = 0
    batches = 0
    while pending and cursor is not None and cursor > 0:
        batches += 1
        posts = await limiter.schedule(fetch_posts_with_cursor, provider, workload.query, cursor, batch_limit)
        if not posts:
            break

        matched = 0
        smallest: Optional[int] = None
        for post in posts:
            if post.id is None:
                continue
            if smallest is None or post.id < smallest:
                smallest = post.id
            files = pending.pop(post.id, None)
            if files is None:
                continue
            matched += 1
            resolve(post, files)

        if matched and on_progress is not None:
            on_progress(matched)
        empty_batches = 0 if matched else empty_batches + 1

        if not pending:
            break
        if empty_batches >= max_empty_batches:
            result.hit_empty_batch_limit = True
            break
        if smallest is None or smallest >= cursor:
            break
        cursor = smallest

    if pending:
        reason = (
            f"No matches found in the last {max_empty_batches} batches for {workload.query!r}"
            if result.hit_empty_batch_limit
            else f"Cursor paging could not resolve all ids for {workload.query!r}"
        )
        logger.info(f"{reason} after {batches} batches, falling back to {len(pending)} direct lookups")

        def settle(post_id: int, post: Optional[Post], error: Optional[BaseException]) -> None:
            files = pending.pop(post_id)
            if post is not None:
                resolve(post, files)
            else:
                if error is not None:
                    logger.warning(f"Lookup of {post_id} failed: {error}")
                result.missing_ids.append(post_id)
            if on_progress is not None:
                on_progress(1)

        await limiter.map(lambda post_id: fetch_post_by_id(provider, post_id), sorted(pending), on_done=settle)

    result.missing_ids.sort()
    result.summary = QuerySummary(
        query=workload.query,
        total_ids=total,
        resolved_ids=len(result.records),
        missing_ids=len(result.missing_ids),
    )
    return result
