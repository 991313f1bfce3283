"""
Cursor-paged bulk download.

Each cycle asks the provider for ``<query> id:<cursor>`` (the bare query on
the first cycle), hands every post to the download worker through the rate
limiter, then moves the cursor to the smallest id of the batch. Batches are
strictly sequential because the next cursor depends on the previous batch.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Set, Union
from urllib.parse import urlsplit

import requests

from booru_utils.errors import PaginationExhausted
from booru_utils.posts import Post
from booru_utils.ratelimiter import RateLimiter
from booru_utils.resume import ResumeState, load_resume_state, utc_now_iso, write_resume_state

logger = logging.getLogger(__name__)

MAX_REQ_PER_SECOND = 10
MAX_CONCURRENT_DOWNLOADS = 4
CHUNK = 1 << 15  # 32 KiB
DOWNLOAD_TIMEOUT = 30


def sanitize_for_path(text: str) -> str:
    return re.sub(r'[\\/:*?"<>|]', "_", text)


def query_folder_name(query: str) -> str:
    """Folder for a query: tags joined by ``+``, path-hostile characters replaced."""
    return sanitize_for_path("+".join(query.split()))


def folder_query(folder: str) -> str:
    """Search query for a folder written by :func:`query_folder_name`."""
    return " ".join(tag for tag in folder.split("+") if tag)


def with_cursor(query: str, cursor: Optional[int]) -> str:
    if cursor is None:
        return query
    return f"{query} id:<{cursor}".strip()


def file_extension(url: str) -> str:
    name = urlsplit(url).path.rsplit("/", 1)[-1]
    if "." not in name:
        return "jpg"
    return name.rsplit(".", 1)[-1] or "jpg"


# ---------------------------------------------------------------------------
# Per-post download
# ---------------------------------------------------------------------------


@dataclass
class DownloadOutcome:
    numeric_id: Optional[int]
    status: str  # "downloaded" | "skipped" | "error"
    rating: str = "unknown"
    error: Optional[str] = None
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def downloaded(self) -> bool:
        return self.status == "downloaded"


def _fetch_to_file(url: str, target: Path, session: Optional[requests.Session], timeout: int) -> None:
    part = target.with_name(target.name + ".part")
    try:
        with (session or requests).get(url, stream=True, timeout=timeout) as r:  # type: ignore[attr-defined]
            r.raise_for_status()
            with open(part, "wb") as fp:
                for chunk in r.iter_content(CHUNK):
                    if chunk:
                        fp.write(chunk)
        os.replace(part, target)
    finally:
        if part.exists():
            part.unlink()


async def download_post(
    post: Post,
    root_dir: Union[str, Path],
    *,
    session: Optional[requests.Session] = None,
    timeout: int = DOWNLOAD_TIMEOUT,
) -> DownloadOutcome:
    """Save *post* to ``<root>/<rating>/<id>.<ext>`` unless it is already there."""
    rating = post.rating or "unknown"
    if post.id is None:
        return DownloadOutcome(None, "error", rating, "invalid id")
    if not post.file_url:
        return DownloadOutcome(post.id, "error", rating, "missing file_url")

    folder = Path(root_dir) / sanitize_for_path(rating)
    target = folder / f"{post.id}.{file_extension(post.file_url)}"
    folder.mkdir(parents=True, exist_ok=True)
    if target.exists():
        return DownloadOutcome(post.id, "skipped", rating)

    try:
        await asyncio.to_thread(_fetch_to_file, post.file_url, target, session, timeout)
    except (requests.RequestException, OSError) as exc:
        logger.warning(f"Download of {post.id} failed: {exc}")
        return DownloadOutcome(post.id, "error", rating, str(exc))
    return DownloadOutcome(post.id, "downloaded", rating)


# ---------------------------------------------------------------------------
# Cursor crawl
# ---------------------------------------------------------------------------


class CrawlPhase(Enum):
    FETCHING = "fetching"
    PROCESSING = "processing"
    DONE = "done"


@dataclass
class CrawlSummary:
    query: str
    downloaded: int
    skipped: int
    errors: int
    batches: int
    last_seen_id: Optional[int]
    gap_fill: bool
    resumed_from: Optional[int]


Worker = Callable[[Post], Awaitable[DownloadOutcome]]


class CursorCrawler:
    def __init__(
        self,
        provider: Any,
        query: str,
        resume_path: Union[str, Path],
        worker: Worker,
        *,
        limiter: Optional[RateLimiter] = None,
        search_options: Optional[Mapping[str, Any]] = None,
        on_outcome: Optional[Callable[["CursorCrawler", DownloadOutcome], None]] = None,
    ) -> None:
        self.provider = provider
        self.query = query
        self.resume_path = Path(resume_path)
        self.worker = worker
        self.limiter = limiter or RateLimiter(MAX_REQ_PER_SECOND, MAX_CONCURRENT_DOWNLOADS)
        self.search_options = dict(search_options or {})
        self.on_outcome = on_outcome

        self.phase = CrawlPhase.FETCHING
        self.last_seen_id: Optional[int] = None
        self.total_images = 0
        self.skipped_images = 0
        self.errors = 0
        self.batches = 0
        self.completed = False
        self.gap_fill = False
        self.resumed_from: Optional[int] = None
        self.previous_state: Optional[ResumeState] = None
        self._seen_ids: Set[int] = set()

    # ------------------------------------------------------------ ledger --

    def restore(self) -> Optional[ResumeState]:
        """Pick up where the last run for this exact query stopped.

        A finished crawl is re-entered as a gap-fill pass: cursor unbounded,
        counters from zero, so uploads newer than the old run are found.
        """
        state = load_resume_state(self.resume_path, self.query)
        self.previous_state = state
        if state is None:
            return None
        if state.completed:
            self.gap_fill = True
            self.last_seen_id = None
            self.total_images = 0
            self.skipped_images = 0
        else:
            self.last_seen_id = state.last_seen_id
            self.resumed_from = state.last_seen_id
            self.total_images = state.total_images
            self.skipped_images = state.skipped_images
        return state

    def snapshot(self) -> ResumeState:
        return ResumeState(
            query=self.query,
            last_seen_id=self.last_seen_id,
            total_images=self.total_images,
            skipped_images=self.skipped_images,
            completed=self.completed,
        )

    def persist(self) -> None:
        write_resume_state(self.resume_path, self.snapshot())

    # ----------------------------------------------------------- crawling --

    async def fetch_page(self) -> List[Post]:
        options = {**self.search_options}
        try:
            result = await self.provider.search(with_cursor(self.query, self.last_seen_id), options)
        except PaginationExhausted:
            logger.info(f"Pagination exhausted for {self.query!r} at cursor {self.last_seen_id}")
            return []
        return list(result.results or [])

    def _record_outcome(self, post: Post, outcome: Optional[DownloadOutcome], error: Optional[BaseException]) -> None:
        if outcome is None:
            outcome = DownloadOutcome(post.id, "error", post.rating or "unknown", str(error) or type(error).__name__)
        if outcome.downloaded:
            self.total_images += 1
        else:
            self.skipped_images += 1
            if outcome.status == "error":
                self.errors += 1
                logger.warning(f"Skipped {outcome.numeric_id} ({outcome.error})")
        self.persist()
        if self.on_outcome is not None:
            self.on_outcome(self, outcome)

    def _advance_cursor(self, posts: List[Post]) -> bool:
        ids = [post.id for post in posts if post.id is not None]
        if not ids:
            return False
        smallest = min(ids)
        if self.last_seen_id is not None and smallest >= self.last_seen_id:
            logger.warning(f"Cursor for {self.query!r} did not move below {self.last_seen_id}, stopping")
            return False
        self.last_seen_id = smallest
        return True

    async def run(self) -> CrawlSummary:
        self.completed = False
        self.persist()
        self.phase = CrawlPhase.FETCHING
        while self.phase is not CrawlPhase.DONE:
            posts = await self.fetch_page()
            if not posts:
                logger.info(f"No more posts for {self.query!r} below {self.last_seen_id}")
                self.phase = CrawlPhase.DONE
                break

            self.phase = CrawlPhase.PROCESSING
            self.batches += 1
            fresh = [post for post in posts if post.id is None or post.id not in self._seen_ids]
            self._seen_ids.update(post.id for post in fresh if post.id is not None)
            await self.limiter.map(self.worker, fresh, on_done=self._record_outcome)

            advanced = self._advance_cursor(posts)
            self.persist()
            self.phase = CrawlPhase.FETCHING if advanced else CrawlPhase.DONE

        self.completed = True
        self.persist()
        return CrawlSummary(
            query=self.query,
            downloaded=self.total_images,
            skipped=self.skipped_images,
            errors=self.errors,
            batches=self.batches,
            last_seen_id=self.last_seen_id,
            gap_fill=self.gap_fill,
            resumed_from=self.resumed_from,
        )
