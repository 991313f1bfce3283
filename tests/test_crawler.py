import json
from unittest.mock import MagicMock

import pytest
import requests

from booru_utils.crawler import (
    CursorCrawler,
    DownloadOutcome,
    download_post,
    file_extension,
    folder_query,
    query_folder_name,
    with_cursor,
)
from booru_utils.errors import PaginationExhausted
from booru_utils.ratelimiter import RateLimiter
from booru_utils.resume import ResumeState, load_resume_state, write_resume_state


async def record_worker(post):
    return DownloadOutcome(post.id, "downloaded", post.rating)


def make_crawler(provider, tmp_path, query="foo", worker=record_worker, limit=100):
    return CursorCrawler(
        provider,
        query,
        tmp_path / "resume.json",
        worker,
        limiter=RateLimiter(max_concurrent=4),
        search_options={"limit": limit},
    )


def test_query_helpers():
    assert with_cursor("foo bar", None) == "foo bar"
    assert with_cursor("foo bar", 500) == "foo bar id:<500"
    assert query_folder_name("yakumo_ran  fox_ears") == "yakumo_ran+fox_ears"
    assert query_folder_name('a/b:c*"d"') == "a_b_c__d_"
    assert folder_query("yakumo_ran+fox_ears") == "yakumo_ran fox_ears"
    assert folder_query(query_folder_name("touhou  solo")) == "touhou solo"
    assert file_extension("https://img.example.com/images/ab/cd/abcd.png?12345") == "png"
    assert file_extension("https://img.example.com/download") == "jpg"


@pytest.mark.asyncio
async def test_full_crawl_pages_down_and_completes(tmp_path, fake_provider_cls, post_factory):
    provider = fake_provider_cls([post_factory(i) for i in range(1, 251)])
    crawler = make_crawler(provider, tmp_path)
    assert crawler.restore() is None

    summary = await crawler.run()

    assert provider.cursors() == [None, 151, 51, 1]
    assert provider.calls[1]["query"] == "foo id:<151"
    assert summary.downloaded == 250
    assert summary.batches == 3
    state = load_resume_state(tmp_path / "resume.json", "foo")
    assert state.completed is True
    assert state.last_seen_id == 1
    assert state.total_images == 250


@pytest.mark.asyncio
async def test_cursor_never_increases(tmp_path, fake_provider_cls, post_factory):
    ids = [3, 17, 18, 40, 41, 42, 99, 100, 250, 251, 999]
    provider = fake_provider_cls([post_factory(i) for i in ids])
    await make_crawler(provider, tmp_path, limit=3).run()

    cursors = provider.cursors()
    assert cursors[0] is None
    previous_batch_min = None
    for cursor in cursors:
        if previous_batch_min is not None:
            assert cursor <= previous_batch_min
        batch = [i for i in sorted(ids, reverse=True) if cursor is None or i < cursor][:3]
        previous_batch_min = min(batch) if batch else None


@pytest.mark.asyncio
async def test_resumes_from_saved_cursor(tmp_path, fake_provider_cls, post_factory):
    write_resume_state(tmp_path / "resume.json", ResumeState(query="foo", last_seen_id=500, total_images=7, skipped_images=2))
    provider = fake_provider_cls([post_factory(i) for i in range(400, 600)])
    crawler = make_crawler(provider, tmp_path)
    crawler.restore()

    assert crawler.resumed_from == 500
    summary = await crawler.run()

    assert provider.calls[0]["query"] == "foo id:<500"
    assert summary.downloaded == 7 + 100
    assert summary.skipped == 2


@pytest.mark.asyncio
async def test_completed_ledger_starts_gap_fill(tmp_path, fake_provider_cls, post_factory):
    write_resume_state(tmp_path / "resume.json", ResumeState(query="foo", last_seen_id=3, total_images=10, completed=True))
    provider = fake_provider_cls([post_factory(i) for i in range(1, 6)])
    crawler = make_crawler(provider, tmp_path)
    crawler.restore()

    assert crawler.gap_fill is True
    assert crawler.last_seen_id is None
    assert (crawler.total_images, crawler.skipped_images) == (0, 0)

    summary = await crawler.run()
    assert provider.calls[0]["query"] == "foo"
    assert summary.downloaded == 5


@pytest.mark.asyncio
async def test_ledger_for_other_query_is_ignored(tmp_path, fake_provider_cls, post_factory):
    write_resume_state(tmp_path / "resume.json", ResumeState(query="bar", last_seen_id=3))
    provider = fake_provider_cls([post_factory(i) for i in range(1, 6)])
    crawler = make_crawler(provider, tmp_path)
    assert crawler.restore() is None
    await crawler.run()
    assert provider.calls[0]["query"] == "foo"


@pytest.mark.asyncio
async def test_stops_when_cursor_cannot_advance(tmp_path, fake_provider_cls, post_factory):
    class StuckProvider(fake_provider_cls):
        async def search(self, query, options=None):
            self.calls.append({"query": query, "options": options})
            result = await super().search("foo", options)
            self.calls.pop()
            return result

    provider = StuckProvider([post_factory(i) for i in (5, 4, 3)])
    worker = MagicMock(side_effect=record_worker)
    crawler = make_crawler(provider, tmp_path)
    crawler.worker = worker
    summary = await crawler.run()

    assert len(provider.calls) == 2
    assert worker.call_count == 3  # repeated ids are not downloaded twice
    assert summary.last_seen_id == 3
    assert load_resume_state(tmp_path / "resume.json", "foo").completed is True


@pytest.mark.asyncio
async def test_pagination_exhausted_ends_crawl(tmp_path, fake_provider_cls, post_factory):
    provider = fake_provider_cls(
        [post_factory(i) for i in range(1, 151)],
        errors={"foo id:<51": PaginationExhausted("410 Gone!", status=410)},
    )
    summary = await make_crawler(provider, tmp_path).run()
    assert summary.downloaded == 100
    assert load_resume_state(tmp_path / "resume.json", "foo").completed is True


@pytest.mark.asyncio
async def test_failed_items_are_counted_not_raised(tmp_path, fake_provider_cls, post_factory):
    async def flaky_worker(post):
        if post.id == 3:
            raise OSError("disk full")
        if post.id == 2:
            return DownloadOutcome(post.id, "skipped", post.rating)
        return DownloadOutcome(post.id, "downloaded", post.rating)

    seen = []
    provider = fake_provider_cls([post_factory(i) for i in range(1, 6)])
    crawler = make_crawler(provider, tmp_path, worker=flaky_worker)
    crawler.on_outcome = lambda c, outcome: seen.append(outcome)
    summary = await crawler.run()

    assert (summary.downloaded, summary.skipped, summary.errors) == (3, 2, 1)
    assert {o.numeric_id for o in seen if o.status == "error"} == {3}
    assert "disk full" in next(o.error for o in seen if o.status == "error")


@pytest.mark.asyncio
async def test_ledger_is_saved_after_each_outcome(tmp_path, fake_provider_cls, post_factory):
    snapshots = []

    async def worker(post):
        return DownloadOutcome(post.id, "downloaded", post.rating)

    provider = fake_provider_cls([post_factory(i) for i in range(1, 4)])
    crawler = make_crawler(provider, tmp_path, worker=worker)
    crawler.on_outcome = lambda c, o: snapshots.append(json.loads((tmp_path / "resume.json").read_text())["totalImages"])
    await crawler.run()
    assert snapshots == [1, 2, 3]


# ---------------------------------------------------------------------------
# download_post
# ---------------------------------------------------------------------------


def streaming_session(payload=b"imagebytes", error=None):
    response = MagicMock()
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.iter_content.return_value = [payload[:4], payload[4:]]
    if error is not None:
        response.raise_for_status.side_effect = error
    session = MagicMock()
    session.get.return_value = response
    return session


@pytest.mark.asyncio
async def test_download_writes_into_rating_folder(tmp_path, post_factory):
    post = post_factory(42, rating="sensitive", file_url="https://img.example.com/images/42.png?x=1")
    session = streaming_session()
    outcome = await download_post(post, tmp_path, session=session)

    assert outcome.status == "downloaded"
    assert outcome.downloaded
    assert (tmp_path / "sensitive" / "42.png").read_bytes() == b"imagebytes"
    assert not (tmp_path / "sensitive" / "42.png.part").exists()
    assert session.get.call_args.kwargs["stream"] is True


@pytest.mark.asyncio
async def test_download_skips_existing_file(tmp_path, post_factory):
    (tmp_path / "general").mkdir()
    (tmp_path / "general" / "7.jpg").write_bytes(b"old")
    session = streaming_session()
    outcome = await download_post(post_factory(7), tmp_path, session=session)
    assert outcome.status == "skipped"
    session.get.assert_not_called()


@pytest.mark.asyncio
async def test_download_errors_become_outcomes(tmp_path, post_factory):
    failed = await download_post(post_factory(8), tmp_path, session=streaming_session(error=requests.HTTPError("404")))
    assert failed.status == "error"
    assert not (tmp_path / "general" / "8.jpg").exists()
    assert not (tmp_path / "general" / "8.jpg.part").exists()

    no_url = post_factory(9)
    no_url.file_url = None
    assert (await download_post(no_url, tmp_path)).error == "missing file_url"

    no_id = post_factory("abc")
    assert (await download_post(no_id, tmp_path)).error == "invalid id"
