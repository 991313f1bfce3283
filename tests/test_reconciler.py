import pytest

from booru_utils.errors import NotFound
from booru_utils.local_files import ImageFile
from booru_utils.ratelimiter import RateLimiter
from booru_utils.reconciler import QueryWorkload, pending_groups, reconcile_workload
from providers.base import BooruResult


def local_file(post_id, query="ran", rating="general", ext=".jpg"):
    return ImageFile(
        id=post_id,
        absolute_path=f"/data/{query}/{rating}/{post_id}{ext}",
        relative_path=f"{query}/{rating}/{post_id}{ext}",
        filename=f"{post_id}{ext}",
        extension=ext,
        query_folder=query,
        rating_folder=rating,
    )


def workload(ids, query="ran"):
    return QueryWorkload(query, {i: [local_file(i, query)] for i in ids})


@pytest.mark.asyncio
async def test_deleted_posts_are_reported_missing(fake_provider_cls, post_factory):
    deleted = {99, 10, 50}
    provider = fake_provider_cls([post_factory(i) for i in range(1, 101) if i not in deleted])
    resolved = []

    result = await reconcile_workload(provider, workload(range(1, 101)), RateLimiter(max_concurrent=4), on_record=resolved.append)

    assert len(result.records) == 97
    assert result.missing_ids == [10, 50, 99]
    assert result.summary.to_json() == {"query": "ran", "totalIds": 100, "resolvedIds": 97, "missingIds": 3}
    assert len(resolved) == 97
    assert provider.calls[0]["query"] == "ran id:<101"
    # the three stragglers were each looked up directly
    assert sorted(c["query"] for c in provider.calls if c["query"].startswith("id:")) == ["id:10", "id:50", "id:99"]


@pytest.mark.asyncio
async def test_every_id_resolved_by_paging(fake_provider_cls, post_factory):
    provider = fake_provider_cls([post_factory(i) for i in range(1, 301)])
    progress = []
    result = await reconcile_workload(
        provider, workload([5, 150, 299]), RateLimiter(), batch_limit=100, on_progress=progress.append
    )
    assert sorted(r.id for r in result.records) == [5, 150, 299]
    assert result.missing_ids == []
    assert sum(progress) == 3
    assert not any(c["query"].startswith("id:") for c in provider.calls)


@pytest.mark.asyncio
async def test_dead_end_guard_falls_back_to_lookups(fake_provider_cls, post_factory):
    # paging only ever sees unrelated posts; the wanted ones are reachable by id alone
    noise = iter([[4001, 4000], [1000, 999], [500, 499], [300, 299]])

    class SparseProvider(fake_provider_cls):
        async def search(self, query, options=None):
            if query.startswith("id:"):
                return await super().search(query, options)
            self.calls.append({"query": query, "options": options})
            page = [post_factory(i) for i in next(noise)]
            return BooruResult(page, len(page))

    provider = SparseProvider([post_factory(5000), post_factory(7000)])
    result = await reconcile_workload(provider, workload([5000, 7000]), RateLimiter(), max_empty_batches=3)

    assert result.hit_empty_batch_limit
    assert len([c for c in provider.calls if "id:<" in c["query"]]) == 3
    assert sorted(r.id for r in result.records) == [5000, 7000]


@pytest.mark.asyncio
async def test_lookup_errors_are_missing_not_fatal(fake_provider_cls, post_factory):
    provider = fake_provider_cls([], errors={"id:7": NotFound("404 Not Found!", status=404)})
    result = await reconcile_workload(provider, workload([7, 8]), RateLimiter())
    assert result.records == []
    assert result.missing_ids == [7, 8]


def test_pending_groups_normalizes_ids():
    groups = {"12": [local_file(12)], 13: [local_file(13)], "abc": [local_file(14)], 2.5: [local_file(15)]}
    assert sorted(pending_groups(groups)) == [12, 13]


@pytest.mark.asyncio
async def test_empty_workload(fake_provider_cls):
    provider = fake_provider_cls([])
    result = await reconcile_workload(provider, QueryWorkload("ran", {}), RateLimiter())
    assert provider.calls == []
    assert result.summary.total_ids == 0
