import pytest

from booru_utils.local_files import ImageFile, collect_grouped_images, group_images_by_query, parse_id_from_filename
from booru_utils.metadata import append_rating_tag, build_record, normalize_created_at, split_tags
from booru_utils.posts import RatingBucket


def test_split_tags_dedupes_in_order():
    assert split_tags("  b a\tb  c ") == ["b", "a", "c"]
    assert split_tags(None) == []


def test_append_rating_tag_once():
    assert append_rating_tag(["a"], "sensitive") == ["a", "rating:sensitive"]
    assert append_rating_tag(["Rating:Sensitive"], "sensitive") == ["Rating:Sensitive"]
    assert append_rating_tag([], "") == ["rating:unknown"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0, "1970-01-01T00:00:00.000Z"),
        (1700000000, "2023-11-14T22:13:20.000Z"),
        ("1700000000", "2023-11-14T22:13:20.000Z"),
        ("Sat Oct 14 03:21:55 -0500 2023", "2023-10-14T08:21:55.000Z"),
        ("2023-10-14T08:21:55Z", "2023-10-14T08:21:55.000Z"),
        ("2023-10-14T10:21:55.123+02:00", "2023-10-14T08:21:55.123Z"),
        ("", None),
        ("someday", None),
        (None, None),
    ],
)
def test_normalize_created_at(raw, expected):
    assert normalize_created_at(raw) == expected


def image(post_id, rating="questionable", query="ran"):
    return ImageFile(post_id, f"/r/{query}/{rating}/{post_id}.png", f"{query}/{rating}/{post_id}.png", f"{post_id}.png", ".png", query, rating)


def test_build_record(post_factory):
    post = post_factory(5, rating="questionable", tags="b a b", created_at="1700000000", hash="abc", parent_id="4", change="99")
    record = build_record(post, [image(5), image(5, rating="general")])

    assert record.rating == "questionable"
    assert record.rating_bucket is RatingBucket.SENSITIVE
    assert record.tags == ["b", "a", "rating:sensitive"]
    assert record.created_at == "2023-11-14T22:13:20.000Z"
    doc = record.to_json()
    assert doc["md5"] == "abc"
    assert doc["provider"] == {"change": 99, "parentId": 4, "creatorId": None}
    assert [f["relativePath"] for f in doc["localFiles"]] == ["ran/questionable/5.png", "ran/general/5.png"]
    assert "source" not in doc  # unset fields are left out


def test_build_record_falls_back_to_rating_folder(post_factory):
    post = post_factory(6, rating="")
    record = build_record(post, [image(6, rating="explicit")])
    assert record.rating == "explicit"
    assert "rating:explicit" in record.tags


def test_build_record_requires_matching_files(post_factory):
    with pytest.raises(ValueError):
        build_record(post_factory(5), [])
    with pytest.raises(ValueError):
        build_record(post_factory(5), [image(6)])


def test_parse_id_from_filename():
    assert parse_id_from_filename("123.jpg") == 123
    assert parse_id_from_filename("123") == 123
    assert parse_id_from_filename("cover.jpg") is None
    assert parse_id_from_filename("12a.jpg") is None


def test_collect_and_group(tmp_path):
    for rel in ("ran/general/1.jpg", "ran/explicit/1.PNG", "ran/general/cover.jpg", "ran/general/2.txt", "chen/sensitive/2.webm", "3.jpg"):
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x")

    grouped = collect_grouped_images(tmp_path)
    assert sorted(grouped) == [1, 2, 3]
    assert sorted(f.relative_path for f in grouped[1]) == ["ran/explicit/1.PNG", "ran/general/1.jpg"]
    assert {f.extension for f in grouped[1]} == {".jpg", ".png"}
    assert grouped[2][0].query_folder == "chen"
    assert grouped[2][0].rating_folder == "sensitive"
    assert grouped[3][0].query_folder is None
    assert grouped[3][0].rating_folder is None

    by_query = group_images_by_query(grouped)
    assert sorted(by_query) == ["", "chen", "ran"]
    assert list(by_query[""]) == [3]


def test_collect_rejects_missing_root(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect_grouped_images(tmp_path / "missing")
