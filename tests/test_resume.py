import json

import pytest

from booru_utils.resume import (
    RESUME_STATE_VERSION,
    ResumeState,
    load_resume_state,
    parse_resume_state,
    write_resume_state,
)


def test_round_trip(tmp_path):
    path = tmp_path / "nested" / "dir" / "resume.json"
    state = ResumeState(query="yakumo_ran solo", last_seen_id=500, total_images=12, skipped_images=3)
    write_resume_state(path, state)

    assert load_resume_state(path, "yakumo_ran solo") == state
    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc["version"] == RESUME_STATE_VERSION
    assert doc["lastSeenId"] == 500
    assert set(doc) == {"version", "query", "lastSeenId", "totalImages", "skippedImages", "updatedAt", "completed"}
    assert not (tmp_path / "nested" / "dir" / "resume.json.tmp").exists()


def test_overwrite_replaces_whole_document(tmp_path):
    path = tmp_path / "resume.json"
    write_resume_state(path, ResumeState(query="foo", last_seen_id=900, total_images=1))
    write_resume_state(path, ResumeState(query="foo", last_seen_id=None, completed=True))
    state = load_resume_state(path, "foo")
    assert state.last_seen_id is None
    assert state.total_images == 0
    assert state.completed is True


def test_query_must_match_exactly(tmp_path):
    path = tmp_path / "resume.json"
    write_resume_state(path, ResumeState(query="foo"))
    assert load_resume_state(path, "foo bar") is None
    assert load_resume_state(path, "Foo") is None


def test_missing_and_corrupt_files(tmp_path):
    assert load_resume_state(tmp_path / "nope.json", "foo") is None
    path = tmp_path / "resume.json"
    path.write_text('{"query": "foo", "lastSeenId": ', encoding="utf-8")
    assert load_resume_state(path, "foo") is None


BASE = {"query": "foo", "lastSeenId": 5, "totalImages": 1, "skippedImages": 0, "completed": False}


def test_unversioned_documents_are_accepted():
    assert parse_resume_state(BASE, "foo").last_seen_id == 5


@pytest.mark.parametrize(
    "bad",
    [
        {**BASE, "version": 3},
        {**BASE, "version": "2"},
        {**BASE, "lastSeenId": -1},
        {**BASE, "totalImages": "many"},
        {**BASE, "completed": "yes"},
        [BASE],
    ],
)
def test_schema_is_validated(bad):
    with pytest.raises(ValueError):
        parse_resume_state(bad, "foo")


def test_bad_document_on_disk_is_ignored(tmp_path):
    path = tmp_path / "resume.json"
    path.write_text(json.dumps({"version": 99, "query": "foo"}), encoding="utf-8")
    assert load_resume_state(path, "foo") is None
