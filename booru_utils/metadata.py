"""
Reconciled metadata records: a remote post joined with the local files that
carry its id.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from booru_utils.local_files import ImageFile
from booru_utils.posts import Post, RatingBucket, rating_bucket
from booru_utils.resume import utc_now_iso

# Gelbooru 0.2 style, e.g. "Sat Oct 14 03:21:55 -0500 2023"
GELBOORU_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def split_tags(tag_string: Optional[str]) -> List[str]:
    tags: List[str] = []
    seen = set()
    for tag in (tag_string or "").split():
        if tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def append_rating_tag(tags: List[str], rating: str) -> List[str]:
    rating_tag = f"rating:{(rating or '').strip().lower() or RatingBucket.UNKNOWN.value}"
    if not any(tag.lower() == rating_tag for tag in tags):
        tags.append(rating_tag)
    return tags


def _iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_created_at(raw: Union[str, int, float, None]) -> Optional[str]:
    """Epoch seconds or a free-text date to ISO-8601 UTC. None when unparsable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if not math.isfinite(raw):
            return None
        try:
            return _iso_utc(datetime.fromtimestamp(raw, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None

    text = str(raw).strip()
    if not text:
        return None
    try:
        return normalize_created_at(float(text))
    except ValueError:
        pass
    try:
        return _iso_utc(datetime.strptime(text, GELBOORU_DATE_FORMAT))
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return _iso_utc(parsed)


@dataclass
class MetadataRecord:
    id: int
    rating: str
    rating_bucket: RatingBucket
    tags: List[str]
    local_files: List[ImageFile]
    source: Optional[str] = None
    created_at: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    score: Optional[int] = None
    owner: Optional[str] = None
    status: Optional[str] = None
    file_url: Optional[str] = None
    preview_url: Optional[str] = None
    sample_url: Optional[str] = None
    md5: Optional[str] = None
    has_children: Optional[bool] = None
    has_comments: Optional[bool] = None
    directory: Optional[str] = None
    sample: Optional[bool] = None
    change: Optional[int] = None
    parent_id: Optional[int] = None
    creator_id: Optional[int] = None
    fetched_at: str = field(default_factory=utc_now_iso)

    def to_json(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "id": self.id,
            "rating": self.rating,
            "ratingBucket": self.rating_bucket.value,
            "tags": list(self.tags),
            "source": self.source,
            "createdAt": self.created_at,
            "width": self.width,
            "height": self.height,
            "score": self.score,
            "owner": self.owner,
            "status": self.status,
            "fileUrl": self.file_url,
            "previewUrl": self.preview_url,
            "sampleUrl": self.sample_url,
            "md5": self.md5,
            "hasChildren": self.has_children,
            "hasComments": self.has_comments,
            "directory": self.directory,
            "sample": self.sample,
        }
        doc = {key: value for key, value in doc.items() if value is not None}
        doc["provider"] = {"change": self.change, "parentId": self.parent_id, "creatorId": self.creator_id}
        doc["localFiles"] = [f.to_json() for f in self.local_files]
        doc["fetchedAt"] = self.fetched_at
        return doc


def build_record(post: Post, files: Sequence[ImageFile]) -> MetadataRecord:
    """Join *post* with its local *files*. Every file must carry the post's id."""
    if post.id is None:
        raise ValueError("cannot build a metadata record for a post without an id")
    if not files:
        raise ValueError(f"post {post.id} has no local files")
    for f in files:
        if f.id != post.id:
            raise ValueError(f"local file {f.relative_path} does not belong to post {post.id}")

    rating = post.rating if post.rating and post.rating != "unknown" else (files[0].rating_folder or "unknown")
    bucket = post.rating_bucket
    if bucket is RatingBucket.UNKNOWN:
        bucket = rating_bucket(rating)
    tags = append_rating_tag(split_tags(post.tags), bucket.value)
    return MetadataRecord(
        id=post.id,
        rating=rating,
        rating_bucket=bucket,
        tags=tags,
        local_files=list(files),
        source=post.source or None,
        created_at=normalize_created_at(post.created_at),
        width=post.width,
        height=post.height,
        score=post.score,
        owner=post.owner or None,
        status=post.status or None,
        file_url=post.file_url or None,
        preview_url=post.preview_url or None,
        sample_url=post.sample_url or None,
        md5=post.md5 or None,
        has_children=post.has_children,
        has_comments=post.has_comments,
        directory=post.directory,
        sample=post.sample,
        change=post.change,
        parent_id=post.parent_id,
        creator_id=post.creator_id,
    )
