from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union


class RatingBucket(str, Enum):
    GENERAL = "general"
    SENSITIVE = "sensitive"
    EXPLICIT = "explicit"
    UNKNOWN = "unknown"


# Each family spells ratings differently; "s" is sensitive on Danbooru but safe on Moebooru.
DANBOORU_RATINGS: Dict[str, RatingBucket] = {
    "g": RatingBucket.GENERAL,
    "general": RatingBucket.GENERAL,
    "s": RatingBucket.SENSITIVE,
    "sensitive": RatingBucket.SENSITIVE,
    "q": RatingBucket.SENSITIVE,
    "questionable": RatingBucket.SENSITIVE,
    "e": RatingBucket.EXPLICIT,
    "explicit": RatingBucket.EXPLICIT,
}

GELBOORU_RATINGS: Dict[str, RatingBucket] = {
    "general": RatingBucket.GENERAL,
    "safe": RatingBucket.GENERAL,
    "g": RatingBucket.GENERAL,
    "s": RatingBucket.GENERAL,
    "sensitive": RatingBucket.SENSITIVE,
    "questionable": RatingBucket.SENSITIVE,
    "q": RatingBucket.SENSITIVE,
    "explicit": RatingBucket.EXPLICIT,
    "e": RatingBucket.EXPLICIT,
}

MOEBOORU_RATINGS: Dict[str, RatingBucket] = {
    "s": RatingBucket.GENERAL,
    "safe": RatingBucket.GENERAL,
    "q": RatingBucket.SENSITIVE,
    "questionable": RatingBucket.SENSITIVE,
    "e": RatingBucket.EXPLICIT,
    "explicit": RatingBucket.EXPLICIT,
}


def rating_bucket(label: Optional[str], aliases: Mapping[str, RatingBucket] = GELBOORU_RATINGS) -> RatingBucket:
    if not label:
        return RatingBucket.UNKNOWN
    return aliases.get(str(label).strip().lower(), RatingBucket.UNKNOWN)


def ensure_numeric_id(value: Any) -> Optional[int]:
    """Coerce an id coming from JSON or XML to an int, or None if it isn't one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return None
        return int(parsed) if math.isfinite(parsed) and parsed.is_integer() else None
    return None


def to_bool(value: Any) -> Optional[bool]:
    """Normalize "true"/"false", 0/1 and real booleans."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no", ""):
        return False
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


# canonical field -> keys to try, in order
FieldMap = Mapping[str, Sequence[str]]

DEFAULT_FIELDS: Dict[str, Sequence[str]] = {
    "tags": ("tags",),
    "source": ("source",),
    "file_url": ("file_url",),
    "sample_url": ("sample_url",),
    "preview_url": ("preview_url",),
    "width": ("width",),
    "height": ("height",),
    "score": ("score",),
    "owner": ("owner", "author"),
    "created_at": ("created_at",),
    "md5": ("md5", "hash"),
    "parent_id": ("parent_id",),
    "change": ("change",),
    "creator_id": ("creator_id",),
    "has_children": ("has_children",),
    "has_comments": ("has_comments",),
    "has_notes": ("has_notes",),
    "sample": ("sample",),
    "status": ("status",),
    "directory": ("directory",),
}


def _pick(record: Mapping[str, Any], fields: FieldMap, name: str) -> Any:
    for key in fields.get(name, ()):
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


@dataclass
class Post:
    """A remote media item, with one shape across providers and API versions."""

    id: Optional[int]
    rating: str
    rating_bucket: RatingBucket
    tags: str
    file_url: Optional[str] = None
    source: str = ""
    sample_url: Optional[str] = None
    preview_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    score: Optional[int] = None
    owner: Optional[str] = None
    created_at: Optional[Union[str, int]] = None
    md5: Optional[str] = None
    parent_id: Optional[int] = None
    change: Optional[int] = None
    creator_id: Optional[int] = None
    has_children: Optional[bool] = None
    has_comments: Optional[bool] = None
    has_notes: Optional[bool] = None
    sample: Optional[bool] = None
    status: Optional[str] = None
    directory: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_record(
        cls,
        record: Mapping[str, Any],
        *,
        ratings: Mapping[str, RatingBucket] = GELBOORU_RATINGS,
        fields: FieldMap = DEFAULT_FIELDS,
    ) -> "Post":
        rating = _text(record.get("rating")) or "unknown"
        created_at = _pick(record, fields, "created_at")
        if isinstance(created_at, str) and created_at.strip().isdigit():
            created_at = int(created_at.strip())
        tags = _pick(record, fields, "tags") or ""
        return cls(
            id=ensure_numeric_id(record.get("id")),
            rating=rating,
            rating_bucket=rating_bucket(rating, ratings),
            tags=" ".join(str(tags).split()),
            file_url=_text(_pick(record, fields, "file_url")),
            source=_text(_pick(record, fields, "source")) or "",
            sample_url=_text(_pick(record, fields, "sample_url")),
            preview_url=_text(_pick(record, fields, "preview_url")),
            width=ensure_numeric_id(_pick(record, fields, "width")),
            height=ensure_numeric_id(_pick(record, fields, "height")),
            score=ensure_numeric_id(_pick(record, fields, "score")),
            owner=_text(_pick(record, fields, "owner")),
            created_at=created_at,
            md5=_text(_pick(record, fields, "md5")),
            parent_id=ensure_numeric_id(_pick(record, fields, "parent_id")),
            change=ensure_numeric_id(_pick(record, fields, "change")),
            creator_id=ensure_numeric_id(_pick(record, fields, "creator_id")),
            has_children=to_bool(_pick(record, fields, "has_children")),
            has_comments=to_bool(_pick(record, fields, "has_comments")),
            has_notes=to_bool(_pick(record, fields, "has_notes")),
            sample=to_bool(_pick(record, fields, "sample")),
            status=_text(_pick(record, fields, "status")),
            directory=_text(_pick(record, fields, "directory")),
            raw=dict(record),
        )
