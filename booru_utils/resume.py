"""
Per-query crawl checkpoint.

The ledger is a small JSON document rewritten in full after every processed
post, so a crash leaves it describing the last item that finished. A ledger
is only trusted when its stored query matches the current one exactly;
anything unreadable is treated as absent and the crawl starts over.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

RESUME_STATE_VERSION = 2
RESUME_FILE_NAME = "resume.json"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ResumeState:
    query: str
    last_seen_id: Optional[int] = None
    total_images: int = 0
    skipped_images: int = 0
    updated_at: str = field(default_factory=utc_now_iso)
    completed: bool = False
    version: int = RESUME_STATE_VERSION

    def to_json(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "query": self.query,
            "lastSeenId": self.last_seen_id,
            "totalImages": self.total_images,
            "skippedImages": self.skipped_images,
            "updatedAt": self.updated_at,
            "completed": self.completed,
        }


def _int_field(data: Dict[str, Any], key: str, *, nullable: bool = False) -> Optional[int]:
    value = data.get(key)
    if value is None and nullable:
        return None
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
    return value


def parse_resume_state(data: Any, query: str) -> ResumeState:
    """Validate a decoded ledger document. Raises ValueError when unusable."""
    if not isinstance(data, dict):
        raise ValueError("resume state is not an object")
    if data.get("query") != query:
        raise ValueError("resume state belongs to another query")

    # version 1 files predate the explicit version field; they share the layout
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or not 1 <= version <= RESUME_STATE_VERSION:
        raise ValueError(f"unsupported resume state version {version!r}")

    updated_at = data.get("updatedAt")
    completed = data.get("completed", False)
    if not isinstance(completed, bool):
        raise ValueError("completed must be a boolean")
    return ResumeState(
        query=query,
        last_seen_id=_int_field(data, "lastSeenId", nullable=True),
        total_images=_int_field(data, "totalImages"),
        skipped_images=_int_field(data, "skippedImages"),
        updated_at=updated_at if isinstance(updated_at, str) else utc_now_iso(),
        completed=completed,
        version=RESUME_STATE_VERSION,
    )


def load_resume_state(file_path: Union[str, Path], query: str) -> Optional[ResumeState]:
    """Return the stored state for *query*, or None for a clean slate."""
    path = Path(file_path)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return parse_resume_state(data, query)
    except (OSError, ValueError) as exc:
        logger.info(f"Ignoring resume state at {path}: {exc}")
        return None


def write_resume_state(file_path: Union[str, Path], state: ResumeState) -> None:
    """Overwrite the ledger with *state* (write to a temp file, then rename)."""
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(state.to_json(), f, indent=2)
    os.replace(tmp_path, path)
