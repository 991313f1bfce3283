from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union


SUPPORTED_EXTENSIONS = {
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".webm",
    ".mp4",
    ".bmp",
    ".webp",
    ".avif",
    ".zip",
    ".rar",
}


@dataclass
class ImageFile:
    id: int
    absolute_path: str
    relative_path: str  # posix separators, relative to the scan root
    filename: str
    extension: str
    query_folder: Optional[str]
    rating_folder: Optional[str]

    def to_json(self) -> Dict[str, Optional[str]]:
        return {
            "relativePath": self.relative_path,
            "filename": self.filename,
            "extension": self.extension,
            "queryFolder": self.query_folder,
            "ratingFolder": self.rating_folder,
        }


def parse_id_from_filename(name: str) -> Optional[int]:
    stem = name.rsplit(".", 1)[0] if "." in name else name
    stem = stem.strip()
    return int(stem) if stem.isdigit() else None


def collect_grouped_images(root_dir: Union[str, Path]) -> Dict[int, List[ImageFile]]:
    """Walk *root_dir* and group every supported media file by the post id in its name.

    Layout is ``<query>/<rating>/<id>.<ext>``; the rating folder is the parent
    directory and the query folder the grandparent, when the path is deep enough.
    """
    root = Path(root_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Directory not found: {root}")

    by_id: Dict[int, List[ImageFile]] = {}
    for current, dirs, files in os.walk(root):
        dirs.sort()
        for filename in sorted(files):
            extension = os.path.splitext(filename)[1].lower()
            if extension not in SUPPORTED_EXTENSIONS:
                continue
            post_id = parse_id_from_filename(filename)
            if post_id is None:
                continue

            full_path = Path(current) / filename
            relative = full_path.relative_to(root).as_posix()
            segments = relative.split("/")
            by_id.setdefault(post_id, []).append(
                ImageFile(
                    id=post_id,
                    absolute_path=str(full_path),
                    relative_path=relative,
                    filename=filename,
                    extension=extension,
                    query_folder=segments[-3] if len(segments) >= 3 else None,
                    rating_folder=segments[-2] if len(segments) >= 2 else None,
                )
            )
    return by_id


def group_images_by_query(groups: Dict[int, List[ImageFile]]) -> Dict[str, Dict[int, List[ImageFile]]]:
    """Bucket id groups by the query folder of their first file ("" when outside one)."""
    buckets: Dict[str, Dict[int, List[ImageFile]]] = {}
    for post_id, files in groups.items():
        query = files[0].query_folder or ""
        buckets.setdefault(query, {})[post_id] = files
    return buckets
