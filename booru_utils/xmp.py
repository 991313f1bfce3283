"""
XMP sidecars for a photo manager, one per local file.

Rendering is a pure function of (record, file): no clock reads, stable
ordering, so a rerun over unchanged metadata produces identical bytes and
the writer can leave the file alone.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from xml.sax.saxutils import escape

from booru_utils.local_files import ImageFile
from booru_utils.metadata import MetadataRecord

logger = logging.getLogger(__name__)

XMP_RATING_MAP: Dict[str, int] = {
    "general": 1,
    "safe": 1,
    "s": 1,
    "questionable": 2,
    "sensitive": 3,
    "q": 3,
    "explicit": 4,
    "e": 4,
    "unknown": 0,
}

# folder name -> rating used in the synthesized tag
RATING_ALIASES: Dict[str, str] = {
    "g": "general",
    "general": "general",
    "safe": "general",
    "s": "sensitive",
    "sensitive": "sensitive",
    "q": "questionable",
    "questionable": "questionable",
    "e": "explicit",
    "explicit": "explicit",
    "unknown": "unknown",
}

DEFAULT_NAMESPACE = ("Gelbooru", "https://gelbooru.com/ns/1.0/")

_ATTR_ENTITIES = {'"': "&quot;"}


def rating_to_numeric(rating: str) -> int:
    return XMP_RATING_MAP.get((rating or "").strip().lower(), 0)


def _esc(value: Any) -> str:
    return escape(str(value), _ATTR_ENTITIES)


def _bag(tag: str, items: List[str], indent: str) -> str:
    lines = [f"{indent}<{tag}>", f"{indent}  <rdf:Bag>"]
    lines += [f"{indent}    <rdf:li>{_esc(item)}</rdf:li>" for item in items]
    lines += [f"{indent}  </rdf:Bag>", f"{indent}</{tag}>"]
    return "\n".join(lines) + "\n"


def _alt(tag: str, text: str) -> str:
    return (
        f"      <{tag}>\n"
        f"        <rdf:Alt>\n"
        f'          <rdf:li xml:lang="x-default">{_esc(text)}</rdf:li>\n'
        f"        </rdf:Alt>\n"
        f"      </{tag}>\n"
    )


def _flag(value: Optional[bool]) -> str:
    return "true" if value is True else "false"


def render_xmp(record: MetadataRecord, file: ImageFile, namespace: Tuple[str, str] = DEFAULT_NAMESPACE) -> str:
    prefix, uri = namespace
    rating_label = record.rating or "unknown"
    rating_numeric = rating_to_numeric(rating_label) or rating_to_numeric(record.rating_bucket.value)
    source = record.source or record.file_url or ""
    sample_flag = "unknown" if record.sample is None else _flag(record.sample)

    description_parts = [
        f"Status: {record.status}" if record.status else None,
        f"Uploader: {record.owner}" if record.owner else None,
        f"Resolution: {record.width}x{record.height}" if record.width and record.height else None,
        f"Score: {record.score}" if record.score is not None else None,
    ]
    description = " | ".join(part for part in description_parts if part)

    body = _alt("dc:title", file.filename)
    if description:
        body += _alt("dc:description", description)
    if record.owner:
        body += (
            "      <dc:creator>\n"
            "        <rdf:Seq>\n"
            f"          <rdf:li>{_esc(record.owner)}</rdf:li>\n"
            "        </rdf:Seq>\n"
            "      </dc:creator>\n"
        )
    if source:
        body += f"      <photoshop:Source>{_esc(source)}</photoshop:Source>\n"
    if record.created_at:
        body += f"      <xmp:CreateDate>{_esc(record.created_at)}</xmp:CreateDate>\n"
    if record.md5:
        body += f"      <xmpMM:DerivedFrom>{_esc(record.md5)}</xmpMM:DerivedFrom>\n"
    if record.tags:
        body += _bag("Iptc4xmpCore:Keywords", record.tags, "      ")
        body += _bag("dc:subject", record.tags, "      ")

    body += f"      <{prefix}:Record>\n"
    body += f"        <{prefix}:PostId>{record.id}</{prefix}:PostId>\n"
    if record.directory is not None:
        body += f"        <{prefix}:Directory>{_esc(record.directory)}</{prefix}:Directory>\n"
    if record.parent_id is not None:
        body += f"        <{prefix}:ParentId>{record.parent_id}</{prefix}:ParentId>\n"
    if record.creator_id is not None:
        body += f"        <{prefix}:CreatorId>{record.creator_id}</{prefix}:CreatorId>\n"
    if record.change is not None:
        body += f"        <{prefix}:LastChange>{record.change}</{prefix}:LastChange>\n"
    body += _bag(f"{prefix}:Tags", record.tags, "        ")
    body += f"      </{prefix}:Record>\n"

    attributes = [
        f'xmlns:{prefix}="{_esc(uri)}"',
        f'xmp:Rating="{rating_numeric}"',
        f'xmp:Label="{_esc(rating_label)}"',
        f'{prefix}:Rating="{_esc(rating_label)}"',
        f'{prefix}:RatingBucket="{record.rating_bucket.value}"',
        f'{prefix}:Score="{record.score or 0}"',
        f'{prefix}:HasChildren="{_flag(record.has_children)}"',
        f'{prefix}:HasComments="{_flag(record.has_comments)}"',
        f'{prefix}:SampleFlag="{sample_flag}"',
        f'{prefix}:Width="{record.width or 0}"',
        f'{prefix}:Height="{record.height or 0}"',
        f'{prefix}:FileUrl="{_esc(record.file_url or "")}"',
        f'{prefix}:PreviewUrl="{_esc(record.preview_url or "")}"',
        f'{prefix}:SampleUrl="{_esc(record.sample_url or "")}"',
    ]
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<?xpacket begin="\ufeff" id="W5M0MpCehiHzreSzNTczkc9d"?>\n'
        '<x:xmpmeta xmlns:x="adobe:ns:meta/">\n'
        '  <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">\n'
        '    <rdf:Description rdf:about=""\n'
        '      xmlns:dc="http://purl.org/dc/elements/1.1/"\n'
        '      xmlns:xmp="http://ns.adobe.com/xap/1.0/"\n'
        '      xmlns:xmpMM="http://ns.adobe.com/xap/1.0/mm/"\n'
        '      xmlns:photoshop="http://ns.adobe.com/photoshop/1.0/"\n'
        '      xmlns:Iptc4xmpCore="http://iptc.org/std/Iptc4xmpCore/1.0/xmlns/"\n'
        + "".join(f"      {attr}\n" for attr in attributes)
        + "    >\n"
        + body
        + "    </rdf:Description>\n"
        "  </rdf:RDF>\n"
        "</x:xmpmeta>\n"
        '<?xpacket end="w"?>\n'
    )


def sidecar_path(file_path: Union[str, Path]) -> Path:
    """``5.png`` -> ``5.png.xmp``, so files sharing an id never share a sidecar."""
    path = Path(file_path)
    return path.with_name(path.name + ".xmp")


@dataclass
class XmpStats:
    attempted: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_json(self) -> Dict[str, int]:
        return {"attempted": self.attempted, "written": self.written, "skipped": self.skipped, "failed": self.failed}


class XmpWriter:
    """Writes a sidecar beside every local file of a record, skipping unchanged ones."""

    def __init__(self, root_dir: Union[str, Path], namespace: Tuple[str, str] = DEFAULT_NAMESPACE) -> None:
        self.root_dir = Path(root_dir)
        self.namespace = namespace
        self.stats = XmpStats()

    def process_record(self, record: MetadataRecord) -> None:
        for file in record.local_files:
            self.stats.attempted += 1
            target = sidecar_path(self.root_dir / file.relative_path)
            try:
                content = render_xmp(record, file, self.namespace)
                if target.exists() and target.read_text(encoding="utf-8") == content:
                    self.stats.skipped += 1
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                # newline="" keeps "\n" on every platform so reruns compare equal
                with open(target, "w", encoding="utf-8", newline="") as f:
                    f.write(content)
                self.stats.written += 1
            except (OSError, UnicodeDecodeError) as exc:
                self.stats.failed += 1
                self.stats.errors.append({"path": file.relative_path, "reason": str(exc)})
                logger.warning(f"Failed to write sidecar for {file.relative_path}: {exc}")

    def finalize(self) -> XmpStats:
        return self.stats


# ---------------------------------------------------------------------------
# Back-filling rating tags into existing sidecars
# ---------------------------------------------------------------------------

_BAG_RE = re.compile(r"(<rdf:Bag>)(.*?)(</rdf:Bag>)", re.DOTALL)


def normalize_rating_alias(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return RATING_ALIASES.get(raw.strip().lower())


def rating_from_path(root_dir: Union[str, Path], file_path: Union[str, Path]) -> Optional[str]:
    """Rating named by the folder directly above *file_path*, if it is one."""
    try:
        relative = Path(file_path).resolve().relative_to(Path(root_dir).resolve())
    except ValueError:
        return None
    if len(relative.parts) < 2:
        return None
    return normalize_rating_alias(relative.parts[-2])


def append_rating_to_bags(xml: str, rating_tag: str) -> Tuple[str, bool, int]:
    """Add ``<rdf:li>rating_tag</rdf:li>`` to each bag lacking it. Returns (xml, changed, bag count)."""
    changed = False
    bag_count = 0

    def patch(match: "re.Match[str]") -> str:
        nonlocal changed, bag_count
        bag_count += 1
        opening, inner, closing = match.groups()
        if f">{rating_tag}<" in inner:
            return match.group(0)

        stripped = inner.rstrip()
        trailing = inner[len(stripped):]
        closing_indent = re.search(r"\n([ \t]*)$", trailing)
        item_indent = re.search(r"\n([ \t]*)<rdf:li", inner)
        indent = item_indent.group(1) if item_indent else (closing_indent.group(1) if closing_indent else "") + "  "
        changed = True
        return f"{opening}{stripped}\n{indent}<rdf:li>{rating_tag}</rdf:li>{trailing}{closing}"

    updated = _BAG_RE.sub(patch, xml)
    return updated, changed, bag_count


@dataclass
class BackfillStats:
    processed: int = 0
    updated: int = 0
    already_tagged: int = 0
    skipped_missing_rating: int = 0
    missing_bags: int = 0
    errors: int = 0


def collect_xmp_files(root_dir: Union[str, Path]) -> List[Path]:
    found = []
    for current, dirs, files in os.walk(root_dir):
        dirs.sort()
        found.extend(Path(current) / name for name in sorted(files) if name.lower().endswith(".xmp"))
    return found


def backfill_rating_tags(root_dir: Union[str, Path], *, dry_run: bool = False) -> BackfillStats:
    stats = BackfillStats()
    for path in collect_xmp_files(root_dir):
        stats.processed += 1
        rating = rating_from_path(root_dir, path)
        if rating is None:
            stats.skipped_missing_rating += 1
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            stats.errors += 1
            logger.warning(f"Failed to read {path}: {exc}")
            continue

        updated, changed, bag_count = append_rating_to_bags(content, f"rating:{rating}")
        if bag_count == 0:
            stats.missing_bags += 1
            continue
        if not changed:
            stats.already_tagged += 1
            continue
        if not dry_run:
            try:
                with open(path, "w", encoding="utf-8", newline="") as f:
                    f.write(updated)
            except OSError as exc:
                stats.errors += 1
                logger.warning(f"Failed to update {path}: {exc}")
                continue
        stats.updated += 1
    return stats
