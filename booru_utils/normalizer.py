"""
Collapses the reply formats the boorus speak into one shape.

Providers answer with JSON (sometimes wrapped in an ``@attributes`` header
object) or with one of two XML dialects:

  - attribute style:  ``<posts count="2"><post id="1" tags="a b"/></posts>``
  - element style:    ``<posts count="2"><post><id>1</id><tags>a b</tags></post></posts>``

Each provider declares a :class:`RecordShape` naming the container and item
elements, and :func:`normalize` always returns a flat list of record mappings
plus the container attributes, whatever the source dialect was.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import orjson

from booru_utils.errors import UnparseableResponse

ATTRIBUTES_KEY = "@attributes"


@dataclass(frozen=True)
class RecordShape:
    container: str
    item: str
    id_key: str = "id"


POST_SHAPE = RecordShape("posts", "post")
TAG_SHAPE = RecordShape("tags", "tag")
USER_SHAPE = RecordShape("users", "user")
COMMENT_SHAPE = RecordShape("comments", "comment")


@dataclass
class Payload:
    records: List[Dict[str, Any]]
    attributes: Dict[str, Any] = field(default_factory=dict)
    was_xml: bool = False

    @property
    def count(self) -> Optional[int]:
        """Server-reported total, when the container carries one."""
        raw = self.attributes.get("count")
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None


def detect_format(text: str, url: Optional[str] = None) -> str:
    stripped = text.lstrip("\ufeff \t\r\n")
    if stripped.startswith("<"):
        return "xml"
    if stripped.startswith(("{", "[")):
        return "json"
    preview = stripped[:80] if stripped else "<empty body>"
    raise UnparseableResponse(f"Response is neither JSON nor XML: {preview!r}", url=url)


def decode_json(text: str, url: Optional[str] = None) -> Any:
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError as exc:
        raise UnparseableResponse(f"Malformed JSON: {exc}", url=url) from exc


def normalize(text: str, shape: RecordShape, url: Optional[str] = None) -> Payload:
    """Parse *text* and return its records in canonical form."""
    if detect_format(text, url) == "xml":
        return _normalize_xml(text, shape, url)
    return _normalize_json(decode_json(text, url), shape, url)


def flatten_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Hoist an ``@attributes`` node into top-level keys."""
    attributes = record.get(ATTRIBUTES_KEY)
    if not isinstance(attributes, dict):
        return dict(record)
    flat = dict(attributes)
    for key, value in record.items():
        if key != ATTRIBUTES_KEY:
            flat[key] = value
    return flat


def _as_record_list(value: Any, shape: RecordShape, url: Optional[str]) -> List[Dict[str, Any]]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    records = []
    for item in items:
        if not isinstance(item, dict):
            raise UnparseableResponse(f"Expected {shape.item} objects, got {type(item).__name__}", url=url)
        records.append(flatten_record(item))
    return records


def _normalize_json(data: Any, shape: RecordShape, url: Optional[str]) -> Payload:
    if isinstance(data, list):
        return Payload(_as_record_list(data, shape, url))
    if not isinstance(data, dict):
        raise UnparseableResponse(f"Unexpected JSON document of type {type(data).__name__}", url=url)

    attributes = data.get(ATTRIBUTES_KEY)
    attributes = dict(attributes) if isinstance(attributes, dict) else {}
    body = {k: v for k, v in data.items() if k != ATTRIBUTES_KEY}

    if shape.item in body:
        return Payload(_as_record_list(body[shape.item], shape, url), attributes)
    if shape.container in body:
        container = body[shape.container]
        if isinstance(container, dict):
            nested_attributes = container.get(ATTRIBUTES_KEY)
            if isinstance(nested_attributes, dict):
                attributes.update(nested_attributes)
            container = container.get(shape.item)
        return Payload(_as_record_list(container, shape, url), attributes)
    if shape.id_key in body:
        # a bare record, e.g. a direct /users/<id>.json lookup
        return Payload([flatten_record(data)], attributes)
    if not body:
        return Payload([], attributes)
    raise UnparseableResponse(
        f"No '{shape.item}' records in response (keys: {sorted(body)[:8]})", url=url
    )


def _flatten_element(element: ET.Element) -> Dict[str, Any]:
    flat: Dict[str, Any] = dict(element.attrib)
    for child in element:
        if len(child) == 0 and not child.attrib:
            flat.setdefault(child.tag, (child.text or "").strip())
            continue
        nested = _flatten_element(child)
        existing = flat.get(child.tag)
        if isinstance(existing, list):
            existing.append(nested)
        elif isinstance(existing, dict):
            flat[child.tag] = [existing, nested]
        else:
            flat[child.tag] = nested
    return flat


def _normalize_xml(text: str, shape: RecordShape, url: Optional[str]) -> Payload:
    try:
        root = ET.fromstring(text.encode("utf-8"))
    except ET.ParseError as exc:
        raise UnparseableResponse(f"Malformed XML: {exc}", url=url) from exc

    if root.tag == shape.container:
        records = [_flatten_element(child) for child in root if child.tag == shape.item]
        return Payload(records, dict(root.attrib), was_xml=True)
    if root.tag == shape.item:
        return Payload([_flatten_element(root)], was_xml=True)
    reason = root.attrib.get("reason") or root.attrib.get("message")
    detail = f": {reason}" if reason else ""
    raise UnparseableResponse(
        f"Unexpected XML root <{root.tag}>, wanted <{shape.container}> or <{shape.item}>{detail}", url=url
    )
