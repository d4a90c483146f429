"""
Bucket notification payloads.

The broker delivers S3-style event documents::

    {"EventName": "s3:ObjectCreated:Put",
     "Records": [{"s3": {"bucket": {"name": "b"},
                         "object": {"key": "a%20b.txt", "size": 5}}}]}

Payloads are decoded into typed records up front so a malformed message is
one NotificationDecodeError naming the offending field.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_to_bytes

from bucketsyncd.exceptions import NotificationDecodeError

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


@dataclass(frozen=True)
class NotificationRecord:
    bucket: str
    # Still URL-encoded, see decode_object_key()
    key: str
    size: float


@dataclass(frozen=True)
class Notification:
    event_name: str
    records: tuple[NotificationRecord, ...]


def _require(mapping: Any, name: str, expected: type | tuple[type, ...], path: str) -> Any:
    if not isinstance(mapping, dict):
        raise NotificationDecodeError("expected an object", field=path)
    field_path = f"{path}.{name}" if path else name
    if name not in mapping:
        raise NotificationDecodeError("missing", field=field_path)
    value = mapping[name]
    # bool is an int subclass but never a valid size
    if isinstance(value, bool) or not isinstance(value, expected):
        raise NotificationDecodeError(f"expected {_type_name(expected)}, got {type(value).__name__}", field=field_path)
    return value


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def decode_notification(body: bytes | str) -> Notification:
    """
    Decode a notification message body.

    Raises:
        NotificationDecodeError: Invalid JSON or a field missing / mistyped
    """
    try:
        document = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise NotificationDecodeError(f"invalid JSON payload: {e}") from e

    event_name = _require(document, "EventName", str, "")
    raw_records = _require(document, "Records", list, "")

    records = []
    for i, raw in enumerate(raw_records):
        path = f"Records[{i}]"
        s3 = _require(raw, "s3", dict, path)
        bucket = _require(s3, "bucket", dict, f"{path}.s3")
        obj = _require(s3, "object", dict, f"{path}.s3")
        records.append(
            NotificationRecord(
                bucket=_require(bucket, "name", str, f"{path}.s3.bucket"),
                key=_require(obj, "key", str, f"{path}.s3.object"),
                size=_require(obj, "size", (int, float), f"{path}.s3.object"),
            )
        )

    return Notification(event_name=event_name, records=tuple(records))


def decode_object_key(raw: str) -> str:
    """
    Query-unescape an object key: ``+`` is a space, ``%XX`` a byte.

    Raises:
        NotificationDecodeError: Malformed escape or non UTF-8 result
    """
    bad = _BAD_ESCAPE.search(raw)
    if bad:
        raise NotificationDecodeError(f"invalid URL escape {raw[bad.start() : bad.start() + 3]!r} in key {raw!r}")
    try:
        return unquote_to_bytes(raw.replace("+", " ")).decode("utf-8")
    except UnicodeDecodeError as e:
        raise NotificationDecodeError(f"key {raw!r} is not valid UTF-8 once decoded") from e
