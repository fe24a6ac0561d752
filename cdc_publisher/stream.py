"""DynamoDB Streams adapter: Lambda event records to :class:`ChangeRecord`.

Images arrive as typed attribute values (``{"S": "Order"}``); they are
deserialized with boto3's :class:`TypeDeserializer` and then made JSON-safe
so normalized payloads can be serialized without custom encoders.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from boto3.dynamodb.types import Binary, TypeDeserializer
from pydantic import ValidationError

from .models import ChangeRecord

logger = structlog.get_logger()

_deserializer = TypeDeserializer()


def _binary_as_text(attr: Any) -> Any:
    """Retype base64 ``B`` / ``BS`` strings from stream JSON as ``S`` / ``SS``.

    Raw ``bytes`` values are left alone and end up as :class:`Binary`.
    """
    if not isinstance(attr, Mapping) or len(attr) != 1:
        return attr
    tag, value = next(iter(attr.items()))
    if tag == "B" and isinstance(value, str):
        return {"S": value}
    if tag == "BS" and all(isinstance(v, str) for v in value):
        return {"SS": value}
    if tag == "M" and isinstance(value, Mapping):
        return {"M": {k: _binary_as_text(v) for k, v in value.items()}}
    if tag == "L" and isinstance(value, list):
        return {"L": [_binary_as_text(v) for v in value]}
    return attr


def _plain(value: Any) -> Any:
    """Convert deserialized DynamoDB values into JSON-compatible ones."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Binary):
        value = value.value
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(v) for v in value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def deserialize_image(image: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Turn a typed DynamoDB image into a plain dict; ``None`` stays ``None``."""
    if image is None:
        return None
    return {
        name: _plain(_deserializer.deserialize(_binary_as_text(attr)))
        for name, attr in image.items()
    }


def parse_stream_record(raw: Mapping[str, Any]) -> ChangeRecord | None:
    """Build a :class:`ChangeRecord` from one DynamoDB Streams record.

    Returns ``None`` (and logs a warning) when the record is structurally
    unusable: no event id, no change section, or undecodable images.
    """
    change = raw.get("dynamodb") or {}
    try:
        created = change["ApproximateCreationDateTime"]
        return ChangeRecord(
            record_id=raw["eventID"],
            approximate_change_time=datetime.fromtimestamp(float(created), tz=timezone.utc),
            before=deserialize_image(change.get("OldImage")),
            after=deserialize_image(change.get("NewImage")),
            sequence_number=change.get("SequenceNumber"),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        logger.warning(
            "stream_record_unparsable",
            event_id=raw.get("eventID"),
            error=str(exc),
        )
        return None


def parse_stream_records(
    raw_records: Iterable[Mapping[str, Any]],
) -> tuple[list[ChangeRecord], int]:
    """Parse every record of a stream batch; return records and the skip count."""
    records: list[ChangeRecord] = []
    skipped = 0
    for raw in raw_records:
        record = parse_stream_record(raw)
        if record is None:
            skipped += 1
        else:
            records.append(record)
    return records, skipped
