"""Change normalizer: one ChangeRecord in, zero or one NormalizedEvent out.

Normalization is pure data transformation, no I/O.  Malformed records are
filtered, never raised: :meth:`ChangeNormalizer.normalize` returns ``None``
for them and :meth:`ChangeNormalizer.normalize_batch` counts them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from .casing import kebab_case
from .constants import (
    DEFAULT_TIME_FORMAT,
    ID_FIELD,
    TIME_FIELD,
    TYPENAME_FIELD,
    UNKNOWN_ACTOR,
    USER_FIELD,
)
from .models import ChangeRecord, NormalizedEvent

logger = structlog.get_logger()


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


class ChangeNormalizer:
    """Derive normalized event envelopes from raw change records."""

    def __init__(
        self,
        *,
        time_format: str = DEFAULT_TIME_FORMAT,
        carry_payload: bool = False,
        path_case: Callable[[str], str] = kebab_case,
    ) -> None:
        self._time_format = time_format
        self._carry_payload = carry_payload
        self._path_case = path_case

    # ------------------------------------------------------------------
    # Image access
    # ------------------------------------------------------------------

    @staticmethod
    def _image(record: ChangeRecord) -> dict[str, Any]:
        """The post-change image, or the pre-change image for deletions."""
        if record.after is not None:
            return record.after
        return record.before or {}

    def _field(self, record: ChangeRecord, name: str) -> str:
        return _text(self._image(record).get(name))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, record: ChangeRecord) -> bool:
        if record.before is None and record.after is None:
            return False
        return bool(
            record.record_id
            and self._field(record, TYPENAME_FIELD)
            and self._field(record, ID_FIELD)
        )

    # ------------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------------

    def derive_type(self, record: ChangeRecord) -> str:
        entity = self._field(record, TYPENAME_FIELD)
        if record.after is not None and record.before is None:
            return f"{entity}Created"
        if record.after is not None:
            return f"{entity}Updated"
        return f"{entity}Deleted"

    def derive_source(self, record: ChangeRecord) -> str:
        entity = self._path_case(self._field(record, TYPENAME_FIELD))
        return f"/{entity}/{self._field(record, ID_FIELD)}"

    @staticmethod
    def derive_id(record: ChangeRecord) -> str:
        return record.record_id

    def derive_time(self, record: ChangeRecord) -> datetime:
        """Embedded ``__time`` of the post-change image, else the stream time."""
        raw = (record.after or {}).get(TIME_FIELD)
        if isinstance(raw, str) and raw:
            try:
                parsed = datetime.strptime(raw, self._time_format)
            except ValueError:
                logger.debug(
                    "event_time_unparsable",
                    record_id=record.record_id,
                    value=raw,
                    time_format=self._time_format,
                )
            else:
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed.astimezone(timezone.utc)
        return record.approximate_change_time

    def derive_subject(self, record: ChangeRecord) -> str | None:
        return self._field(record, USER_FIELD) or None

    def derive_actor(self, record: ChangeRecord) -> str:
        return self._field(record, USER_FIELD) or UNKNOWN_ACTOR

    def derive_payload(self, record: ChangeRecord) -> dict[str, Any] | None:
        # Extension point: the body is omitted unless explicitly enabled.
        if not self._carry_payload or record.after is None:
            return None
        return dict(record.after)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def normalize(self, record: ChangeRecord) -> NormalizedEvent | None:
        if not self.validate(record):
            logger.debug(
                "change_record_dropped",
                record_id=record.record_id,
                sequence_number=record.sequence_number,
            )
            return None

        return NormalizedEvent(
            source=self.derive_source(record),
            id=self.derive_id(record),
            type=self.derive_type(record),
            occurred_at=self.derive_time(record),
            subject=self.derive_subject(record),
            actor=self.derive_actor(record),
            payload=self.derive_payload(record),
        )

    def normalize_batch(
        self, records: Iterable[ChangeRecord]
    ) -> tuple[list[NormalizedEvent], int]:
        """Normalize *records* in order; return the events and the drop count."""
        events: list[NormalizedEvent] = []
        dropped = 0
        for record in records:
            event = self.normalize(record)
            if event is None:
                dropped += 1
            else:
                events.append(event)
        return events, dropped
