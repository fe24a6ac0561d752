"""Data models for change records, normalized events and dispatch outcomes."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .constants import CONTENT_TYPE, SNS_ATTRIBUTE_DATA_TYPE, UNKNOWN_ACTOR


class ChangeRecord(BaseModel):
    """One create / update / delete captured from the source stream.

    ``before`` is absent on creation and ``after`` is absent on deletion.
    A record with neither image is meaningless and is filtered out by the
    normalizer rather than rejected here.
    """

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(description="Unique identifier assigned by the stream")
    approximate_change_time: datetime = Field(
        description="When the stream captured the change (UTC)",
    )
    before: dict[str, Any] | None = Field(default=None, description="Pre-change image")
    after: dict[str, Any] | None = Field(default=None, description="Post-change image")
    sequence_number: str | None = Field(
        default=None,
        description="Stream position, carried for logging only",
    )


class NormalizedEvent(BaseModel):
    """Self-describing, bus-ready envelope for a single change.

    Serialized by alias so the wire names follow CloudEvents attribute
    naming (``time``, ``datacontenttype``, ``data``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(min_length=1, description="/<entity-type>/<identity>")
    id: str = Field(min_length=1, description="Globally unique event identifier")
    type: str = Field(min_length=1, description="<Entity>Created|Updated|Deleted")
    occurred_at: datetime = Field(alias="time", description="Authoritative event time")
    subject: str | None = Field(default=None, description="User recorded on the change")
    actor: str = Field(default=UNKNOWN_ACTOR, description="User, or 'unknown'")
    content_type: str = Field(default=CONTENT_TYPE, alias="datacontenttype")
    payload: dict[str, Any] | None = Field(default=None, alias="data")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class BusEntry(BaseModel):
    """A single message handed to a batch-publish call."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    body: str
    attributes: dict[str, str] = Field(default_factory=dict)

    @property
    def size(self) -> int:
        """Bytes this entry counts against the batch payload limit.

        Each message attribute counts its name, data type and value.
        """
        size = len(self.body.encode("utf-8"))
        data_type = len(SNS_ATTRIBUTE_DATA_TYPE.encode("utf-8"))
        for name, value in self.attributes.items():
            size += len(name.encode("utf-8")) + data_type + len(value.encode("utf-8"))
        return size


class EntryOutcome(BaseModel):
    """Per-entry result of a batch-publish call."""

    entry_id: str
    message_id: str | None = Field(default=None, description="Bus receipt when accepted")
    code: str | None = Field(default=None, description="Bus error code when rejected")
    reason: str | None = None
    sender_fault: bool = False

    @property
    def accepted(self) -> bool:
        return self.message_id is not None


class FailureKind(str, Enum):
    """Why an event did not reach the bus."""

    REJECTED = "rejected"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    NOT_ATTEMPTED = "not_attempted"


class FailedEvent(BaseModel):
    """An event that was not accepted, with the reason."""

    event_id: str
    kind: FailureKind
    reason: str
    code: str | None = None

    @property
    def attempted(self) -> bool:
        return self.kind is not FailureKind.NOT_ATTEMPTED


class DispatchResult(BaseModel):
    """Aggregate outcome of publishing one invocation's events."""

    published: list[str] = Field(
        default_factory=list,
        description="Accepted event ids, in order",
    )
    failed: list[FailedEvent] = Field(default_factory=list)
    batches_attempted: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def total(self) -> int:
        return len(self.published) + len(self.failed)


class InvocationResult(BaseModel):
    """Counts reported back to the invoking runtime."""

    received: int = Field(description="Change records handed to the invocation")
    dropped: int = Field(description="Records filtered out as malformed")
    published: int = Field(description="Events accepted by the bus")
    failed: int = Field(default=0, description="Events not accepted by the bus")
