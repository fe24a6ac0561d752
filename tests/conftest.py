"""Shared test fixtures for the cdc_publisher test suite."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from datetime import datetime, timezone

import pytest

from cdc_publisher.bus import EventBus
from cdc_publisher.config import BatchConfig, BusConfig, PublisherConfig, RetryConfig
from cdc_publisher.errors import BusTransportError
from cdc_publisher.models import BusEntry, ChangeRecord, EntryOutcome

STREAM_TIME = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
TOPIC_ARN = "arn:aws:sns:eu-west-1:123456789012:change-events"

_ENV_VARS = (
    "CVX_EVENT_BUS",
    "EVENT_BUS_TOPIC_ARN",
    "TOPIC_ARN",
    "AWS_REGION",
    "EVENT_BUS_REGION",
    "REGION",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeBus(EventBus):
    """In-memory bus recording every publish call.

    ``reject`` holds event ids rejected on every call, ``flaky`` ids
    rejected once, ``fail_calls`` call indexes that raise a transport
    error and ``delay`` seconds each call takes.
    """

    def __init__(self) -> None:
        self.calls: list[list[BusEntry]] = []
        self.started = 0
        self.stopped = 0
        self.reject: set[str] = set()
        self.flaky: set[str] = set()
        self.fail_calls: set[int] = set()
        self.delay = 0.0

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    async def publish_batch(self, entries: Sequence[BusEntry]) -> list[EntryOutcome]:
        index = len(self.calls)
        self.calls.append(list(entries))
        if self.delay:
            await asyncio.sleep(self.delay)
        if index in self.fail_calls:
            raise BusTransportError("Throttling: Rate exceeded")

        outcomes: list[EntryOutcome] = []
        for entry in entries:
            event_id = json.loads(entry.body)["id"]
            if event_id in self.reject or event_id in self.flaky:
                self.flaky.discard(event_id)
                outcomes.append(EntryOutcome(
                    entry_id=entry.entry_id,
                    code="InvalidParameter",
                    reason="Invalid parameter: Message",
                    sender_fault=True,
                ))
            else:
                outcomes.append(
                    EntryOutcome(entry_id=entry.entry_id, message_id=f"msg-{event_id}")
                )
        return outcomes

    @property
    def published_ids(self) -> list[str]:
        return [json.loads(entry.body)["id"] for call in self.calls for entry in call]


@pytest.fixture
def fake_bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def bus_config() -> BusConfig:
    return BusConfig(topic_arn=TOPIC_ARN, region="eu-west-1")


@pytest.fixture
def batch_config() -> BatchConfig:
    return BatchConfig(max_entries=10, publish_timeout_seconds=5.0)


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=1, initial_wait_seconds=0.01, max_wait_seconds=0.02)


@pytest.fixture
def publisher_config(
    bus_config: BusConfig,
    batch_config: BatchConfig,
    retry_config: RetryConfig,
) -> PublisherConfig:
    return PublisherConfig(bus=bus_config, batch=batch_config, retry=retry_config)


_UNSET = object()


def order_image(identity="42", *, event_time=_UNSET, user=_UNSET, **extra) -> dict:
    """Plain ``Order`` item image; *event_time* / *user* fill ``__time`` / ``__user``."""
    image = {"__typename": "Order", "id": identity}
    if event_time is not _UNSET:
        image["__time"] = event_time
    if user is not _UNSET:
        image["__user"] = user
    image.update(extra)
    return image


@pytest.fixture
def record_factory():
    """Factory to create ChangeRecord instances with overrides."""

    def _make(**overrides) -> ChangeRecord:
        defaults = dict(
            record_id="evt-1",
            approximate_change_time=STREAM_TIME,
            after=order_image(),
        )
        defaults.update(overrides)
        return ChangeRecord(**defaults)

    return _make


def stream_record(
    *,
    event_id: str = "evt-1",
    event_name: str = "INSERT",
    new_image: dict | None = None,
    old_image: dict | None = None,
    created: int = 1704103200,
) -> dict:
    """Build a DynamoDB Streams record as delivered to Lambda."""
    change: dict = {
        "ApproximateCreationDateTime": created,
        "Keys": {"id": {"S": "42"}},
        "SequenceNumber": "4421584500000000017450439091",
        "SizeBytes": 26,
        "StreamViewType": "NEW_AND_OLD_IMAGES",
    }
    if new_image is not None:
        change["NewImage"] = new_image
    if old_image is not None:
        change["OldImage"] = old_image
    return {
        "eventID": event_id,
        "eventName": event_name,
        "eventVersion": "1.1",
        "eventSource": "aws:dynamodb",
        "awsRegion": "eu-west-1",
        "dynamodb": change,
    }


@pytest.fixture
def stream_record_factory():
    return stream_record


@pytest.fixture
def order_image_factory():
    return order_image
