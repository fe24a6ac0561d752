"""Tests for cdc_publisher.dispatcher (EventDispatcher)."""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from datetime import datetime, timezone

import pytest

from cdc_publisher.config import BatchConfig
from cdc_publisher.dispatcher import EventDispatcher, encode_event
from cdc_publisher.models import BusEntry, EntryOutcome, FailureKind, NormalizedEvent

from tests.conftest import FakeBus


def make_events(count: int, *, payload: dict | None = None) -> list[NormalizedEvent]:
    return [
        NormalizedEvent(
            source=f"/order/{i:03d}",
            id=f"evt-{i:03d}",
            type="OrderCreated",
            occurred_at=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
            payload=payload,
        )
        for i in range(count)
    ]


def sns_request_bytes(entry: BusEntry) -> int:
    """Bytes SNS counts for one entry: body plus attribute name, type and value."""
    size = len(entry.body.encode("utf-8"))
    for name, value in entry.attributes.items():
        size += len(name.encode("utf-8")) + len(b"String") + len(value.encode("utf-8"))
    return size


def flatten(batches: list[list[NormalizedEvent]]) -> list[NormalizedEvent]:
    return [event for batch in batches for event in batch]


class TestEncodeEvent:
    def test_body_uses_wire_names(self):
        event = make_events(1)[0]
        entry = encode_event(event, "3")

        body = json.loads(entry.body)
        assert entry.entry_id == "3"
        assert body["id"] == "evt-000"
        assert body["time"] == "2024-01-01T10:00:00Z"
        assert body["datacontenttype"] == "application/json"
        assert body["actor"] == "unknown"
        assert body["data"] is None

    def test_type_and_source_attributes(self):
        entry = encode_event(make_events(1)[0], "0")
        assert entry.attributes == {"type": "OrderCreated", "source": "/order/000"}


class TestPlanBatches:
    def test_splits_on_entry_limit(self, fake_bus: FakeBus):
        dispatcher = EventDispatcher(fake_bus, BatchConfig(max_entries=10))
        events = make_events(25)

        batches = dispatcher.plan_batches(events)

        assert [len(batch) for batch in batches] == [10, 10, 5]
        assert flatten(batches) == events

    def test_splits_on_byte_limit(self, fake_bus: FakeBus):
        events = make_events(7)
        size = encode_event(events[0], "0").size
        dispatcher = EventDispatcher(fake_bus, BatchConfig(max_entries=10, max_bytes=2 * size))

        batches = dispatcher.plan_batches(events)

        assert [len(batch) for batch in batches] == [2, 2, 2, 1]
        assert flatten(batches) == events

    def test_byte_limit_counts_attribute_data_type(self, fake_bus: FakeBus):
        events = make_events(10)
        sizes = [sns_request_bytes(encode_event(event, "0")) for event in events]

        exact = EventDispatcher(fake_bus, BatchConfig(max_entries=10, max_bytes=sum(sizes)))
        assert [len(batch) for batch in exact.plan_batches(events)] == [10]

        limit = sum(sizes) - 1
        dispatcher = EventDispatcher(fake_bus, BatchConfig(max_entries=10, max_bytes=limit))
        batches = dispatcher.plan_batches(events)

        assert [len(batch) for batch in batches] == [9, 1]
        for batch in batches:
            request = [encode_event(event, str(i)) for i, event in enumerate(batch)]
            assert sum(sns_request_bytes(entry) for entry in request) <= limit

    def test_oversized_event_gets_own_batch(self, fake_bus: FakeBus):
        events = make_events(3)
        big = NormalizedEvent(
            source="/order/big",
            id="evt-big",
            type="OrderCreated",
            occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            payload={"blob": "x" * 5000},
        )
        dispatcher = EventDispatcher(fake_bus, BatchConfig(max_entries=10, max_bytes=4000))

        batches = dispatcher.plan_batches([events[0], big, events[1], events[2]])

        assert [[event.id for event in batch] for batch in batches] == [
            ["evt-000"],
            ["evt-big"],
            ["evt-001", "evt-002"],
        ]

    @pytest.mark.parametrize("count", [1, 9, 10, 11, 37])
    def test_concatenation_reproduces_input(self, fake_bus: FakeBus, count: int):
        dispatcher = EventDispatcher(fake_bus, BatchConfig(max_entries=4, max_bytes=1500))
        events = make_events(count)

        batches = dispatcher.plan_batches(events)

        assert flatten(batches) == events
        assert all(1 <= len(batch) <= 4 for batch in batches)

    def test_empty(self, fake_bus: FakeBus):
        dispatcher = EventDispatcher(fake_bus, BatchConfig())
        assert dispatcher.plan_batches([]) == []


class TestDispatch:
    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self, fake_bus: FakeBus, batch_config: BatchConfig):
        dispatcher = EventDispatcher(fake_bus, batch_config)

        result = await dispatcher.dispatch([])

        assert fake_bus.calls == []
        assert result.ok is True
        assert result.total == 0
        assert result.batches_attempted == 0

    @pytest.mark.asyncio
    async def test_publishes_all_in_order(self, fake_bus: FakeBus, batch_config: BatchConfig):
        dispatcher = EventDispatcher(fake_bus, batch_config)
        events = make_events(23)

        result = await dispatcher.dispatch(events)

        assert result.ok is True
        assert result.published == [event.id for event in events]
        assert result.batches_attempted == 3
        assert [len(call) for call in fake_bus.calls] == [10, 10, 3]
        assert fake_bus.published_ids == [event.id for event in events]
        # Entry ids are positional within each batch
        assert [entry.entry_id for entry in fake_bus.calls[2]] == ["0", "1", "2"]

    @pytest.mark.asyncio
    async def test_partial_rejection_is_reported_per_entry(
        self, fake_bus: FakeBus, batch_config: BatchConfig
    ):
        fake_bus.reject = {"evt-001", "evt-004"}
        dispatcher = EventDispatcher(fake_bus, batch_config)

        result = await dispatcher.dispatch(make_events(5))

        assert result.ok is False
        assert result.published == ["evt-000", "evt-002", "evt-003"]
        assert [f.event_id for f in result.failed] == ["evt-001", "evt-004"]
        assert all(f.kind is FailureKind.REJECTED for f in result.failed)
        assert result.failed[0].code == "InvalidParameter"
        assert result.failed[0].attempted is True

    @pytest.mark.asyncio
    async def test_transport_error_fails_only_that_batch(self, fake_bus: FakeBus):
        fake_bus.fail_calls = {0}
        dispatcher = EventDispatcher(fake_bus, BatchConfig(max_entries=2))

        result = await dispatcher.dispatch(make_events(4))

        assert len(fake_bus.calls) == 2
        assert result.batches_attempted == 2
        assert result.published == ["evt-002", "evt-003"]
        assert [(f.event_id, f.kind) for f in result.failed] == [
            ("evt-000", FailureKind.TRANSPORT),
            ("evt-001", FailureKind.TRANSPORT),
        ]
        assert "Throttling" in result.failed[0].reason

    @pytest.mark.asyncio
    async def test_timeout_fails_batch_and_continues(self, fake_bus: FakeBus):
        fake_bus.delay = 0.2
        dispatcher = EventDispatcher(
            fake_bus, BatchConfig(max_entries=2, publish_timeout_seconds=0.02)
        )

        result = await dispatcher.dispatch(make_events(3))

        assert len(fake_bus.calls) == 2
        assert len(result.failed) == 3
        assert all(f.kind is FailureKind.TIMEOUT for f in result.failed)

    @pytest.mark.asyncio
    async def test_expired_deadline_attempts_nothing(
        self, fake_bus: FakeBus, batch_config: BatchConfig
    ):
        dispatcher = EventDispatcher(fake_bus, batch_config)

        result = await dispatcher.dispatch(make_events(12), deadline=time.monotonic() - 1)

        assert fake_bus.calls == []
        assert result.batches_attempted == 0
        assert len(result.failed) == 12
        assert all(f.kind is FailureKind.NOT_ATTEMPTED for f in result.failed)
        assert all(f.attempted is False for f in result.failed)

    @pytest.mark.asyncio
    async def test_deadline_reached_mid_dispatch(self, fake_bus: FakeBus):
        fake_bus.delay = 0.2
        dispatcher = EventDispatcher(
            fake_bus, BatchConfig(max_entries=2, publish_timeout_seconds=10.0)
        )

        result = await dispatcher.dispatch(make_events(5), deadline=time.monotonic() + 0.05)

        assert len(fake_bus.calls) == 1
        assert [f.kind for f in result.failed] == [
            FailureKind.TIMEOUT,
            FailureKind.TIMEOUT,
            FailureKind.NOT_ATTEMPTED,
            FailureKind.NOT_ATTEMPTED,
            FailureKind.NOT_ATTEMPTED,
        ]
        assert [f.event_id for f in result.failed] == [f"evt-{i:03d}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_missing_outcome_counts_as_rejected(self, batch_config: BatchConfig):
        class ForgetfulBus(FakeBus):
            async def publish_batch(self, entries: Sequence[BusEntry]) -> list[EntryOutcome]:
                outcomes = await super().publish_batch(entries)
                return outcomes[:-1]

        dispatcher = EventDispatcher(ForgetfulBus(), batch_config)

        result = await dispatcher.dispatch(make_events(3))

        assert result.published == ["evt-000", "evt-001"]
        assert result.failed[0].event_id == "evt-002"
        assert result.failed[0].kind is FailureKind.REJECTED
        assert result.failed[0].reason == "no outcome returned by bus"
