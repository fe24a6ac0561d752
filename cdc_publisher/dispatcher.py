"""EventDispatcher: pack normalized events into bus batches and publish them."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import structlog

from .bus import EventBus
from .config import BatchConfig
from .errors import BusTransportError
from .models import (
    BusEntry,
    DispatchResult,
    EntryOutcome,
    FailedEvent,
    FailureKind,
    NormalizedEvent,
)

logger = structlog.get_logger()


def encode_event(event: NormalizedEvent, entry_id: str) -> BusEntry:
    """Build the bus entry for *event*.

    ``type`` and ``source`` are duplicated as message attributes so
    subscribers can filter without parsing the body.
    """
    return BusEntry(
        entry_id=entry_id,
        body=event.to_json(),
        attributes={"type": event.type, "source": event.source},
    )


class EventDispatcher:
    """Publish an ordered sequence of events and aggregate the outcomes.

    Events are split into batches bounded by ``max_entries`` and
    ``max_bytes``; order is kept within and across batches.  Each batch is
    one ``publish_batch`` call bounded by ``publish_timeout_seconds`` and by
    the caller's deadline.  Nothing is retried here.
    """

    def __init__(self, bus: EventBus, config: BatchConfig) -> None:
        self._bus = bus
        self._config = config

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def plan_batches(self, events: Sequence[NormalizedEvent]) -> list[list[NormalizedEvent]]:
        """Split *events* into publishable batches, preserving order.

        An event too large for any batch still gets a batch of its own;
        the bus reports it as rejected.
        """
        batches: list[list[NormalizedEvent]] = []
        current: list[NormalizedEvent] = []
        current_bytes = 0

        for event in events:
            size = encode_event(event, "0").size
            full = len(current) >= self._config.max_entries
            too_big = current_bytes + size > self._config.max_bytes
            if current and (full or too_big):
                batches.append(current)
                current, current_bytes = [], 0
            current.append(event)
            current_bytes += size

        if current:
            batches.append(current)
        return batches

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        events: Sequence[NormalizedEvent],
        *,
        deadline: float | None = None,
    ) -> DispatchResult:
        """Publish *events*; *deadline* is an absolute ``time.monotonic()`` value.

        Once the deadline has passed no further calls are issued and the
        remaining events are reported as ``not_attempted``.
        """
        result = DispatchResult()
        if not events:
            return result

        batches = self.plan_batches(events)
        for index, batch in enumerate(batches):
            timeout = self._call_timeout(deadline)
            if timeout is None:
                remaining = [event for pending in batches[index:] for event in pending]
                logger.warning(
                    "dispatch_deadline_exceeded",
                    batches_remaining=len(batches) - index,
                    events_remaining=len(remaining),
                )
                result.failed.extend(
                    FailedEvent(
                        event_id=event.id,
                        kind=FailureKind.NOT_ATTEMPTED,
                        reason="invocation deadline exceeded before publish",
                    )
                    for event in remaining
                )
                break
            await self._publish(index, batch, timeout, result)

        logger.info(
            "events_dispatched",
            events=len(events),
            batches=len(batches),
            batches_attempted=result.batches_attempted,
            published=len(result.published),
            failed=len(result.failed),
        )
        return result

    def _call_timeout(self, deadline: float | None) -> float | None:
        """Timeout for the next call, or ``None`` if the deadline has passed."""
        if deadline is None:
            return self._config.publish_timeout_seconds
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        return min(self._config.publish_timeout_seconds, remaining)

    async def _publish(
        self,
        index: int,
        batch: list[NormalizedEvent],
        timeout: float,
        result: DispatchResult,
    ) -> None:
        entries = [
            encode_event(event, str(position)) for position, event in enumerate(batch)
        ]
        result.batches_attempted += 1

        try:
            outcomes = await asyncio.wait_for(self._bus.publish_batch(entries), timeout)
        except TimeoutError:
            self._fail_batch(
                index,
                batch,
                FailureKind.TIMEOUT,
                f"publish call exceeded {timeout:.3f}s",
                result,
            )
            return
        except BusTransportError as exc:
            self._fail_batch(index, batch, FailureKind.TRANSPORT, str(exc), result)
            return

        by_id: dict[str, EntryOutcome] = {outcome.entry_id: outcome for outcome in outcomes}
        rejected: list[str] = []
        for entry, event in zip(entries, batch):
            outcome = by_id.get(entry.entry_id)
            if outcome is not None and outcome.accepted:
                result.published.append(event.id)
                continue
            rejected.append(event.id)
            result.failed.append(
                FailedEvent(
                    event_id=event.id,
                    kind=FailureKind.REJECTED,
                    reason=(
                        (outcome.reason if outcome else None) or "no outcome returned by bus"
                    ),
                    code=outcome.code if outcome else None,
                )
            )

        if rejected:
            logger.warning(
                "event_batch_partially_rejected",
                batch=index,
                entries=len(batch),
                rejected=rejected,
            )
        else:
            logger.debug("event_batch_published", batch=index, entries=len(batch))

    @staticmethod
    def _fail_batch(
        index: int,
        batch: list[NormalizedEvent],
        kind: FailureKind,
        reason: str,
        result: DispatchResult,
    ) -> None:
        logger.error(
            "event_batch_failed",
            batch=index,
            entries=len(batch),
            kind=kind.value,
            error=reason,
        )
        result.failed.extend(
            FailedEvent(event_id=event.id, kind=kind, reason=reason) for event in batch
        )
