"""ChangeEventHandler: one invocation: normalize a record batch, dispatch it.

``lambda_handler`` is the AWS Lambda entry point for a DynamoDB Streams
trigger.  The handler (and its SNS client) is built once per container and
reused across warm invocations.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from pydantic import ValidationError

from .bus import EventBus
from .config import PublisherConfig
from .dispatcher import EventDispatcher
from .errors import ConfigurationError, UnpublishedEventsError
from .logging import setup_logging
from .models import ChangeRecord, DispatchResult, InvocationResult, NormalizedEvent
from .normalizer import ChangeNormalizer
from .retry import with_retry
from .sns import SnsEventBus
from .stream import parse_stream_records

logger = structlog.get_logger()

# Time kept back from the Lambda deadline for logging and returning.
DEADLINE_MARGIN_SECONDS = 1.0


class ChangeEventHandler:
    """Wire the normalizer, dispatcher and bus for one stream consumer."""

    def __init__(self, config: PublisherConfig, bus: EventBus | None = None) -> None:
        self.config = config
        self._bus = bus if bus is not None else SnsEventBus(config.bus)
        self._normalizer = ChangeNormalizer(
            time_format=config.time_format,
            carry_payload=config.carry_payload,
        )
        self._dispatcher = EventDispatcher(self._bus, config.batch)
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self._started:
            await self._bus.start()
            self._started = True

    async def stop(self) -> None:
        if self._started:
            await self._bus.stop()
            self._started = False

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def handle(
        self,
        records: Sequence[ChangeRecord],
        *,
        deadline: float | None = None,
        skipped: int = 0,
    ) -> InvocationResult:
        """Normalize *records* and publish the resulting events.

        *skipped* counts records the caller already discarded as unparsable;
        they are reported as dropped.  Raises :class:`UnpublishedEventsError`
        unless every event was accepted, and :class:`ConfigurationError`
        (before anything is published) when the bus is unusable.
        """
        await self.start()

        events, dropped = self._normalizer.normalize_batch(records)
        dropped += skipped
        logger.info(
            "change_records_normalized",
            received=len(records) + skipped,
            events=len(events),
            dropped=dropped,
        )

        result = await self._dispatch(events, deadline)
        invocation = InvocationResult(
            received=len(records) + skipped,
            dropped=dropped,
            published=len(result.published),
            failed=len(result.failed),
        )
        if not result.ok:
            logger.error(
                "invocation_failed",
                **invocation.model_dump(),
                failed_events=[f.model_dump(mode="json") for f in result.failed],
            )
            raise UnpublishedEventsError(result)

        logger.info("invocation_completed", **invocation.model_dump())
        return invocation

    async def handle_stream_event(
        self,
        event: Mapping[str, Any],
        *,
        deadline: float | None = None,
    ) -> InvocationResult:
        """Handle a raw DynamoDB Streams trigger payload (``{"Records": [...]}``)."""
        records, skipped = parse_stream_records(event.get("Records", []))
        return await self.handle(records, deadline=deadline, skipped=skipped)

    async def _dispatch(
        self, events: list[NormalizedEvent], deadline: float | None
    ) -> DispatchResult:
        """Dispatch, re-dispatching failed events when a retry policy is set."""
        pending = events
        published: list[str] = []
        batches_attempted = 0

        @with_retry(
            self.config.retry,
            retryable_exceptions=(UnpublishedEventsError,),
            deadline=deadline,
        )
        async def _attempt() -> None:
            nonlocal pending, batches_attempted
            result = await self._dispatcher.dispatch(pending, deadline=deadline)
            published.extend(result.published)
            batches_attempted += result.batches_attempted
            if not result.ok:
                failed_ids = {failure.event_id for failure in result.failed}
                pending = [event for event in pending if event.id in failed_ids]
                raise UnpublishedEventsError(result)

        try:
            await _attempt()
        except UnpublishedEventsError as exc:
            return DispatchResult(
                published=published,
                failed=exc.result.failed,
                batches_attempted=batches_attempted,
            )
        return DispatchResult(published=published, batches_attempted=batches_attempted)


# ----------------------------------------------------------------------
# Lambda entry point
# ----------------------------------------------------------------------

_handler: ChangeEventHandler | None = None

# One loop per container, never closed: a boto3 call abandoned by
# ``wait_for`` keeps its worker thread and is not joined before returning.
_loop: asyncio.AbstractEventLoop | None = None


def build_handler() -> ChangeEventHandler:
    """Load configuration from the environment and build the handler."""
    try:
        config = PublisherConfig()
    except ValidationError as exc:
        raise ConfigurationError(f"invalid publisher configuration: {exc}") from exc
    setup_logging(json=config.log_json, level=config.log_level)
    return ChangeEventHandler(config)


def _event_loop() -> asyncio.AbstractEventLoop:
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop


def _deadline_from(context: Any) -> float | None:
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if remaining is None:
        return None
    return time.monotonic() + remaining() / 1000 - DEADLINE_MARGIN_SECONDS


def lambda_handler(event: Mapping[str, Any], context: Any) -> dict[str, int]:
    global _handler
    if _handler is None:
        _handler = build_handler()

    structlog.contextvars.clear_contextvars()
    request_id = getattr(context, "aws_request_id", None)
    if request_id:
        structlog.contextvars.bind_contextvars(request_id=request_id)

    result = _event_loop().run_until_complete(
        _handler.handle_stream_event(event, deadline=_deadline_from(context))
    )
    return result.model_dump()
