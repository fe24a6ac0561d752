"""Change-data-capture event publisher.

Public API re-exported here for convenience::

    from cdc_publisher import ChangeEventHandler, ChangeNormalizer, EventDispatcher
"""

from .bus import EventBus
from .casing import kebab_case
from .config import BatchConfig, BusConfig, PublisherConfig, RetryConfig
from .dispatcher import EventDispatcher, encode_event
from .errors import (
    BusTransportError,
    ConfigurationError,
    PublisherError,
    UnpublishedEventsError,
)
from .handler import ChangeEventHandler, lambda_handler
from .logging import setup_logging
from .models import (
    BusEntry,
    ChangeRecord,
    DispatchResult,
    EntryOutcome,
    FailedEvent,
    FailureKind,
    InvocationResult,
    NormalizedEvent,
)
from .normalizer import ChangeNormalizer
from .retry import with_retry
from .sns import SnsEventBus
from .stream import parse_stream_record, parse_stream_records

__all__ = [
    "BatchConfig",
    "BusConfig",
    "BusEntry",
    "BusTransportError",
    "ChangeEventHandler",
    "ChangeNormalizer",
    "ChangeRecord",
    "ConfigurationError",
    "DispatchResult",
    "EntryOutcome",
    "EventBus",
    "EventDispatcher",
    "FailedEvent",
    "FailureKind",
    "InvocationResult",
    "NormalizedEvent",
    "PublisherConfig",
    "PublisherError",
    "RetryConfig",
    "SnsEventBus",
    "UnpublishedEventsError",
    "encode_event",
    "kebab_case",
    "lambda_handler",
    "parse_stream_record",
    "parse_stream_records",
    "setup_logging",
    "with_retry",
]
