"""Exception hierarchy for the change-event publisher."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import DispatchResult


class PublisherError(Exception):
    """Base class for all publisher errors."""


class ConfigurationError(PublisherError):
    """The bus cannot be used at all (missing topic, credentials, access).

    Fatal to the invocation: raised before or instead of publishing anything.
    """


class BusTransportError(PublisherError):
    """A batch-publish call failed as a whole (network, throttling, 5xx)."""


class UnpublishedEventsError(PublisherError):
    """One or more events of an invocation were not accepted by the bus."""

    def __init__(self, result: DispatchResult) -> None:
        self.result = result
        failed = result.failed
        kinds = sorted({f.kind.value for f in failed})
        super().__init__(
            f"{len(failed)} of {result.total} events not published ({', '.join(kinds)})"
        )
