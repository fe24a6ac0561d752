"""EventBus: the ABC every batch-publish destination implements."""

from __future__ import annotations

import abc
from collections.abc import Sequence

from .models import BusEntry, EntryOutcome


class EventBus(abc.ABC):
    """A message bus bound to a single destination.

    ``publish_batch`` does not fail atomically: it returns one
    :class:`EntryOutcome` per entry, in request order, and raises only when
    the call as a whole could not be made.
    """

    async def start(self) -> None:
        """Acquire clients / connections.  Default: nothing to do."""

    async def stop(self) -> None:
        """Release clients / connections.  Default: nothing to do."""

    @abc.abstractmethod
    async def publish_batch(self, entries: Sequence[BusEntry]) -> list[EntryOutcome]:
        """Publish *entries* in one call.

        Raises :class:`~cdc_publisher.errors.BusTransportError` when the call
        fails as a whole and :class:`~cdc_publisher.errors.ConfigurationError`
        when the destination is unusable.
        """
        ...
