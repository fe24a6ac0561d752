"""SNS batch-publish bus.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)

from .bus import EventBus
from .constants import SNS_ATTRIBUTE_DATA_TYPE
from .config import BusConfig
from .errors import BusTransportError, ConfigurationError
from .models import BusEntry, EntryOutcome

logger = structlog.get_logger()

# Error codes meaning the topic or the credentials are unusable, not that
# this particular call failed.
_CONFIGURATION_ERROR_CODES = frozenset({
    "AccessDenied",
    "AuthorizationError",
    "ExpiredToken",
    "InvalidClientTokenId",
    "NotFound",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
})


class SnsEventBus(EventBus):
    """Publish entries to one SNS topic with ``PublishBatch``."""

    def __init__(self, config: BusConfig) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]

    @property
    def topic_arn(self) -> str:
        return self._config.topic_arn

    async def start(self) -> None:
        """Create the boto3 SNS client."""
        import boto3

        kwargs: dict = {
            "config": Config(
                connect_timeout=self._config.connect_timeout_seconds,
                read_timeout=self._config.read_timeout_seconds,
                retries={
                    "mode": "standard",
                    "total_max_attempts": self._config.max_transport_attempts,
                },
            ),
        }
        if self._config.region:
            kwargs["region_name"] = self._config.region
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        try:
            self._client = await asyncio.to_thread(boto3.client, "sns", **kwargs)
        except BotoCoreError as exc:
            raise ConfigurationError(f"cannot create SNS client: {exc}") from exc
        logger.info("sns_event_bus_started", topic_arn=self.topic_arn)

    async def stop(self) -> None:
        """Clean up the boto3 client."""
        self._client = None
        logger.info("sns_event_bus_stopped")

    async def publish_batch(self, entries: Sequence[BusEntry]) -> list[EntryOutcome]:
        assert self._client is not None, "SNS client not started"

        request = [
            {
                "Id": entry.entry_id,
                "Message": entry.body,
                "MessageAttributes": {
                    name: {"DataType": SNS_ATTRIBUTE_DATA_TYPE, "StringValue": value}
                    for name, value in entry.attributes.items()
                },
            }
            for entry in entries
        ]
        try:
            response = await asyncio.to_thread(
                self._client.publish_batch,
                TopicArn=self.topic_arn,
                PublishBatchRequestEntries=request,
            )
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code", "Unknown")
            detail = error.get("Message")
            message = f"{code}: {detail}" if detail else code
            if code in _CONFIGURATION_ERROR_CODES:
                raise ConfigurationError(message) from exc
            raise BusTransportError(message) from exc
        except (NoCredentialsError, PartialCredentialsError, EndpointConnectionError) as exc:
            raise ConfigurationError(str(exc)) from exc
        except BotoCoreError as exc:
            raise BusTransportError(str(exc)) from exc

        return self._outcomes(entries, response)

    @staticmethod
    def _outcomes(entries: Sequence[BusEntry], response: dict) -> list[EntryOutcome]:
        """Map the Successful / Failed lists back onto the request order."""
        by_id: dict[str, EntryOutcome] = {}
        for item in response.get("Successful", []):
            by_id[item["Id"]] = EntryOutcome(entry_id=item["Id"], message_id=item["MessageId"])
        for item in response.get("Failed", []):
            by_id[item["Id"]] = EntryOutcome(
                entry_id=item["Id"],
                code=item.get("Code"),
                reason=item.get("Message") or item.get("Code") or "rejected",
                sender_fault=bool(item.get("SenderFault", False)),
            )

        outcomes: list[EntryOutcome] = []
        for entry in entries:
            outcome = by_id.get(entry.entry_id)
            if outcome is None:
                outcome = EntryOutcome(
                    entry_id=entry.entry_id,
                    code="MissingResult",
                    reason="entry absent from publish response",
                )
            outcomes.append(outcome)
        return outcomes
