"""Publisher configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars,
which is how the Lambda runtime hands configuration to the function.
"""

from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from .constants import DEFAULT_TIME_FORMAT, SNS_MAX_BATCH_BYTES, SNS_MAX_BATCH_ENTRIES


class BusConfig(BaseSettings):
    """SNS destination and client settings."""

    model_config = {"env_prefix": "EVENT_BUS_"}

    topic_arn: str = Field(
        min_length=1,
        validation_alias=AliasChoices("topic_arn", "EVENT_BUS_TOPIC_ARN", "CVX_EVENT_BUS"),
        description="ARN of the SNS topic events are published to",
    )
    region: str | None = Field(
        default=None,
        validation_alias=AliasChoices("region", "EVENT_BUS_REGION", "AWS_REGION"),
        description="AWS region of the topic (falls back to the boto3 default chain)",
    )
    endpoint_url: str | None = Field(
        default=None,
        description="Custom SNS endpoint URL (e.g. for LocalStack)",
    )
    connect_timeout_seconds: float = Field(default=5.0, description="Socket connect timeout")
    read_timeout_seconds: float = Field(default=10.0, description="Socket read timeout")
    max_transport_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts botocore makes per call on throttling / 5xx",
    )


class BatchConfig(BaseSettings):
    """Packing limits and per-call timeout for batch publishing."""

    model_config = {"env_prefix": "BATCH_"}

    max_entries: int = Field(
        default=SNS_MAX_BATCH_ENTRIES,
        ge=1,
        le=SNS_MAX_BATCH_ENTRIES,
        description="Maximum entries per publish call",
    )
    max_bytes: int = Field(
        default=SNS_MAX_BATCH_BYTES,
        ge=1,
        le=SNS_MAX_BATCH_BYTES,
        description="Maximum total payload size (bodies + attributes) per publish call",
    )
    publish_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound on a single publish call",
    )


class RetryConfig(BaseSettings):
    """Handler-level retry of unpublished events, driven by Tenacity.

    ``max_attempts=1`` disables retrying; the dispatcher itself never retries.
    """

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(
        default=1, ge=1, description="Total dispatch attempts per invocation"
    )
    initial_wait_seconds: float = Field(
        default=0.2, description="Initial backoff wait in seconds"
    )
    max_wait_seconds: float = Field(default=2.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class PublisherConfig(BaseSettings):
    """Root configuration for the change-event publisher.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "PUBLISHER_"}

    time_format: str = Field(
        default=DEFAULT_TIME_FORMAT,
        description="strptime format of the embedded event-time field",
    )
    carry_payload: bool = Field(
        default=False,
        description="Carry the full post-change image forward as the event payload",
    )
    log_json: bool = Field(default=True, description="Render logs as JSON lines")
    log_level: str = Field(default="INFO", description="Root log level")

    bus: BusConfig = Field(default_factory=BusConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
