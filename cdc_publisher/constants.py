"""Field names, defaults and bus limits shared across the publisher."""

from __future__ import annotations

# Reserved attributes carried inside every item image.
TYPENAME_FIELD = "__typename"
ID_FIELD = "id"
TIME_FIELD = "__time"
USER_FIELD = "__user"

UNKNOWN_ACTOR = "unknown"
CONTENT_TYPE = "application/json"

# YYYY-MM-DDThh:mm:ssZZZZ, e.g. 2024-01-01T10:00:00+0000
DEFAULT_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# SNS PublishBatch limits.
SNS_MAX_BATCH_ENTRIES = 10
SNS_MAX_BATCH_BYTES = 256 * 1024
# DataType sent with every message attribute; SNS counts it toward the
# batch size alongside the attribute name and value.
SNS_ATTRIBUTE_DATA_TYPE = "String"
