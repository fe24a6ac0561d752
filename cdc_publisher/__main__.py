"""Local entry point: publish a DynamoDB Streams event read from stdin.

    python -m cdc_publisher < stream-event.json
"""

from __future__ import annotations

import asyncio
import json
import sys

from .handler import build_handler


def main() -> None:
    event = json.load(sys.stdin)
    handler = build_handler()
    result = asyncio.run(handler.handle_stream_event(event))
    print(result.model_dump_json())


if __name__ == "__main__":
    main()
