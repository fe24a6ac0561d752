"""structlog output for the Lambda function.

Every line goes to stdout, which the Lambda runtime forwards to CloudWatch
Logs.  The request id bound by ``lambda_handler`` is merged from
contextvars, so all lines of one invocation can be filtered together.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Chatty third-party loggers kept at WARNING regardless of the root level.
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3")


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Route structlog and stdlib records through one stdout handler.

    Called once per container, on the first invocation.  Any handler the
    runtime pre-installed on the root logger is replaced.

    Parameters
    ----------
    json:
        If *True* (the default), emit one JSON object per line so
        CloudWatch Logs Insights can query the fields.  If *False*, use
        the console renderer for local runs.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    # The Lambda runtime pre-installs its own root handler; replace it.
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))
