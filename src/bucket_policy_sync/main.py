"""Entry points for the bucket policy reconciliation engine.

Two ways in:
- handler(event, context): Lambda entry point, invoked by the registry's
  change stream. The event payload is not inspected; every invocation is
  a full reconciliation.
- run(): one-shot process entry point returning an exit code.

A failed run raises from the Lambda handler so the trigger retries the
whole invocation.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from .config import Config, ConfigurationError
from .reconciler import Reconciler

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_LOG_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "aws_request_id",
    )
)

_LOG_HANDLER_NAME = "bucket-policy-sync"


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = True) -> None:
    """Configure logging on stdout.

    Safe to call on every warm Lambda invocation: the handler is installed once.
    """
    root_logger = logging.getLogger()
    if any(h.get_name() == _LOG_HANDLER_NAME for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_LOG_HANDLER_NAME)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Reduce noise from the AWS SDK
    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def handler(event: Any, context: Any) -> dict[str, Any]:
    """Lambda entry point.

    Raises:
        ConfigurationError: If the configuration is invalid.
        ReconciliationFailedError: If the run did not succeed.
    """
    config = Config.from_env()
    setup_logging(config.enable_json_logging)
    logger = logging.getLogger(__name__)

    logger.info(
        "Reconciliation requested",
        extra={
            "registry_table": config.registry_table,
            "bucket_prefix": config.bucket_prefix,
            "dry_run": config.dry_run,
            "request_id": getattr(context, "aws_request_id", None),
        },
    )

    try:
        result = Reconciler(config).reconcile_once()
        result.raise_for_error()
    except Exception as e:
        logger.error("Error processing registry change event", extra={"error": str(e)})
        raise

    logger.info("Bucket policies updated successfully")
    return {
        "status": "ok",
        "accounts": result.account_count,
        "buckets": len(result.outcomes),
        "dry_run": config.dry_run,
    }


def main() -> int:
    """Run one reconciliation.

    Returns:
        Exit code (0 for success, 1 for configuration or reconciliation failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.enable_json_logging)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting bucket policy reconciliation",
        extra={
            "registry_table": config.registry_table,
            "bucket_prefix": config.bucket_prefix,
            "region": config.default_region,
            "dry_run": config.dry_run,
            "fail_fast": config.fail_fast,
        },
    )

    result = Reconciler(config).reconcile_once()
    return 0 if result.success else 1


def run() -> None:
    """Entry point for the one-shot console script."""
    sys.exit(main())


if __name__ == "__main__":
    run()
