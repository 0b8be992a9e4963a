"""Shared logger helpers.

USAGE:
    from tempokey.infrastructure.observability.logger_template import (
        get_module_logger,
        log_operation,
    )

    logger = get_module_logger(__name__)

    async with log_operation(logger, "analysis.batch", batch_size=20):
        await run_batch()
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


def get_module_logger(name: str) -> logging.Logger:
    """Get logger for module (pass __name__)."""
    return logging.getLogger(name)


# Yo, this is how long-running steps get timed! It logs <op>.started, then either
# <op>.completed with duration_ms or <op>.failed with the error and traceback, and
# re-raises. Context kwargs land in every line as extra fields. CancelledError is NOT an
# Exception subclass, so a superseded stream logs started but no failure - that's intended,
# cancellation isn't an error.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log start/end of an operation with timing.

    The yielded dict can be filled with result fields that are merged into the
    completion log line.
    """
    start = time.monotonic()
    result: dict[str, Any] = {}
    logger.info(f"{operation}.started", extra=context)

    try:
        yield result
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"{operation}.completed",
        extra={**context, **result, "duration_ms": duration_ms},
    )
