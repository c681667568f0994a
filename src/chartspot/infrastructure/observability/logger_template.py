"""Shared logger helpers.

USAGE:
    logger = logging.getLogger(__name__)

    async with log_operation(logger, "load_ranking", entries=100):
        await do_work()
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


# Yo, this context manager logs start/end with automatic duration tracking. On exception it
# logs the failure with exc_info=True and re-raises so the caller decides what to do. The
# **context args become extra fields on every line (visible in JSON logs).
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log operation start/end with timing.

    Logs:
    - {operation}.started with context fields
    - {operation}.completed with context + duration_ms
    - {operation}.failed with context + duration_ms + error details

    Yields:
        A dict the body may fill with result fields for the completion line

    Example:
        >>> async with log_operation(logger, "load_ranking") as result:
        ...     items = await load()
        ...     result["items"] = len(items)
    """
    start = time.monotonic()
    result: dict[str, Any] = {}
    logger.info("%s.started", operation, extra=context)

    try:
        yield result
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            "%s.failed",
            operation,
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
        "%s.completed (%d ms)",
        operation,
        duration_ms,
        extra={**context, **result, "duration_ms": duration_ms},
    )
