from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from .logging import log_event

T = TypeVar("T")


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    reraise: bool = False,
    **fields: Any,
) -> T | None:
    """Run a best-effort side call such as closing a client or archiving a report.

    Failures are logged under ``event`` and replaced by ``default`` unless
    ``reraise`` is set. Cancellation is never swallowed.
    """
    try:
        outcome = action()
        return await outcome if inspect.isawaitable(outcome) else outcome
    except asyncio.CancelledError:
        raise
    except Exception as error:
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            **fields,
        )
        if reraise:
            raise
    return default


async def with_timeout(awaitable: Awaitable[T], *, timeout_seconds: float, operation: str) -> T:
    """Await ``awaitable`` for at most ``timeout_seconds``.

    Expiry surfaces as a builtin ``TimeoutError`` whose message names
    ``operation``.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=max(0.001, timeout_seconds))
    except asyncio.TimeoutError as error:
        raise TimeoutError(f"{operation} timed out after {timeout_seconds:g}s") from error
