"""Deadlines for applier and backend calls.

Every remote call the controller makes runs under a deadline; an expired
deadline is reported as :class:`~prcanary.core.errors.UnavailableError`
so the controller treats it like any other transient backend failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from prcanary.core.errors import UnavailableError

T = TypeVar("T")


class TimeoutExpired(UnavailableError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(self, timeout: float, elapsed: float | None = None, operation: str = "operation"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)
        self.context.operation = operation


async def call_with_deadline(
    aw: Awaitable[T],
    timeout_seconds: float,
    operation: str = "operation",
) -> T:
    """Await *aw* for at most *timeout_seconds*.

    Raises:
        TimeoutExpired: If execution exceeds the deadline
        ValueError: If timeout_seconds <= 0
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    try:
        return await asyncio.wait_for(aw, timeout=timeout_seconds)
    except TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation,
        ) from None
