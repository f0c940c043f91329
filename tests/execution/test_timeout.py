"""Tests for call deadlines."""

from __future__ import annotations

import asyncio

import pytest

from prcanary.core.errors import UnavailableError, is_retryable
from prcanary.execution.timeout import TimeoutExpired, call_with_deadline


@pytest.mark.asyncio
async def test_returns_result_within_deadline():
    async def quick():
        return 5

    assert await call_with_deadline(quick(), 1.0) == 5


@pytest.mark.asyncio
async def test_expired_deadline_is_unavailable():
    with pytest.raises(TimeoutExpired) as exc_info:
        await call_with_deadline(asyncio.sleep(1.0), 0.01, operation="create Namespace/ns-42")

    error = exc_info.value
    assert isinstance(error, UnavailableError)
    assert is_retryable(error)
    assert error.operation == "create Namespace/ns-42"
    assert error.context.operation == "create Namespace/ns-42"
    assert error.elapsed is not None


@pytest.mark.asyncio
async def test_rejects_non_positive_timeout():
    coro = asyncio.sleep(0)
    with pytest.raises(ValueError):
        await call_with_deadline(coro, 0)
    coro.close()


@pytest.mark.asyncio
async def test_inner_errors_propagate():
    async def boom():
        raise KeyError("x")

    with pytest.raises(KeyError):
        await call_with_deadline(boom(), 1.0)
