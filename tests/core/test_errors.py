"""Tests for the error hierarchy."""

from __future__ import annotations

import pytest

from prcanary.core.errors import (
    ApplierError,
    CanaryError,
    ConflictError,
    ErrorCategory,
    InvalidResourceError,
    InvalidTagError,
    NotFoundError,
    StaleEvent,
    UnavailableError,
    ValidationError,
    get_retry_after,
    is_retryable,
)


class TestCanaryError:
    def test_defaults(self):
        error = CanaryError("boom")
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.retry_after is None

    def test_with_context_splits_known_fields_and_metadata(self):
        error = UnavailableError("down").with_context(canary_id="42", operation="create", attempt=3)

        assert error.context.canary_id == "42"
        assert error.context.operation == "create"
        assert error.context.metadata == {"attempt": 3}
        assert error.to_dict()["context"] == {"canary_id": "42", "operation": "create", "attempt": 3}

    def test_cause_is_chained(self):
        cause = OSError("reset")
        error = UnavailableError("down", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "reset"


@pytest.mark.parametrize(
    "error,category,retryable",
    [
        (ConflictError("x"), ErrorCategory.APPLIER, True),
        (UnavailableError("x"), ErrorCategory.APPLIER, True),
        (NotFoundError("x"), ErrorCategory.APPLIER, False),
        (InvalidResourceError("x"), ErrorCategory.APPLIER, False),
        (ValidationError("x"), ErrorCategory.VALIDATION, False),
        (InvalidTagError("x"), ErrorCategory.VALIDATION, False),
        (StaleEvent("x"), ErrorCategory.SIGNAL, False),
    ],
)
def test_taxonomy(error, category, retryable):
    assert error.category == category
    assert is_retryable(error) is retryable


def test_applier_errors_share_a_base():
    for cls in (ConflictError, NotFoundError, InvalidResourceError, UnavailableError):
        assert issubclass(cls, ApplierError)


def test_builtin_retryability():
    assert is_retryable(ConnectionError())
    assert not is_retryable(KeyError())


def test_retry_after():
    assert get_retry_after(UnavailableError("x", retry_after=3.0)) == 3.0
    assert get_retry_after(RuntimeError()) is None
