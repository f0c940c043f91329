"""Tests for tag syntax validation."""

from __future__ import annotations

import pytest

from prcanary.core.errors import InvalidTagError
from prcanary.model.tags import canary_id, is_valid_tag, parse_tag


@pytest.mark.parametrize("value", ["0", "42", "042", "1" * 18])
def test_valid(value):
    assert is_valid_tag(value)
    assert parse_tag(value) == value


@pytest.mark.parametrize(
    "value",
    [None, "", " ", "42 ", " 42", "4-2", "-1", "+1", "1e3", "١٢", "42\n", "1" * 19, 42],
)
def test_invalid_is_absent(value):
    assert not is_valid_tag(value)
    if value is None or isinstance(value, str):
        assert parse_tag(value) is None


def test_max_length_is_configurable():
    assert parse_tag("12345", max_length=4) is None
    assert parse_tag("1234", max_length=4) == "1234"


def test_canary_id_accepts_ints():
    assert canary_id(42) == "42"


def test_canary_id_is_strict():
    with pytest.raises(InvalidTagError):
        canary_id("pr-42")
