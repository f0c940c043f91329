"""Canary identifiers and request tags.

A CanaryID names one isolated environment (in practice the pull request
number). A request tag is the raw header/metadata value; it only becomes a
CanaryID after passing a strict syntax check so that arbitrary header
content can never be reflected into routing rules or resource names.

Example:
    >>> parse_tag("42")
    '42'
    >>> parse_tag("42; drop") is None
    True
    >>> parse_tag(None) is None
    True
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NewType

from prcanary.core.errors import InvalidTagError

CanaryID = NewType("CanaryID", str)

DEFAULT_TAG_HEADER = "x-canary-id"
DEFAULT_MAX_LENGTH = 18

_DIGITS = re.compile(r"[0-9]+")


class Protocol(str, Enum):
    """Transport protocols the routing layer serves."""

    HTTP = "http"
    GRPC = "grpc"


def is_valid_tag(value: object, max_length: int = DEFAULT_MAX_LENGTH) -> bool:
    """True if *value* is a syntactically valid CanaryID."""
    return (
        isinstance(value, str)
        and 0 < len(value) <= max_length
        and _DIGITS.fullmatch(value) is not None
    )


def parse_tag(value: str | None, max_length: int = DEFAULT_MAX_LENGTH) -> CanaryID | None:
    """Validate a raw tag value; anything malformed is treated as absent.

    The literal value is preserved (no trimming, no normalization), so
    ``"042"`` and ``"42"`` are different identifiers.
    """
    if value is None or not is_valid_tag(value, max_length):
        return None
    return CanaryID(value)


def canary_id(value: str | int, max_length: int = DEFAULT_MAX_LENGTH) -> CanaryID:
    """Strict constructor for identifiers coming from trusted feeds.

    Raises:
        InvalidTagError: If the value is not a valid CanaryID.
    """
    text = str(value)
    if not is_valid_tag(text, max_length):
        raise InvalidTagError(f"invalid canary id: {text!r}")
    return CanaryID(text)
