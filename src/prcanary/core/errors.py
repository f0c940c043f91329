"""
Structured error types for the prcanary control plane.

Every failure the control plane knows how to handle has a typed error with
the metadata needed to decide what happens next: retry it, drop it, or park
the environment in ``Degraded`` until an operator (or a new revision) fixes
it.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure the controller reacts to
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry canary id, revision and resource
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       CanaryError                                │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  StaleEvent        ValidationError    ConfigError               │
        │  (SIGNAL)          (VALIDATION)       (CONFIG)                  │
        │                         │                                        │
        │                    InvalidTagError                               │
        │                                                                  │
        │  ApplierError (APPLIER)                                          │
        │       │                                                          │
        │  ConflictError     NotFoundError   InvalidResourceError          │
        │  (retryable)       (benign delete) (permanent)                   │
        │  UnavailableError                                                │
        │  (retryable)                                                     │
        │                                                                  │
        │  InvalidTransitionError (ValueError, state machine guard)        │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Applier errors carry their retry semantics:

    >>> UnavailableError("gateway timeout").retryable
    True
    >>> InvalidResourceError("bad spec").retryable
    False

    Adding context fluently:

    >>> err = ConflictError("resourceVersion mismatch")
    >>> err.with_context(canary_id="42", resource="Deployment/ns-42/deploy-42")
    ConflictError('resourceVersion mismatch', category=APPLIER)
    >>> err.context.canary_id
    '42'

Guardrails:
    ❌ DON'T: Raise a bare Exception from an applier
    ✅ DO: Map the backend failure onto the applier taxonomy

    ❌ DON'T: Mark ValidationError retryable
    ✅ DO: Wait for a new revision to supersede invalid desired state

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    prcanary, reconciliation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for classification, alerting and retry decisions.

    Attributes:
        SIGNAL: Lifecycle feed problems (stale or duplicate events)
        VALIDATION: Malformed tags, templates or desired state
        CONFIG: Missing or invalid settings
        APPLIER: Failures reported by the resource applier
        NETWORK: Transport-level failures talking to external systems
        INTERNAL: Bugs, unexpected state
    """

    SIGNAL = "SIGNAL"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    APPLIER = "APPLIER"
    NETWORK = "NETWORK"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        canary_id: Environment the error belongs to
        revision: Desired revision being reconciled when it happened
        resource: ``Kind/namespace/name`` of the resource involved
        operation: Applier operation (create, update, delete, exists)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    canary_id: str | None = None
    revision: str | None = None
    resource: str | None = None
    operation: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["canary_id", "revision", "resource", "operation", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CanaryError(Exception):
    """
    Base exception for all prcanary errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    only pass what differs from the domain default.

    Examples:
        >>> error = CanaryError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
        >>> error.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CanaryError:
        """
        Add context to this error (fluent API).

        Usage:
            raise UnavailableError("gateway down").with_context(
                canary_id="42", operation="create"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SIGNAL / VALIDATION / CONFIG
# =============================================================================


class StaleEvent(CanaryError):
    """
    A lifecycle event that does not advance the desired state.

    Raised by the registry for duplicates, out-of-order revisions and
    updates arriving after a close. Callers log and drop it.
    """

    default_category = ErrorCategory.SIGNAL


class ValidationError(CanaryError):
    """
    Desired state, template or input failed validation.

    Never retryable: the same input will fail the same way. The environment
    stays blocked until a new revision supersedes the bad one.
    """

    default_category = ErrorCategory.VALIDATION


class InvalidTagError(ValidationError):
    """A tag value failed the CanaryID syntax check."""


class ConfigError(CanaryError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# APPLIER TAXONOMY
# =============================================================================


class ApplierError(CanaryError):
    """Base for failures surfaced by a resource applier."""

    default_category = ErrorCategory.APPLIER


class ConflictError(ApplierError):
    """Concurrent modification; retry with refreshed state."""

    default_retryable = True


class NotFoundError(ApplierError):
    """The resource does not exist. Benign when deleting."""


class InvalidResourceError(ApplierError):
    """The backend rejected the resource as malformed. Permanent."""


class UnavailableError(ApplierError):
    """Backend unreachable, overloaded or past its deadline. Transient."""

    default_retryable = True


# =============================================================================
# STATE MACHINE
# =============================================================================


class InvalidTransitionError(ValueError):
    """Raised when an illegal state transition is attempted.

    Transition validation is strict. If a legitimate transition is blocked,
    add it to ``VALID_TRANSITIONS`` explicitly.
    """

    def __init__(self, current: str, target: str, enum_name: str = "State") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, CanaryError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def get_retry_after(error: Exception) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, CanaryError):
        return error.retry_after
    return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CanaryError",
    "StaleEvent",
    "ValidationError",
    "InvalidTagError",
    "ConfigError",
    "ApplierError",
    "ConflictError",
    "NotFoundError",
    "InvalidResourceError",
    "UnavailableError",
    "InvalidTransitionError",
    "is_retryable",
    "get_retry_after",
]
