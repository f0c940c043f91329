"""Execution primitives: backoff, deadlines and the keyed worker pool."""

from prcanary.execution.keyed import KeyedWorkerPool
from prcanary.execution.retry import ExponentialBackoff
from prcanary.execution.timeout import TimeoutExpired, call_with_deadline

__all__ = [
    "ExponentialBackoff",
    "KeyedWorkerPool",
    "TimeoutExpired",
    "call_with_deadline",
]
