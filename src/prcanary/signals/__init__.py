"""Lifecycle signal sources (polling and push) and their canonical events."""

from prcanary.signals.base import EventDeduplicator, SignalEvent, SignalHandler
from prcanary.signals.polling import OpenReference, PollingSignalSource, ReferenceLister
from prcanary.signals.push import PushSignalSource

__all__ = [
    "EventDeduplicator",
    "OpenReference",
    "PollingSignalSource",
    "PushSignalSource",
    "ReferenceLister",
    "SignalEvent",
    "SignalHandler",
]
