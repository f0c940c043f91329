"""Resource appliers: the controller's only path to the cluster."""

from prcanary.applier.base import ResourceApplier
from prcanary.applier.http import HttpResourceApplier
from prcanary.applier.memory import InMemoryResourceApplier

__all__ = [
    "HttpResourceApplier",
    "InMemoryResourceApplier",
    "ResourceApplier",
]
