"""Environment registry and its persistence backends."""

from prcanary.registry.registry import EnvironmentRegistry
from prcanary.registry.store import (
    MemoryRegistryStore,
    RegistryEntry,
    RegistryStore,
    SqliteRegistryStore,
)

__all__ = [
    "EnvironmentRegistry",
    "MemoryRegistryStore",
    "RegistryEntry",
    "RegistryStore",
    "SqliteRegistryStore",
]
