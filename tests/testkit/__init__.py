"""
Testkit package for scheduler lifecycle tests.

Provides an in-memory store with failure injection and record factories.
"""
from .memory_store import InMemoryLifecycleStore, StoreFailure
from .factories.lifecycle_factory import LifecycleFactory

__all__ = [
    "InMemoryLifecycleStore",
    "StoreFailure",
    "LifecycleFactory",
]
