"""
Bundled implementations of the store contract.

The in-memory store keeps everything in process. It supports TTLs, prefix
listing and versioned writes, which makes it the reference backend for tests
and single-process deployments.
"""

from .memory_store import MemoryStore, TTLEntry

__all__ = ["MemoryStore", "TTLEntry"]
