"""Store backends for the queue ledger."""

from .base import ChangeEvent, Store, StoreConflict, StoreDuplicate, StoreError, StoreUnavailable
from .memory import InMemoryStore

__all__ = [
    "ChangeEvent",
    "InMemoryStore",
    "Store",
    "StoreConflict",
    "StoreDuplicate",
    "StoreError",
    "StoreUnavailable",
]
