"""chatmem persistence layer."""

from chatmem.store.messages import ChatMemStoreError, MessageStore, StoreNotReadyError
from chatmem.store.pool import StorePool

__all__ = [
    "ChatMemStoreError",
    "MessageStore",
    "StoreNotReadyError",
    "StorePool",
]
