"""Message persistence: the store interface and its SQLite implementation."""

from chatloop.store.base import MessageStore
from chatloop.store.sqlite import SQLiteMessageStore

__all__ = [
    "MessageStore",
    "SQLiteMessageStore",
]
