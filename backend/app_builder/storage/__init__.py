from .base import MessageStore, make_project_name
from .memory import MemoryMessageStore
from .sqlite import SQLiteMessageStore

__all__ = [
    "MessageStore",
    "MemoryMessageStore",
    "SQLiteMessageStore",
    "make_project_name",
]
