"""Observable message and user stores.

The sync client writes to these stores; any viewer subscribes to them and
renders the changes.
"""

from .base import ADD, REMOVE, MessageStore, ObservableStore, UserStore
from .records import JOINED_MARKER, PARTED_MARKER, MessageRecord, UserRecord

__all__ = [
    "ADD",
    "REMOVE",
    "ObservableStore",
    "MessageStore",
    "UserStore",
    "MessageRecord",
    "UserRecord",
    "JOINED_MARKER",
    "PARTED_MARKER",
]
