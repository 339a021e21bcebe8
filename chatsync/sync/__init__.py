"""Long-poll synchronization with the chat server.

Tracks a cursor into the server's event log and replays ordered event
batches into the message and user stores.
"""

from .cursor import SyncCursor
from .events import ChatEvent, EventDecodeError, EventType, decode_batch
from .sync_client import PollResult, PollStatus, SyncClient, SyncState
from .timestamps import TimestampError, parse_timestamp

__all__ = [
    "ChatEvent",
    "EventDecodeError",
    "EventType",
    "decode_batch",
    "SyncCursor",
    "SyncClient",
    "SyncState",
    "PollResult",
    "PollStatus",
    "TimestampError",
    "parse_timestamp",
]
