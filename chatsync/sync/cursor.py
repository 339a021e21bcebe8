"""Watermark into the server's event log."""

import logging

logger = logging.getLogger(__name__)


class SyncCursor:
    """Tracks the highest event sequence number seen so far.

    The value never decreases. It is sent back to the server as ``since``
    so that each poll only returns strictly newer events.
    """

    def __init__(self, initial: int = 0):
        self._value = initial

    @property
    def value(self) -> int:
        return self._value

    def advance(self, sequence: int) -> bool:
        """Move the cursor forward to ``sequence`` if it is newer.

        Returns:
            True if the cursor moved.
        """
        if sequence <= self._value:
            if sequence < self._value:
                logger.debug(f"Ignoring stale sequence {sequence} (cursor at {self._value})")
            return False
        self._value = sequence
        return True

    def __repr__(self) -> str:
        return f"SyncCursor({self._value})"
