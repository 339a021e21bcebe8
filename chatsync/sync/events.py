"""Wire format for events returned by the chat server's event poll."""

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class EventType:
    """Event types understood by the sync client."""

    MESSAGE = "message"
    JOIN = "join"
    PART = "part"


class EventDecodeError(ValueError):
    """Raised when a poll response cannot be decoded into events."""


@dataclass
class ChatEvent:
    """A single server-assigned entry from the event log."""

    sequence: int
    type: str  # "message", "join", "part"; anything else is ignored
    nick_name: str
    date_time: str  # Raw UTC timestamp text, parsed when applied
    avatar_key: str = ""
    message: str | None = None  # Only present for type == "message"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatEvent":
        """Create from a decoded JSON event object.

        Raises:
            EventDecodeError: If a required field is missing or mistyped.
        """
        if not isinstance(data, dict):
            raise EventDecodeError(f"Event must be an object, got {type(data).__name__}")

        try:
            sequence = data["sequence"]
            event_type = data["type"]
            nick_name = data["nickName"]
            date_time = data["dateTime"]
        except KeyError as e:
            raise EventDecodeError(f"Event missing field {e}") from e

        # bool is an int subclass but never a valid sequence
        if not isinstance(sequence, int) or isinstance(sequence, bool):
            raise EventDecodeError(f"Invalid sequence: {sequence!r}")
        if not isinstance(event_type, str) or not isinstance(nick_name, str):
            raise EventDecodeError(f"Invalid type or nickName in event {sequence}")

        message = data.get("message")
        if message is not None and not isinstance(message, str):
            message = str(message)

        return cls(
            sequence=sequence,
            type=event_type,
            nick_name=nick_name,
            date_time=date_time,
            avatar_key=data.get("gravatar") or data.get("gravatarKey") or "",
            message=message,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {
            "sequence": self.sequence,
            "type": self.type,
            "nickName": self.nick_name,
            "dateTime": self.date_time,
            "gravatar": self.avatar_key,
        }
        if self.message is not None:
            data["message"] = self.message
        return data


def decode_batch(payload: Any) -> list[ChatEvent]:
    """Decode a poll response body into an ordered list of events.

    Args:
        payload: Either the raw response text or already-decoded JSON.

    Returns:
        Events in the order the server sent them.

    Raises:
        EventDecodeError: If the body is not a JSON array of valid events.
            The batch is decoded as a whole; nothing is returned on failure.
    """
    if isinstance(payload, (str, bytes)):
        if not payload.strip():
            return []
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
            raise EventDecodeError(f"Invalid JSON in poll response: {e}") from e

    if payload is None:
        return []
    if not isinstance(payload, list):
        raise EventDecodeError(
            f"Poll response must be a JSON array, got {type(payload).__name__}"
        )

    return [ChatEvent.from_dict(item) for item in payload]
