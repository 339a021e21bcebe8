"""Records held by the message and user stores."""

from dataclasses import dataclass
from datetime import datetime

# Bodies of the synthetic messages announcing presence changes
JOINED_MARKER = "Joined"
PARTED_MARKER = "Parted"


@dataclass(frozen=True)
class MessageRecord:
    """A chat line, either user-authored or a synthetic join/part notice."""

    nick_name: str
    body: str
    occurred_at: datetime  # Aware UTC
    avatar_key: str = ""
    kind: str = "message"  # "message", "join", "part"

    @property
    def is_synthetic(self) -> bool:
        """True for locally generated join/part announcements."""
        return self.kind != "message"

    def to_dict(self) -> dict:
        """Convert to dict for display or export."""
        return {
            "nick_name": self.nick_name,
            "body": self.body,
            "occurred_at": self.occurred_at.isoformat(),
            "avatar_key": self.avatar_key,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class UserRecord:
    """An online user."""

    nick_name: str
    avatar_key: str = ""
