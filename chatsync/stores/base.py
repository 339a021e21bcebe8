"""Observable collections shared between the sync client and its viewers."""

import logging
from typing import Any, Callable, Iterator

from .records import MessageRecord, UserRecord

logger = logging.getLogger(__name__)

ADD = "add"
REMOVE = "remove"

ChangeCallback = Callable[[str, Any], None]


class ObservableStore:
    """Base for stores that notify subscribers of every change.

    Subscribers are called synchronously, in subscription order, before the
    mutating method returns. A subscriber that raises is logged and skipped
    so the remaining subscribers and the caller are unaffected.
    """

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a change callback.

        Args:
            callback: Called as ``callback(action, record)`` where action is
                ``"add"`` or ``"remove"``.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, action: str, record: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(action, record)
            except Exception as e:
                logger.error(
                    f"{type(self).__name__} subscriber failed on {action}: {e}",
                    exc_info=True,
                )


class MessageStore(ObservableStore):
    """Append-only, arrival-ordered list of messages."""

    def __init__(self) -> None:
        super().__init__()
        self._messages: list[MessageRecord] = []

    def append_message(self, record: MessageRecord) -> None:
        self._messages.append(record)
        self._notify(ADD, record)

    @property
    def messages(self) -> list[MessageRecord]:
        """Snapshot of all messages in arrival order."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[MessageRecord]:
        return iter(list(self._messages))


class UserStore(ObservableStore):
    """Online users, looked up by nickname with first-match semantics.

    Nicknames are not forced to be unique: two joins for the same nickname
    yield two entries, and a part removes only the first.
    """

    def __init__(self) -> None:
        super().__init__()
        self._users: list[UserRecord] = []

    def add_user(self, record: UserRecord) -> None:
        self._users.append(record)
        self._notify(ADD, record)

    def remove_first_matching(
        self, predicate: Callable[[UserRecord], bool]
    ) -> UserRecord | None:
        """Remove the first user for which ``predicate`` is true.

        Returns:
            The removed record, or None if nothing matched.
        """
        for index, user in enumerate(self._users):
            if predicate(user):
                del self._users[index]
                self._notify(REMOVE, user)
                return user
        return None

    def find(self, nick_name: str) -> UserRecord | None:
        for user in self._users:
            if user.nick_name == nick_name:
                return user
        return None

    @property
    def users(self) -> list[UserRecord]:
        """Snapshot of online users in join order."""
        return list(self._users)

    def sorted_nick_names(self) -> list[str]:
        """Nicknames sorted case-insensitively, as a user list shows them."""
        return sorted((u.nick_name for u in self._users), key=str.lower)

    def __len__(self) -> int:
        return len(self._users)

    def __iter__(self) -> Iterator[UserRecord]:
        return iter(list(self._users))
