"""Long-polling sync client for the chat server.

Joins the chat, then keeps a single long-poll open against the server's event
log and replays each returned batch into the message and user stores.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TYPE_CHECKING

import httpx

from ..stores import (
    JOINED_MARKER,
    PARTED_MARKER,
    MessageRecord,
    MessageStore,
    UserRecord,
    UserStore,
)
from .cursor import SyncCursor
from .events import ChatEvent, EventDecodeError, EventType, decode_batch
from .timestamps import TimestampError, parse_timestamp

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

USER_AGENT = "chatsync/0.1.0"

# Floor for every retry wait; a failing server never gets a tight loop
MIN_RETRY_DELAY_SECONDS = 0.01


class SyncState(Enum):
    """Lifecycle state of the sync client."""

    IDLE = "idle"
    JOINING = "joining"
    POLLING = "polling"
    STOPPED = "stopped"


class PollStatus(Enum):
    """Outcome of a single poll."""

    SUCCESS = "success"
    OFFLINE = "offline"  # Connection refused, DNS failure or timeout
    FAILED = "failed"  # Server answered with an error status
    INVALID = "invalid"  # Response body could not be decoded


@dataclass
class PollResult:
    """Result of a single long-poll request."""

    status: PollStatus
    events: list[ChatEvent] = field(default_factory=list)
    error: str | None = None
    timestamp: datetime | None = None


class SyncClient:
    """Client that keeps local stores in step with the chat server.

    Exactly one poll is in flight at a time and each batch is applied in
    full before the next poll is issued, so the cursor and the stores are
    only ever touched from one call chain.
    """

    def __init__(
        self,
        messages: MessageStore,
        users: UserStore,
        nick_name: str,
        email: str,
        base_url: str = "http://localhost:8080/",
        request_timeout: float = 10.0,
        poll_timeout: float = 60.0,
        retry_min_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        join_max_attempts: int = 5,
        join_backoff: float = 1.0,
        allow_duplicate_users: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the sync client.

        Args:
            messages: Store that receives chat and join/part messages.
            users: Store of online users.
            nick_name: Nickname asserted to the server.
            email: Email address asserted to the server.
            base_url: Base URL of the chat server.
            request_timeout: Timeout in seconds for join and message requests.
            poll_timeout: Client-side timeout in seconds for a long-poll.
            retry_min_delay: Delay after the first failed poll; doubles on
                each consecutive failure. Raised to
                ``MIN_RETRY_DELAY_SECONDS`` if smaller.
            retry_max_delay: Upper bound for any retry delay.
            join_max_attempts: Join attempts before giving up.
            join_backoff: Delay before the second join attempt.
            allow_duplicate_users: Keep one user entry per join even when the
                nickname is already online.
            transport: Optional httpx transport (used for testing).
        """
        self.messages = messages
        self.users = users
        self.nick_name = nick_name
        self.email = email
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.request_timeout = request_timeout
        self.poll_timeout = poll_timeout
        if retry_min_delay < MIN_RETRY_DELAY_SECONDS:
            logger.warning(
                f"retry_min_delay {retry_min_delay}s raised to {MIN_RETRY_DELAY_SECONDS}s"
            )
        self.retry_min_delay = max(retry_min_delay, MIN_RETRY_DELAY_SECONDS)
        self.retry_max_delay = max(retry_max_delay, self.retry_min_delay)
        self.join_max_attempts = join_max_attempts
        self.join_backoff = max(join_backoff, MIN_RETRY_DELAY_SECONDS)
        self.allow_duplicate_users = allow_duplicate_users

        self.cursor = SyncCursor()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._state = SyncState.IDLE
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._pending_sends: set[asyncio.Task] = set()
        self._consecutive_failures = 0
        self._last_poll: datetime | None = None

    @classmethod
    def from_config(
        cls,
        config: "Config",
        messages: MessageStore,
        users: UserStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SyncClient":
        """Build a client from loaded configuration."""
        return cls(
            messages=messages,
            users=users,
            nick_name=config.identity.nick_name,
            email=config.identity.email,
            base_url=config.server.base_url,
            request_timeout=config.server.request_timeout_seconds,
            poll_timeout=config.sync.poll_timeout_seconds,
            retry_min_delay=config.sync.retry_min_delay_seconds,
            retry_max_delay=config.sync.retry_max_delay_seconds,
            join_max_attempts=config.sync.join_max_attempts,
            join_backoff=config.sync.join_backoff_seconds,
            allow_duplicate_users=config.sync.allow_duplicate_users,
            transport=transport,
        )

    @property
    def state(self) -> SyncState:
        return self._state

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.request_timeout,
                transport=self._transport,
            )
        return self._client

    def _identity_params(self) -> dict[str, Any]:
        return {"nickName": self.nick_name, "email": self.email}

    async def _request(
        self,
        path: str,
        params: dict[str, Any],
        timeout: float | None = None,
    ) -> tuple[httpx.Response | None, str | None]:
        """Issue a GET request relative to the base URL.

        Returns:
            Tuple of (response, error_message). Exactly one is None.
        """
        client = self._get_client()
        try:
            response = await client.get(
                path,
                params=params,
                timeout=timeout if timeout is not None else self.request_timeout,
            )
        except httpx.ConnectError as e:
            return None, f"Connection failed: {e}"
        except httpx.TimeoutException:
            return None, "Connection timed out"
        except httpx.HTTPError as e:
            return None, f"Request error: {e}"

        if response.status_code >= 400:
            return None, f"HTTP {response.status_code}: {response.text[:200]}"

        return response, None

    async def join(self) -> bool:
        """Announce presence to the server.

        Retries with exponential backoff up to ``join_max_attempts`` times.

        Returns:
            True once the server acknowledged the join, False if every
            attempt failed or the client was stopped meanwhile.
        """
        self._state = SyncState.JOINING
        attempts = max(1, self.join_max_attempts)
        backoff = self.join_backoff

        for attempt in range(attempts):
            if self._stop_event and self._stop_event.is_set():
                return False

            _, error = await self._request("join", self._identity_params())
            if error is None:
                logger.info(f"Joined {self.base_url} as {self.nick_name}")
                return True

            logger.warning(f"Join failed ({error}), attempt {attempt + 1}/{attempts}")
            if attempt < attempts - 1:
                if await self._wait_for_stop(self._stop_event, backoff):
                    logger.info("Join abandoned, client stopping")
                    return False
                backoff = min(backoff * 2, self.retry_max_delay)

        logger.error(f"Giving up on joining {self.base_url} after {attempts} attempts")
        return False

    async def poll_once(self) -> PollResult:
        """Issue one long-poll for events newer than the cursor.

        Transport and decode problems are reported in the result, never
        raised. The cursor is not touched here; see ``apply_batch``.
        """
        params = {"since": self.cursor.value, **self._identity_params()}
        response, error = await self._request(
            "eventpoll", params, timeout=self.poll_timeout
        )

        if error:
            status = PollStatus.OFFLINE if "Connection" in error else PollStatus.FAILED
            logger.warning(f"Poll failed (since={params['since']}): {error}")
            return PollResult(status=status, error=error)

        try:
            events = decode_batch(response.content)
        except EventDecodeError as e:
            logger.warning(f"Discarding undecodable poll response: {e}")
            return PollResult(status=PollStatus.INVALID, error=str(e))

        self._last_poll = datetime.now(timezone.utc)
        return PollResult(
            status=PollStatus.SUCCESS,
            events=events,
            timestamp=self._last_poll,
        )

    def apply_batch(self, events: list[ChatEvent]) -> int:
        """Replay a batch of events into the stores, in order.

        Events with an unknown type or an unparsable timestamp still move
        the cursor but leave the stores untouched.

        Returns:
            Number of events that changed the stores.
        """
        applied = 0

        for event in events:
            self.cursor.advance(event.sequence)

            if event.type not in (EventType.MESSAGE, EventType.JOIN, EventType.PART):
                logger.debug(f"Unknown event: {event.type} (sequence {event.sequence})")
                continue

            try:
                occurred_at = parse_timestamp(event.date_time)
            except TimestampError as e:
                logger.warning(f"Dropping event {event.sequence}: {e}")
                continue

            if event.type == EventType.MESSAGE:
                logger.debug(f"MESSAGE: {event.nick_name}")
                self.messages.append_message(
                    MessageRecord(
                        nick_name=event.nick_name,
                        body=event.message or "",
                        occurred_at=occurred_at,
                        avatar_key=event.avatar_key,
                    )
                )

            elif event.type == EventType.JOIN:
                logger.debug(f"JOIN: {event.nick_name}")
                if self.allow_duplicate_users or self.users.find(event.nick_name) is None:
                    self.users.add_user(
                        UserRecord(nick_name=event.nick_name, avatar_key=event.avatar_key)
                    )
                else:
                    logger.debug(f"{event.nick_name} already online, not adding twice")
                self._announce(event, JOINED_MARKER, occurred_at)

            else:
                logger.debug(f"PART: {event.nick_name}")
                nick_name = event.nick_name
                self.users.remove_first_matching(lambda user: user.nick_name == nick_name)
                self._announce(event, PARTED_MARKER, occurred_at)

            applied += 1

        return applied

    def _announce(self, event: ChatEvent, marker: str, occurred_at: datetime) -> None:
        self.messages.append_message(
            MessageRecord(
                nick_name=event.nick_name,
                body=marker,
                occurred_at=occurred_at,
                avatar_key=event.avatar_key,
                kind=event.type,
            )
        )

    def _retry_delay(self) -> float:
        """Delay before the next poll after consecutive failures."""
        if self._consecutive_failures <= 0:
            return 0.0
        delay = self.retry_min_delay * (2 ** (self._consecutive_failures - 1))
        return max(min(delay, self.retry_max_delay), MIN_RETRY_DELAY_SECONDS)

    @staticmethod
    async def _wait_for_stop(stop_event: asyncio.Event | None, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds, waking early on ``stop_event``.

        Returns:
            True if the stop event was set.
        """
        if stop_event is None:
            await asyncio.sleep(timeout)
            return False
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def poll_loop(self, stop_event: asyncio.Event) -> None:
        """Poll and apply batches until ``stop_event`` is set.

        A successful poll is followed immediately by the next one. After a
        failure the loop waits with exponential backoff, waking early if the
        stop event is set.
        """
        logger.info(f"Starting poll loop at cursor {self.cursor.value}")

        while not stop_event.is_set():
            try:
                result = await self.poll_once()
            except Exception as e:
                logger.error(f"Poll loop error: {e}", exc_info=True)
                result = PollResult(status=PollStatus.FAILED, error=str(e))

            if result.status == PollStatus.SUCCESS:
                self._consecutive_failures = 0
                try:
                    self.apply_batch(result.events)
                except Exception as e:
                    logger.error(f"Failed to apply batch: {e}", exc_info=True)
                continue

            self._consecutive_failures += 1
            wait_time = self._retry_delay()
            logger.debug(f"Backing off poll for {wait_time}s")
            if await self._wait_for_stop(stop_event, wait_time):
                break

        logger.info("Poll loop stopped")

    async def run(self, stop_event: asyncio.Event | None = None) -> bool:
        """Join, then poll until ``stop_event`` is set.

        Returns:
            False if the join never succeeded, True after a clean stop.
        """
        self._stop_event = stop_event or asyncio.Event()
        try:
            if not await self.join():
                return False
            self._state = SyncState.POLLING
            await self.poll_loop(self._stop_event)
            return True
        finally:
            self._state = SyncState.STOPPED

    async def start(self) -> bool:
        """Join and start the poll loop as a background task."""
        if self._task:
            return True

        self._stop_event = asyncio.Event()
        if not await self.join():
            self._state = SyncState.STOPPED
            return False

        self._state = SyncState.POLLING
        self._task = asyncio.create_task(self.poll_loop(self._stop_event))
        return True

    async def stop(self) -> None:
        """Stop polling, abandon any in-flight poll and release the connection."""
        if self._stop_event:
            self._stop_event.set()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pending_sends:
            await asyncio.gather(*self._pending_sends, return_exceptions=True)

        await self.close()
        self._state = SyncState.STOPPED

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def post_message(self, text: str) -> bool:
        """Post a chat message and wait for the request to finish.

        Returns:
            True if the server accepted the request. Failures are logged.
        """
        params = {**self._identity_params(), "message": text}
        try:
            _, error = await self._request("message", params)
        except Exception as e:
            logger.error(f"Message send error: {e}", exc_info=True)
            return False

        if error:
            logger.warning(f"Message send failed: {error}")
            return False
        return True

    def send(self, text: str) -> None:
        """Post a chat message without waiting for the result.

        Must be called from within a running event loop. The message shows
        up in the message store once the server echoes it in a poll.
        """
        task = asyncio.get_running_loop().create_task(self.post_message(text))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    @property
    def last_poll(self) -> datetime | None:
        """Get timestamp of the last successful poll."""
        return self._last_poll

    def get_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        return {
            "state": self._state.value,
            "base_url": self.base_url,
            "nick_name": self.nick_name,
            "cursor": self.cursor.value,
            "last_poll": self._last_poll.isoformat() if self._last_poll else None,
            "consecutive_failures": self._consecutive_failures,
            "messages": len(self.messages),
            "users": len(self.users),
        }
