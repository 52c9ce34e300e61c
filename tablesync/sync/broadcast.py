"""
BroadcastChannel delivers quick-chat bubbles over a cursor poll.

Per sender:  Idle → Active → Idle
  Idle → Active    an event for the sender is accepted
  Active → Idle    its expiry timer fires, or a newer event supersedes it

Delivery is at-least-once; events are deduplicated by eventId. Expiry is
computed against the server's clock so a skewed local clock does not
shorten or stretch a bubble.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from tablesync.core.timers import OneShotTimer, Scheduler, wall_clock_ms
from tablesync.core.transport import ApiError, Transport, UnauthenticatedError, decode_reply
from tablesync.models.events import BroadcastEvent, QuickChatFeed
from tablesync.models.requests import QuickChatRequest, new_action_id

logger = logging.getLogger(__name__)

BubblesCallback = Callable[[Dict[str, BroadcastEvent]], None]
NoticeCallback = Callable[[str], None]
ErrorCallback = Callable[[ApiError], None]

SEEN_EVENT_CAP = 1000


class SeenEventSet:
    """
    eventIds already applied.

    Cleared wholesale once it grows past the cap instead of evicting: ids
    only increase, so a well-behaved server never replays a cleared id.
    """

    def __init__(self, cap: int = SEEN_EVENT_CAP) -> None:
        self._cap = cap
        self._ids: Set[int] = set()

    def __contains__(self, event_id: int) -> bool:
        return event_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, event_id: int) -> None:
        self._ids.add(event_id)
        if len(self._ids) > self._cap:
            logger.debug(f"Seen-event set passed {self._cap} ids, clearing")
            self._ids.clear()

    def clear(self) -> None:
        self._ids.clear()


@dataclass
class CooldownPolicy:
    """Last cooldown the server advertised. Used for hint text only."""
    default_cooldown_ms: int = 6000

    def observe(self, cooldown_ms: Optional[int]) -> None:
        if cooldown_ms is not None and cooldown_ms > 0:
            self.default_cooldown_ms = cooldown_ms

    def retry_after_ms(self, error: ApiError) -> int:
        value = error.detail.get("retryAfterMs")
        try:
            retry = int(value)
        except (TypeError, ValueError):
            return self.default_cooldown_ms
        return retry if retry > 0 else self.default_cooldown_ms


def is_cooldown_error(error: ApiError) -> bool:
    return error.status == 429 or "cooldown" in error.message.lower()


def cooldown_hint(retry_after_ms: int) -> str:
    seconds = max(1, round(retry_after_ms / 1000))
    return f"Quick chat is cooling down, try again in ~{seconds} seconds"


class SendStatus(Enum):
    SENT = "sent"
    INVALID = "invalid"
    COOLDOWN = "cooldown"
    FAILED = "failed"


@dataclass
class SendResult:
    status: SendStatus
    message: str = ""
    local_event_id: Optional[int] = None
    chat_event_id: Optional[int] = None
    retry_after_ms: Optional[int] = None
    error: Optional[ApiError] = None

    @property
    def ok(self) -> bool:
        return self.status == SendStatus.SENT


@dataclass
class _Slot:
    event: BroadcastEvent
    timer: OneShotTimer = field(repr=False)


class BroadcastChannel:
    def __init__(
        self,
        transport: Transport,
        room_id: str,
        viewer_id: str,
        scheduler: Scheduler,
        clock: Callable[[], int] = wall_clock_ms,
        poll_ms: int = 1000,
        default_cooldown_ms: int = 6000,
        local_echo_ttl_ms: int = 5000,
        seen_cap: int = SEEN_EVENT_CAP,
        on_change: Optional[BubblesCallback] = None,
        on_notice: Optional[NoticeCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        id_factory: Callable[[], str] = new_action_id,
    ) -> None:
        self._transport = transport
        self._path = f"/api/v1/rooms/{room_id}/quick-chats"
        self._viewer_id = viewer_id
        self._scheduler = scheduler
        self._clock = clock
        self._poll_ms = poll_ms
        self._local_echo_ttl_ms = local_echo_ttl_ms
        self._on_change = on_change
        self._on_notice = on_notice
        self._on_error = on_error
        self._id_factory = id_factory

        self.cooldown = CooldownPolicy(default_cooldown_ms)
        self._seen = SeenEventSet(seen_cap)
        self._slots: Dict[str, _Slot] = {}
        self._phrases: List[str] = []
        self._last_event_id = 0
        self._next_local_id = -1
        self._poll_timer = OneShotTimer(scheduler)
        self._polling = False
        self._running = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def last_event_id(self) -> int:
        return self._last_event_id

    @property
    def phrases(self) -> List[str]:
        return list(self._phrases)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    @property
    def poll_timer_pending(self) -> bool:
        return self._poll_timer.pending

    def bubbles(self) -> Dict[str, BroadcastEvent]:
        """Active event per sender. Reading never touches dedup or timers."""
        return {user_id: slot.event for user_id, slot in self._slots.items()}

    def pending_expiries(self) -> int:
        return sum(1 for slot in self._slots.values() if slot.timer.pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the catalog and live events (since 0), then start polling."""
        if self._running:
            return
        self._running = True
        self._stopped = False
        logger.info(f"Quick-chat channel started for {self._viewer_id} ({self._path})")
        await self._tick()

    def stop(self) -> None:
        """Cancel every timer and drop all channel state."""
        self._running = False
        self._stopped = True
        self._poll_timer.cancel()
        for slot in self._slots.values():
            slot.timer.cancel()
        had_bubbles = bool(self._slots)
        self._slots.clear()
        self._seen.clear()
        self._last_event_id = 0
        self._next_local_id = -1
        if had_bubbles:
            self._changed()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self) -> int:
        """
        Fetch events after the cursor and apply them.

        Returns how many events were newly accepted. Raises ApiError.
        """
        since = self._last_event_id
        data = await self._transport.get(self._path, params={"sinceEventId": since})
        if self._stopped:
            return 0
        feed = decode_reply(QuickChatFeed, data, "quick-chat")

        if feed.phrases:
            self._phrases = list(feed.phrases)
        self.cooldown.observe(feed.cooldown_ms)
        if feed.latest_event_id is not None and feed.latest_event_id > self._last_event_id:
            self._last_event_id = feed.latest_event_id

        server_now = feed.server_now_ms if feed.server_now_ms is not None else self._clock()
        accepted = 0
        for event in sorted(feed.events, key=lambda e: e.event_id):
            if self._accept(event, server_now):
                accepted += 1
        if accepted:
            logger.debug(f"Accepted {accepted} quick chat(s), cursor {since} → {self._last_event_id}")
            self._changed()
        return accepted

    async def _tick(self) -> None:
        if not self._running:
            return
        if self._polling:
            self._arm()
            return
        self._polling = True
        try:
            await self.poll()
        except UnauthenticatedError as e:
            logger.warning(f"Quick-chat polling stopped, session rejected: {e.message}")
            self._running = False
            self._poll_timer.cancel()
            self._report(e)
            return
        except ApiError as e:
            logger.warning(f"Quick-chat poll failed ({e.status}): {e.message}")
            self._report(e)
        finally:
            self._polling = False
        self._arm()

    def _arm(self) -> None:
        if self._running:
            self._poll_timer.arm(self._poll_ms, self._tick)

    # ------------------------------------------------------------------
    # Acceptance and expiry
    # ------------------------------------------------------------------

    def accept(self, event: BroadcastEvent, now_ms: int) -> bool:
        """Apply one event against the given clock reference; False if a duplicate."""
        accepted = self._accept(event, now_ms)
        if accepted:
            self._changed()
        return accepted

    def _accept(self, event: BroadcastEvent, now_ms: int) -> bool:
        if event.event_id in self._seen:
            return False
        self._seen.add(event.event_id)

        previous = self._slots.get(event.user_id)
        if previous is not None:
            previous.timer.cancel()

        slot = _Slot(event=event, timer=OneShotTimer(self._scheduler))
        self._slots[event.user_id] = slot
        ttl_ms = max(1, event.expire_at_ms - now_ms)
        slot.timer.arm(ttl_ms, lambda: self._expire(event.user_id, event.event_id))
        return True

    def _expire(self, user_id: str, event_id: int) -> None:
        slot = self._slots.get(user_id)
        if slot is None or slot.event.event_id != event_id:
            return
        del self._slots[user_id]
        self._changed()

    def _retract(self, event: BroadcastEvent) -> None:
        slot = self._slots.get(event.user_id)
        if slot is None or slot.event.event_id != event.event_id:
            return
        slot.timer.cancel()
        del self._slots[event.user_id]
        self._changed()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, phrase_id: str) -> SendResult:
        """
        Send a phrase with an optimistic local bubble.

        The local echo gets a negative id, so the server's own event for the
        same send arrives later as a different id and simply supersedes it.
        """
        if not self._running:
            message = "Quick chat is not connected"
            self._notice(message)
            return SendResult(SendStatus.FAILED, message)

        phrase_id = (phrase_id or "").strip().lower()
        if not phrase_id or (self._phrases and phrase_id not in self._phrases):
            message = f"Unknown quick chat phrase: {phrase_id or '-'}"
            self._notice(message)
            return SendResult(SendStatus.INVALID, message)

        now = self._clock()
        local = BroadcastEvent(
            event_id=self._next_local_id,
            user_id=self._viewer_id,
            phrase_id=phrase_id,
            created_at_ms=now,
            expire_at_ms=now + self._local_echo_ttl_ms,
        )
        self._next_local_id -= 1
        self.accept(local, now)

        request = QuickChatRequest(action_id=self._id_factory(), phrase_id=phrase_id)
        try:
            ack = await self._transport.post(self._path, request.to_wire())
        except UnauthenticatedError:
            self._retract(local)
            raise
        except ApiError as e:
            self._retract(local)
            if is_cooldown_error(e):
                retry_ms = self.cooldown.retry_after_ms(e)
                message = cooldown_hint(retry_ms)
                self._notice(message)
                return SendResult(SendStatus.COOLDOWN, message, local.event_id,
                                  retry_after_ms=retry_ms, error=e)
            message = f"Quick chat failed: {e.message}"
            logger.warning(f"{message} (status {e.status})")
            self._notice(message)
            return SendResult(SendStatus.FAILED, message, local.event_id, error=e)

        cooldown_ms = ack.get("cooldownMs")
        if isinstance(cooldown_ms, int):
            self.cooldown.observe(cooldown_ms)
        chat_event_id = ack.get("chatEventId")
        return SendResult(
            SendStatus.SENT,
            local_event_id=local.event_id,
            chat_event_id=chat_event_id if isinstance(chat_event_id, int) else None,
        )

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _changed(self) -> None:
        if self._on_change:
            self._on_change(self.bubbles())

    def _notice(self, message: str) -> None:
        if self._on_notice:
            self._on_notice(message)

    def _report(self, error: ApiError) -> None:
        if self._on_error:
            self._on_error(error)
