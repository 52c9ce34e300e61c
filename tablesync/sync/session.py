"""
SyncSession owns one game-view session.

Created on view entry, disposed on exit. Owns the transport, the state
poll loop, the quick-chat loop and the action submitter, and funnels both
loops into a single render callback.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from tablesync.config import SyncSettings
from tablesync.core.timers import AsyncioScheduler, Scheduler, wall_clock_ms
from tablesync.core.transport import ApiError, Transport, UnauthenticatedError
from tablesync.models.events import BroadcastEvent
from tablesync.models.requests import ActionType, RevealMask
from tablesync.models.state import StateSnapshot
from tablesync.render import TableView, project_table
from tablesync.sync.actions import ActionSubmitter, ConfirmHook, SubmitResult, SubmitStatus
from tablesync.sync.broadcast import BroadcastChannel, SendResult, SendStatus
from tablesync.sync.state_sync import StateSyncEngine

logger = logging.getLogger(__name__)

RenderCallback = Callable[[TableView], None]
NoticeCallback = Callable[[str], None]
AuthCallback = Callable[[UnauthenticatedError], None]

SESSION_CLOSED = "Session closed"


@dataclass
class Identity:
    user_id: str
    username: str = ""


async def restore_identity(transport: Transport) -> Identity:
    """Confirm the stored user id with the session service.

    Raises UnauthenticatedError when there is no stored id or the
    service rejects it; the caller sends the user back to sign-in.
    """
    data = await transport.get("/api/v1/session/me")
    user_id = str(data.get("userId") or "")
    if not user_id:
        raise UnauthenticatedError(401, "session has no user id", data)
    return Identity(user_id=user_id, username=str(data.get("username") or ""))


class SyncSession:
    def __init__(
        self,
        settings: SyncSettings,
        room_id: str,
        identity: Identity,
        transport: Optional[Transport] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], int] = wall_clock_ms,
        confirm: Optional[ConfirmHook] = None,
        on_render: Optional[RenderCallback] = None,
        on_notice: Optional[NoticeCallback] = None,
        on_unauthenticated: Optional[AuthCallback] = None,
    ) -> None:
        self.settings = settings
        self.room_id = room_id
        self.identity = identity
        self._owns_transport = transport is None
        self.transport = transport or Transport(
            settings.base_url,
            identity.user_id,
            timeout_s=settings.request_timeout_s,
            identity_header=settings.identity_header,
        )
        self.scheduler = scheduler or AsyncioScheduler()
        self._on_render = on_render
        self._on_notice = on_notice
        self._on_unauthenticated = on_unauthenticated
        self._started = False
        self._disposed = False

        self.state = StateSyncEngine(
            self.transport,
            room_id,
            identity.user_id,
            self.scheduler,
            fast_poll_ms=settings.fast_poll_ms,
            slow_poll_ms=settings.slow_poll_ms,
            on_snapshot=self._snapshot_arrived,
            on_error=self._loop_error,
        )
        self.chat = BroadcastChannel(
            self.transport,
            room_id,
            identity.user_id,
            self.scheduler,
            clock=clock,
            poll_ms=settings.broadcast_poll_ms,
            default_cooldown_ms=settings.default_cooldown_ms,
            local_echo_ttl_ms=settings.local_echo_ttl_ms,
            seen_cap=settings.seen_event_cap,
            on_change=self._bubbles_changed,
            on_notice=self._notice,
            on_error=self._loop_error,
        )
        self.actions = ActionSubmitter(
            self.transport,
            room_id,
            self.state,
            confirm=confirm,
            on_notice=self._notice,
            retries=settings.action_retries,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.state.running or self.chat.running

    async def start(self) -> None:
        if self._disposed:
            raise RuntimeError("session already disposed")
        if self._started:
            return
        self._started = True
        logger.info(f"Session start: {self.identity.user_id} in room {self.room_id}")
        await self.state.start()
        await self.chat.start()

    def stop(self) -> None:
        """Cancel every pending timer. Safe to call more than once."""
        self.state.stop()
        self.chat.stop()
        self._started = False

    async def leave(self) -> bool:
        """Stop both loops, then tell the server once. Never retried."""
        if self._disposed:
            return False
        self.stop()
        try:
            await self.transport.post(f"/api/v1/rooms/{self.room_id}/leave", {})
        except ApiError as e:
            logger.warning(f"Leave failed for room {self.room_id}: {e.message}")
            self._notice(f"Leave room failed: {e.message}")
            return False
        logger.info(f"Left room {self.room_id}")
        return True

    async def dispose(self) -> None:
        if self._disposed:
            return
        self.stop()
        self.state.reset()
        self._disposed = True
        if self._owns_transport:
            await self.transport.aclose()

    async def __aenter__(self) -> "SyncSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.dispose()

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    async def submit(
        self,
        action: Union[ActionType, str],
        amount: Optional[Union[int, float, str]] = None,
    ) -> SubmitResult:
        if self._disposed:
            return self._closed_submit()
        return await self.actions.submit(action, amount=amount)

    async def reveal(self, mask: Union[RevealMask, int]) -> SubmitResult:
        if self._disposed:
            return self._closed_submit()
        return await self.actions.reveal(mask)

    async def start_game(self) -> SubmitResult:
        if self._disposed:
            return self._closed_submit()
        return await self.actions.start_game()

    async def next_hand(self) -> SubmitResult:
        if self._disposed:
            return self._closed_submit()
        return await self.actions.next_hand()

    async def say(self, phrase_id: str) -> SendResult:
        if self._disposed:
            return SendResult(SendStatus.FAILED, SESSION_CLOSED)
        return await self.chat.send(phrase_id)

    def _closed_submit(self) -> SubmitResult:
        return SubmitResult(SubmitStatus.REJECTED, SESSION_CLOSED)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Optional[StateSnapshot]:
        return self.state.snapshot

    def view(self) -> TableView:
        return project_table(self.state.snapshot, self.chat.bubbles(), self.identity.user_id)

    def _snapshot_arrived(self, snapshot: StateSnapshot) -> None:
        self._render()

    def _bubbles_changed(self, bubbles: Dict[str, BroadcastEvent]) -> None:
        self._render()

    def _render(self) -> None:
        if self._on_render and not self._disposed:
            self._on_render(self.view())

    # ------------------------------------------------------------------
    # Errors and notices
    # ------------------------------------------------------------------

    def _loop_error(self, error: ApiError) -> None:
        if isinstance(error, UnauthenticatedError):
            self.stop()
            if self._on_unauthenticated:
                self._on_unauthenticated(error)
            return
        self._notice(f"Sync failed: {error.message}")

    def _notice(self, message: str) -> None:
        if self._on_notice:
            self._on_notice(message)
