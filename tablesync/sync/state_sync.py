"""
StateSyncEngine: versioned polling of the room state endpoint.

Poll loop:
  tick → GET state?sinceVersion=V → (notModified: keep everything)
                                   → (new snapshot: adopt version, publish)
       → re-arm at 700ms on the viewer's turn, 1200ms otherwise
"""
from __future__ import annotations
import asyncio
import logging
from typing import Callable, Optional

from tablesync.core.timers import OneShotTimer, Scheduler
from tablesync.core.transport import ApiError, Transport, UnauthenticatedError, decode_reply
from tablesync.models.state import StateSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[StateSnapshot], None]
ErrorCallback = Callable[[ApiError], None]


class StateSyncEngine:
    def __init__(
        self,
        transport: Transport,
        room_id: str,
        viewer_id: str,
        scheduler: Scheduler,
        fast_poll_ms: int = 700,
        slow_poll_ms: int = 1200,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._transport = transport
        self._path = f"/api/v1/rooms/{room_id}/state"
        self._viewer_id = viewer_id
        self._fast_poll_ms = fast_poll_ms
        self._slow_poll_ms = slow_poll_ms
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._timer = OneShotTimer(scheduler)
        self._lock = asyncio.Lock()
        self._version = 0
        self._snapshot: Optional[StateSnapshot] = None
        self._interval_ms = slow_poll_ms
        self._running = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        """The live cursor. Never decreases."""
        return self._version

    @property
    def snapshot(self) -> Optional[StateSnapshot]:
        return self._snapshot

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timer_pending(self) -> bool:
        return self._timer.pending

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> Optional[StateSnapshot]:
        """
        Fetch state newer than the cursor.

        Returns the snapshot now held (unchanged on notModified). Raises
        ApiError on failure; the cursor is only touched after a reply
        has been decoded.
        """
        async with self._lock:
            since = self._version
            data = await self._transport.get(self._path, params={"sinceVersion": since})
            snapshot = decode_reply(StateSnapshot, data, "state")

            if snapshot.not_modified:
                logger.debug(f"State not modified at v{since}")
                return self._snapshot

            reported = snapshot.reported_version
            new_version = since if reported is None else reported
            if new_version < self._version:
                logger.warning(f"Dropping stale snapshot v{new_version} (cursor v{self._version})")
                return self._snapshot

            self._version = new_version
            self._snapshot = snapshot

        logger.debug(f"State advanced v{since} → v{self._version}")
        if self._on_snapshot and not self._stopped:
            self._on_snapshot(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Refresh once right away, then keep polling."""
        if self._running:
            return
        self._running = True
        self._stopped = False
        self._interval_ms = self._slow_poll_ms
        logger.info(f"State sync started for {self._viewer_id} ({self._path})")
        await self.poll_now()

    def stop(self) -> None:
        """Cancel the pending tick. A refresh still in flight will not publish."""
        self._running = False
        self._stopped = True
        self._timer.cancel()

    def reset(self) -> None:
        """Forget the cursor and snapshot (a new view session starts at 0)."""
        self.stop()
        self._version = 0
        self._snapshot = None
        self._interval_ms = self._slow_poll_ms

    async def poll_now(self) -> None:
        """Timer tick: refresh and re-arm, unless a refresh is in flight."""
        if not self._running:
            return
        if self._lock.locked():
            self._arm(self._interval_ms)
            return
        await self._poll()

    async def resync(self) -> None:
        """Refresh right away (after the in-flight one, if any) and re-arm from now."""
        if not self._running:
            return
        await self._poll()

    async def _poll(self) -> None:
        try:
            snapshot = await self.refresh()
        except UnauthenticatedError as e:
            logger.warning(f"State sync stopped, session rejected: {e.message}")
            self.stop()
            self._report(e)
            return
        except ApiError as e:
            logger.warning(f"State refresh failed ({e.status}): {e.message}")
            self._report(e)
            self._arm(self._interval_ms)
            return

        if snapshot is not None and not snapshot.not_modified:
            self._interval_ms = self._next_interval(snapshot)
        self._arm(self._interval_ms)

    def _next_interval(self, snapshot: StateSnapshot) -> int:
        if snapshot.viewer_has_turn(self._viewer_id):
            return self._fast_poll_ms
        return self._slow_poll_ms

    def _arm(self, delay_ms: int) -> None:
        if self._running:
            self._timer.arm(delay_ms, self.poll_now)

    def _report(self, error: ApiError) -> None:
        if self._on_error:
            self._on_error(error)
