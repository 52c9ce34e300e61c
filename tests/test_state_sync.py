"""Unit tests for StateSyncEngine."""
import asyncio

from tablesync.core.transport import UnauthenticatedError
from tablesync.sync.state_sync import StateSyncEngine
from tests.fake_server import FakeRoom, make_transport
from tests.manual_scheduler import ManualScheduler


def _make_engine(room: FakeRoom, sched: ManualScheduler, viewer="u1"):
    snapshots, errors = [], []
    engine = StateSyncEngine(
        make_transport(room, viewer),
        room.room_id,
        viewer,
        sched,
        on_snapshot=snapshots.append,
        on_error=errors.append,
    )
    return engine, snapshots, errors


def _state_calls(room: FakeRoom):
    return room.calls("GET", "/state")


class TestRefresh:
    def test_first_refresh_adopts_version(self, room, scheduler):
        async def _run():
            engine, snapshots, _ = _make_engine(room, scheduler)
            assert engine.version == 0
            snap = await engine.refresh()
            assert engine.version == 1
            assert snap.room_name == "Table One"
            assert snapshots == [snap]
            assert _state_calls(room)[0].params == {"sinceVersion": "0"}
        asyncio.run(_run())

    def test_sends_cursor_as_since_version(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.refresh()
            room.deal()
            await engine.refresh()
            assert [c.params["sinceVersion"] for c in _state_calls(room)] == ["0", "1"]
            assert engine.version == 2
        asyncio.run(_run())

    def test_not_modified_keeps_cursor_and_snapshot(self, room, scheduler):
        async def _run():
            engine, snapshots, _ = _make_engine(room, scheduler)
            first = await engine.refresh()
            again = await engine.refresh()
            assert again is first
            assert engine.snapshot is first
            assert engine.version == 1
            assert len(snapshots) == 1
        asyncio.run(_run())

    def test_missing_version_keeps_cursor(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            room.state_version = 5
            await engine.refresh()
            payload = room.state_payload()
            del payload["stateVersion"]
            payload["roomName"] = "Renamed"
            room.state_overrides.append(payload)
            snap = await engine.refresh()
            assert engine.version == 5
            assert snap.room_name == "Renamed"
        asyncio.run(_run())

    def test_stale_snapshot_never_regresses(self, room, scheduler):
        async def _run():
            engine, snapshots, _ = _make_engine(room, scheduler)
            room.state_version = 9
            current = await engine.refresh()
            stale = room.state_payload()
            stale["stateVersion"] = 4
            room.state_overrides.append(stale)
            kept = await engine.refresh()
            assert engine.version == 9
            assert kept is current
            assert len(snapshots) == 1
        asyncio.run(_run())

    def test_cursor_tracks_max_over_non_decreasing_sequence(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            seen = []
            for version in [1, 1, 3, 3, 4, 8, 8, 12]:
                room.state_version = version
                await engine.refresh()
                seen.append(version)
                assert engine.version == max(seen)
        asyncio.run(_run())


class TestAdaptivePolling:
    def test_slow_interval_when_not_viewers_turn(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            room.deal(turn="u2")
            await engine.start()
            assert engine.interval_ms == 1200
            assert scheduler.pending_delays() == [1200]
        asyncio.run(_run())

    def test_fast_interval_on_viewers_turn(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            room.deal(turn="u1")
            await engine.start()
            assert engine.interval_ms == 700
            assert scheduler.pending_delays() == [700]
        asyncio.run(_run())

    def test_interval_follows_turn_changes(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            room.deal(turn="u2")
            await engine.start()
            room.deal(turn="u1")
            await scheduler.advance(1200)
            assert engine.interval_ms == 700
            room.deal(turn="u2")
            await scheduler.advance(700)
            assert engine.interval_ms == 1200
        asyncio.run(_run())

    def test_not_modified_keeps_last_interval(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            room.deal(turn="u1")
            await engine.start()
            await scheduler.advance(700)
            assert _state_calls(room)[-1].params == {"sinceVersion": str(room.state_version)}
            assert engine.interval_ms == 700
            assert scheduler.pending_delays() == [700]
        asyncio.run(_run())

    def test_exactly_one_timer_pending(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.start()
            for _ in range(5):
                await engine.resync()
                assert len(scheduler.pending) == 1
            await scheduler.advance(1200 * 4)
            assert len(scheduler.pending) == 1
        asyncio.run(_run())

    def test_polls_on_schedule(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.start()
            await scheduler.advance(1199)
            assert len(_state_calls(room)) == 1
            await scheduler.advance(1)
            assert len(_state_calls(room)) == 2
            await scheduler.advance(2400)
            assert len(_state_calls(room)) == 4
        asyncio.run(_run())


class TestFailures:
    def test_transient_failure_reported_and_rescheduled(self, room, scheduler):
        async def _run():
            engine, snapshots, errors = _make_engine(room, scheduler)
            room.deal(turn="u1")
            await engine.start()
            room.state_failures.append((503, {"error": "busy"}))
            await scheduler.advance(700)
            assert [e.status for e in errors] == [503]
            assert engine.running is True
            assert scheduler.pending_delays() == [700]
            room.deal(turn="u2")
            await scheduler.advance(700)
            assert engine.version == room.state_version
            assert len(snapshots) == 2
        asyncio.run(_run())

    def test_client_error_does_not_stop_loop(self, room, scheduler):
        async def _run():
            engine, _, errors = _make_engine(room, scheduler)
            await engine.start()
            room.state_failures.append((404, {"error": "room not found"}))
            await scheduler.advance(1200)
            assert errors[0].message == "room not found"
            assert scheduler.pending_delays() == [1200]
        asyncio.run(_run())

    def test_auth_failure_stops_loop(self, room, scheduler):
        async def _run():
            engine, _, errors = _make_engine(room, scheduler)
            await engine.start()
            room.state_failures.append((401, {"error": "session expired"}))
            await scheduler.advance(1200)
            assert isinstance(errors[0], UnauthenticatedError)
            assert engine.running is False
            assert scheduler.pending == []
        asyncio.run(_run())

    def test_malformed_reply_reported_and_rescheduled(self, room, scheduler):
        async def _run():
            engine, snapshots, errors = _make_engine(room, scheduler)
            payload = room.state_payload()
            payload["stateVersion"] = "not a number"
            room.state_overrides.append(payload)
            await engine.start()
            assert [e.status for e in errors] == [502]
            assert engine.version == 0
            assert snapshots == []
            assert engine.timer_pending is True
            await scheduler.advance(1200)
            assert engine.version == 1
            assert len(snapshots) == 1
        asyncio.run(_run())

    def test_hand_with_no_winners_is_accepted(self, room, scheduler):
        async def _run():
            engine, snapshots, errors = _make_engine(room, scheduler)
            room.deal()
            room.game["stage"] = "finished"
            room.game["result"] = {"Winners": None, "Reason": "no active players"}
            room.game["communityCards"] = None
            await engine.start()
            assert errors == []
            assert snapshots[0].game.result.winners == []
            assert snapshots[0].game.community_cards == []
            assert engine.timer_pending is True
        asyncio.run(_run())


class TestLifecycle:
    def test_start_refreshes_immediately(self, room, scheduler):
        async def _run():
            engine, snapshots, _ = _make_engine(room, scheduler)
            await engine.start()
            assert len(snapshots) == 1
            assert engine.running is True
        asyncio.run(_run())

    def test_stop_cancels_timer(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.start()
            engine.stop()
            assert engine.timer_pending is False
            await scheduler.advance(10_000)
            assert len(_state_calls(room)) == 1
        asyncio.run(_run())

    def test_refresh_after_stop_does_not_publish(self, room, scheduler):
        async def _run():
            engine, snapshots, _ = _make_engine(room, scheduler)
            await engine.start()
            engine.stop()
            room.deal()
            await engine.refresh()
            assert len(snapshots) == 1
        asyncio.run(_run())

    def test_resync_is_noop_when_stopped(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.resync()
            assert _state_calls(room) == []
        asyncio.run(_run())

    def test_reset_forgets_cursor(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.start()
            engine.reset()
            assert engine.version == 0
            assert engine.snapshot is None
            assert engine.running is False
        asyncio.run(_run())

    def test_tick_during_inflight_refresh_skips_request(self, room, scheduler):
        async def _run():
            engine, _, _ = _make_engine(room, scheduler)
            await engine.start()
            release = asyncio.Event()
            original_get = engine._transport.get

            async def slow_get(path, params=None):
                await release.wait()
                return await original_get(path, params=params)

            engine._transport.get = slow_get
            inflight = asyncio.ensure_future(engine.resync())
            await asyncio.sleep(0)
            await engine.poll_now()   # timer tick while the resync is outstanding
            calls_before = len(_state_calls(room))
            release.set()
            await inflight
            assert len(_state_calls(room)) == calls_before + 1
            assert len(scheduler.pending) == 1
        asyncio.run(_run())
