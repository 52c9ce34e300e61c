"""Unit tests for OneShotTimer and AsyncioScheduler."""
import asyncio

from tablesync.core.timers import AsyncioScheduler, OneShotTimer
from tests.manual_scheduler import ManualScheduler


class TestOneShotTimer:
    def test_fires_once(self):
        async def _run():
            sched = ManualScheduler()
            fired = []
            timer = OneShotTimer(sched)
            timer.arm(100, lambda: fired.append(sched.now))
            assert timer.pending is True
            await sched.advance(99)
            assert fired == []
            await sched.advance(1)
            assert fired == [1_000_100]
            assert timer.pending is False
            await sched.advance(1000)
            assert len(fired) == 1
        asyncio.run(_run())

    def test_rearm_cancels_previous(self):
        async def _run():
            sched = ManualScheduler()
            fired = []
            timer = OneShotTimer(sched)
            timer.arm(100, lambda: fired.append("first"))
            timer.arm(300, lambda: fired.append("second"))
            assert len(sched.pending) == 1
            await sched.advance(1000)
            assert fired == ["second"]
        asyncio.run(_run())

    def test_cancel(self):
        async def _run():
            sched = ManualScheduler()
            fired = []
            timer = OneShotTimer(sched)
            timer.arm(100, lambda: fired.append(1))
            timer.cancel()
            timer.cancel()  # idempotent
            await sched.advance(1000)
            assert fired == []
            assert timer.pending is False
        asyncio.run(_run())

    def test_rearm_inside_callback_stays_pending(self):
        async def _run():
            sched = ManualScheduler()
            ticks = []
            timer = OneShotTimer(sched)

            async def tick():
                ticks.append(sched.now)
                if len(ticks) < 3:
                    timer.arm(50, tick)

            timer.arm(50, tick)
            await sched.advance(500)
            assert ticks == [1_000_050, 1_000_100, 1_000_150]
            assert timer.pending is False
        asyncio.run(_run())


class TestAsyncioScheduler:
    def test_sync_callback_fires(self):
        async def _run():
            sched = AsyncioScheduler()
            fired = asyncio.Event()
            sched.call_later(5, fired.set)
            await asyncio.wait_for(fired.wait(), timeout=1.0)
        asyncio.run(_run())

    def test_coroutine_callback_runs_as_task(self):
        async def _run():
            sched = AsyncioScheduler()
            done = asyncio.Event()

            async def work():
                await asyncio.sleep(0)
                done.set()

            sched.call_later(5, work)
            await asyncio.wait_for(done.wait(), timeout=1.0)
            for _ in range(5):
                await asyncio.sleep(0)
            assert sched.pending_tasks == 0
        asyncio.run(_run())

    def test_cancelled_handle_never_fires(self):
        async def _run():
            sched = AsyncioScheduler()
            fired = []
            handle = sched.call_later(10, lambda: fired.append(1))
            handle.cancel()
            await asyncio.sleep(0.05)
            assert fired == []
        asyncio.run(_run())
