"""Tests for clocks and the flush scheduler"""

import asyncio
import sys

import pytest

from visit_tracking import LoopClock, ManualClock

from fakes import FakeTransport

URL = "https://shop.test/p/soap-42"


class TestManualClock:
    def test_callbacks_fire_in_due_order(self):
        clock = ManualClock(start=100.0)
        fired = []
        clock.call_later(2.0, lambda: fired.append(("b", clock.now())))
        clock.call_later(1.0, lambda: fired.append(("a", clock.now())))

        assert clock.advance(0.5) == 0
        assert clock.advance(2.0) == 2
        assert fired == [("a", 101.0), ("b", 102.0)]
        assert clock.now() == 102.5

    def test_cancelled_callback_does_not_fire(self):
        clock = ManualClock()
        fired = []
        handle = clock.call_later(1.0, lambda: fired.append(True))
        handle.cancel()

        clock.advance(5.0)
        assert fired == []
        assert clock.pending == 0

    def test_callback_scheduled_while_advancing(self):
        clock = ManualClock(start=0.0)
        fired = []

        def tick():
            fired.append(clock.now())
            clock.call_later(1.0, tick)

        clock.call_later(1.0, tick)
        clock.advance(3.0)
        assert fired == [1.0, 2.0, 3.0]


class TestLoopClock:
    @pytest.mark.asyncio
    async def test_call_later_on_running_loop(self):
        clock = LoopClock()
        done = asyncio.Event()
        clock.call_later(0.01, done.set)

        await asyncio.wait_for(done.wait(), timeout=1.0)
        assert clock.now() > 0


class TestFlushScheduler:
    @pytest.mark.asyncio
    async def test_periodic_dispatch(self, client, clock, transport):
        client.start()
        client.record_visit(URL)

        clock.advance(29.5)
        await client.wait_idle()
        assert transport.attempts == []

        clock.advance(0.5)
        await client.wait_idle()
        assert len(transport.delivered) == 1

        # Timer re-arms
        client.record_event("click")
        clock.advance(30.0)
        await client.wait_idle()
        assert len(transport.delivered) == 2

        client.scheduler.stop()

    @pytest.mark.asyncio
    async def test_tick_with_empty_queues(self, client, clock, transport):
        client.start()
        clock.advance(90.0)
        await client.wait_idle()

        assert transport.attempts == []
        client.scheduler.stop()

    @pytest.mark.asyncio
    async def test_periodic_checkpoint(self, client, clock, storage, config):
        client.start()
        client.record_visit(URL)

        clock.advance(59.5)
        assert storage.get_item(config.storage_key) is None

        clock.advance(0.5)
        await client.wait_idle()
        assert URL in storage.get_item(config.storage_key)

        client.scheduler.stop()

    def test_stop_cancels_timers(self, client, clock):
        client.start()
        assert clock.pending == 2

        client.scheduler.stop()
        assert clock.pending == 0
        assert not client.scheduler.running

    def test_start_is_idempotent(self, client, clock):
        client.start()
        client.start()
        assert clock.pending == 2
        client.scheduler.stop()

    @pytest.mark.asyncio
    async def test_teardown_flushes_and_saves(self, make_client, storage, config):
        transport = FakeTransport()
        client = make_client(transport=transport)
        client.record_visit(URL)
        client.record_event("page_unload")

        await client.scheduler.teardown()

        assert len(transport.delivered) == 2
        assert URL in storage.get_item(config.storage_key)

    @pytest.mark.asyncio
    async def test_teardown_never_raises(self, make_client, storage, config):
        client = make_client(transport=FakeTransport(always_fail=True))
        client.record_visit(URL)

        await client.scheduler.teardown()

        assert storage.get_item(config.storage_key) is not None

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are POSIX only")
    async def test_signal_handlers_install_and_remove(self, client):
        assert client.scheduler.install_signal_handlers() is True
        client.scheduler.stop()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
