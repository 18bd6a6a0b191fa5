"""
Clocks and flush scheduling

The clock port replaces setTimeout/setInterval: `LoopClock` runs on the
asyncio event loop, `ManualClock` is advanced explicitly by tests. The
FlushScheduler arms the recurring dispatch and checkpoint timers and owns
the teardown (unload) hook.
"""

import asyncio
import heapq
import itertools
import logging
import signal
import time
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class LoopClock:
    """Wall-clock time with timers on the running asyncio loop"""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], None]):
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class _ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualClock:
    """
    Deterministic clock for tests and simulations

    Time only moves when `advance()` is called; due callbacks fire in order,
    each seeing `now()` equal to its own due time.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._timers: List[Tuple[float, int, Callable[[], None], _ManualHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle()
        heapq.heappush(self._timers, (self._now + max(delay, 0.0), next(self._seq), callback, handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, _, handle in self._timers if not handle.cancelled)

    def advance(self, seconds: float) -> int:
        """
        Move time forward, firing every callback that falls due

        Returns:
            Number of callbacks fired
        """
        target = self._now + seconds
        fired = 0

        while self._timers and self._timers[0][0] <= target:
            due, _, callback, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._now = due
            callback()
            fired += 1

        self._now = target
        return fired


class FlushScheduler:
    """
    Triggers dispatch passes and session checkpoints

    Two recurring timers (dispatch every `dispatch_interval`, checkpoint every
    `checkpoint_interval`) plus the teardown hook, which forces a final pass
    and saves state. Teardown is best-effort: the host may be gone before it
    completes.
    """

    def __init__(
        self,
        dispatcher,
        state_store,
        session,
        clock,
        dispatch_interval: float = 30.0,
        checkpoint_interval: float = 60.0
    ):
        self.dispatcher = dispatcher
        self.state_store = state_store
        self.session = session
        self.clock = clock
        self.dispatch_interval = dispatch_interval
        self.checkpoint_interval = checkpoint_interval

        self._dispatch_handle = None
        self._checkpoint_handle = None
        self._running = False
        self._signals: list = []

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Arm the recurring timers"""
        if self._running:
            return

        self._running = True
        self._arm_dispatch()
        self._arm_checkpoint()
        logger.info(
            f"Flush scheduler started (dispatch={self.dispatch_interval}s, "
            f"checkpoint={self.checkpoint_interval}s)"
        )

    def stop(self):
        """Cancel the recurring timers and signal hooks"""
        self._running = False
        for handle in (self._dispatch_handle, self._checkpoint_handle):
            if handle is not None:
                handle.cancel()
        self._dispatch_handle = None
        self._checkpoint_handle = None
        self._remove_signal_handlers()

    def _arm_dispatch(self):
        self._dispatch_handle = self.clock.call_later(self.dispatch_interval, self._on_dispatch_timer)

    def _arm_checkpoint(self):
        self._checkpoint_handle = self.clock.call_later(self.checkpoint_interval, self._on_checkpoint_timer)

    def _on_dispatch_timer(self):
        if not self._running:
            return
        self.dispatcher.request_dispatch()
        self._arm_dispatch()

    def _on_checkpoint_timer(self):
        if not self._running:
            return
        self.state_store.save(self.session)
        self._arm_checkpoint()

    async def tick(self) -> int:
        """Run one normal dispatch pass now"""
        return await self.dispatcher.dispatch()

    async def force_flush(self) -> int:
        """Run a dispatch pass even if a normal one is in flight"""
        return await self.dispatcher.dispatch(force=True)

    async def teardown(self):
        """
        Unload hook: flush everything queued and checkpoint the session

        Never raises; delivery is not guaranteed.
        """
        try:
            await self.force_flush()
        except Exception:
            logger.exception("Forced flush failed during teardown")
        self.state_store.save(self.session)

    def install_signal_handlers(
        self,
        signals: Tuple[int, ...] = (signal.SIGTERM, signal.SIGINT)
    ) -> bool:
        """
        Run `teardown()` when the host process is asked to stop

        Returns:
            False where the loop does not support signal handlers
        """
        loop = asyncio.get_running_loop()
        try:
            for sig in signals:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._signals.append(sig)
        except (NotImplementedError, RuntimeError) as e:
            logger.warning(f"Signal handlers unavailable: {e}")
            return False
        return True

    def _on_signal(self, signum):
        logger.info(f"Received signal {signum}, flushing tracking queues")
        self.dispatcher.spawn(self.teardown())

    def _remove_signal_handlers(self):
        if not self._signals:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._signals = []
            return
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals = []
