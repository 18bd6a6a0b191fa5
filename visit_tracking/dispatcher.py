"""
Queue dispatcher

Drains both event queues, transmits each record once per pass, and on
failure re-inserts it at the front of its queue after an exponential
backoff. Records that fail past the retry ceiling are dropped.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from prometheus_client import Counter

from .config import TrackerConfig
from .queues import BoundedEventQueue, PixelQueue, VisitQueue
from .schema import QueueName, Session, TrackingRecord

logger = logging.getLogger(__name__)


# Prometheus metrics (client-side counters, no exposition server)

RECORDS_SENT = Counter(
    'visit_tracking_records_sent_total',
    'Records acknowledged by the collection endpoint',
    ['queue']
)

RECORDS_RETRIED = Counter(
    'visit_tracking_records_retried_total',
    'Failed transmissions scheduled for retry',
    ['queue']
)

RECORDS_DROPPED = Counter(
    'visit_tracking_records_dropped_total',
    'Records discarded without delivery',
    ['queue', 'reason']
)

DISPATCH_PASSES = Counter(
    'visit_tracking_dispatch_passes_total',
    'Dispatch passes that found records to send',
    ['forced']
)

_LABELS = {
    QueueName.VISITS: "Visit",
    QueueName.PIXELS: "Pixel",
}


class Dispatcher:
    """
    Transmits queued records with retry and backoff.

    Only one normal pass runs at a time; requests arriving meanwhile are
    coalesced. Forced passes (teardown) skip that guard. Each pass sends all
    visits before any pixel, FIFO within each queue.
    """

    def __init__(
        self,
        visit_queue: VisitQueue,
        pixel_queue: PixelQueue,
        transport,
        session: Session,
        clock,
        config: Optional[TrackerConfig] = None
    ):
        self.visit_queue = visit_queue
        self.pixel_queue = pixel_queue
        self.transport = transport
        self.session = session
        self.clock = clock
        self.config = config or TrackerConfig()

        self._in_flight = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def spawn(self, coro) -> Optional[asyncio.Task]:
        """Schedule a coroutine on the running loop and keep a reference to it"""
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, deferring to the next scheduled pass")
            return None

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def request_dispatch(self, force: bool = False) -> Optional[asyncio.Task]:
        """
        Ask for a pass without waiting for it

        Returns:
            The spawned task, or None when coalesced into a running pass
        """
        if self._in_flight and not force:
            logger.debug("Dispatch pass already running, request coalesced")
            return None
        return self.spawn(self.dispatch(force=force))

    async def wait_idle(self):
        """Wait for every spawned pass to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def dispatch(self, force: bool = False) -> int:
        """
        Run one dispatch pass

        Args:
            force: Run even if a normal pass is in flight (teardown flush)

        Returns:
            Number of records delivered in this pass
        """
        if self._in_flight and not force:
            return 0
        if not len(self.visit_queue) and not len(self.pixel_queue):
            return 0

        DISPATCH_PASSES.labels(forced=str(force).lower()).inc()
        if not force:
            self._in_flight = True

        delivered = 0
        try:
            for visit in self.visit_queue.drain():
                delivered += await self._transmit(visit, self.visit_queue, self.transport.send_visit)

            for pixel in self.pixel_queue.drain():
                delivered += await self._transmit(pixel, self.pixel_queue, self.transport.send_pixel)
        finally:
            if not force:
                self._in_flight = False

        if delivered:
            logger.debug(f"Dispatch pass delivered {delivered} records (forced={force})")
        return delivered

    async def _transmit(
        self,
        record: TrackingRecord,
        queue: BoundedEventQueue,
        send: Callable[[TrackingRecord], Awaitable[None]]
    ) -> int:
        # Backoff re-insertions are not cancellable, so re-check the kill switch
        if record.retry_count > 0 and not self.session.enabled:
            logger.debug(f"Tracking disabled, dropping retried {queue.name.value} record")
            RECORDS_DROPPED.labels(queue=queue.name.value, reason="disabled").inc()
            return 0

        try:
            await asyncio.wait_for(send(record), timeout=self.config.request_timeout)
        except asyncio.TimeoutError:
            self._handle_failure(record, queue, f"timed out after {self.config.request_timeout}s")
            return 0
        except Exception as e:
            self._handle_failure(record, queue, str(e) or type(e).__name__)
            return 0

        RECORDS_SENT.labels(queue=queue.name.value).inc()
        return 1

    def _handle_failure(self, record: TrackingRecord, queue: BoundedEventQueue, reason: str):
        label = _LABELS[queue.name]
        retry_count = record.retry_count

        if retry_count < self.config.max_retries:
            delay = self.config.retry_delay(retry_count)
            record.mark_retry(self.clock.now())
            self.clock.call_later(delay, lambda: self._reinsert(record, queue))
            RECORDS_RETRIED.labels(queue=queue.name.value).inc()
            logger.warning(
                f"{label} tracking failed ({reason}), retrying in {delay:g}s "
                f"(attempt {retry_count + 1}/{self.config.max_retries})"
            )
            return

        RECORDS_DROPPED.labels(queue=queue.name.value, reason="max_retries").inc()
        logger.error(f"{label} tracking failed after maximum retries: {reason}")

    def _reinsert(self, record: TrackingRecord, queue: BoundedEventQueue):
        if not queue.push_front(record):
            RECORDS_DROPPED.labels(queue=queue.name.value, reason="queue_full").inc()
            logger.warning(f"{_LABELS[queue.name]} queue full, dropping record awaiting retry")
