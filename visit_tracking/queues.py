"""
Bounded event queues

FIFO buffers favouring recency: enqueueing into a full queue evicts the
oldest record.
"""

import logging
from collections import deque
from typing import Deque, Generic, List, Optional, TypeVar

from .schema import PixelEvent, QueueName, VisitRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedEventQueue(Generic[T]):
    """FIFO with a fixed capacity and evict-oldest overflow"""

    def __init__(self, name: QueueName, capacity: int = 100):
        self.name = name
        self.capacity = capacity
        self._items: Deque[T] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.capacity

    def enqueue(self, record: T) -> Optional[T]:
        """
        Append a record, evicting the oldest one when full

        Returns:
            The evicted record, if any
        """
        evicted = None
        if self.is_full:
            evicted = self._items.popleft()
            if self.name == QueueName.PIXELS:
                logger.warning("Pixel tracking queue is full, dropping oldest entries")
            else:
                logger.debug(f"{self.name.value} queue is full, dropping oldest entry")

        self._items.append(record)
        return evicted

    def push_front(self, record: T) -> bool:
        """
        Re-insert a record at the head of the queue (used for retries)

        Returns:
            False if the queue is full and the record was not inserted
        """
        if self.is_full:
            return False
        self._items.appendleft(record)
        return True

    def drain(self) -> List[T]:
        """Take every queued record in FIFO order, leaving the queue empty"""
        items = list(self._items)
        self._items.clear()
        return items

    def clear(self):
        self._items.clear()


class VisitQueue(BoundedEventQueue[VisitRecord]):
    def __init__(self, capacity: int = 100):
        super().__init__(QueueName.VISITS, capacity)


class PixelQueue(BoundedEventQueue[PixelEvent]):
    """Pixel queue with a high-water mark for out-of-band dispatch"""

    def __init__(self, capacity: int = 100, high_water_mark: int = 10):
        super().__init__(QueueName.PIXELS, capacity)
        self.high_water_mark = high_water_mark

    @property
    def above_high_water(self) -> bool:
        return len(self) >= self.high_water_mark
