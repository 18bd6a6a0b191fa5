"""
Storefront Visit Tracking

Client-side pipeline recording page visits and pixel events and shipping
them to the storefront collection API with retry, backoff and
cross-navigation deduplication.
"""

from .client import TrackingClient
from .config import TrackerConfig
from .dispatcher import Dispatcher
from .environment import (
    HostEnvironment,
    detect_browser,
    detect_device_type,
    detect_os,
    get_referrer_url,
)
from .interactions import (
    InteractionTracker,
    PageLifecycleTracker,
    ScrollDepthTracker,
    TimeOnPageTracker,
)
from .navigation import NavigationTracker
from .queues import PixelQueue, VisitQueue
from .scheduler import FlushScheduler, LoopClock, ManualClock
from .schema import DeviceType, PageVisit, PixelEvent, Session, VisitRecord
from .storage import FileStorage, MemoryStorage, SessionStateStore
from .transport import HttpTransport, TransportError

__version__ = "1.0.0"

__all__ = [
    # Client
    "TrackingClient",
    "TrackerConfig",
    # Schema
    "DeviceType",
    "VisitRecord",
    "PixelEvent",
    "PageVisit",
    "Session",
    # Environment probe
    "HostEnvironment",
    "detect_device_type",
    "detect_browser",
    "detect_os",
    "get_referrer_url",
    # Pipeline
    "VisitQueue",
    "PixelQueue",
    "Dispatcher",
    "FlushScheduler",
    "LoopClock",
    "ManualClock",
    # Persistence
    "MemoryStorage",
    "FileStorage",
    "SessionStateStore",
    # Transport
    "HttpTransport",
    "TransportError",
    # Collaborator adapters
    "NavigationTracker",
    "InteractionTracker",
    "PageLifecycleTracker",
    "ScrollDepthTracker",
    "TimeOnPageTracker",
]
