"""
Visit Tracking Client

The public recording API. One TrackingClient per page context: it owns the
session, both queues, the dispatcher and the flush scheduler, and is the
only surface collaborators (router, UI, identity layer) talk to.

No exception raised inside the pipeline crosses this API; failures are
logged and the call degrades to a no-op.
"""

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import TrackerConfig
from .dedup import VisitDeduplicator, is_excluded_path
from .dispatcher import Dispatcher
from .environment import (
    HostEnvironment,
    detect_browser,
    detect_device_type,
    detect_os,
    get_referrer_url,
)
from .queues import PixelQueue, VisitQueue
from .scheduler import FlushScheduler, LoopClock
from .schema import PixelEvent, Session, VisitRecord
from .storage import MemoryStorage, SessionStateStore
from .transport import HttpTransport

logger = logging.getLogger(__name__)


def never_raise(default=None):
    """Log and swallow any exception so telemetry never breaks the caller."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception:
                logger.exception(f"Tracking call {func.__name__} failed")
                return default
        return wrapper
    return decorator


class TrackingClient:
    """
    Records page visits and pixel events and ships them in the background

    Usage:
        async with TrackingClient(environment=env) as tracker:
            tracker.record_visit("https://shop.test/p/soap-42")
            tracker.record_event("scroll_depth", {"percentage": 50})
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        transport=None,
        storage=None,
        environment: Optional[HostEnvironment] = None,
        clock=None
    ):
        """
        Build the pipeline and restore persisted session state

        Args:
            config: Pipeline settings (defaults to TrackerConfig.from_env(),
                which skips malformed environment values)
            transport: Object with async send_visit/send_pixel/close
            storage: Session-scoped storage port (get_item/set_item/remove_item)
            environment: Host environment port
            clock: Clock port (LoopClock unless a test clock is given)
        """
        self.config = config or TrackerConfig.from_env()
        self.transport = transport or HttpTransport(
            api_base=self.config.api_base,
            timeout=self.config.request_timeout
        )
        self.environment = environment or HostEnvironment()
        self.clock = clock or LoopClock()

        self.session = Session(enabled=self.config.enabled)
        self.state_store = SessionStateStore(storage or MemoryStorage(), key=self.config.storage_key)
        self.state_store.load(self.session)

        self.deduplicator = VisitDeduplicator(
            self.session,
            cooldown=self.config.visit_cooldown,
            excluded_prefixes=self.config.excluded_path_prefixes
        )
        self.visit_queue = VisitQueue(capacity=self.config.max_queue_size)
        self.pixel_queue = PixelQueue(
            capacity=self.config.max_queue_size,
            high_water_mark=self.config.pixel_high_water_mark
        )
        self.dispatcher = Dispatcher(
            self.visit_queue,
            self.pixel_queue,
            self.transport,
            self.session,
            self.clock,
            self.config
        )
        self.scheduler = FlushScheduler(
            self.dispatcher,
            self.state_store,
            self.session,
            self.clock,
            dispatch_interval=self.config.dispatch_interval,
            checkpoint_interval=self.config.checkpoint_interval
        )
        self._closed = False

    # Lifecycle

    def start(self, install_signal_handlers: bool = False):
        """Arm the dispatch and checkpoint timers"""
        self.scheduler.start()
        if install_signal_handlers:
            self.scheduler.install_signal_handlers()
        logger.info(f"Visit tracking started: session={self.session.session_id}")

    async def close(self):
        """Teardown: force a final flush, checkpoint, stop timers and close the transport"""
        if self._closed:
            return
        self._closed = True

        self.scheduler.stop()
        await self.scheduler.teardown()
        await self.dispatcher.wait_idle()

        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Failed to close tracking transport: {e}")
        logger.info("Visit tracking closed")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # Recording

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self.clock.now(), tz=timezone.utc).isoformat()

    @never_raise(default=False)
    def record_visit(self, url: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> bool:
        """
        Track a visit to a page

        Args:
            url: Page URL (defaults to the environment's current URL)
            extra: Additional record fields (country, city, page_title, ...)

        Returns:
            True if a VisitRecord was enqueued
        """
        if not self.session.enabled:
            return False

        url = url or self.environment.current_url
        if not url:
            logger.debug("No URL to track")
            return False

        entry = self.deduplicator.evaluate(url, self.clock.now())
        if entry is None:
            return False

        env = self.environment
        data = {
            "url": url,
            "referrer_url": get_referrer_url(env.referrer, env.current_url or url),
            "user_agent": env.user_agent,
            "timestamp": self._now_iso(),
            "session_id": self.session.session_id,
            "user_id": self.session.user_id,
            "device_type": detect_device_type(env.user_agent),
            "browser": detect_browser(env.user_agent),
            "os": detect_os(env.user_agent),
            "page_title": env.page_title,
        }
        if extra:
            data.update(extra)

        visit = VisitRecord.model_validate(data)
        self.visit_queue.enqueue(visit)
        self.deduplicator.commit(url, entry)
        return True

    @never_raise(default=False)
    def record_event(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """
        Track a pixel event; never deduplicated

        Args:
            name: Event name (scroll_depth, file_download, ...)
            metadata: Free-form JSON-compatible details

        Returns:
            True if a PixelEvent was enqueued
        """
        if not self.session.enabled:
            return False

        current_url = self.environment.current_url
        if current_url and is_excluded_path(current_url, self.config.excluded_path_prefixes):
            logger.debug(f"Skipping excluded page pixel tracking: {current_url}")
            return False

        env = self.environment
        pixel = PixelEvent(
            event=name,
            url=current_url,
            referrer_url=get_referrer_url(env.referrer, current_url),
            user_agent=env.user_agent,
            timestamp=self._now_iso(),
            session_id=self.session.session_id,
            user_id=self.session.user_id,
            page_title=env.page_title,
            metadata=dict(metadata or {})
        )
        self.pixel_queue.enqueue(pixel)

        if self.pixel_queue.above_high_water:
            self.dispatcher.request_dispatch()
        return True

    # Session controls

    @never_raise()
    def set_user_id(self, user_id: Optional[str]):
        """Stamp future records with `user_id`; queued records keep theirs"""
        self.session.user_id = user_id

    def get_user_id(self) -> Optional[str]:
        return self.session.user_id

    @never_raise()
    def set_enabled(self, enabled: bool):
        """Global kill switch; queued records still drain"""
        self.session.enabled = bool(enabled)

    def is_enabled(self) -> bool:
        return self.session.enabled

    def get_session_id(self) -> str:
        return self.session.session_id

    @never_raise()
    def reset_session(self):
        """Start a fresh session: new id, empty ledger (memory and storage)"""
        self.session.reset(self.clock.now())
        self.state_store.clear()
        logger.info(f"Tracking session reset: session={self.session.session_id}")

    @never_raise()
    def clear_visited_pages(self):
        """Forget the visit ledger without changing the session id"""
        self.session.visited_pages.clear()
        self.state_store.clear()

    # Convenience

    def track_page_view(self) -> bool:
        return self.record_visit()

    def track_event(self, event_name: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self.record_event(event_name, metadata)

    async def flush(self, force: bool = False) -> int:
        """Dispatch now; returns the number of records delivered"""
        try:
            if force:
                return await self.scheduler.force_flush()
            return await self.scheduler.tick()
        except Exception:
            logger.exception("Tracking flush failed")
            return 0

    def save_state(self) -> bool:
        return self.state_store.save(self.session)

    async def wait_idle(self):
        """Wait for dispatch passes spawned in the background"""
        await self.dispatcher.wait_idle()
