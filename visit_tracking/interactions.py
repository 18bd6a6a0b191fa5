"""
Interaction helpers

Named-event shortcuts for UI code: clicks, form submits, downloads,
searches, purchases, outbound links, scroll depth, time on page and page
lifecycle (visibility, unload, connectivity). Every helper stamps the event
metadata with the current page's `url` and `path`.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urlparse

from .environment import HostEnvironment, url_path

logger = logging.getLogger(__name__)

DOWNLOAD_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".zip", ".rar", ".jpg", ".png", ".gif"
)
SCROLL_DEPTH_THRESHOLDS = (25, 50, 75, 90, 100)  # percent
TIME_ON_PAGE_THRESHOLDS = (30, 60, 120, 300, 600)  # seconds
MIN_EXIT_SECONDS = 5


def page_metadata(environment: HostEnvironment, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Event metadata prefixed with the current page context

    Keys given in `metadata` win over the page's `url` and `path`.
    """
    url = environment.current_url
    try:
        path = url_path(url)
    except ValueError:
        path = ""
    return {"url": url, "path": path, **(metadata or {})}


class EventHelper:
    """Base for the helpers: the `track_events` toggle and page enrichment"""

    def __init__(self, client, track_events: bool = True):
        self.client = client
        self.track_events = track_events

    def _emit(self, event_name: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        if not self.track_events:
            return False
        return self.client.record_event(event_name, page_metadata(self.client.environment, metadata))


class InteractionTracker(EventHelper):
    """Thin wrappers over TrackingClient.record_event"""

    def track_click(self, element_name: str, **metadata) -> bool:
        return self._emit("click", {"element": element_name, **metadata})

    def track_form_submit(self, form_name: str, field_names: Sequence[str] = (), **metadata) -> bool:
        return self._emit("form_submit", {
            "formName": form_name or "unnamed_form",
            "fields": len(field_names),
            "fieldNames": list(field_names),
            **metadata
        })

    def track_download(self, file_name: str, file_type: Optional[str] = None, **metadata) -> bool:
        return self._emit("download", {"fileName": file_name, "fileType": file_type, **metadata})

    def track_search(self, query: str, results: Optional[int] = None, **metadata) -> bool:
        return self._emit("search", {"query": query, "results": results, **metadata})

    def track_purchase(
        self,
        order_id: str,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
        **metadata
    ) -> bool:
        return self._emit("purchase", {
            "orderId": order_id,
            "amount": amount,
            "currency": currency,
            **metadata
        })

    def track_custom_event(self, event_name: str, **metadata) -> bool:
        return self._emit(event_name, metadata)

    def track_link_click(self, href: str, text: str = "") -> List[str]:
        """
        Classify a clicked link

        Emits `external_link_click` for links leaving the current host and
        `file_download` for links to a downloadable file.

        Returns:
            Names of the events recorded
        """
        recorded = []
        try:
            link = urlparse(href)
            current_host = urlparse(self.client.environment.current_url).hostname
            link_host = link.hostname
        except ValueError as e:
            logger.warning(f"Ignoring malformed link {href!r}: {e}")
            return recorded

        if link_host and link_host != current_host:
            if self._emit("external_link_click", {
                "url": href,
                "text": text.strip(),
                "domain": link_host
            }):
                recorded.append("external_link_click")

        path = link.path.lower()
        if path.endswith(DOWNLOAD_EXTENSIONS):
            file_name = link.path.rsplit("/", 1)[-1]
            if self._emit("file_download", {
                "url": href,
                "fileName": file_name,
                "fileType": file_name.rsplit(".", 1)[-1] if "." in file_name else ""
            }):
                recorded.append("file_download")

        return recorded


class PageLifecycleTracker(EventHelper):
    """
    Page lifecycle events reported by the host

    - visibility change -> page_focus / page_blur
    - unload            -> page_unload
    - connectivity      -> connection_online / connection_offline
    """

    def on_visibility_change(self, visible: bool) -> bool:
        return self._emit("page_focus" if visible else "page_blur")

    def on_unload(self) -> bool:
        return self._emit("page_unload")

    def on_connection_change(self, online: bool) -> bool:
        return self._emit("connection_online" if online else "connection_offline")


class ScrollDepthTracker(EventHelper):
    """Emits scroll_depth once per threshold crossed on the current page"""

    def __init__(
        self,
        client,
        thresholds: Iterable[int] = SCROLL_DEPTH_THRESHOLDS,
        track_events: bool = True
    ):
        super().__init__(client, track_events)
        self.thresholds = tuple(sorted(thresholds))
        self.max_depth = 0
        self.tracked: Set[int] = set()

    def on_scroll(self, scroll_top: float, document_height: float, viewport_height: float) -> List[int]:
        """
        Report a scroll position

        Returns:
            Thresholds newly recorded by this call
        """
        if not self.track_events:
            return []

        scrollable = document_height - viewport_height
        if scrollable <= 0:
            return []

        percentage = round(scroll_top / scrollable * 100)
        if percentage <= self.max_depth:
            return []
        self.max_depth = percentage

        crossed = []
        for threshold in self.thresholds:
            if percentage >= threshold and threshold not in self.tracked:
                self.tracked.add(threshold)
                self._emit("scroll_depth", {"percentage": threshold})
                crossed.append(threshold)
        return crossed


class TimeOnPageTracker(EventHelper):
    """Emits time_on_page milestones and a final page_exit"""

    def __init__(
        self,
        client,
        thresholds: Iterable[int] = TIME_ON_PAGE_THRESHOLDS,
        track_events: bool = True
    ):
        super().__init__(client, track_events)
        self.thresholds = tuple(sorted(thresholds))
        self.started_at = client.clock.now()
        self.tracked: Set[int] = set()

    def elapsed(self) -> int:
        return int(self.client.clock.now() - self.started_at)

    def check(self) -> List[int]:
        """Poll (the browser polled every 10s); returns milestones newly recorded"""
        if not self.track_events:
            return []

        seconds = self.elapsed()
        crossed = []
        for threshold in self.thresholds:
            if seconds >= threshold and threshold not in self.tracked:
                self.tracked.add(threshold)
                self._emit("time_on_page", {"seconds": threshold})
                crossed.append(threshold)
        return crossed

    def on_exit(self) -> bool:
        """Record page_exit unless the visit was a bounce of a few seconds"""
        seconds = self.elapsed()
        if seconds <= MIN_EXIT_SECONDS:
            return False
        return self._emit("page_exit", {"timeOnPage": seconds})
