"""
Navigation tracker

Adapter between a routing layer and the tracking client: builds the
canonical page URL, applies caller exclusions, skips repeated paths and
resets the session after a period of inactivity.
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlparse, urlunparse

from .interactions import page_metadata

logger = logging.getLogger(__name__)


def canonical_url(url: str, include_hash: bool = False) -> str:
    """origin + path + query, plus the fragment when `include_hash`"""
    parsed = urlparse(url)
    fragment = parsed.fragment if include_hash else ""
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", parsed.query, fragment))


def path_key(url: str, include_hash: bool = False) -> str:
    """path + query (+ fragment): what the router considers 'the same page'"""
    parsed = urlparse(url)
    key = parsed.path + (f"?{parsed.query}" if parsed.query else "")
    if include_hash and parsed.fragment:
        key += f"#{parsed.fragment}"
    return key


def matches_exclusion(path: str, patterns: Iterable[str]) -> bool:
    """
    Check a path against caller exclusion patterns

    A pattern containing `*` is a wildcard (any run of characters); any other
    pattern matches exactly or as a prefix.
    """
    for pattern in patterns:
        if "*" in pattern:
            regex = ".*".join(re.escape(part) for part in pattern.split("*"))
            if re.search(regex, path):
                return True
        elif path == pattern or path.startswith(pattern):
            return True
    return False


class NavigationTracker:
    """
    Feeds router navigations into a TrackingClient

    The client's own deduplicator still applies its cooldown; this layer
    only avoids re-firing for the path it tracked last.
    """

    def __init__(
        self,
        client,
        exclude_paths: Iterable[str] = (),
        include_hash: bool = False,
        session_timeout: float = 30 * 60,
        track_page_views: bool = True,
        track_events: bool = True
    ):
        self.client = client
        self.clock = client.clock
        self.exclude_paths = tuple(exclude_paths)
        self.include_hash = include_hash
        self.session_timeout = session_timeout
        self.track_page_views = track_page_views
        self.track_events = track_events

        self.last_tracked_path: Optional[str] = None
        self._session_timer = None

    def on_navigate(
        self,
        url: str,
        title: Optional[str] = None,
        referrer: Optional[str] = None
    ) -> bool:
        """
        Handle a route change

        Returns:
            True if a visit was recorded
        """
        self.client.environment.navigate(url, title=title, referrer=referrer)

        if not self.track_page_views or not self.client.is_enabled():
            return False

        try:
            current_path = path_key(url, self.include_hash)
            path = urlparse(url).path
        except ValueError as e:
            logger.warning(f"Ignoring navigation to malformed URL {url!r}: {e}")
            return False

        if matches_exclusion(path, self.exclude_paths):
            logger.debug(f"Navigation to excluded path: {current_path}")
            return False

        if current_path == self.last_tracked_path:
            return False

        self.last_tracked_path = current_path
        recorded = self.client.record_visit(canonical_url(url, self.include_hash))
        self.reset_session_timer()
        return recorded

    def track_event(self, event_name: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Record a pixel event stamped with the current page's url and path"""
        if not self.track_events or not self.client.is_enabled():
            return False
        return self.client.record_event(event_name, page_metadata(self.client.environment, metadata))

    def on_activity(self):
        """User activity (click, scroll, keypress) keeps the session alive"""
        self.reset_session_timer()

    def reset_session_timer(self):
        if self._session_timer is not None:
            self._session_timer.cancel()
        self._session_timer = self.clock.call_later(self.session_timeout, self._on_session_timeout)

    def _on_session_timeout(self):
        self._session_timer = None
        logger.info(f"No activity for {self.session_timeout:g}s, resetting tracking session")
        self.client.reset_session()

    def close(self):
        if self._session_timer is not None:
            self._session_timer.cancel()
            self._session_timer = None
