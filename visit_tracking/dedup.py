"""
Visit deduplication

Sliding-window rate limiter keyed by page URL. The session's visit ledger
is the only state consulted and the only state written.
"""

import logging
from typing import Iterable, Optional

from .environment import url_path
from .schema import PageVisit, Session

logger = logging.getLogger(__name__)


def is_excluded_path(url: str, excluded_prefixes: Iterable[str]) -> bool:
    """
    True when the URL's path sits under one of the excluded prefixes

    Matching is per path segment: "/admin" covers "/admin" and
    "/admin/login" but not "/administration-guide".
    """
    path = url_path(url)
    for prefix in excluded_prefixes:
        base = prefix.rstrip("/")
        if path == base or path.startswith(base + "/"):
            return True
    return False


class VisitDeduplicator:
    """
    Decides whether a page visit is worth recording.

    Rules (applied in order):
    1. Excluded path prefix (administrative routes) -> reject
    2. URL never recorded this session -> accept, count 1
    3. Recorded less than `cooldown` seconds ago -> reject
    4. Otherwise -> accept, count + 1

    `evaluate()` only decides; `commit()` writes the ledger once the caller
    has actually enqueued the visit.
    """

    def __init__(
        self,
        session: Session,
        cooldown: float = 30.0,
        excluded_prefixes: Iterable[str] = ("/admin",)
    ):
        self.session = session
        self.cooldown = cooldown
        self.excluded_prefixes = tuple(excluded_prefixes)

    def is_excluded(self, url: str) -> bool:
        try:
            return is_excluded_path(url, self.excluded_prefixes)
        except ValueError as e:
            logger.warning(f"Rejecting unparseable URL {url!r}: {e}")
            return True

    def evaluate(self, url: str, now: float) -> Optional[PageVisit]:
        """
        Check a candidate visit without touching the ledger

        Args:
            url: Normalized page URL
            now: Current epoch time in seconds

        Returns:
            The ledger entry to commit if the visit is accepted, else None
        """
        if self.is_excluded(url):
            logger.debug(f"Skipping excluded page: {url}")
            return None

        page = self.session.visited_pages.get(url)

        if page is None:
            return PageVisit(timestamp=now, count=1)

        if now - page.timestamp < self.cooldown:
            logger.debug(f"Skipping page tracking due to recent visit: {url}")
            return None

        return PageVisit(timestamp=now, count=page.count + 1)

    def commit(self, url: str, entry: PageVisit):
        self.session.visited_pages[url] = entry

    def should_track(self, url: str, now: float) -> bool:
        """Evaluate and, when accepted, commit in one step"""
        entry = self.evaluate(url, now)
        if entry is None:
            return False
        self.commit(url, entry)
        return True
