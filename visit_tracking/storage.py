"""
Session state persistence

Storage ports standing in for the browser's session-scoped storage, and the
store that checkpoints the visit ledger into them. Persistence is
best-effort: every read and write failure is logged and swallowed, the
in-memory session stays authoritative.
"""

import json
import logging
import os
from typing import Dict, Optional

from .schema import PageVisit, Session

logger = logging.getLogger(__name__)


class MemoryStorage:
    """
    Key/value storage living as long as the process

    Sharing one instance between successive clients models page loads
    within a single browsing session.
    """

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str):
        self._items[key] = value

    def remove_item(self, key: str):
        self._items.pop(key, None)


class FileStorage:
    """
    Key/value storage backed by JSON files in a directory

    One file per key. Survives process restarts, so the host decides when a
    browsing session ends by removing the directory.
    """

    def __init__(self, storage_dir: str = "./.visit_tracking"):
        """
        Initialize file storage

        Args:
            storage_dir: Directory holding one file per key
        """
        self.storage_dir = storage_dir
        os.makedirs(storage_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.storage_dir, f"{key}.json")

    def get_item(self, key: str) -> Optional[str]:
        filepath = self._path(key)
        if not os.path.exists(filepath):
            return None

        with open(filepath, "r") as f:
            return f.read()

    def set_item(self, key: str, value: str):
        # Atomic replace; readers never see a partial document
        filepath = self._path(key)
        tmp_path = f"{filepath}.tmp"
        with open(tmp_path, "w") as f:
            f.write(value)
        os.replace(tmp_path, filepath)

    def remove_item(self, key: str):
        filepath = self._path(key)
        if os.path.exists(filepath):
            os.remove(filepath)


class SessionStateStore:
    """
    Loads and checkpoints the session's visit ledger

    Document layout:
        {"visitedPages": [[url, {"timestamp": ..., "count": ...}], ...],
         "sessionId": "...", "userId": "..."}
    """

    def __init__(self, storage, key: str = "visit_tracking_session"):
        self.storage = storage
        self.key = key

    def load(self, session: Session) -> bool:
        """
        Restore the ledger and user id into `session`

        The session id is never restored; every client gets a fresh one.

        Returns:
            True if persisted state was found and applied
        """
        try:
            stored = self.storage.get_item(self.key)
            if not stored:
                return False

            data = json.loads(stored)
            visited = {
                url: PageVisit(**entry)
                for url, entry in data.get("visitedPages") or []
            }
            user_id = data.get("userId")
        except Exception as e:
            logger.warning(f"Failed to load visited pages from storage: {e}")
            session.visited_pages = {}
            return False

        session.visited_pages = visited
        if user_id and session.user_id is None:
            session.user_id = user_id

        logger.debug(f"Restored {len(visited)} visited pages from storage")
        return True

    def save(self, session: Session) -> bool:
        """Checkpoint the session. Returns False (after logging) on failure."""
        try:
            data = {
                "visitedPages": [
                    [url, page.model_dump()]
                    for url, page in session.visited_pages.items()
                ],
                "sessionId": session.session_id,
                "userId": session.user_id,
            }
            self.storage.set_item(self.key, json.dumps(data))
            return True
        except Exception as e:
            logger.warning(f"Failed to save visited pages to storage: {e}")
            return False

    def clear(self) -> bool:
        try:
            self.storage.remove_item(self.key)
            return True
        except Exception as e:
            logger.warning(f"Failed to clear visited pages from storage: {e}")
            return False
