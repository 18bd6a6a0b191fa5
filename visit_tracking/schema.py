"""
Tracking record models.

Defines the two wire records (page visits and pixel events) and the
session context they are stamped with. Field aliases match the JSON keys
the storefront collection endpoint expects.
"""

import random
import string
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeviceType(str, Enum):
    """Device classes derived from the user agent"""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


class QueueName(str, Enum):
    """Queue a record travels through"""
    VISITS = "visits"
    PIXELS = "pixels"


# Record models (wire)

class TrackingRecord(BaseModel):
    """Fields shared by every record sent to the collection endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    referrer_url: Optional[str] = None
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    timestamp: str
    session_id: str = Field(alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    page_title: Optional[str] = None

    # Retry bookkeeping, owned by the dispatcher
    retry_count: int = Field(default=0, ge=0, alias="retryCount")
    last_retry_at: int = Field(default=0, ge=0, alias="lastRetryAt")  # epoch ms

    def to_dict(self) -> dict:
        """Serialize with wire keys for the collection endpoint"""
        return self.model_dump(mode="json", by_alias=True)

    def mark_retry(self, now: float) -> None:
        """Record one more failed attempt at epoch time `now` (seconds)."""
        self.retry_count += 1
        self.last_retry_at = int(now * 1000)


class VisitRecord(TrackingRecord):
    """One page view"""
    device_type: DeviceType = Field(default=DeviceType.DESKTOP, alias="deviceType")
    browser: str = "Unknown"
    os: str = "Unknown"

    # Optional enrichment a caller may pass through `extra`
    country: Optional[str] = None
    city: Optional[str] = None
    ip: Optional[str] = None


class PixelEvent(TrackingRecord):
    """One named interaction (scroll_depth, file_download, ...)"""
    event: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event")
    @classmethod
    def event_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Event name cannot be empty")
        return v


# Session models (state)

class PageVisit(BaseModel):
    """Ledger entry for one page URL"""
    timestamp: float  # epoch seconds of the last accepted visit
    count: int = Field(default=1, ge=1)


def generate_session_id(now: Optional[float] = None) -> str:
    """Generate an opaque session identifier: session_<epoch ms>_<9 chars>"""
    now = time.time() if now is None else now
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(now * 1000)}_{suffix}"


class Session(BaseModel):
    """
    Browsing-session context

    The session id is regenerated for every client construction while the
    visit ledger is restored from session-scoped storage, so the ledger can
    outlive the id it was recorded under.
    """
    session_id: str = Field(default_factory=generate_session_id)
    user_id: Optional[str] = None
    enabled: bool = True
    visited_pages: Dict[str, PageVisit] = Field(default_factory=dict)

    def reset(self, now: Optional[float] = None) -> None:
        """Discard the session id and ledger, keeping identity and the kill switch."""
        self.session_id = generate_session_id(now)
        self.visited_pages.clear()
