"""
Environment probe

Derives device class, browser, OS and external referrer from the host
environment. Everything here is side-effect free apart from logging.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from .schema import DeviceType

logger = logging.getLogger(__name__)

TABLET_PATTERN = re.compile(r"tablet|ipad|playbook|silk")
MOBILE_PATTERN = re.compile(
    r"mobile|iphone|ipod|android|blackberry|opera|mini|windows\sce|palm|smartphone|iemobile"
)

# Checked in order; first hit wins
BROWSER_SIGNATURES = [
    ("Chrome", lambda ua: "Chrome" in ua),
    ("Firefox", lambda ua: "Firefox" in ua),
    ("Safari", lambda ua: "Safari" in ua and "Chrome" not in ua),
    ("Edge", lambda ua: "Edge" in ua),
    ("Opera", lambda ua: "Opera" in ua),
]

OS_SIGNATURES = [
    ("Windows", "Windows"),
    ("Mac", "macOS"),
    ("Linux", "Linux"),
    ("Android", "Android"),
    ("iOS", "iOS"),
]


@dataclass
class HostEnvironment:
    """
    Environment-info port

    Stands in for navigator/location/document. The navigation layer keeps it
    current; the tracking client only reads it.
    """
    user_agent: str = ""
    current_url: str = ""
    referrer: Optional[str] = None
    page_title: str = ""

    def navigate(
        self,
        url: str,
        title: Optional[str] = None,
        referrer: Optional[str] = None
    ):
        """Point the environment at a new page. The previous URL becomes the referrer unless one is given."""
        previous = self.current_url
        self.current_url = url
        self.referrer = referrer if referrer is not None else (previous or None)
        if title is not None:
            self.page_title = title


def detect_device_type(user_agent: str) -> DeviceType:
    """Tablet beats mobile beats desktop"""
    ua = (user_agent or "").lower()

    if TABLET_PATTERN.search(ua):
        return DeviceType.TABLET

    if MOBILE_PATTERN.search(ua):
        return DeviceType.MOBILE

    return DeviceType.DESKTOP


def detect_browser(user_agent: str) -> str:
    ua = user_agent or ""
    for name, matches in BROWSER_SIGNATURES:
        if matches(ua):
            return name
    return "Unknown"


def detect_os(user_agent: str) -> str:
    ua = user_agent or ""
    for signature, name in OS_SIGNATURES:
        if signature in ua:
            return name
    return "Unknown"


def _hostname(url: str) -> str:
    """Hostname of an absolute URL; raises ValueError when there is none."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Not an absolute URL: {url!r}")
    return (parsed.hostname or "").lower()


def get_referrer_url(referrer: Optional[str], current_url: str) -> Optional[str]:
    """
    Return the referrer only when it points at another host

    Args:
        referrer: Previous page URL as reported by the host
        current_url: URL of the page being recorded

    Returns:
        The referrer, or None for empty, same-host or malformed input
    """
    if not referrer:
        return None

    try:
        if _hostname(referrer) == _hostname(current_url):
            return None
    except ValueError as e:
        logger.warning(f"Error getting referrer URL: {e}")
        return None

    return referrer


def url_path(url: str) -> str:
    """Path component of a URL (absolute or root-relative)"""
    return urlparse(url).path
