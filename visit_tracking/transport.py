"""
Collection endpoint transport

Sends single tracking records to the storefront API. Any failure is raised
as TransportError so the dispatcher can apply its retry policy.
"""

import logging
import os
from typing import Optional

import httpx

from .config import DEFAULT_API_BASE
from .schema import PixelEvent, VisitRecord

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """A record could not be delivered (network error, timeout or rejected response)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HttpTransport:
    """
    Client for the storefront visit collection API

    Endpoints:
    - POST /visits/track  one VisitRecord, body must report success
    - POST /visits/pixel  one PixelEvent, any 2xx counts as delivered
    """

    VISIT_PATH = "/visits/track"
    PIXEL_PATH = "/visits/pixel"

    def __init__(
        self,
        api_base: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the transport

        Args:
            api_base: Collection API base URL
            timeout: Per-request timeout in seconds
            client: Preconfigured httpx client (tests pass one with a MockTransport)
        """
        self.api_base = (api_base or os.getenv("VISIT_TRACKING_API", DEFAULT_API_BASE)).rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.api_base,
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json"
            }
        )

    async def _post(self, path: str, record) -> httpx.Response:
        try:
            response = await self.client.post(path, json=record.to_dict())
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"Tracking request to {path} failed with status: {response.status_code}",
                status_code=response.status_code
            )

        return response

    async def send_visit(self, visit: VisitRecord):
        """
        Send visit data to the API

        Raises:
            TransportError: if the request fails or the API reports failure
        """
        response = await self._post(self.VISIT_PATH, visit)

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"Unreadable visit tracking response: {e}",
                status_code=response.status_code
            ) from e

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise TransportError(
                message or "Failed to send visit data",
                status_code=response.status_code
            )

    async def send_pixel(self, pixel: PixelEvent):
        """
        Send pixel data to the API

        The response may be binary (a 1x1 image), so only the status is checked.
        """
        await self._post(self.PIXEL_PATH, pixel)

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
