"""
Reverse Geocoder
================

Derives the locality label ("area") of an issue from its coordinates via a
Nominatim-compatible reverse geocoding endpoint.
"""

import logging
from typing import Optional

import httpx

from ..config import get_settings
from .base import WebhookClient

logger = logging.getLogger(__name__)

UNKNOWN_AREA = "Unknown Area"


class ReverseGeocoder:

    def __init__(
        self,
        url: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.enabled = settings.geocoder_enabled if enabled is None else enabled
        self.client = WebhookClient(
            url=url if url is not None else settings.geocoder_url,
            timeout=timeout if timeout is not None else settings.webhook_timeout_seconds,
            transport=transport,
            headers={"User-Agent": settings.geocoder_user_agent},
        )

    async def close(self):
        await self.client.close()

    async def area_for(self, lat: float, lng: float) -> str:
        """City, else suburb, else UNKNOWN_AREA. Never raises."""
        if not self.enabled:
            return UNKNOWN_AREA

        result = await self.client.request(
            "GET", params={"format": "jsonv2", "lat": lat, "lon": lng}
        )
        if not result.success or not isinstance(result.data, dict):
            logger.warning(f"Reverse geocoding failed for ({lat}, {lng}): {result.error}")
            return UNKNOWN_AREA

        address = result.data.get("address") or {}
        return address.get("city") or address.get("suburb") or UNKNOWN_AREA


_geocoder: Optional[ReverseGeocoder] = None


def get_geocoder() -> ReverseGeocoder:
    global _geocoder
    if _geocoder is None:
        _geocoder = ReverseGeocoder()
    return _geocoder
