from __future__ import annotations

import logging

import httpx

from app.core.config import settings
from app.services.external_calls import ExternalCallFailed, call_with_retries

_LOG = logging.getLogger(__name__)


def coordinates_label(lat: float, lng: float) -> str:
    return f"{lat}, {lng}"


def reverse_geocode(lat: float, lng: float) -> str | None:
    url = str(settings.GEOCODER_URL or "").strip()
    if not url:
        return None

    def _request() -> str | None:
        with httpx.Client(timeout=settings.EXTERNAL_TIMEOUT_SECONDS) as client:
            response = client.get(
                url,
                params={"lat": lat, "lon": lng, "format": "json"},
                headers={"User-Agent": settings.GEOCODER_USER_AGENT},
            )
        response.raise_for_status()
        data = response.json() if response.content else {}
        name = str((data or {}).get("display_name") or "").strip()
        return name or None

    try:
        return call_with_retries(_request, label="reverse_geocode")
    except ExternalCallFailed as exc:
        _LOG.warning("reverse geocoding degraded for %s,%s: %s", lat, lng, exc)
        return None


def resolve_address(lat: float, lng: float) -> str:
    return reverse_geocode(lat, lng) or coordinates_label(lat, lng)
