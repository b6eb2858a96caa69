from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings
from app.services.external_calls import ExternalCallFailed, call_with_retries

_LOG = logging.getLogger(__name__)


class RoutingUnavailable(Exception):
    pass


def _point(lat: float, lng: float) -> str:
    return f"{lat},{lng}"


def _get_json(url: str, params: dict[str, Any], *, label: str) -> dict[str, Any]:
    def _request() -> dict[str, Any]:
        with httpx.Client(timeout=settings.EXTERNAL_TIMEOUT_SECONDS) as client:
            response = client.get(url, params=params)
        response.raise_for_status()
        return response.json() if response.content else {}

    return call_with_retries(_request, label=label)


def get_routes(origin: tuple[float, float], destination: tuple[float, float]) -> list[dict[str, Any]]:
    key = str(settings.GOOGLE_MAPS_API_KEY or "").strip()
    if not key:
        raise RoutingUnavailable("GOOGLE_MAPS_API_KEY is not configured")
    try:
        data = _get_json(
            settings.DIRECTIONS_URL,
            {
                "origin": _point(*origin),
                "destination": _point(*destination),
                "mode": "driving",
                "alternatives": "true",
                "key": key,
            },
            label="directions",
        )
    except ExternalCallFailed as exc:
        raise RoutingUnavailable(str(exc)) from exc
    if str(data.get("status") or "") != "OK":
        raise RoutingUnavailable(f"directions status {data.get('status')!r}")

    routes: list[dict[str, Any]] = []
    for index, route in enumerate(data.get("routes") or []):
        leg = (route.get("legs") or [{}])[0]
        routes.append(
            {
                "index": index,
                "summary": route.get("summary") or "",
                "distanceText": (leg.get("distance") or {}).get("text") or "",
                "durationText": (leg.get("duration") or {}).get("text") or "",
                "polyline": (route.get("overview_polyline") or {}).get("points") or "",
            }
        )
    return routes


def estimate_eta_minutes(origin: tuple[float, float], destination: tuple[float, float]) -> dict[str, Any] | None:
    key = str(settings.GOOGLE_MAPS_API_KEY or "").strip()
    if not key:
        return None
    try:
        data = _get_json(
            settings.DISTANCE_MATRIX_URL,
            {
                "origins": _point(*origin),
                "destinations": _point(*destination),
                "mode": "driving",
                "departure_time": "now",
                "key": key,
            },
            label="distance_matrix",
        )
        element = data["rows"][0]["elements"][0]
    except (ExternalCallFailed, KeyError, IndexError, TypeError) as exc:
        _LOG.warning("ETA lookup degraded: %s", exc)
        return None
    seconds = (element.get("duration_in_traffic") or {}).get("value") or (element.get("duration") or {}).get("value")
    return {
        "eta_minutes": round(int(seconds) / 60) if seconds else None,
        "distance_text": (element.get("distance") or {}).get("text") or None,
    }


def navigation_url(origin: tuple[float, float], destination: tuple[float, float]) -> str:
    return (
        "https://www.google.com/maps/dir/?api=1"
        f"&origin={_point(*origin)}&destination={_point(*destination)}&travelmode=driving"
    )
