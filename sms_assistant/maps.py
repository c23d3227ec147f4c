"""
Geocoding and routing through the Google Maps web services.

Both calls return None on any failure (HTTP error, timeout, non-OK status,
empty result) so callers can surface a "could not resolve" reply instead of
storing bad coordinates.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel

from sms_assistant.metrics import record_external_failure

logger = logging.getLogger(__name__)

GOOGLE_MAPS_BASE_URL = "https://maps.googleapis.com/maps/api"


class LatLng(BaseModel):
    lat: float
    lng: float

    def as_param(self) -> str:
        return f"{self.lat},{self.lng}"


class GeocodeResult(BaseModel):
    lat: float
    lng: float
    formatted_address: str


class RouteResult(BaseModel):
    distance_meters: int
    duration_seconds: int
    duration_in_traffic_seconds: int
    polyline: str = ""


class MapsService(Protocol):
    def geocode(self, address: str) -> Optional[GeocodeResult]:
        ...

    def route(
        self,
        origin: LatLng,
        destination: LatLng,
        departure_time: Optional[datetime] = None,
    ) -> Optional[RouteResult]:
        ...


class GoogleMapsClient:
    """MapsService backed by the Geocoding and Directions APIs."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        base_url: str = GOOGLE_MAPS_BASE_URL,
        client: Optional[httpx.Client] = None,
    ):
        self._api_key = api_key
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict) -> Optional[dict]:
        if not self._api_key:
            logger.error("Google Maps API key not configured")
            return None
        try:
            resp = self._client.get(path, params={**params, "key": self._api_key})
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Google Maps request failed: {path}: {e}")
            return None

    def geocode(self, address: str) -> Optional[GeocodeResult]:
        """Convert a free-text address to coordinates."""
        data = self._get("/geocode/json", {"address": address})

        if data and data.get("status") == "OK" and data.get("results"):
            result = data["results"][0]
            try:
                location = result["geometry"]["location"]
                return GeocodeResult(
                    lat=location["lat"],
                    lng=location["lng"],
                    formatted_address=result.get("formatted_address") or address,
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Malformed geocoding result: {e}")

        logger.warning(
            "Geocoding failed",
            extra={"address": address, "maps_status": data.get("status") if data else None},
        )
        record_external_failure("geocoding")
        return None

    def route(
        self,
        origin: LatLng,
        destination: LatLng,
        departure_time: Optional[datetime] = None,
    ) -> Optional[RouteResult]:
        """Driving route with a traffic-aware duration estimate."""
        departure = departure_time or datetime.now(timezone.utc)
        if departure.tzinfo is None:
            departure = departure.replace(tzinfo=timezone.utc)

        data = self._get(
            "/directions/json",
            {
                "origin": origin.as_param(),
                "destination": destination.as_param(),
                "departure_time": int(departure.timestamp()),
                "traffic_model": "best_guess",
            },
        )

        if data and data.get("status") == "OK" and data.get("routes"):
            route = data["routes"][0]
            try:
                leg = route["legs"][0]
                duration = leg["duration"]["value"]
                in_traffic = (leg.get("duration_in_traffic") or {}).get("value", duration)
                return RouteResult(
                    distance_meters=leg["distance"]["value"],
                    duration_seconds=duration,
                    duration_in_traffic_seconds=in_traffic,
                    polyline=(route.get("overview_polyline") or {}).get("points", ""),
                )
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.error(f"Malformed directions result: {e}")

        logger.warning(
            "Directions returned no routes",
            extra={
                "origin": origin.as_param(),
                "destination": destination.as_param(),
                "maps_status": data.get("status") if data else None,
            },
        )
        record_external_failure("routing")
        return None
