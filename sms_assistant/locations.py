"""
Current location and trip tracking.

A user has at most one current location and at most one active trip. ETAs are
always recomputed from the current location; the estimate stored when the
trip started is only used for the confirmation reply.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from sms_assistant.maps import LatLng, MapsService
from sms_assistant.models import Location, Trip, TripStatus
from sms_assistant.repository import Repository
from sms_assistant.utils import utcnow

logger = logging.getLogger(__name__)

# Numeric(11, 8)
COORDINATE_QUANTUM = Decimal("0.00000001")


def to_coordinate(value) -> Decimal:
    return Decimal(str(value)).quantize(COORDINATE_QUANTUM)


def location_point(location: Location) -> LatLng:
    return LatLng(lat=float(location.latitude), lng=float(location.longitude))


class EtaStatus(str, Enum):
    OK = "ok"
    NO_ACTIVE_TRIP = "no_active_trip"
    NO_LOCATION = "no_location"
    ROUTE_UNAVAILABLE = "route_unavailable"


class EtaEstimate(BaseModel):
    """Outcome of an ETA recomputation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: EtaStatus
    trip: Optional[Trip] = None
    distance_meters: Optional[int] = None
    duration_seconds: Optional[int] = None
    estimated_arrival: Optional[datetime] = None


class LocationService:
    def __init__(self, repo: Repository, maps: MapsService, clock: Callable[[], datetime] = utcnow):
        self._repo = repo
        self._maps = maps
        self._clock = clock

    # =========================================================================
    # Locations
    # =========================================================================

    def get_current_location(self, user_id: int) -> Optional[Location]:
        return self._repo.get_current_location(user_id)

    def set_current_location(
        self,
        user_id: int,
        latitude,
        longitude,
        address: Optional[str] = None,
        label: Optional[str] = None,
    ) -> Location:
        location = self._repo.set_current_location(
            user_id,
            to_coordinate(latitude),
            to_coordinate(longitude),
            address=address,
            label=label,
        )
        logger.info("Location updated", extra={"user_id": user_id, "location_id": location.id})
        return location

    def update_location_from_address(
        self,
        user_id: int,
        address: str,
        label: Optional[str] = None,
    ) -> Optional[Location]:
        """Geocode the address and make it current. Nothing is written when geocoding fails."""
        geocoded = self._maps.geocode(address)
        if geocoded is None:
            logger.warning("Could not resolve location", extra={"user_id": user_id, "address": address})
            return None

        return self.set_current_location(
            user_id,
            geocoded.lat,
            geocoded.lng,
            address=geocoded.formatted_address,
            label=label,
        )

    # =========================================================================
    # Trips
    # =========================================================================

    def get_active_trip(self, user_id: int) -> Optional[Trip]:
        return self._repo.get_active_trip(user_id)

    def start_trip(self, user_id: int, destination: str, label: Optional[str] = None) -> Optional[Trip]:
        """
        Start a trip to destination from the current location.

        Returns None when the destination cannot be geocoded. The trip has no
        estimated_arrival when there is no current location or no route.
        """
        geocoded = self._maps.geocode(destination)
        if geocoded is None:
            logger.warning("Could not resolve destination", extra={"user_id": user_id, "destination": destination})
            return None

        now = self._clock()
        origin = self._repo.get_current_location(user_id)

        trip = Trip(
            user_id=user_id,
            destination_lat=to_coordinate(geocoded.lat),
            destination_lng=to_coordinate(geocoded.lng),
            destination_address=geocoded.formatted_address,
            destination_label=label,
            status=TripStatus.ACTIVE.value,
            created_at=now,
        )

        if origin is not None:
            trip.origin_lat = origin.latitude
            trip.origin_lng = origin.longitude
            trip.origin_address = origin.address

            route = self._maps.route(
                location_point(origin),
                LatLng(lat=geocoded.lat, lng=geocoded.lng),
                departure_time=now,
            )
            if route is not None:
                trip.estimated_arrival = now + timedelta(seconds=route.duration_in_traffic_seconds)

        trip = self._repo.create_trip(trip, now)
        logger.info(
            "Trip started",
            extra={"user_id": user_id, "trip_id": trip.id, "has_eta": trip.estimated_arrival is not None},
        )
        return trip

    def _finish_trip(self, trip_id: int, status: TripStatus) -> Optional[Trip]:
        if not self._repo.finish_trip(trip_id, status, self._clock()):
            logger.debug("Trip not active", extra={"trip_id": trip_id, "requested_status": status.value})
            return None

        logger.info(f"Trip {status.value}", extra={"trip_id": trip_id})
        return self._repo.get_trip(trip_id)

    def cancel_trip(self, trip_id: int) -> Optional[Trip]:
        return self._finish_trip(trip_id, TripStatus.CANCELLED)

    def complete_trip(self, trip_id: int) -> Optional[Trip]:
        return self._finish_trip(trip_id, TripStatus.COMPLETED)

    def estimate_arrival(self, user_id: int) -> EtaEstimate:
        """Recompute the ETA of the active trip from the current location."""
        trip = self._repo.get_active_trip(user_id)
        if trip is None:
            return EtaEstimate(status=EtaStatus.NO_ACTIVE_TRIP)

        location = self._repo.get_current_location(user_id)
        if location is None:
            return EtaEstimate(status=EtaStatus.NO_LOCATION, trip=trip)

        now = self._clock()
        route = self._maps.route(
            location_point(location),
            LatLng(lat=float(trip.destination_lat), lng=float(trip.destination_lng)),
            departure_time=now,
        )
        if route is None:
            return EtaEstimate(status=EtaStatus.ROUTE_UNAVAILABLE, trip=trip)

        return EtaEstimate(
            status=EtaStatus.OK,
            trip=trip,
            distance_meters=route.distance_meters,
            duration_seconds=route.duration_in_traffic_seconds,
            estimated_arrival=now + timedelta(seconds=route.duration_in_traffic_seconds),
        )
