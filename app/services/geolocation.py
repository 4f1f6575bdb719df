from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from app.errors import LocationError
from app.settings import get_settings


@dataclass(frozen=True, slots=True)
class GeoReading:
    lat: float
    lon: float
    accuracy_m: float | None = None


class GeolocationProvider(Protocol):
    def get_current_location(self, timeout_seconds: float) -> GeoReading:
        """Return the device position or raise LocationError on denial/timeout."""


class PayloadGeolocationProvider:
    """Serves the reading the client already took from the device API."""

    def __init__(self, lat: float | None, lon: float | None, accuracy_m: float | None = None) -> None:
        self._lat = lat
        self._lon = lon
        self._accuracy_m = accuracy_m

    def get_current_location(self, timeout_seconds: float) -> GeoReading:
        if self._lat is None or self._lon is None:
            raise LocationError("Location is unavailable. Allow location access and try again.", code="NO_LOCATION")
        return GeoReading(lat=self._lat, lon=self._lon, accuracy_m=self._accuracy_m)


def read_position(provider: GeolocationProvider) -> GeoReading:
    settings = get_settings()
    reading = provider.get_current_location(settings.geolocation_timeout_seconds)

    max_accuracy = settings.geolocation_max_accuracy_m
    if max_accuracy is not None and reading.accuracy_m is not None and reading.accuracy_m > max_accuracy:
        raise LocationError(
            f"Location accuracy {reading.accuracy_m:.0f} m is worse than the allowed {max_accuracy:.0f} m.",
            code="LOCATION_INACCURATE",
        )
    return reading
