# File: app/services/geocoding.py
import logging
from functools import lru_cache

import requests

from app.core.config import Settings, settings as app_settings
from app.schemas.issue import Address

logger = logging.getLogger(__name__)


class Geocoder:
    """Reverse geocoding against a Nominatim-compatible endpoint.

    Returns an empty ``Address`` on any failure; callers never see errors.
    """

    def __init__(self, base_url: str, timeout: float, user_agent: str):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent

    def reverse(self, longitude: float, latitude: float) -> Address:
        try:
            r = requests.get(
                f"{self.base_url}/reverse",
                params={"format": "jsonv2", "lat": latitude, "lon": longitude, "addressdetails": 1},
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            r.raise_for_status()
            payload = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Reverse geocoding failed for (%s, %s): %s", longitude, latitude, exc)
            return Address()
        return parse_nominatim(payload)


class NullGeocoder(Geocoder):
    def __init__(self):
        super().__init__("", 0, "")

    def reverse(self, longitude: float, latitude: float) -> Address:
        return Address()


def parse_nominatim(payload: dict) -> Address:
    parts = payload.get("address") or {}
    road = parts.get("road") or parts.get("pedestrian") or parts.get("footway")
    street = " ".join(p for p in (parts.get("house_number"), road) if p) or None
    city = parts.get("city") or parts.get("town") or parts.get("village") or parts.get("hamlet")
    return Address(
        street=street,
        city=city,
        state=parts.get("state"),
        zip_code=parts.get("postcode"),
        country=parts.get("country"),
        formatted=payload.get("display_name"),
    )


def build_geocoder(settings: Settings) -> Geocoder:
    if not settings.geocoding_enabled:
        return NullGeocoder()
    return Geocoder(settings.nominatim_url, settings.geocoding_timeout_seconds, settings.geocoding_user_agent)


@lru_cache
def get_geocoder() -> Geocoder:
    return build_geocoder(app_settings)
