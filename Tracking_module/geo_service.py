"""
Geolocation service for IP addresses.
Uses the ip-api.com JSON endpoint. Every failure degrades to the "Unknown"
location so that recording an event never depends on the provider being up.
"""
import logging
from typing import Any, Dict, Optional

import requests

from config import settings
from .Tracking_schema import LocationInfo, UNKNOWN

logger = logging.getLogger(__name__)

GEO_FIELDS = (
    "status,message,country,countryCode,regionName,city,lat,lon,"
    "timezone,isp,org,mobile,proxy,hosting"
)
GEO_REQUEST_HEADERS = {
    "User-Agent": "EmailTrackerGeo/1.0",
    "Accept": "application/json",
}
UNKNOWN_LOCATION = LocationInfo()


def _parse_geo_payload(payload: Any) -> Optional[LocationInfo]:
    """Map an ip-api response onto a LocationInfo, None when the lookup did not succeed."""
    if not isinstance(payload, dict):
        return None
    if payload.get("status") != "success":
        return None

    return LocationInfo(
        city=payload.get("city") or UNKNOWN,
        region=payload.get("regionName") or UNKNOWN,
        country=payload.get("country") or UNKNOWN,
        country_code=payload.get("countryCode") or "",
        isp=payload.get("isp") or UNKNOWN,
        org=payload.get("org") or "",
        timezone=payload.get("timezone") or "",
        lat=payload.get("lat"),
        lon=payload.get("lon"),
        is_mobile=bool(payload.get("mobile", False)),
        is_proxy=bool(payload.get("proxy", False)),
        is_hosting=bool(payload.get("hosting", False)),
    )


class GeoResolver:
    """One outbound lookup per call, bounded by `timeout`, never retried."""

    def __init__(
        self,
        api_url: str = None,
        timeout: float = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = (api_url or settings.GEO_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GEO_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _fetch_geo_payload(self, ip: str) -> Dict[str, Any]:
        response = self.session.get(
            f"{self.api_url}/{ip}",
            params={"fields": GEO_FIELDS},
            timeout=self.timeout,
            headers=GEO_REQUEST_HEADERS,
        )
        response.raise_for_status()
        return response.json()

    def resolve(self, ip: str) -> LocationInfo:
        try:
            payload = self._fetch_geo_payload(ip)
        except requests.exceptions.Timeout:
            logger.warning(f"Geolocation timeout for {ip} after {self.timeout}s")
            return UNKNOWN_LOCATION
        except requests.exceptions.RequestException as e:
            logger.error(f"Geolocation request failed for {ip}: {e}")
            return UNKNOWN_LOCATION
        except ValueError as e:
            # Body was not JSON
            logger.error(f"Geolocation response for {ip} was not valid JSON: {e}")
            return UNKNOWN_LOCATION

        location = _parse_geo_payload(payload)
        if location is None:
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.warning(f"Geolocation failed for {ip} | status: {payload.get('status') if isinstance(payload, dict) else None} | message: {message}")
            return UNKNOWN_LOCATION

        logger.info(f"Geolocation for {ip}: {location.city}, {location.region}, {location.country} ({location.isp})")
        return location
