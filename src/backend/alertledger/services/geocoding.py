"""
Nominatim geocoding client.

Used only off the hot path: to resolve a text location hint, and to fill in
an address for coordinates supplied in a user correction. Every call is
time-bounded and failures degrade to None.
"""

import logging
from typing import Dict, Optional

import requests

from alertledger.config import settings
from alertledger.services.errors import LocationUnavailable

logger = logging.getLogger(__name__)


class Geocoder:
    """Forward and reverse geocoding against a Nominatim endpoint."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.base_url = settings.GEOCODER_URL.rstrip('/')
        self.timeout = settings.HTTP_TIMEOUT_SECONDS

    def _get(self, path: str, params: Dict) -> object:
        try:
            response = self.session.get(
                f"{self.base_url}/{path}",
                params={**params, 'format': 'json'},
                headers={'User-Agent': settings.GEOCODER_USER_AGENT},
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise LocationUnavailable(f"geocoder request failed: {e}") from e

    def _to_place(self, data: Dict) -> Dict[str, Optional[str]]:
        address = data.get('address') or {}
        return {
            'address': data.get('display_name'),
            'city': address.get('city') or address.get('town') or address.get('village') or '',
            'country': address.get('country') or '',
            'place_name': data.get('name') or address.get('attraction') or '',
            'lat': float(data['lat']) if data.get('lat') else None,
            'lng': float(data['lon']) if data.get('lon') else None,
        }

    def reverse_geocode(self, lat: float, lng: float) -> Optional[Dict[str, Optional[str]]]:
        """
        Resolve coordinates to {address, city, country, place_name}.

        Returns:
            Place details, or None if the lookup failed
        """
        try:
            data = self._get('reverse', {'lat': lat, 'lon': lng})
            if not isinstance(data, dict) or data.get('error'):
                raise LocationUnavailable("no reverse geocoding result")
            place = self._to_place(data)
            place['lat'], place['lng'] = lat, lng
            return place
        except LocationUnavailable as e:
            logger.warning("Reverse geocoding failed", extra={
                "lat": lat,
                "lng": lng,
                "reason": e.context.get('reason')
            })
            return None

    def geocode(self, query: str) -> Optional[Dict[str, Optional[str]]]:
        """Resolve a free-text place ("MG Road, Bengaluru") to coordinates and place details."""
        if not query or not query.strip():
            return None
        try:
            data = self._get('search', {'q': query, 'limit': 1, 'addressdetails': 1})
            if not isinstance(data, list) or not data:
                raise LocationUnavailable("no geocoding result")
            return self._to_place(data[0])
        except LocationUnavailable as e:
            logger.warning("Geocoding failed", extra={
                "query": query,
                "reason": e.context.get('reason')
            })
            return None
