"""
U.S. Drought Monitor Connector
==============================

Resolves the current drought classification for the county containing a
station, using the University of Nebraska-Lincoln Drought Monitor API.

Two calls per lookup:
1. County (FIPS) by latitude / longitude
2. County area-percent statistics over the last 14 days

API Documentation: https://droughtmonitor.unl.edu/DmData/DataDownload/WebServiceInfo.aspx
"""

import logging
from typing import Any, Dict, Optional

import requests

from hydro_ai_impact.ontology.object_types import DroughtStatus
from hydro_ai_impact.utils.constants import (
    DROUGHT_CATEGORIES,
    ConnectorConfig,
    DroughtMonitorEndpoints,
)
from hydro_ai_impact.utils.time_utils import date_window, utc_now
from hydro_ai_impact.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class DroughtMonitorConnector:
    """
    Connector for the U.S. Drought Monitor statistics service.

    Every failure (network, HTTP status, empty or malformed payload) is
    logged and returned as None; drought context is optional enrichment.
    """

    def __init__(
        self,
        base_url: str = DroughtMonitorEndpoints.BASE_URL,
        timeout: int = ConnectorConfig.SIDE_SERVICE_TIMEOUT_SECONDS,
        cache_ttl_seconds: int = ConnectorConfig.CACHE_TTL_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache = TTLCache(cache_ttl_seconds)

    def _make_request(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_county(self, lat: float, lon: float) -> Optional[Dict[str, str]]:
        """
        Look up the county containing a point.

        Returns:
            Dict with 'fips', 'county' and 'state', or None
        """
        try:
            county = self._make_request(
                DroughtMonitorEndpoints.COUNTY_BY_LATLON,
                {"lat": lat, "lon": lon},
            )
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Drought Monitor county lookup failed for ({lat}, {lon}): {e}")
            return None

        if not isinstance(county, dict) or not county.get("fips"):
            return None
        return county

    def get_drought_status(self, lat: float, lon: float) -> Optional[DroughtStatus]:
        """
        Current drought classification for the county at (lat, lon).

        Args:
            lat: Latitude in decimal degrees
            lon: Longitude in decimal degrees

        Returns:
            DroughtStatus, or None when the county or statistics are unavailable
        """
        county = self.get_county(lat, lon)
        if county is None:
            return None

        key = f"drought:{county['fips']}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        start, end = date_window(ConnectorConfig.DROUGHT_LOOKBACK_DAYS)
        try:
            records = self._make_request(
                DroughtMonitorEndpoints.AREA_PERCENT,
                {
                    "aoi": "county",
                    "startdate": start,
                    "enddate": end,
                    "statisticsType": 1,
                    "fips": county["fips"],
                },
            )
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Drought Monitor statistics failed for FIPS {county['fips']}: {e}")
            return None

        if not isinstance(records, list) or not records:
            logger.info(f"No drought statistics for FIPS {county['fips']}")
            return None

        latest = records[-1]
        if not isinstance(latest, dict):
            return None
        status = DroughtStatus(
            severity=resolve_severity(latest),
            county=str(county.get("county", "")),
            state_abbr=str(county.get("state", "")),
            valid_start=str(latest.get("MapDate") or start),
            valid_end=end,
            retrieved_at=utc_now().isoformat(),
        )
        self._cache.set(key, status)
        return status


def resolve_severity(record: Dict[str, Any]) -> str:
    """
    Worst drought category with a non-zero area share, D4 first.

    Returns "None" when no category covers any of the county.
    """
    for code, label in DROUGHT_CATEGORIES:
        try:
            share = float(record.get(code) or 0)
        except (TypeError, ValueError):
            continue
        if share > 0:
            return label
    return "None"

