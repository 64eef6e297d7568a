"""
USGS Water Data Connector
=========================

Connects to the USGS Water Data OGC API to pull:
- Discharge (streamflow, parameter 00060) monitoring locations by state
- Daily mean discharge for the last 90 days
- Station coordinates
- Historical daily percentiles from the NWIS statistics service

API Documentation: https://api.waterdata.usgs.gov/ogcapi/v0
No API key is required for public data access.
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

import requests

from hydro_ai_impact.ontology.object_types import (
    DailyValue,
    FlowPercentiles,
    StationStatus,
    WaterData,
    WaterReading,
    WaterStation,
)
from hydro_ai_impact.utils.constants import ConnectorConfig, USGSEndpoints
from hydro_ai_impact.utils.geo_utils import feature_lat_lon, state_abbr_to_name
from hydro_ai_impact.utils.time_utils import date_window, days_between, parse_usgs_date, utc_now
from hydro_ai_impact.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class USGSConnector:
    """
    Connector for the USGS Water Data OGC API.

    Responses are kept in a small in-process cache for
    ``cache_ttl_seconds`` so repeated station lookups within a few minutes
    do not hit the API again.

    Example:
        connector = USGSConnector()
        data = connector.get_water_data("01646500")
        data.latest.value, len(data.daily_series)
    """

    def __init__(
        self,
        base_url: str = USGSEndpoints.BASE_URL,
        timeout: int = ConnectorConfig.USGS_TIMEOUT_SECONDS,
        cache_ttl_seconds: int = ConnectorConfig.CACHE_TTL_SECONDS,
        station_stale_days: int = ConnectorConfig.STATION_STALE_DAYS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self.station_stale_days = station_stale_days
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._cache = TTLCache(cache_ttl_seconds)

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> "USGSConnector":
        """Build a connector from EngineSettings."""
        return cls(
            base_url=settings.usgs_base_url,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            station_stale_days=settings.station_stale_days,
            session=session,
        )

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _make_request(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make a GET request to the OGC API and return the decoded JSON.

        Raises:
            requests.exceptions.RequestException: on transport/HTTP errors
        """
        url = f"{self.base_url}{path}"
        query = dict(params)
        query.setdefault("f", "json")

        try:
            response = self.session.get(url, params=query, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"USGS API request failed: {e}")
            raise

    @staticmethod
    def to_usgs_id(station_id: str) -> str:
        """
        Normalize any station identifier to the 'USGS-XXXXXXXX' form.

        Accepts 'USGS-01646500', bare '01646500', or any string that
        contains a 6-15 digit run. Anything else is prefixed as-is and left
        for the API to reject.
        """
        station_id = station_id.strip()
        if re.fullmatch(r"USGS-\d+", station_id):
            return station_id
        if re.fullmatch(r"\d+", station_id):
            return f"USGS-{station_id}"
        match = re.search(r"\d{6,15}", station_id)
        if match:
            return f"USGS-{match.group(0)}"
        return f"USGS-{station_id}"

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get_stations(self, state_abbr: str) -> List[WaterStation]:
        """
        List monitoring locations with a discharge series in a state.

        Args:
            state_abbr: 2-letter state code (e.g., 'VA')

        Returns:
            Stations de-duplicated by monitoring location

        Raises:
            ValueError: for an unknown state abbreviation
            requests.exceptions.RequestException: on API failure
        """
        abbr = state_abbr.upper()
        key = f"stations:{abbr}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        state_name = state_abbr_to_name(abbr)
        if not state_name:
            raise ValueError(f"Unknown state abbreviation: {abbr}")

        result = self._make_request(
            USGSEndpoints.TIME_SERIES_METADATA,
            {
                "state_name": state_name,
                "parameter_code": USGSEndpoints.STREAMFLOW_PARAM,
                "limit": 500,
            },
        )

        stations: Dict[str, WaterStation] = {}
        for feature in result.get("features") or []:
            location_id = (feature.get("properties") or {}).get("monitoring_location_id")
            if not location_id or location_id in stations:
                continue
            lat_lon = feature_lat_lon(feature)
            stations[location_id] = WaterStation(
                id=re.sub(r"^USGS-", "", location_id),
                name=f"Station {location_id}",
                state=abbr,
                latitude=lat_lon[0] if lat_lon else None,
                longitude=lat_lon[1] if lat_lon else None,
            )

        results = list(stations.values())
        logger.info(f"Found {len(results)} discharge stations in {abbr}")
        self._cache.set(key, results)
        return results

    def get_water_data(self, station_id: str) -> WaterData:
        """
        Fetch the daily discharge series and latest reading for a station.

        The latest reading is the tail of the daily series; no second
        request is made. Request failures are logged and degrade to an
        empty result so the caller can render an explicit no-data state.

        Args:
            station_id: Station ID in any form accepted by to_usgs_id

        Returns:
            WaterData with an ascending series and a station status
        """
        key = f"water:{station_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        usgs_id = self.to_usgs_id(station_id)

        try:
            metadata = self._make_request(
                USGSEndpoints.TIME_SERIES_METADATA,
                {
                    "monitoring_location_id": usgs_id,
                    "parameter_code": USGSEndpoints.STREAMFLOW_PARAM,
                    "limit": 10,
                },
            )
            time_series_id = self.find_daily_mean_time_series_id(metadata)
            if not time_series_id:
                logger.warning(f"No daily mean discharge time series found for {usgs_id}")
                return WaterData.empty(f"No discharge time series found for {usgs_id}.")

            logger.info(f"Using time series ID: {time_series_id}")
            daily_series = self._fetch_daily_series(time_series_id)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch water data for {station_id}: {e}")
            return WaterData.empty(f"Unable to reach USGS for station {station_id}.")
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            logger.error(f"Malformed USGS response for {station_id}: {e}")
            return WaterData.empty(f"Unexpected USGS response for station {station_id}.")

        latest = None
        if daily_series:
            tail = daily_series[-1]
            latest = WaterReading(
                station_id=station_id,
                value=tail.value,
                unit=tail.unit,
                timestamp=f"{tail.date.isoformat()}T00:00:00.000Z",
            )

        data = WaterData(
            latest=latest,
            daily_series=tuple(daily_series),
            station_status=self.station_status(daily_series),
        )
        logger.info(
            f"Water data fetched: latest={latest.value if latest else None}, "
            f"daily_series={len(daily_series)} days"
        )
        self._cache.set(key, data)
        return data

    @staticmethod
    def find_daily_mean_time_series_id(collection: Dict[str, Any]) -> Optional[str]:
        """Prefer the daily-mean discharge series; fall back to the first one."""
        features = (collection or {}).get("features") or []
        for feature in features:
            props = feature.get("properties") or {}
            if (
                props.get("computation_identifier") == "Mean"
                and props.get("computation_period_identifier") == "Daily"
                and props.get("id")
            ):
                return str(props["id"])
        if features and (features[0].get("properties") or {}).get("id"):
            return str(features[0]["properties"]["id"])
        return None

    def _fetch_daily_series(self, time_series_id: str) -> List[DailyValue]:
        start, end = date_window(ConnectorConfig.DAILY_SERIES_DAYS)
        result = self._make_request(
            USGSEndpoints.DAILY,
            {
                "time_series_id": time_series_id,
                "time": f"{start}/{end}",
                "sortby": "time",
                "limit": ConnectorConfig.DAILY_SERIES_LIMIT,
            },
        )
        return self.normalize_daily_series(result.get("features") or [])

    @staticmethod
    def normalize_daily_series(features: List[Dict[str, Any]]) -> List[DailyValue]:
        """
        Convert raw daily features into an ascending DailyValue list.

        Features without a date, or whose value does not parse to a finite
        number, are dropped rather than coerced to zero. Duplicate days
        keep the last occurrence.
        """
        by_date: Dict[Any, DailyValue] = {}
        for feature in features:
            props = feature.get("properties") or {}
            day = parse_usgs_date(props.get("time"))
            if day is None:
                continue
            try:
                value = float(props.get("value"))
            except (TypeError, ValueError):
                continue
            if not math.isfinite(value):
                continue
            by_date[day] = DailyValue(
                date=day,
                value=value,
                unit=str(props.get("unit_of_measure") or "ft3/s"),
            )
        return [by_date[day] for day in sorted(by_date)]

    def station_status(self, daily_series: List[DailyValue]) -> StationStatus:
        """Report a station inactive when its last record is older than the stale limit."""
        if not daily_series:
            return StationStatus(
                active=False,
                last_record_date=None,
                message=f"No daily records in the last {ConnectorConfig.DAILY_SERIES_DAYS} days.",
            )

        last_record = daily_series[-1].date
        age_days = days_between(last_record, utc_now().date())
        if age_days > self.station_stale_days:
            return StationStatus(
                active=False,
                last_record_date=last_record,
                message=(
                    f"This station has not reported since {last_record.isoformat()} "
                    f"({age_days} days ago). Values may not reflect current conditions."
                ),
            )
        return StationStatus(active=True, last_record_date=last_record, message="")

    def get_station_coords(self, station_id: str) -> Optional[Tuple[float, float]]:
        """
        Look up (latitude, longitude) for a station.

        Returns:
            Coordinates, or None if the station or its geometry is unknown
        """
        key = f"coords:{station_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            result = self._make_request(
                USGSEndpoints.TIME_SERIES_METADATA,
                {
                    "monitoring_location_id": self.to_usgs_id(station_id),
                    "parameter_code": USGSEndpoints.STREAMFLOW_PARAM,
                    "limit": 1,
                },
            )
        except requests.exceptions.RequestException:
            return None

        features = result.get("features") or []
        if not features:
            return None
        coords = feature_lat_lon(features[0])
        if coords is None:
            return None
        self._cache.set(key, coords)
        return coords

    # -------------------------------------------------------------------------
    # NWIS statistics service (percentiles)
    # -------------------------------------------------------------------------

    def get_flow_percentiles(
        self, station_id: str, current_value: Optional[float]
    ) -> Optional[FlowPercentiles]:
        """
        Fetch historical daily percentiles for today and place the current value.

        Args:
            station_id: Station ID (USGS- prefix optional)
            current_value: Latest flow, or None

        Returns:
            FlowPercentiles, or None when statistics are unavailable
        """
        numeric_id = re.sub(r"^USGS-", "", station_id)
        key = f"percentiles:{numeric_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            response = self.session.get(
                USGSEndpoints.STATISTICS_URL,
                params={
                    "sites": numeric_id,
                    "statReportType": "daily",
                    "statType": "all",
                    "parameterCd": USGSEndpoints.STREAMFLOW_PARAM,
                    "format": "rdb",
                },
                timeout=ConnectorConfig.SIDE_SERVICE_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning(f"USGS statistics request failed for {numeric_id}: {e}")
            return None

        today = utc_now().date()
        result = parse_percentile_rdb(response.text, today.month, today.day, current_value)
        if result is not None:
            self._cache.set(key, result)
        return result


def parse_percentile_rdb(
    text: str, month: int, day: int, current_value: Optional[float]
) -> Optional[FlowPercentiles]:
    """
    Parse an NWIS daily-statistics RDB document for one calendar day.

    RDB is tab-separated with '#' comment lines, a header row and a
    column-format row before the data.
    """
    lines = [line for line in text.split("\n") if line.strip() and not line.startswith("#")]
    if len(lines) < 3:
        return None

    headers = lines[0].split("\t")
    rows = [line.split("\t") for line in lines[2:]]

    def column(cols: List[str], name: str) -> Optional[str]:
        if name not in headers:
            return None
        idx = headers.index(name)
        return cols[idx] if idx < len(cols) else None

    def parse_float(cols: List[str], name: str) -> Optional[float]:
        try:
            value = float(column(cols, name))
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None

    def parse_int(cols: List[str], name: str) -> Optional[int]:
        try:
            return int(column(cols, name))
        except (TypeError, ValueError):
            return None

    today_row = next(
        (cols for cols in rows if parse_int(cols, "month_nu") == month and parse_int(cols, "day_nu") == day),
        None,
    )
    if today_row is None:
        return None

    p10 = parse_float(today_row, "p10_va")
    p25 = parse_float(today_row, "p25_va")
    p50 = parse_float(today_row, "p50_va")
    p75 = parse_float(today_row, "p75_va")
    p90 = parse_float(today_row, "p90_va")

    begin_yr = parse_int(today_row, "begin_yr")
    end_yr = parse_int(today_row, "end_yr")
    record_years = end_yr - begin_yr if begin_yr is not None and end_yr is not None else None

    current_percentile, interpretation = interpolate_percentile(current_value, p10, p25, p50, p75, p90)

    return FlowPercentiles(
        p10=p10,
        p25=p25,
        p50=p50,
        p75=p75,
        p90=p90,
        current_percentile=current_percentile,
        interpretation=interpretation,
        record_years=record_years,
    )


def interpolate_percentile(
    current_value: Optional[float],
    p10: Optional[float],
    p25: Optional[float],
    p50: Optional[float],
    p75: Optional[float],
    p90: Optional[float],
) -> Tuple[Optional[int], str]:
    """
    Place a value among historical percentiles by piecewise-linear interpolation.

    Requires p10, p50 and p90; p25 and p75 are optional and their bands
    collapse into the neighbouring ones when missing.

    Returns:
        (percentile or None, human-readable interpretation)
    """
    if current_value is None or p10 is None or p50 is None or p90 is None:
        return None, "Insufficient data for percentile calculation"

    def scale(value: float, low: float, high: float, base: int, span: int) -> int:
        if high == low:
            return base
        return _round_half_up(base + (value - low) / (high - low) * span)

    if current_value <= p10:
        percentile = _round_half_up(current_value / p10 * 10) if p10 else 0
        return percentile, "Below the 10th percentile, unusually low for this time of year"
    if p25 is not None and current_value <= p25:
        percentile = scale(current_value, p10, p25, 10, 15)
        return percentile, f"{percentile}th percentile, below normal range"
    if current_value <= p50:
        base = p25 if p25 is not None else p10
        percentile = scale(current_value, base, p50, 25, 25)
        return percentile, f"{percentile}th percentile, below median"
    if p75 is not None and current_value <= p75:
        percentile = scale(current_value, p50, p75, 50, 25)
        return percentile, f"{percentile}th percentile, near normal"
    if current_value <= p90:
        ceiling = p75 if p75 is not None else p90
        percentile = scale(current_value, ceiling, p90, 75, 15)
        return percentile, f"{percentile}th percentile, above normal"
    return 90, "Above the 90th percentile, unusually high for this time of year"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
