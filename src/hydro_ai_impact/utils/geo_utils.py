"""
Geographic Utilities
====================

Helpers for state lookups and GeoJSON geometry handling used when
resolving stations to counties for drought context.
"""

from typing import Any, Dict, Optional, Tuple

from hydro_ai_impact.utils.constants import STATE_NAMES


def state_abbr_to_name(abbr: str) -> Optional[str]:
    """Convert a 2-letter state abbreviation to the full state name."""
    return STATE_NAMES.get((abbr or "").upper())


def feature_lat_lon(feature: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """
    Extract (latitude, longitude) from a GeoJSON point feature.

    GeoJSON stores coordinates as [longitude, latitude], so the order
    is swapped here.

    Args:
        feature: GeoJSON feature dict

    Returns:
        (lat, lon) tuple, or None if the feature has no point geometry
    """
    geometry = feature.get("geometry") or {}
    coords = geometry.get("coordinates")
    if not coords or len(coords) < 2:
        return None
    try:
        return float(coords[1]), float(coords[0])
    except (TypeError, ValueError):
        return None
