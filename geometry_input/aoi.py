"""
AOI Parameter Module

Attaches the area of interest to the published parameters of a job.

The AOI is sent as serialized Esri polygon JSON under the configured AOI
parameter (``AreaOfInterest`` by default) and copied to every GEOMETRY-typed
workspace parameter. When configured, GeoJSON and WKT renditions of the AOI
(reprojected to WGS84) are added under their own parameter names.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from config.constants import AOI_ERROR_MARKER, DEFAULT_AOI_PARAM_NAME
from utils.conversion import sanitize_param_key, to_trimmed_string
from utils.errors import create_geometry_error
from utils.geometry_converters import (
    is_polygon_geometry,
    normalize_ring,
    polygon_json_to_geojson,
    polygon_json_to_wkt,
    to_wgs84_polygon_json,
)
from utils.logger import get_logger

logger = get_logger(__name__)


def create_aoi_serialization_error() -> Dict[str, Any]:
    return create_geometry_error(
        'GEOMETRY_SERIALIZATION_FAILED',
        code='GEOMETRY_SERIALIZATION_FAILED',
        severity='error',
        recoverable=True,
    )


def collect_geometry_param_names(parameters: Optional[Iterable[Dict[str, Any]]]) -> List[str]:
    """Unique, trimmed names of GEOMETRY-typed workspace parameters."""
    names: List[str] = []
    for param in parameters or []:
        if not isinstance(param, dict) or param.get('type') != 'GEOMETRY':
            continue
        name = to_trimmed_string(param.get('name'))
        if name and name not in names:
            names.append(name)
    return names


def _extract_polygon_json(geometry_json: Any) -> Optional[Dict[str, Any]]:
    if is_polygon_geometry(geometry_json):
        return geometry_json.get('geometry', geometry_json) if 'geometry' in geometry_json else geometry_json
    return None


def _safe_dumps(value: Any) -> Optional[str]:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"AOI serialization failed: {e}")
        return None


def attach_aoi(
    base: Dict[str, Any],
    geometry_json: Any,
    config: Optional[Dict[str, Any]] = None,
    geometry_param_names: Optional[Iterable[str]] = None
) -> Dict[str, Any]:
    """
    Copy of ``base`` with the AOI attached.

    Parameters:
    -----------
    base : Dict
        Published parameters built from the form
    geometry_json : Any
        Esri polygon JSON (or a feature holding one)
    config : Optional[Dict]
        Reads ``aoi_param_name``, ``aoi_geojson_param_name`` and
        ``aoi_wkt_param_name``
    geometry_param_names : Optional[Iterable[str]]
        GEOMETRY-typed parameters that also receive the AOI

    Returns:
    --------
    Dict
        ``base`` unchanged when there is no polygon; ``base`` plus the
        ``__aoi_error__`` record when serialization fails; otherwise ``base``
        plus the serialized AOI
    """
    config = config or {}
    param_name = sanitize_param_key(config.get('aoi_param_name'), DEFAULT_AOI_PARAM_NAME)

    aoi_json = _extract_polygon_json(geometry_json)
    if aoi_json is None:
        return dict(base)

    serialized = _safe_dumps(aoi_json)
    if serialized is None:
        return {**base, AOI_ERROR_MARKER: create_aoi_serialization_error()}

    result = {**base, param_name: serialized}

    for name in geometry_param_names or []:
        if not isinstance(name, str):
            continue
        extra = sanitize_param_key(name, '')
        if extra and extra != param_name:
            result[extra] = serialized

    geojson_param = to_trimmed_string(config.get('aoi_geojson_param_name'))
    wkt_param = to_trimmed_string(config.get('aoi_wkt_param_name'))
    if geojson_param or wkt_param:
        wgs84 = to_wgs84_polygon_json(aoi_json)
        if geojson_param:
            geojson = polygon_json_to_geojson(wgs84)
            if geojson:
                result[sanitize_param_key(geojson_param, 'AreaOfInterestGeoJson')] = json.dumps(geojson)
        if wkt_param:
            result[sanitize_param_key(wkt_param, 'AreaOfInterestWkt')] = polygon_json_to_wkt(wgs84)

    return result


def remove_aoi_error_marker(params: Dict[str, Any]) -> None:
    params.pop(AOI_ERROR_MARKER, None)


def make_geojson(polygon_json: Any) -> Dict[str, Any]:
    """GeoJSON Polygon for a polygon; empty coordinates when nothing usable remains."""
    if not polygon_json:
        return {'type': 'Polygon', 'coordinates': []}

    geojson = polygon_json_to_geojson(polygon_json)
    if geojson:
        return geojson

    rings = polygon_json.get('rings') if isinstance(polygon_json, dict) else None
    normalized = [r for r in (normalize_ring(ring) for ring in rings or []) if len(r) >= 4]
    return {'type': 'Polygon', 'coordinates': normalized}
