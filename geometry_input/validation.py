"""
AOI Polygon Validation Module

Checks that an AOI polygon can be submitted: it must be a polygon, simple
(repaired with make_valid when possible), made of closed rings of at least
four vertices, have a positive area, and keep every hole inside a shell.
"""

from typing import Any, Dict, Optional

from shapely import make_valid
from shapely.errors import GEOSException
from shapely.geometry import LinearRing, MultiPolygon, Polygon
from shapely.ops import unary_union

from geometry_input.area import calc_area
from utils.errors import create_geometry_error
from utils.geometry_converters import (
    coordinates_equal,
    extract_rings,
    polygon_json_to_shapely,
    shapely_to_polygon_json,
)
from utils.logger import get_logger

logger = get_logger(__name__)


def _geometry_error(message_key: str, code: str) -> Dict[str, Any]:
    return {
        'valid': False,
        'error': create_geometry_error(message_key, code=code, scope='general'),
    }


def _is_polygon_json(geometry: Any) -> bool:
    if not isinstance(geometry, dict):
        return False
    declared = geometry.get('type')
    if declared is not None and str(declared).lower() not in ('polygon', 'esrigeometrypolygon'):
        return False
    return isinstance(geometry.get('rings'), list)


def _polygonal_part(geom):
    """Keep only the polygonal parts of a repaired geometry."""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    parts = [g for g in getattr(geom, 'geoms', []) if isinstance(g, (Polygon, MultiPolygon))]
    if not parts:
        return None
    return unary_union(parts)


def simplify_polygon(polygon_json: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Simplified (topologically repaired) copy of a polygon, or None.

    None means the polygon cannot be made simple.
    """
    geom = polygon_json_to_shapely(polygon_json)
    if geom is None:
        return None

    if not geom.is_valid:
        logger.debug(f"Invalid AOI polygon: {getattr(geom, 'is_valid_reason', 'unknown')}")
        geom = _polygonal_part(make_valid(geom))
        if geom is None or not geom.is_valid:
            return None

    simplified = shapely_to_polygon_json(geom)
    if simplified is None:
        return None
    simplified['spatialReference'] = polygon_json.get('spatialReference', simplified['spatialReference'])
    return simplified


def _is_ring_closed(ring: Any) -> bool:
    if not isinstance(ring, list) or not ring:
        return False
    return coordinates_equal(ring[0], ring[-1])


def validate_ring_structure(rings: Any) -> bool:
    if not isinstance(rings, list) or not rings:
        return False
    return all(isinstance(ring, list) and len(ring) >= 4 and _is_ring_closed(ring) for ring in rings)


def validate_holes_within_shells(rings: Any) -> bool:
    """
    Every counter-clockwise ring (a hole in Esri polygon JSON) must lie
    inside one of the clockwise rings.
    """
    if not isinstance(rings, list) or len(rings) <= 1:
        return True

    shells, holes = [], []
    for ring in rings:
        coords = [tuple(v[:2]) for v in ring]
        (holes if LinearRing(coords).is_ccw else shells).append(Polygon(coords))

    for hole in holes:
        if not any(shell.contains(hole) for shell in shells):
            return False
    return True


def validate_polygon(
    geometry: Optional[Dict[str, Any]],
    geometry_service_url: Optional[str] = None
) -> Dict[str, Any]:
    """
    Validate an AOI polygon.

    Parameters:
    -----------
    geometry : Optional[Dict]
        Esri polygon JSON
    geometry_service_url : Optional[str]
        Passed on to the area calculation

    Returns:
    --------
    Dict
        ``{'valid': True, 'simplified': {...}}`` or
        ``{'valid': False, 'error': {...}}`` where the error code is one of
        NO_GEOMETRY, INVALID_GEOMETRY_TYPE, INVALID_GEOMETRY,
        GEOMETRY_INVALID, GEOMETRY_VALIDATION_ERROR
    """
    if not geometry:
        return _geometry_error('geometryMissingMessage', 'NO_GEOMETRY')

    if not _is_polygon_json(geometry):
        return _geometry_error('geometryPolygonRequired', 'INVALID_GEOMETRY_TYPE')

    try:
        simplified = simplify_polygon(geometry)
        if simplified is None:
            return _geometry_error('geometryNotSimple', 'INVALID_GEOMETRY')

        rings = extract_rings(simplified)
        if not validate_ring_structure(rings):
            return _geometry_error('geometryInvalidCode', 'GEOMETRY_INVALID')

        area = calc_area(simplified, geometry_service_url)
        if not area or area <= 0:
            return _geometry_error('geometryInvalidCode', 'GEOMETRY_INVALID')

        if not validate_holes_within_shells(rings):
            return _geometry_error('geometryInvalidCode', 'GEOMETRY_INVALID')

        return {'valid': True, 'simplified': simplified}

    except (ValueError, TypeError, IndexError, GEOSException) as e:
        logger.warning(f"Polygon validation failed: {e}")
        return _geometry_error('geometryValidationFailedMessage', 'GEOMETRY_VALIDATION_ERROR')
