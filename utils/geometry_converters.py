"""
Geometry conversion utilities for FME Export Tool.

The AOI travels through the tool as Esri polygon JSON (``rings`` plus
``spatialReference``), which is what FME Flow workspaces expect. This module
converts it to GeoJSON and WKT for the optional AOI parameters, bridges it to
Shapely for validation and area work, and reprojects it to WGS84.

Functions:
    coordinates_equal: Compare two vertices with a numeric tolerance
    normalize_ring: Coerce a ring to numeric vertices and close it
    is_polygon_geometry: Check for a polygon JSON with valid closed rings
    extract_rings: Rings from a polygon JSON, a feature, or a Shapely geometry
    polygon_json_to_geojson: Esri rings to GeoJSON Polygon
    polygon_json_to_wkt: Esri rings to WKT POLYGON text
    geojson_to_polygon_json: GeoJSON geometry/feature to Esri polygon JSON
    shapely_to_polygon_json: Shapely Polygon/MultiPolygon to Esri polygon JSON
    polygon_json_to_shapely: Esri polygon JSON to a Shapely geometry
    count_geometry_vertices: Count total vertices in a geometry
    read_wkids: wkid / latestWkid of a spatial reference
    is_web_mercator_sr: Web Mercator check
    is_wgs84_sr: WGS84 / geographic check
    to_wgs84_polygon_json: Reproject polygon JSON to EPSG:4326
    geometry_to_geojson: GeoJSON mapping of a Shapely geometry
"""

import math
import re
from typing import Any, Dict, List, Optional

from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError
from shapely.geometry import MultiPolygon, Polygon, mapping, shape
from shapely.geometry.base import BaseGeometry

from config.constants import (
    COORDINATE_TOLERANCE,
    WEB_MERCATOR_WKIDS,
    WKID_WGS84,
)
from utils.conversion import is_finite_number
from utils.logger import get_logger

logger = get_logger(__name__)

EARTH_RADIUS_METERS = 6378137.0


def coordinates_equal(a: Any, b: Any) -> bool:
    """True when the x/y parts of two vertices differ by at most 1e-9."""
    if not isinstance(a, (list, tuple)) or not isinstance(b, (list, tuple)):
        return False
    for av, bv in zip(a[:2], b[:2]):
        if not is_finite_number(av) or not is_finite_number(bv):
            return False
        if abs(av - bv) > COORDINATE_TOLERANCE:
            return False
    return True


def _to_float(part: Any) -> Optional[float]:
    if isinstance(part, bool):
        return None
    if isinstance(part, str):
        try:
            part = float(part.strip())
        except ValueError:
            return None
    if isinstance(part, (int, float)) and math.isfinite(part):
        return float(part)
    return None


def _normalize_coordinate(vertex: Any) -> Optional[List[float]]:
    if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
        return None
    parts = [_to_float(part) for part in vertex[:4]]
    x, y = parts[0], parts[1]
    if x is None or y is None:
        return None
    # z and m are kept only when numeric
    return [x, y] + [part for part in parts[2:] if part is not None]


def normalize_ring(ring: Any) -> List[List[float]]:
    """
    Normalize a polygon ring.

    Non-numeric vertices are dropped, numeric strings are coerced, z/m values
    are kept. Rings with fewer than three usable vertices come back empty;
    open rings are closed by repeating the first vertex.

    Example:
        >>> normalize_ring([[0, 0], [1, 0], ['1', '1']])
        [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 0.0]]
    """
    if not isinstance(ring, (list, tuple)):
        return []
    coords = [c for c in (_normalize_coordinate(v) for v in ring) if c]
    if len(coords) < 3:
        return []
    if not coordinates_equal(coords[0], coords[-1]):
        coords.append(list(coords[0]))
    return coords


def _is_valid_vertex(vertex: Any) -> bool:
    return (
        isinstance(vertex, (list, tuple))
        and 2 <= len(vertex) <= 4
        and all(is_finite_number(part) for part in vertex)
    )


def _is_valid_ring(ring: Any) -> bool:
    if not isinstance(ring, (list, tuple)) or len(ring) < 4:
        return False
    if not all(_is_valid_vertex(vertex) for vertex in ring):
        return False
    return coordinates_equal(ring[0], ring[-1])


def is_polygon_geometry(value: Any) -> bool:
    """
    Check whether a value is polygon JSON with at least one ring.

    Accepts both a bare ``{'rings': ...}`` and a feature-like
    ``{'geometry': {'rings': ...}}``. Every ring needs four or more finite
    vertices and must be closed.
    """
    if not isinstance(value, dict):
        return False
    geom = value.get('geometry', value) if 'geometry' in value else value
    if not isinstance(geom, dict):
        return False
    rings = geom.get('rings')
    return isinstance(rings, list) and len(rings) > 0 and all(_is_valid_ring(r) for r in rings)


def extract_rings(poly: Any) -> List[Any]:
    """Rings of a polygon JSON, a feature holding one, or a Shapely polygon."""
    if poly is None:
        return []
    if isinstance(poly, BaseGeometry):
        converted = shapely_to_polygon_json(poly)
        return converted['rings'] if converted else []
    if not isinstance(poly, dict):
        return []
    if isinstance(poly.get('rings'), list):
        return poly['rings']
    geometry = poly.get('geometry')
    if isinstance(geometry, dict) and isinstance(geometry.get('rings'), list):
        return geometry['rings']
    return []


def polygon_json_to_geojson(poly: Any) -> Optional[Dict[str, Any]]:
    """
    Convert Esri polygon JSON to a GeoJSON Polygon geometry.

    Parameters:
    -----------
    poly : Any
        Esri polygon JSON (or a feature holding one)

    Returns:
    --------
    Optional[Dict]
        ``{'type': 'Polygon', 'coordinates': [...]}`` keeping only rings that
        have four or more vertices after normalization, or None
    """
    if not poly:
        return None

    rings = extract_rings(poly)
    if not rings:
        logger.debug("polygon_json_to_geojson: no rings found")
        return None

    normalized = [ring for ring in (normalize_ring(r) for r in rings) if len(ring) >= 4]
    if not normalized:
        logger.debug("polygon_json_to_geojson: no valid rings after normalization")
        return None

    return {'type': 'Polygon', 'coordinates': normalized}


def format_number_for_wkt(value: Any) -> str:
    """
    Format a coordinate for WKT.

    Trailing zeros are trimmed and scientific notation is avoided.

    Example:
        >>> format_number_for_wkt(1.50)
        '1.5'
        >>> format_number_for_wkt(1e-7)
        '0.0000001'
    """
    if not is_finite_number(value):
        return '0'
    text = repr(float(value))
    if 'e' in text or 'E' in text:
        text = f'{value:.12f}'
    text = re.sub(r'\.0+$', '', text)
    text = re.sub(r'(\.\d*?)0+$', r'\1', text)
    return text or '0'


def _serialize_coordinate(vertex: Any) -> Optional[str]:
    if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
        return None
    values = []
    for raw in vertex:
        number = _to_float(raw)
        if number is None:
            return None
        values.append(format_number_for_wkt(number))
    return ' '.join(values)


def polygon_json_to_wkt(poly: Any) -> str:
    """
    Convert Esri polygon JSON to WKT.

    Returns:
    --------
    str
        ``POLYGON((x y, ...), (...))`` or ``POLYGON EMPTY``
    """
    geojson = polygon_json_to_geojson(poly)
    if not geojson:
        return 'POLYGON EMPTY'

    serialized = []
    for ring in geojson['coordinates']:
        parts = [p for p in (_serialize_coordinate(v) for v in ring) if p]
        if len(parts) >= 4:
            serialized.append(f"({', '.join(parts)})")

    if not serialized:
        return 'POLYGON EMPTY'
    return f"POLYGON({', '.join(serialized)})"


def shapely_to_polygon_json(geom: BaseGeometry, wkid: int = WKID_WGS84) -> Optional[Dict]:
    """
    Convert Shapely Polygon/MultiPolygon to Esri polygon JSON.

    Parameters:
    -----------
    geom : BaseGeometry
        Shapely Polygon or MultiPolygon geometry
    wkid : int
        Spatial reference written to the result (default: 4326)

    Returns:
    --------
    Optional[Dict]
        ``{'rings': [...], 'spatialReference': {'wkid': wkid}}``, or None for
        empty or non-polygon geometries

    Notes:
    ------
    - Exterior rings are written clockwise and holes counter-clockwise
    - For MultiPolygon, rings from all component polygons are combined
    """
    if geom is None or geom.is_empty:
        return None

    if geom.geom_type == 'Polygon':
        polygons = [geom]
    elif geom.geom_type == 'MultiPolygon':
        polygons = list(geom.geoms)
    else:
        return None

    rings: List[List[List[float]]] = []
    for polygon in polygons:
        exterior = polygon.exterior
        coords = [[x, y] for x, y, *_ in exterior.coords]
        rings.append(coords[::-1] if exterior.is_ccw else coords)
        for interior in polygon.interiors:
            coords = [[x, y] for x, y, *_ in interior.coords]
            rings.append(coords if interior.is_ccw else coords[::-1])

    return {'rings': rings, 'spatialReference': {'wkid': wkid}}


def geojson_to_polygon_json(geojson: Any, wkid: int = WKID_WGS84) -> Optional[Dict]:
    """GeoJSON Polygon/MultiPolygon (geometry or feature) to Esri polygon JSON."""
    if not isinstance(geojson, dict):
        return None
    if geojson.get('type') == 'Feature':
        geojson = geojson.get('geometry')
        if not isinstance(geojson, dict):
            return None
    if geojson.get('type') not in ('Polygon', 'MultiPolygon'):
        return None
    try:
        geom = shape(geojson)
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Could not build geometry from GeoJSON: {e}")
        return None
    return shapely_to_polygon_json(geom, wkid)


def polygon_json_to_shapely(poly: Any) -> Optional[BaseGeometry]:
    """
    Build a Shapely geometry from Esri polygon JSON.

    Ring orientation is not trusted: a ring inside an earlier shell becomes a
    hole of that shell, any other ring starts a new shell. Returns a Polygon,
    a MultiPolygon, or None when no usable ring exists.
    """
    rings = [r for r in (normalize_ring(ring) for ring in extract_rings(poly)) if len(r) >= 4]
    if not rings:
        return None

    shells: List[Dict[str, Any]] = []
    for ring in rings:
        candidate = Polygon([tuple(v[:2]) for v in ring])
        owner = None
        for entry in shells:
            if entry['polygon'].is_valid and entry['polygon'].contains(candidate.representative_point()):
                owner = entry
                break
        if owner is None:
            shells.append({'polygon': candidate, 'shell': ring, 'holes': []})
        else:
            owner['holes'].append(ring)

    polygons = [
        Polygon([tuple(v[:2]) for v in entry['shell']], [[tuple(v[:2]) for v in h] for h in entry['holes']])
        for entry in shells
    ]
    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)


def count_geometry_vertices(geom: BaseGeometry) -> int:
    """
    Count total vertices in a Polygon or MultiPolygon geometry.

    Parameters:
    -----------
    geom : BaseGeometry
        Shapely geometry (Polygon or MultiPolygon)

    Returns:
    --------
    int
        Total number of vertices in the geometry
    """
    if geom is None or geom.is_empty:
        return 0

    if geom.geom_type == 'Polygon':
        polygons = [geom]
    elif geom.geom_type == 'MultiPolygon':
        polygons = list(geom.geoms)
    else:
        return 0

    total = 0
    for polygon in polygons:
        total += len(polygon.exterior.coords)
        for interior in polygon.interiors:
            total += len(interior.coords)
    return total


def read_wkids(sr: Any) -> Dict[str, Optional[int]]:
    if not isinstance(sr, dict):
        return {'wkid': None, 'latest_wkid': None}
    wkid = sr.get('wkid')
    latest = sr.get('latestWkid', sr.get('latest_wkid'))
    return {
        'wkid': wkid if isinstance(wkid, int) and not isinstance(wkid, bool) else None,
        'latest_wkid': latest if isinstance(latest, int) and not isinstance(latest, bool) else None,
    }


def is_web_mercator_sr(sr: Any) -> bool:
    if isinstance(sr, dict) and sr.get('isWebMercator'):
        return True
    ids = read_wkids(sr)
    return ids['wkid'] in WEB_MERCATOR_WKIDS or ids['latest_wkid'] in WEB_MERCATOR_WKIDS


def is_wgs84_sr(sr: Any) -> bool:
    if isinstance(sr, dict) and (sr.get('isGeographic') or sr.get('isWGS84')):
        return True
    ids = read_wkids(sr)
    return ids['wkid'] == WKID_WGS84 or ids['latest_wkid'] == WKID_WGS84


def _source_crs(sr: Any) -> Optional[CRS]:
    if not isinstance(sr, dict):
        return None
    ids = read_wkids(sr)
    for code in (ids['latest_wkid'], ids['wkid']):
        if code is None:
            continue
        try:
            return CRS.from_epsg(code)
        except CRSError:
            continue
    wkt = sr.get('wkt')
    if isinstance(wkt, str) and wkt.strip():
        try:
            return CRS.from_wkt(wkt)
        except CRSError:
            return None
    return None


def _web_mercator_to_geographic(x: float, y: float) -> List[float]:
    lon = math.degrees(x / EARTH_RADIUS_METERS)
    lat = math.degrees(2 * math.atan(math.exp(y / EARTH_RADIUS_METERS)) - math.pi / 2)
    return [lon, lat]


def to_wgs84_polygon_json(poly_json: Any) -> Any:
    """
    Reproject polygon JSON to WGS84 (EPSG:4326).

    Uses a pyproj transformer built from the wkid/latestWkid (or wkt) of the
    polygon. When no CRS can be resolved for a Web Mercator polygon, the
    spherical inverse Mercator formula is applied instead. Input that cannot be
    reprojected is returned unchanged.
    """
    if not isinstance(poly_json, dict) or not isinstance(poly_json.get('rings'), list):
        return poly_json

    sr = poly_json.get('spatialReference')
    if is_wgs84_sr(sr):
        return poly_json

    try:
        source = _source_crs(sr)
        if source is not None:
            transformer = Transformer.from_crs(source, CRS.from_epsg(WKID_WGS84), always_xy=True)
            rings = []
            for ring in poly_json['rings']:
                projected = []
                for vertex in ring:
                    lon, lat = transformer.transform(vertex[0], vertex[1])
                    projected.append([lon, lat])
                rings.append(projected)
            return {'rings': rings, 'spatialReference': {'wkid': WKID_WGS84}}

        if is_web_mercator_sr(sr):
            rings = [
                [_web_mercator_to_geographic(vertex[0], vertex[1]) for vertex in ring]
                for ring in poly_json['rings']
            ]
            return {'rings': rings, 'spatialReference': {'wkid': WKID_WGS84}}

    except (ProjError, CRSError, TypeError, IndexError) as e:
        logger.warning(f"Reprojection to WGS84 failed, keeping original polygon: {e}")
        return poly_json

    logger.debug("to_wgs84_polygon_json: unknown spatial reference, returning original polygon")
    return poly_json


def geometry_to_geojson(geom: BaseGeometry) -> Optional[Dict[str, Any]]:
    """GeoJSON mapping of a Shapely geometry (None for empty input)."""
    if geom is None or geom.is_empty:
        return None
    return mapping(geom)
