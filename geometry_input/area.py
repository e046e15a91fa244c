"""
AOI Area Module

Computes the area of an AOI polygon in square meters and evaluates it against
the configured limits.

Area is computed through a chain of strategies; the first strategy returning
a positive area wins:
1. Operators: geodesic area on the WGS84 ellipsoid (pyproj.Geod) for
   geographic polygons, planar area scaled to meters for projected ones
2. Engine: planar area after projecting to an equal-area CRS
   (UTM zone from the centroid, Albers for CONUS, or World Cylindrical Equal Area)
3. Geometry service: ArcGIS ``areasAndLengths`` REST operation

Before the chain runs, geographic polygons are normalized across the
antimeridian and densified (geodesic segments of 50 m, then planar segments).
"""

import json
import math
from typing import Any, Callable, Dict, List, Optional

import requests
import shapely
from pyproj import CRS, Geod, Transformer
from pyproj.exceptions import CRSError, ProjError
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.ops import transform

from config.constants import (
    DEGREES_PER_METER,
    GEODESIC_SEGMENT_LENGTH_METERS,
    MIN_PLANAR_SEGMENT_DEGREES,
    WKID_WGS84,
)
from utils.conversion import is_finite_number
from utils.geometry_converters import (
    extract_rings,
    is_web_mercator_sr,
    is_wgs84_sr,
    polygon_json_to_shapely,
    read_wkids,
    to_wgs84_polygon_json,
)
from utils.logger import get_logger

logger = get_logger(__name__)

CONUS_ALBERS = 'EPSG:5070'  # Albers Equal Area Conic for CONUS
WORLD_EQUAL_AREA = 'EPSG:6933'  # WGS 84 / NSIDC EASE-Grid 2.0 Global
GEOMETRY_SERVICE_TIMEOUT_SECONDS = 30

WGS84_GEOD = Geod(ellps='WGS84')

AreaStrategy = Callable[[], float]


def is_geographic_polygon(polygon_json: Optional[Dict]) -> bool:
    """True for polygons in WGS84 or Web Mercator."""
    if not isinstance(polygon_json, dict):
        return False
    sr = polygon_json.get('spatialReference')
    return is_wgs84_sr(sr) or is_web_mercator_sr(sr)


def _resolve_crs(sr: Any) -> Optional[CRS]:
    ids = read_wkids(sr)
    for code in (ids['latest_wkid'], ids['wkid']):
        if code is None:
            continue
        try:
            return CRS.from_epsg(code)
        except CRSError:
            continue
    return None


def normalize_central_meridian(polygon_json: Dict) -> Dict:
    """
    Shift a WGS84 polygon that crosses the antimeridian into a continuous
    longitude range.

    A ring whose longitudes span more than 180 degrees has its negative
    longitudes moved by +360.
    """
    rings = extract_rings(polygon_json)
    if not rings:
        return polygon_json

    normalized = []
    changed = False
    for ring in rings:
        lons = [v[0] for v in ring if isinstance(v, (list, tuple)) and is_finite_number(v[0])]
        if lons and max(lons) - min(lons) > 180:
            changed = True
            normalized.append([[v[0] + 360 if v[0] < 0 else v[0]] + list(v[1:]) for v in ring])
        else:
            normalized.append(ring)

    if not changed:
        return polygon_json
    logger.debug("Polygon crosses the antimeridian, longitudes shifted")
    return {**polygon_json, 'rings': normalized}


def _geodesic_densify_ring(ring: List[List[float]], segment_meters: float) -> List[List[float]]:
    densified: List[List[float]] = []
    for start, end in zip(ring[:-1], ring[1:]):
        densified.append([start[0], start[1]])
        _, _, distance = WGS84_GEOD.inv(start[0], start[1], end[0], end[1])
        extra = int(math.ceil(distance / segment_meters)) - 1
        if extra > 0:
            for lon, lat in WGS84_GEOD.npts(start[0], start[1], end[0], end[1], extra):
                # npts wraps longitudes to [-180, 180]; keep them continuous with the ring
                lon += 360 * round((start[0] - lon) / 360)
                densified.append([lon, lat])
    if ring:
        densified.append([ring[-1][0], ring[-1][1]])
    return densified


def apply_densify(polygon_json: Dict) -> Dict:
    """
    Densify polygon edges before measuring.

    Geographic polygons get geodesic densification (50 m segments). All
    polygons then get planar densification: 50 map units for projected
    references, the degree equivalent of 50 m (at least 1e-6 degrees) for
    geographic ones.
    """
    geographic = is_wgs84_sr(polygon_json.get('spatialReference'))
    working = polygon_json

    if geographic:
        try:
            rings = [
                _geodesic_densify_ring(ring, GEODESIC_SEGMENT_LENGTH_METERS)
                for ring in extract_rings(working)
            ]
            working = {**working, 'rings': rings}
        except (ValueError, TypeError, IndexError) as e:
            logger.debug(f"Geodesic densify skipped: {e}")

    planar_segment = (
        max(GEODESIC_SEGMENT_LENGTH_METERS * DEGREES_PER_METER, MIN_PLANAR_SEGMENT_DEGREES)
        if geographic
        else GEODESIC_SEGMENT_LENGTH_METERS
    )
    try:
        rings = []
        for ring in extract_rings(working):
            line = shapely.segmentize(shapely.LineString([v[:2] for v in ring]), planar_segment)
            rings.append([list(coord) for coord in line.coords])
        working = {**working, 'rings': rings}
    except (ValueError, TypeError, GEOSException) as e:
        logger.debug(f"Planar densify skipped: {e}")

    return working


def prepare_polygon_for_area(polygon_json: Dict) -> Dict:
    """
    Normalize and densify a polygon for area measurement.

    Web Mercator input is unprojected to WGS84 first so that it can be
    measured geodesically.
    """
    working = polygon_json
    sr = working.get('spatialReference')
    if is_web_mercator_sr(sr):
        working = to_wgs84_polygon_json(working)
    if is_wgs84_sr(working.get('spatialReference')):
        working = normalize_central_meridian(working)
    return apply_densify(working)


def _geodesic_area(geom: BaseGeometry) -> float:
    # Geod sums signed ring areas, so shells and holes need opposite winding
    parts = geom.geoms if isinstance(geom, MultiPolygon) else [geom]
    total = 0.0
    for part in parts:
        if not isinstance(part, Polygon):
            continue
        area, _ = WGS84_GEOD.geometry_area_perimeter(orient(part, 1.0))
        total += abs(area)
    return total


def _planar_area_square_meters(geom: BaseGeometry, sr: Any) -> float:
    crs = _resolve_crs(sr)
    factor = 1.0
    if crs is not None and crs.axis_info:
        factor = crs.axis_info[0].unit_conversion_factor or 1.0
    return abs(geom.area) * factor * factor


def select_equal_area_crs(geom: BaseGeometry, original_crs: CRS) -> CRS:
    """
    Select a projected CRS for measuring a geometry.

    Strategy:
    1. Calculate geometry centroid (in lon/lat)
    2. Determine UTM zone from centroid longitude and hemisphere from latitude
    3. Fallback to Albers Equal Area (CONUS) or World Cylindrical Equal Area

    Args:
        geom: Shapely geometry in ``original_crs``
        original_crs: CRS of the geometry

    Returns:
        Projected CRS with metric units
    """
    centroid = geom.centroid
    if original_crs != CRS.from_epsg(WKID_WGS84):
        transformer = Transformer.from_crs(original_crs, CRS.from_epsg(WKID_WGS84), always_xy=True)
        lon, lat = transformer.transform(centroid.x, centroid.y)
    else:
        lon, lat = centroid.x, centroid.y

    if lon > 180:
        lon -= 360

    try:
        minx, _, maxx, _ = geom.bounds
        span = maxx - minx if original_crs == CRS.from_epsg(WKID_WGS84) else None
        # UTM zones are 6 degrees wide
        if span is None or span <= 6:
            utm_zone = min(int((lon + 180) / 6) + 1, 60)
            epsg_code = (32600 if lat >= 0 else 32700) + utm_zone
            logger.debug(f"  - Selected UTM Zone {utm_zone} (EPSG:{epsg_code}) for area")
            return CRS.from_epsg(epsg_code)
    except CRSError as e:
        logger.warning(f"Failed to determine UTM zone: {e}")

    # CONUS approximate bounds: lon -125 to -66, lat 24 to 49
    if -125 <= lon <= -66 and 24 <= lat <= 49:
        logger.debug("  - Using Albers Equal Area Conic (EPSG:5070) for area")
        return CRS.from_string(CONUS_ALBERS)
    logger.debug("  - Using World Cylindrical Equal Area (EPSG:6933) for area")
    return CRS.from_string(WORLD_EQUAL_AREA)


def _projected_area(geom: BaseGeometry, sr: Any) -> float:
    source = _resolve_crs(sr)
    if source is None:
        return 0.0
    if source.is_projected and not is_web_mercator_sr(sr):
        return _planar_area_square_meters(geom, sr)
    target = select_equal_area_crs(geom, source)
    transformer = Transformer.from_crs(source, target, always_xy=True)
    projected = transform(transformer.transform, geom)
    return abs(projected.area)


def calc_area_via_geometry_service(
    polygon_json: Dict,
    service_url: Optional[str],
    session: Optional[requests.Session] = None
) -> float:
    """
    Area from an ArcGIS geometry service ``areasAndLengths`` call.

    Returns 0 when no service is configured or the call fails.
    """
    if not service_url:
        return 0.0

    wkid = read_wkids(polygon_json.get('spatialReference'))['wkid'] or WKID_WGS84
    url = f"{service_url.rstrip('/')}/areasAndLengths"
    payload = {
        'f': 'json',
        'sr': str(wkid),
        'polygons': json.dumps([{'rings': polygon_json.get('rings', [])}]),
        'lengthUnit': '9001',
        'areaUnit': json.dumps({'areaUnit': 'esriSquareMeters'}),
        'calculationType': 'geodesic',
    }

    http = session or requests
    try:
        response = http.post(url, data=payload, timeout=GEOMETRY_SERVICE_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning(f"Geometry service area calculation failed, using fallback: {e}")
        return 0.0

    areas = data.get('areas') if isinstance(data, dict) else None
    area = areas[0] if isinstance(areas, list) and areas else None
    if is_finite_number(area) and abs(area) > 0:
        return abs(area)
    return 0.0


def create_area_strategies(geom: BaseGeometry, sr: Any, geographic: bool) -> List[AreaStrategy]:
    """Local strategies in priority order (operators, then projected engine)."""
    strategies: List[AreaStrategy] = []
    if geographic:
        strategies.append(lambda: _geodesic_area(geom))
    else:
        strategies.append(lambda: _planar_area_square_meters(geom, sr))
    strategies.append(lambda: _projected_area(geom, sr))
    return strategies


def calc_area(
    polygon_json: Optional[Dict],
    geometry_service_url: Optional[str] = None,
    session: Optional[requests.Session] = None
) -> float:
    """
    Area of an AOI polygon in square meters.

    Parameters:
    -----------
    polygon_json : Optional[Dict]
        Esri polygon JSON with ``rings`` and ``spatialReference``
    geometry_service_url : Optional[str]
        ArcGIS geometry service used when local strategies give no area
    session : Optional[requests.Session]
        HTTP session for the geometry service call

    Returns:
    --------
    float
        Area in m², or 0 when every strategy fails
    """
    if not isinstance(polygon_json, dict) or not extract_rings(polygon_json):
        return 0.0

    try:
        prepared = prepare_polygon_for_area(polygon_json)
    except (ValueError, TypeError, ProjError, CRSError) as e:
        logger.debug(f"Polygon preparation failed, measuring original: {e}")
        prepared = polygon_json

    geom = polygon_json_to_shapely(prepared)
    if geom is not None:
        sr = prepared.get('spatialReference')
        geographic = is_geographic_polygon(prepared)
        for strategy in create_area_strategies(geom, sr, geographic):
            try:
                area = strategy()
            except (ValueError, TypeError, ProjError, CRSError, GEOSException) as e:
                logger.debug(f"Area strategy failed: {e}")
                continue
            if is_finite_number(area) and area > 0:
                return float(area)

    return calc_area_via_geometry_service(prepared, geometry_service_url, session)


def _resolve_area_limit(limit: Any) -> Optional[float]:
    if not is_finite_number(limit) or limit <= 0:
        return None
    return float(limit)


def evaluate_area(
    area: float,
    max_area: Optional[float] = None,
    large_area: Optional[float] = None
) -> Dict[str, Any]:
    """
    Evaluate an area against the maximum and warning thresholds.

    Limits that are missing, non-finite or not positive count as unset. A
    warning is only raised when the maximum is not exceeded.
    """
    normalized = abs(area) if is_finite_number(area) else 0.0
    max_threshold = _resolve_area_limit(max_area)
    warning_threshold = _resolve_area_limit(large_area)
    exceeds_maximum = max_threshold is not None and normalized > max_threshold
    should_warn = (
        not exceeds_maximum
        and warning_threshold is not None
        and normalized > warning_threshold
    )
    return {
        'area': normalized,
        'max_threshold': max_threshold,
        'warning_threshold': warning_threshold,
        'exceeds_maximum': exceeds_maximum,
        'should_warn': should_warn,
    }


def check_max_area(area: float, max_area: Optional[float] = None) -> Dict[str, Any]:
    resolved = _resolve_area_limit(max_area)
    if resolved is None or area <= resolved:
        return {'ok': True}
    return {'ok': False, 'message': 'geometryAreaTooLargeCode', 'code': 'AREA_TOO_LARGE'}


def check_large_area(area: float, large_area: Optional[float] = None) -> bool:
    return evaluate_area(area, large_area=large_area)['should_warn']
