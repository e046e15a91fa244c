"""
Geometry Dissolve Module

Merges the features of an AOI file into one polygonal geometry and repairs
invalid geometries.
"""

import geopandas as gpd
from shapely import make_valid
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from utils.logger import get_logger

logger = get_logger(__name__)


def dissolve_geometries(gdf: gpd.GeoDataFrame) -> BaseGeometry:
    """
    Dissolve all geometries in a GeoDataFrame into a single geometry.

    Args:
        gdf: GeoDataFrame with one or more polygon features

    Returns:
        Single Shapely geometry (Polygon or MultiPolygon)

    Example:
        Input: 3 separate polygons
        Output: 1 MultiPolygon or 1 merged Polygon (if overlapping)
    """
    if len(gdf) == 1:
        logger.debug("Single feature detected, returning as-is")
        return gdf.geometry.iloc[0]

    logger.info(f"Dissolving {len(gdf)} features into a single AOI...")

    try:
        dissolved = unary_union(list(gdf.geometry))
    except GEOSException as e:
        logger.error(f"Failed to dissolve geometries: {e}")
        raise ValueError(f"Geometry dissolve failed: {e}")

    logger.info(f"  - Result: {dissolved.geom_type}")
    return dissolved


def repair_invalid_geometry(geom: BaseGeometry) -> BaseGeometry:
    """
    Repair an invalid geometry with make_valid(), falling back to buffer(0).

    Args:
        geom: Potentially invalid Shapely geometry

    Returns:
        Valid Shapely geometry

    Raises:
        ValueError: If neither repair produces a geometry
    """
    if geom.is_valid:
        return geom

    logger.warning(f"Invalid geometry detected: {geom.geom_type}")
    logger.debug(f"  - Reason: {getattr(geom, 'is_valid_reason', 'Unknown')}")

    try:
        repaired = make_valid(geom)
        logger.info("  ✓ Geometry repaired using make_valid()")
        return repaired
    except GEOSException as e:
        logger.warning(f"make_valid() failed: {e}, trying buffer(0)...")

    try:
        repaired = geom.buffer(0)
        logger.info("  ✓ Geometry repaired using buffer(0)")
        return repaired
    except GEOSException as e:
        logger.error(f"All repair attempts failed: {e}")
        raise ValueError(f"Cannot repair invalid geometry: {e}")


def extract_polygons(geom: BaseGeometry) -> BaseGeometry:
    """
    Keep only the polygonal parts of a geometry.

    make_valid() can turn a bow-tie into a GeometryCollection of polygons and
    lines; only the polygons are kept.

    Raises:
        ValueError: If the geometry has no polygonal part
    """
    if geom.geom_type in ('Polygon', 'MultiPolygon'):
        return geom

    parts = [
        g for g in getattr(geom, 'geoms', [])
        if g.geom_type in ('Polygon', 'MultiPolygon')
    ]
    if not parts:
        raise ValueError(f"No polygon geometries found in {geom.geom_type}")

    logger.info(f"Extracted {len(parts)} polygon part(s) from {geom.geom_type}")
    if len(parts) == 1:
        return parts[0]
    return unary_union(parts)
