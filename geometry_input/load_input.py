"""
AOI Input Loading Module

Reads an area of interest from a geospatial file (through GeoPandas) or from
an in-memory GeoJSON / Esri JSON document, and returns it as a single
polygon in EPSG:4326.
"""

import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, Tuple

import geopandas as gpd
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from config.constants import WKID_WGS84
from geometry_input.dissolve import dissolve_geometries, extract_polygons, repair_invalid_geometry
from utils.geometry_converters import (
    polygon_json_to_shapely,
    to_wgs84_polygon_json,
)
from utils.logger import get_logger

logger = get_logger(__name__)

POLYGON_TYPES = {'Polygon', 'MultiPolygon'}


def load_geometry_file(file_path: str) -> gpd.GeoDataFrame:
    """
    Load a geospatial file and return a GeoDataFrame with its original CRS.

    Supports: Shapefile (also zipped), GeoPackage, KML, GeoJSON, FileGeodatabase

    Args:
        file_path: Path to geospatial file

    Returns:
        GeoDataFrame with geometries in original CRS

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file cannot be read, is empty or has no CRS
    """
    file_path_obj = Path(file_path)

    if not file_path_obj.exists():
        raise FileNotFoundError(f"AOI file not found: {file_path}")

    logger.info(f"Loading AOI from: {file_path}")

    try:
        if file_path_obj.suffix.lower() == '.zip':
            logger.info("  - Detected ZIP file, extracting to read shapefile...")
            with tempfile.TemporaryDirectory() as tmpdir:
                with zipfile.ZipFile(file_path, 'r') as zip_ref:
                    zip_ref.extractall(tmpdir)
                shp_files = list(Path(tmpdir).rglob('*.shp'))
                if not shp_files:
                    raise ValueError("No shapefile (.shp) found in ZIP archive")
                if len(shp_files) > 1:
                    logger.warning(f"  - Multiple shapefiles found in ZIP, using first: {shp_files[0].name}")
                gdf = gpd.read_file(shp_files[0])
        else:
            gdf = gpd.read_file(file_path)
    except zipfile.BadZipFile:
        raise ValueError("Invalid ZIP file - file appears to be corrupted")
    except ValueError:
        raise
    except Exception as e:
        raise ValueError(f"Failed to read geospatial file: {e}")

    if gdf.empty:
        raise ValueError("AOI file contains no features")

    if gdf.crs is None:
        raise ValueError(
            "AOI file has no Coordinate Reference System (CRS) defined. "
            "Please assign a CRS to your data before using it as input."
        )

    logger.info(f"  - Loaded {len(gdf)} feature(s)")
    logger.info(f"  - Original CRS: {gdf.crs}")
    return gdf


def validate_input_geometry(gdf: gpd.GeoDataFrame) -> Tuple[bool, str]:
    """
    Validate that a GeoDataFrame holds a usable AOI.

    Returns:
        Tuple of (is_valid, error_message); the message is empty when valid

    Checks:
        - At least one feature present
        - CRS is defined
        - No null geometries
        - Only Polygon / MultiPolygon geometries
    """
    if gdf.empty:
        return False, "GeoDataFrame contains no features"

    if gdf.crs is None:
        return False, "GeoDataFrame has no CRS defined"

    null_geoms = int(gdf.geometry.isnull().sum())
    if null_geoms > 0:
        return False, f"GeoDataFrame contains {null_geoms} null geometries"

    unsupported = set(gdf.geometry.geom_type.unique()) - POLYGON_TYPES
    if unsupported:
        return False, f"Only polygon geometries are supported, found: {sorted(unsupported)}"

    return True, ""


def extract_geometry_metadata(gdf: gpd.GeoDataFrame, source: str) -> dict:
    return {
        'source': str(Path(source).name),
        'original_crs': str(gdf.crs),
        'feature_count': len(gdf),
        'geometry_types': gdf.geometry.geom_type.unique().tolist(),
        'bounds': gdf.total_bounds.tolist(),  # [minx, miny, maxx, maxy]
    }


def read_aoi_file(file_path: str) -> Tuple[BaseGeometry, dict]:
    """
    Read an AOI file into one valid polygon in EPSG:4326.

    Args:
        file_path: Path to geospatial file

    Returns:
        Tuple of (geometry, metadata)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file has no usable polygon
    """
    gdf = load_geometry_file(file_path)

    is_valid, error_msg = validate_input_geometry(gdf)
    if not is_valid:
        raise ValueError(f"AOI validation failed: {error_msg}")

    metadata = extract_geometry_metadata(gdf, file_path)

    if gdf.crs.to_epsg() != WKID_WGS84:
        logger.info(f"  - Converting from {gdf.crs} to EPSG:4326...")
        gdf = gdf.to_crs(epsg=WKID_WGS84)

    geom = dissolve_geometries(gdf)
    geom = extract_polygons(repair_invalid_geometry(geom))
    metadata['final_crs'] = 'EPSG:4326'
    return geom, metadata


def read_aoi_document(document: Dict[str, Any]) -> Tuple[BaseGeometry, dict]:
    """
    Read an AOI from a GeoJSON geometry/Feature/FeatureCollection or an Esri
    polygon JSON (``rings``) document.

    GeoJSON is assumed to be WGS84. Esri JSON is reprojected to WGS84 from its
    ``spatialReference``.

    Raises:
        ValueError: If the document holds no polygon
    """
    if not isinstance(document, dict):
        raise ValueError("AOI document must be a JSON object")

    if 'rings' in document or (isinstance(document.get('geometry'), dict) and 'rings' in document['geometry']):
        esri = document.get('geometry') if 'rings' not in document else document
        geom = polygon_json_to_shapely(to_wgs84_polygon_json(esri))
        if geom is None:
            raise ValueError("Esri polygon JSON has no usable rings")
        source_type = 'esri_json'
        feature_count = 1
    else:
        doc_type = document.get('type')
        if doc_type == 'FeatureCollection':
            features = document.get('features') or []
            geometries = [f.get('geometry') for f in features if isinstance(f, dict) and f.get('geometry')]
        elif doc_type == 'Feature':
            geometries = [document.get('geometry')] if document.get('geometry') else []
        else:
            geometries = [document]

        if not geometries:
            raise ValueError("GeoJSON document contains no geometries")
        try:
            gdf = gpd.GeoDataFrame(geometry=[shape(g) for g in geometries], crs=f'EPSG:{WKID_WGS84}')
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid GeoJSON geometry: {e}")

        is_valid, error_msg = validate_input_geometry(gdf)
        if not is_valid:
            raise ValueError(f"AOI validation failed: {error_msg}")
        geom = dissolve_geometries(gdf)
        source_type = 'geojson'
        feature_count = len(gdf)

    geom = extract_polygons(repair_invalid_geometry(geom))
    metadata = {
        'source': source_type,
        'feature_count': feature_count,
        'geometry_types': [geom.geom_type],
        'bounds': list(geom.bounds),
        'final_crs': 'EPSG:4326',
    }
    return geom, metadata
