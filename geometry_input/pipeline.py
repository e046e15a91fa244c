"""
AOI Processing Pipeline

Orchestrates the workflow that turns user input into a submittable AOI:
1. Load the AOI (file path, GeoJSON / Esri JSON document, or polygon JSON)
2. Convert to Esri polygon JSON in EPSG:4326
3. Validate the polygon (simple, closed rings, positive area, holes inside)
4. Calculate the area (m²) through the strategy chain
5. Evaluate the area against the configured maximum and warning limits
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from config.config_loader import load_area_settings
from geometry_input.area import calc_area, check_max_area, evaluate_area
from geometry_input.load_input import read_aoi_document, read_aoi_file
from geometry_input.validation import validate_polygon
from utils.format import build_large_area_warning_message, format_area
from utils.geometry_converters import count_geometry_vertices, shapely_to_polygon_json
from utils.logger import get_logger
from utils.translations import translate as default_translate

logger = get_logger(__name__)

AoiSource = Union[str, Path, Dict[str, Any]]


def load_aoi(source: AoiSource) -> Tuple[Dict[str, Any], dict]:
    """
    Load an AOI source into Esri polygon JSON (EPSG:4326).

    Raises:
        FileNotFoundError: If a file source doesn't exist
        ValueError: If the source holds no usable polygon
    """
    if isinstance(source, (str, Path)):
        geom, metadata = read_aoi_file(str(source))
    else:
        geom, metadata = read_aoi_document(source)

    polygon_json = shapely_to_polygon_json(geom)
    if polygon_json is None:
        raise ValueError("AOI has no polygon geometry")

    metadata['vertex_count'] = count_geometry_vertices(geom)
    return polygon_json, metadata


def process_aoi(
    source: AoiSource,
    config: Optional[Dict[str, Any]] = None,
    translate=default_translate
) -> Tuple[Dict[str, Any], dict]:
    """
    Process an AOI source and return it with validation and area metadata.

    Args:
        source: File path, GeoJSON / Esri JSON document
        config: Export config (area limits, geometry service URL)
        translate: Message catalogue used for the large-area warning

    Returns:
        Tuple of (polygon_json, metadata). ``metadata['valid']`` is False and
        ``metadata['error']`` holds an error record when validation fails or
        the maximum area is exceeded.

    Raises:
        FileNotFoundError: If a file source doesn't exist
        ValueError: If the source holds no usable polygon

    Example:
        >>> polygon_json, metadata = process_aoi('path/to/aoi.geojson', config)
        >>> metadata['area_display']
        '12.5 km²'
    """
    config = config or {}
    logger.info("=" * 80)
    logger.info("AOI PROCESSING PIPELINE")
    logger.info("=" * 80)

    polygon_json, metadata = load_aoi(source)
    geometry_service_url = config.get('geometry_service_url')

    validation = validate_polygon(polygon_json, geometry_service_url)
    if not validation['valid']:
        error = validation['error']
        logger.warning(f"  ✗ AOI validation failed: {error['code']}")
        metadata.update({'valid': False, 'error': error, 'area': 0.0})
        return polygon_json, metadata

    polygon_json = validation['simplified']
    area = calc_area(polygon_json, geometry_service_url)
    limits = load_area_settings(config)
    evaluation = evaluate_area(area, limits['max_area'], limits['large_area'])

    metadata.update({
        'valid': True,
        'area': evaluation['area'],
        'area_display': format_area(evaluation['area']),
        'area_evaluation': evaluation,
    })

    max_check = check_max_area(evaluation['area'], limits['max_area'])
    if not max_check['ok']:
        metadata['valid'] = False
        metadata['error'] = {
            'message': max_check['message'],
            'code': max_check['code'],
            'type': 'geometry',
            'severity': 'error',
            'recoverable': True,
        }
        logger.warning(f"  ✗ AOI area {metadata['area_display']} exceeds the maximum")
    elif evaluation['should_warn']:
        metadata['area_warning'] = build_large_area_warning_message(
            metadata['area_display'],
            format_area(evaluation['warning_threshold']),
            translate,
        )
        logger.warning(f"  ⚠ {metadata['area_warning']}")

    logger.info("=" * 80)
    logger.info("AOI PROCESSING COMPLETE")
    logger.info("=" * 80)
    logger.info(f"  ✓ Source: {metadata.get('source')} ({metadata.get('feature_count')} features)")
    logger.info(f"  ✓ Vertices: {metadata.get('vertex_count')}")
    logger.info(f"  ✓ Area: {metadata['area_display']}")
    logger.info("=" * 80)

    return polygon_json, metadata
