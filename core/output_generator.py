"""
Output generation module for FME Export Tool.

This module saves the result of an export to the output directory: a
timestamped directory with the HTML result map, the result record, the AOI
as GeoJSON and, for sync jobs, the downloaded export file.

Functions:
    generate_output: Save map, result record, AOI and download to output directory
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from config.config_loader import OUTPUT_DIR
from core.fme_client import FmeFlowApiClient, FmeFlowApiError
from core.map_builder import create_result_map
from utils.geometry_converters import geometry_to_geojson, polygon_json_to_shapely, to_wgs84_polygon_json
from utils.logger import get_logger

logger = get_logger(__name__)

# Result fields that are not JSON serializable
NON_SERIALIZABLE_FIELDS = ('blob',)


def _safe_filename(name: Optional[str], fallback: str) -> str:
    raw = (name or '').strip() or fallback
    return ''.join(ch if ch.isalnum() or ch in '._-' else '_' for ch in raw)


def _save_download(
    result: Dict[str, Any],
    output_path: Path,
    client: Optional[FmeFlowApiClient]
) -> Optional[Path]:
    filename = _safe_filename(result.get('download_filename'), 'download.zip')
    destination = output_path / filename

    blob = result.get('blob')
    if blob:
        destination.write_bytes(blob)
        return destination

    url = result.get('download_url')
    if url and client is not None:
        try:
            return client.download_result(url, destination)
        except FmeFlowApiError as e:
            logger.warning(f"  ⚠ Could not download result: {e.code}")
    return None


def generate_output(
    polygon_json: Optional[Dict[str, Any]],
    result: Optional[Dict[str, Any]],
    view: Dict[str, Any],
    output_name: Optional[str] = None,
    client: Optional[FmeFlowApiClient] = None,
    aoi_metadata: Optional[Dict[str, Any]] = None,
    output_dir: Optional[Path] = None
) -> Path:
    """
    Generate output directory with HTML map, result record and AOI.

    Creates a timestamped output directory containing:
    - index.html: Interactive result map
    - result.json: Export result, view and AOI metadata
    - aoi.geojson: Submitted area of interest (WGS84)
    - the export file, for successful sync jobs (written from the response
      bytes or fetched from the download URL)

    Parameters:
    -----------
    polygon_json : Optional[Dict]
        Submitted AOI polygon JSON
    result : Optional[Dict]
        Export result from ``process_fme_response``
    view : Dict
        View dict from ``core.result_view``
    output_name : Optional[str]
        Custom output directory name (defaults to timestamped name)
    client : Optional[FmeFlowApiClient]
        Client used to fetch sync download URLs
    aoi_metadata : Optional[Dict]
        AOI metadata from ``process_aoi``
    output_dir : Optional[Path]
        Parent directory (defaults to ``OUTPUT_DIR``)

    Returns:
    --------
    Path
        Path to output directory

    Example:
        >>> output_path = generate_output(polygon_json, result, view)
        >>> output_path
        Path('outputs/fme_export_20250108_143022')
    """
    logger.info("=" * 80)
    logger.info("Generating Output Files")
    logger.info("=" * 80)

    if output_name is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_name = f"fme_export_{timestamp}"

    output_path = Path(output_dir or OUTPUT_DIR) / output_name
    output_path.mkdir(parents=True, exist_ok=True)
    logger.info(f"Output directory: {output_path}")

    files = []

    if polygon_json:
        logger.info("  - Saving area of interest...")
        geom = polygon_json_to_shapely(to_wgs84_polygon_json(polygon_json))
        geojson = geometry_to_geojson(geom) if geom is not None else None
        if geojson:
            feature_collection = {
                'type': 'FeatureCollection',
                'features': [{'type': 'Feature', 'properties': aoi_metadata or {}, 'geometry': geojson}],
            }
            with open(output_path / 'aoi.geojson', 'w', encoding='utf-8') as f:
                json.dump(feature_collection, f, indent=2, default=str)
            files.append('aoi.geojson (area of interest)')

    download_path = None
    if result and result.get('success') and view.get('service_mode') == 'sync':
        logger.info("  - Saving export file...")
        download_path = _save_download(result, output_path, client)
        if download_path:
            view = {**view, 'download_url': download_path.name}
            files.append(f'{download_path.name} (export file)')

    logger.info("  - Saving result record...")
    record = {
        'generated_at': datetime.now().isoformat(),
        'result': {k: v for k, v in (result or {}).items() if k not in NON_SERIALIZABLE_FIELDS},
        'view': view,
        'aoi': aoi_metadata,
        'local_download': download_path.name if download_path else None,
    }
    with open(output_path / 'result.json', 'w', encoding='utf-8') as f:
        json.dump(record, f, indent=2, default=str)
    files.append('result.json (export result)')

    logger.info("  - Saving result map...")
    area_display = (aoi_metadata or {}).get('area_display')
    map_obj = create_result_map(polygon_json, view, area_display)
    map_file = output_path / 'index.html'
    map_obj.save(str(map_file))
    files.append('index.html (result map)')

    logger.info("")
    logger.info("=" * 80)
    logger.info("✓ Output Generation Complete")
    logger.info("=" * 80)
    logger.info(f"Files saved to: {output_path}")
    for entry in files:
        logger.info(f"  - {entry}")
    logger.info("")
    logger.info(f"To view the result, open: {map_file}")
    logger.info("=" * 80)

    return output_path
