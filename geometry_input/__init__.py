"""
Geometry Input Processing Package

This package turns user supplied areas of interest into validated Esri
polygon JSON with a computed area, ready to be attached to an FME job.

Modules:
    load_input: Read geospatial files and GeoJSON / Esri JSON documents
    dissolve: Unify multi-part geometries and repair invalid geometries
    validation: Polygon validation (closed rings, simplicity, holes)
    area: Area calculation strategy chain and area limits
    aoi: Attach the AOI to job parameters
    pipeline: Orchestrate the complete AOI workflow

Usage:
    from geometry_input.pipeline import process_aoi

    polygon_json, metadata = process_aoi('path/to/aoi.geojson', config)
"""

from geometry_input.pipeline import load_aoi, process_aoi

__all__ = [
    'load_aoi',
    'process_aoi',
]
