"""
Map building module for FME Export Tool.

Creates an interactive Leaflet map with Folium showing the submitted area of
interest and a result panel describing the export outcome.

Functions:
    create_result_map: Generate the result map for an export
"""

from pathlib import Path
from typing import Any, Dict, Optional

import folium
from folium import Element, plugins
from jinja2 import Environment, FileSystemLoader, select_autoescape

from utils.geometry_converters import geometry_to_geojson, polygon_json_to_shapely, to_wgs84_polygon_json
from utils.logger import get_logger

logger = get_logger(__name__)

# Template directory path
TEMPLATES_DIR = Path(__file__).parent.parent / 'templates'

DEFAULT_CENTER = (0.0, 0.0)
DEFAULT_ZOOM = 2

AOI_STYLE = {
    'fillColor': '#FFD700',
    'color': '#FF8C00',
    'weight': 3,
    'fillOpacity': 0.2,
}

KIND_COLORS = {
    'success': '#15803D',
    'cancelled': '#B45309',
    'error': '#B91C1C',
    'loading': '#1D4ED8',
}


def _aoi_bounds(geom) -> Optional[list]:
    if geom is None or geom.is_empty:
        return None
    minx, miny, maxx, maxy = geom.bounds
    return [[miny, minx], [maxy, maxx]]


def render_result_panel(view: Dict[str, Any], area_display: Optional[str] = None) -> str:
    """Render the result panel HTML for a view dict."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(['html']),
    )
    template = env.get_template('result_panel.html')
    return template.render(
        view=view,
        area_display=area_display,
        accent=KIND_COLORS.get(view.get('kind'), KIND_COLORS['error']),
    )


def create_result_map(
    polygon_json: Optional[Dict[str, Any]],
    view: Dict[str, Any],
    area_display: Optional[str] = None,
    title: Optional[str] = None
) -> folium.Map:
    """
    Create an interactive Leaflet map for an export result.

    Parameters:
    -----------
    polygon_json : Optional[Dict]
        AOI polygon JSON (any supported spatial reference; reprojected to WGS84)
    view : Dict
        View dict from ``core.result_view``
    area_display : Optional[str]
        Formatted AOI area shown in the panel
    title : Optional[str]
        Page title

    Returns:
    --------
    folium.Map
        Folium map object ready to be saved

    Example:
        >>> m = create_result_map(polygon_json, build_order_result_view(result))
        >>> m.save('index.html')
    """
    logger.info("=" * 80)
    logger.info("Creating Result Map")
    logger.info("=" * 80)

    geom = polygon_json_to_shapely(to_wgs84_polygon_json(polygon_json)) if polygon_json else None
    geojson = geometry_to_geojson(geom) if geom is not None else None
    bounds = _aoi_bounds(geom)
    if bounds:
        center = [(bounds[0][0] + bounds[1][0]) / 2, (bounds[0][1] + bounds[1][1]) / 2]
    else:
        center = list(DEFAULT_CENTER)

    m = folium.Map(location=center, zoom_start=DEFAULT_ZOOM, tiles=None)
    folium.TileLayer('OpenStreetMap', name='Street Map', control=True).add_to(m)
    folium.TileLayer('CartoDB positron', name='Light Theme', control=True).add_to(m)
    folium.TileLayer('Esri WorldImagery', name='Satellite Imagery', control=True).add_to(m)

    if geojson:
        logger.info("  - Adding area of interest...")
        folium.GeoJson(
            {'type': 'Feature', 'properties': {}, 'geometry': geojson},
            name='Area of Interest',
            style_function=lambda x: AOI_STYLE,
            tooltip=area_display,
        ).add_to(m)
        m.fit_bounds(bounds)
    else:
        logger.warning("  ⚠ No area of interest to display")

    folium.LayerControl(position='topright').add_to(m)
    plugins.Fullscreen(position='topleft').add_to(m)
    plugins.MousePosition().add_to(m)

    logger.info("  - Adding result panel...")
    m.get_root().html.add_child(Element(render_result_panel(view, area_display)))
    m.get_root().title = title or f"FME Export - {view.get('title') or 'Result'}"

    logger.info("  ✓ Map created successfully")
    return m
