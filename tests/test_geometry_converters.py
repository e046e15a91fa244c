"""Tests for utils.geometry_converters."""

import pytest
from shapely.geometry import LineString, MultiPolygon, Polygon

from utils.geometry_converters import (
    count_geometry_vertices,
    format_number_for_wkt,
    geojson_to_polygon_json,
    geometry_to_geojson,
    is_polygon_geometry,
    is_web_mercator_sr,
    is_wgs84_sr,
    normalize_ring,
    polygon_json_to_geojson,
    polygon_json_to_shapely,
    polygon_json_to_wkt,
    shapely_to_polygon_json,
    to_wgs84_polygon_json,
)

UNIT_SQUARE = [[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]


def test_normalize_ring_closes_and_coerces():
    assert normalize_ring([[0, 0], [1, 0], ['1', '1']]) == [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 0.0]]
    assert normalize_ring([[0, 0, 5], [1, 0, 5], [1, 1, 5], [0, 0, 5]]) == [
        [0.0, 0.0, 5.0], [1.0, 0.0, 5.0], [1.0, 1.0, 5.0], [0.0, 0.0, 5.0],
    ]
    assert normalize_ring([[0, 0], ['x', 1], [1, 1]]) == []
    assert normalize_ring('nope') == []


def test_is_polygon_geometry(square_polygon_json):
    assert is_polygon_geometry(square_polygon_json)
    assert is_polygon_geometry({'geometry': square_polygon_json})
    assert not is_polygon_geometry({'rings': [[[0, 0], [0, 1], [1, 1], [1, 0]]]})
    assert not is_polygon_geometry({'rings': []})
    assert not is_polygon_geometry({'type': 'Polygon', 'coordinates': []})


def test_polygon_json_to_geojson():
    geojson = polygon_json_to_geojson({'rings': [UNIT_SQUARE, [[5, 5], [6, 6]]]})
    assert geojson == {'type': 'Polygon', 'coordinates': [[[float(x), float(y)] for x, y in UNIT_SQUARE]]}
    assert polygon_json_to_geojson({'rings': []}) is None
    assert polygon_json_to_geojson(None) is None


def test_polygon_json_to_wkt():
    assert polygon_json_to_wkt({'rings': [UNIT_SQUARE]}) == 'POLYGON((0 0, 0 1, 1 1, 1 0, 0 0))'
    assert polygon_json_to_wkt({'rings': [[[0.5, 0.25], [0.5, 1], [1, 1], [0.5, 0.25]]]}) == \
        'POLYGON((0.5 0.25, 0.5 1, 1 1, 0.5 0.25))'
    assert polygon_json_to_wkt({}) == 'POLYGON EMPTY'


@pytest.mark.parametrize('value, expected', [
    (1.50, '1.5'),
    (1e-7, '0.0000001'),
    (-12.0, '-12'),
    (18.123456, '18.123456'),
    ('x', '0'),
])
def test_format_number_for_wkt(value, expected):
    assert format_number_for_wkt(value) == expected


def test_shapely_to_polygon_json_orients_rings():
    exterior_ccw = [(0, 0), (10, 0), (10, 10), (0, 10)]
    hole_cw = [(2, 2), (2, 4), (4, 4), (4, 2)]
    result = shapely_to_polygon_json(Polygon(exterior_ccw, [hole_cw]))

    assert result['spatialReference'] == {'wkid': 4326}
    shell, hole = result['rings']
    assert shell == [[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]]
    assert not Polygon(shell).exterior.is_ccw
    assert Polygon(hole).exterior.is_ccw

    assert shapely_to_polygon_json(LineString([(0, 0), (1, 1)])) is None
    assert shapely_to_polygon_json(Polygon()) is None


def test_geojson_to_polygon_json(square_geojson):
    result = geojson_to_polygon_json({'type': 'Feature', 'properties': {}, 'geometry': square_geojson})
    assert len(result['rings']) == 1
    assert len(result['rings'][0]) == 5

    assert geojson_to_polygon_json({'type': 'LineString', 'coordinates': [[0, 0], [1, 1]]}) is None
    assert geojson_to_polygon_json('nope') is None


def test_polygon_json_to_shapely_assigns_holes_by_containment():
    outer = [[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]]
    # Same orientation as the shell, still treated as a hole
    inner = [[2, 2], [2, 4], [4, 4], [4, 2], [2, 2]]
    geom = polygon_json_to_shapely({'rings': [outer, inner]})

    assert geom.geom_type == 'Polygon'
    assert len(geom.interiors) == 1
    assert geom.area == pytest.approx(96)
    assert count_geometry_vertices(geom) == 10


def test_polygon_json_to_shapely_multipart():
    geom = polygon_json_to_shapely({'rings': [UNIT_SQUARE, [[5, 5], [5, 6], [6, 6], [6, 5], [5, 5]]]})
    assert isinstance(geom, MultiPolygon)
    assert len(geom.geoms) == 2
    assert count_geometry_vertices(geom) == 10
    assert polygon_json_to_shapely({'rings': []}) is None


def test_spatial_reference_checks():
    assert is_wgs84_sr({'wkid': 4326})
    assert is_wgs84_sr({'isGeographic': True})
    assert not is_wgs84_sr({'wkid': 3857})
    assert is_web_mercator_sr({'wkid': 102100, 'latestWkid': 3857})
    assert is_web_mercator_sr({'isWebMercator': True})
    assert not is_web_mercator_sr({'wkid': 3006})


@pytest.mark.parametrize('sr', [{'wkid': 3857}, {'wkid': 102100}])
def test_to_wgs84_from_web_mercator(sr):
    poly = {
        'rings': [[[0, 0], [0, 111325.14], [111319.49, 111325.14], [111319.49, 0], [0, 0]]],
        'spatialReference': sr,
    }
    result = to_wgs84_polygon_json(poly)

    assert result['spatialReference'] == {'wkid': 4326}
    lon, lat = result['rings'][0][2]
    assert lon == pytest.approx(1.0, abs=1e-4)
    assert lat == pytest.approx(1.0, abs=1e-3)


def test_to_wgs84_passthrough(square_polygon_json):
    assert to_wgs84_polygon_json(square_polygon_json) is square_polygon_json
    unknown = {'rings': [UNIT_SQUARE], 'spatialReference': {}}
    assert to_wgs84_polygon_json(unknown) is unknown
    assert to_wgs84_polygon_json('nope') == 'nope'


def test_geometry_to_geojson():
    assert geometry_to_geojson(Polygon()) is None
    assert geometry_to_geojson(Polygon([(0, 0), (1, 0), (1, 1)]))['type'] == 'Polygon'
