"""Tests for geometry_input.validation."""

import pytest

from geometry_input.validation import (
    simplify_polygon,
    validate_holes_within_shells,
    validate_polygon,
    validate_ring_structure,
)

WGS84 = {'wkid': 4326}

# Clockwise shell with a counter-clockwise hole
SHELL = [[18.0, 59.3], [18.0, 59.4], [18.1, 59.4], [18.1, 59.3], [18.0, 59.3]]
HOLE = [[18.02, 59.32], [18.04, 59.32], [18.04, 59.34], [18.02, 59.34], [18.02, 59.32]]
OUTSIDE_HOLE = [[19.0, 60.0], [19.1, 60.0], [19.1, 60.1], [19.0, 60.1], [19.0, 60.0]]


def test_valid_polygon(square_polygon_json):
    result = validate_polygon(square_polygon_json)
    assert result['valid'] is True
    assert result['simplified']['spatialReference'] == WGS84
    assert len(result['simplified']['rings']) == 1


def test_polygon_with_hole_is_valid():
    result = validate_polygon({'rings': [SHELL, HOLE], 'spatialReference': WGS84})
    assert result['valid'] is True
    assert len(result['simplified']['rings']) == 2


def test_multipart_polygon_is_valid():
    second = [[19.0, 60.0], [19.0, 60.1], [19.1, 60.1], [19.1, 60.0], [19.0, 60.0]]
    result = validate_polygon({'rings': [SHELL, second], 'spatialReference': WGS84})
    assert result['valid'] is True


@pytest.mark.parametrize('geometry, code', [
    (None, 'NO_GEOMETRY'),
    ({}, 'NO_GEOMETRY'),
    ({'type': 'polyline', 'paths': []}, 'INVALID_GEOMETRY_TYPE'),
    ({'x': 18.0, 'y': 59.3}, 'INVALID_GEOMETRY_TYPE'),
    ({'rings': [[[0, 0], [1, 1], [0, 0]]], 'spatialReference': WGS84}, 'INVALID_GEOMETRY'),
])
def test_invalid_polygons(geometry, code):
    result = validate_polygon(geometry)
    assert result['valid'] is False
    assert result['error']['code'] == code
    assert result['error']['type'] == 'geometry'


def test_self_intersecting_polygon_is_repaired():
    bowtie = {
        'rings': [[[18.0, 59.3], [18.1, 59.4], [18.1, 59.3], [18.0, 59.4], [18.0, 59.3]]],
        'spatialReference': WGS84,
    }
    simplified = simplify_polygon(bowtie)
    assert simplified is not None
    assert len(simplified['rings']) == 2
    assert validate_polygon(bowtie)['valid'] is True


def test_validate_ring_structure():
    assert validate_ring_structure([SHELL])
    assert not validate_ring_structure([])
    assert not validate_ring_structure([SHELL[:3]])
    assert not validate_ring_structure([SHELL[:-1]])


def test_validate_holes_within_shells():
    assert validate_holes_within_shells([SHELL])
    assert validate_holes_within_shells([SHELL, HOLE])
    assert not validate_holes_within_shells([SHELL, OUTSIDE_HOLE])
