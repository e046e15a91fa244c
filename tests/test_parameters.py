"""Tests for core.parameters."""

import pytest

from core.parameters import (
    ParameterFormService,
    coerce_form_value_for_submission,
    init_form_values,
    sanitize_form_values,
)


@pytest.fixture
def service():
    return ParameterFormService()


def _by_name(fields):
    return {field['name']: field for field in fields}


def test_convert_parameters_to_fields(service, workspace_parameters):
    fields = _by_name(service.convert_parameters_to_fields(workspace_parameters))

    # The AOI parameter is filled in by the tool, not the form
    assert 'AreaOfInterest' not in fields

    fmt = fields['FORMAT']
    assert fmt['type'] == 'RADIO'
    assert fmt['required'] is True
    assert fmt['default_value'] == 'SHAPE'
    assert fmt['options'] == [
        {'label': 'Shapefile', 'value': 'SHAPE'},
        {'label': 'GeoPackage', 'value': 'GPKG'},
    ]

    buffer = fields['BUFFER']
    assert buffer['type'] == 'NUMBER'
    assert buffer['required'] is False
    assert buffer['default_value'] == 0
    assert 'min' not in buffer

    assert fields['SourceFile']['type'] == 'FILE'


def test_skipped_parameters(service):
    fields = service.convert_parameters_to_fields([
        {'name': 'MINX', 'type': 'FLOAT'},
        {'name': 'G', 'type': 'GROUP'},
        {'name': 'DB', 'type': 'DB_CONNECTION'},
        {'name': 'DB2', 'type': 'DB_CONNECTION', 'listOptions': [{'caption': 'Main', 'value': 'main'}]},
        {'type': 'TEXT'},
    ])
    assert [field['name'] for field in fields] == ['DB2']


def test_range_slider_fields(service):
    slider = {'name': 'TOL', 'type': 'RANGE_SLIDER', 'minimum': 0, 'maximum': 10, 'decimalPrecision': 2}
    plain = {**slider, 'name': 'TOL2', 'description': 'Tolerance (no slider)'}
    fields = _by_name(service.convert_parameters_to_fields([slider, plain]))

    assert fields['TOL']['type'] == 'SLIDER'
    assert fields['TOL']['step'] == 0.01
    assert fields['TOL']['decimal_precision'] == 2
    assert fields['TOL']['min'] == 0
    assert fields['TOL']['max'] == 10

    assert fields['TOL2']['type'] == 'NUMERIC_INPUT'
    assert fields['TOL2']['label'] == 'Tolerance (no slider)'


def test_range_slider_control_flag(service):
    param = {'name': 'R', 'type': 'RANGE_SLIDER', 'control': {'useRangeSlider': False}}
    assert service.should_use_range_slider_ui(param) is False
    assert service.should_use_range_slider_ui({'name': 'R', 'type': 'RANGE_SLIDER'}) is True
    assert service.should_use_range_slider_ui({'name': 'R', 'type': 'INTEGER'}) is False


def test_default_values_by_type(service):
    fields = _by_name(service.convert_parameters_to_fields([
        {'name': 'CLIP', 'type': 'BOOLEAN', 'defaultValue': 'true'},
        {'name': 'LAYERS', 'type': 'LISTBOX', 'defaultValue': 'roads',
         'listOptions': [{'value': 'roads'}, {'value': 'rivers'}]},
        {'name': 'SECRET', 'type': 'PASSWORD', 'defaultValue': 'hunter2'},
        {'name': 'NOTES', 'type': 'TEXT_EDIT'},
    ]))

    assert fields['CLIP']['type'] == 'SWITCH'
    assert fields['CLIP']['default_value'] is True
    assert fields['LAYERS']['type'] == 'MULTI_SELECT'
    assert fields['LAYERS']['default_value'] == ['roads']
    assert fields['LAYERS']['options'][1] == {'label': 'rivers', 'value': 'rivers'}
    assert fields['SECRET']['default_value'] == ''
    assert fields['NOTES']['rows'] == 3


def test_decimal_precision_is_capped(service):
    assert service.get_decimal_precision({'decimalPrecision': 12}) == 6
    assert service.get_decimal_precision({'decimalPrecision': -1}) is None
    assert service.get_decimal_precision({}) is None


@pytest.mark.parametrize('data, expected_errors', [
    ({'FORMAT': 'GPKG', 'BUFFER': '5'}, []),
    ({'FORMAT': 'GPKG'}, []),
    ({}, ['FORMAT:required']),
    ({'FORMAT': '   '}, ['FORMAT:required']),
    ({'FORMAT': 'DXF', 'BUFFER': 'x'}, ['FORMAT:choice', 'BUFFER:type']),
])
def test_validate_parameters(service, workspace_parameters, data, expected_errors):
    is_valid, errors = service.validate_parameters(data, workspace_parameters)
    assert is_valid is (not expected_errors)
    assert errors == expected_errors


NUMERIC_FIELD = {
    'name': 'N',
    'type': 'NUMERIC_INPUT',
    'required': True,
    'min': 0,
    'max': 10,
    'min_exclusive': True,
    'decimal_precision': 1,
}


@pytest.mark.parametrize('value, expected', [
    (2.5, {}),
    ('', {'N': 'required'}),
    ('abc', {'N': 'number'}),
    (0, {'N': 'min'}),
    (11, {'N': 'max'}),
    (2.25, {'N': 'precision'}),
])
def test_validate_form_values_numeric(service, value, expected):
    is_valid, errors = service.validate_form_values({'N': value}, [NUMERIC_FIELD])
    assert errors == expected
    assert is_valid is (not expected)


def test_validate_form_values_text_or_file(service):
    field = {'name': 'SRC', 'type': 'TEXT_OR_FILE', 'required': True}
    assert service.validate_form_values({'SRC': {'mode': 'text', 'text': '  '}}, [field]) == (False, {'SRC': 'required'})
    assert service.validate_form_values({'SRC': {'mode': 'file', 'file': 'a.zip'}}, [field]) == (True, {})


def test_init_form_values():
    fields = [{'name': 'A', 'default_value': None}, {'name': 'B', 'default_value': 3}, {'default_value': 1}]
    assert init_form_values(fields) == {'A': '', 'B': 3}


def test_sanitize_form_values_masks_passwords():
    params = [{'name': 'SECRET', 'type': 'PASSWORD'}, {'name': 'FORMAT', 'type': 'TEXT'}]
    sanitized = sanitize_form_values({'SECRET': 'supersecretvalue', 'FORMAT': 'SHAPE'}, params)
    assert sanitized['SECRET'] == 'supe********alue'
    assert sanitized['FORMAT'] == 'SHAPE'


@pytest.mark.parametrize('value, expected', [
    ({'mode': 'text', 'text': ' hello '}, 'hello'),
    ({'mode': 'file', 'file': {'name': 'a.zip', 'path': '/tmp/a.zip'}}, '/tmp/a.zip'),
    ({'mode': 'file', 'file': 'b.zip'}, 'b.zip'),
    ({'mode': 'file'}, ''),
    ('plain', 'plain'),
    ({'other': 1}, {'other': 1}),
])
def test_coerce_form_value_for_submission(value, expected):
    assert coerce_form_value_for_submission(value) == expected
