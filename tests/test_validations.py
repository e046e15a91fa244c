"""Tests for utils.validations."""

import pytest
import requests

from utils.errors import FmeFlowApiError
from utils.validations import (
    extract_http_status,
    get_missing_config_fields,
    is_auth_error,
    is_valid_email,
    is_valid_external_url_for_opt_get_url,
    map_error_to_key,
    normalize_base_url,
    validate_connection_inputs,
    validate_date_time_format,
    validate_email_field,
    validate_parameter_choices,
    validate_parameter_type,
    validate_repository,
    validate_server_url,
    validate_token,
)


def test_normalize_base_url_drops_rest_path_and_query():
    assert normalize_base_url('https://fme.example.com/fmerest/v3/?x=1') == 'https://fme.example.com'
    assert normalize_base_url('https://fme.example.com:8443/fme/') == 'https://fme.example.com:8443/fme'
    assert normalize_base_url('not a url') == ''


@pytest.mark.parametrize('url, expected', [
    ('https://fme.example.com', {'ok': True}),
    ('', {'ok': False, 'key': 'errorMissingServerUrl'}),
    ('ftp://fme.example.com', {'ok': False, 'key': 'errorInvalidServerUrl'}),
    ('https://user:pw@fme.example.com', {'ok': False, 'key': 'errorInvalidServerUrl'}),
    ('https://fme.example.com?x=1', {'ok': False, 'key': 'errorInvalidServerUrl', 'reason': 'no_query_or_hash'}),
    ('https://fme.example.com/fmerest/v3', {'ok': False, 'key': 'errorBadBaseUrl'}),
])
def test_validate_server_url(url, expected):
    assert validate_server_url(url) == expected


def test_validate_server_url_strict_and_https():
    assert validate_server_url('https://fme', strict=True)['ok'] is False
    assert validate_server_url('https://fme')['ok'] is True

    result = validate_server_url('http://fme.example.com', require_https=True)
    assert result == {'ok': False, 'key': 'errorInvalidServerUrl', 'reason': 'require_https'}


@pytest.mark.parametrize('token, expected', [
    (None, {'ok': False, 'key': 'errorMissingToken'}),
    ('short', {'ok': False, 'key': 'errorTokenIsInvalid'}),
    ('abc 123 4567', {'ok': False, 'key': 'errorTokenIsInvalid'}),
    ('abc<defghijk', {'ok': False, 'key': 'errorTokenIsInvalid'}),
    ('abcdefghij', {'ok': True}),
])
def test_validate_token(token, expected):
    assert validate_token(token) == expected


def test_validate_repository():
    assert validate_repository('Exports', None) == {'ok': True}
    assert validate_repository('Exports', []) == {'ok': True}
    assert validate_repository('', ['Exports']) == {'ok': False, 'key': 'errorRepoRequired'}
    assert validate_repository('Other', ['Exports']) == {'ok': False, 'key': 'errorRepositoryNotFound'}
    assert validate_repository('Exports', ['Exports']) == {'ok': True}


def test_validate_connection_inputs_collects_all_errors():
    ok, errors = validate_connection_inputs('', 'short', 'Missing', ['Exports'])
    assert ok is False
    assert errors == {
        'server_url': 'errorMissingServerUrl',
        'token': 'errorTokenIsInvalid',
        'repository': 'errorRepositoryNotFound',
    }

    ok, errors = validate_connection_inputs('https://fme.example.com', 'abcdefghij')
    assert ok is True
    assert errors == {}


def test_get_missing_config_fields():
    assert get_missing_config_fields(None) == ['fme_server_url', 'fme_server_token', 'repository']
    config = {'fme_server_url': 'https://fme.example.com', 'fme_server_token': '  ', 'repository': 'Exports'}
    assert get_missing_config_fields(config) == ['fme_server_token']


def test_extract_http_status():
    assert extract_http_status({'status': 404}) == 404
    assert extract_http_status(FmeFlowApiError('x', 'REQUEST_FAILED', 503)) == 503
    assert extract_http_status({'details': {'http_status': 429}}) == 429
    assert extract_http_status(Exception('request failed, status: 502')) == 502
    assert extract_http_status('status: 500') is None
    assert extract_http_status(None) is None

    response = requests.Response()
    response.status_code = 401
    assert extract_http_status(requests.HTTPError(response=response)) == 401


@pytest.mark.parametrize('error, status, expected', [
    (FmeFlowApiError('x', 'REQUEST_FAILED', 401), None, 'startupTokenError'),
    (FmeFlowApiError('x', 'REQUEST_FAILED', 0), 0, 'startupNetworkError'),
    (FmeFlowApiError('x', 'REQUEST_FAILED', 0), None, 'startupServerError'),
    ({'code': 'NETWORK_ERROR'}, None, 'startupNetworkError'),
    ({'message': 'boom'}, 500, 'startupServerError'),
    ({'message': 'boom'}, 429, 'rateLimited'),
    (Exception('Connection refused by host'), None, 'startupNetworkError'),
    (Exception('Read timed out'), None, 'timeout'),
    ({'message': 'nothing useful'}, None, 'unknownErrorOccurred'),
])
def test_map_error_to_key(error, status, expected):
    assert map_error_to_key(error, status) == expected


def test_is_valid_email():
    assert is_valid_email('anna@example.com')
    assert not is_valid_email('noreply@example.com')
    assert not is_valid_email('no-reply@example.com')
    assert not is_valid_email('anna@example')
    assert not is_valid_email(None)


def test_validate_email_field():
    assert validate_email_field('', required=False) == {'ok': True}
    assert validate_email_field('', required=True) == {'ok': False, 'error_key': 'emailRequired'}
    assert validate_email_field('bad', required=False) == {'ok': False, 'error_key': 'invalidEmail'}


@pytest.mark.parametrize('url, expected', [
    ('https://data.example.com/export.zip', True),
    ('https://data.example.com/layer.geojson?version=2', True),
    ('https://data.example.com/download', True),
    ('http://data.example.com/export.zip', False),
    ('https://user:pw@data.example.com/export.zip', False),
    ('https://10.0.0.5/export.zip', False),
    ('https://192.168.1.20/export.zip', False),
    ('https://files.local/export.zip', False),
    ('https://localhost/export.zip', False),
    ('https://data.example.com/tool.exe', False),
    ('', False),
    (None, False),
])
def test_is_valid_external_url_for_opt_get_url(url, expected):
    assert is_valid_external_url_for_opt_get_url(url) is expected


def test_validate_parameter_type():
    assert validate_parameter_type('INTEGER', 'BUFFER', '5') is None
    assert validate_parameter_type('INTEGER', 'BUFFER', 5.0) is None
    assert validate_parameter_type('INTEGER', 'BUFFER', '5.5') == 'BUFFER:type'
    assert validate_parameter_type('FLOAT', 'RATIO', '0.25') is None
    assert validate_parameter_type('FLOAT', 'RATIO', 'abc') == 'RATIO:type'
    assert validate_parameter_type('BOOLEAN', 'CLIP', 'yes') is None
    assert validate_parameter_type('BOOLEAN', 'CLIP', 'maybe') == 'CLIP:type'
    assert validate_parameter_type('STRING', 'NAME', 42) is None


def test_validate_parameter_choices():
    choices = ['SHAPE', 'GPKG']
    assert validate_parameter_choices('FORMAT', 'GPKG', choices, False) is None
    assert validate_parameter_choices('FORMAT', 'DXF', choices, False) == 'FORMAT:choice'
    assert validate_parameter_choices('FORMAT', ['SHAPE', 'GPKG'], choices, True) is None
    assert validate_parameter_choices('FORMAT', ['SHAPE', 'DXF'], choices, True) == 'FORMAT:choice'
    assert validate_parameter_choices('FORMAT', 'anything', None, False) is None


@pytest.mark.parametrize('status, expected', [(401, True), (403, True), (404, False), (500, False)])
def test_is_auth_error(status, expected):
    assert is_auth_error(status) is expected


@pytest.mark.parametrize('value, expected', [
    ('2024-05-01 13:45:00', True),
    (' 2024-05-01 13:45:00 ', True),
    ('2024-05-01T13:45:00', False),
    ('2024-05-01', False),
    ('', False),
    (None, False),
])
def test_validate_date_time_format(value, expected):
    assert validate_date_time_format(value) is expected
