"""Tests for config.config_loader."""

import json

import pytest

from config.config_loader import (
    load_area_settings,
    load_config,
    normalize_config,
    normalize_service_mode_config,
    validate_config_fields,
)


def test_normalize_config_resolves_aliases_and_defaults():
    config = normalize_config({
        'fmeServerUrl': ' https://fme.example.com/ ',
        'token': 'abc123token',
        'repo': 'Exports',
        'syncMode': 'yes',
        'maxArea': '1000000',
        'requireHttps': 'false',
        'customSetting': 42,
    })

    assert config['fme_server_url'] == 'https://fme.example.com'
    assert config['fme_server_token'] == 'abc123token'
    assert config['repository'] == 'Exports'
    assert config['sync_mode'] is True
    assert config['max_area'] == 1000000
    assert config['require_https'] is False
    assert config['customSetting'] == 42
    assert config['aoi_param_name'] == 'AreaOfInterest'
    assert config['request_timeout'] == 30000
    assert 'fmeServerUrl' not in config


def test_normalize_config_snake_case_wins_over_alias():
    config = normalize_config({'fme_server_url': 'https://a.example.com', 'serverUrl': 'https://b.example.com'})
    assert config['fme_server_url'] == 'https://a.example.com'


@pytest.mark.parametrize('raw, expected', [
    (5000, 5000),
    ('120000', 120000),
    (10_000_000, 600000),
    (0, 30000),
    ('soon', 30000),
])
def test_request_timeout_is_clamped(raw, expected):
    assert normalize_config({'request_timeout': raw})['request_timeout'] == expected


def test_unrecognized_boolean_falls_back_to_default():
    config = normalize_config({'show_result': 'maybe', 'allow_schedule_mode': 1})
    assert config['show_result'] is True
    assert config['allow_schedule_mode'] is True


def test_normalize_service_mode_config():
    assert normalize_service_mode_config({'sync_mode': 'true'}) == {'sync_mode': True}
    assert normalize_service_mode_config({'sync_mode': None}) == {'sync_mode': False}
    assert normalize_service_mode_config(None) is None


def test_validate_config_fields():
    assert validate_config_fields({'fme_server_url': 'https://fme.example.com', 'fme_server_token': 'abc123token',
                                   'repository': 'Exports'}) == {'is_valid': True, 'missing_fields': []}
    assert validate_config_fields({'fme_server_url': 'https://fme.example.com', 'repository': ' '}) == {
        'is_valid': False,
        'missing_fields': ['fme_server_token', 'repository'],
    }


def test_load_config_reads_file_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / 'export_config.json'
    config_file.write_text(json.dumps({
        'fme': {
            'fmeServerUrl': 'https://fme.example.com/',
            'repository': 'Exports',
            'maxArea': 250000,
        }
    }), encoding='utf-8')
    monkeypatch.setenv('FME_SERVER_TOKEN', 'env-token-123')
    monkeypatch.delenv('FME_SERVER_URL', raising=False)
    monkeypatch.delenv('FME_REPOSITORY', raising=False)

    config = load_config(config_file)

    assert config['fme_server_url'] == 'https://fme.example.com'
    assert config['fme_server_token'] == 'env-token-123'
    assert config['max_area'] == 250000


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'missing.json')

    config_file = tmp_path / 'export_config.json'
    config_file.write_text(json.dumps({'other': {}}), encoding='utf-8')
    with pytest.raises(KeyError):
        load_config(config_file)


def test_load_area_settings():
    assert load_area_settings({'max_area': 5e8, 'large_area': '1e8'}) == {'max_area': 5e8, 'large_area': 1e8}
    assert load_area_settings({'max_area': 0, 'large_area': None}) == {'max_area': None, 'large_area': None}
    assert load_area_settings({'max_area': 1e12})['max_area'] == 1e10
