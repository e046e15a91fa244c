"""Tests for core.webhook."""

import pytest

from core.webhook import (
    build_nm_directives,
    build_tm_directives,
    create_webhook_artifacts,
    is_webhook_url_too_long,
    make_submit_body,
)
from utils.errors import FmeFlowApiError

SERVER = 'https://fme.example.com'


def test_create_webhook_artifacts():
    artifacts = create_webhook_artifacts(
        SERVER,
        'Exports',
        'clip.fmw',
        {
            'FORMAT': 'SHAPE',
            'opt_servicemode': 'sync',
            'tm_ttc': '30',
            'tm_ttl': -5,
            'tm_tag': 'x' * 200,
        },
        token='abc123token',
    )

    assert artifacts['base_url'] == 'https://fme.example.com/fmedatadownload/Exports/clip.fmw'
    params = dict(artifacts['params'])
    assert params['FORMAT'] == 'SHAPE'
    assert params['opt_servicemode'] == 'sync'
    assert params['opt_responseformat'] == 'json'
    assert params['opt_showresult'] == 'true'
    assert params['token'] == 'abc123token'
    assert params['tm_ttc'] == '30'
    assert 'tm_ttl' not in params
    assert len(params['tm_tag']) == 128
    assert artifacts['full_url'].startswith(artifacts['base_url'] + '?')
    assert 'token=abc123token' in artifacts['full_url']


def test_webhook_requires_https():
    with pytest.raises(FmeFlowApiError) as exc_info:
        create_webhook_artifacts('http://fme.example.com', 'Exports', 'clip.fmw')
    assert exc_info.value.code == 'WEBHOOK_AUTH_ERROR'
    assert exc_info.value.message == 'require_https'
    assert exc_info.value.status == 0

    artifacts = create_webhook_artifacts('http://fme.example.com', 'Exports', 'clip.fmw', require_https=False)
    assert artifacts['base_url'].startswith('http://fme.example.com/')


def test_webhook_allows_plain_http_on_loopback():
    artifacts = create_webhook_artifacts('http://localhost:8080', 'Exports', 'clip.fmw')
    assert artifacts['base_url'] == 'http://localhost:8080/fmedatadownload/Exports/clip.fmw'


def test_is_webhook_url_too_long():
    assert not is_webhook_url_too_long(SERVER, 'Exports', 'clip.fmw', {'FORMAT': 'SHAPE'})
    assert is_webhook_url_too_long(SERVER, 'Exports', 'clip.fmw', {'AOI': 'x' * 5000})
    assert not is_webhook_url_too_long(SERVER, 'Exports', 'clip.fmw', {'AOI': 'x' * 5000}, max_length=0)


def test_build_tm_directives():
    assert build_tm_directives({'tm_ttc': '30', 'tm_ttl': 60.7, 'tm_tag': ' fast '}) == {
        'ttc': 30,
        'ttl': 60,
        'tag': 'fast',
    }
    assert build_tm_directives({'tm_ttc': 'soon'}) == {}
    assert build_tm_directives(None) == {}


def test_build_nm_directives_requires_schedule_fields():
    params = {
        'opt_servicemode': 'schedule',
        'start': '2026-01-01 10:00:00',
        'name': 'nightly',
        'category': 'exports',
    }
    directives = build_nm_directives(params)
    assert directives == {'directives': [{
        'name': 'schedule',
        'begin': '2026-01-01 10:00:00',
        'scheduleName': 'nightly',
        'scheduleCategory': 'exports',
        'scheduleTrigger': 'runonce',
    }]}

    assert build_nm_directives({**params, 'category': ''}) is None
    assert build_nm_directives({**params, 'opt_servicemode': 'async'}) is None


def test_make_submit_body():
    body = make_submit_body({
        'FORMAT': 'SHAPE',
        'AreaOfInterest': '{"rings":[]}',
        'opt_servicemode': 'schedule',
        'opt_requesteremail': 'anna@example.com',
        'tm_ttl': '60',
        'start': '2026-01-01 10:00:00',
        'name': 'nightly',
        'category': 'exports',
        'description': 'Nightly export',
    })

    assert body['publishedParameters'] == [
        {'name': 'FORMAT', 'value': 'SHAPE'},
        {'name': 'AreaOfInterest', 'value': '{"rings":[]}'},
    ]
    assert body['TMDirectives'] == {'ttl': 60}
    directive = body['NMDirectives']['directives'][0]
    assert directive['scheduleDescription'] == 'Nightly export'


def test_make_submit_body_keeps_schedule_named_params_outside_schedule_mode():
    body = make_submit_body({'description': 'My export', 'name': 'roads', 'opt_servicemode': 'async'})

    assert body['publishedParameters'] == [
        {'name': 'description', 'value': 'My export'},
        {'name': 'name', 'value': 'roads'},
    ]
    assert 'NMDirectives' not in body


def test_make_submit_body_passes_prepared_body_through():
    prepared = {'publishedParameters': [{'name': 'A', 'value': 1}]}
    assert make_submit_body(prepared) is prepared
    assert make_submit_body(None) == {'publishedParameters': []}
