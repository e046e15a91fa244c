"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

import api_app
from api_app import MAX_REQUEST_BYTES, create_app
from config.config_loader import normalize_config

DOWNLOAD_URL = 'https://fme.example.com/fmedatadownload/results/clip_1.zip'


@pytest.fixture
def api(sample_config, fake_session):
    return TestClient(create_app(sample_config, session=fake_session))


def test_health(api):
    response = api.get('/api/health')
    assert response.status_code == 200
    assert response.json() == {'status': 'healthy', 'service': 'fme-export'}


def test_repositories(api, fake_session, fake_response):
    fake_session.queue(fake_response(200, {'items': [{'name': 'Exports'}, {'name': 'Samples'}]}))

    response = api.get('/api/repositories')

    assert response.status_code == 200
    assert response.json() == {'repositories': ['Exports', 'Samples']}
    assert fake_session.calls[0]['url'] == 'https://fme.example.com/fmeapiv4/repositories'


def test_workspaces(api, fake_session, fake_response):
    fake_session.queue(fake_response(200, {'items': [{'name': 'clip.fmw', 'title': 'Clip', 'description': 'Clip data'}]}))

    response = api.get('/api/workspaces')

    assert response.json() == {
        'repository': 'Exports',
        'workspaces': [{'name': 'clip.fmw', 'title': 'Clip', 'description': 'Clip data'}],
    }
    call = fake_session.calls[0]
    assert call['url'] == 'https://fme.example.com/fmeapiv4/repositories/Exports/items'
    assert call['params']['type'] == 'WORKSPACE'


def test_workspace_parameters(api, fake_session, fake_response, workspace_parameters):
    fake_session.queue(fake_response(200, workspace_parameters))

    response = api.get('/api/workspaces/clip.fmw/parameters')

    body = response.json()
    assert body['workspace'] == 'clip.fmw'
    assert [field['name'] for field in body['fields']] == ['FORMAT', 'BUFFER', 'SourceFile']


def test_fme_errors_are_mapped(api, fake_session, fake_response):
    fake_session.queue(fake_response(404, {'message': 'not found'}))

    response = api.get('/api/workspaces/missing.fmw/parameters')

    assert response.status_code == 404
    assert response.json()['error'] == 'WORKSPACE_PARAMETERS_ERROR'


def test_incomplete_config(fake_session):
    api = TestClient(create_app(normalize_config({'repository': 'Exports'}), session=fake_session))

    response = api.get('/api/repositories')

    assert response.status_code == 503
    assert response.json()['detail']['error'] == 'CONFIG_INCOMPLETE'
    assert 'fme_server_url' in response.json()['detail']['missing_fields']
    assert fake_session.calls == []


def test_area(api, square_geojson):
    response = api.post('/api/area', json={'geometry': square_geojson})

    body = response.json()
    assert response.status_code == 200
    assert body['valid'] is True
    assert 1.2e6 < body['area'] < 1.35e6
    assert body['polygon']['spatialReference'] == {'wkid': 4326}
    assert 'error' not in body


def test_area_rejects_non_polygon(api):
    response = api.post('/api/area', json={'geometry': {'type': 'Point', 'coordinates': [18, 59]}})
    assert response.status_code == 400


def test_area_too_large(fake_session, square_geojson):
    api = TestClient(create_app(normalize_config({'maxArea': 1000}), session=fake_session))

    body = api.post('/api/area', json={'geometry': square_geojson}).json()

    assert body['valid'] is False
    assert body['error']['message'] == 'The area is larger than the allowed maximum.'


def test_request_too_large(api):
    response = api.post(
        '/api/area',
        content=b'x' * (MAX_REQUEST_BYTES + 1),
        headers={'content-type': 'application/json'},
    )
    assert response.status_code == 413
    assert response.json()['error'] == 'Request too large'


def test_export_sync(api, fake_session, fake_response, square_geojson, workspace_parameters):
    fake_session.queue(fake_response(200, workspace_parameters))
    fake_session.queue(fake_response(200, {'serviceResponse': {
        'statusInfo': {'status': 'success'}, 'jobID': 42, 'url': DOWNLOAD_URL,
    }}))

    response = api.post('/api/export', json={
        'workspace': 'clip.fmw',
        'geometry': square_geojson,
        'parameters': {'FORMAT': 'SHAPE'},
        'service_mode': 'sync',
    })

    body = response.json()
    assert response.status_code == 200
    assert body['success'] is True
    assert body['service_mode'] == 'sync'
    assert body['result']['job_id'] == 42
    assert body['view']['kind'] == 'success'
    assert body['view']['download_url'] == DOWNLOAD_URL
    assert 'FORMAT=SHAPE' in fake_session.calls[1]['url']


def test_export_async(api, fake_session, fake_response, square_geojson, workspace_parameters):
    fake_session.queue(fake_response(200, workspace_parameters))
    fake_session.queue(fake_response(200, {'serviceResponse': {'statusInfo': {'status': 'success'}, 'jobID': 7}}))

    body = api.post('/api/export', json={
        'workspace': 'clip.fmw',
        'geometry': square_geojson,
        'parameters': {'FORMAT': 'GPKG'},
        'email': 'user@example.com',
    }).json()

    assert body['success'] is True
    assert body['service_mode'] == 'async'
    assert body['view']['title'] == 'Order confirmed'
    assert 'opt_requesteremail=user%40example.com' in fake_session.calls[1]['url']


def test_export_invalid_parameters(api, fake_session, fake_response, square_geojson, workspace_parameters):
    fake_session.queue(fake_response(200, workspace_parameters))

    response = api.post('/api/export', json={
        'workspace': 'clip.fmw',
        'geometry': square_geojson,
        'parameters': {'FORMAT': 'DWG'},
    })

    assert response.status_code == 422
    assert response.json() == {'success': False, 'errors': ['FORMAT:choice']}
    assert len(fake_session.calls) == 1


def test_export_area_too_large(fake_session, square_geojson):
    config = normalize_config({
        'fmeServerUrl': 'https://fme.example.com',
        'fmeServerToken': 'abc123token',
        'repository': 'Exports',
        'maxArea': 1000,
    })
    api = TestClient(create_app(config, session=fake_session))

    response = api.post('/api/export', json={'workspace': 'clip.fmw', 'geometry': square_geojson})

    assert response.status_code == 422
    assert response.json()['view']['hint'] == 'Draw a smaller area and try again.'
    assert fake_session.calls == []


def test_export_missing_email(api, fake_session, fake_response, square_geojson, workspace_parameters):
    fake_session.queue(fake_response(200, workspace_parameters))

    body = api.post('/api/export', json={
        'workspace': 'clip.fmw',
        'geometry': square_geojson,
        'parameters': {'FORMAT': 'SHAPE'},
    }).json()

    assert body['success'] is False
    assert body['result']['code'] == 'MISSING_REQUESTER_EMAIL'
    assert body['view']['kind'] == 'error'


def test_each_export_gets_its_own_abort_key(api, fake_session, fake_response, square_geojson, workspace_parameters, monkeypatch):
    keys = []

    def fake_submission(*args, **kwargs):
        keys.append(kwargs['abort_key'])
        return {'success': True, 'result': {'success': True, 'job_id': 1}, 'service_mode': 'async'}

    monkeypatch.setattr(api_app, 'execute_job_submission', fake_submission)
    request = {'workspace': 'clip.fmw', 'geometry': square_geojson, 'parameters': {'FORMAT': 'SHAPE'}}

    for _ in range(2):
        fake_session.queue(fake_response(200, workspace_parameters))
        assert api.post('/api/export', json=request).json()['success'] is True

    assert len(set(keys)) == 2
    assert all(key.startswith('export_') for key in keys)
