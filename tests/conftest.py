"""Shared fixtures for the FME Export Tool tests."""

import json
from typing import Any, Dict, List, Optional

import pytest
import requests

from config.config_loader import normalize_config
from core.fme_client import FmeFlowApiClient, abort_manager


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        content: bytes = b'',
        reason: str = 'OK'
    ):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else (json.dumps(json_data) if json_data is not None else '')
        self.headers = headers if headers is not None else {'content-type': 'application/json'}
        self.content = content or self.text.encode('utf-8')
        self.reason = reason

    def json(self):
        if self._json is None:
            raise ValueError('No JSON body')
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            error = requests.exceptions.HTTPError(f'{self.status_code} Error')
            error.response = self
            raise error

    def iter_content(self, chunk_size: int = 1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


class FakeSession(requests.Session):
    """Session that records calls and replays queued responses."""

    def __init__(self, responses: Optional[List[Any]] = None):
        super().__init__()
        self.calls: List[Dict[str, Any]] = []
        self.responses = list(responses or [])

    def queue(self, response: Any) -> None:
        self.responses.append(response)

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method.upper(), 'url': url, **kwargs})
        if not self.responses:
            raise AssertionError(f'Unexpected request: {method} {url}')
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def sample_config() -> Dict[str, Any]:
    return normalize_config({
        'fmeServerUrl': 'https://fme.example.com/',
        'fmeServerToken': 'abc123token',
        'repository': 'Exports',
        'supportEmail': 'support@example.com',
        'maxArea': 500_000_000,
        'largeArea': 100_000_000,
    })


@pytest.fixture
def client(sample_config, fake_session) -> FmeFlowApiClient:
    return FmeFlowApiClient(
        sample_config['fme_server_url'],
        sample_config['fme_server_token'],
        sample_config['repository'],
        session=fake_session,
    )


@pytest.fixture
def square_polygon_json() -> Dict[str, Any]:
    """Roughly 1.1 km x 1.1 km square near Stockholm, clockwise, WGS84."""
    return {
        'rings': [[
            [18.00, 59.30],
            [18.00, 59.31],
            [18.02, 59.31],
            [18.02, 59.30],
            [18.00, 59.30],
        ]],
        'spatialReference': {'wkid': 4326},
    }


@pytest.fixture
def square_geojson() -> Dict[str, Any]:
    return {
        'type': 'Polygon',
        'coordinates': [[
            [18.00, 59.30],
            [18.02, 59.30],
            [18.02, 59.31],
            [18.00, 59.31],
            [18.00, 59.30],
        ]],
    }


@pytest.fixture
def workspace_parameters() -> List[Dict[str, Any]]:
    return [
        {'name': 'AreaOfInterest', 'type': 'GEOMETRY', 'optional': False},
        {
            'name': 'FORMAT',
            'type': 'LOOKUP_CHOICE',
            'optional': False,
            'defaultValue': 'SHAPE',
            'listOptions': [
                {'caption': 'Shapefile', 'value': 'SHAPE'},
                {'caption': 'GeoPackage', 'value': 'GPKG'},
            ],
        },
        {'name': 'BUFFER', 'type': 'INTEGER', 'optional': True, 'defaultValue': 0},
        {'name': 'SourceFile', 'type': 'FILENAME_MUSTEXIST', 'optional': True},
    ]


@pytest.fixture(autouse=True)
def reset_abort_manager():
    yield
    abort_manager.abort_all('test teardown')
