"""Tests for utils.errors."""

import threading

import pytest

from utils.errors import (
    FmeFlowApiError,
    build_validation_errors,
    create_config_error,
    create_error,
    create_geometry_error,
    create_module_error,
    create_network_error,
    create_typed_error,
    format_error_presentation,
    get_error_icon_src,
    is_abort_error,
    is_status_retryable,
    link_abort_signal,
    make_flow_error,
    map_error_from_geometry,
    map_error_from_network,
    should_suppress_error,
)


@pytest.mark.parametrize('status, expected', [
    (None, True),
    (0, True),
    (408, True),
    (429, True),
    (500, True),
    (503, True),
    (400, False),
    (401, False),
    (404, False),
])
def test_is_status_retryable(status, expected):
    assert is_status_retryable(status) is expected


def test_make_flow_error_defaults():
    error = make_flow_error('WEBHOOK_TIMEOUT', 408)
    assert isinstance(error, FmeFlowApiError)
    assert error.message == 'WEBHOOK_TIMEOUT'
    assert error.code == 'WEBHOOK_TIMEOUT'
    assert error.retryable is True
    assert error.to_dict() == {
        'message': 'WEBHOOK_TIMEOUT',
        'code': 'WEBHOOK_TIMEOUT',
        'status': 408,
        'retryable': True,
    }
    assert make_flow_error('X', 404, 'Not here').retryable is False


def test_map_error_from_network():
    # REQUEST_FAILED maps through its status only
    assert map_error_from_network(FmeFlowApiError('x', 'REQUEST_FAILED', 401)) == 'errorTokenIssue'
    assert map_error_from_network(FmeFlowApiError('x', 'REQUEST_FAILED', 500)) is None

    assert map_error_from_network(make_flow_error('WEBHOOK_TIMEOUT', 408)) == 'requestTimedOut'
    assert map_error_from_network({'code': 'INVALID_CONFIG'}) == 'errorSetupRequired'
    assert map_error_from_network({'message': 'boom'}, 429) == 'rateLimitExceeded'
    assert map_error_from_network(Exception('socket timeout')) == 'requestTimedOut'
    assert map_error_from_network({'message': 'nothing'}) is None


def test_map_error_from_geometry_falls_back():
    assert map_error_from_geometry({'message': 'odd'}) == 'geometrySerializationFailedCode'


@pytest.mark.parametrize('code, icon', [
    ('tokenExpired', 'person-lock'),
    ('GEOMETRY_SERIALIZATION_FAILED', 'polygon'),
    ('AREA_TOO_LARGE', 'polygon'),
    ('FORM_INVALID', 'warning'),
    ('SOMETHING_ELSE', 'error'),
    (None, 'error'),
    ('', 'error'),
])
def test_get_error_icon_src(code, icon):
    assert get_error_icon_src(code) == icon


def test_is_abort_error():
    assert is_abort_error(make_flow_error('ABORT', 0))
    assert is_abort_error({'name': 'AbortError'})
    assert is_abort_error('Request aborted')
    assert is_abort_error(Exception('The operation was aborted'))
    assert not is_abort_error(make_flow_error('REQUEST_FAILED', 500))
    assert not is_abort_error(None)


def test_should_suppress_error():
    assert should_suppress_error(None)
    assert should_suppress_error({'code': 'CANCELLED'})
    assert should_suppress_error({'code': 'X', 'message': 'Job cancelled by user'})
    assert not should_suppress_error({'code': 'X', 'message': 'Server error'})


def test_link_abort_signal_forwards_set_event():
    external = threading.Event()
    controller = threading.Event()
    calls = []

    cleanup = link_abort_signal(external, controller, on_abort=lambda: calls.append('abort'))
    external.set()
    assert controller.wait(2)
    cleanup()
    assert calls == ['abort']


def test_link_abort_signal_already_set_and_none():
    external = threading.Event()
    external.set()
    controller = threading.Event()
    link_abort_signal(external, controller)
    assert controller.is_set()

    other = threading.Event()
    link_abort_signal(None, other)()
    assert not other.is_set()


def test_link_abort_signal_cleanup_stops_forwarding():
    external = threading.Event()
    controller = threading.Event()
    cleanup = link_abort_signal(external, controller)
    cleanup()
    external.set()
    assert not controller.wait(0.2)


def test_link_abort_signal_cleanup_joins_watcher():
    before = set(threading.enumerate())
    cleanup = link_abort_signal(threading.Event(), threading.Event())
    watchers = [t for t in threading.enumerate() if t not in before and t.name == 'abort-link']
    assert len(watchers) == 1

    cleanup()

    assert not watchers[0].is_alive()


def test_create_typed_error_defaults():
    error = create_geometry_error('geometryInvalidCode', code='GEOMETRY_INVALID')
    assert error['type'] == 'geometry'
    assert error['code'] == 'GEOMETRY_INVALID'
    assert error['recoverable'] is True
    assert error['error_id'] == 'general_GEOMETRY_INVALID'

    module_error = create_module_error('mapModulesLoadFailed')
    assert module_error['code'] == 'MODULE_ERROR'
    assert module_error['recoverable'] is False

    with pytest.raises(ValueError):
        create_typed_error('unknown', 'x')


def test_build_validation_errors():
    result = build_validation_errors([
        ('server_url', lambda: {'ok': True}),
        ('token', lambda: {'ok': False, 'key': 'errorTokenIsInvalid'}),
        ('repository', lambda: {'ok': False, 'reason': 'missing'}),
    ])
    assert result == {'ok': False, 'errors': {'token': 'errorTokenIsInvalid', 'repository': 'missing'}}


def test_format_error_presentation_geometry_hides_code():
    presentation = format_error_presentation(
        {'message': 'geometryInvalidCode', 'code': 'GEOMETRY_INVALID'},
        support_email='help@example.com',
    )
    assert presentation['code'] is None
    assert presentation['hint'] == 'Draw a simple polygon that does not cross itself.'


def test_format_error_presentation_support_hint():
    presentation = format_error_presentation(
        {'message': 'requestTimedOut', 'code': 'WEBHOOK_TIMEOUT'},
        support_email='help@example.com',
    )
    assert presentation['message'] == 'The request timed out.'
    assert presentation['code'] == 'WEBHOOK_TIMEOUT'
    assert 'help@example.com' in presentation['hint']


def test_create_error_defaults():
    def retry():
        return None

    error = create_error('Connection lost', retry=retry)

    assert error['type'] == 'network'
    assert error['code'] == 'UNKNOWN'
    assert error['kind'] == 'runtime'
    assert error['recoverable'] is True
    assert error['retry'] is retry
    assert isinstance(error['timestamp_ms'], int)


def test_create_network_and_config_errors():
    network = create_network_error('connectionFailed', scope='submission')
    assert network['type'] == 'network'
    assert network['code'] == 'NETWORK_ERROR'
    assert network['error_id'] == 'submission_NETWORK_ERROR'
    assert network['recoverable'] is True

    config = create_config_error('missingToken', code='TOKEN_MISSING')
    assert config['type'] == 'config'
    assert config['code'] == 'TOKEN_MISSING'
    assert config['error_id'] == 'general_TOKEN_MISSING'
    assert config['kind'] == 'serializable'
