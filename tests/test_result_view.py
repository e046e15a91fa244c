"""Tests for core.result_view."""

import json

import pytest

from core.result_view import build_error_view, build_loading_view, build_order_result_view

DOWNLOAD_URL = 'https://fme.example.com/fmedatadownload/results/clip_1.zip'


def test_sync_success_view():
    view = build_order_result_view({
        'success': True,
        'job_id': 42,
        'workspace_name': 'clip.fmw',
        'download_url': DOWNLOAD_URL,
        'download_filename': 'clip.fmw_export.zip',
        'status': 'success',
        'service_mode': 'sync',
    })

    assert view['kind'] == 'success'
    assert view['title'] == 'Export complete'
    assert view['message'] is None
    assert view['download_url'] == DOWNLOAD_URL
    assert view['download_filename'] == 'clip.fmw_export.zip'
    assert view['icon'] == 'check-circle'
    assert view['code'] is None
    assert view['info_lines'] == [
        'Job ID: 42',
        'Workspace: clip.fmw',
        'Delivery: Direct download',
        'File name: clip.fmw_export.zip',
        'FME status: success',
    ]
    assert [a['action'] for a in view['actions']] == ['reuse_geography', 'reset']
    json.dumps(view)


def test_async_success_view_masks_email():
    result = {'success': True, 'job_id': 7, 'email': 'anna.svensson@example.com', 'service_mode': 'async'}

    view = build_order_result_view(result, {'mask_email_on_success': True})

    assert view['title'] == 'Order confirmed'
    assert view['message'] == 'The result will be sent to your email when the job is done.'
    assert 'Email: an****@example.com' in view['info_lines']
    assert view['download_url'] is None

    plain = build_order_result_view(result, {})
    assert 'Email: anna.svensson@example.com' in plain['info_lines']


def test_service_mode_falls_back_to_config():
    view = build_order_result_view({'success': True, 'download_url': DOWNLOAD_URL}, {'sync_mode': True})
    assert view['service_mode'] == 'sync'
    assert view['download_url'] == DOWNLOAD_URL


def test_blob_info_lines():
    view = build_order_result_view({
        'success': True,
        'service_mode': 'sync',
        'local_path': '/tmp/out.zip',
        'blob_metadata': {'type': 'application/zip', 'size': 1536},
    })
    assert 'File type: application/zip' in view['info_lines']
    assert 'File size: 1.5 KiB' in view['info_lines']
    assert view['download_url'] == '/tmp/out.zip'


@pytest.mark.parametrize('result, message', [
    ({'code': 'FME_JOB_FAILURE', 'message': 'Reader failed'}, 'The FME Flow transformation failed.'),
    ({'code': 'X', 'message': 'FME Flow transformation failed (job 3)'}, 'The FME Flow transformation failed.'),
    ({'code': 'DATA_DOWNLOAD_ERROR', 'message': 'Server said no'}, 'Server said no'),
    ({'code': 'X'}, 'The job failed.'),
])
def test_failure_messages(result, message):
    view = build_order_result_view({'success': False, **result})
    assert view['kind'] == 'error'
    assert view['title'] == 'Order failed'
    assert view['message'] == message
    assert view['code'] == result['code']
    assert f"Error code: {result['code']}" in view['info_lines']
    assert [a['action'] for a in view['actions']] == ['back', 'reset']


def test_failure_icon():
    view = build_order_result_view({'success': False, 'code': 'DATA_DOWNLOAD_ERROR', 'message': 'x'})
    assert view['icon'] == 'data'


@pytest.mark.parametrize('code, message', [
    ('FME_JOB_CANCELLED_TIMEOUT', 'The order was cancelled because it took too long.'),
    ('FME_JOB_CANCELLED', 'The order was cancelled.'),
])
def test_cancelled_view(code, message):
    view = build_order_result_view({'success': False, 'cancelled': True, 'code': code})
    assert view['kind'] == 'cancelled'
    assert view['title'] == 'Order cancelled'
    assert view['message'] == message
    assert view['code'] is None
    assert view['actions'][0] == {'label': 'New order', 'action': 'reuse_geography', 'type': 'primary'}


def test_missing_result_view():
    view = build_order_result_view(None)
    assert view['kind'] == 'error'
    assert view['code'] == 'NO_RESULT'
    assert view['message'] == 'No result is available.'
    assert view['actions'] == [{'label': 'Back', 'action': 'back', 'type': 'primary'}]


@pytest.mark.parametrize('stage, message', [
    ('normalizing', 'Preparing parameters...'),
    ('resolvingDataset', 'Uploading dataset...'),
    ('unknown', 'Submitting job...'),
    (None, 'Submitting job...'),
])
def test_loading_view(stage, message):
    view = build_loading_view(stage)
    assert view == {'kind': 'loading', 'stage': stage, 'message': message}


def test_error_view_for_area_error():
    view = build_error_view({
        'message': 'geometryAreaTooLargeCode',
        'code': 'AREA_TOO_LARGE',
        'recoverable': True,
    }, support_email='support@example.com')

    assert view['message'] == 'The area is larger than the allowed maximum.'
    assert view['code'] is None
    assert view['hint'] == 'Draw a smaller area and try again.'
    assert view['icon'] == 'polygon'
    assert [a['action'] for a in view['actions']] == ['back', 'reset']


def test_error_view_non_recoverable():
    view = build_error_view({'message': 'Boom', 'code': 'SERVER_ERROR', 'recoverable': False}, support_email='support@example.com')
    assert view['code'] == 'SERVER_ERROR'
    assert view['hint'] == 'Contact support at support@example.com'
    assert [a['action'] for a in view['actions']] == ['reset']

    default = build_error_view(None)
    assert default['message'] == 'An unknown error occurred.'
    assert default['code'] == 'UNKNOWN'
