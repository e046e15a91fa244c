"""
View state assembly for FME Export Tool.

The CLI, the HTTP API and the HTML result page all present a job outcome the
same way: a view dict with a ``kind`` (success / error / cancelled / loading),
a title, a message, info lines and follow-up actions. Actions are plain
dicts naming what the caller should do (``reuse_geography``, ``back``,
``reset``) so the view stays serializable.
"""

import re
from typing import Any, Dict, List, Optional

from utils.errors import format_error_presentation, get_error_icon_src
from utils.format import format_byte_size, mask_email_for_display
from utils.translations import TranslateFn, translate as default_translate
from utils.validations import get_support_email

TRANSFORM_FAILED_PATTERN = re.compile(r'FME\s*Flow\s*transformation\s*failed', re.IGNORECASE)

DELIVERY_MODE_KEYS = {
    'sync': 'optSyncMode',
    'async': 'optAsyncMode',
    'schedule': 'optScheduleMode',
}

LOADING_STAGE_KEYS = {
    'normalizing': 'loadingNormalizing',
    'resolvingDataset': 'loadingResolvingDataset',
    'applyingDefaults': 'loadingApplyingDefaults',
    'submitting': 'loadingSubmitting',
    'complete': 'loadingComplete',
}


def _action(label: str, action: str, action_type: str = 'default') -> Dict[str, str]:
    return {'label': label, 'action': action, 'type': action_type}


def _resolve_service_mode(result: Dict[str, Any], config: Optional[Dict[str, Any]]) -> str:
    mode = result.get('service_mode')
    if mode in DELIVERY_MODE_KEYS:
        return mode
    return 'sync' if (config or {}).get('sync_mode') else 'async'


def _build_info_lines(
    result: Dict[str, Any],
    config: Optional[Dict[str, Any]],
    service_mode: str,
    is_success: bool,
    is_failure: bool,
    translate: TranslateFn
) -> List[str]:
    lines: List[str] = []
    if result.get('job_id') is not None:
        lines.append(f"{translate('lblJobId')}: {result['job_id']}")
    if result.get('workspace_name'):
        lines.append(f"{translate('lblWorkspace')}: {result['workspace_name']}")
    lines.append(f"{translate('lblDelivery')}: {translate(DELIVERY_MODE_KEYS[service_mode])}")

    if result.get('download_filename'):
        lines.append(f"{translate('lblFilename')}: {result['download_filename']}")
    if result.get('status'):
        lines.append(f"{translate('lblFmeStatus')}: {result['status']}")
    status_message = result.get('status_message')
    if status_message and status_message != result.get('message'):
        lines.append(f"{translate('lblFmeMessage')}: {status_message}")

    blob_metadata = result.get('blob_metadata') or {}
    if blob_metadata.get('type'):
        lines.append(f"{translate('lblBlobType')}: {blob_metadata['type']}")
    if blob_metadata.get('size'):
        size_text = format_byte_size(blob_metadata['size'])
        if size_text:
            lines.append(f"{translate('lblBlobSize')}: {size_text}")

    if service_mode != 'sync' and result.get('email'):
        masked = (config or {}).get('mask_email_on_success') and is_success
        email = mask_email_for_display(result['email']) if masked else result['email']
        lines.append(f"{translate('lblEmail')}: {email}")

    if result.get('code') and is_failure:
        lines.append(f"{translate('lblErrorCode')}: {result['code']}")
    return lines


def _failure_message(result: Dict[str, Any], translate: TranslateFn) -> str:
    code = str(result.get('code') or '').upper()
    raw_message = result.get('message') or result.get('status_message') or ''

    if code == 'FME_JOB_CANCELLED_TIMEOUT':
        return translate('msgJobTimeout')
    if code == 'FME_JOB_CANCELLED':
        return translate('msgJobCancelled')
    if code == 'FME_JOB_FAILURE' or TRANSFORM_FAILED_PATTERN.search(raw_message):
        return translate('errTransformFailed')
    return raw_message or translate('msgJobFailed')


def build_order_result_view(
    result: Optional[Dict[str, Any]],
    config: Optional[Dict[str, Any]] = None,
    translate: TranslateFn = default_translate
) -> Dict[str, Any]:
    """
    Build the view of an export result.

    Parameters:
    -----------
    result : Optional[Dict]
        Export result from ``process_fme_response`` (or a submission error
        result); None gives a NO_RESULT error view
    config : Optional[Dict]
        Export config (``sync_mode`` fallback, ``mask_email_on_success``)
    translate : callable
        Message lookup

    Returns:
    --------
    Dict
        ``kind``, ``title``, ``message``, ``info_lines``, ``actions``,
        ``download_url``, ``download_filename``, ``code`` and ``icon``
    """
    if not result:
        return {
            'kind': 'error',
            'title': translate('titleOrderFailed'),
            'message': translate('msgNoResult'),
            'code': 'NO_RESULT',
            'info_lines': [],
            'actions': [_action(translate('btnBack'), 'back', 'primary')],
            'download_url': None,
            'download_filename': None,
            'icon': get_error_icon_src('NO_RESULT'),
        }

    is_cancelled = bool(result.get('cancelled'))
    is_success = not is_cancelled and bool(result.get('success'))
    is_failure = not is_cancelled and not is_success
    service_mode = _resolve_service_mode(result, config)

    info_lines = _build_info_lines(result, config, service_mode, is_success, is_failure, translate)

    message: Optional[str] = None
    if is_cancelled:
        is_timeout = 'TIMEOUT' in str(result.get('code') or '').upper()
        message = translate('msgOrderTimeout' if is_timeout else 'msgOrderCancelled')
    elif is_success:
        if service_mode == 'async':
            message = translate('msgEmailSent')
    else:
        message = _failure_message(result, translate)

    if is_cancelled:
        actions = [_action(translate('btnNewOrder'), 'reuse_geography', 'primary')]
    elif is_success:
        actions = [_action(translate('btnReuseArea'), 'reuse_geography', 'primary')]
    else:
        actions = [_action(translate('btnRetry'), 'back', 'primary')]
    actions.append(_action(translate('btnEnd'), 'reset'))

    download_url = None
    if is_success and service_mode == 'sync':
        download_url = result.get('download_url') or result.get('local_path')

    if is_failure:
        kind = 'error'
        title = translate('titleOrderFailed')
    elif is_cancelled:
        kind = 'cancelled'
        title = translate('titleOrderCancelled')
    else:
        kind = 'success'
        title = translate('titleOrderComplete' if service_mode == 'sync' else 'titleOrderConfirmed')

    return {
        'kind': kind,
        'title': title,
        'message': message,
        'code': result.get('code') if is_failure else None,
        'info_lines': info_lines,
        'actions': actions,
        'download_url': download_url,
        'download_filename': result.get('download_filename') if download_url else None,
        'download_label': translate('btnDownloadFallback') if download_url else None,
        'icon': get_error_icon_src(result.get('code')) if is_failure else 'check-circle',
        'service_mode': service_mode,
    }


def build_loading_view(stage: Optional[str], translate: TranslateFn = default_translate) -> Dict[str, Any]:
    """Loading view for a submission stage (normalizing, resolvingDataset, ...)."""
    key = LOADING_STAGE_KEYS.get(stage or '', 'loadingSubmitting')
    return {
        'kind': 'loading',
        'stage': stage,
        'message': translate(key),
    }


def build_error_view(
    error_state: Optional[Dict[str, Any]],
    translate: TranslateFn = default_translate,
    support_email: Optional[str] = None
) -> Dict[str, Any]:
    """
    Error view for an error record (see ``utils.errors.create_typed_error``).

    Recoverable errors offer a retry; others only a close action.
    """
    error_state = error_state or {'message': 'unknownErrorOccurred', 'code': 'UNKNOWN'}
    presentation = format_error_presentation(error_state, translate, get_support_email(support_email))

    actions = []
    if error_state.get('recoverable', True):
        actions.append(_action(translate('btnRetry'), 'back', 'primary'))
    actions.append(_action(translate('btnEnd'), 'reset'))

    return {
        'kind': 'error',
        'title': translate('titleOrderFailed'),
        'message': presentation['message'],
        'code': presentation['code'],
        'hint': presentation['hint'],
        'info_lines': [],
        'actions': actions,
        'download_url': None,
        'download_filename': None,
        'icon': get_error_icon_src(error_state.get('code')),
    }
