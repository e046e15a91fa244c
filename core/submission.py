"""
Job submission for FME Export Tool.

Turns form values and an AOI into FME published parameters, resolves remote
datasets (``opt_geturl`` or an upload to the FME temp area), runs the
workspace and converts the FME response into an export result.

Service modes:
    sync     - the job runs inline and the response carries a download URL
    async    - the result is emailed to the requester (``opt_requesteremail``)
    schedule - the job is submitted to the REST API with a schedule directive
               (only when ``allow_schedule_mode`` is enabled)

Functions:
    determine_service_mode: Resolve the service mode for a submission
    build_fme_params: Base published parameters with opt_* controls
    apply_directive_defaults: tm_ttc / tm_ttl defaults from config
    prep_fme_params: Full parameter preparation (mode, AOI, directives)
    parse_submission_form_data: Split internal upload / remote URL fields
    resolve_remote_dataset: Apply opt_geturl or upload a dataset
    apply_uploaded_dataset_param: Point a parameter at an uploaded dataset
    process_fme_response: FME response to export result
    execute_job_submission: Orchestrate a complete submission
"""

import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.config_loader import normalize_service_mode_config
from config.constants import (
    ALLOWED_SERVICE_MODES,
    INTERNAL_FORM_KEYS,
    JOB_FAILURE_STATUSES,
    TIMEOUT_INDICATORS,
    UPLOAD_PARAM_TYPES,
)
from core.fme_client import FmeFlowApiClient, abort_manager
from core.parameters import coerce_form_value_for_submission
from geometry_input.aoi import attach_aoi, collect_geometry_param_names, remove_aoi_error_marker
from utils.conversion import (
    is_finite_number,
    parse_non_negative_int,
    sanitize_param_key,
    to_non_empty_trimmed_string,
    to_trimmed_string,
)
from utils.errors import is_abort_error, map_error_from_network
from utils.format import build_support_hint_text
from utils.logger import get_logger
from utils.network import get_email
from utils.translations import TranslateFn, resolve_message_or_key, translate as default_translate
from utils.validations import get_support_email, is_valid_external_url_for_opt_get_url

logger = get_logger(__name__)

StatusCallback = Optional[Callable[[str], None]]

SUBMISSION_ABORT_KEY = 'submission'


def _notify(on_status_change: StatusCallback, stage: str) -> None:
    if on_status_change:
        on_status_change(stage)


def _resolve_mode_choices(config: Optional[Dict[str, Any]]) -> Tuple[str, ...]:
    if config and config.get('allow_schedule_mode'):
        return ALLOWED_SERVICE_MODES + ('schedule',)
    return ALLOWED_SERVICE_MODES


def _force_async_info(
    config: Optional[Dict[str, Any]],
    area_warning: bool = False,
    drawn_area: Optional[float] = None
) -> Optional[Dict[str, Any]]:
    threshold = (config or {}).get('large_area')
    if area_warning:
        return {'reason': 'area', 'value': drawn_area, 'threshold': threshold}
    if is_finite_number(threshold) and is_finite_number(drawn_area) and drawn_area > threshold:
        return {'reason': 'area', 'value': drawn_area, 'threshold': threshold}
    return None


def determine_service_mode(
    form_data: Optional[Dict[str, Any]],
    config: Optional[Dict[str, Any]] = None,
    area_warning: bool = False,
    drawn_area: Optional[float] = None,
    on_mode_override: Optional[Callable[[Dict[str, Any]], None]] = None
) -> str:
    """
    Resolve the service mode of a submission.

    A ``_serviceMode`` form value wins over the config ``sync_mode`` flag.
    Sync is downgraded to async when there is an area warning or the drawn
    area exceeds ``large_area``; ``on_mode_override`` is told when that
    happens.
    """
    data = (form_data or {}).get('data') or {}
    override = to_non_empty_trimmed_string(data.get('_serviceMode')).lower()

    if override in _resolve_mode_choices(config):
        resolved = override
    else:
        resolved = 'sync' if (config or {}).get('sync_mode') else 'async'

    force_info = _force_async_info(config, area_warning, drawn_area)
    if force_info and resolved == 'sync':
        logger.info("Large area: switching service mode from sync to async")
        if on_mode_override:
            on_mode_override({'forced_mode': 'async', 'previous_mode': 'sync', **force_info})
        return 'async'

    return resolved


def build_fme_params(
    form_data: Optional[Dict[str, Any]],
    user_email: Optional[str],
    service_mode: str = 'async',
    config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    data = (form_data or {}).get('data') or {}
    mode = service_mode if service_mode in _resolve_mode_choices(config) else 'async'
    include_result = (config or {}).get('show_result', True)
    if include_result is None:
        include_result = True

    base = {
        **data,
        'opt_servicemode': mode,
        'opt_responseformat': 'json',
        'opt_showresult': 'true' if include_result else 'false',
    }

    email = to_non_empty_trimmed_string(user_email)
    if mode == 'async' and email:
        base['opt_requesteremail'] = email
    return base


def _to_positive_int(value: Any) -> Optional[int]:
    parsed = parse_non_negative_int(value)
    if parsed is None or parsed <= 0:
        return None
    return parsed


def apply_directive_defaults(params: Dict[str, Any], config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Apply Transaction Manager defaults from config.

    ``tm_ttc`` (time to complete) only applies to sync jobs and is removed
    otherwise; ``tm_ttl`` (time to live) is added when missing. Only positive
    integers from config are used.
    """
    if not config:
        return params

    out = dict(params)
    mode = to_non_empty_trimmed_string(out.get('opt_servicemode')).lower()
    allow_tm_ttc = mode == 'sync' or (not mode and bool(config.get('sync_mode')))

    if not allow_tm_ttc:
        out.pop('tm_ttc', None)
    elif 'tm_ttc' not in out:
        value = _to_positive_int(config.get('tm_ttc'))
        if value is not None:
            out['tm_ttc'] = value

    if 'tm_ttl' not in out:
        value = _to_positive_int(config.get('tm_ttl'))
        if value is not None:
            out['tm_ttl'] = value

    if 'tm_tag' not in out and to_trimmed_string(config.get('tm_tag')):
        out['tm_tag'] = to_trimmed_string(config.get('tm_tag'))

    return out


def sanitize_opt_get_url_param(params: Dict[str, Any], config: Optional[Dict[str, Any]]) -> None:
    """Keep ``opt_geturl`` only when URL datasets are enabled and the URL is safe."""
    if params is None:
        return
    config = config or {}
    enabled = bool(config.get('allow_remote_dataset') and config.get('allow_remote_url_dataset'))
    if not enabled:
        params.pop('opt_geturl', None)
        return

    trimmed = to_trimmed_string(params.get('opt_geturl'))
    if trimmed and is_valid_external_url_for_opt_get_url(trimmed):
        params['opt_geturl'] = trimmed
        return
    params.pop('opt_geturl', None)


def prep_fme_params(
    form_data: Optional[Dict[str, Any]],
    user_email: Optional[str],
    geometry_json: Any,
    config: Optional[Dict[str, Any]] = None,
    workspace_parameters: Optional[List[Dict[str, Any]]] = None,
    area_warning: bool = False,
    drawn_area: Optional[float] = None
) -> Dict[str, Any]:
    """
    Build the published parameters of a job.

    Steps: resolve the service mode, drop internal form keys, add opt_*
    controls, attach the AOI, apply directive defaults and sanitize
    ``opt_geturl``.
    """
    config = normalize_service_mode_config(config)
    original = dict((form_data or {}).get('data') or {})
    chosen = determine_service_mode({'data': original}, config, area_warning, drawn_area)

    public_fields = {k: v for k, v in original.items() if k not in INTERNAL_FORM_KEYS}
    base = build_fme_params({'data': public_fields}, user_email, chosen, config)
    with_aoi = attach_aoi(base, geometry_json, config, collect_geometry_param_names(workspace_parameters))
    with_directives = apply_directive_defaults(with_aoi, config)
    sanitize_opt_get_url_param(with_directives, config)
    return with_directives


def parse_submission_form_data(raw_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Split internal fields out of the raw form data.

    Returns:
    --------
    Dict
        ``{'sanitized_form_data': {...}, 'upload_file': Any, 'remote_url': str}``
        with TEXT_OR_FILE composites collapsed and ``opt_geturl`` trimmed
    """
    raw_data = dict(raw_data or {})
    upload_field = raw_data.pop('__upload_file__', None)
    remote_field = raw_data.pop('__remote_dataset_url__', None)
    opt_geturl = to_trimmed_string(raw_data.pop('opt_geturl', None))

    if opt_geturl:
        raw_data['opt_geturl'] = opt_geturl

    sanitized = {key: coerce_form_value_for_submission(value) for key, value in raw_data.items()}
    upload_file = upload_field if isinstance(upload_field, (str, Path, bytes)) and upload_field else None
    return {
        'sanitized_form_data': sanitized,
        'upload_file': upload_file,
        'remote_url': to_trimmed_string(remote_field) or '',
    }


def should_apply_remote_dataset_url(remote_url: Any, config: Optional[Dict[str, Any]]) -> bool:
    config = config or {}
    if not config.get('allow_remote_dataset') or not config.get('allow_remote_url_dataset'):
        return False
    trimmed = to_trimmed_string(remote_url)
    return bool(trimmed) and is_valid_external_url_for_opt_get_url(trimmed)


def should_upload_remote_dataset(config: Optional[Dict[str, Any]], upload_file: Any) -> bool:
    if not (config or {}).get('allow_remote_dataset'):
        return False
    return bool(upload_file)


def resolve_upload_target_param(config: Optional[Dict[str, Any]]) -> Optional[str]:
    name = (config or {}).get('upload_target_param_name')
    if not name:
        return None
    return sanitize_param_key(name, '') or None


def _find_upload_parameter_target(parameters: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    for parameter in parameters or []:
        if isinstance(parameter, dict) and parameter.get('type') in UPLOAD_PARAM_TYPES and parameter.get('name'):
            return parameter['name']
    return None


def apply_uploaded_dataset_param(
    final_params: Dict[str, Any],
    uploaded_path: Optional[str],
    parameters: Optional[List[Dict[str, Any]]] = None,
    explicit_target: Optional[str] = None
) -> None:
    """
    Point a parameter at an uploaded dataset.

    Target order: the configured upload parameter, the first file/directory
    typed workspace parameter, then ``SourceDataset`` (only when unset).
    """
    if not uploaded_path:
        return
    if explicit_target:
        final_params[explicit_target] = uploaded_path
        return
    inferred = _find_upload_parameter_target(parameters)
    if inferred:
        final_params[inferred] = uploaded_path
        return
    final_params.setdefault('SourceDataset', uploaded_path)


def resolve_remote_dataset(
    params: Dict[str, Any],
    client: FmeFlowApiClient,
    remote_url: Optional[str] = None,
    upload_file: Any = None,
    config: Optional[Dict[str, Any]] = None,
    workspace_parameters: Optional[List[Dict[str, Any]]] = None,
    workspace_name: Optional[str] = None,
    subfolder: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None
) -> None:
    """
    Apply a remote dataset to the parameters.

    A valid remote URL is passed as ``opt_geturl``; otherwise an upload file
    is sent to the FME temp area and its server path applied to the upload
    target parameter.

    Raises:
    -------
    ValueError
        REMOTE_DATASET_WORKSPACE_REQUIRED when uploading without a workspace
    FmeFlowApiError
        From the upload request
    """
    sanitize_opt_get_url_param(params, config)

    if should_apply_remote_dataset_url(remote_url, config):
        params['opt_geturl'] = to_trimmed_string(remote_url)
        return

    if not should_upload_remote_dataset(config, upload_file):
        return

    target_workspace = to_trimmed_string(workspace_name)
    if not target_workspace:
        raise ValueError('REMOTE_DATASET_WORKSPACE_REQUIRED')

    params.pop('opt_geturl', None)
    response = client.upload_to_temp(
        upload_file,
        target_workspace,
        subfolder=subfolder,
        repository=(config or {}).get('repository'),
        cancel_event=cancel_event,
    )
    apply_uploaded_dataset_param(
        params,
        (response.get('data') or {}).get('path'),
        workspace_parameters,
        resolve_upload_target_param(config),
    )


def normalize_fme_service_info(response: Any) -> Dict[str, Any]:
    """Status, message, job id and URL from the shapes FME responses come in."""
    r = response if isinstance(response, dict) else {}
    data = r.get('data') if isinstance(r.get('data'), dict) else None
    raw = (data or {}).get('serviceResponse') or data or r
    if not isinstance(raw, dict):
        raw = {}
    status_info = raw.get('statusInfo') if isinstance(raw.get('statusInfo'), dict) else {}
    job_id = raw.get('jobID') if is_finite_number(raw.get('jobID')) else raw.get('id')
    return {
        'status': status_info.get('status') or raw.get('status'),
        'message': status_info.get('message') or raw.get('message'),
        'job_id': job_id,
        'url': raw.get('url'),
    }


def _job_id(service_info: Dict[str, Any]) -> Optional[int]:
    job_id = service_info.get('job_id')
    return job_id if is_finite_number(job_id) else None


def _failure(message: str, service_info: Optional[Dict[str, Any]] = None, code: str = 'FME_JOB_FAILURE') -> Dict[str, Any]:
    result: Dict[str, Any] = {'success': False, 'message': message, 'code': code}
    if service_info:
        if _job_id(service_info) is not None:
            result['job_id'] = _job_id(service_info)
        if service_info.get('status'):
            result['status'] = service_info['status']
        if service_info.get('message'):
            result['status_message'] = service_info['message']
    return result


def _is_valid_download_url(url: Any) -> bool:
    return isinstance(url, str) and (url.startswith('http://') or url.startswith('https://'))


def process_fme_response(
    fme_response: Any,
    workspace: str,
    user_email: Optional[str],
    translate: TranslateFn = default_translate
) -> Dict[str, Any]:
    """
    Convert an FME response into an export result.

    Parameters:
    -----------
    fme_response : Any
        ``{'data': ..., 'status': ..., 'status_text': ...}`` from the client;
        ``data`` may hold raw bytes under ``blob`` for direct downloads
    workspace : str
        Workspace name, used for the download file name
    user_email : Optional[str]
        Requester email echoed in the result

    Returns:
    --------
    Dict
        ``success`` plus, depending on the outcome, ``blob``, ``job_id``,
        ``download_url``, ``download_filename``, ``status``, ``status_message``,
        ``cancelled``, ``message`` and ``code``
    """
    data = fme_response.get('data') if isinstance(fme_response, dict) else None
    if not data:
        return {'success': False, 'message': translate('noDataInResponse'), 'code': 'NO_DATA'}

    if isinstance(data, dict) and isinstance(data.get('blob'), (bytes, bytearray)):
        blob = data['blob']
        return {
            'success': True,
            'blob': bytes(blob),
            'email': user_email,
            'workspace_name': workspace,
            'download_filename': f'{workspace}_export.zip',
            'blob_metadata': {
                'type': to_trimmed_string(data.get('content_type')),
                'size': len(blob),
            },
        }

    service_info = normalize_fme_service_info(fme_response)
    normalized_status = str(service_info.get('status') or '').strip().upper()

    if normalized_status == 'ABORTED':
        status_message = service_info.get('message') or ''
        lowered = status_message.lower()
        is_timeout = any(indicator in lowered for indicator in TIMEOUT_INDICATORS)
        return {
            'success': False,
            'cancelled': True,
            'message': translate('jobCancelledTimeout' if is_timeout else 'jobCancelled'),
            'code': 'FME_JOB_CANCELLED_TIMEOUT' if is_timeout else 'FME_JOB_CANCELLED',
            'status': service_info.get('status'),
            'status_message': status_message,
            'job_id': _job_id(service_info),
        }

    if normalized_status in JOB_FAILURE_STATUSES:
        message = to_trimmed_string(service_info.get('message')) or translate('jobFailed')
        return _failure(message, service_info, 'FME_JOB_FAILURE')

    job_id = _job_id(service_info)
    has_valid_result = (
        normalized_status == 'SUCCESS'
        or _is_valid_download_url(service_info.get('url'))
        or (job_id is not None and job_id > 0)
    )
    if has_valid_result:
        url = service_info.get('url')
        return {
            'success': True,
            'job_id': job_id,
            'email': user_email,
            'workspace_name': workspace,
            'download_url': url,
            'download_filename': f'{workspace}_export.zip' if url else None,
            'status': service_info.get('status'),
            'status_message': service_info.get('message'),
        }

    return _failure(service_info.get('message') or translate('errorJobSubmission'), service_info)


def prepare_submission_params(
    raw_form_data: Optional[Dict[str, Any]],
    user_email: Optional[str],
    geometry_json: Any,
    client: FmeFlowApiClient,
    config: Optional[Dict[str, Any]] = None,
    workspace_parameters: Optional[List[Dict[str, Any]]] = None,
    workspace_name: Optional[str] = None,
    area_warning: bool = False,
    drawn_area: Optional[float] = None,
    subfolder: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
    on_status_change: StatusCallback = None
) -> Dict[str, Any]:
    """
    Prepare the final job parameters.

    Returns:
    --------
    Dict
        ``{'params': {...}}``, or ``{'params': None, 'aoi_error': {...}}`` when
        the AOI could not be serialized
    """
    _notify(on_status_change, 'normalizing')
    parsed = parse_submission_form_data(raw_form_data)
    config = normalize_service_mode_config(config)

    base_params = prep_fme_params(
        {'data': parsed['sanitized_form_data']},
        user_email,
        geometry_json,
        config,
        workspace_parameters,
        area_warning,
        drawn_area,
    )

    aoi_error = base_params.get('__aoi_error__')
    if aoi_error:
        _notify(on_status_change, 'complete')
        return {'params': None, 'aoi_error': aoi_error}

    params = dict(base_params)
    if parsed['upload_file'] or parsed['remote_url']:
        _notify(on_status_change, 'resolvingDataset')

    resolve_remote_dataset(
        params,
        client,
        remote_url=parsed['remote_url'],
        upload_file=parsed['upload_file'],
        config=config,
        workspace_parameters=workspace_parameters,
        workspace_name=workspace_name,
        subfolder=subfolder,
        cancel_event=cancel_event,
    )

    _notify(on_status_change, 'applyingDefaults')
    params = apply_directive_defaults(params, config)
    remove_aoi_error_marker(params)

    _notify(on_status_change, 'complete')
    return {'params': params}


def build_submission_error_result(
    error: Any,
    translate: TranslateFn = default_translate,
    support_email: Optional[str] = None,
    service_mode: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """Failure result for a submission error; None for cancellations."""
    if is_abort_error(error):
        return None

    raw_key = map_error_from_network(error)
    localized = resolve_message_or_key(raw_key, translate) if raw_key else ''
    parts = [translate('errorOrderFailed'), localized, build_support_hint_text(translate, support_email)]

    result = {
        'success': False,
        'message': '. '.join(part for part in parts if part),
        'code': getattr(error, 'code', None) or 'SUBMISSION_ERROR',
    }
    if service_mode:
        result['service_mode'] = service_mode
    return result


def execute_job_submission(
    client: FmeFlowApiClient,
    workspace: Optional[str],
    form_data: Optional[Dict[str, Any]],
    geometry_json: Any,
    config: Optional[Dict[str, Any]] = None,
    workspace_parameters: Optional[List[Dict[str, Any]]] = None,
    area_warning: bool = False,
    drawn_area: Optional[float] = None,
    requester_email: Optional[str] = None,
    translate: TranslateFn = default_translate,
    cancel_event: Optional[threading.Event] = None,
    on_status_change: StatusCallback = None,
    abort_key: str = SUBMISSION_ABORT_KEY
) -> Dict[str, Any]:
    """
    Run a complete job submission.

    Parameters:
    -----------
    client : FmeFlowApiClient
        Connected FME Flow client
    workspace : Optional[str]
        Workspace to run
    form_data : Optional[Dict]
        ``{'data': {...}}`` form values (may hold ``_serviceMode``,
        ``__upload_file__`` and ``__remote_dataset_url__``)
    geometry_json : Any
        AOI polygon JSON
    requester_email : Optional[str]
        Email for async jobs; falls back to ``default_requester_email``
    cancel_event : Optional[threading.Event]
        External cancel signal linked to the submission

    Returns:
    --------
    Dict
        ``{'success': bool, 'result': {...}?, 'error': Any?, 'service_mode': str?}``.
        A cancelled submission returns ``success`` False with no result.
    """
    service_mode = None
    event = None
    try:
        raw_data = dict((form_data or {}).get('data') or {})
        service_mode = determine_service_mode({'data': raw_data}, config, area_warning, drawn_area)

        user_email = get_email(config, requester_email) if service_mode == 'async' else ''

        if not workspace:
            return {'success': False, 'error': ValueError('No workspace selected'), 'service_mode': service_mode}

        event = abort_manager.abort_and_create(abort_key)
        if cancel_event is not None:
            abort_manager.link_external(abort_key, cancel_event)

        preparation = prepare_submission_params(
            raw_data,
            user_email,
            geometry_json,
            client,
            config=config,
            workspace_parameters=workspace_parameters,
            workspace_name=workspace,
            area_warning=area_warning,
            drawn_area=drawn_area,
            subfolder=f'export_{abort_key}',
            cancel_event=event,
            on_status_change=on_status_change,
        )

        if preparation.get('aoi_error'):
            return {'success': False, 'error': preparation['aoi_error'], 'service_mode': service_mode}

        final_params = preparation.get('params')
        if not final_params:
            raise RuntimeError('Submission parameter preparation failed')

        _notify(on_status_change, 'submitting')
        logger.info(f"Submitting '{workspace}' in {service_mode} mode")
        fme_response = client.run_workspace(workspace, final_params, cancel_event=event)

        if event.is_set():
            return {'success': False, 'service_mode': service_mode}

        result = process_fme_response(fme_response, workspace, user_email, translate)
        result['service_mode'] = service_mode
        return {'success': True, 'result': result, 'service_mode': service_mode}

    except Exception as e:
        support_email = get_support_email((config or {}).get('support_email'))
        error_result = build_submission_error_result(e, translate, support_email, service_mode)
        if error_result is None:
            logger.info("Submission cancelled")
            return {'success': False, 'service_mode': service_mode}
        logger.error(f"Submission failed: {e}", exc_info=True)
        return {'success': False, 'result': error_result, 'error': e, 'service_mode': service_mode}

    finally:
        if event is not None:
            abort_manager.release(abort_key, event)
