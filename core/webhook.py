"""
Webhook URLs and job request bodies for FME Export Tool.

Data-download jobs run through the ``fmedatadownload`` webhook (GET with the
published parameters in the query string); scheduled jobs are submitted as a
JSON body to the REST ``transformations/submit`` endpoint.

Functions:
    create_webhook_artifacts: Base URL, query pairs and full webhook URL
    is_webhook_url_too_long: Check the full webhook URL against the length limit
    build_tm_directives: Transaction Manager directives (ttc/ttl/tag)
    build_nm_directives: Notification Manager schedule directive
    make_submit_body: REST submit body with publishedParameters
"""

import ipaddress
from typing import Any, Dict, List, Optional

from config.constants import (
    MAX_URL_LENGTH,
    PUBLISHED_PARAM_EXCLUDE_SET,
    SCHEDULE_PARAM_KEYS,
    TAG_MAX,
    TM_NUMERIC_PARAM_KEYS,
    WEBHOOK_EXCLUDE_PARAMS,
)
from utils.conversion import parse_non_negative_int, to_trimmed_string
from utils.errors import FmeFlowApiError
from utils.logger import get_logger
from utils.network import build_params, build_url, serialize_params, set_param
from utils.validations import safe_parse_url, validate_server_url

logger = get_logger(__name__)

LOOPBACK_HOSTS = ('localhost', '127.0.0.1', '::1')


def _is_loopback(url: str) -> bool:
    parts = safe_parse_url(url)
    host = (parts.hostname or '').lower() if parts else ''
    if host in LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def _server_url_reason_to_key(reason: Optional[str]) -> str:
    if reason == 'require_https':
        return 'require_https'
    return 'invalid_url'


def create_webhook_artifacts(
    server_url: str,
    repository: str,
    workspace: str,
    parameters: Optional[Dict[str, Any]] = None,
    token: Optional[str] = None,
    require_https: bool = True
) -> Dict[str, Any]:
    """
    Build the data-download webhook URL for a workspace.

    Parameters:
    -----------
    server_url : str
        FME Flow base URL
    repository, workspace : str
        Target workspace location
    parameters : Optional[Dict]
        Published parameters plus opt_* / tm_* controls
    token : Optional[str]
        Appended as ``token`` when given
    require_https : bool
        Reject plain HTTP unless the host is a loopback address

    Returns:
    --------
    Dict
        ``{'base_url': str, 'params': List[Tuple[str, str]], 'full_url': str}``

    Raises:
    -------
    FmeFlowApiError
        WEBHOOK_AUTH_ERROR (status 0) when the base URL fails validation
    """
    parameters = parameters or {}
    base_url = build_url(server_url, 'fmedatadownload', repository, workspace)

    loopback = _is_loopback(base_url)
    check = validate_server_url(base_url, strict=not loopback, require_https=require_https and not loopback)
    if not check['ok']:
        key = _server_url_reason_to_key(check.get('reason'))
        logger.debug(f"Webhook base URL rejected: {check}")
        raise FmeFlowApiError(key, 'WEBHOOK_AUTH_ERROR', 0)

    params = build_params(parameters, WEBHOOK_EXCLUDE_PARAMS, webhook_defaults=True)
    if token:
        params = set_param(params, 'token', token)

    for key in TM_NUMERIC_PARAM_KEYS:
        value = parse_non_negative_int(parameters.get(key))
        if value is not None:
            params = set_param(params, key, str(value))

    tag = to_trimmed_string(parameters.get('tm_tag'))
    if tag:
        params = set_param(params, 'tm_tag', tag[:TAG_MAX])

    return {
        'base_url': base_url,
        'params': params,
        'full_url': f'{base_url}?{serialize_params(params)}',
    }


def is_webhook_url_too_long(
    server_url: str,
    repository: str,
    workspace: str,
    parameters: Optional[Dict[str, Any]] = None,
    max_length: int = MAX_URL_LENGTH,
    token: Optional[str] = None
) -> bool:
    artifacts = create_webhook_artifacts(server_url, repository, workspace, parameters, token)
    return max_length > 0 and len(artifacts['full_url']) > max_length


def build_tm_directives(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    params = params or {}
    directives: Dict[str, Any] = {}
    ttc = parse_non_negative_int(params.get('tm_ttc'))
    ttl = parse_non_negative_int(params.get('tm_ttl'))
    tag = to_trimmed_string(params.get('tm_tag'))
    if ttc is not None:
        directives['ttc'] = ttc
    if ttl is not None:
        directives['ttl'] = ttl
    if tag:
        directives['tag'] = tag
    return directives


def build_nm_directives(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Schedule directive; None unless schedule mode has start, name and category."""
    params = params or {}
    if params.get('opt_servicemode') != 'schedule':
        return None

    start = to_trimmed_string(params.get('start'))
    name = to_trimmed_string(params.get('name'))
    category = to_trimmed_string(params.get('category'))
    if not start or not name or not category:
        return None

    directive = {
        'name': 'schedule',
        'begin': start,
        'scheduleName': name,
        'scheduleCategory': category,
        'scheduleTrigger': to_trimmed_string(params.get('trigger')) or 'runonce',
    }
    description = to_trimmed_string(params.get('description'))
    if description:
        directive['scheduleDescription'] = description
    return {'directives': [directive]}


def make_submit_body(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    REST submit body for a job.

    Bodies that already carry ``publishedParameters`` are returned unchanged.
    Schedule fields are moved into the schedule directive only in schedule
    mode; otherwise they are ordinary published parameters.
    """
    params = params or {}
    if 'publishedParameters' in params:
        return params

    excluded = PUBLISHED_PARAM_EXCLUDE_SET
    if params.get('opt_servicemode') == 'schedule':
        excluded = excluded | frozenset(SCHEDULE_PARAM_KEYS)

    published: List[Dict[str, Any]] = [
        {'name': name, 'value': value}
        for name, value in params.items()
        if name not in excluded
    ]
    body: Dict[str, Any] = {'publishedParameters': published}

    tm_directives = build_tm_directives(params)
    if tm_directives:
        body['TMDirectives'] = tm_directives
    nm_directives = build_nm_directives(params)
    if nm_directives:
        body['NMDirectives'] = nm_directives
    return body
