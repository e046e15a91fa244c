"""
Input validation for FME Export Tool.

Validates connection settings (server URL, token, repository), requester and
support emails, remote dataset URLs and workspace parameter values, and maps
startup failures to translation keys.

Functions:
    normalize_base_url: Reduce a server URL to scheme://host[/path] without /fmerest
    validate_server_url: Check an FME Flow base URL
    validate_token: Check an FME Flow API token
    validate_repository: Check a repository against the available list
    validate_connection_inputs: Combined URL/token/repository check
    map_error_to_key: Map a startup/connection failure to a translation key
    is_valid_email: Email syntax check that rejects no-reply addresses
    is_valid_external_url_for_opt_get_url: Safety check for remote dataset URLs
    validate_parameter_type: Type check for a workspace parameter value
    validate_parameter_choices: Choice check for list-backed parameters
"""

import ipaddress
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from config.constants import (
    ALLOWED_FILE_EXTENSIONS,
    EMAIL_REGEX,
    FORBIDDEN_HOSTNAME_SUFFIXES,
    MAX_URL_LENGTH,
    MIN_TOKEN_LENGTH,
    NO_REPLY_REGEX,
    PRIVATE_IPV4_RANGES,
    REQUIRED_CONFIG_FIELDS,
    STARTUP_ERROR_CODE_TO_KEY,
    V4_TYPE_MAP,
)
from utils.conversion import (
    extract_error_message,
    is_finite_number,
    normalize_parameter_value,
    to_trimmed_string,
)

FME_REST_PATH = '/fmerest'
STATUS_IN_MESSAGE = re.compile(r'status:\s*(\d{3})', re.IGNORECASE)
DATE_TIME_FORMAT = re.compile(r'^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$')


def safe_parse_url(raw: Any):
    """Split an absolute http(s)-style URL, or return None when it is not one."""
    text = to_trimmed_string(raw)
    if not text:
        return None
    try:
        parts = urlsplit(text)
        # Accessing port validates it
        parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts


def is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    if isinstance(value, str):
        try:
            return float(value.strip()).is_integer()
        except ValueError:
            return False
    return False


def is_num(value: Any) -> bool:
    if is_finite_number(value):
        return True
    if isinstance(value, str) and value.strip():
        try:
            numeric = float(value.strip())
        except ValueError:
            return False
        return numeric not in (float('inf'), float('-inf')) and numeric == numeric
    return False


def normalize_base_url(raw_url: str) -> str:
    """
    Normalize an FME Flow server URL.

    Drops credentials, query, fragment, everything from ``/fmerest`` onwards
    and the trailing slash.

    Example:
        >>> normalize_base_url('https://fme.example.com/fmerest/v3/?x=1')
        'https://fme.example.com'
    """
    parts = safe_parse_url(raw_url or '')
    if not parts:
        return ''

    path = parts.path or '/'
    rest_index = path.lower().find(FME_REST_PATH)
    if rest_index >= 0:
        path = path[:rest_index] or '/'

    host = parts.hostname or ''
    if ':' in host:
        host = f'[{host}]'
    netloc = f'{host}:{parts.port}' if parts.port else host
    clean_path = '' if path == '/' else path.rstrip('/')
    return urlunsplit((parts.scheme, netloc, clean_path, '', ''))


def validate_server_url(
    url: Optional[str],
    strict: bool = False,
    require_https: bool = False
) -> Dict[str, Any]:
    """
    Validate an FME Flow base URL.

    Returns:
    --------
    Dict
        ``{'ok': True}`` or ``{'ok': False, 'key': <translation key>}``
    """
    trimmed = (url or '').strip()
    if not trimmed:
        return {'ok': False, 'key': 'errorMissingServerUrl'}

    parts = safe_parse_url(trimmed)
    if not parts:
        return {'ok': False, 'key': 'errorInvalidServerUrl'}

    scheme = parts.scheme.lower()
    if scheme not in ('http', 'https'):
        return {'ok': False, 'key': 'errorInvalidServerUrl'}
    if require_https and scheme != 'https':
        return {'ok': False, 'key': 'errorInvalidServerUrl', 'reason': 'require_https'}
    if parts.username or parts.password:
        return {'ok': False, 'key': 'errorInvalidServerUrl'}
    if parts.query or parts.fragment:
        return {'ok': False, 'key': 'errorInvalidServerUrl', 'reason': 'no_query_or_hash'}
    if FME_REST_PATH in parts.path.lower():
        return {'ok': False, 'key': 'errorBadBaseUrl'}

    hostname = parts.hostname or ''
    if hostname.endswith('.'):
        return {'ok': False, 'key': 'errorInvalidServerUrl'}
    if strict and ('.' not in hostname or len(hostname) < 4):
        return {'ok': False, 'key': 'errorInvalidServerUrl'}

    return {'ok': True}


def validate_token(token: Optional[str]) -> Dict[str, Any]:
    """Tokens need at least 10 chars and no whitespace, quotes, angle brackets or control chars."""
    if not token:
        return {'ok': False, 'key': 'errorMissingToken'}

    has_control_char = any(ord(ch) < 32 or ord(ch) == 127 for ch in token)
    invalid = (
        len(token) < MIN_TOKEN_LENGTH
        or re.search(r'\s', token) is not None
        or re.search(r'[<>"\'`]', token) is not None
        or has_control_char
    )
    return {'ok': False, 'key': 'errorTokenIsInvalid'} if invalid else {'ok': True}


def validate_repository(repository: Optional[str], available: Optional[List[str]]) -> Dict[str, Any]:
    # None means the repository list has not been loaded yet
    if available is None:
        return {'ok': True}
    if available and not repository:
        return {'ok': False, 'key': 'errorRepoRequired'}
    if available and repository not in available:
        return {'ok': False, 'key': 'errorRepositoryNotFound'}
    return {'ok': True}


def validate_connection_inputs(
    url: str,
    token: str,
    repository: Optional[str] = None,
    available_repos: Optional[List[str]] = ()
) -> Tuple[bool, Dict[str, str]]:
    """
    Validate server URL, token and repository together.

    Returns:
    --------
    Tuple[bool, Dict[str, str]]
        (ok, errors) where errors maps server_url/token/repository to keys
    """
    errors: Dict[str, str] = {}

    url_check = validate_server_url(url)
    if not url_check['ok']:
        errors['server_url'] = url_check.get('key', 'errorInvalidServerUrl')

    token_check = validate_token(token)
    if not token_check['ok']:
        errors['token'] = token_check.get('key', 'errorTokenIsInvalid')

    repo_check = validate_repository(
        repository or '',
        None if available_repos is None else list(available_repos)
    )
    if not repo_check['ok']:
        errors['repository'] = repo_check.get('key', 'errorRepositoryNotFound')

    return len(errors) == 0, errors


def validate_required_config(server_url: Optional[str], token: Optional[str], repository: Optional[str]) -> None:
    """Raise ValueError when any connection setting is missing."""
    if not server_url or not token or not repository:
        raise ValueError('Missing required configuration')


def get_missing_config_fields(config: Optional[Dict]) -> List[str]:
    if not config:
        return list(REQUIRED_CONFIG_FIELDS)
    return [field for field in REQUIRED_CONFIG_FIELDS if not to_trimmed_string(config.get(field))]


def _is_http_status(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599


def extract_http_status(error: Any) -> Optional[int]:
    """
    Find an HTTP status on an error object, error dict or error message.

    Looks at status / status_code / http_status, then an attached response,
    then a ``details`` dict, then a ``status: NNN`` fragment in the message.
    """
    if error is None:
        return None

    def _get(obj: Any, key: str) -> Any:
        if isinstance(obj, dict):
            return obj.get(key)
        return getattr(obj, key, None)

    for prop in ('status', 'status_code', 'http_status'):
        value = _get(error, prop)
        if _is_http_status(value):
            return value

    # requests.HTTPError carries the response
    response = None if isinstance(error, dict) else getattr(error, 'response', None)
    if response is not None and _is_http_status(getattr(response, 'status_code', None)):
        return response.status_code

    details = _get(error, 'details')
    if isinstance(details, dict):
        detail_status = details.get('http_status') or details.get('status')
        if _is_http_status(detail_status):
            return detail_status

    if isinstance(error, (str, int)):
        return None
    match = STATUS_IN_MESSAGE.search(extract_error_message(error))
    if match:
        status = int(match.group(1))
        if 100 <= status <= 599:
            return status
    return None


def _status_to_startup_key(status: Optional[int]) -> Optional[str]:
    if status is None:
        return None
    if status == 0:
        return 'startupNetworkError'
    if status in (401, 403):
        return 'startupTokenError'
    if status == 404:
        return 'connectionFailed'
    if status == 408:
        return 'timeout'
    if status == 429:
        return 'rateLimited'
    if status == 431:
        return 'headersTooLarge'
    if status >= 500:
        return 'startupServerError'
    return None


def map_error_to_key(error: Any, status: Optional[int] = None) -> str:
    """
    Map a connection/startup failure to a translation key.

    Tries the error code, then the HTTP status, then message patterns.
    """
    if status is None:
        status = extract_http_status(error)

    code = error.get('code') if isinstance(error, dict) else getattr(error, 'code', None)
    if isinstance(code, str):
        if code == 'REQUEST_FAILED':
            return _status_to_startup_key(status) or 'startupServerError'
        mapped = STARTUP_ERROR_CODE_TO_KEY.get(code)
        if mapped:
            return mapped

    by_status = _status_to_startup_key(status)
    if by_status:
        return by_status

    message = error.get('message') if isinstance(error, dict) else (str(error) if isinstance(error, BaseException) else None)
    if isinstance(message, str):
        lower = message.lower()
        if 'failed to fetch' in lower or ('connection' in lower and 'refused' in lower):
            return 'startupNetworkError'
        if 'timeout' in lower or 'timed out' in lower:
            return 'timeout'
        if 'cors' in lower:
            return 'corsError'
        if 'url' in lower and 'too' in lower:
            return 'urlTooLong'

    return 'unknownErrorOccurred'


def is_auth_error(status: int) -> bool:
    return status in (401, 403)


def is_valid_email(email: Any) -> bool:
    if not isinstance(email, str) or not email:
        return False
    if NO_REPLY_REGEX.search(email):
        return False
    return EMAIL_REGEX.match(email) is not None


def validate_email_field(email: Optional[str], required: bool = False) -> Dict[str, Any]:
    trimmed = (email or '').strip()
    if not trimmed:
        return {'ok': False, 'error_key': 'emailRequired'} if required else {'ok': True}
    if not is_valid_email(trimmed):
        return {'ok': False, 'error_key': 'invalidEmail'}
    return {'ok': True}


def get_support_email(configured: Any) -> Optional[str]:
    email = to_trimmed_string(configured)
    return email if email and is_valid_email(email) else None


def _is_private_host(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if address.version == 4:
        octets = tuple(int(part) for part in host.split('.'))
        return any(start <= octets <= end for start, end in PRIVATE_IPV4_RANGES)
    return address.is_loopback or address.is_private or address.is_link_local


def is_valid_external_url_for_opt_get_url(url: Any) -> bool:
    """
    Check that a remote dataset URL is safe to hand to FME Flow as opt_geturl.

    HTTPS only, no embedded credentials, no private or intranet hosts, and when
    the path names a file it must be one of the allowed dataset extensions.
    """
    if not isinstance(url, str):
        return False
    trimmed = url.strip()
    if not trimmed or len(trimmed) > MAX_URL_LENGTH:
        return False

    parts = safe_parse_url(trimmed)
    if not parts:
        return False
    if parts.username or parts.password or parts.scheme.lower() != 'https':
        return False

    host = (parts.hostname or '').lower()
    if not host:
        return False
    if any(host == suffix or host.endswith(suffix) for suffix in FORBIDDEN_HOSTNAME_SUFFIXES):
        return False
    if _is_private_host(host):
        return False

    if re.search(r'\.[^/]+$', parts.path):
        path_with_query = parts.path + (f'?{parts.query}' if parts.query else '')
        if not ALLOWED_FILE_EXTENSIONS.search(path_with_query):
            return False

    return True


def validate_date_time_format(value: str) -> bool:
    return DATE_TIME_FORMAT.match((value or '').strip()) is not None


def validate_parameter_type(param_type: str, name: str, value: Any) -> Optional[str]:
    """
    Check a submitted value against a workspace parameter type.

    Returns:
    --------
    Optional[str]
        ``"{name}:type"`` when the value does not fit, else None
    """
    kind = V4_TYPE_MAP.get(param_type)
    if kind == 'number':
        if param_type == 'INTEGER':
            return None if is_int(value) else f'{name}:type'
        return None if is_num(value) else f'{name}:type'
    if kind == 'boolean':
        if isinstance(value, bool):
            return None
        if isinstance(value, str) and value.strip().lower() in ('true', 'false', 'yes', 'no', '1', '0'):
            return None
        return f'{name}:type'
    return None


def validate_parameter_choices(
    name: str,
    value: Any,
    valid_choices: Optional[Iterable[Any]],
    is_multi_select: bool
) -> Optional[str]:
    """Return ``"{name}:choice"`` when a value is outside the parameter's choice list."""
    if not valid_choices:
        return None
    choices = {str(normalize_parameter_value(choice)) for choice in valid_choices}
    values = value if is_multi_select and isinstance(value, (list, tuple)) else [value]
    for item in values:
        if str(normalize_parameter_value(item)) not in choices:
            return f'{name}:choice'
    return None


def build_choice_set(list_options: Optional[List[Dict]]) -> Optional[set]:
    if not list_options:
        return None
    return {normalize_parameter_value(option.get('value')) for option in list_options if isinstance(option, dict)}
