"""
Error types and error mapping for FME Export Tool.

FmeFlowApiError is the single exception raised by the FME Flow client. The
rest of this module turns errors into translation keys, icons and
presentation records for the CLI, the HTTP API and the result views.

Functions:
    is_status_retryable: Whether an HTTP status warrants a retry
    make_flow_error: Build an FmeFlowApiError with a derived retryable flag
    map_error_from_network / map_error_from_validation / map_error_from_geometry:
        Translation key lookups by context
    get_error_icon_src: Icon name for an error code
    is_abort_error / should_suppress_error: Cancellation checks
    link_abort_signal: Forward an external cancel event to a local one
    create_typed_error: Serializable error record factory
    format_error_presentation: Message, code and hint for display
"""

import re
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.constants import (
    DEFAULT_ERROR_ICON,
    ERROR_CODE_TO_KEY,
    ICON_BY_EXACT_CODE,
    MESSAGE_PATTERNS,
    STATUS_TO_KEY_MAP,
    TOKEN_ICON_PRIORITY,
)
from utils.conversion import to_str
from utils.format import build_support_hint_text
from utils.logger import get_logger
from utils.translations import TranslateFn, resolve_message_or_key, translate as default_translate
from utils.validations import extract_http_status

logger = get_logger(__name__)

ABORT_PATTERN = re.compile(r'\baborted?\b', re.IGNORECASE)
CAMEL_BOUNDARY = re.compile(r'([a-z0-9])([A-Z])')
ABORT_POLL_SECONDS = 0.05

ERROR_TYPES = ('network', 'validation', 'config', 'geometry', 'module')
SEVERITIES = ('error', 'warning', 'info')


class FmeFlowApiError(Exception):
    """
    Error raised for any failed FME Flow request.

    Attributes:
    -----------
    message : str
        Human-readable message or translation key
    code : str
        Stable error code (e.g. ``REQUEST_FAILED``, ``WEBHOOK_TIMEOUT``)
    status : Optional[int]
        HTTP status, 0 for client-side failures
    retryable : bool
        Whether repeating the request may succeed
    """

    def __init__(self, message: str, code: str, status: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.retryable = is_status_retryable(status) if retryable is None else retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'code': self.code,
            'status': self.status,
            'retryable': self.retryable,
        }


def is_status_retryable(status: Optional[int]) -> bool:
    if status is None or status < 100:
        return True
    if status >= 500:
        return True
    return status in (408, 429)


def make_flow_error(code: str, status: Optional[int] = None, message: Optional[str] = None) -> FmeFlowApiError:
    return FmeFlowApiError(message or code, code, status, is_status_retryable(status))


# ---------------------------------------------------------------------------
# Translation key mapping
# ---------------------------------------------------------------------------

def _classify(error: Any, status: Optional[int]) -> Dict[str, Any]:
    resolved_status = status if status is not None else extract_http_status(error)
    code = getattr(error, 'code', None)
    message = getattr(error, 'message', None)
    if isinstance(error, dict):
        code = error.get('code')
        message = error.get('message')
    if message is None and isinstance(error, BaseException):
        message = str(error)
    return {
        'status': resolved_status,
        'code': code if isinstance(code, str) else None,
        'message': message if isinstance(message, str) else None,
    }


def _match_message_pattern(message: str) -> Optional[str]:
    lower = message.lower()
    for pattern, key in MESSAGE_PATTERNS:
        if pattern.search(lower):
            return key
    return None


def _map_error(error: Any, status: Optional[int], context: str) -> Optional[str]:
    classified = _classify(error, status)

    if context == 'network' and classified['code'] == 'REQUEST_FAILED':
        return STATUS_TO_KEY_MAP.get(classified['status'])

    if classified['code'] and classified['code'] in ERROR_CODE_TO_KEY:
        return ERROR_CODE_TO_KEY[classified['code']]

    if context != 'geometry':
        status_key = STATUS_TO_KEY_MAP.get(classified['status'])
        if status_key:
            return status_key

    if classified['message']:
        message_key = _match_message_pattern(classified['message'])
        if message_key:
            return message_key

    return 'geometrySerializationFailedCode' if context == 'geometry' else None


def map_error_from_network(error: Any, status: Optional[int] = None) -> Optional[str]:
    """
    Translation key for a network error.

    ``REQUEST_FAILED`` errors only map through their HTTP status. Other errors
    try the code table, then the status table, then message patterns.
    """
    return _map_error(error, status, 'network')


def map_error_from_validation(error: Any) -> Optional[str]:
    return _map_error(error, None, 'validation')


def map_error_from_geometry(error: Any) -> str:
    return _map_error(error, None, 'geometry') or 'geometrySerializationFailedCode'


def get_error_icon_src(code: Optional[str] = None) -> str:
    """
    Icon name for an error code.

    camelCase codes are normalized to UPPER_SNAKE before matching.

    Example:
        >>> get_error_icon_src('tokenExpired')
        'person-lock'
    """
    if not isinstance(code, str) or not code.strip():
        return DEFAULT_ERROR_ICON
    normalized = CAMEL_BOUNDARY.sub(r'\1_\2', code.strip()).upper()
    if normalized in ICON_BY_EXACT_CODE:
        return ICON_BY_EXACT_CODE[normalized]
    for token, icon in TOKEN_ICON_PRIORITY:
        if token in normalized:
            return icon
    return DEFAULT_ERROR_ICON


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

def is_abort_error(error: Any) -> bool:
    if not error:
        return False
    if isinstance(error, str):
        return bool(ABORT_PATTERN.search(error))

    if isinstance(error, dict):
        name = error.get('name') or error.get('code')
        message = error.get('message')
    else:
        name = getattr(error, 'name', None) or getattr(error, 'code', None)
        message = getattr(error, 'message', None)
        if message is None and isinstance(error, BaseException):
            message = str(error)

    name = to_str(name) if name is not None else ''
    if name in ('AbortError', 'ABORT_ERR', 'ERR_ABORTED', 'ABORT'):
        return True
    if not name or name == 'Error':
        text = to_str(message) if message is not None else ''
        return bool(ABORT_PATTERN.search(text)) or 'signal is aborted' in text
    return False


def should_suppress_error(error: Optional[Dict[str, Any]]) -> bool:
    if not error:
        return True
    code = error.get('code') or ''
    message = error.get('message') or ''
    return code in ('CANCELLED', 'ABORT') or bool(re.search(r'cancel', message, re.IGNORECASE))


def link_abort_signal(
    external: Optional[threading.Event],
    controller: threading.Event,
    on_abort: Optional[Callable[[], None]] = None
) -> Callable[[], None]:
    """
    Set ``controller`` as soon as ``external`` is set.

    Parameters:
    -----------
    external : Optional[threading.Event]
        Caller-supplied cancel event (may be None)
    controller : threading.Event
        Event owned by the request being made
    on_abort : Optional[Callable]
        Called once when the abort is forwarded

    Returns:
    --------
    Callable[[], None]
        Cleanup function that stops forwarding
    """
    if external is None:
        return lambda: None

    def forward():
        controller.set()
        if on_abort:
            on_abort()

    if external.is_set():
        forward()
        return lambda: None

    stopped = threading.Event()

    def watch():
        while not stopped.is_set():
            if external.wait(ABORT_POLL_SECONDS):
                if not stopped.is_set():
                    forward()
                return

    watcher = threading.Thread(target=watch, name='abort-link', daemon=True)
    watcher.start()

    def cleanup():
        stopped.set()
        if threading.current_thread() is not watcher:
            watcher.join()

    return cleanup


# ---------------------------------------------------------------------------
# Error records
# ---------------------------------------------------------------------------

def build_validation_errors(validations: List[Tuple[str, Callable[[], Dict[str, Any]]]]) -> Dict[str, Any]:
    """Run ``(field, validator)`` pairs and collect the key or reason of each failure."""
    errors: Dict[str, str] = {}
    for field, validator in validations:
        result = validator()
        if not result.get('ok'):
            error_key = result.get('key') or result.get('reason')
            if error_key:
                errors[field] = error_key
    return {'ok': not errors, 'errors': errors}


def create_error(message: str, **options) -> Dict[str, Any]:
    """Runtime error record; may carry a ``retry`` callable."""
    return {
        'message': message,
        'type': options.get('type', 'network'),
        'code': options.get('code', 'UNKNOWN'),
        'severity': options.get('severity', 'error'),
        'recoverable': options.get('recoverable', True),
        'timestamp_ms': int(time.time() * 1000),
        'user_friendly_message': options.get('user_friendly_message', ''),
        'suggestion': options.get('suggestion', ''),
        'retry': options.get('retry'),
        'kind': 'runtime',
    }


def create_typed_error(error_type: str, message_key: str, **options) -> Dict[str, Any]:
    """
    Serializable error record.

    The code defaults to ``{TYPE}_ERROR``; module errors are not recoverable
    unless stated otherwise.
    """
    if error_type not in ERROR_TYPES:
        raise ValueError(f"Unknown error type: {error_type}")
    code = options.get('code') or f'{error_type.upper()}_ERROR'
    scope = options.get('scope') or 'general'
    recoverable = options.get('recoverable')
    if recoverable is None:
        recoverable = error_type != 'module'
    return {
        'message': message_key,
        'type': error_type,
        'code': code,
        'severity': options.get('severity', 'error'),
        'recoverable': recoverable,
        'timestamp_ms': int(time.time() * 1000),
        'user_friendly_message': options.get('user_friendly_message', ''),
        'suggestion': options.get('suggestion', ''),
        'details': options.get('details'),
        'kind': 'serializable',
        'error_id': f'{scope}_{code}',
    }


def create_network_error(message_key: str, **options) -> Dict[str, Any]:
    return create_typed_error('network', message_key, **options)


def create_validation_error(message_key: str, **options) -> Dict[str, Any]:
    return create_typed_error('validation', message_key, **options)


def create_config_error(message_key: str, **options) -> Dict[str, Any]:
    return create_typed_error('config', message_key, **options)


def create_geometry_error(message_key: str, **options) -> Dict[str, Any]:
    return create_typed_error('geometry', message_key, **options)


def create_module_error(message_key: str, **options) -> Dict[str, Any]:
    return create_typed_error('module', message_key, **options)


def format_error_presentation(
    error: Dict[str, Any],
    translate: TranslateFn = default_translate,
    support_email: Optional[str] = None
) -> Dict[str, Optional[str]]:
    """
    Message, code and hint for an error record.

    Geometry, area and configuration errors get a fixed hint and no code;
    everything else gets the support contact hint.
    """
    code = error.get('code') or ''
    code_upper = code.upper()
    is_geometry_invalid = code_upper in ('GEOMETRY_INVALID', 'INVALID_GEOMETRY')
    is_area_too_large = code_upper == 'AREA_TOO_LARGE'
    is_config_incomplete = code_upper == 'CONFIG_INCOMPLETE'

    message = resolve_message_or_key(error.get('message', ''), translate) or error.get('message', '')

    if is_geometry_invalid:
        hint = translate('hintGeometryInvalid')
    elif is_area_too_large:
        hint = translate('hintAreaTooLarge')
    elif is_config_incomplete:
        hint = translate('hintSetupWidget')
    else:
        hint = build_support_hint_text(translate, support_email, error.get('user_friendly_message') or None)

    suppress_code = is_geometry_invalid or is_area_too_large or is_config_incomplete
    return {'message': message, 'code': None if suppress_code else code, 'hint': hint}
