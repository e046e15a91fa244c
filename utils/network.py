"""
URL and request helpers for FME Export Tool.

Builds FME Flow URLs and query strings, masks secrets before they reach the
logs and times HTTP requests made through a ``requests.Session``.

Functions:
    build_url: Join and percent-encode URL path segments
    build_params: Coerce a parameter dict to query pairs (webhook defaults optional)
    serialize_params: Sorted, encoded query string
    mask_token / sanitize_url / sanitize_params: Secret masking for logs
    create_correlation_id: Request id for log correlation
    make_scope_id: Stable id for a server/token/repository combination
    instrumented_request: Run and log a single HTTP request
    get_email: Resolve the requester email for async jobs
"""

import json
import random
import re
import string
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, quote, urlencode

import requests

from config.constants import (
    DEFAULT_REPOSITORY,
    EMAIL_REGEX,
    MAX_BODY_DESCRIPTION_LENGTH,
    SLOW_REQUEST_THRESHOLD_MS,
)
from utils.conversion import (
    extract_error_message,
    is_finite_number,
    normalize_parameter_value,
    to_str,
    to_trimmed_string,
)
from utils.errors import make_flow_error
from utils.logger import get_logger
from utils.validations import extract_http_status, safe_parse_url

logger = get_logger(__name__)

QueryParams = List[Tuple[str, str]]

DJB2_INITIAL = 5381
BASE36_ALPHABET = string.digits + string.ascii_lowercase
SENSITIVE_KEY_PARTS = ('token', 'auth', 'secret', 'key', 'password')
AUTH_HEADER_PATTERN = re.compile(r'authorization="?[^"]+"?', re.IGNORECASE)
TOKEN_VALUE_PATTERN = re.compile(r'(token|fmetoken)=([^&\s]+)', re.IGNORECASE)


def to_base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return ''.join(reversed(digits))


def build_url(server_url: str, *segments: str) -> str:
    """
    Join path segments onto a server URL.

    Each segment is split on ``/``; empty, ``.`` and ``..`` parts are dropped
    and the rest are percent-encoded.

    Example:
        >>> build_url('https://fme.example.com/', 'fmedatadownload', 'My Repo', 'ws.fmw')
        'https://fme.example.com/fmedatadownload/My%20Repo/ws.fmw'
    """
    base = server_url[:-1] if server_url.endswith('/') else server_url
    encoded_segments = []
    for segment in segments:
        if not isinstance(segment, str) or not segment:
            continue
        parts = [quote(part, safe='') for part in segment.split('/') if part and part not in ('.', '..')]
        if parts:
            encoded_segments.append('/'.join(parts))
    path = '/'.join(encoded_segments)
    return f'{base}/{path}' if path else base


def _param_text(value: Any) -> str:
    normalized = normalize_parameter_value(value)
    if isinstance(normalized, str):
        return normalized.strip() or normalized
    return to_str(normalized) if not is_finite_number(normalized) else str(normalized)


def build_params(
    params: Optional[Dict[str, Any]] = None,
    exclude: Iterable[str] = (),
    webhook_defaults: bool = False
) -> QueryParams:
    """
    Convert a parameter dict into ordered query pairs.

    Parameters:
    -----------
    params : Optional[Dict]
        Raw parameters; None values and excluded keys are skipped
    exclude : Iterable[str]
        Keys to leave out
    webhook_defaults : bool
        Normalize opt_responseformat (xml|json), opt_showresult (true|false)
        and opt_servicemode (sync|async) for data-download webhooks

    Returns:
    --------
    List[Tuple[str, str]]
        Query pairs in insertion order
    """
    if not isinstance(params, dict):
        return []

    excluded = set(exclude)
    pairs: Dict[str, str] = {}
    for key, value in params.items():
        if value is None or key in excluded:
            continue
        pairs[key] = _param_text(value)

    if webhook_defaults:
        def raw(key: str) -> str:
            return (pairs.get(key) or to_trimmed_string(params.get(key)) or '').lower()

        pairs['opt_responseformat'] = 'xml' if raw('opt_responseformat') == 'xml' else 'json'
        pairs['opt_showresult'] = 'false' if raw('opt_showresult') == 'false' else 'true'
        pairs['opt_servicemode'] = 'sync' if raw('opt_servicemode') == 'sync' else 'async'

    return list(pairs.items())


def set_param(pairs: QueryParams, key: str, value: str) -> QueryParams:
    """Replace (or append) a single query pair."""
    filtered = [(k, v) for k, v in pairs if k != key]
    filtered.append((key, value))
    return filtered


def serialize_params(pairs: Union[QueryParams, Dict[str, Any]]) -> str:
    items = list(pairs.items()) if isinstance(pairs, dict) else list(pairs)
    items.sort(key=lambda item: item[0])
    return urlencode(items, quote_via=quote)


def mask_token(token: Optional[str]) -> str:
    """
    Mask a token for logging, keeping a few characters at each end.

    Example:
        >>> mask_token('abcdefghijkl')
        'abcd****ijkl'
    """
    if not token:
        return ''
    if len(token) <= 4:
        return '*' * len(token)
    if len(token) <= 8:
        return f'{token[:2]}{"*" * (len(token) - 4)}{token[-2:]}'
    return f'{token[:4]}{"*" * max(4, len(token) - 8)}{token[-4:]}'


def build_token_cache_key(token: Optional[str] = None) -> str:
    trimmed = to_trimmed_string(token)
    if not trimmed:
        return 'token:none'
    hash_value = 0
    for ch in trimmed:
        hash_value = (hash_value * 31 + ord(ch)) & 0xFFFFFFFF
    return f'token:{to_base36(hash_value)}'


def make_scope_id(server_url: str, token: str, repository: Optional[str] = None) -> str:
    """djb2 hash of server, token and repository, rendered in base 36."""
    text = f'{server_url}::{token or ""}::{repository or ""}'
    h = DJB2_INITIAL
    for ch in text:
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return to_base36(h)


def create_correlation_id(prefix: str = 'net') -> str:
    timestamp = to_base36(int(time.time() * 1000))
    suffix = ''.join(random.choices(BASE36_ALPHABET, k=8))
    return f'{prefix}_{timestamp}_{suffix}'


def _is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(part in lower for part in SENSITIVE_KEY_PARTS)


def redact_sensitive_text(text: str) -> str:
    result = AUTH_HEADER_PATTERN.sub('authorization="[TOKEN]"', text)
    return TOKEN_VALUE_PATTERN.sub(r'\1=[TOKEN]', result)


def sanitize_params(pairs: Union[QueryParams, Dict[str, Any]]) -> Dict[str, str]:
    items = pairs.items() if isinstance(pairs, dict) else pairs
    sanitized: Dict[str, str] = {}
    for key, value in items:
        text = to_str(value)
        sanitized[key] = '[TOKEN]' if _is_sensitive_key(key) else redact_sensitive_text(text)
    return sanitized


def sanitize_url(url: str, query: Optional[Union[QueryParams, Dict[str, Any]]] = None) -> str:
    """
    URL with secrets replaced by ``[TOKEN]`` and query parameters sorted.

    Example:
        >>> sanitize_url('https://fme.example.com/x?token=abc&b=1')
        'https://fme.example.com/x?b=1&token=%5BTOKEN%5D'
    """
    base, _, raw_query = (url or '').partition('?')
    merged: Dict[str, Any] = dict(parse_qsl(raw_query, keep_blank_values=True))
    if query:
        items = query.items() if isinstance(query, dict) else query
        for key, value in items:
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                merged[key] = ','.join(str(v) for v in value)
            elif isinstance(value, (str, int, float, bool)):
                merged[key] = str(value)
            else:
                merged[key] = json.dumps(value)

    search = serialize_params(sanitize_params(merged))
    parts = safe_parse_url(base)
    clean_base = f'{parts.scheme}://{parts.netloc}{parts.path}' if parts else redact_sensitive_text(base)
    return f'{clean_base}?{search}' if search else clean_base


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f'{text[:limit - 1]}…'


def describe_body(body: Any) -> str:
    """Short, secret-free description of a request body for logs."""
    if body is None:
        return ''
    if isinstance(body, str):
        return _truncate(redact_sensitive_text(body), MAX_BODY_DESCRIPTION_LENGTH)
    if isinstance(body, (bytes, bytearray, memoryview)):
        return f'[Binary:{len(body)}]'
    if hasattr(body, 'read'):
        return '[Stream]'
    try:
        serialized = json.dumps(body)
    except (TypeError, ValueError):
        return '[Object]'
    return _truncate(redact_sensitive_text(serialized), MAX_BODY_DESCRIPTION_LENGTH)


def is_json(content_type: Optional[str]) -> bool:
    return 'application/json' in (content_type or '').lower()


def extract_host_from_url(server_url: str) -> Optional[str]:
    parts = safe_parse_url(server_url)
    return (parts.hostname or None) if parts else None


def instrumented_request(
    method: str,
    url: str,
    execute: Callable[[], requests.Response],
    query: Optional[Union[QueryParams, Dict[str, Any]]] = None,
    body: Any = None,
    correlation_id: Optional[str] = None,
    transport: str = 'fme-flow-api'
) -> requests.Response:
    """
    Run an HTTP call and log it with timing and a sanitized URL.

    Parameters:
    -----------
    method : str
        HTTP method (for the log line)
    url : str
        Request URL (sanitized before logging)
    execute : Callable[[], requests.Response]
        Performs the request
    query, body : optional
        Logged after masking
    correlation_id : Optional[str]
        Id shared by all log lines of this request

    Returns:
    --------
    requests.Response
        The response from ``execute``; exceptions propagate after logging
    """
    correlation = correlation_id or create_correlation_id()
    safe_url = sanitize_url(url, query)
    start = time.monotonic()

    try:
        response = execute()
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            f"[{correlation}] {transport} {method.upper()} {safe_url} failed after {duration_ms}ms "
            f"(status={extract_http_status(e) or '?'}): {extract_error_message(e)}"
        )
        if body is not None:
            logger.debug(f"[{correlation}] body: {describe_body(body)}")
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    status = getattr(response, 'status_code', None)
    ok = status is not None and 200 <= status < 400
    icon = '✓' if ok else '✗'
    logger.debug(f"[{correlation}] {icon} {transport} {method.upper()} {safe_url} {status or '?'} {duration_ms}ms")
    if body is not None:
        logger.debug(f"[{correlation}] body: {describe_body(body)}")
    if duration_ms >= SLOW_REQUEST_THRESHOLD_MS:
        logger.warning(f"Slow request ({duration_ms}ms): {method.upper()} {safe_url}")
    return response


def get_email(config: Optional[Dict[str, Any]] = None, email: Optional[str] = None) -> str:
    """
    Resolve the requester email for async (email notification) jobs.

    The explicit email wins over ``default_requester_email`` from config.

    Raises:
    -------
    FmeFlowApiError
        MISSING_REQUESTER_EMAIL when neither is set, INVALID_EMAIL when the
        resolved address does not look like an email
    """
    candidate = (email or (config or {}).get('default_requester_email') or '').strip().lower()
    if not candidate:
        raise make_flow_error('MISSING_REQUESTER_EMAIL', 0)
    if not EMAIL_REGEX.match(candidate):
        raise make_flow_error('INVALID_EMAIL', 0)
    return candidate


def describe_connection(server_url: str, token: str, repository: Optional[str] = None) -> Dict[str, str]:
    """Loggable summary of a client connection."""
    return {
        'server_url': server_url,
        'repository': to_trimmed_string(repository) or DEFAULT_REPOSITORY,
        'token_hash': build_token_cache_key(token),
    }
