"""
FME Flow REST client for FME Export Tool.

Talks to the FME Flow v4 REST API (``/fmeapiv4``) and to the data-download
and data-upload webhooks over a shared ``requests.Session``. Every failure is
raised as ``FmeFlowApiError`` with a stable code; cancellation is driven by
``threading.Event`` objects.

Classes:
    FmeFlowApiClient: REST and webhook calls for one server/token/repository
    AbortControllerManager: Keyed cancel events for in-flight operations

Functions:
    create_fme_flow_client: Build a client from an export config dict
    extract_repository_names: Repository names from a list payload
"""

import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests

from config.constants import (
    DEFAULT_REQUEST_TIMEOUT_MS,
    FME_FLOW_API,
    MAX_URL_LENGTH,
)
from core.webhook import create_webhook_artifacts, make_submit_body
from utils.conversion import collect_strings_from_prop, extract_error_message, unique_strings
from utils.errors import FmeFlowApiError, is_status_retryable, link_abort_signal, make_flow_error
from utils.logger import get_logger
from utils.network import (
    build_url,
    create_correlation_id,
    instrumented_request,
    is_json,
    make_scope_id,
    mask_token,
)
from utils.validations import extract_http_status, map_error_to_key, safe_parse_url, validate_required_config

logger = get_logger(__name__)

ApiResponse = Dict[str, Any]

UPLOAD_NAME_MAX = 128
UPLOAD_NAMESPACE_MAX = 64
DOWNLOAD_CHUNK_SIZE = 64 * 1024
DEFAULT_PORTS = {'http': 80, 'https': 443}


def _abort_error() -> FmeFlowApiError:
    return FmeFlowApiError('requestAborted', 'ABORT', 0, False)


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise _abort_error()


def _host_and_port(url: Any) -> Optional[Tuple[str, Optional[int]]]:
    parts = safe_parse_url(url)
    if parts is None or not parts.hostname:
        return None
    return parts.hostname.lower(), parts.port or DEFAULT_PORTS.get(parts.scheme.lower())


def extract_repository_names(source: Any) -> List[str]:
    """Names from a repository list payload (a plain list or ``{'items': [...]}``)."""
    if isinstance(source, list):
        return unique_strings(collect_strings_from_prop(source, 'name'))
    if isinstance(source, dict) and isinstance(source.get('items'), list):
        return unique_strings(collect_strings_from_prop(source['items'], 'name'))
    return []


def _sanitize_upload_name(raw_name: Optional[str]) -> str:
    fallback = f'upload_{int(time.time() * 1000)}'
    name = (raw_name or '').strip() or fallback
    safe = ''.join(ch if ch.isascii() and (ch.isalnum() or ch in '._-') else '_' for ch in name)
    return safe[:UPLOAD_NAME_MAX] or fallback


def _sanitize_namespace(raw_namespace: Optional[str]) -> str:
    namespace = (raw_namespace or '').strip()
    safe = ''.join(ch if ch.isascii() and (ch.isalnum() or ch in '_-') else '-' for ch in namespace)
    return safe[:UPLOAD_NAMESPACE_MAX] or create_correlation_id('upload')


class FmeFlowApiClient:
    """
    Client for one FME Flow server, token and default repository.

    Parameters:
    -----------
    server_url : str
        FME Flow base URL (no trailing slash)
    token : str
        FME Flow API token
    repository : str
        Default repository for workspace calls
    timeout_ms : Optional[int]
        Request timeout in milliseconds
    session : Optional[requests.Session]
        Session to reuse; a new one is created when omitted
    require_https : bool
        Reject plain HTTP webhook URLs (loopback hosts excepted)
    """

    def __init__(
        self,
        server_url: str,
        token: str,
        repository: str,
        timeout_ms: Optional[int] = None,
        session: Optional[requests.Session] = None,
        require_https: bool = True
    ):
        self.server_url = server_url.rstrip('/')
        self.require_https = require_https
        self.token = token
        self.repository = repository
        self.timeout_ms = timeout_ms
        self.base_path = FME_FLOW_API['base_path']
        self.session = session or requests.Session()
        self._owns_session = session is None
        self._disposed = False

        logger.debug(f"FME Flow client for {self.server_url} (token {mask_token(token)}, repository {repository})")

    def __enter__(self) -> 'FmeFlowApiClient':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.dispose()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._owns_session:
            self.session.close()

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    def _resolve_repository(self, repository: Optional[str] = None) -> str:
        return repository or self.repository

    def _repo_endpoint(self, repository: str, *segments: str) -> str:
        return build_url(self.server_url, self.base_path.lstrip('/'), 'repositories', repository, *segments)

    def _transform_endpoint(self, action: str, repository: str, workspace: str) -> str:
        return build_url(self.server_url, self.base_path.lstrip('/'), 'transformations', action, repository, workspace)

    def _resolve_url(self, endpoint: str) -> str:
        if endpoint.startswith('http'):
            return endpoint
        stripped = endpoint.lstrip('/')
        if endpoint.startswith('/fme'):
            return build_url(self.server_url, stripped)
        base = self.base_path.lstrip('/')
        return build_url(self.server_url, base, stripped) if stripped else build_url(self.server_url, base)

    def _timeout_seconds(self, timeout_ms: Optional[int] = None) -> Optional[float]:
        value = timeout_ms if timeout_ms is not None else self.timeout_ms
        if value is None:
            value = DEFAULT_REQUEST_TIMEOUT_MS
        return value / 1000 if value > 0 else None

    def _is_server_host(self, url: str) -> bool:
        server = _host_and_port(self.server_url)
        return server is not None and server == _host_and_port(url)

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    def _request(
        self,
        endpoint: str,
        method: str = 'GET',
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        data: Any = None,
        cancel_event: Optional[threading.Event] = None,
        repository_context: Optional[str] = None,
        timeout_ms: Optional[int] = None
    ) -> ApiResponse:
        if self._disposed:
            raise make_flow_error('CLIENT_DISPOSED')
        _check_cancelled(cancel_event)

        url = self._resolve_url(endpoint)
        method = method.upper()
        request_headers = dict(headers or {})
        request_query = dict(query or {})

        if method == 'GET' and '__scope' not in request_query:
            request_query['__scope'] = make_scope_id(self.server_url, self.token, repository_context)

        if self.token and self._is_server_host(url):
            request_query.setdefault('fmetoken', self.token)
            request_headers['Authorization'] = f'fmetoken token={self.token}'

        timeout = self._timeout_seconds(timeout_ms)
        body = json_body if json_body is not None else data

        try:
            response = instrumented_request(
                method,
                url,
                lambda: self.session.request(
                    method,
                    url,
                    params=request_query,
                    headers=request_headers,
                    json=json_body,
                    data=data,
                    timeout=timeout,
                ),
                query=request_query,
                body=body if not isinstance(body, (bytes, bytearray)) else f'[Binary:{len(body)}]',
                correlation_id=create_correlation_id('fme'),
            )
            _check_cancelled(cancel_event)
            response.raise_for_status()
        except FmeFlowApiError:
            raise
        except requests.exceptions.RequestException as e:
            status = extract_http_status(e) or 0
            translation_key = map_error_to_key(e, status)
            raise FmeFlowApiError(translation_key, 'REQUEST_FAILED', status, is_status_retryable(status)) from e

        if not response.content:
            payload = None
        else:
            try:
                payload = response.json()
            except ValueError as e:
                raise FmeFlowApiError(
                    map_error_to_key(e, response.status_code),
                    'INVALID_RESPONSE_FORMAT',
                    response.status_code,
                    False
                ) from e

        return {'data': payload, 'status': response.status_code or 200, 'status_text': response.reason}

    def _with_api_error(self, operation: Callable[[], ApiResponse], code: str) -> ApiResponse:
        try:
            return operation()
        except FmeFlowApiError as e:
            if e.code in ('ABORT', 'CLIENT_DISPOSED'):
                raise
            logger.debug(f"{code}: {e.code} ({e.status}) {e.message}")
            raise FmeFlowApiError(code, code, e.status or 0, e.retryable) from e

    # ------------------------------------------------------------------
    # REST API
    # ------------------------------------------------------------------

    def test_connection(self, cancel_event: Optional[threading.Event] = None) -> ApiResponse:
        """Call ``/info`` to check connectivity; data holds build and version."""
        return self._request('/info', cancel_event=cancel_event)

    def validate_repository(self, repository: Optional[str] = None, cancel_event: Optional[threading.Event] = None) -> ApiResponse:
        repo = self._resolve_repository(repository)
        return self._request(self._repo_endpoint(repo), cancel_event=cancel_event)

    def get_repositories(self, cancel_event: Optional[threading.Event] = None) -> ApiResponse:
        def operation():
            endpoint = build_url(self.server_url, self.base_path.lstrip('/'), 'repositories')
            raw = self._request(endpoint, query={'limit': -1, 'offset': -1}, cancel_event=cancel_event)
            names = extract_repository_names(raw['data'])
            return {'data': [{'name': name} for name in names], 'status': raw['status'], 'status_text': raw['status_text']}

        return self._with_api_error(operation, 'REPOSITORIES_ERROR')

    def get_repository_items(
        self,
        repository: Optional[str] = None,
        item_type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        repo = self._resolve_repository(repository)
        query: Dict[str, Any] = {}
        if item_type:
            query['type'] = item_type
        if isinstance(limit, int):
            query['limit'] = limit
        if isinstance(offset, int):
            query['offset'] = offset
        return self._with_api_error(
            lambda: self._request(
                self._repo_endpoint(repo, 'items'),
                query=query,
                cancel_event=cancel_event,
                repository_context=repo,
            ),
            'REPOSITORY_ITEMS_ERROR'
        )

    def get_workspace_item(
        self,
        workspace: str,
        repository: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        repo = self._resolve_repository(repository)
        return self._with_api_error(
            lambda: self._request(
                self._repo_endpoint(repo, 'items', workspace),
                cancel_event=cancel_event,
                repository_context=repo,
            ),
            'WORKSPACE_ITEM_ERROR'
        )

    def get_workspace_parameters(
        self,
        workspace: str,
        repository: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        repo = self._resolve_repository(repository)
        return self._with_api_error(
            lambda: self._request(
                self._repo_endpoint(repo, 'items', workspace, 'parameters'),
                cancel_event=cancel_event,
                repository_context=repo,
            ),
            'WORKSPACE_PARAMETERS_ERROR'
        )

    def get_workspace_parameter(
        self,
        workspace: str,
        parameter: str,
        repository: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        repo = self._resolve_repository(repository)
        return self._request(
            self._repo_endpoint(repo, 'items', workspace, 'parameters', parameter),
            cancel_event=cancel_event,
            repository_context=repo,
        )

    def submit_job(
        self,
        workspace: str,
        parameters: Optional[Dict[str, Any]] = None,
        repository: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        """POST a job to ``transformations/submit`` (async and scheduled jobs)."""
        repo = self._resolve_repository(repository)
        body = make_submit_body(parameters or {})
        return self._with_api_error(
            lambda: self._request(
                self._transform_endpoint('submit', repo, workspace),
                method='POST',
                headers={'Content-Type': 'application/json'},
                json_body=body,
                cancel_event=cancel_event,
            ),
            'JOB_SUBMISSION_ERROR'
        )

    def run_workspace(
        self,
        workspace: str,
        parameters: Optional[Dict[str, Any]] = None,
        repository: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        """Scheduled jobs go through the REST submit endpoint, everything else through the webhook."""
        parameters = parameters or {}
        if parameters.get('opt_servicemode') == 'schedule':
            return self.submit_job(workspace, parameters, repository, cancel_event)
        return self.run_data_download(workspace, parameters, repository, cancel_event)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def run_data_download(
        self,
        workspace: str,
        parameters: Optional[Dict[str, Any]] = None,
        repository: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        """
        Run a workspace through the data-download webhook.

        Raises:
        -------
        FmeFlowApiError
            URL_TOO_LONG, WEBHOOK_TIMEOUT (408), WEBHOOK_AUTH_ERROR (401/403),
            WEBHOOK_NON_JSON, DATA_DOWNLOAD_ERROR or ABORT
        """
        if self._disposed:
            raise make_flow_error('CLIENT_DISPOSED')
        _check_cancelled(cancel_event)

        repo = self._resolve_repository(repository)
        artifacts = create_webhook_artifacts(
            self.server_url, repo, workspace, parameters or {}, self.token, self.require_https
        )
        full_url = artifacts['full_url']
        if len(full_url) > MAX_URL_LENGTH:
            raise FmeFlowApiError('URL_TOO_LONG', 'URL_TOO_LONG', 0)

        headers = {'Accept': 'application/json', 'Cache-Control': 'no-cache'}
        try:
            response = instrumented_request(
                'GET',
                full_url,
                lambda: self.session.get(full_url, headers=headers, timeout=self._timeout_seconds()),
                correlation_id=create_correlation_id('webhook'),
                transport='fme-webhook',
            )
        except requests.exceptions.Timeout as e:
            raise FmeFlowApiError('WEBHOOK_TIMEOUT', 'WEBHOOK_TIMEOUT', 408) from e
        except requests.exceptions.RequestException as e:
            status = extract_http_status(e) or 0
            raise make_flow_error('DATA_DOWNLOAD_ERROR', status) from e

        _check_cancelled(cancel_event)
        return self._parse_webhook_response(response)

    def _parse_webhook_response(self, response: requests.Response) -> ApiResponse:
        status = response.status_code or 0
        if status in (401, 403):
            raise FmeFlowApiError('WEBHOOK_AUTH_ERROR', 'WEBHOOK_AUTH_ERROR', status)
        if status >= 400:
            raise make_flow_error('DATA_DOWNLOAD_ERROR', status)

        content_type = response.headers.get('content-type')
        try:
            data = response.json()
        except ValueError as e:
            raise FmeFlowApiError('WEBHOOK_NON_JSON', 'WEBHOOK_NON_JSON', status) from e

        if not isinstance(data, (dict, list)) or not data:
            raise FmeFlowApiError('WEBHOOK_NON_JSON', 'WEBHOOK_NON_JSON', status)
        if content_type and not is_json(content_type):
            raise FmeFlowApiError('WEBHOOK_NON_JSON', 'WEBHOOK_NON_JSON', status)

        return {'data': data, 'status': status, 'status_text': response.reason}

    def upload_to_temp(
        self,
        source: Union[str, Path, bytes],
        workspace: str,
        filename: Optional[str] = None,
        subfolder: Optional[str] = None,
        repository: Optional[str] = None,
        content_type: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ApiResponse:
        """
        Upload a dataset to the workspace's temporary upload area.

        Parameters:
        -----------
        source : Union[str, Path, bytes]
            File path or raw bytes
        workspace : str
            Workspace the upload belongs to (required)
        filename : Optional[str]
            Upload name; defaults to the file's name
        subfolder : Optional[str]
            Namespace folder on the server

        Returns:
        --------
        Dict
            ``{'data': {'path': <server path>}, 'status': int, 'status_text': str}``
        """
        _check_cancelled(cancel_event)
        repo = self._resolve_repository(repository)
        workspace = (workspace or '').strip()
        if not workspace:
            raise make_flow_error('DATA_UPLOAD_ERROR')

        if isinstance(source, (str, Path)):
            path = Path(source)
            payload = path.read_bytes()
            filename = filename or path.name
        else:
            payload = source

        safe_name = _sanitize_upload_name(filename)
        endpoint = build_url(self.server_url, 'fmedataupload', repo, workspace, safe_name)
        query = {
            'opt_fullpath': 'true',
            'opt_responseformat': 'json',
            'opt_namespace': _sanitize_namespace(subfolder),
        }
        headers = {
            'Accept': 'application/json',
            'Content-Type': content_type or 'application/octet-stream',
        }

        response = self._request(
            endpoint,
            method='PUT',
            query=query,
            headers=headers,
            data=payload,
            cancel_event=cancel_event,
            repository_context=repo,
        )

        file_info = (response['data'] or {}).get('file') if isinstance(response['data'], dict) else None
        resolved_path = file_info.get('path') if isinstance(file_info, dict) else None
        if not isinstance(resolved_path, str) or not resolved_path.strip():
            raise make_flow_error('DATA_UPLOAD_ERROR', response['status'])

        return {'data': {'path': resolved_path}, 'status': response['status'], 'status_text': response['status_text']}

    def download_result(self, url: str, destination: Union[str, Path]) -> Path:
        """Stream a job result file to ``destination``."""
        if self._disposed:
            raise make_flow_error('CLIENT_DISPOSED')

        headers = {}
        if self.token and self._is_server_host(url):
            headers['Authorization'] = f'fmetoken token={self.token}'

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.session.get(url, headers=headers, stream=True, timeout=self._timeout_seconds()) as response:
                response.raise_for_status()
                with open(destination, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.RequestException as e:
            status = extract_http_status(e) or 0
            raise make_flow_error('DATA_DOWNLOAD_ERROR', status, extract_error_message(e)) from e

        logger.debug(f"Downloaded result to {destination} ({os.path.getsize(destination)} bytes)")
        return destination


def create_fme_flow_client(config: Dict[str, Any], session: Optional[requests.Session] = None) -> FmeFlowApiClient:
    """
    Build a client from an export config, accepting camelCase and snake_case keys.

    Raises:
    -------
    FmeFlowApiError
        INVALID_CONFIG when server URL, token or repository is missing
    """
    config = config or {}
    server_url = config.get('fme_server_url') or config.get('fmeServerUrl') or ''
    token = (
        config.get('fme_server_token')
        or config.get('fmeServerToken')
        or config.get('fmw_server_token')
        or ''
    )
    repository = config.get('repository') or ''
    timeout_ms = config.get('request_timeout', config.get('requestTimeout'))

    try:
        validate_required_config(server_url, token, repository)
    except ValueError as e:
        raise make_flow_error('INVALID_CONFIG') from e

    return FmeFlowApiClient(
        server_url.rstrip('/'),
        token,
        repository,
        timeout_ms if isinstance(timeout_ms, int) and not isinstance(timeout_ms, bool) else None,
        session=session,
        require_https=config.get('require_https', config.get('requireHttps', True)) is not False,
    )


class AbortControllerManager:
    """
    Keyed cancel events for in-flight operations.

    Aborting a key that has not been registered yet is remembered and applied
    when the key is registered.
    """

    def __init__(self):
        self._events: Dict[str, threading.Event] = {}
        self._pending: Dict[str, Any] = {}
        self._cleanups: Dict[str, List[Callable[[], None]]] = {}
        self._reasons: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def register(self, key: str, event: Optional[threading.Event] = None) -> threading.Event:
        event = event or threading.Event()
        if not key:
            return event
        with self._lock:
            self._events[key] = event
            if key in self._pending:
                self._reasons[key] = self._pending.pop(key)
                event.set()
        return event

    def release(self, key: str, event: Optional[threading.Event] = None) -> None:
        if not key:
            return
        with self._lock:
            tracked = self._events.get(key)
            if event is not None and tracked is not None and tracked is not event:
                return
            self._events.pop(key, None)
            self._pending.pop(key, None)
            cleanups = self._cleanups.pop(key, [])
        for cleanup in cleanups:
            cleanup()

    def abort(self, key: str, reason: Any = None) -> None:
        if not key:
            return
        with self._lock:
            event = self._events.get(key)
            if event is None:
                self._pending[key] = reason if reason is not None else 'Aborted'
                return
            self._reasons[key] = reason if reason is not None else 'Aborted'
            event.set()
        self.release(key, event)

    def abort_and_create(self, key: str, reason: Any = None) -> threading.Event:
        """Abort the in-flight operation under ``key`` (if any) and register a fresh event."""
        with self._lock:
            active = key in self._events
        if active:
            self.abort(key, reason or 'Superseded')
        return self.register(key)

    def reason(self, key: str) -> Any:
        return self._reasons.get(key)

    def link_external(self, key: str, external: Optional[threading.Event]) -> Callable[[], None]:
        """Abort ``key`` when ``external`` is set; returns a function that unlinks."""
        if not key or external is None:
            return lambda: None
        if external.is_set():
            self.abort(key)
            return lambda: None

        relay = threading.Event()
        cleanup = link_abort_signal(external, relay, on_abort=lambda: self.abort(key))
        with self._lock:
            self._cleanups.setdefault(key, []).append(cleanup)
        return cleanup

    def abort_all(self, reason: Any = None) -> None:
        with self._lock:
            keys = list(self._events.keys())
            self._pending.clear()
        for key in keys:
            self.abort(key, reason)


abort_manager = AbortControllerManager()
