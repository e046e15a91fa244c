"""
FME Export API
==============
FastAPI backend exposing the FME Export Tool over HTTP.

Endpoints:
    GET  /api/health - Health check
    GET  /api/repositories - Repositories on the FME Flow server
    GET  /api/workspaces - Workspaces in a repository
    GET  /api/workspaces/{workspace}/parameters - Form fields of a workspace
    POST /api/area - Validate an AOI and compute its area
    POST /api/export - Submit an export job

Usage:
    Development: uvicorn api_app:app --reload
"""

from typing import Any, Dict, List, Optional

import requests
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from config.config_loader import load_config, validate_config_fields
from core.fme_client import FmeFlowApiError, create_fme_flow_client, extract_repository_names
from core.parameters import ParameterFormService
from core.result_view import build_error_view, build_order_result_view
from core.submission import execute_job_submission
from geometry_input.pipeline import process_aoi
from utils.errors import map_error_from_network
from utils.logger import get_logger
from utils.network import create_correlation_id
from utils.translations import resolve_message_or_key

logger = get_logger(__name__)

MAX_REQUEST_BYTES = 6 * 1024 * 1024

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


class AreaRequest(BaseModel):
    geometry: Dict[str, Any]


class ExportRequest(BaseModel):
    workspace: str
    geometry: Dict[str, Any]
    parameters: Dict[str, Any] = {}
    service_mode: Optional[str] = None
    email: Optional[str] = None
    remote_url: Optional[str] = None


class LimitUploadSizeMiddleware(BaseHTTPMiddleware):
    """Reject requests with Content-Length exceeding limit."""

    def __init__(self, app, max_size: int = MAX_REQUEST_BYTES):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            return JSONResponse(
                status_code=413,
                content={"error": "Request too large", "max_size_mb": self.max_size // (1024 * 1024)}
            )
        return await call_next(request)


def _strip_blob(result: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not result:
        return result
    return {k: v for k, v in result.items() if k != 'blob'}


def create_app(
    config: Optional[Dict[str, Any]] = None,
    session: Optional[requests.Session] = None,
    allowed_origins: Optional[List[str]] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Parameters:
    -----------
    config : Optional[Dict]
        Normalized export config; loaded from ``config/export_config.json``
        on first use when omitted
    session : Optional[requests.Session]
        HTTP session shared by the FME Flow clients
    allowed_origins : Optional[List[str]]
        CORS origins
    """
    web_app = FastAPI(title="FME Export API")
    web_app.state.config = config
    web_app.state.session = session

    web_app.add_middleware(LimitUploadSizeMiddleware, max_size=MAX_REQUEST_BYTES)
    web_app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or DEFAULT_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_config() -> Dict[str, Any]:
        if web_app.state.config is None:
            web_app.state.config = load_config()
        return web_app.state.config

    def get_client():
        config = get_config()
        check = validate_config_fields(config)
        if not check['is_valid']:
            raise HTTPException(
                status_code=503,
                detail={"error": "CONFIG_INCOMPLETE", "missing_fields": check['missing_fields']}
            )
        return create_fme_flow_client(config, session=web_app.state.session)

    @web_app.exception_handler(FmeFlowApiError)
    async def fme_error_handler(request: Request, exc: FmeFlowApiError):
        key = map_error_from_network(exc, exc.status)
        status = exc.status if exc.status and 400 <= exc.status < 600 else 502
        logger.warning(f"FME Flow request failed: {exc.code} ({exc.status})")
        return JSONResponse(
            status_code=status,
            content={"error": exc.code, "message": resolve_message_or_key(key) if key else exc.message}
        )

    @web_app.get("/api/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "fme-export"}

    @web_app.get("/api/repositories")
    def repositories():
        with get_client() as client:
            data = client.get_repositories().get('data')
        return {"repositories": extract_repository_names(data)}

    @web_app.get("/api/workspaces")
    def workspaces(repository: Optional[str] = None):
        with get_client() as client:
            data = client.get_repository_items(repository, item_type='WORKSPACE').get('data') or {}
        items = data.get('items', []) if isinstance(data, dict) else data
        return {
            "repository": repository or get_config().get('repository'),
            "workspaces": [
                {"name": item.get('name'), "title": item.get('title'), "description": item.get('description')}
                for item in items if isinstance(item, dict)
            ],
        }

    @web_app.get("/api/workspaces/{workspace}/parameters")
    def workspace_parameters(workspace: str, repository: Optional[str] = None):
        with get_client() as client:
            parameters = client.get_workspace_parameters(workspace, repository).get('data') or []
        return {
            "workspace": workspace,
            "fields": ParameterFormService().convert_parameters_to_fields(parameters),
        }

    @web_app.post("/api/area")
    def area(body: AreaRequest):
        """Validate an AOI (GeoJSON or Esri JSON) and compute its area."""
        config = get_config()
        try:
            polygon_json, metadata = process_aoi(body.geometry, config)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        response = {
            "valid": metadata.get('valid', False),
            "area": metadata.get('area'),
            "area_display": metadata.get('area_display'),
            "area_warning": metadata.get('area_warning'),
            "polygon": polygon_json,
        }
        if metadata.get('error'):
            response['error'] = build_error_view(metadata['error'], support_email=config.get('support_email'))
        return response

    @web_app.post("/api/export")
    def export(body: ExportRequest):
        """Submit an export job for an AOI."""
        config = get_config()
        try:
            polygon_json, metadata = process_aoi(body.geometry, config)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not metadata.get('valid'):
            return JSONResponse(
                status_code=422,
                content={
                    "success": False,
                    "view": build_error_view(metadata.get('error'), support_email=config.get('support_email')),
                }
            )

        with get_client() as client:
            workspace_parameters = client.get_workspace_parameters(body.workspace).get('data') or []
            is_valid, errors = ParameterFormService().validate_parameters(body.parameters, workspace_parameters)
            if not is_valid:
                return JSONResponse(status_code=422, content={"success": False, "errors": errors})

            form_data = dict(body.parameters)
            if body.service_mode:
                form_data['_serviceMode'] = body.service_mode
            if body.remote_url:
                form_data['__remote_dataset_url__'] = body.remote_url

            submission = execute_job_submission(
                client,
                body.workspace,
                {'data': form_data},
                polygon_json,
                config=config,
                workspace_parameters=workspace_parameters,
                area_warning=bool(metadata.get('area_warning')),
                drawn_area=metadata.get('area'),
                requester_email=body.email,
                abort_key=create_correlation_id('export'),
            )

        result = submission.get('result')
        if result:
            view = build_order_result_view(result, config)
        elif isinstance(submission.get('error'), dict):
            view = build_error_view(submission['error'], support_email=config.get('support_email'))
        else:
            view = build_order_result_view(
                {'success': False, 'cancelled': True, 'service_mode': submission.get('service_mode')},
                config,
            )

        return {
            "success": bool(result and result.get('success')),
            "service_mode": submission.get('service_mode'),
            "area": metadata.get('area'),
            "result": _strip_blob(result),
            "view": view,
        }

    return web_app


app = create_app()
