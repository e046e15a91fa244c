#!/usr/bin/env python
"""
FME Export Tool
===============
Submit area-of-interest exports to FME Flow workspaces from the command line
and save the outcome as an interactive result map.

Usage:
    python fme_export_tool.py repositories
    python fme_export_tool.py workspaces [--repository NAME]
    python fme_export_tool.py parameters WORKSPACE
    python fme_export_tool.py export AOI_FILE WORKSPACE [--param KEY=VALUE ...]
                                     [--mode sync|async|schedule] [--email ADDRESS]
"""

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

# Import logging first
from utils.logger import setup_logging, get_logger

from config.config_loader import load_config, validate_config_fields
from core.fme_client import FmeFlowApiError, create_fme_flow_client, extract_repository_names
from core.output_generator import generate_output
from core.parameters import ParameterFormService
from core.result_view import build_error_view, build_loading_view, build_order_result_view
from core.submission import execute_job_submission
from geometry_input.pipeline import process_aoi
from utils.errors import create_validation_error, map_error_from_network


def parse_param_pairs(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """
    Parse ``KEY=VALUE`` pairs; values that are valid JSON are decoded.

    Example:
        >>> parse_param_pairs(['FORMAT=SHAPE', 'BUFFER=10', 'LAYERS=["a","b"]'])
        {'FORMAT': 'SHAPE', 'BUFFER': 10, 'LAYERS': ['a', 'b']}
    """
    params: Dict[str, Any] = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"Invalid parameter '{pair}', expected KEY=VALUE")
        key, raw = pair.split('=', 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid parameter '{pair}', empty name")
        try:
            params[key] = json.loads(raw)
        except ValueError:
            params[key] = raw
    return params


def main(
    aoi_file: str,
    workspace: str,
    params: Optional[Dict[str, Any]] = None,
    mode: Optional[str] = None,
    email: Optional[str] = None,
    upload_file: Optional[str] = None,
    remote_url: Optional[str] = None,
    output_name: Optional[str] = None,
    config_path: Optional[Path] = None
) -> Optional[Path]:
    """
    Main export workflow.

    Workflow Steps:
    1. Setup logging to console and file
    2. Load configuration
    3. Load, validate and measure the AOI
    4. Fetch and validate workspace parameters
    5. Submit the job
    6. Generate output files

    Parameters:
    -----------
    aoi_file : str
        Path to AOI file (.geojson, .json, .gpkg, .shp, .kml, .zip)
    workspace : str
        Workspace name in the configured repository
    params : Optional[Dict]
        Published parameter values
    mode : Optional[str]
        Service mode override (sync, async or schedule)
    email : Optional[str]
        Requester email for async jobs
    upload_file : Optional[str]
        Local dataset uploaded to the FME temp area
    remote_url : Optional[str]
        Remote dataset URL passed as ``opt_geturl``
    output_name : Optional[str]
        Custom name for output directory (defaults to timestamped name)
    config_path : Optional[Path]
        Alternative configuration file

    Returns:
    --------
    Optional[Path]
        Path to output directory, None if the workflow failed before any
        output could be written

    Example:
        >>> output_path = main('area.geojson', 'Clip_Data.fmw', {'FORMAT': 'SHAPE'}, 'sync')
        >>> print(f"Result saved to: {output_path / 'index.html'}")
    """
    workflow_start_time = time.time()

    log_file = setup_logging()
    logger = get_logger(__name__)

    logger.info("=" * 80)
    logger.info("FME EXPORT TOOL - Area of Interest Export")
    logger.info("=" * 80)
    logger.info(f"Log file: {log_file}")
    logger.info("")

    try:
        config = load_config(config_path)
        check = validate_config_fields(config)
        if not check['is_valid']:
            logger.error(f"✗ Configuration incomplete: missing {', '.join(check['missing_fields'])}")
            return None
        logger.info(f"Configuration loaded: {config['fme_server_url']} / {config['repository']}")
        logger.info("")

        # Step 1: AOI
        polygon_json, aoi_metadata = process_aoi(aoi_file, config)
        if not aoi_metadata.get('valid'):
            view = build_error_view(aoi_metadata.get('error'), support_email=config.get('support_email'))
            return generate_output(polygon_json, None, view, output_name, aoi_metadata=aoi_metadata)

        with create_fme_flow_client(config) as client:
            # Step 2: workspace parameters
            logger.info(f"  - Fetching parameters for {workspace}...")
            workspace_parameters = client.get_workspace_parameters(workspace).get('data') or []
            form_data = dict(params or {})

            service = ParameterFormService()
            is_valid, errors = service.validate_parameters(form_data, workspace_parameters)
            if not is_valid:
                logger.error(f"  ✗ Invalid parameters: {', '.join(errors)}")
                error = create_validation_error(
                    'errorParameterValidation',
                    code='PARAMETER_VALIDATION',
                    details={'errors': errors},
                )
                view = build_error_view(error, support_email=config.get('support_email'))
                view['info_lines'] = errors
                return generate_output(polygon_json, None, view, output_name, aoi_metadata=aoi_metadata)

            if mode:
                form_data['_serviceMode'] = mode
            if upload_file:
                form_data['__upload_file__'] = upload_file
            if remote_url:
                form_data['__remote_dataset_url__'] = remote_url

            # Step 3: submit
            submission = execute_job_submission(
                client,
                workspace,
                {'data': form_data},
                polygon_json,
                config=config,
                workspace_parameters=workspace_parameters,
                area_warning=bool(aoi_metadata.get('area_warning')),
                drawn_area=aoi_metadata.get('area'),
                requester_email=email,
                on_status_change=lambda stage: logger.info(f"  - {build_loading_view(stage)['message']}"),
            )

            result = submission.get('result')
            if result:
                view = build_order_result_view(result, config)
            elif isinstance(submission.get('error'), dict):
                view = build_error_view(submission['error'], support_email=config.get('support_email'))
            else:
                result = {'success': False, 'cancelled': True, 'service_mode': submission.get('service_mode')}
                view = build_order_result_view(result, config)

            # Step 4: output
            output_path = generate_output(
                polygon_json, result, view, output_name,
                client=client, aoi_metadata=aoi_metadata,
            )

        total_execution_time = time.time() - workflow_start_time
        logger.info("")
        logger.info(f"{'✓' if view['kind'] == 'success' else '✗'} {view['title']}")
        if view.get('message'):
            logger.info(f"  {view['message']}")
        for line in view.get('info_lines') or []:
            logger.info(f"  - {line}")
        logger.info(f"✓ Total execution time: {total_execution_time:.2f} seconds")
        logger.info(f"✓ Output directory: {output_path}")
        logger.info(f"✓ Log file: {log_file}")
        logger.info("")

        return output_path

    except Exception as e:
        elapsed_time = time.time() - workflow_start_time

        logger.error("")
        logger.error("=" * 80)
        logger.error("✗ WORKFLOW FAILED")
        logger.error("=" * 80)
        if isinstance(e, FmeFlowApiError):
            logger.error(f"Error: {e.code} ({map_error_from_network(e, e.status)})")
        logger.error(f"Error: {str(e)}", exc_info=True)
        logger.error(f"Workflow failed after {elapsed_time:.2f} seconds")
        logger.error("")
        logger.error(f"See log file for details: {log_file}")
        logger.error("=" * 80)
        return None


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def list_repositories(config_path: Optional[Path] = None) -> List[str]:
    config = load_config(config_path)
    with create_fme_flow_client(config) as client:
        return extract_repository_names(client.get_repositories().get('data'))


def list_workspaces(repository: Optional[str] = None, config_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    config = load_config(config_path)
    with create_fme_flow_client(config) as client:
        data = client.get_repository_items(repository, item_type='WORKSPACE').get('data') or {}
    items = data.get('items', []) if isinstance(data, dict) else data
    return [
        {'name': item.get('name'), 'title': item.get('title'), 'description': item.get('description')}
        for item in items if isinstance(item, dict)
    ]


def describe_parameters(workspace: str, config_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    config = load_config(config_path)
    with create_fme_flow_client(config) as client:
        parameters = client.get_workspace_parameters(workspace).get('data') or []
    return ParameterFormService().convert_parameters_to_fields(parameters)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fme_export_tool',
        description='Submit area-of-interest exports to FME Flow workspaces.',
    )
    parser.add_argument('--config', type=Path, default=None, help='Path to export_config.json')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('repositories', help='List repositories')

    workspaces = subparsers.add_parser('workspaces', help='List workspaces in a repository')
    workspaces.add_argument('--repository', default=None, help='Repository (defaults to config)')

    parameters = subparsers.add_parser('parameters', help='Show the form fields of a workspace')
    parameters.add_argument('workspace')

    export = subparsers.add_parser('export', help='Run an export for an AOI file')
    export.add_argument('aoi_file', help='AOI file (.geojson, .json, .gpkg, .shp, .kml, .zip)')
    export.add_argument('workspace', help='Workspace name')
    export.add_argument('--param', '-p', action='append', default=[], metavar='KEY=VALUE',
                        help='Published parameter value (repeatable, JSON values allowed)')
    export.add_argument('--mode', choices=('sync', 'async', 'schedule'), default=None,
                        help='Service mode (defaults to config)')
    export.add_argument('--email', default=None, help='Requester email for async jobs')
    export.add_argument('--upload', default=None, help='Dataset file to upload')
    export.add_argument('--remote-url', default=None, help='Remote dataset URL (opt_geturl)')
    export.add_argument('--output-name', default=None, help='Output directory name')
    return parser


def cli(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        if args.command == 'repositories':
            _print_json(list_repositories(args.config))
            return 0
        if args.command == 'workspaces':
            _print_json(list_workspaces(args.repository, args.config))
            return 0
        if args.command == 'parameters':
            _print_json(describe_parameters(args.workspace, args.config))
            return 0
    except (FmeFlowApiError, FileNotFoundError, KeyError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    try:
        params = parse_param_pairs(args.param)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    output_dir = main(
        args.aoi_file,
        args.workspace,
        params,
        mode=args.mode,
        email=args.email,
        upload_file=args.upload,
        remote_url=args.remote_url,
        output_name=args.output_name,
        config_path=args.config,
    )
    if output_dir:
        print(f"\n✓ Done. Open {output_dir / 'index.html'} in your browser.")
        return 0
    print("\n✗ Export failed. Check log file for details.")
    return 1


if __name__ == "__main__":
    sys.exit(cli())
