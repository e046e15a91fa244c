"""
Configuration loading for FME Export Tool.

This module loads the export configuration JSON file, applies environment
overrides and normalizes it into the snake_case ``ExportConfig`` dict used by
the rest of the tool.

Constants:
    PROJECT_ROOT: Root directory of the project
    CONFIG_DIR: Configuration files directory
    OUTPUT_DIR: Output files directory
    TEMP_DIR: Temporary files directory

Functions:
    load_config: Load and normalize the export configuration from JSON
    normalize_config: Resolve key aliases, coerce values and merge defaults
    validate_config_fields: Report missing connection settings
    load_area_settings: Maximum / warning area limits in m²
    normalize_service_mode_config: Coerce ``sync_mode`` to a boolean
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.constants import (
    DEFAULT_AOI_PARAM_NAME,
    DEFAULT_REQUEST_TIMEOUT_MS,
    MAX_M2_CAP,
    MAX_REQUEST_TIMEOUT_MS,
    REQUIRED_CONFIG_FIELDS,
)
from utils.conversion import to_boolean_value, to_number_value, to_trimmed_string

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / 'config'
OUTPUT_DIR = PROJECT_ROOT / 'outputs'
TEMP_DIR = PROJECT_ROOT / 'temp'

CONFIG_FILE_NAME = 'export_config.json'

ENV_OVERRIDES = {
    'FME_SERVER_URL': 'fme_server_url',
    'FME_SERVER_TOKEN': 'fme_server_token',
    'FME_REPOSITORY': 'repository',
}

# Alternative spellings accepted for each setting
CONFIG_ALIASES = {
    'fme_server_url': ('fmeServerUrl', 'serverUrl', 'server_url'),
    'fme_server_token': ('fmeServerToken', 'fmw_server_token', 'token'),
    'repository': ('repo',),
    'request_timeout': ('requestTimeout',),
    'sync_mode': ('syncMode',),
    'allow_schedule_mode': ('allowScheduleMode',),
    'max_area': ('maxArea',),
    'large_area': ('largeArea',),
    'show_result': ('showResult',),
    'mask_email_on_success': ('maskEmailOnSuccess',),
    'default_requester_email': ('defaultRequesterEmail',),
    'support_email': ('supportEmail',),
    'aoi_param_name': ('aoiParamName',),
    'aoi_geojson_param_name': ('aoiGeoJsonParamName',),
    'aoi_wkt_param_name': ('aoiWktParamName',),
    'upload_target_param_name': ('uploadTargetParamName',),
    'allow_remote_dataset': ('allowRemoteDataset',),
    'allow_remote_url_dataset': ('allowRemoteUrlDataset',),
    'geometry_service_url': ('geometryServiceUrl',),
    'require_https': ('requireHttps',),
}

BOOLEAN_FIELDS = (
    'sync_mode', 'allow_schedule_mode', 'show_result', 'mask_email_on_success',
    'allow_remote_dataset', 'allow_remote_url_dataset', 'require_https',
)
NUMBER_FIELDS = ('max_area', 'large_area')
STRING_FIELDS = (
    'fme_server_url', 'fme_server_token', 'repository', 'default_requester_email',
    'support_email', 'aoi_param_name', 'aoi_geojson_param_name', 'aoi_wkt_param_name',
    'upload_target_param_name', 'geometry_service_url', 'tm_tag',
)

DEFAULT_CONFIG = {
    'fme_server_url': '',
    'fme_server_token': '',
    'repository': '',
    'request_timeout': DEFAULT_REQUEST_TIMEOUT_MS,
    'sync_mode': False,
    'allow_schedule_mode': False,
    'max_area': None,
    'large_area': None,
    'show_result': True,
    'mask_email_on_success': False,
    'default_requester_email': None,
    'support_email': None,
    'tm_ttc': None,
    'tm_ttl': None,
    'tm_tag': None,
    'aoi_param_name': DEFAULT_AOI_PARAM_NAME,
    'aoi_geojson_param_name': None,
    'aoi_wkt_param_name': None,
    'upload_target_param_name': None,
    'allow_remote_dataset': False,
    'allow_remote_url_dataset': False,
    'geometry_service_url': None,
    'require_https': True,
}


def _resolve_aliases(raw: Dict[str, Any]) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    alias_keys = set()
    for key, aliases in CONFIG_ALIASES.items():
        alias_keys.update(aliases)
        if key in raw and raw[key] is not None:
            settings[key] = raw[key]
            continue
        for alias in aliases:
            if alias in raw and raw[alias] is not None:
                settings[key] = raw[alias]
                break

    # Unknown keys are preserved as-is
    for key, value in raw.items():
        if key not in settings and key not in alias_keys:
            settings[key] = value
    return settings


def _coerce_timeout(value: Any) -> int:
    number = to_number_value(value)
    if number is None or number <= 0:
        return DEFAULT_REQUEST_TIMEOUT_MS
    return int(min(number, MAX_REQUEST_TIMEOUT_MS))


def normalize_service_mode_config(config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of the config with ``sync_mode`` coerced to a boolean."""
    if not config:
        return config
    sync_mode = to_boolean_value(config.get('sync_mode'))
    return {**config, 'sync_mode': bool(sync_mode)}


def normalize_config(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalize a raw configuration dict.

    Parameters:
    -----------
    raw : Optional[Dict]
        Settings as read from JSON, camelCase or snake_case keys

    Returns:
    --------
    Dict
        ``{**DEFAULT_CONFIG, **settings}`` with strings trimmed, booleans and
        numbers coerced, the request timeout clamped to 600 000 ms and the
        trailing slash removed from the server URL
    """
    settings = _resolve_aliases(raw or {})

    for key in STRING_FIELDS:
        if key in settings:
            settings[key] = to_trimmed_string(settings[key]) or DEFAULT_CONFIG.get(key)

    for key in BOOLEAN_FIELDS:
        if key in settings:
            coerced = to_boolean_value(settings[key])
            settings[key] = DEFAULT_CONFIG[key] if coerced is None else coerced

    for key in NUMBER_FIELDS:
        if key in settings:
            settings[key] = to_number_value(settings[key])

    if 'request_timeout' in settings:
        settings['request_timeout'] = _coerce_timeout(settings['request_timeout'])

    config = {**DEFAULT_CONFIG, **settings}
    if config['fme_server_url']:
        config['fme_server_url'] = config['fme_server_url'].rstrip('/')
    return normalize_service_mode_config(config)


def validate_config_fields(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Check the connection settings.

    Returns:
    --------
    Dict
        ``{'is_valid': bool, 'missing_fields': List[str]}``
    """
    config = config or {}
    missing: List[str] = [
        field for field in REQUIRED_CONFIG_FIELDS
        if not to_trimmed_string(config.get(field))
    ]
    return {'is_valid': not missing, 'missing_fields': missing}


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load export configuration from JSON file.

    Reads ``config/export_config.json`` (or ``config_path``), applies the
    FME_SERVER_URL / FME_SERVER_TOKEN / FME_REPOSITORY environment overrides
    and normalizes the result.

    Returns:
    --------
    Dict
        Normalized configuration dictionary

    Raises:
    -------
    FileNotFoundError
        If configuration file doesn't exist
    json.JSONDecodeError
        If configuration file contains invalid JSON
    KeyError
        If the file has no 'fme' section
    """
    config_path = Path(config_path) if config_path else CONFIG_DIR / CONFIG_FILE_NAME

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        raw = json.load(f)

    if 'fme' not in raw:
        raise KeyError("Configuration missing required 'fme' key")

    settings = dict(raw['fme'])
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            settings[key] = value

    # Ensure output directories exist
    OUTPUT_DIR.mkdir(exist_ok=True)
    TEMP_DIR.mkdir(exist_ok=True)

    return normalize_config(settings)


def load_area_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Optional[float]]:
    """
    Area limits in square meters.

    Non-positive or missing limits are returned as None; limits above
    ``MAX_M2_CAP`` are capped.
    """
    if config is None:
        config = load_config()

    def _limit(value: Any) -> Optional[float]:
        number = to_number_value(value)
        if number is None or number <= 0:
            return None
        return min(number, MAX_M2_CAP)

    return {
        'max_area': _limit(config.get('max_area')),
        'large_area': _limit(config.get('large_area')),
    }
