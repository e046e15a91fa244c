"""
Constants for FME Export Tool.

Shared limits, FME Flow REST settings, error-code lookup tables, parameter
type tables and unit conversion factors used across the tool.

Constants:
    FME_FLOW_API: REST base path and URL length limit
    ERROR_CODE_TO_KEY: Error code to translation key mapping
    STATUS_TO_KEY_MAP: HTTP status to translation key mapping
    MESSAGE_PATTERNS: Error message regex to translation key mapping
    PARAMETER_FIELD_TYPE_MAP: FME parameter type to form field type mapping
    UNIT_CONVERSIONS: Spatial reference unit factors for area display
"""

import re

# FME Flow REST (v4) settings
FME_FLOW_API = {
    'base_path': '/fmeapiv4',
    'max_url_length': 4000,
    'webhook_log_whitelist': ('opt_responseformat', 'opt_showresult', 'opt_servicemode'),
}

MAX_URL_LENGTH = 4000
MAX_REQUEST_TIMEOUT_MS = 600000
DEFAULT_REQUEST_TIMEOUT_MS = 30000
SLOW_REQUEST_THRESHOLD_MS = 1000
MAX_BODY_DESCRIPTION_LENGTH = 1024
DESCRIPTION_MAX = 512
TAG_MAX = 128
MIN_TOKEN_LENGTH = 10
MAX_M2_CAP = 1e10
DEFAULT_REPOSITORY = '_'
DEFAULT_AOI_PARAM_NAME = 'AreaOfInterest'
AOI_ERROR_MARKER = '__aoi_error__'
LARGE_AREA_MESSAGE_CHAR_LIMIT = 160

REQUIRED_CONFIG_FIELDS = ('fme_server_url', 'fme_server_token', 'repository')

# Transaction Manager / notification directive keys
TM_PARAM_KEYS = ('tm_ttc', 'tm_ttl', 'tm_tag')
TM_NUMERIC_PARAM_KEYS = ('tm_ttc', 'tm_ttl')
OPTIONAL_OPT_KEYS = ('opt_servicemode', 'opt_responseformat', 'opt_showresult', 'opt_requesteremail')
SCHEDULE_PARAM_KEYS = ('start', 'name', 'category', 'trigger', 'description')
WEBHOOK_EXCLUDE_PARAMS = TM_PARAM_KEYS
PUBLISHED_PARAM_EXCLUDE_SET = frozenset(TM_PARAM_KEYS + OPTIONAL_OPT_KEYS)
INTERNAL_FORM_KEYS = ('_serviceMode', '__upload_file__', '__remote_dataset_url__')
ALLOWED_SERVICE_MODES = ('sync', 'async')
SERVICE_MODES = ('sync', 'async', 'schedule')

# Email and host validation
EMAIL_REGEX = re.compile(r'^[^\s@]{1,64}@[^\s@]{1,253}\.[^\s@]{2,63}$')
NO_REPLY_REGEX = re.compile(r'no-?reply', re.IGNORECASE)
EMAIL_PLACEHOLDER = re.compile(r'\{\s*email\s*\}', re.IGNORECASE)

FORBIDDEN_HOSTNAME_SUFFIXES = (
    'localhost', '.localhost', '.local', '.internal',
    '.intranet', '.home', '.lan', '.localdomain',
)

PRIVATE_IPV4_RANGES = (
    ((10, 0, 0, 0), (10, 255, 255, 255)),
    ((100, 64, 0, 0), (100, 127, 255, 255)),
    ((127, 0, 0, 0), (127, 255, 255, 255)),
    ((169, 254, 0, 0), (169, 254, 255, 255)),
    ((172, 16, 0, 0), (172, 31, 255, 255)),
    ((192, 168, 0, 0), (192, 168, 255, 255)),
    ((0, 0, 0, 0), (0, 255, 255, 255)),
)

ALLOWED_FILE_EXTENSIONS = re.compile(r'\.(zip|kmz|json|geojson|gml)(\?.*)?$', re.IGNORECASE)

FILE_UPLOAD = {
    'default_max_size_mb': 150,
    'one_mb_in_bytes': 1024 * 1024,
    'allowed_extensions': ('.zip', '.kmz', '.json', '.geojson', '.gml'),
}

UPLOAD_PARAM_TYPES = (
    'FILENAME', 'FILENAME_MUSTEXIST', 'DIRNAME', 'DIRNAME_MUSTEXIST',
    'DIRNAME_SRC', 'LOOKUP_FILE', 'REPROJECTION_FILE',
)

# Geometry
WKID_WGS84 = 4326
WKID_WEB_MERCATOR = 3857
WEB_MERCATOR_WKIDS = (3857, 102100, 102113, 900913)
GEODESIC_SEGMENT_LENGTH_METERS = 50
MIN_PLANAR_SEGMENT_DEGREES = 1e-6
DEGREES_PER_METER = 1 / 111319.49079327358
COORDINATE_TOLERANCE = 1e-9
M2_PER_KM2 = 1e6
AREA_DECIMALS = 2
SQ_FT_PER_SQ_MI = 27878400

# Spatial reference unit factors (meters per unit) for area display
UNIT_CONVERSIONS = (
    {'factor': 0.3048, 'label': 'ft²', 'keywords': ('foot', 'feet'),
     'large_unit': {'threshold': SQ_FT_PER_SQ_MI, 'factor': SQ_FT_PER_SQ_MI, 'label': 'mi²'}},
    {'factor': 0.3048006096, 'label': 'ft²', 'keywords': ()},
    {'factor': 1609.344, 'label': 'mi²', 'keywords': ('mile',)},
    {'factor': 1000, 'label': 'km²', 'keywords': ('kilometer',)},
    {'factor': 0.9144, 'label': 'yd²', 'keywords': ('yard',)},
    {'factor': 0.0254, 'label': 'in²', 'keywords': ('inch',)},
    {'factor': 0.01, 'label': 'cm²', 'keywords': ('centimeter',)},
    {'factor': 0.001, 'label': 'mm²', 'keywords': ('millimeter',)},
    {'factor': 1852, 'label': 'nm²', 'keywords': ('nautical',)},
    {'factor': 1, 'label': 'm²', 'keywords': ('meter',)},
)
LARGE_AREA_LABELS = ('km²', 'mi²', 'nm²')

# Error icons
DEFAULT_ERROR_ICON = 'error'
ICON_BY_EXACT_CODE = {
    'GEOMETRY_SERIALIZATION_FAILED': 'polygon',
    'MAP_MODULES_LOAD_FAILED': 'map',
    'FORM_INVALID': 'warning',
}
TOKEN_ICON_PRIORITY = (
    ('GEOMETRY', 'polygon'),
    ('AREA', 'polygon'),
    ('MAP', 'map'),
    ('MODULE', 'map'),
    ('FORM', 'warning'),
    ('TOKEN', 'person-lock'),
    ('AUTH', 'person-lock'),
    ('REPOSITORY', 'folder'),
    ('REPO', 'folder'),
    ('DATA', 'data'),
    ('NETWORK', 'shared-no'),
    ('OFFLINE', 'shared-no'),
    ('CONNECTION', 'shared-no'),
    ('REQUEST', 'shared-no'),
    ('SERVER', 'feature-service'),
    ('GATEWAY', 'feature-service'),
    ('URL', 'link-tilted'),
    ('TIMEOUT', 'time'),
    ('CONFIG', 'setting'),
    ('EMAIL', 'email'),
)

# Error code / status / message mappings
ERROR_CODE_TO_KEY = {
    'INVALID_RESPONSE_FORMAT': 'errorTokenIssue',
    'WEBHOOK_AUTH_ERROR': 'errorTokenIssue',
    'WEBHOOK_TIMEOUT': 'requestTimedOut',
    'REPOSITORIES_ERROR': 'errorRepositoryAccess',
    'REPOSITORY_ITEMS_ERROR': 'errorRepositoryAccess',
    'JOB_SUBMISSION_ERROR': 'errorJobSubmission',
    'INVALID_CONFIG': 'errorSetupRequired',
    'CONFIG_INCOMPLETE': 'errorSetupRequired',
    'configMissing': 'errorSetupRequired',
    'HTTPS_REQUIRED': 'require_https',
    'INVALID_REQUEST_URL': 'invalid_url',
    'GEOMETRY_MISSING': 'geometryMissingCode',
    'GEOMETRY_TYPE_INVALID': 'geometryTypeInvalidCode',
    'GEOMETRY_SERIALIZATION_FAILED': 'geometrySerializationFailedCode',
    'URL_TOO_LONG': 'urlTooLongMessage',
    'WEBHOOK_URL_TOO_LONG': 'urlTooLongMessage',
    'PARAMETER_VALIDATION_ERROR': 'errorParameterValidation',
    'WORKSPACE_PARAMETERS_ERROR': 'errorWorkspaceParameters',
}

STATUS_TO_KEY_MAP = {
    401: 'errorTokenIssue',
    408: 'requestTimedOut',
    429: 'rateLimitExceeded',
    431: 'headersTooLargeMessage',
}

MESSAGE_PATTERNS = (
    (re.compile(r'timeout', re.IGNORECASE), 'requestTimedOut'),
    (re.compile(r'cors', re.IGNORECASE), 'corsBlocked'),
    (re.compile(r'url.*too', re.IGNORECASE), 'urlTooLongMessage'),
    (re.compile(r'remote_dataset_workspace_required', re.IGNORECASE), 'REMOTE_DATASET_WORKSPACE_REQUIRED'),
)

# Startup (connection) validation mapping
STARTUP_ERROR_CODE_TO_KEY = {
    'ARCGIS_MODULE_ERROR': 'startupNetworkError',
    'NETWORK_ERROR': 'startupNetworkError',
    'INVALID_RESPONSE_FORMAT': 'startupTokenError',
    'WEBHOOK_AUTH_ERROR': 'startupTokenError',
    'SERVER_URL_ERROR': 'connectionFailed',
    'REPOSITORIES_ERROR': 'startupServerError',
    'REPOSITORY_ITEMS_ERROR': 'startupServerError',
    'WORKSPACE_ITEM_ERROR': 'startupServerError',
    'JOB_SUBMISSION_ERROR': 'startupServerError',
    'DATA_STREAMING_ERROR': 'startupServerError',
    'DATA_DOWNLOAD_ERROR': 'startupServerError',
    'INVALID_CONFIG': 'startupConfigError',
    'GEOMETRY_MISSING': 'GEOMETRY_SERIALIZATION_FAILED',
    'GEOMETRY_TYPE_INVALID': 'GEOMETRY_SERIALIZATION_FAILED',
    'URL_TOO_LONG': 'urlTooLong',
}

ERROR_SEVERITY_RANK = {'error': 3, 'warning': 2, 'info': 1}

TIMEOUT_INDICATORS = (
    'timeout', 'time limit', 'time-limit', 'max execution',
    'maximum execution', 'max runtime', 'maximum runtime', 'max run time',
)
JOB_FAILURE_STATUSES = frozenset({'FAILURE', 'FAILED', 'JOB_FAILURE', 'FME_FAILURE'})

# Workspace parameter types (FME Flow v4 names)
PARAMETER_TYPES = (
    'TEXT', 'INTEGER', 'FLOAT', 'BOOLEAN', 'CHECKBOX', 'CHOICE', 'LISTBOX',
    'LOOKUP_LISTBOX', 'LOOKUP_CHOICE', 'TEXT_OR_FILE', 'TEXT_EDIT', 'PASSWORD',
    'FILENAME', 'FILENAME_MUSTEXIST', 'DIRNAME', 'DIRNAME_MUSTEXIST',
    'DIRNAME_SRC', 'COORDSYS', 'STRING', 'URL', 'LOOKUP_URL', 'LOOKUP_FILE',
    'DATE_TIME', 'DATETIME', 'DATE', 'TIME', 'COLOR', 'COLOR_PICK',
    'RANGE_SLIDER', 'GEOMETRY', 'MESSAGE', 'ATTRIBUTE_NAME', 'ATTRIBUTE_LIST',
    'DB_CONNECTION', 'WEB_CONNECTION', 'REPROJECTION_FILE', 'SCRIPTED', 'NOVALUE',
)

# FME Flow v4 lower-case types are mapped alongside the legacy upper-case ones
PARAMETER_FIELD_TYPE_MAP = {
    'text': 'TEXT',
    'number': 'NUMBER',
    'checkbox': 'CHECKBOX',
    'dropdown': 'RADIO',
    'listbox': 'MULTI_SELECT',
    'tree': 'SELECT',
    'password': 'PASSWORD',
    'datetime': 'DATE_TIME',
    'message': 'MESSAGE',
    'group': 'HIDDEN',
    'file': 'FILE',
    'color': 'COLOR',
    'range': 'SLIDER',
    'FLOAT': 'NUMERIC_INPUT',
    'INTEGER': 'NUMBER',
    'TEXT_EDIT': 'TEXTAREA',
    'PASSWORD': 'PASSWORD',
    'BOOLEAN': 'SWITCH',
    'CHECKBOX': 'SWITCH',
    'CHOICE': 'RADIO',
    'LOOKUP_CHOICE': 'RADIO',
    'LISTBOX': 'MULTI_SELECT',
    'LOOKUP_LISTBOX': 'MULTI_SELECT',
    'FILENAME': 'FILE',
    'FILENAME_MUSTEXIST': 'FILE',
    'DIRNAME': 'FILE',
    'DIRNAME_MUSTEXIST': 'FILE',
    'DIRNAME_SRC': 'FILE',
    'DATE_TIME': 'DATE_TIME',
    'DATETIME': 'DATE_TIME',
    'URL': 'URL',
    'LOOKUP_URL': 'URL',
    'LOOKUP_FILE': 'FILE',
    'DATE': 'DATE',
    'TIME': 'TIME',
    'MONTH': 'MONTH',
    'WEEK': 'WEEK',
    'COLOR': 'COLOR',
    'COLOR_PICK': 'COLOR',
    'RANGE_SLIDER': 'SLIDER',
    'MESSAGE': 'MESSAGE',
    'TEXT_OR_FILE': 'TEXT_OR_FILE',
    'REPROJECTION_FILE': 'REPROJECTION_FILE',
    'COORDSYS': 'COORDSYS',
    'ATTRIBUTE_NAME': 'ATTRIBUTE_NAME',
    'ATTRIBUTE_LIST': 'ATTRIBUTE_LIST',
    'DB_CONNECTION': 'DB_CONNECTION',
    'WEB_CONNECTION': 'WEB_CONNECTION',
    'SCRIPTED': 'SCRIPTED',
    'GEOMETRY': 'GEOMETRY',
}

SKIPPED_PARAMETER_NAMES = frozenset({
    'MAXX', 'MINX', 'MAXY', 'MINY', 'AreaOfInterest', 'AREA', 'ExtentGeoJson',
    'tm_ttc', 'tm_ttl', 'tm_tag',
})
ALWAYS_SKIPPED_TYPES = frozenset({'NOVALUE', 'GROUP', 'group'})
LIST_REQUIRED_TYPES = frozenset({
    'DB_CONNECTION', 'WEB_CONNECTION', 'ATTRIBUTE_NAME', 'ATTRIBUTE_LIST',
    'COORDSYS', 'REPROJECTION_FILE',
})
MULTI_SELECT_TYPES = frozenset({'LISTBOX', 'LOOKUP_LISTBOX', 'ATTRIBUTE_LIST', 'listbox'})
NUMERIC_FIELD_TYPES = frozenset({'NUMBER', 'NUMERIC_INPUT', 'SLIDER'})
NO_SLIDER_KEYWORDS = ('no slider', 'noslider', 'without slider')
MAX_DECIMAL_PRECISION = 6

# Parameter type validation (v4 type -> primitive kind)
V4_TYPE_MAP = {
    'FLOAT': 'number',
    'INTEGER': 'number',
    'BOOLEAN': 'boolean',
    'STRING': 'text',
    'TEXT': 'text',
}
