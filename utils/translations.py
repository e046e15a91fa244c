"""
English message catalogue for FME Export Tool.

View builders and error formatters receive a ``translate(key, params)``
callable. ``translate`` here is the default: it looks the key up in
``MESSAGES`` and substitutes ``{name}`` placeholders, returning the key
itself when the catalogue has no entry.
"""

from typing import Any, Callable, Dict, Optional

TranslateFn = Callable[..., str]

MESSAGES: Dict[str, str] = {
    # Order result titles and messages
    'titleOrderComplete': 'Export complete',
    'titleOrderConfirmed': 'Order confirmed',
    'titleOrderFailed': 'Order failed',
    'titleOrderCancelled': 'Order cancelled',
    'msgEmailSent': 'The result will be sent to your email when the job is done.',
    'msgOrderTimeout': 'The order was cancelled because it took too long.',
    'msgOrderCancelled': 'The order was cancelled.',
    'msgJobTimeout': 'The job was stopped because it exceeded the time limit.',
    'msgJobCancelled': 'The job was cancelled on the server.',
    'msgJobFailed': 'The job failed.',
    'msgNoResult': 'No result is available.',
    'errTransformFailed': 'The FME Flow transformation failed.',
    'errorOrderFailed': 'The order could not be completed',
    'jobCancelledTimeout': 'The job was cancelled due to a time limit.',
    'jobCancelled': 'The job was cancelled.',
    'jobFailed': 'The job failed.',
    'noDataInResponse': 'The server returned no data.',
    'errorJobSubmission': 'The job could not be submitted.',

    # Info lines and actions
    'lblJobId': 'Job ID',
    'lblWorkspace': 'Workspace',
    'lblDelivery': 'Delivery',
    'lblFilename': 'File name',
    'lblFmeStatus': 'FME status',
    'lblFmeMessage': 'FME message',
    'lblBlobType': 'File type',
    'lblBlobSize': 'File size',
    'lblEmail': 'Email',
    'lblErrorCode': 'Error code',
    'optSyncMode': 'Direct download',
    'optAsyncMode': 'Email notification',
    'optScheduleMode': 'Scheduled',
    'btnNewOrder': 'New order',
    'btnReuseArea': 'Reuse area',
    'btnRetry': 'Try again',
    'btnEnd': 'Close',
    'btnBack': 'Back',
    'btnDownloadFallback': 'Download result',

    # Loading stages
    'loadingNormalizing': 'Preparing parameters...',
    'loadingResolvingDataset': 'Uploading dataset...',
    'loadingApplyingDefaults': 'Applying job directives...',
    'loadingSubmitting': 'Submitting job...',
    'loadingComplete': 'Done',

    # Support and area warnings
    'contactSupportEmail': 'Contact support at {email}',
    'largeAreaWarning': 'The area is large ({current}). The job may take a long time.',
    'largeAreaWarningWithThreshold': 'The area ({current}) exceeds {threshold}. The job may take a long time.',

    # Error keys
    'errorTokenIssue': 'There is a problem with the access token.',
    'requestTimedOut': 'The request timed out.',
    'rateLimitExceeded': 'Too many requests. Try again later.',
    'headersTooLargeMessage': 'The request headers are too large.',
    'corsBlocked': 'The request was blocked by the server (CORS).',
    'urlTooLongMessage': 'The request URL is too long. Reduce the area or parameters.',
    'errorRepositoryAccess': 'The repository could not be read.',
    'errorSetupRequired': 'The tool is not fully configured.',
    'require_https': 'The server URL must use HTTPS.',
    'invalid_url': 'The server URL is invalid.',
    'geometryMissingCode': 'No area of interest was provided.',
    'geometryTypeInvalidCode': 'Only polygon geometry is supported.',
    'geometrySerializationFailedCode': 'The area of interest could not be serialized.',
    'geometryAreaTooLargeCode': 'The area is larger than the allowed maximum.',
    'geometryMissingMessage': 'No area of interest was provided.',
    'geometryPolygonRequired': 'The area of interest must be a polygon.',
    'geometryNotSimple': 'The polygon intersects itself.',
    'geometryInvalidCode': 'The polygon is invalid.',
    'geometryValidationFailedMessage': 'The polygon could not be validated.',
    'errorParameterValidation': 'One or more parameters are invalid.',
    'errorWorkspaceParameters': 'The workspace parameters could not be loaded.',
    'REMOTE_DATASET_WORKSPACE_REQUIRED': 'A workspace is required to upload a dataset.',
    'unknownErrorOccurred': 'An unknown error occurred.',
    'startupNetworkError': 'The FME Flow server could not be reached.',
    'startupTokenError': 'The FME Flow token was rejected.',
    'startupServerError': 'The FME Flow server returned an error.',
    'startupConfigError': 'The configuration is incomplete.',
    'connectionFailed': 'The connection to FME Flow failed.',
    'timeout': 'The request timed out.',
    'rateLimited': 'Too many requests. Try again later.',
    'headersTooLarge': 'The request headers are too large.',
    'corsError': 'The request was blocked by the server (CORS).',
    'urlTooLong': 'The request URL is too long.',
    'hintGeometryInvalid': 'Draw a simple polygon that does not cross itself.',
    'hintAreaTooLarge': 'Draw a smaller area and try again.',
    'hintSetupWidget': 'Ask an administrator to complete the configuration.',
    'checkConnectionSettings': 'Check the connection settings.',
    'errorNoWorkspace': 'No workspace was selected.',
}


def translate(key: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Look up a message and substitute ``{name}`` placeholders.

    Example:
        >>> translate('largeAreaWarning', {'current': '12 km²'})
        'The area is large (12 km²). The job may take a long time.'
    """
    template = MESSAGES.get(key, key)
    for name, value in (params or {}).items():
        template = template.replace('{' + name + '}', str(value))
    return template


def resolve_message_or_key(raw: str, translate_fn: TranslateFn = translate) -> str:
    if not raw:
        return ''
    return translate_fn(raw)
