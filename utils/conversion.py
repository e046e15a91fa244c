"""
Value conversion helpers for FME Export Tool.

Coerces loosely-typed form input and FME Flow payload values (strings, numbers,
booleans, lists, nested dicts) into the shapes the submission pipeline expects.

Functions:
    is_empty: True for None, blank strings and empty lists
    to_trimmed_string: Trimmed string or None
    to_boolean_value: Parse yes/no style values
    to_number_value: Parse numeric values
    normalize_parameter_value: Coerce a value for FME submission
    sanitize_param_key: Restrict a parameter name to safe characters
    parse_non_negative_int: Parse non-negative integer directives
"""

import json
import math
import re
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

TRUE_VALUES = frozenset({'true', '1', 'yes', 'y', 'on'})
FALSE_VALUES = frozenset({'false', '0', 'no', 'n', 'off'})
PARAM_KEY_PATTERN = re.compile(r'[^A-Za-z0-9_\-]')


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are finite (booleans excluded)."""
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float)) and math.isfinite(value)


def is_non_empty_trimmed_string(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def is_empty(value: Any) -> bool:
    """
    Check whether a form value counts as empty.

    None, empty strings, whitespace-only strings and empty lists are empty.
    Zero and False are values.
    """
    if value is None or value == '':
        return True
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    if isinstance(value, str):
        return not is_non_empty_trimmed_string(value)
    return False


def to_trimmed_string(value: Any) -> Optional[str]:
    """Return the stripped string, or None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def to_string_value(value: Any) -> Optional[str]:
    """Like to_trimmed_string, but finite numbers are converted too."""
    if is_finite_number(value):
        return _format_number(value)
    return to_trimmed_string(value)


def to_non_empty_trimmed_string(value: Any, fallback: str = '') -> str:
    trimmed = to_trimmed_string(value)
    return trimmed if trimmed else fallback


def to_boolean_value(value: Any) -> Optional[bool]:
    """
    Parse boolean-like values.

    Parameters:
    -----------
    value : Any
        bool, number (0/1) or string (true/1/yes/y/on, false/0/no/n/off)

    Returns:
    --------
    Optional[bool]
        Parsed value, or None when the value is not recognized
    """
    if isinstance(value, bool):
        return value
    if is_finite_number(value):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TRUE_VALUES:
            return True
        if normalized in FALSE_VALUES:
            return False
    return None


def to_number_value(value: Any) -> Optional[float]:
    if is_finite_number(value):
        return value
    text = to_trimmed_string(value)
    if not text:
        return None
    try:
        numeric = float(text)
    except ValueError:
        return None
    if not math.isfinite(numeric):
        return None
    return int(numeric) if numeric.is_integer() and re.fullmatch(r'[+-]?\d+', text) else numeric


def is_valid_number(
    value: Any,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    allow_zero: bool = True,
    allow_negative: bool = True
) -> bool:
    if not is_finite_number(value):
        return False
    if not allow_zero and value == 0:
        return False
    if not allow_negative and value < 0:
        return False
    if min_value is not None and value < min_value:
        return False
    if max_value is not None and value > max_value:
        return False
    return True


def to_valid_number(value: Any, fallback: float, **options) -> float:
    return value if is_valid_number(value, **options) else fallback


def clamp_number(value: float, min_value: float, max_value: float) -> float:
    if not is_finite_number(value):
        return min_value
    return max(min_value, min(max_value, value))


def to_array(value: Any) -> List[Any]:
    """Wrap a non-list value in a list; None becomes an empty list."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return [] if value is None else [value]


def _pick(data: Optional[Dict], keys: Sequence[str], converter: Callable[[Any], Any]) -> Any:
    if not data:
        return None
    for key in keys:
        result = converter(data.get(key))
        if result is not None:
            return result
    return None


def pick_string(data: Optional[Dict], keys: Sequence[str]) -> Optional[str]:
    return _pick(data, keys, to_string_value)


def pick_boolean(data: Optional[Dict], keys: Sequence[str]) -> Optional[bool]:
    return _pick(data, keys, to_boolean_value)


def pick_number(data: Optional[Dict], keys: Sequence[str]) -> Optional[float]:
    return _pick(data, keys, to_number_value)


def merge_metadata(sources: Iterable[Optional[Dict]]) -> Dict[str, Any]:
    """Merge dicts left to right; the first non-None value for a key wins."""
    merged: Dict[str, Any] = {}
    for source in sources:
        if not isinstance(source, dict):
            continue
        for key, value in source.items():
            if value is not None and key not in merged:
                merged[key] = value
    return merged


def unwrap_array(value: Any) -> Optional[List[Any]]:
    """Return the list itself, or the list under data/items/options."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in ('data', 'items', 'options'):
            candidate = value.get(key)
            if isinstance(candidate, list):
                return candidate
    return None


def to_metadata_record(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, dict):
        return None
    entries = {k: v for k, v in value.items() if v is not None}
    return entries or None


def normalize_parameter_value(value: Any) -> Any:
    """
    Coerce a value for FME submission.

    Numbers and strings pass through, booleans become "true"/"false",
    everything else is JSON-encoded.
    """
    if is_finite_number(value) or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return json.dumps(value, separators=(',', ':'), default=str)


def to_str(value: Any) -> str:
    """String rendering for debug logging."""
    if isinstance(value, str):
        return value
    if value is None:
        return 'None'
    if isinstance(value, (bool, int, float)):
        return str(value)
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return repr(value)


def sanitize_param_key(name: Any, fallback: str) -> str:
    """Strip characters outside [A-Za-z0-9_-]; fall back when nothing is left."""
    raw = to_trimmed_string(name) or ''
    cleaned = PARAM_KEY_PATTERN.sub('', raw)
    return cleaned or fallback


def normalize_form_value(value: Any, is_multi_select: bool) -> Any:
    if value is None:
        return [] if is_multi_select else ''
    if is_multi_select:
        return list(value) if isinstance(value, (list, tuple)) else [value]
    if isinstance(value, (str, int, float, bool)):
        return value
    return ''


def to_serializable(error: Optional[Dict]) -> Optional[Dict]:
    """Drop callables from an error record and pin the timestamp to epoch ms."""
    if not error:
        return None
    timestamp_ms = error.get('timestamp_ms')
    if not isinstance(timestamp_ms, (int, float)):
        stamp = error.get('timestamp')
        timestamp_ms = int(stamp.timestamp() * 1000) if isinstance(stamp, datetime) else 0
    rest = {k: v for k, v in error.items() if k not in ('retry', 'timestamp')}
    rest['timestamp_ms'] = timestamp_ms
    rest['kind'] = 'serializable'
    return rest


def map_defined(values: Optional[Iterable], mapper: Callable[[Any, int], Any]) -> List[Any]:
    if values is None or isinstance(values, str):
        return []
    result = []
    for index, value in enumerate(values):
        mapped = mapper(value, index)
        if mapped is not None:
            result.append(mapped)
    return result


def unique_strings(values: Iterable[Any]) -> List[str]:
    """Trimmed, non-empty, de-duplicated strings in first-seen order."""
    seen = []
    for value in values or []:
        trimmed = to_trimmed_string(value)
        if trimmed and trimmed not in seen:
            seen.append(trimmed)
    return seen


def collect_strings_from_prop(items: Iterable[Any], prop: str) -> List[str]:
    return [item.get(prop) for item in items or [] if isinstance(item, dict) and isinstance(item.get(prop), str)]


def parse_non_negative_int(value: Any) -> Optional[int]:
    """Parse a non-negative integer; floats are floored, negatives rejected."""
    if is_finite_number(value):
        return None if value < 0 else int(math.floor(value))
    text = to_trimmed_string(value)
    if not text or not re.fullmatch(r'\d+', text):
        return None
    return int(text)


def parse_int_safe(value: Any) -> Optional[int]:
    if is_finite_number(value):
        return int(value)
    text = to_trimmed_string(value)
    if not text or not re.fullmatch(r'[+-]?\d+', text):
        return None
    return int(text)


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_error_message(error: Any) -> str:
    """
    Pull a human-readable message out of an exception, string or error dict.

    Dicts are searched for message, error, details and description in order.
    """
    if error is None or error == '' or error is False:
        return 'Unknown error'
    if isinstance(error, str):
        return error
    if is_finite_number(error):
        return str(error)
    if isinstance(error, BaseException):
        message = getattr(error, 'message', None)
        if is_non_empty_trimmed_string(message):
            return message.strip()
        return str(error) or 'Error object'
    if isinstance(error, dict):
        for prop in ('message', 'error', 'details', 'description'):
            candidate = error.get(prop)
            if is_non_empty_trimmed_string(candidate):
                return candidate.strip()
    return 'Unknown error occurred'
