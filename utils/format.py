"""
Display formatting for FME Export Tool.

Functions:
    format_byte_size: Binary-unit file size text (KiB, MiB, ...)
    format_area: Area text in the units of a spatial reference
    build_large_area_warning_message: Large-area warning text
    mask_email_for_display: Partially hidden email address
    strip_html_to_text: Plain text from an HTML fragment
    fme_date_to_input / input_to_fme_date: YYYYMMDD <-> YYYY-MM-DD
    fme_date_time_to_input / input_to_fme_date_time: FME datetime <-> ISO-like input
    fme_time_to_input / input_to_fme_time: HHMMSS <-> HH:MM[:SS]
    hex_to_rgb_array / normalized_rgb_to_hex / hex_to_normalized_rgb: Colour values
"""

import html
import re
from typing import Any, Dict, List, Optional, Tuple

from config.constants import (
    AREA_DECIMALS,
    EMAIL_PLACEHOLDER,
    LARGE_AREA_LABELS,
    M2_PER_KM2,
    UNIT_CONVERSIONS,
)
from utils.conversion import extract_error_message, is_finite_number, to_trimmed_string
from utils.logger import get_logger
from utils.translations import TranslateFn, resolve_message_or_key, translate as default_translate
from utils.validations import is_valid_email

logger = get_logger(__name__)

__all__ = [
    'format_byte_size', 'format_numeric_display', 'format_area', 'normalize_unit_label',
    'build_large_area_warning_message', 'mask_email_for_display', 'build_support_hint_text',
    'format_error_for_view', 'strip_html_to_text', 'strip_error_label', 'extract_error_message',
    'pad2', 'extract_temporal_parts', 'fme_date_to_input', 'input_to_fme_date',
    'fme_date_time_to_input', 'input_to_fme_date_time', 'fme_time_to_input', 'input_to_fme_time',
    'hex_to_rgb_array', 'normalized_rgb_to_hex', 'hex_to_normalized_rgb',
]

BYTE_UNITS = ('B', 'KiB', 'MiB', 'GiB', 'TiB')
DEFAULT_DRAWING_HEX = '#0079C1'
ERROR_LABEL_PATTERN = re.compile(r'^(?:error|fel|warning|varning|info)\s*[:\-–—]?\s*', re.IGNORECASE)
OFFSET_SUFFIX = re.compile(r'(Z|[+-]\d{2}(?::?\d{2})?)$', re.IGNORECASE)
FRACTION_SUFFIX = re.compile(r'\.(\d{1,9})$')
HEX_COLOR = re.compile(r'^#?([0-9a-f]{6})$', re.IGNORECASE)
MAX_HTML_CODE_POINT = 0x10FFFF


def format_byte_size(size: Any) -> Optional[str]:
    """
    Format a byte count with binary units.

    One decimal is shown for values under 10 in any unit above bytes.

    Example:
        >>> format_byte_size(1536)
        '1.5 KiB'
    """
    if not is_finite_number(size) or size < 0:
        return None

    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(BYTE_UNITS) - 1:
        value /= 1024
        unit_index += 1

    if unit_index > 0 and value < 10:
        formatted = f'{value:.1f}'
    else:
        formatted = str(int(_round_half_up(value)))
    return f'{formatted} {BYTE_UNITS[unit_index]}'


def format_numeric_display(value: float, precision: Optional[int] = None) -> str:
    if not is_finite_number(value):
        return ''
    if precision is not None and precision >= 0:
        return f'{value:.{precision}f}'
    return str(value)


def _round_half_up(value: float) -> float:
    return float(int(value + 0.5)) if value >= 0 else -float(int(-value + 0.5))


def _format_grouped(value: float, decimals: int) -> str:
    """Thousands-grouped number with at most ``decimals`` fraction digits."""
    text = f'{value:,.{decimals}f}'
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


def _approx_length_unit(value: Optional[float], target: float) -> bool:
    if not is_finite_number(value):
        return False
    tolerance = max(1e-9, abs(target) * 1e-6)
    return abs(value - target) <= tolerance


def _decimal_places(value: float, is_large_unit: bool = False) -> int:
    if is_large_unit:
        return 2
    if value >= 100:
        return 0
    if value >= 10:
        return 1
    return 2


def normalize_unit_label(unit: Optional[str]) -> str:
    """Map an Esri linear unit name to a squared label (``esriFeet`` -> ``ft²``)."""
    if not unit:
        return 'units²'
    trimmed = re.sub(r'^esri', '', unit, flags=re.IGNORECASE).strip()
    if not trimmed:
        return 'units²'
    lower = trimmed.lower()
    labels = {
        'meters': 'm²',
        'feet': 'ft²',
        'internationalfeet': 'ft²',
        'ussfeet': 'ft²',
        'kilometers': 'km²',
        'miles': 'mi²',
        'yards': 'yd²',
        'inches': 'in²',
        'centimeters': 'cm²',
        'millimeters': 'mm²',
        'nauticalmiles': 'nm²',
    }
    return labels.get(lower, f'{lower}²')


def _metric_display(area: float) -> Tuple[float, str, int]:
    if area >= M2_PER_KM2:
        return area / M2_PER_KM2, 'km²', AREA_DECIMALS
    if area >= 1:
        return float(round(area)), 'm²', 0
    return round(area, 2), 'm²', 2


def _area_for_spatial_reference(area: float, spatial_reference: Optional[Dict]) -> Tuple[float, str, int]:
    if not spatial_reference:
        return _metric_display(area)

    meters_per_unit = spatial_reference.get('meters_per_unit', spatial_reference.get('metersPerUnit'))
    if not is_finite_number(meters_per_unit) or meters_per_unit <= 0:
        return _metric_display(area)

    unit = spatial_reference.get('unit')
    unit_id = unit.lower() if isinstance(unit, str) else ''

    for conversion in UNIT_CONVERSIONS:
        keyword_hit = any(keyword in unit_id for keyword in conversion['keywords'])
        if _approx_length_unit(meters_per_unit, conversion['factor']) or keyword_hit:
            converted = area / (meters_per_unit * meters_per_unit)
            large_unit = conversion.get('large_unit')
            if large_unit and converted >= large_unit['threshold']:
                return converted / large_unit['factor'], large_unit['label'], 2
            is_large = conversion['label'] in LARGE_AREA_LABELS[:2]
            return converted, conversion['label'], _decimal_places(converted, is_large)

    value = area / (meters_per_unit * meters_per_unit)
    return value, normalize_unit_label(unit), _decimal_places(value)


def format_area(area: Any, spatial_reference: Optional[Dict] = None) -> str:
    """
    Format an area (square meters) for display.

    Parameters:
    -----------
    area : float
        Area in square meters; non-positive and non-numeric values render as 0
    spatial_reference : Optional[Dict]
        Optional ``{'meters_per_unit': float, 'unit': str}`` describing the
        display units. Without it, m² / km² are used.

    Returns:
    --------
    str
        Text such as ``"1.25 km²"`` or ``"0 m²"``

    Example:
        >>> format_area(2500000)
        '2.5 km²'
    """
    safe_area = area if is_finite_number(area) and area > 0 else 0
    value, label, decimals = _area_for_spatial_reference(safe_area, spatial_reference)
    if not value or value <= 0:
        return f'0 {label}'
    return f'{_format_grouped(value, decimals)} {label}'


def build_large_area_warning_message(
    current_area_text: Optional[str],
    threshold_area_text: Optional[str] = None,
    translate: TranslateFn = default_translate
) -> Optional[str]:
    current = to_trimmed_string(current_area_text)
    if not current:
        return None
    threshold = to_trimmed_string(threshold_area_text)
    if threshold:
        return translate('largeAreaWarningWithThreshold', {'current': current, 'threshold': threshold})
    return translate('largeAreaWarning', {'current': current})


def mask_email_for_display(email: Any) -> str:
    """
    Hide most of the local part of an email address.

    Example:
        >>> mask_email_for_display('anna.svensson@example.com')
        'an****@example.com'
    """
    trimmed = to_trimmed_string(email)
    if not trimmed or not is_valid_email(trimmed):
        return trimmed or ''
    at_index = trimmed.index('@')
    if at_index <= 1:
        return f'**{trimmed[at_index:]}'
    return f'{trimmed[:2]}****{trimmed[at_index:]}'


def build_support_hint_text(
    translate: TranslateFn = default_translate,
    support_email: Optional[str] = None,
    user_friendly: Optional[str] = None
) -> str:
    email = to_trimmed_string(support_email)
    if not email:
        return to_trimmed_string(user_friendly) or ''
    return EMAIL_PLACEHOLDER.sub(email, translate('contactSupportEmail'))


def format_error_for_view(
    base_key_or_message: str,
    code: Optional[str] = None,
    support_email: Optional[str] = None,
    user_friendly: Optional[str] = None,
    translate: TranslateFn = default_translate
) -> Dict[str, Optional[str]]:
    message = resolve_message_or_key(base_key_or_message, translate) or base_key_or_message
    hint = build_support_hint_text(translate, support_email, user_friendly)
    return {'message': message, 'code': code, 'hint': hint}


def _decode_numeric_entity(value: str, base: int) -> str:
    try:
        code_point = int(value, base)
    except ValueError:
        return ''
    if code_point < 0 or code_point > MAX_HTML_CODE_POINT:
        return ''
    try:
        return chr(code_point)
    except ValueError:
        return ''


def strip_html_to_text(value: Optional[str]) -> str:
    """Remove tags (and script/style blocks), decode entities and collapse whitespace."""
    if not value:
        return ''
    no_tags = re.sub(r'<\s*(script|style)[^>]*>[\s\S]*?<\s*/\s*\1\s*>', '', value, flags=re.IGNORECASE)
    no_tags = re.sub(r'<[^>]*>', '', no_tags)
    decoded = re.sub(r'&#(\d+);', lambda m: _decode_numeric_entity(m.group(1), 10), no_tags)
    decoded = re.sub(r'&#x([\da-f]+);', lambda m: _decode_numeric_entity(m.group(1), 16), decoded, flags=re.IGNORECASE)
    decoded = html.unescape(decoded)
    return re.sub(r'\s+', ' ', decoded).strip()


def strip_error_label(value: Optional[str]) -> str:
    """Drop a leading ``Error:`` / ``Warning -`` style label."""
    trimmed = to_trimmed_string(value)
    if not trimmed:
        return ''
    stripped = ERROR_LABEL_PATTERN.sub('', trimmed).strip()
    return stripped or trimmed


def pad2(n: int) -> str:
    return str(n).zfill(2)


def _parse_temporal_components(value: str) -> Dict[str, str]:
    if not value:
        return {'base': '', 'fraction': '', 'offset': ''}
    base = value
    offset = ''
    offset_match = OFFSET_SUFFIX.search(base)
    if offset_match:
        offset = offset_match.group(1)
        base = base[:-len(offset)]
    fraction = ''
    fraction_match = FRACTION_SUFFIX.search(base)
    if fraction_match:
        fraction = fraction_match.group(0)
        base = base[:-len(fraction)]
    return {'base': base, 'fraction': fraction, 'offset': offset}


def extract_temporal_parts(raw: Optional[str]) -> Dict[str, str]:
    """
    Split a temporal string into base, fractional seconds and UTC offset.

    Example:
        >>> extract_temporal_parts('20240101120000.123+02:00')
        {'base': '20240101120000', 'fraction': '.123', 'offset': '+02:00'}
    """
    return _parse_temporal_components((raw or '').strip())


def _safe_pad2(part: Optional[str]) -> Optional[str]:
    if not part:
        return None
    try:
        n = float(part)
    except ValueError:
        return None
    if 0 <= n <= 99:
        return pad2(int(n))
    return None


def fme_date_to_input(value: Optional[str]) -> str:
    """YYYYMMDD -> YYYY-MM-DD; empty string when the date is implausible."""
    digits = re.sub(r'\D', '', value or '')
    if len(digits) != 8:
        return ''
    year, month, day = digits[:4], digits[4:6], digits[6:8]
    if not 1000 <= int(year) <= 9999:
        return ''
    if not 1 <= int(month) <= 12:
        return ''
    if not 1 <= int(day) <= 31:
        return ''
    return f'{year}-{month}-{day}'


def input_to_fme_date(value: Optional[str]) -> str:
    return value.replace('-', '') if value else ''


def fme_date_time_to_input(value: Optional[str]) -> str:
    """YYYYMMDDHHMM[SS] (optionally with fraction/offset) -> YYYY-MM-DDTHH:MM[:SS]."""
    base = extract_temporal_parts(value)['base']
    digits = re.sub(r'\D', '', base)
    if len(digits) < 12:
        return ''
    seconds = f':{digits[12:14]}' if len(digits) >= 14 else ''
    return f'{digits[:4]}-{digits[4:6]}-{digits[6:8]}T{digits[8:10]}:{digits[10:12]}{seconds}'


def input_to_fme_date_time(value: Optional[str], original: Optional[str] = None) -> str:
    """
    Convert ``YYYY-MM-DDTHH:MM[:SS]`` to the FME ``YYYYMMDDHHMMSS`` form.

    Fractional seconds and the UTC offset are taken from the input, or kept
    from ``original`` when the input has none.
    """
    if not value:
        return ''
    text = value.strip()
    if 'T' not in text:
        logger.debug(f"Invalid ISO datetime: {value}")
        return ''
    date_part, time_part = text.split('T', 1)
    if not date_part or not time_part:
        logger.debug(f"Invalid ISO datetime: {value}")
        return ''

    date_bits = date_part.split('-')
    year = date_bits[0] if date_bits else ''
    month = date_bits[1] if len(date_bits) > 1 else None
    day = date_bits[2] if len(date_bits) > 2 else None

    components = _parse_temporal_components(time_part)
    time_bits = components['base'].split(':')
    hours = time_bits[0] if time_bits else None
    minutes = time_bits[1] if len(time_bits) > 1 else None
    seconds_raw = time_bits[2] if len(time_bits) > 2 else None

    if not re.fullmatch(r'\d{4}', year or ''):
        logger.debug(f"Invalid year in datetime: {year}")
        return ''

    month2, day2, hours2, minutes2 = (_safe_pad2(p) for p in (month, day, hours, minutes))
    if not month2 or not day2 or not hours2 or not minutes2:
        logger.debug(f"Invalid date/time components: {value}")
        return ''

    seconds2 = _safe_pad2(seconds_raw) if seconds_raw else '00'
    if seconds2 is None:
        logger.debug(f"Invalid seconds: {seconds_raw}")
        return ''

    extras = extract_temporal_parts(original) if original else {'fraction': '', 'offset': ''}
    fraction = components['fraction'] or extras['fraction']
    offset = components['offset'] or extras['offset']
    return f'{year}{month2}{day2}{hours2}{minutes2}{seconds2}{fraction}{offset}'


def fme_time_to_input(value: Optional[str]) -> str:
    digits = re.sub(r'\D', '', extract_temporal_parts(value)['base'])
    if len(digits) == 4:
        return f'{digits[:2]}:{digits[2:4]}'
    if len(digits) >= 6:
        return f'{digits[:2]}:{digits[2:4]}:{digits[4:6]}'
    return ''


def input_to_fme_time(value: Optional[str], original: Optional[str] = None) -> str:
    """HH:MM[:SS] -> HHMMSS, keeping fraction/offset from the input or original."""
    if not value:
        return ''
    components = _parse_temporal_components(value)
    parts = components['base'].split(':')
    hours = parts[0] if parts else ''
    minutes = parts[1] if len(parts) > 1 else ''
    seconds = parts[2] if len(parts) > 2 else ''
    try:
        h = int(float(hours))
        m = int(float(minutes))
    except ValueError:
        return ''
    try:
        final_seconds = pad2(int(float(seconds)))
    except ValueError:
        final_seconds = '00'

    extras = extract_temporal_parts(original) if original else {'fraction': '', 'offset': ''}
    fraction = components['fraction'] or extras['fraction']
    offset = components['offset'] or extras['offset']
    return f'{pad2(h)}{pad2(m)}{final_seconds}{fraction}{offset}'


def _clamp(value: float, low: float, high: float) -> float:
    if not is_finite_number(value):
        return low
    return max(low, min(high, value))


def _to_hex_component(value: float) -> str:
    return f'{int(_round_half_up(_clamp(value, 0, 255))):02x}'


def _rgb_to_hex(r: float, g: float, b: float) -> str:
    return f'#{_to_hex_component(r)}{_to_hex_component(g)}{_to_hex_component(b)}'


def _format_unit_fraction(value: float) -> str:
    rounded = round(_clamp(value, 0, 1), 6)
    return f'{rounded:.6f}'.rstrip('0').rstrip('.') or '0'


def _parse_normalized_parts(value: str) -> List[float]:
    parts = []
    for segment in (value or '').split(','):
        segment = segment.strip()
        if not segment:
            continue
        try:
            parts.append(float(segment))
        except ValueError:
            parts.append(float('nan'))
    return parts


def hex_to_rgb_array(hex_color: str) -> Tuple[int, int, int]:
    match = HEX_COLOR.match(hex_color or '')
    n = int(match.group(1) if match else DEFAULT_DRAWING_HEX[1:], 16)
    return (n >> 16) & 0xFF, (n >> 8) & 0xFF, n & 0xFF


def normalized_rgb_to_hex(value: str, space: Optional[str] = None, alpha: bool = False) -> Optional[str]:
    """
    Convert an FME colour string to ``#rrggbb``.

    ``"r,g,b"`` holds 0-1 fractions; four parts are read as CMYK unless the
    colour space says otherwise.
    """
    parts = _parse_normalized_parts(value)
    if not parts:
        return None

    treat_as_cmyk = space == 'cmyk' or (not space and not alpha and len(parts) == 4)
    if treat_as_cmyk:
        if len(parts) < 4 or not all(is_finite_number(p) for p in parts[:4]):
            return None
        c, m, y, k = (_clamp(p, 0, 1) for p in parts[:4])
        return _rgb_to_hex(255 * (1 - c) * (1 - k), 255 * (1 - m) * (1 - k), 255 * (1 - y) * (1 - k))

    if len(parts) < 3 or not all(is_finite_number(p) for p in parts[:3]):
        return None
    r, g, b = (_round_half_up(_clamp(p, 0, 1) * 255) for p in parts[:3])
    return _rgb_to_hex(r, g, b)


def hex_to_normalized_rgb(hex_color: str, space: Optional[str] = None) -> Optional[str]:
    match = HEX_COLOR.match(hex_color or '')
    if not match:
        return None
    numeric = int(match.group(1), 16)
    r, g, b = (numeric >> 16) & 0xFF, (numeric >> 8) & 0xFF, numeric & 0xFF

    if space == 'cmyk':
        rn, gn, bn = r / 255, g / 255, b / 255
        k = 1 - max(rn, gn, bn)
        if k >= 0.999999:
            cmyk = (0, 0, 0, 1)
        else:
            denom = 1 - k
            cmyk = ((1 - rn - k) / denom, (1 - gn - k) / denom, (1 - bn - k) / denom, k)
        return ','.join(_format_unit_fraction(part) for part in cmyk)

    return ','.join(_format_unit_fraction(channel / 255) for channel in (r, g, b))
