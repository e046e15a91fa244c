"""
Workspace parameter handling for FME Export Tool.

Converts FME Flow workspace parameter definitions into form field
descriptions, validates submitted values against them and prepares values
for submission.

Classes:
    ParameterFormService: Field conversion and validation

Functions:
    init_form_values: Default value per field
    sanitize_form_values: Mask PASSWORD values for logging
    coerce_form_value_for_submission: Collapse TEXT_OR_FILE values
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from config.constants import (
    ALWAYS_SKIPPED_TYPES,
    LIST_REQUIRED_TYPES,
    MAX_DECIMAL_PRECISION,
    MULTI_SELECT_TYPES,
    NO_SLIDER_KEYWORDS,
    PARAMETER_FIELD_TYPE_MAP,
    SKIPPED_PARAMETER_NAMES,
)
from utils.conversion import (
    is_empty,
    is_finite_number,
    is_non_empty_trimmed_string,
    normalize_parameter_value,
    to_array,
    to_boolean_value,
    to_non_empty_trimmed_string,
    to_string_value,
)
from utils.logger import get_logger
from utils.network import mask_token
from utils.validations import build_choice_set, is_num, validate_parameter_choices, validate_parameter_type

logger = get_logger(__name__)

NUMERIC_INPUT_TYPES = ('NUMBER', 'NUMERIC_INPUT')
RANGE_TYPES = ('NUMBER', 'NUMERIC_INPUT', 'SLIDER')
BOUNDED_TYPES = ('SLIDER', 'NUMERIC_INPUT')
READ_ONLY_TYPES = ('MESSAGE', 'GEOMETRY')
FLOAT_EPSILON = 2.220446049250313e-16


def _has_value(value: Any) -> bool:
    return value is not None and value != ''


class ParameterFormService:
    """Turns workspace parameter definitions into form fields and validates values."""

    def is_renderable_param(self, param: Optional[Dict[str, Any]]) -> bool:
        if not isinstance(param, dict) or not isinstance(param.get('name'), str):
            return False
        if param['name'] in SKIPPED_PARAMETER_NAMES:
            return False
        param_type = param.get('type')
        if param_type in ALWAYS_SKIPPED_TYPES:
            return False
        if param_type in LIST_REQUIRED_TYPES:
            list_options = param.get('listOptions')
            return bool(isinstance(list_options, list) and list_options) or _has_value(param.get('defaultValue'))
        return True

    def get_renderable_parameters(self, parameters: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        return [p for p in parameters or [] if self.is_renderable_param(p)]

    def map_list_options(self, list_options: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
        if not list_options:
            return None
        options = []
        for option in list_options:
            if not isinstance(option, dict):
                continue
            value = normalize_parameter_value(option.get('value'))
            item = {
                'label': to_non_empty_trimmed_string(option.get('caption'), str(value)),
                'value': value,
            }
            if option.get('description'):
                item['description'] = option['description']
            if isinstance(option.get('path'), str) and option['path']:
                item['path'] = option['path']
            if option.get('disabled'):
                item['disabled'] = True
            options.append(item)
        return options

    def get_decimal_precision(self, param: Dict[str, Any]) -> Optional[int]:
        raw = param.get('decimalPrecision')
        if not is_finite_number(raw) or raw < 0:
            return None
        return min(int(math.floor(raw)), MAX_DECIMAL_PRECISION)

    def should_use_range_slider_ui(self, param: Dict[str, Any]) -> bool:
        if param.get('type') != 'RANGE_SLIDER':
            return False
        control = param.get('control')
        if isinstance(control, dict):
            for key in ('useRangeSlider', 'useSlider'):
                if isinstance(control.get(key), bool):
                    return control[key]
        description = (param.get('description') or '').lower()
        if any(keyword in description for keyword in NO_SLIDER_KEYWORDS):
            return False
        return True

    def get_slider_meta(self, param: Dict[str, Any], precision: Optional[int], use_slider_ui: bool) -> Dict[str, Any]:
        """Min, max, step and exclusivity flags for numeric fields."""
        min_exclusive = param.get('minimumExclusive') if isinstance(param.get('minimumExclusive'), bool) else False
        max_exclusive = param.get('maximumExclusive') if isinstance(param.get('maximumExclusive'), bool) else False
        minimum = param.get('minimum') if is_finite_number(param.get('minimum')) else None
        maximum = param.get('maximum') if is_finite_number(param.get('maximum')) else None

        if param.get('type') != 'RANGE_SLIDER':
            return {'min': minimum, 'max': maximum, 'step': None,
                    'min_exclusive': min_exclusive, 'max_exclusive': max_exclusive}

        if minimum is None and use_slider_ui:
            minimum = 0
        if maximum is None and use_slider_ui:
            maximum = 100

        step = None
        if precision is not None:
            step = 10 ** -precision if precision > 0 else 1
        elif use_slider_ui:
            step = 1

        return {'min': minimum, 'max': maximum, 'step': step,
                'min_exclusive': min_exclusive, 'max_exclusive': max_exclusive}

    def get_field_type(self, param: Dict[str, Any]) -> str:
        param_type = param.get('type')
        mapped = PARAMETER_FIELD_TYPE_MAP.get(param_type)
        if mapped:
            return mapped
        if param_type in MULTI_SELECT_TYPES:
            return 'MULTI_SELECT'
        if param.get('listOptions'):
            return 'SELECT'
        return 'TEXT'

    def is_read_only_field(self, field_type: str) -> bool:
        return field_type in READ_ONLY_TYPES

    def _default_value(self, param: Dict[str, Any], field_type: str) -> Any:
        default = param.get('defaultValue')
        if field_type == 'PASSWORD' or param.get('type') == 'GEOMETRY':
            return ''
        if field_type == 'MULTI_SELECT':
            return to_array(default)
        if field_type in ('SWITCH', 'CHECKBOX'):
            as_bool = to_boolean_value(default)
            return as_bool if as_bool is not None else default
        return default

    def convert_parameters_to_fields(self, parameters: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """
        Convert workspace parameters into form field descriptions.

        Parameters:
        -----------
        parameters : List[Dict]
            FME Flow parameter definitions (name, type, optional, defaultValue,
            listOptions, minimum, maximum, decimalPrecision, ...)

        Returns:
        --------
        List[Dict]
            One field per renderable parameter with name, label, type,
            required, read_only, default_value, placeholder and, where
            relevant, options, rows, min/max/step, exclusivity and precision
        """
        fields = []
        for param in self.get_renderable_parameters(parameters):
            base_type = self.get_field_type(param)
            precision = self.get_decimal_precision(param)
            slider_ui = self.should_use_range_slider_ui(param)
            field_type = 'NUMERIC_INPUT' if param.get('type') == 'RANGE_SLIDER' and not slider_ui else base_type
            options = self.map_list_options(param.get('listOptions'))
            meta = self.get_slider_meta(param, precision, slider_ui)
            description = param.get('description')

            field: Dict[str, Any] = {
                'name': param['name'],
                'label': description or param['name'],
                'type': field_type,
                'required': not param.get('optional', False),
                'read_only': self.is_read_only_field(field_type),
                'description': description,
                'default_value': self._default_value(param, field_type),
                'placeholder': description or '',
            }
            if options:
                field['options'] = options
            if param.get('type') == 'TEXT_EDIT':
                field['rows'] = 3
            if meta['min'] is not None or meta['max'] is not None or meta['step'] is not None:
                field['min'] = meta['min']
                field['max'] = meta['max']
                field['step'] = meta['step']
            if field_type in BOUNDED_TYPES:
                if precision is not None:
                    field['decimal_precision'] = precision
                field['min_exclusive'] = meta['min_exclusive']
                field['max_exclusive'] = meta['max_exclusive']
            fields.append(field)

        logger.debug(f"Converted {len(fields)} of {len(parameters or [])} parameters to form fields")
        return fields

    def validate_parameters(
        self,
        data: Dict[str, Any],
        parameters: Optional[List[Dict[str, Any]]]
    ) -> Tuple[bool, List[str]]:
        """
        Validate submitted values against parameter definitions.

        Returns:
        --------
        Tuple[bool, List[str]]
            (is_valid, errors) with errors like ``"NAME:required"``,
            ``"NAME:type"`` and ``"NAME:choice"``
        """
        errors: List[str] = []
        data = data or {}
        for param in self.get_renderable_parameters(parameters):
            if param.get('type') == 'GEOMETRY':
                continue
            name = param['name']
            value = data.get(name)

            if not param.get('optional', False) and is_empty(value):
                errors.append(f'{name}:required')
                continue
            if is_empty(value):
                continue

            type_error = validate_parameter_type(param.get('type'), name, value)
            if type_error:
                errors.append(type_error)
                continue

            choice_error = validate_parameter_choices(
                name,
                value,
                build_choice_set(param.get('listOptions')),
                param.get('type') in MULTI_SELECT_TYPES,
            )
            if choice_error:
                errors.append(choice_error)

        return len(errors) == 0, errors

    def validate_form_values(
        self,
        values: Dict[str, Any],
        fields: Optional[List[Dict[str, Any]]]
    ) -> Tuple[bool, Dict[str, str]]:
        """
        Validate form values against field descriptions.

        Returns:
        --------
        Tuple[bool, Dict[str, str]]
            (is_valid, errors) where errors maps field names to one of
            required, number, min, max or precision
        """
        if not values or not fields:
            return True, {}

        errors: Dict[str, str] = {}
        for field in fields:
            field_type = field.get('type')
            name = field.get('name')
            if field_type == 'GEOMETRY':
                continue
            value = values.get(name)
            has_value = not is_empty(value)

            if field_type == 'TEXT_OR_FILE':
                composite = value if isinstance(value, dict) else {}
                has_text = is_non_empty_trimmed_string(composite.get('text'))
                has_file = bool(composite.get('file'))
                if field.get('required') and not has_text and not has_file:
                    errors[name] = 'required'
                continue

            if field.get('required') and not has_value:
                errors[name] = 'required'
                continue
            if not has_value:
                continue

            if field_type in NUMERIC_INPUT_TYPES and not is_num(value):
                errors[name] = 'number'
                continue

            if field_type in RANGE_TYPES:
                try:
                    numeric = float(value)
                except (TypeError, ValueError):
                    errors[name] = 'number'
                    continue
                if not math.isfinite(numeric):
                    errors[name] = 'number'
                    continue

                minimum = field.get('min')
                if is_finite_number(minimum):
                    below = numeric <= minimum if field.get('min_exclusive') else numeric < minimum
                    if below:
                        errors[name] = 'min'
                        continue
                maximum = field.get('max')
                if is_finite_number(maximum):
                    above = numeric >= maximum if field.get('max_exclusive') else numeric > maximum
                    if above:
                        errors[name] = 'max'
                        continue

                precision = field.get('decimal_precision')
                if field_type == 'NUMERIC_INPUT' and isinstance(precision, int) and precision >= 0:
                    scaled = numeric * (10 ** precision)
                    if abs(scaled - round(scaled)) > FLOAT_EPSILON * max(1.0, abs(scaled)):
                        errors[name] = 'precision'

        return len(errors) == 0, errors


def init_form_values(fields: List[Dict[str, Any]]) -> Dict[str, Any]:
    result = {}
    for field in fields or []:
        if field.get('name'):
            default = field.get('default_value')
            result[field['name']] = '' if default is None else default
    return result


def sanitize_form_values(values: Optional[Dict[str, Any]], parameters: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    """Copy of the values with PASSWORD parameters masked, for logging."""
    if not values:
        return values
    secret_names = {p.get('name') for p in parameters or [] if isinstance(p, dict) and p.get('type') == 'PASSWORD'}
    if not secret_names:
        return values
    return {key: mask_token(str(value or '')) if key in secret_names else value for key, value in values.items()}


def coerce_form_value_for_submission(value: Any) -> Any:
    """
    Collapse a TEXT_OR_FILE composite value to what FME expects.

    ``{'mode': 'text', 'text': ...}`` becomes the text, ``{'mode': 'file',
    'file': ...}`` becomes the file path or name; everything else passes through.
    """
    if not isinstance(value, dict) or 'mode' not in value:
        return value
    if value['mode'] == 'file':
        file_value = value.get('file')
        if isinstance(file_value, dict):
            return file_value.get('path') or file_value.get('name') or ''
        return str(file_value) if file_value else ''
    if value['mode'] == 'text':
        return to_string_value(value.get('text')) or ''
    return value
