"""Tests for utils.format."""

import pytest

from utils.format import (
    build_large_area_warning_message,
    build_support_hint_text,
    fme_date_time_to_input,
    fme_date_to_input,
    fme_time_to_input,
    format_area,
    format_byte_size,
    hex_to_rgb_array,
    input_to_fme_date,
    input_to_fme_date_time,
    input_to_fme_time,
    mask_email_for_display,
    normalized_rgb_to_hex,
    strip_error_label,
    strip_html_to_text,
)


@pytest.mark.parametrize('size, expected', [
    (0, '0 B'),
    (512, '512 B'),
    (1536, '1.5 KiB'),
    (20 * 1024, '20 KiB'),
    (5 * 1024 * 1024, '5.0 MiB'),
    (-1, None),
    ('12', None),
])
def test_format_byte_size(size, expected):
    assert format_byte_size(size) == expected


def test_format_area_metric():
    assert format_area(2_500_000) == '2.5 km²'
    assert format_area(1234) == '1,234 m²'
    assert format_area(0) == '0 m²'
    assert format_area(-5) == '0 m²'
    assert format_area('big') == '0 m²'


@pytest.mark.parametrize('area, spatial_reference, expected', [
    (1000, {'meters_per_unit': 0.3048, 'unit': 'esriFeet'}, '10,764 ft²'),
    (2 * 2_589_988.110336, {'meters_per_unit': 0.3048, 'unit': 'esriFeet'}, '2 mi²'),
    (1000, {'meters_per_unit': 0.30480061, 'unit': 'Foot_US'}, '10,764 ft²'),
    (1000, {'metersPerUnit': 0.3048006096, 'unit': 'Unknown'}, '10,764 ft²'),
    (50, {'meters_per_unit': 0.9144, 'unit': 'esriYards'}, '59.8 yd²'),
    (123_456_789, {'meters_per_unit': 1000, 'unit': 'esriKilometers'}, '123.46 km²'),
    (100, {'meters_per_unit': 2, 'unit': 'esriChains'}, '25 chains²'),
    (1234, {'meters_per_unit': 0, 'unit': 'esriFeet'}, '1,234 m²'),
    (0, {'meters_per_unit': 0.3048, 'unit': 'esriFeet'}, '0 ft²'),
])
def test_format_area_in_spatial_reference_units(area, spatial_reference, expected):
    assert format_area(area, spatial_reference) == expected


def test_large_area_warning_message():
    assert build_large_area_warning_message(None) is None
    assert '12 km²' in build_large_area_warning_message('12 km²')
    text = build_large_area_warning_message('150 km²', '100 km²')
    assert '150 km²' in text and '100 km²' in text


def test_mask_email_for_display():
    assert mask_email_for_display('anna.svensson@example.com') == 'an****@example.com'
    assert mask_email_for_display('a@example.com') == '**@example.com'
    assert mask_email_for_display('not-an-email') == 'not-an-email'


def test_support_hint_text():
    assert build_support_hint_text(support_email='help@example.com') == 'Contact support at help@example.com'
    assert build_support_hint_text(support_email=None, user_friendly='Try later') == 'Try later'
    assert build_support_hint_text() == ''


def test_strip_html_to_text():
    html_text = '<p>Hello&nbsp;<b>world</b></p><script>alert(1)</script> &#65;&#x42;'
    assert strip_html_to_text(html_text) == 'Hello world AB'


def test_strip_error_label():
    assert strip_error_label('Error: disk full') == 'disk full'
    assert strip_error_label('Warning - slow') == 'slow'
    assert strip_error_label('   ') == ''


def test_fme_date_conversion():
    assert fme_date_to_input('20240131') == '2024-01-31'
    assert fme_date_to_input('20241301') == ''
    assert input_to_fme_date('2024-01-31') == '20240131'


def test_fme_date_time_conversion():
    assert fme_date_time_to_input('20240131123045') == '2024-01-31T12:30:45'
    assert fme_date_time_to_input('202401311230') == '2024-01-31T12:30'
    assert input_to_fme_date_time('2024-01-31T12:30') == '20240131123000'
    assert input_to_fme_date_time('2024-01-31T12:30:45', '20240101000000.5+02:00') == '20240131123045.5+02:00'
    assert input_to_fme_date_time('2024-01-31') == ''


def test_fme_time_conversion():
    assert fme_time_to_input('123045') == '12:30:45'
    assert fme_time_to_input('1230') == '12:30'
    assert input_to_fme_time('12:30') == '123000'
    assert input_to_fme_time('xx:yy') == ''


def test_colour_helpers():
    assert hex_to_rgb_array('#ff8000') == (255, 128, 0)
    assert normalized_rgb_to_hex('1,0.5,0') == '#ff8000'
    assert normalized_rgb_to_hex('0,0,0,1') == '#000000'
    assert normalized_rgb_to_hex('') is None
