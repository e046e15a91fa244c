"""
Utility modules for FME Export Tool.

This package contains utility functions and helpers used throughout the application.

Modules:
    logger: Logging configuration and setup
    conversion: Value coercion helpers
    validations: Server URL, email and config validation
    translations: English message catalogue
    format: Byte, area, date/time and color formatting
    errors: Error records, error code mapping and abort linking
    network: Request instrumentation, URL sanitizing and query building
    geometry_converters: Esri polygon JSON to GeoJSON / WKT / Shapely conversion
"""

__version__ = '1.0.0'
