"""
Configuration package for FME Export Tool.

This package contains configuration loading, normalization and constants.

Modules:
    config_loader: Load and normalize the export configuration from JSON
    constants: Shared constants (limits, parameter types, error codes)
"""

__version__ = '1.0.0'
