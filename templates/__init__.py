"""
HTML templates for FME Export Tool.

This package contains Jinja2 templates for the result map UI.

Templates:
    result_panel.html: Export result panel (title, message, info lines, download link)
"""

__version__ = '1.0.0'
