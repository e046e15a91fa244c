"""
Core modules for FME Export Tool.

This package contains the FME Flow client and the job submission workflow.

Modules:
    fme_client: FME Flow REST / webhook client and abort management
    webhook: Webhook URL and query parameter construction
    parameters: Workspace parameter to form field conversion
    submission: Service mode, parameter preparation and job submission
    result_view: Result, loading and error view assembly
    map_builder: Generate the interactive result map
    output_generator: Save output files and the result record
"""

__version__ = '1.0.0'
