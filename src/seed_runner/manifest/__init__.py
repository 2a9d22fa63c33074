"""Seed manifest parsing, versioning and schema validation."""

from .model import (
    Manifest,
    JobInterface,
    InputFileDecl,
    InputJsonDecl,
    OutputFileDecl,
    OutputJsonDecl,
    SettingDecl,
    MountDecl,
    ScalarResource,
    ErrorMapping,
    find_manifest,
    load_manifest,
    parse_manifest_text,
    write_manifest,
    write_example_manifest,
    parse_image_name,
)
from .semver import SemVer
from .validation import (
    ValidationReport,
    validate_manifest,
    check_report,
    load_metadata_schema,
    supported_schema_versions,
)

__all__ = [
    # Model
    'Manifest',
    'JobInterface',
    'InputFileDecl',
    'InputJsonDecl',
    'OutputFileDecl',
    'OutputJsonDecl',
    'SettingDecl',
    'MountDecl',
    'ScalarResource',
    'ErrorMapping',
    'SemVer',
    # Loading / persisting
    'find_manifest',
    'load_manifest',
    'parse_manifest_text',
    'write_manifest',
    'write_example_manifest',
    'parse_image_name',
    # Validation
    'ValidationReport',
    'validate_manifest',
    'check_report',
    'load_metadata_schema',
    'supported_schema_versions',
]
