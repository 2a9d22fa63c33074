"""
Error taxonomy for seed_runner.

Every failure the engine reports is a SeedError subclass. The ``kind``
attribute names the failure category and is what the CLI prints alongside
the message. Errors raised after a container has run carry the partial
RunResult in ``result`` so callers can still inspect discovered outputs.
"""

from typing import Any, List, Optional


class SeedError(Exception):
    """Base class for all seed_runner failures."""

    kind = "SeedError"

    def __init__(self, message: str, details: Optional[List[str]] = None, result: Any = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])
        self.result = result

    def __str__(self) -> str:
        if not self.details:
            return self.message
        lines = [self.message] + [f"  - {d}" for d in self.details]
        return "\n".join(lines)


# --- Manifest ---

class ManifestNotFound(SeedError):
    kind = "NotFound"


class ManifestParseError(SeedError):
    kind = "ParseError"


class SchemaNotSupported(SeedError):
    kind = "SchemaNotSupported"


class ValidationFailed(SeedError):
    kind = "ValidationFailed"

    def __init__(self, message: str, report: Any = None, details: Optional[List[str]] = None):
        super().__init__(message, details=details)
        self.report = report


# --- Resolution ---

class MissingRequiredInput(SeedError):
    kind = "MissingRequiredInput"


class UnknownKey(SeedError):
    kind = "UnknownKey"


class TypeMismatch(SeedError):
    kind = "TypeMismatch"


class InvalidMount(SeedError):
    kind = "InvalidMount"


# --- External capabilities ---

class BuildFailed(SeedError):
    kind = "BuildFailed"


class ContainerFailed(SeedError):
    kind = "ContainerFailed"

    def __init__(self, message: str, exit_code: int, details: Optional[List[str]] = None, result: Any = None):
        super().__init__(message, details=details, result=result)
        self.exit_code = exit_code


class PushFailed(SeedError):
    kind = "PushFailed"


class RegistryError(SeedError):
    kind = "RegistryError"


class ImageNotFound(SeedError):
    kind = "NotFound"


class Cancelled(SeedError):
    kind = "Cancelled"


# --- Post-run ---

class OutputMissing(SeedError):
    kind = "OutputMissing"


class MetadataInvalid(SeedError):
    kind = "MetadataInvalid"


# --- Batch / publish ---

class BatchMappingError(SeedError):
    kind = "BatchMappingError"


class VersionConflict(SeedError):
    kind = "VersionConflict"


class InvalidBumpSpec(SeedError):
    kind = "InvalidBumpSpec"
