"""
Seed manifest domain model.

A Manifest is parsed once from a seed.manifest.json document and never
mutated afterwards. Version bumps go through ``with_versions`` which returns
a new Manifest; ``write_manifest`` is the only function that writes a
manifest back to disk.

Example:
    manifest = load_manifest('algorithms/watermark')
    print(manifest.image_name)          # watermark-0.1.0-seed:1.0.0
    for decl in manifest.interface.input_files:
        print(decl.name, decl.required)
"""

import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config import DEFAULT_MANIFEST_NAME
from ..errors import ManifestNotFound, ManifestParseError
from .semver import SemVer

SCHEMA_DIR = Path(__file__).parent / "schemas"
EXAMPLE_MANIFEST = SCHEMA_DIR / "seed.manifest.example.json"

IMAGE_SUFFIX = "-seed"
IMAGE_NAME_PATTERN = re.compile(
    r"^(?:(?P<prefix>.+)/)?(?P<name>[a-z0-9][a-z0-9-]*?)-(?P<job_version>\d+\.\d+\.\d+[0-9A-Za-z.+-]*?)"
    r"-seed:(?P<package_version>\d+\.\d+\.\d+[0-9A-Za-z.+-]*)$"
)


# =============================================================================
# Interface declarations
# =============================================================================

@dataclass(frozen=True)
class InputFileDecl:
    name: str
    required: bool = True
    media_types: Tuple[str, ...] = ()
    multiple: bool = False
    partial: bool = False


@dataclass(frozen=True)
class InputJsonDecl:
    name: str
    type: str
    required: bool = True


@dataclass(frozen=True)
class OutputFileDecl:
    name: str
    pattern: str
    media_type: str = ""
    multiple: bool = False
    required: bool = True


@dataclass(frozen=True)
class OutputJsonDecl:
    name: str
    type: str
    key: str = ""
    required: bool = True

    @property
    def lookup_key(self) -> str:
        """Key in seed.outputs.json (falls back to the declaration name)."""
        return self.key or self.name


@dataclass(frozen=True)
class SettingDecl:
    name: str
    secret: bool = False
    required: bool = True


@dataclass(frozen=True)
class MountDecl:
    name: str
    path: str
    mode: str = "ro"
    required: bool = True


@dataclass(frozen=True)
class ScalarResource:
    name: str
    value: float
    input_multiplier: Optional[float] = None


@dataclass(frozen=True)
class ErrorMapping:
    """Maps a container exit code to a named, documented failure."""
    code: int
    name: str
    title: str = ""
    description: str = ""
    category: str = "job"


@dataclass(frozen=True)
class JobInterface:
    command: str = ""
    input_files: Tuple[InputFileDecl, ...] = ()
    input_json: Tuple[InputJsonDecl, ...] = ()
    output_files: Tuple[OutputFileDecl, ...] = ()
    output_json: Tuple[OutputJsonDecl, ...] = ()
    settings: Tuple[SettingDecl, ...] = ()
    mounts: Tuple[MountDecl, ...] = ()
    resources: Tuple[ScalarResource, ...] = ()

    def declared_names(self) -> List[str]:
        """All declaration names in manifest order (duplicates preserved)."""
        groups = (self.input_files, self.input_json, self.output_files,
                  self.output_json, self.settings, self.mounts)
        return [decl.name for group in groups for decl in group]

    def resource(self, name: str) -> Optional[ScalarResource]:
        for res in self.resources:
            if res.name == name:
                return res
        return None


# =============================================================================
# Manifest
# =============================================================================

@dataclass(frozen=True)
class Manifest:
    """Typed, immutable view of a seed manifest document."""
    name: str
    package_version: SemVer
    job_version: SemVer
    interface: JobInterface
    schema_version: str
    title: str = ""
    description: str = ""
    maintainer_email: str = ""
    timeout: Optional[int] = None
    errors: Tuple[ErrorMapping, ...] = ()
    source: str = field(default="{}", repr=False, compare=False)

    @classmethod
    def from_document(cls, document: Any) -> 'Manifest':
        """
        Build a Manifest from a parsed JSON document.

        Parsing is lenient about optional structure so that schema
        validation can report problems precisely; only a document that
        cannot be interpreted at all raises ManifestParseError.
        """
        if not isinstance(document, dict):
            raise ManifestParseError("Manifest must be a JSON object")
        job = document.get('job')
        if not isinstance(job, dict):
            raise ManifestParseError("Manifest is missing the 'job' object")

        try:
            package_version = SemVer.parse(job.get('packageVersion', ''))
            job_version = SemVer.parse(job.get('jobVersion', ''))
        except ValueError as e:
            raise ManifestParseError(str(e))

        try:
            interface = _parse_interface(job.get('interface') or {}, job.get('resources') or {})
            errors = tuple(
                ErrorMapping(
                    code=int(e['code']),
                    name=str(e.get('name', '')),
                    title=str(e.get('title', '')),
                    description=str(e.get('description', '')),
                    category=str(e.get('category', 'job')),
                )
                for e in job.get('errors') or []
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ManifestParseError(f"Malformed job interface: {e}")

        maintainer = job.get('maintainer') or {}
        return cls(
            name=str(job.get('name', '')),
            package_version=package_version,
            job_version=job_version,
            interface=interface,
            schema_version=str(document.get('seedVersion', '')),
            title=str(job.get('title', '')),
            description=str(job.get('description', '')),
            maintainer_email=str(maintainer.get('email', '')) if isinstance(maintainer, dict) else '',
            timeout=job.get('timeout'),
            errors=errors,
            source=json.dumps(document, separators=(',', ':')),
        )

    def to_document(self) -> Dict[str, Any]:
        """Return a fresh copy of the source document."""
        return json.loads(self.source)

    def with_versions(
        self,
        package_version: Optional[SemVer] = None,
        job_version: Optional[SemVer] = None,
    ) -> 'Manifest':
        """Return a new Manifest with the given versions substituted."""
        document = self.to_document()
        if package_version is not None:
            document['job']['packageVersion'] = str(package_version)
        if job_version is not None:
            document['job']['jobVersion'] = str(job_version)
        return Manifest.from_document(document)

    @property
    def image_name(self) -> str:
        """Deterministic image reference: {name}-{jobVersion}-seed:{packageVersion}."""
        return f"{self.repository}:{self.package_version}"

    @property
    def repository(self) -> str:
        return f"{self.name}-{self.job_version}{IMAGE_SUFFIX}"

    def error_for_code(self, code: int) -> Optional[ErrorMapping]:
        for mapping in self.errors:
            if mapping.code == code:
                return mapping
        return None


def _parse_interface(interface: Dict[str, Any], resources: Dict[str, Any]) -> JobInterface:
    inputs = interface.get('inputs') or {}
    outputs = interface.get('outputs') or {}

    input_files = tuple(
        InputFileDecl(
            name=f['name'],
            required=bool(f.get('required', True)),
            media_types=tuple(f.get('mediaTypes') or ()),
            multiple=bool(f.get('multiple', False)),
            partial=bool(f.get('partial', False)),
        )
        for f in inputs.get('files') or []
    )
    input_json = tuple(
        InputJsonDecl(name=j['name'], type=j.get('type', 'string'), required=bool(j.get('required', True)))
        for j in inputs.get('json') or []
    )
    output_files = tuple(
        OutputFileDecl(
            name=f['name'],
            pattern=f.get('pattern', '*'),
            media_type=f.get('mediaType', ''),
            multiple=bool(f.get('multiple', False)),
            required=bool(f.get('required', True)),
        )
        for f in outputs.get('files') or []
    )
    output_json = tuple(
        OutputJsonDecl(
            name=j['name'],
            type=j.get('type', 'string'),
            key=j.get('key', ''),
            required=bool(j.get('required', True)),
        )
        for j in outputs.get('json') or []
    )
    settings = tuple(
        SettingDecl(name=s['name'], secret=bool(s.get('secret', False)), required=bool(s.get('required', True)))
        for s in interface.get('settings') or []
    )
    mounts = tuple(
        MountDecl(
            name=m['name'],
            path=m.get('path', ''),
            mode=m.get('mode', 'ro'),
            required=bool(m.get('required', True)),
        )
        for m in interface.get('mounts') or []
    )
    scalars = tuple(
        ScalarResource(
            name=r['name'],
            value=float(r['value']),
            input_multiplier=float(r['inputMultiplier']) if r.get('inputMultiplier') is not None else None,
        )
        for r in resources.get('scalar') or []
    )
    return JobInterface(
        command=interface.get('command', ''),
        input_files=input_files,
        input_json=input_json,
        output_files=output_files,
        output_json=output_json,
        settings=settings,
        mounts=mounts,
        resources=scalars,
    )


# =============================================================================
# Loading and persisting
# =============================================================================

def find_manifest(path: Union[str, Path] = ".", manifest_name: str = DEFAULT_MANIFEST_NAME) -> Path:
    """
    Resolve a manifest path.

    Args:
        path: Manifest file, or a directory containing one
        manifest_name: File name looked up inside a directory

    Returns:
        Path to an existing manifest file
    """
    path = Path(path)
    if path.is_dir():
        path = path / manifest_name
    if not path.is_file():
        raise ManifestNotFound(f"Seed manifest not found: {path}")
    return path


def parse_manifest_text(text: str, origin: str = "<string>") -> Manifest:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestParseError(f"Could not parse {origin}: {e}")
    return Manifest.from_document(document)


def load_manifest(path: Union[str, Path] = ".", manifest_name: str = DEFAULT_MANIFEST_NAME) -> Manifest:
    """Read and parse a manifest file (or the manifest inside a directory)."""
    manifest_path = find_manifest(path, manifest_name)
    with open(manifest_path, 'r') as f:
        text = f.read()
    return parse_manifest_text(text, origin=str(manifest_path))


def write_manifest(manifest: Manifest, path: Union[str, Path]) -> Path:
    """
    Persist a manifest, replacing the prior document atomically.

    Returns:
        Path written
    """
    path = Path(path)
    content = json.dumps(manifest.to_document(), indent=2) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=".seed-", suffix=".json")
    try:
        with os.fdopen(fd, 'w') as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return path


def example_manifest() -> Dict[str, Any]:
    """Return the bundled example manifest document."""
    with open(EXAMPLE_MANIFEST, 'r') as f:
        return json.load(f)


def write_example_manifest(directory: Union[str, Path], manifest_name: str = DEFAULT_MANIFEST_NAME) -> Path:
    """
    Create an example manifest in a directory (seed init).

    Raises:
        FileExistsError: If a manifest already exists there
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / manifest_name
    if target.exists():
        raise FileExistsError(f"Existing manifest found at {target}; not overwriting")

    with open(target, 'w') as f:
        json.dump(example_manifest(), f, indent=2)
        f.write("\n")
    return target


def parse_image_name(image: str) -> Optional[Dict[str, str]]:
    """
    Split a seed image reference into its parts.

    Returns:
        Dict with prefix, name, job_version, package_version, or None if
        the reference does not follow the seed naming scheme.

    Examples:
        >>> parse_image_name('my-job-1.0.0-seed:2.1.0')['name']
        'my-job'
    """
    match = IMAGE_NAME_PATTERN.match(image)
    if not match:
        return None
    return {k: (v or '') for k, v in match.groupdict().items()}
