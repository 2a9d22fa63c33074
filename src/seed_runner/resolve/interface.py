"""
Interface resolution: manifest declarations + supplied values -> container invocation.

The resolver is strict. Every supplied key must match a declaration and
every required declaration must be supplied; all problems are detected
before anything touches the filesystem, so a failed resolution never
creates an output directory or starts a container.

Container-side layout:
    /<INPUT_KEY>/<basename>   read-only file input (env INPUT_KEY points here)
    /<INPUT_KEY>              read-only directory input (multiple: true)
    <mount.path>              declared mounts, mode from the manifest
    /output                   read-write job output directory (env OUTPUT_DIR)
"""

import json
import logging
import math
import mimetypes
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from string import Template
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from ..errors import InvalidMount, ManifestParseError, MissingRequiredInput, TypeMismatch, UnknownKey
from ..manifest.model import InputJsonDecl, Manifest

logger = logging.getLogger(__name__)

OUTPUT_DIR_ENV = "OUTPUT_DIR"
OUTPUT_DIR_CONTAINER_PATH = "/output"

JSON_TYPES = {
    'string': (str,),
    'integer': (int,),
    'number': (int, float),
    'boolean': (bool,),
    'object': (dict,),
    'array': (list,),
}

# Docker flags derived from scalar resources (MiB values for memory)
RESOURCE_FLAGS = {
    'cpus': ('--cpus', lambda v: f"{v:g}"),
    'mem': ('--memory', lambda v: f"{int(math.ceil(v))}m"),
    'sharedMem': ('--shm-size', lambda v: f"{int(math.ceil(v))}m"),
}


@dataclass(frozen=True)
class VolumeBinding:
    host_path: str
    container_path: str
    mode: str = "ro"

    def as_docker_arg(self) -> str:
        return f"{self.host_path}:{self.container_path}:{self.mode}"


@dataclass(frozen=True)
class ResolvedInvocation:
    """Concrete parameters for one container run."""
    env: Dict[str, str]
    mounts: Tuple[VolumeBinding, ...]
    output_dir: Path
    remove_on_exit: bool = False
    command: Tuple[str, ...] = ()
    runtime_args: Tuple[str, ...] = ()
    inputs: Dict[str, str] = field(default_factory=dict)
    secret_keys: FrozenSet[str] = frozenset()

    def masked_env(self) -> Dict[str, str]:
        """Environment with secret settings replaced, for logging."""
        return {k: ('*****' if k in self.secret_keys else v) for k, v in self.env.items()}


def parse_key_values(values: Optional[Iterable[str]], what: str = "value") -> Dict[str, str]:
    """
    Parse KEY=VALUE strings as given on the command line.

    Empty strings are ignored. A later value for the same key replaces an
    earlier one.

    Raises:
        UnknownKey: If an entry has no '=' or an empty key
    """
    parsed: Dict[str, str] = {}
    for item in values or []:
        if not item:
            continue
        key, sep, value = item.partition('=')
        key = key.strip()
        if not sep or not key:
            raise UnknownKey(f"Malformed {what} '{item}': expected KEY=VALUE")
        if key in parsed:
            logger.warning("%s '%s' supplied more than once; using the last value", what, key)
        parsed[key] = value
    return parsed


def default_output_dir(manifest: Manifest, base_dir: Union[str, Path] = ".", now: Optional[datetime] = None) -> Path:
    """output-<name>-<UTC timestamp> under base_dir."""
    now = now or datetime.now(timezone.utc)
    return Path(base_dir) / f"output-{manifest.name}-{now.strftime('%Y%m%dT%H%M%SZ')}"


def coerce_json_value(decl: InputJsonDecl, raw: str) -> str:
    """
    Check a supplied JSON input against its declared type.

    Returns:
        The environment variable value: strings verbatim, everything else
        as compact JSON.
    """
    if decl.type == 'string':
        return raw

    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise TypeMismatch(f"JSON input '{decl.name}' is not valid JSON for type {decl.type}: {raw!r}")

    expected = JSON_TYPES.get(decl.type)
    if expected is None:
        raise TypeMismatch(f"JSON input '{decl.name}' declares unknown type '{decl.type}'")
    # bool is an int subclass; keep booleans out of numeric types
    if isinstance(value, bool) and decl.type != 'boolean':
        raise TypeMismatch(f"JSON input '{decl.name}' expects {decl.type}, got boolean")
    if not isinstance(value, expected):
        raise TypeMismatch(
            f"JSON input '{decl.name}' expects {decl.type}, got {type(value).__name__}"
        )
    return json.dumps(value, separators=(',', ':'))


def expand_command(command: str, env: Mapping[str, str]) -> Tuple[str, ...]:
    """
    Split a command template into argv, then substitute ${VAR} references.

    Splitting happens before substitution, so a value containing spaces or
    quotes stays a single argument.

    Raises:
        ManifestParseError: If the template itself has unbalanced quotes
    """
    try:
        tokens = shlex.split(command)
    except ValueError as e:
        raise ManifestParseError(f"Command template cannot be split into arguments: {e}",
                                 details=[command])
    return tuple(Template(token).safe_substitute(env) for token in tokens)


def _path_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    return sum(p.stat().st_size for p in path.rglob('*') if p.is_file())


def _check_unknown(manifest: Manifest, supplied: Mapping[str, Mapping[str, str]]) -> None:
    interface = manifest.interface
    declared = {
        'input': {d.name for d in interface.input_files},
        'json input': {d.name for d in interface.input_json},
        'setting': {d.name for d in interface.settings},
        'mount': {d.name for d in interface.mounts},
    }
    unknown = []
    for what, values in supplied.items():
        for key in values:
            if key not in declared[what]:
                unknown.append(f"{what} '{key}' is not declared by {manifest.name}")
    if unknown:
        raise UnknownKey(f"Unknown keys supplied for job {manifest.name}", details=unknown)


def resolve_invocation(
    manifest: Manifest,
    inputs: Optional[Mapping[str, str]] = None,
    json_inputs: Optional[Mapping[str, str]] = None,
    settings: Optional[Mapping[str, str]] = None,
    mounts: Optional[Mapping[str, str]] = None,
    output_dir: Optional[Union[str, Path]] = None,
    remove_on_exit: bool = False,
) -> ResolvedInvocation:
    """
    Resolve a job interface into a concrete invocation.

    Args:
        manifest: Validated manifest
        inputs: Input file key -> host path
        json_inputs: JSON input key -> raw value
        settings: Setting name -> value
        mounts: Mount name -> absolute host path
        output_dir: Host output directory (default: output-<name>-<timestamp>)
        remove_on_exit: Remove the container after it exits

    Returns:
        ResolvedInvocation

    Raises:
        UnknownKey, MissingRequiredInput, TypeMismatch, InvalidMount
    """
    inputs = dict(inputs or {})
    json_inputs = dict(json_inputs or {})
    settings = dict(settings or {})
    mounts = dict(mounts or {})
    interface = manifest.interface

    _check_unknown(manifest, {
        'input': inputs, 'json input': json_inputs, 'setting': settings, 'mount': mounts,
    })

    missing = []
    env: Dict[str, str] = {}
    bindings: List[VolumeBinding] = []
    input_bytes = 0

    # --- File inputs ---
    for decl in interface.input_files:
        supplied = inputs.get(decl.name)
        if supplied is None:
            if decl.required:
                missing.append(f"input file '{decl.name}'")
            continue

        host = Path(supplied).expanduser().resolve()
        if not host.exists():
            raise MissingRequiredInput(f"Input '{decl.name}' not found: {host}")

        if host.is_dir():
            if not decl.multiple:
                raise TypeMismatch(f"Input '{decl.name}' expects a single file but {host} is a directory")
            container_path = f"/{decl.name}"
        else:
            if decl.media_types:
                guessed, _ = mimetypes.guess_type(host.name)
                if guessed and guessed not in decl.media_types:
                    raise TypeMismatch(
                        f"Input '{decl.name}' expects one of {list(decl.media_types)}, "
                        f"but {host.name} looks like {guessed}"
                    )
            container_path = f"/{decl.name}/{host.name}"

        env[decl.name] = container_path
        bindings.append(VolumeBinding(str(host), container_path, "ro"))
        input_bytes += _path_size(host)

    # --- JSON inputs ---
    for decl in interface.input_json:
        raw = json_inputs.get(decl.name)
        if raw is None:
            if decl.required:
                missing.append(f"json input '{decl.name}'")
            continue
        env[decl.name] = coerce_json_value(decl, raw)

    # --- Settings ---
    secret_keys = set()
    for decl in interface.settings:
        value = settings.get(decl.name)
        if value is None:
            if decl.required:
                missing.append(f"setting '{decl.name}'")
            continue
        env[decl.name] = value
        if decl.secret:
            secret_keys.add(decl.name)

    # --- Mounts ---
    for decl in interface.mounts:
        host_value = mounts.get(decl.name)
        if host_value is None:
            if decl.required:
                missing.append(f"mount '{decl.name}'")
            continue
        host = Path(host_value).expanduser()
        if not host.is_absolute():
            raise InvalidMount(f"Mount '{decl.name}' must be an absolute path: {host_value}")
        if not host.exists():
            raise InvalidMount(f"Mount '{decl.name}' does not exist: {host_value}")
        bindings.append(VolumeBinding(str(host), decl.path, decl.mode))

    if missing:
        raise MissingRequiredInput(
            f"Missing required values for job {manifest.name}",
            details=missing,
        )

    # --- Output directory (first filesystem side effect) ---
    out = Path(output_dir) if output_dir else default_output_dir(manifest)
    out = out.expanduser().resolve()
    if out.exists() and any(out.iterdir()):
        logger.info("Output directory %s already has content; leaving it in place", out)
    out.mkdir(parents=True, exist_ok=True)
    env[OUTPUT_DIR_ENV] = OUTPUT_DIR_CONTAINER_PATH
    bindings.append(VolumeBinding(str(out), OUTPUT_DIR_CONTAINER_PATH, "rw"))

    # --- Resources ---
    input_mib = input_bytes / (1024.0 * 1024.0)
    runtime_args: List[str] = []
    for res in interface.resources:
        value = res.value
        if res.input_multiplier is not None:
            value += res.input_multiplier * input_mib
        env[f"ALLOCATED_{res.name.upper()}"] = f"{value:g}"
        if res.name in RESOURCE_FLAGS:
            flag, fmt = RESOURCE_FLAGS[res.name]
            runtime_args.extend([flag, fmt(value)])

    command = expand_command(interface.command, env) if interface.command else ()

    return ResolvedInvocation(
        env=env,
        mounts=tuple(bindings),
        output_dir=out,
        remove_on_exit=remove_on_exit,
        command=command,
        runtime_args=tuple(runtime_args),
        inputs={k: str(v) for k, v in inputs.items()},
        secret_keys=frozenset(secret_keys),
    )
