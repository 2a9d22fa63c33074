"""
Run orchestrator - executes one seed container and discovers its outputs.

After the container exits, the output directory is scanned against the
manifest's declared outputs:

    outputs.files   glob ``pattern`` relative to the output directory;
                    each match may have a side-car <file>.metadata.json
                    which is validated against the metadata schema
    outputs.json    values read from <outputDir>/seed.outputs.json

Discovery runs even when the container exits non-zero, so partial results
are reported alongside ContainerFailed. A results_manifest.json summary is
written into the output directory after every run.

Usage:
    orchestrator = RunOrchestrator(DockerRuntime(), manifest)
    result = orchestrator.run(image, invocation)
    for artifact in result.artifacts:
        print(artifact.key, artifact.path, artifact.validated)
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..errors import ContainerFailed, MetadataInvalid, OutputMissing, SeedError
from ..manifest.model import Manifest
from ..manifest.validation import load_metadata_schema, validate_document
from ..resolve.interface import JSON_TYPES, ResolvedInvocation, default_output_dir, resolve_invocation
from ..runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".metadata.json"
OUTPUTS_JSON = "seed.outputs.json"
RESULTS_MANIFEST = "results_manifest.json"

# Files the engine itself reads or writes in an output directory
RESERVED_NAMES = (OUTPUTS_JSON, RESULTS_MANIFEST)


@dataclass(frozen=True)
class RunOptions:
    """Per-command run settings, passed by value."""
    remove_on_exit: bool = False
    quiet: bool = False
    repeat: int = 1
    metadata_schema: Optional[str] = None


@dataclass
class OutputArtifact:
    key: str
    declared_type: str
    path: Optional[Path] = None
    value: Any = None
    validated: bool = False
    metadata_path: Optional[Path] = None


@dataclass
class RunResult:
    image: str
    output_dir: Path
    exit_code: int
    artifacts: List[OutputArtifact] = field(default_factory=list)
    problems: List[SeedError] = field(default_factory=list)
    output: str = ""
    started: Optional[datetime] = None
    finished: Optional[datetime] = None
    error: Optional[SeedError] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.problems

    def artifact(self, key: str) -> Optional[OutputArtifact]:
        for artifact in self.artifacts:
            if artifact.key == key:
                return artifact
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'image': self.image,
            'status': 'SUCCEEDED' if self.succeeded else 'FAILED',
            'exitCode': self.exit_code,
            'started': self.started.isoformat() if self.started else None,
            'finished': self.finished.isoformat() if self.finished else None,
            'outputs': {
                'files': [
                    {
                        'name': a.key,
                        'path': str(a.path),
                        'validated': a.validated,
                        'metadata': str(a.metadata_path) if a.metadata_path else None,
                    }
                    for a in self.artifacts if a.path is not None
                ],
                'json': [
                    {'name': a.key, 'value': a.value, 'validated': a.validated}
                    for a in self.artifacts if a.path is None
                ],
            },
            'problems': [{'kind': p.kind, 'message': p.message} for p in self.problems],
        }


def _matches_type(value: Any, json_type: str) -> bool:
    expected = JSON_TYPES.get(json_type)
    if expected is None:
        return False
    if isinstance(value, bool) and json_type != 'boolean':
        return False
    return isinstance(value, expected)


class RunOrchestrator:
    """
    Executes containers for one manifest and checks their output contract.

    Given a ContainerRuntime and a Manifest, this class knows how to:
    1. Run a resolved invocation
    2. Discover declared output files and JSON values
    3. Validate side-car metadata documents
    4. Repeat a run into distinct output directories
    """

    def __init__(self, runtime: ContainerRuntime, manifest: Manifest):
        self.runtime = runtime
        self.manifest = manifest

    # =========================================================================
    # Output discovery
    # =========================================================================

    def _validate_sidecar(self, sidecar: Path, schema: Dict[str, Any]) -> List[str]:
        try:
            with open(sidecar, 'r') as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return [f"could not read {sidecar.name}: {e}"]
        return validate_document(document, schema)

    def discover_outputs(
        self,
        output_dir: Union[str, Path],
        metadata_schema: Optional[Union[str, Path]] = None,
    ) -> Tuple[List[OutputArtifact], List[SeedError]]:
        """
        Scan an output directory against the declared outputs.

        Args:
            output_dir: Host output directory of a finished run
            metadata_schema: Schema file overriding the bundled metadata schema

        Returns:
            Tuple of (artifacts, problems). Problems are OutputMissing and
            MetadataInvalid errors; nothing is raised here.
        """
        output_dir = Path(output_dir)
        interface = self.manifest.interface
        artifacts: List[OutputArtifact] = []
        problems: List[SeedError] = []
        metadata: Optional[Dict[str, Any]] = None

        # --- Output files ---
        for decl in interface.output_files:
            matches = sorted(
                p for p in output_dir.glob(decl.pattern)
                if p.is_file() and not p.name.endswith(METADATA_SUFFIX) and p.name not in RESERVED_NAMES
            )
            if not matches:
                if decl.required:
                    problems.append(OutputMissing(
                        f"Required output '{decl.name}' matching '{decl.pattern}' not found in {output_dir}"
                    ))
                continue
            if len(matches) > 1 and not decl.multiple:
                problems.append(OutputMissing(
                    f"Output '{decl.name}' matched {len(matches)} files but is not declared multiple",
                    details=[m.name for m in matches],
                ))

            for path in matches:
                artifact = OutputArtifact(key=decl.name, declared_type=decl.media_type or 'file', path=path)
                sidecar = path.with_name(path.name + METADATA_SUFFIX)
                if sidecar.is_file():
                    if metadata is None:
                        metadata = load_metadata_schema(metadata_schema)
                    errors = self._validate_sidecar(sidecar, metadata)
                    artifact.metadata_path = sidecar
                    if errors:
                        problems.append(MetadataInvalid(
                            f"Side-car metadata {sidecar.name} for output '{decl.name}' is invalid",
                            details=errors,
                        ))
                    else:
                        artifact.validated = True
                else:
                    artifact.validated = True
                artifacts.append(artifact)

        # --- JSON outputs ---
        if interface.output_json:
            values: Dict[str, Any] = {}
            outputs_file = output_dir / OUTPUTS_JSON
            if outputs_file.is_file():
                try:
                    with open(outputs_file, 'r') as f:
                        values = json.load(f)
                except json.JSONDecodeError as e:
                    problems.append(MetadataInvalid(f"Could not parse {outputs_file}: {e}"))
                if not isinstance(values, dict):
                    problems.append(MetadataInvalid(f"{outputs_file} must contain a JSON object"))
                    values = {}

            for decl in interface.output_json:
                if decl.lookup_key not in values:
                    if decl.required:
                        problems.append(OutputMissing(
                            f"Required JSON output '{decl.name}' (key '{decl.lookup_key}') not found in {OUTPUTS_JSON}"
                        ))
                    continue
                value = values[decl.lookup_key]
                ok = _matches_type(value, decl.type)
                if not ok:
                    problems.append(MetadataInvalid(
                        f"JSON output '{decl.name}' should be {decl.type}, got {type(value).__name__}"
                    ))
                artifacts.append(OutputArtifact(key=decl.name, declared_type=decl.type, value=value, validated=ok))

        return artifacts, problems

    def write_results_manifest(self, result: RunResult) -> Path:
        path = result.output_dir / RESULTS_MANIFEST
        with open(path, 'w') as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        return path

    # =========================================================================
    # Execution
    # =========================================================================

    def run(
        self,
        image: str,
        invocation: ResolvedInvocation,
        metadata_schema: Optional[Union[str, Path]] = None,
        quiet: bool = False,
    ) -> RunResult:
        """
        Execute one container and check its outputs.

        Args:
            image: Image reference to run
            invocation: Resolved environment, mounts and output directory
            metadata_schema: Side-car metadata schema override
            quiet: Suppress pass-through of container output

        Returns:
            RunResult for a clean run

        Raises:
            ContainerFailed: Non-zero exit (outputs are still discovered)
            OutputMissing / MetadataInvalid: Output contract violated
        """
        logger.info("Running %s -> %s", image, invocation.output_dir)
        logger.debug("Environment: %s", invocation.masked_env())

        started = datetime.now(timezone.utc)
        outcome = self.runtime.run(
            image,
            env=invocation.env,
            mounts=[m.as_docker_arg() for m in invocation.mounts],
            remove_on_exit=invocation.remove_on_exit,
            command=invocation.command,
            extra_args=invocation.runtime_args,
            quiet=quiet,
        )
        finished = datetime.now(timezone.utc)

        artifacts, problems = self.discover_outputs(invocation.output_dir, metadata_schema)
        result = RunResult(
            image=image,
            output_dir=invocation.output_dir,
            exit_code=outcome.exit_code,
            artifacts=artifacts,
            problems=problems,
            output=outcome.output,
            started=started,
            finished=finished,
        )
        self.write_results_manifest(result)

        if outcome.exit_code != 0:
            mapping = self.manifest.error_for_code(outcome.exit_code)
            message = f"Container {image} exited with code {outcome.exit_code}"
            if mapping:
                message += f" ({mapping.name}: {mapping.title or mapping.description})"
            details = [str(p) for p in problems]
            if quiet:
                details.extend(outcome.output.splitlines()[-10:])
            result.error = ContainerFailed(message, exit_code=outcome.exit_code, details=details, result=result)
            raise result.error

        if problems:
            first = problems[0]
            first.result = result
            first.details.extend(str(p) for p in problems[1:])
            result.error = first
            raise first

        logger.info("Run of %s succeeded with %d output(s)", image, len(artifacts))
        return result

    def execute(
        self,
        image: str,
        inputs: Optional[Mapping[str, str]] = None,
        json_inputs: Optional[Mapping[str, str]] = None,
        settings: Optional[Mapping[str, str]] = None,
        mounts: Optional[Mapping[str, str]] = None,
        output_dir: Optional[Union[str, Path]] = None,
        options: RunOptions = RunOptions(),
    ) -> List[RunResult]:
        """
        Resolve and run ``options.repeat`` times.

        With more than one repetition every run gets its own output
        directory (``<output_dir>-<i>``), so a failed repetition never
        touches the outputs of another and the loop continues. Resolution
        errors are raised immediately since every repetition would repeat them.

        Returns:
            One RunResult per repetition

        Raises:
            SeedError: For a single run, the run's own error; for repeated
                runs, a summary once all repetitions have finished.
        """
        repeat = max(int(options.repeat), 1)

        def resolve(out):
            return resolve_invocation(
                self.manifest, inputs, json_inputs, settings, mounts,
                output_dir=out, remove_on_exit=options.remove_on_exit,
            )

        if repeat == 1:
            invocation = resolve(output_dir)
            return [self.run(image, invocation, options.metadata_schema, options.quiet)]

        base = Path(output_dir) if output_dir else default_output_dir(self.manifest)
        results = []
        failures = []
        for i in range(repeat):
            invocation = resolve(f"{base}-{i}")
            try:
                results.append(self.run(image, invocation, options.metadata_schema, options.quiet))
            except (ContainerFailed, OutputMissing, MetadataInvalid) as e:
                logger.warning("Repetition %d of %d failed: %s", i + 1, repeat, e.message)
                results.append(e.result)
                failures.append(f"repetition {i}: {e.kind}: {e.message}")

        if failures:
            raise SeedError(f"{len(failures)} of {repeat} repetitions failed", details=failures, result=results)
        return results
