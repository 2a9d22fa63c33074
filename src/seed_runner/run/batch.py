"""
Batch execution over a directory tree.

A batch mapping ties every file input of a job to a file name pattern.
Mapping files are YAML or JSON:

    directory: data/scenes          # optional, relative to the mapping file
    inputs:
      INPUT_IMAGE: "*.png"          # primary key: one item per match
      INPUT_MASK: "{stem}_mask.tif" # resolved next to the primary file

or CSV, where the header names the input keys and every following row
lists one file per key (relative to the batch directory).

Each item moves Pending -> Running -> Succeeded | Failed, or straight from
Pending to Skipped when its required inputs cannot all be located. A failed
item never stops the batch; results stay in discovery order.
"""

import csv
import glob
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from ..errors import BatchMappingError, Cancelled, SeedError
from ..manifest.model import Manifest
from ..resolve.interface import default_output_dir, resolve_invocation
from ..runtime.base import ContainerRuntime
from .orchestrator import RESERVED_NAMES, RESULTS_MANIFEST, RunOptions, RunOrchestrator, RunResult

logger = logging.getLogger(__name__)

BATCH_RESULTS = "batch_results.json"
STEM_PLACEHOLDER = "{stem}"

# Files the engine writes; never treated as batch inputs
ENGINE_FILES = RESERVED_NAMES + (BATCH_RESULTS,)


# =============================================================================
# Mapping
# =============================================================================

@dataclass(frozen=True)
class BatchMapping:
    """Input key -> file pattern mapping (or explicit CSV rows) for one batch."""
    directory: Path
    input_patterns: Dict[str, str] = field(default_factory=dict)
    rows: Optional[List[Dict[str, str]]] = None

    @property
    def keys(self) -> List[str]:
        if self.rows is not None:
            return list(self.rows[0]) if self.rows else []
        return list(self.input_patterns)


def default_batch_mapping(manifest: Manifest, directory: Union[str, Path]) -> BatchMapping:
    """Map the single file input of a job to every file in the directory."""
    file_inputs = manifest.interface.input_files
    if len(file_inputs) != 1:
        raise BatchMappingError(
            f"Job {manifest.name} declares {len(file_inputs)} file inputs; "
            "a batch mapping file is required unless exactly one is declared"
        )
    return BatchMapping(directory=Path(directory), input_patterns={file_inputs[0].name: "*"})


def _check_keys(manifest: Manifest, keys: List[str], origin: str) -> None:
    declared = {d.name for d in manifest.interface.input_files}
    unknown = [k for k in keys if k not in declared]
    if unknown:
        raise BatchMappingError(
            f"Batch mapping {origin} names keys that are not file inputs of {manifest.name}",
            details=unknown,
        )
    unmapped = [d.name for d in manifest.interface.input_files if d.required and d.name not in keys]
    if unmapped:
        raise BatchMappingError(
            f"Batch mapping {origin} does not map every required file input",
            details=unmapped,
        )


def load_batch_mapping(
    path: Union[str, Path],
    manifest: Manifest,
    directory: Optional[Union[str, Path]] = None,
) -> BatchMapping:
    """
    Load a batch mapping file.

    Args:
        path: YAML, JSON or CSV mapping file
        manifest: Manifest whose file inputs the mapping must cover
        directory: Batch directory; overrides the one in the file. Without
            either, the mapping file's own directory is used.

    Returns:
        BatchMapping
    """
    path = Path(path)
    if not path.is_file():
        raise BatchMappingError(f"Batch mapping file not found: {path}")

    if path.suffix.lower() == '.csv':
        with open(path, 'r', newline='') as f:
            reader = csv.DictReader(f)
            keys = [k.strip() for k in (reader.fieldnames or [])]
            rows = [
                {k.strip(): (v or '').strip() for k, v in row.items() if k is not None}
                for row in reader
            ]
        if not keys:
            raise BatchMappingError(f"CSV batch mapping {path} has no header row")
        _check_keys(manifest, keys, str(path))
        batch_dir = Path(directory) if directory else path.parent
        return BatchMapping(directory=batch_dir, rows=rows)

    with open(path, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise BatchMappingError(f"Could not parse batch mapping {path}: {e}")

    if not isinstance(data, dict) or not isinstance(data.get('inputs'), dict):
        raise BatchMappingError(f"Batch mapping {path} must contain an 'inputs' mapping of key: pattern")

    patterns = {str(k): str(v) for k, v in data['inputs'].items()}
    _check_keys(manifest, list(patterns), str(path))

    if directory:
        batch_dir = Path(directory)
    elif data.get('directory'):
        batch_dir = path.parent / str(data['directory'])
    else:
        batch_dir = path.parent
    return BatchMapping(directory=batch_dir, input_patterns=patterns)


# =============================================================================
# Items
# =============================================================================

class ItemState(Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


ALLOWED_TRANSITIONS = {
    ItemState.PENDING: (ItemState.RUNNING, ItemState.SKIPPED),
    ItemState.RUNNING: (ItemState.SUCCEEDED, ItemState.FAILED),
}


@dataclass
class BatchItemResult:
    """Outcome of one batch item."""
    name: str
    inputs: Dict[str, str]
    state: ItemState = ItemState.PENDING
    error: Optional[str] = None
    missing: List[str] = field(default_factory=list)
    output_dir: Optional[Path] = None
    run_result: Optional[RunResult] = None

    def transition(self, state: ItemState) -> None:
        if state not in ALLOWED_TRANSITIONS.get(self.state, ()):
            raise ValueError(f"Batch item {self.name}: cannot move from {self.state.value} to {state.value}")
        self.state = state

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'state': self.state.value,
            'inputs': self.inputs,
            'outputDir': str(self.output_dir) if self.output_dir else None,
            'error': self.error,
        }


def _item_name(relative: Path) -> str:
    # Relative path with extension, so distinct inputs never share an output directory
    return relative.as_posix()


def _is_engine_output(path: Path) -> bool:
    return (path / BATCH_RESULTS).exists() or (path / RESULTS_MANIFEST).exists()


def discover_items(
    mapping: BatchMapping,
    manifest: Manifest,
    exclude: Optional[Union[str, Path]] = None,
) -> List[BatchItemResult]:
    """
    Find the input sets of a batch, in directory traversal order.

    Items whose required inputs cannot all be located are returned with
    ``missing`` filled in; the runner marks them Skipped. The walk does not
    enter ``exclude`` (the batch output root) or any directory holding an
    earlier run's results, and never treats the engine's own summary files
    as inputs.
    """
    directory = mapping.directory
    if not directory.is_dir():
        raise BatchMappingError(f"Batch directory not found: {directory}")
    required = {d.name for d in manifest.interface.input_files if d.required}

    if mapping.rows is not None:
        return _items_from_rows(mapping, required)

    keys = mapping.keys
    primary = next((k for k in keys if k in required), keys[0])
    secondary = [k for k in keys if k != primary]
    items = []

    excluded = Path(exclude).resolve() if exclude else None

    for root, dirs, files in os.walk(directory):
        dirs[:] = sorted(
            d for d in dirs
            if (Path(root) / d).resolve() != excluded and not _is_engine_output(Path(root) / d)
        )
        files = sorted(f for f in files if f not in ENGINE_FILES)
        for fname in files:
            if not fnmatch(fname, mapping.input_patterns[primary]):
                continue
            primary_path = Path(root) / fname
            stem = primary_path.stem
            inputs = {primary: str(primary_path)}
            missing = []

            for key in secondary:
                pattern = mapping.input_patterns[key].replace(STEM_PLACEHOLDER, glob.escape(stem))
                matches = [f for f in files if f != fname and fnmatch(f, pattern)]
                if len(matches) == 1:
                    inputs[key] = str(Path(root) / matches[0])
                elif len(matches) > 1:
                    missing.append(f"{key}: pattern '{pattern}' is ambiguous ({len(matches)} matches)")
                elif key in required:
                    missing.append(f"{key}: no file matches '{pattern}'")

            items.append(BatchItemResult(
                name=_item_name(primary_path.relative_to(directory)),
                inputs=inputs,
                missing=missing,
            ))
    return items


def _items_from_rows(mapping: BatchMapping, required: set) -> List[BatchItemResult]:
    items = []
    for index, row in enumerate(mapping.rows or []):
        inputs = {}
        missing = []
        for key, value in row.items():
            if not value:
                if key in required:
                    missing.append(f"{key}: no file given")
                continue
            candidate = Path(value)
            if not candidate.is_absolute():
                candidate = mapping.directory / candidate
            if candidate.exists():
                inputs[key] = str(candidate)
            else:
                missing.append(f"{key}: {candidate} does not exist")

        first = next((v for v in row.values() if v), "row")
        items.append(BatchItemResult(
            name=f"{index}-{Path(first).stem}",
            inputs=inputs,
            missing=missing,
        ))
    return items


# =============================================================================
# Runner
# =============================================================================

class BatchRunner:
    """
    Drives one RunOrchestrator call per discovered input set.

    Example:
        runner = BatchRunner(DockerRuntime(), manifest)
        results = runner.run_batch(mapping, manifest.image_name)
        failed = [r for r in results if r.state == ItemState.FAILED]
    """

    def __init__(self, runtime: ContainerRuntime, manifest: Manifest):
        self.manifest = manifest
        self.orchestrator = RunOrchestrator(runtime, manifest)

    def run_batch(
        self,
        mapping: BatchMapping,
        image: str,
        output_root: Optional[Union[str, Path]] = None,
        json_inputs: Optional[Mapping[str, str]] = None,
        settings: Optional[Mapping[str, str]] = None,
        mounts: Optional[Mapping[str, str]] = None,
        options: RunOptions = RunOptions(),
    ) -> List[BatchItemResult]:
        """
        Run every item of a batch sequentially.

        Args:
            mapping: Loaded batch mapping
            image: Image reference to run
            output_root: Parent of the per-item output directories
            json_inputs: JSON inputs shared by every item
            settings: Settings shared by every item
            mounts: Mounts shared by every item
            options: Run options (repeat is ignored for batches)

        Returns:
            One BatchItemResult per discovered item, in discovery order
        """
        root = Path(output_root) if output_root else default_output_dir(self.manifest)
        items = discover_items(mapping, self.manifest, exclude=root)
        root.mkdir(parents=True, exist_ok=True)
        logger.info("Batch of %d item(s) from %s -> %s", len(items), mapping.directory, root)

        for i, item in enumerate(items, 1):
            if item.missing:
                item.transition(ItemState.SKIPPED)
                item.error = "; ".join(item.missing)
                logger.warning("[%d/%d] Skipping %s: %s", i, len(items), item.name, item.error)
                continue

            item.transition(ItemState.RUNNING)
            item.output_dir = root / item.name
            logger.info("[%d/%d] Running %s", i, len(items), item.name)
            try:
                invocation = resolve_invocation(
                    self.manifest, item.inputs, json_inputs, settings, mounts,
                    output_dir=item.output_dir, remove_on_exit=options.remove_on_exit,
                )
                item.run_result = self.orchestrator.run(
                    image, invocation, options.metadata_schema, options.quiet,
                )
                item.transition(ItemState.SUCCEEDED)
            except Cancelled:
                raise
            except SeedError as e:
                item.run_result = e.result if isinstance(e.result, RunResult) else None
                item.error = f"{e.kind}: {e.message}"
                item.transition(ItemState.FAILED)
                logger.error("[%d/%d] %s failed: %s", i, len(items), item.name, item.error)

        self.write_summary(items, root)
        return items

    def write_summary(self, items: List[BatchItemResult], output_root: Path) -> Path:
        counts = {state.value: 0 for state in ItemState}
        for item in items:
            counts[item.state.value] += 1
        path = Path(output_root) / BATCH_RESULTS
        with open(path, 'w') as f:
            json.dump({'counts': counts, 'items': [item.to_dict() for item in items]}, f, indent=2)
        return path


def batch_failed(results: List[BatchItemResult]) -> bool:
    """True when any item ended Failed."""
    return any(r.state == ItemState.FAILED for r in results)
