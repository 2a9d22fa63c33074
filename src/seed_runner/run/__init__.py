"""Build, run, batch and publish orchestration."""

from .build import MANIFEST_LABEL, BuildOrchestrator, ImageRef, load_manifest_from_image
from .orchestrator import OutputArtifact, RunOptions, RunOrchestrator, RunResult
from .batch import BatchItemResult, BatchMapping, BatchRunner, ItemState, load_batch_mapping
from .publish import BumpSpec, PublishResult, VersionPublisher, apply_bump, list_local

__all__ = [
    'MANIFEST_LABEL', 'BuildOrchestrator', 'ImageRef', 'load_manifest_from_image',
    'OutputArtifact', 'RunOptions', 'RunOrchestrator', 'RunResult',
    'BatchItemResult', 'BatchMapping', 'BatchRunner', 'ItemState', 'load_batch_mapping',
    'BumpSpec', 'PublishResult', 'VersionPublisher', 'apply_bump', 'list_local',
]
