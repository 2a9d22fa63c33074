"""Shared fixtures: manifest documents and in-memory container/registry fakes."""

import copy
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from seed_runner.errors import Cancelled, ImageNotFound
from seed_runner.manifest.model import Manifest
from seed_runner.runtime.base import ContainerOutcome, ContainerRuntime, RegistryClient


BASE_DOCUMENT = {
    "seedVersion": "1.0.0",
    "job": {
        "name": "algo",
        "jobVersion": "1.0.0",
        "packageVersion": "1.0.0",
        "title": "Test Algorithm",
        "description": "Reads one image and writes one result.",
        "maintainer": {"name": "Jane Doe", "email": "jane@example.com"},
        "timeout": 60,
        "interface": {
            "command": "run.sh ${image} ${OUTPUT_DIR}",
            "inputs": {
                "files": [{"name": "image", "required": True, "mediaTypes": ["image/png"]}],
            },
            "outputs": {
                "files": [{"name": "result", "pattern": "result*.png", "mediaType": "image/png"}],
            },
        },
        "resources": {
            "scalar": [
                {"name": "cpus", "value": 1.0},
                {"name": "mem", "value": 128.0},
            ]
        },
        "errors": [
            {"code": 2, "name": "bad-input", "title": "Bad Input", "category": "data"},
        ],
    },
}


def manifest_document(**job_overrides) -> Dict:
    """A deep copy of the base manifest document with job fields replaced."""
    document = copy.deepcopy(BASE_DOCUMENT)
    document["job"].update(copy.deepcopy(job_overrides))
    return document


@pytest.fixture
def document():
    return manifest_document()


@pytest.fixture
def manifest(document):
    return Manifest.from_document(document)


@pytest.fixture
def manifest_dir(tmp_path, document):
    """Build context with a manifest and a Dockerfile."""
    context = tmp_path / "algo"
    context.mkdir()
    (context / "seed.manifest.json").write_text(json.dumps(document, indent=2))
    (context / "Dockerfile").write_text("FROM alpine\n")
    return context


@pytest.fixture
def input_png(tmp_path):
    path = tmp_path / "a.png"
    path.write_bytes(b"\x89PNG fake")
    return path


class FakeRuntime(ContainerRuntime):
    """
    In-memory ContainerRuntime.

    A run writes ``outputs`` (file name -> text) into the host directory
    mounted at /output, or calls ``writer(output_dir, env)`` when set.
    """

    def __init__(self, exit_code: int = 0, outputs: Optional[Dict[str, str]] = None):
        self.exit_code = exit_code
        self.outputs = outputs if outputs is not None else {"result.png": "png"}
        self.writer: Optional[Callable[[Path, Dict[str, str]], None]] = None
        self.labels: Dict[str, Dict[str, str]] = {}
        self.builds: List[Dict] = []
        self.runs: List[Dict] = []
        self.pushed: List[str] = []
        self.pulled: List[str] = []
        self.tags: List[tuple] = []
        self.logins: List[tuple] = []

    def build(self, context, dockerfile, tags, cache_from=None, labels=None):
        self.builds.append({
            "context": context, "dockerfile": dockerfile, "tags": list(tags),
            "cache_from": cache_from, "labels": dict(labels or {}),
        })
        for tag in tags:
            self.labels[tag] = dict(labels or {})
        return "sha256:fake"

    def run(self, image, env, mounts, remove_on_exit=False, command=(), extra_args=(), quiet=False):
        self.runs.append({
            "image": image, "env": dict(env), "mounts": list(mounts),
            "remove_on_exit": remove_on_exit, "command": list(command),
            "extra_args": list(extra_args), "quiet": quiet,
        })
        output_dir = None
        for mount in mounts:
            host, container, _mode = mount.rsplit(":", 2)
            if container == "/output":
                output_dir = Path(host)
        if self.writer is not None:
            self.writer(output_dir, dict(env))
        else:
            for name, content in self.outputs.items():
                (output_dir / name).write_text(content)
        return ContainerOutcome(exit_code=self.exit_code, output="container output\n")

    def push(self, ref):
        self.pushed.append(ref)

    def pull(self, ref):
        self.pulled.append(ref)

    def tag(self, source, target):
        self.tags.append((source, target))

    def image_label(self, image, label):
        if image not in self.labels:
            raise ImageNotFound(f"Image not found: {image}")
        return self.labels[image].get(label)

    def list_images(self, label):
        return sorted(image for image, labels in self.labels.items() if label in labels)

    def login(self, registry, username, password):
        self.logins.append((registry, username, password))


class CancellingRuntime(FakeRuntime):
    """FakeRuntime whose runs are interrupted by the user."""

    def run(self, image, env, mounts, remove_on_exit=False, command=(), extra_args=(), quiet=False):
        self.runs.append({"image": image, "env": dict(env)})
        raise Cancelled(f"run of {image} was interrupted")


class FakeRegistry(RegistryClient):
    """In-memory RegistryClient keyed by (repository, tag)."""

    def __init__(self, host: str = "", existing=()):
        self.host = host
        self.existing = set(existing)
        self.pushed: List[str] = []
        self.deleted: List[tuple] = []

    def tag_exists(self, repository, tag):
        return (repository, tag) in self.existing

    def push(self, ref):
        self.pushed.append(ref)

    def delete(self, repository, tag):
        if (repository, tag) not in self.existing:
            raise ImageNotFound(f"Tag {repository}:{tag} not found")
        self.existing.discard((repository, tag))
        self.deleted.append((repository, tag))

    def list(self, org=""):
        repositories = sorted({repo for repo, _ in self.existing})
        if org:
            repositories = [r for r in repositories if r.startswith(f"{org}/")]
        return repositories


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def registry():
    return FakeRegistry()
