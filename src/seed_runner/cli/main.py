"""
Command-line interface for seed_runner.

Typical algorithm author workflow:
    1. seed init -d my-algo/                       # example manifest
    2. seed validate -d my-algo/                   # schema + lint checks
    3. seed build -d my-algo/                      # my-algo-0.1.0-seed:0.1.0
    4. seed run -in my-algo-0.1.0-seed:0.1.0 -i INPUT_IMAGE=scene.png -o out/
    5. seed publish -d my-algo/ -r localhost:5000 -O geoint -pp

Batch processing:
    seed batch -in my-algo-0.1.0-seed:0.1.0 -d scenes/ -b mapping.yaml -o batch-out/

Registry commands:
    seed search -r localhost:5000 -O geoint
    seed pull -in my-algo-0.1.0-seed:0.1.0 -r localhost:5000 -O geoint
    seed unpublish -in my-algo-0.1.0-seed:0.1.0 -r localhost:5000 -O geoint

Every command exits 0 on success and 1 on any reported failure.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import click

from .. import __version__
from ..config import SeedConfig, load_config
from ..errors import SeedError
from ..logging_utils import configure_logging
from ..manifest.model import Manifest, find_manifest, load_manifest, write_example_manifest
from ..manifest.validation import supported_schema_versions, validate_manifest, check_report
from ..resolve.interface import parse_key_values
from ..run.batch import BatchRunner, ItemState, batch_failed, default_batch_mapping, load_batch_mapping
from ..run.build import BuildOrchestrator, load_manifest_from_image
from ..run.orchestrator import RunOptions, RunOrchestrator
from ..run.publish import BumpSpec, VersionPublisher, list_local
from ..runtime.base import ContainerRuntime, RegistryClient
from ..runtime.docker import DockerRuntime
from ..runtime.registry import HttpRegistry


@dataclass
class CliContext:
    """Per-invocation state; runtime and registry may be injected."""
    config: SeedConfig = field(default_factory=SeedConfig)
    runtime: Optional[ContainerRuntime] = None
    registry: Optional[RegistryClient] = None

    def get_runtime(self) -> ContainerRuntime:
        if self.runtime is None:
            self.runtime = DockerRuntime(self.config.docker)
        return self.runtime

    def get_registry(self, config: SeedConfig) -> RegistryClient:
        if self.registry is None:
            self.registry = HttpRegistry(
                url=config.registry,
                runtime=self.get_runtime(),
                username=config.username,
                password=config.password,
                timeout_seconds=config.registry_timeout,
            )
        return self.registry


class SeedGroup(click.Group):
    """Click group that reports SeedError as a message and exit status 1."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except SeedError as e:
            click.echo(f"ERROR [{e.kind}]: {e}", err=True)
            output_dir = getattr(e.result, 'output_dir', None)
            if output_dir:
                click.echo(f"  Partial results in {output_dir}", err=True)
            raise SystemExit(1)
        except (FileNotFoundError, FileExistsError) as e:
            click.echo(f"ERROR: {e}", err=True)
            raise SystemExit(1)


@click.group(cls=SeedGroup)
@click.version_option(version=__version__, prog_name='seed')
@click.option('--config', 'config_path', type=click.Path(),
              help='Config file (default: $SEED_CONFIG or ~/.seed/config.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config_path, verbose):
    """Seed - build, run and publish seed-compliant algorithm images."""
    if ctx.obj is None:
        ctx.obj = CliContext()
    ctx.obj.config = load_config(config_path)
    configure_logging('DEBUG' if verbose else ctx.obj.config.log_level)


# ============================================================================
# Shared options and helpers
# ============================================================================

def registry_options(f):
    f = click.option('--password', '-p', help='Registry password')(f)
    f = click.option('--user', '-u', help='Registry username')(f)
    f = click.option('--org', '-O', help='Registry organization / namespace')(f)
    f = click.option('--registry', '-r', help='Registry host (default: Docker Hub)')(f)
    return f


def bump_options(f):
    f = click.option('-jp', 'job_patch', is_flag=True, help='Bump job patch version')(f)
    f = click.option('-jm', 'job_minor', is_flag=True, help='Bump job minor version')(f)
    f = click.option('-J', 'job_major', is_flag=True, help='Bump job major version')(f)
    f = click.option('-pp', 'pkg_patch', is_flag=True, help='Bump package patch version')(f)
    f = click.option('-pm', 'pkg_minor', is_flag=True, help='Bump package minor version')(f)
    f = click.option('-P', 'pkg_major', is_flag=True, help='Bump package major version')(f)
    return f


def _registry_config(state: CliContext, registry, org, user, password) -> SeedConfig:
    return state.config.with_overrides(registry=registry, org=org, username=user, password=password)


def _manifest_path(state: CliContext, directory: str, manifest: Optional[str]) -> Path:
    return find_manifest(manifest or directory, state.config.manifest_name)


def _manifest_and_image(
    state: CliContext,
    image_name: Optional[str],
    manifest: Optional[str],
    directory: str = '.',
) -> Tuple[Manifest, str]:
    """Resolve the manifest and image for run/batch: file first, image label otherwise."""
    if manifest or not image_name:
        loaded = load_manifest(manifest or directory, state.config.manifest_name)
        return loaded, image_name or loaded.image_name
    return load_manifest_from_image(state.get_runtime(), image_name), image_name


def _echo_report_warnings(report) -> None:
    for warning in report.warnings:
        click.echo(f"  WARNING: {warning}", err=True)


# ============================================================================
# Manifest Commands
# ============================================================================

@cli.command('init')
@click.option('--directory', '-d', default='.', type=click.Path(file_okay=False),
              help='Directory to create the manifest in')
@click.pass_obj
def init_cmd(state, directory):
    """Create an example seed.manifest.json."""
    path = write_example_manifest(directory, state.config.manifest_name)
    click.echo(f"✓ Created example manifest {path}")


@cli.command('validate')
@click.option('--directory', '-d', default='.', help='Directory containing the manifest')
@click.option('--manifest', '-m', type=click.Path(exists=True), help='Manifest file')
@click.option('--schema', '-s', type=click.Path(exists=True), help='Validate against this schema instead')
@click.option('--warn-as-errors', '-w', is_flag=True, help='Treat warnings as errors')
@click.pass_obj
def validate_cmd(state, directory, manifest, schema, warn_as_errors):
    """Validate a seed manifest."""
    path = _manifest_path(state, directory, manifest)
    loaded = load_manifest(path)

    click.echo(f"Validating {path}")
    report = validate_manifest(loaded, schema)
    if not warn_as_errors:
        _echo_report_warnings(report)
    check_report(report, warn_as_errors)

    suffix = f" with {len(report.warnings)} warning(s)" if report.warnings else ""
    click.echo(f"✓ {path} is valid{suffix}")


# ============================================================================
# Build / Run Commands
# ============================================================================

@cli.command('build')
@click.option('--directory', '-d', default='.', type=click.Path(exists=True, file_okay=False),
              help='Build context containing the manifest and Dockerfile')
@click.option('--manifest', '-m', type=click.Path(exists=True), help='Manifest file')
@click.option('--dockerfile', '-D', type=click.Path(exists=True), help='Dockerfile (default: <directory>/Dockerfile)')
@click.option('--cache-from', '-c', help='Image to use as a build cache source')
@click.option('--schema', '-s', type=click.Path(exists=True), help='Validate against this schema instead')
@click.option('--warn-as-errors', '-w', is_flag=True, help='Treat manifest warnings as errors')
@click.option('--publish', 'publish', is_flag=True, help='Publish the image after a successful build')
@click.option('--force', '-f', is_flag=True, help='Overwrite an existing registry tag when publishing')
@registry_options
@bump_options
@click.pass_obj
def build_cmd(state, directory, manifest, dockerfile, cache_from, schema, warn_as_errors, publish, force,
              registry, org, user, password,
              pkg_major, pkg_minor, pkg_patch, job_major, job_minor, job_patch):
    """Build a seed image from a manifest and Dockerfile."""
    path = _manifest_path(state, directory, manifest)
    loaded = load_manifest(path)
    bump = BumpSpec.from_flags(pkg_major, pkg_minor, pkg_patch, job_major, job_minor, job_patch)

    builder = BuildOrchestrator(state.get_runtime())
    image = builder.build(loaded, directory, dockerfile=dockerfile, cache_from=cache_from,
                          warnings_as_errors=warn_as_errors, schema_override=schema)
    click.echo(f"✓ Built {image}")

    if publish:
        config = _registry_config(state, registry, org, user, password)
        publisher = VersionPublisher(state.get_runtime(), state.get_registry(config), builder)
        result = publisher.publish(loaded, path, directory, bump, org=config.org, force=force,
                                   dockerfile=dockerfile, cache_from=cache_from, rebuild=False)
        click.echo(f"✓ Published {result.remote_ref}")


@cli.command('run')
@click.option('--image-name', '-in', help='Seed image to run')
@click.option('--directory', '-d', default='.', help='Directory containing the manifest')
@click.option('--manifest', '-m', type=click.Path(exists=True), help='Manifest file (default: read from the image)')
@click.option('--inputs', '-i', multiple=True, help='File input KEY=PATH (repeatable)')
@click.option('--json', '-j', 'json_values', multiple=True, help='JSON input KEY=VALUE (repeatable)')
@click.option('--setting', '-e', multiple=True, help='Setting KEY=VALUE (repeatable)')
@click.option('--mount', '-M', multiple=True, help='Mount KEY=HOST_PATH (repeatable)')
@click.option('--outdir', '-o', type=click.Path(file_okay=False), help='Output directory')
@click.option('--rm', 'remove', is_flag=True, help='Remove the container when it exits')
@click.option('--quiet', '-q', is_flag=True, help="Suppress the container's output")
@click.option('--schema', '-s', type=click.Path(exists=True), help='Side-car metadata schema override')
@click.option('--repeat', '-rep', default=1, type=click.IntRange(min=1), help='Number of runs')
@click.pass_obj
def run_cmd(state, image_name, directory, manifest, inputs, json_values, setting, mount, outdir,
            remove, quiet, schema, repeat):
    """Run a seed image against concrete inputs."""
    loaded, image = _manifest_and_image(state, image_name, manifest, directory)
    options = RunOptions(remove_on_exit=remove, quiet=quiet, repeat=repeat, metadata_schema=schema)

    orchestrator = RunOrchestrator(state.get_runtime(), loaded)
    results = orchestrator.execute(
        image,
        inputs=parse_key_values(inputs, 'input'),
        json_inputs=parse_key_values(json_values, 'json input'),
        settings=parse_key_values(setting, 'setting'),
        mounts=parse_key_values(mount, 'mount'),
        output_dir=outdir,
        options=options,
    )

    for result in results:
        click.echo(f"✓ {image} finished in {result.output_dir}")
        for artifact in result.artifacts:
            shown = artifact.path if artifact.path is not None else json.dumps(artifact.value)
            click.echo(f"  {artifact.key}: {shown}")


@cli.command('batch')
@click.option('--image-name', '-in', help='Seed image to run')
@click.option('--manifest', '-m', type=click.Path(exists=True), help='Manifest file (default: read from the image)')
@click.option('--directory', '-d', type=click.Path(exists=True, file_okay=False),
              help='Directory of files to process (default: from the mapping, or .)')
@click.option('--batch', '-b', 'batch_file', type=click.Path(exists=True),
              help='Batch mapping file (YAML, JSON or CSV)')
@click.option('--json', '-j', 'json_values', multiple=True, help='JSON input KEY=VALUE shared by all items')
@click.option('--setting', '-e', multiple=True, help='Setting KEY=VALUE shared by all items')
@click.option('--mount', '-M', multiple=True, help='Mount KEY=HOST_PATH shared by all items')
@click.option('--outdir', '-o', type=click.Path(file_okay=False), help='Parent of per-item output directories')
@click.option('--rm', 'remove', is_flag=True, help='Remove containers when they exit')
@click.option('--quiet', '-q', is_flag=True, help="Suppress the containers' output")
@click.option('--schema', '-s', type=click.Path(exists=True), help='Side-car metadata schema override')
@click.pass_obj
def batch_cmd(state, image_name, manifest, directory, batch_file, json_values, setting, mount, outdir,
              remove, quiet, schema):
    """Run a seed image over every input set in a directory."""
    loaded, image = _manifest_and_image(state, image_name, manifest)

    if batch_file:
        mapping = load_batch_mapping(batch_file, loaded, directory)
    else:
        mapping = default_batch_mapping(loaded, directory or '.')

    runner = BatchRunner(state.get_runtime(), loaded)
    results = runner.run_batch(
        mapping,
        image,
        output_root=outdir,
        json_inputs=parse_key_values(json_values, 'json input'),
        settings=parse_key_values(setting, 'setting'),
        mounts=parse_key_values(mount, 'mount'),
        options=RunOptions(remove_on_exit=remove, quiet=quiet, metadata_schema=schema),
    )

    click.echo(f"\nBatch summary ({len(results)} items):")
    for state_value in ItemState:
        count = sum(1 for r in results if r.state == state_value)
        if count:
            click.echo(f"  {state_value.value}: {count}")
    for result in results:
        if result.error:
            click.echo(f"  {result.name}: {result.state.value} - {result.error}", err=True)

    if batch_failed(results):
        raise SystemExit(1)


# ============================================================================
# Registry Commands
# ============================================================================

@cli.command('publish')
@click.option('--directory', '-d', default='.', type=click.Path(exists=True, file_okay=False),
              help='Build context containing the manifest and Dockerfile')
@click.option('--manifest', '-m', type=click.Path(exists=True), help='Manifest file')
@click.option('--dockerfile', '-D', type=click.Path(exists=True), help='Dockerfile (default: <directory>/Dockerfile)')
@click.option('--cache-from', '-c', help='Image to use as a build cache source')
@click.option('--force', '-f', is_flag=True, help='Overwrite an existing registry tag')
@registry_options
@bump_options
@click.pass_obj
def publish_cmd(state, directory, manifest, dockerfile, cache_from, force, registry, org, user, password,
                pkg_major, pkg_minor, pkg_patch, job_major, job_minor, job_patch):
    """Bump versions, rebuild and push a seed image."""
    bump = BumpSpec.from_flags(pkg_major, pkg_minor, pkg_patch, job_major, job_minor, job_patch)
    path = _manifest_path(state, directory, manifest)
    loaded = load_manifest(path)

    config = _registry_config(state, registry, org, user, password)
    publisher = VersionPublisher(state.get_runtime(), state.get_registry(config))
    result = publisher.publish(loaded, path, directory, bump, org=config.org, force=force,
                               dockerfile=dockerfile, cache_from=cache_from)

    if result.manifest_path:
        click.echo(f"  Updated {result.manifest_path}: package {result.package_version}, job {result.job_version}")
    if result.overwritten:
        click.echo(f"  Overwrote existing tag {result.remote_ref}")
    click.echo(f"✓ Published {result.remote_ref}")


@cli.command('unpublish')
@click.option('--image-name', '-in', required=True, help='Image to remove from the registry')
@registry_options
@click.pass_obj
def unpublish_cmd(state, image_name, registry, org, user, password):
    """Delete a published image tag from the registry."""
    config = _registry_config(state, registry, org, user, password)
    publisher = VersionPublisher(state.get_runtime(), state.get_registry(config))
    removed = publisher.unpublish(image_name, org=config.org)
    click.echo(f"✓ Removed {removed}")


@cli.command('pull')
@click.option('--image-name', '-in', required=True, help='Image to pull')
@registry_options
@click.pass_obj
def pull_cmd(state, image_name, registry, org, user, password):
    """Pull a seed image from a registry."""
    config = _registry_config(state, registry, org, user, password)
    runtime = state.get_runtime()
    registry_client = state.get_registry(config)
    if config.username:
        runtime.login(registry_client.host, config.username, config.password)

    image = VersionPublisher(runtime, registry_client).pull(image_name, org=config.org)
    click.echo(f"✓ Pulled {image}")


@cli.command('search')
@registry_options
@click.option('--filter', '-f', 'name_filter', default='', help='Only names containing this string')
@click.pass_obj
def search_cmd(state, registry, org, user, password, name_filter):
    """Search a registry for seed images."""
    config = _registry_config(state, registry, org, user, password)
    publisher = VersionPublisher(state.get_runtime(), state.get_registry(config))
    names = publisher.search(config.org, name_filter)
    if not names:
        click.echo("No seed images found", err=True)
        return
    for name in names:
        click.echo(name)


@cli.command('list')
@click.pass_obj
def list_cmd(state):
    """List local seed images."""
    images = list_local(state.get_runtime())
    if not images:
        click.echo("No seed images found", err=True)
        return
    for image in images:
        click.echo(image)


@cli.command('version')
def version_cmd():
    """Print the tool version and supported schema versions."""
    click.echo(f"seed {__version__}")
    click.echo(f"Supported seed schema versions: {', '.join(supported_schema_versions())}")


if __name__ == '__main__':
    cli()
