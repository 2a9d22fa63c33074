"""Container runtime and registry capabilities."""

from .base import ContainerOutcome, ContainerRuntime, RegistryClient, qualified_ref
from .docker import DockerRuntime
from .registry import HttpRegistry

__all__ = [
    'ContainerOutcome',
    'ContainerRuntime',
    'RegistryClient',
    'qualified_ref',
    'DockerRuntime',
    'HttpRegistry',
]
