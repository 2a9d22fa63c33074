"""
Tool configuration.

SeedConfig holds registry credentials and runtime defaults. It is loaded
once per command from an optional YAML file, then overridden by SEED_*
environment variables, then by explicit CLI flags (``with_overrides``).
The resulting value is passed into each component; nothing here is global.

Example config file (~/.seed/config.yaml):

    registry: registry.example.com:5000
    org: geoint
    username: builder
    docker: /usr/local/bin/docker
    log_level: INFO
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import SeedError

DEFAULT_CONFIG_PATH = Path.home() / ".seed" / "config.yaml"
DEFAULT_MANIFEST_NAME = "seed.manifest.json"

ENV_OVERRIDES = {
    'registry': 'SEED_REGISTRY',
    'org': 'SEED_ORG',
    'username': 'SEED_USER',
    'password': 'SEED_PASSWORD',
    'docker': 'SEED_DOCKER',
    'log_level': 'SEED_LOG_LEVEL',
}


@dataclass(frozen=True)
class SeedConfig:
    """Registry and runtime settings for one invocation."""
    registry: str = ""
    org: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    docker: str = "docker"
    log_level: str = "INFO"
    manifest_name: str = DEFAULT_MANIFEST_NAME
    registry_timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SeedConfig':
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SeedError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str) -> 'SeedConfig':
        """Load config from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config not found: {path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise SeedError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    def with_overrides(self, **overrides: Any) -> 'SeedConfig':
        """Return a copy with every non-empty override applied."""
        applied = {k: v for k, v in overrides.items() if v not in (None, "")}
        return replace(self, **applied)


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> SeedConfig:
    """
    Resolve the effective configuration.

    Args:
        path: Explicit config file. Falls back to $SEED_CONFIG, then
            ~/.seed/config.yaml when that file exists.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        SeedConfig with file values and environment overrides applied
    """
    environ = os.environ if environ is None else environ

    config_path = path or environ.get('SEED_CONFIG')
    if config_path:
        config = SeedConfig.from_yaml(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        config = SeedConfig.from_yaml(str(DEFAULT_CONFIG_PATH))
    else:
        config = SeedConfig()

    env_values = {attr: environ.get(var) for attr, var in ENV_OVERRIDES.items()}
    return config.with_overrides(**env_values)
