"""Resolution of a job interface into a concrete container invocation."""

from .interface import (
    ResolvedInvocation,
    VolumeBinding,
    resolve_invocation,
    parse_key_values,
    default_output_dir,
    OUTPUT_DIR_CONTAINER_PATH,
)

__all__ = [
    'ResolvedInvocation',
    'VolumeBinding',
    'resolve_invocation',
    'parse_key_values',
    'default_output_dir',
    'OUTPUT_DIR_CONTAINER_PATH',
]
