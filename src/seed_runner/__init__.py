"""
Seed Runner - Build, run and publish Seed-compliant container algorithms.

This package provides tools for:
- Parsing and validating seed.manifest.json documents against versioned schemas
- Resolving a job interface into concrete container invocations
- Running single jobs and directory batches with output discovery
- Version bumping and publishing images to a Docker registry
"""

__version__ = "1.0.0"
