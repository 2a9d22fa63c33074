"""Setup script for seed_runner package."""

from setuptools import setup, find_packages

setup(
    name="seed_runner",
    version="1.0.0",
    description="Build, run, batch and publish Seed-compliant container algorithms",
    author="Roy Wollman",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={
        "seed_runner.manifest": ["schemas/*.json"],
    },
    python_requires=">=3.9",
    install_requires=[
        "pyyaml>=5.4",
        "click>=8.0",
        "jsonschema>=4.0",
        "httpx>=0.24",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "seed=seed_runner.cli.main:cli",
        ],
    },
)
