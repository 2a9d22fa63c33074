"""
Semantic version values used for packageVersion and jobVersion.
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..errors import InvalidBumpSpec

# MAJOR.MINOR.PATCH with optional pre-release / build suffix
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)

BUMP_LEVELS = ('major', 'minor', 'patch')


@dataclass(frozen=True)
class SemVer:
    """Immutable MAJOR.MINOR.PATCH version."""
    major: int
    minor: int
    patch: int
    prerelease: str = ""

    @classmethod
    def parse(cls, text: str) -> 'SemVer':
        """
        Parse a version string.

        Raises:
            ValueError: If text is not a semantic version
        """
        match = SEMVER_PATTERN.match(str(text).strip())
        if not match:
            raise ValueError(f"Invalid semantic version: '{text}'")
        return cls(
            major=int(match.group('major')),
            minor=int(match.group('minor')),
            patch=int(match.group('patch')),
            prerelease=match.group('prerelease') or "",
        )

    def bump(self, level: Optional[str]) -> 'SemVer':
        """
        Apply a single bump.

        Major zeroes minor and patch, minor zeroes patch, patch increments
        patch only. ``None`` returns the version unchanged. Any bump drops a
        pre-release suffix.
        """
        if level is None:
            return self
        if level == 'major':
            return SemVer(self.major + 1, 0, 0)
        if level == 'minor':
            return SemVer(self.major, self.minor + 1, 0)
        if level == 'patch':
            return SemVer(self.major, self.minor, self.patch + 1)
        raise InvalidBumpSpec(f"Unknown bump level '{level}'. Must be one of {list(BUMP_LEVELS)}")

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base


def is_semver(text: str) -> bool:
    return bool(SEMVER_PATTERN.match(str(text).strip()))
