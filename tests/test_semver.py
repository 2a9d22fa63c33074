"""Tests for semantic version parsing and bumping."""

import pytest

from seed_runner.errors import InvalidBumpSpec
from seed_runner.manifest.semver import SemVer, is_semver


class TestParse:
    """Tests for SemVer.parse."""

    def test_plain_version(self):
        assert SemVer.parse("1.2.3") == SemVer(1, 2, 3)

    def test_prerelease_kept(self):
        version = SemVer.parse("2.0.0-rc.1")
        assert version.prerelease == "rc.1"
        assert str(version) == "2.0.0-rc.1"

    @pytest.mark.parametrize("text", ["1.2", "v1.2.3", "01.2.3", "", "1.2.3.4"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            SemVer.parse(text)
        assert not is_semver(text)


class TestBump:
    """Bump rules: major zeroes minor+patch, minor zeroes patch."""

    def test_major(self):
        assert str(SemVer.parse("1.2.3").bump("major")) == "2.0.0"

    def test_minor(self):
        assert str(SemVer.parse("1.2.3").bump("minor")) == "1.3.0"

    def test_patch(self):
        assert str(SemVer.parse("1.2.3").bump("patch")) == "1.2.4"

    def test_no_bump_is_unchanged(self):
        version = SemVer.parse("1.2.3")
        assert version.bump(None) is version

    def test_bump_drops_prerelease(self):
        assert str(SemVer.parse("1.2.3-beta").bump("patch")) == "1.2.4"

    def test_unknown_level(self):
        with pytest.raises(InvalidBumpSpec):
            SemVer.parse("1.2.3").bump("micro")
