"""
Version Management for the ghr-installer Install Subsystem

This module provides the version normalization and comparison used to decide
whether an upstream release is newer than the system package or the installed
copy, plus parsing of `--version` output from installed binaries.
"""

import re
from enum import Enum
from typing import List, Optional

from ghr_installer.constants import BINARY_VERSION_PATTERN


class VersionComparison(str, Enum):
    """Ordering of the first version relative to the second."""

    OLDER = "older"
    EQUAL = "equal"
    NEWER = "newer"


class VersionManager:
    """
    Normalizes and compares loosely formatted version strings.

    Versions coming from GitHub tags, distribution packages and `--version`
    output rarely agree on format ("v1.2.0", "1.2.0-1ubuntu0.1", "1.2"), so the
    comparison only looks at the numeric release components.
    """

    NON_VERSION_CHARS_RX = re.compile(r"[^0-9.]")
    BINARY_VERSION_RX = re.compile(BINARY_VERSION_PATTERN)

    def normalize_version(self, version: Optional[str]) -> str:
        """
        Reduce a version string to digits and dots.

        Strips a single leading "v", drops everything from the first hyphen
        (distribution and build suffixes such as "-1ubuntu0.1") and removes any
        remaining character that is not a digit or a dot.

        Args:
            version: Raw version string; None is treated as empty.

        Returns:
            The normalized string, possibly empty.
        """
        if not version:
            return ""
        trimmed = version.strip()
        if trimmed.startswith("v"):
            trimmed = trimmed[1:]
        trimmed = trimmed.split("-", 1)[0]
        return self.NON_VERSION_CHARS_RX.sub("", trimmed)

    def get_version_components(self, version: Optional[str]) -> List[int]:
        """
        Split a version into integer components.

        Empty components ("1..2", "", trailing dots) count as 0, so malformed
        input never raises.
        """
        normalized = self.normalize_version(version)
        return [int(part) if part else 0 for part in normalized.split(".")]

    def compare_versions(self, version1: str, version2: str) -> VersionComparison:
        """
        Compare two versions component by component as unsigned integers.

        The shorter sequence is padded with zeros, so "v2.0" equals "2.0.0" and
        "1.2.0" is older than "1.10.0".

        Returns:
            VersionComparison: NEWER if version1 > version2, OLDER if lower, EQUAL otherwise.
        """
        parts1 = self.get_version_components(version1)
        parts2 = self.get_version_components(version2)
        length = max(len(parts1), len(parts2))
        parts1 += [0] * (length - len(parts1))
        parts2 += [0] * (length - len(parts2))

        for left, right in zip(parts1, parts2):
            if left > right:
                return VersionComparison.NEWER
            if left < right:
                return VersionComparison.OLDER
        return VersionComparison.EQUAL

    def parse_binary_version(self, version_output: Optional[str]) -> Optional[str]:
        """Return the first x.y.z found in a binary's `--version` output."""
        if not version_output:
            return None
        match = self.BINARY_VERSION_RX.search(version_output)
        return match.group(0) if match else None


_version_manager = VersionManager()


def normalize_version(version: Optional[str]) -> str:
    return _version_manager.normalize_version(version)


def compare_versions(version1: str, version2: str) -> VersionComparison:
    return _version_manager.compare_versions(version1, version2)


def parse_binary_version(version_output: Optional[str]) -> Optional[str]:
    return _version_manager.parse_binary_version(version_output)
