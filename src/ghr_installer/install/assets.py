"""
Asset Selection for the ghr-installer Install Subsystem

Picks the release asset to download for the host architecture. Upstream
projects name their archives inconsistently, so matching walks an ordered list
of architecture patterns and takes the first asset (in upstream order) that
matches the most specific pattern possible.
"""

import platform
import re
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence

from ghr_installer.constants import (
    AARCH64_ASSET_PATTERNS,
    ARCH_ALIASES,
    ARCH_EXCLUDE_KEYWORDS,
    ASSET_EXCLUDE_KEYWORDS,
    ASSET_EXCLUDE_SUFFIXES,
    SUPPORTED_ARCHIVE_EXTENSIONS,
    X86_64_ASSET_PATTERNS,
)
from ghr_installer.exceptions import UnsupportedArchitectureError
from ghr_installer.log_utils import logger

from .interfaces import Asset, Release

_ARCH_PATTERNS = {
    "x86_64": X86_64_ASSET_PATTERNS,
    "aarch64": AARCH64_ASSET_PATTERNS,
}
_TOKEN_SPLIT_RX = re.compile(r"[-_./+ ]+")


def get_host_arch() -> str:
    """Return the raw machine name reported by the platform module."""
    return platform.machine()


def normalize_arch(arch: str) -> str:
    """
    Map a machine name onto a supported architecture family.

    Raises:
        UnsupportedArchitectureError: For anything but x86_64/amd64 and aarch64/arm64.
    """
    family = ARCH_ALIASES.get((arch or "").strip().lower())
    if family is None:
        raise UnsupportedArchitectureError(arch)
    return family


def get_arch_patterns(arch: str) -> List[Pattern[str]]:
    """Compiled, case-insensitive match patterns for `arch`, most specific first."""
    family = normalize_arch(arch)
    return [re.compile(p, re.IGNORECASE) for p in _ARCH_PATTERNS[family]]


def _has_archive_extension(name: str) -> bool:
    return name.lower().endswith(SUPPORTED_ARCHIVE_EXTENSIONS)


def is_excluded_asset(name: str, family: str) -> bool:
    """
    Return True when an asset can never be a binary archive for `family`.

    Checksums, signatures and distro packages are excluded by suffix; names
    carrying the other architecture family's keywords (or musl/alpine builds)
    are excluded by token prefix.
    """
    lowered = name.lower()
    if lowered.endswith(ASSET_EXCLUDE_SUFFIXES):
        return True
    if any(keyword in lowered for keyword in ASSET_EXCLUDE_KEYWORDS):
        return True
    tokens = [t for t in _TOKEN_SPLIT_RX.split(lowered) if t]
    for keyword in ARCH_EXCLUDE_KEYWORDS[family]:
        if any(token.startswith(keyword) for token in tokens):
            return True
    return False


def select_asset(assets: Sequence[Asset], host_arch: str) -> Optional[Asset]:
    """
    Select the asset to install for `host_arch`.

    Iterates the architecture patterns in order; for each pattern the asset
    list is filtered to names matching the pattern, ending in .tar.gz/.tgz/.zip
    and not excluded. The first pattern with any match wins and the first
    matching asset in upstream order is returned.

    Parameters:
        assets: Release assets in the order the API returned them.
        host_arch: Machine name such as "x86_64" or "arm64".

    Returns:
        The chosen Asset, or None when no asset qualifies.

    Raises:
        UnsupportedArchitectureError: When `host_arch` is not supported.
    """
    family = normalize_arch(host_arch)
    candidates = [
        asset
        for asset in assets
        if asset.name
        and _has_archive_extension(asset.name)
        and not is_excluded_asset(asset.name, family)
    ]

    for pattern in get_arch_patterns(family):
        for asset in candidates:
            if pattern.search(asset.name):
                logger.debug(
                    "Selected asset %s (pattern %s)", asset.name, pattern.pattern
                )
                return asset

    logger.debug(
        "No asset matched for %s among: %s",
        family,
        ", ".join(a.name for a in assets) or "(none)",
    )
    return None


def create_asset_from_github_data(asset_data: Dict[str, Any]) -> Optional[Asset]:
    """Build an Asset from a GitHub API asset mapping; None when name or URL is missing."""
    if not isinstance(asset_data, dict):
        return None
    name = asset_data.get("name")
    url = asset_data.get("browser_download_url") or asset_data.get("url")
    if not name or not url:
        return None
    size = asset_data.get("size")
    return Asset(
        name=str(name),
        download_url=str(url),
        size=size if isinstance(size, int) else None,
    )


def create_release_from_github_data(release_data: Dict[str, Any]) -> Optional[Release]:
    """
    Build a Release from raw GitHub release metadata.

    Returns:
        Release with assets in upstream order, or None if `tag_name` is missing.
    """
    if not isinstance(release_data, dict):
        return None
    tag_name = release_data.get("tag_name")
    if not tag_name:
        return None
    raw_assets: Iterable[Any] = release_data.get("assets") or []
    assets = [
        asset
        for asset in (create_asset_from_github_data(a) for a in raw_assets)
        if asset is not None
    ]
    return Release(
        tag_name=str(tag_name),
        assets=assets,
        published_at=release_data.get("published_at"),
    )
