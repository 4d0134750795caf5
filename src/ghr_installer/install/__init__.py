"""
ghr-installer Install Subsystem

This package checks tracked GitHub repositories for new releases, picks the
right binary archive for the host, and installs it while keeping a durable,
lock-protected record of what was installed.

Core Components:
- interfaces: Data structures and collaborator interfaces
- version: Version normalization and comparison
- assets: Release asset selection for the host architecture
- cache: Release metadata cache and downloaded artifact cache
- database: Package database and installation status checks
- lock: flock-based lock file serializing database mutations
- github_source: GitHub release client and cached release lookup
- files: Atomic writes, archive extraction and binary discovery
- system: HTTP downloads, APT, ldd and shell integration
- orchestrator: Install pipeline coordination
"""

from .assets import select_asset
from .cache import ArtifactCache, CacheManager, ReleaseCache
from .database import PackageDatabase
from .files import FileOperations
from .github_source import GithubReleaseClient, GithubReleaseSource
from .interfaces import (
    ArchiveExtractor,
    Asset,
    DependencyInspector,
    DependencyReport,
    DependencyStatus,
    Downloader,
    PackageCheck,
    PackageRecord,
    PackageStatus,
    Release,
    ReleaseClient,
    RepoSpec,
    SystemPackageManager,
)
from .lock import PidLock
from .orchestrator import InstallOrchestrator
from .system import AptPackageManager, HttpDownloader, LddDependencyInspector
from .version import VersionComparison, VersionManager, compare_versions

__all__ = [
    # Interfaces
    "ReleaseClient",
    "Downloader",
    "ArchiveExtractor",
    "DependencyInspector",
    "SystemPackageManager",
    # Data structures
    "RepoSpec",
    "Release",
    "Asset",
    "PackageRecord",
    "PackageCheck",
    "PackageStatus",
    "DependencyReport",
    "DependencyStatus",
    # Orchestration
    "InstallOrchestrator",
    # Core components
    "VersionManager",
    "VersionComparison",
    "compare_versions",
    "select_asset",
    "CacheManager",
    "ReleaseCache",
    "ArtifactCache",
    "PackageDatabase",
    "PidLock",
    "FileOperations",
    # Collaborator implementations
    "GithubReleaseClient",
    "GithubReleaseSource",
    "HttpDownloader",
    "AptPackageManager",
    "LddDependencyInspector",
]
