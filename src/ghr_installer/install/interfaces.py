"""
Core Interfaces for the ghr-installer Install Subsystem

This module defines the data structures passed between the install stages and
the narrow interfaces of the external collaborators (release API, downloader,
archive extractor, dependency inspector, system package manager).
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

Pathish = Union[str, Path]


@dataclass(frozen=True)
class RepoSpec:
    """A tracked upstream repository and the binary name it provides."""

    repo: str
    """Repository identifier in `owner/name` form"""

    binary_name: str
    """Name of the installed binary (defaults to the repository name)"""

    @property
    def repo_name(self) -> str:
        return self.repo.split("/", 1)[-1]


@dataclass
class Asset:
    """A downloadable file attached to a release."""

    name: str
    """The filename of the asset"""

    download_url: str
    """Direct URL to download the asset"""

    size: Optional[int] = None
    """File size in bytes, when the API reports it"""


@dataclass
class Release:
    """A tagged upstream release."""

    tag_name: str
    """The release tag/version identifier (e.g., 'v0.57.0')"""

    assets: List[Asset] = field(default_factory=list)
    """Downloadable assets in upstream order"""

    published_at: Optional[str] = None
    """ISO 8601 timestamp when the release was published"""

    @property
    def version(self) -> str:
        """The tag with a single leading 'v' removed."""
        return self.tag_name[1:] if self.tag_name.startswith("v") else self.tag_name


@dataclass
class PackageRecord:
    """An installed package as stored in the package database."""

    version: str
    files: List[str]
    installed_at: str
    updated_at: str
    source: str = "github"
    repo: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageRecord":
        """
        Build a record from its stored mapping.

        Raises:
            KeyError: When `version` is missing.
            TypeError: When `data` is not a mapping.
        """
        files = data.get("files") or []
        if isinstance(files, str):
            files = [files]
        return cls(
            version=str(data["version"]),
            files=[str(f) for f in files],
            installed_at=str(data.get("installed_at") or ""),
            updated_at=str(data.get("updated_at") or data.get("installed_at") or ""),
            source=str(data.get("source") or "github"),
            repo=data.get("repo"),
        )


class PackageStatus(str, Enum):
    """Result of cross-checking the database against the filesystem."""

    NOT_INSTALLED = "not installed"
    INSTALLED = "installed"
    FILES_MISSING = "files missing"
    UNMANAGED = "unmanaged"


class DependencyStatus(str, Enum):
    STATIC = "static"
    SATISFIED = "satisfied"
    MISSING = "missing"


@dataclass
class DependencyReport:
    """Shared library check for an extracted binary."""

    status: DependencyStatus
    missing: List[str] = field(default_factory=list)


@dataclass
class PackageCheck:
    """
    Outcome of processing one repository in a check run.

    A mapping of binary name to PackageCheck is what the orchestrator hands to
    the install step.
    """

    repo: RepoSpec
    github_version: Optional[str] = None
    apt_version: Optional[str] = None
    installed_version: Optional[str] = None
    status: Optional[str] = None
    asset: Optional[Asset] = None
    asset_from_cache: bool = False
    binary_path: Optional[str] = None
    completion_files: List[str] = field(default_factory=list)
    dependencies: Optional[DependencyReport] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.repo.binary_name

    @property
    def ok(self) -> bool:
        return self.error is None and self.binary_path is not None


class ReleaseClient(ABC):
    """Source of upstream release metadata."""

    @abstractmethod
    def fetch_latest_release(self, repo: str) -> Dict[str, Any]:
        """
        Fetch the latest release of `repo` as a raw metadata mapping.

        Raises:
            RateLimitError, ResourceNotFoundError, MalformedResponseError
        """


class Downloader(ABC):
    @abstractmethod
    def download(self, url: str, target_path: Pathish) -> bool:
        """Download `url` to `target_path`; return True on success."""


class ArchiveExtractor(ABC):
    @abstractmethod
    def extract(self, archive_path: Pathish, target_dir: Pathish) -> List[Path]:
        """
        Extract an archive and return the extracted file paths.

        Raises:
            UnsupportedArchiveError: For extensions other than .tar.gz, .tgz and .zip.
            ExtractionError: When the archive cannot be read.
        """


class DependencyInspector(ABC):
    @abstractmethod
    def inspect(self, binary_path: Pathish) -> DependencyReport:
        """Report whether the binary's shared libraries are available."""


class SystemPackageManager(ABC):
    """Install-by-name fallback provided by the operating system."""

    @abstractmethod
    def get_version(self, package: str) -> Optional[str]:
        """Installed (or candidate) version of `package`, None when unknown."""

    @abstractmethod
    def install(self, package: str) -> bool:
        """Install `package`; return True on success."""
