"""
Install Pipeline Orchestrator

This module coordinates a ghr-installer run: checking each tracked repository
against the release API, the artifact cache and the system package manager,
then installing, updating or removing packages while holding the package
database lock.
"""

import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ghr_installer.constants import (
    ARTIFACT_MAX_AGE_DAYS,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_INSTALL_DIR,
    INSTALL_MODE_APT,
    INSTALL_MODE_GITHUB,
    INSTALL_MODE_NEWER,
    INSTALL_MODES,
    PACKAGE_SOURCE_GITHUB,
    STATUS_APT,
    STATUS_EQUAL,
    STATUS_GITHUB,
    STATUS_GITHUB_ONLY,
)
from ghr_installer.exceptions import (
    ConfigurationError,
    DatabaseError,
    FileSystemError,
    GhrInstallerError,
    ValidationError,
)
from ghr_installer.log_utils import logger
from ghr_installer.utils import get_api_request_summary

from .assets import get_host_arch, normalize_arch, select_asset
from .cache import ArtifactCache, ReleaseCache
from .database import PackageDatabase, utc_timestamp
from .files import FileOperations, copy_file_atomic
from .github_source import GithubReleaseClient, GithubReleaseSource
from .interfaces import (
    ArchiveExtractor,
    Asset,
    DependencyInspector,
    Downloader,
    PackageCheck,
    PackageRecord,
    PackageStatus,
    Pathish,
    ReleaseClient,
    RepoSpec,
    SystemPackageManager,
)
from .system import (
    AptPackageManager,
    HttpDownloader,
    LddDependencyInspector,
    ensure_path_configured,
    install_completions,
    probe_binary_version,
)
from .version import VersionComparison, compare_versions


def compute_status(github_version: str, apt_version: Optional[str]) -> str:
    """
    Classify which source offers the better version.

    Returns:
        "GitHub only" when the system package manager has no candidate,
        otherwise "GitHub", "APT" or "Equal" depending on which is newer.
    """
    if not apt_version:
        return STATUS_GITHUB_ONLY
    comparison = compare_versions(github_version, apt_version)
    if comparison == VersionComparison.NEWER:
        return STATUS_GITHUB
    if comparison == VersionComparison.OLDER:
        return STATUS_APT
    return STATUS_EQUAL


class InstallOrchestrator:
    """
    Coordinates checking and installing packages from GitHub releases.

    This class coordinates:
    - Release lookup through the release cache and the release client
    - Asset selection for the host architecture
    - Artifact reuse through the artifact cache, downloading on a miss
    - Extraction, binary discovery and dependency inspection
    - Installs, updates and removals recorded in the package database

    Results of a check run are returned as a mapping and passed explicitly to
    the install methods. Extracted files live in a per-run work directory that
    is removed by `cleanup()` (or when used as a context manager).
    """

    def __init__(
        self,
        config: Dict[str, Any],
        release_client: Optional[ReleaseClient] = None,
        downloader: Optional[Downloader] = None,
        extractor: Optional[ArchiveExtractor] = None,
        dependency_inspector: Optional[DependencyInspector] = None,
        package_manager: Optional[SystemPackageManager] = None,
        database: Optional[PackageDatabase] = None,
        release_cache: Optional[ReleaseCache] = None,
        artifact_cache: Optional[ArtifactCache] = None,
        host_arch: Optional[str] = None,
        work_dir: Optional[Pathish] = None,
        home: Optional[Pathish] = None,
    ):
        """
        Parameters:
            config: Loaded configuration mapping (see setup_config.load_config).
            release_client, downloader, extractor, dependency_inspector,
            package_manager: Collaborators; the GitHub/HTTP/tarfile/ldd/APT
                implementations are used when omitted.
            database, release_cache, artifact_cache: Stores; built from the
                DATA_DIR and CACHE_DIR config keys when omitted.
            host_arch: Machine name; defaults to platform.machine().
            work_dir: Directory for downloads and extraction; a temporary
                directory is created when omitted.
            home: Home directory for completion and shell rc paths.
        """
        self.config = config
        self.home = home
        self.install_dir = os.path.expanduser(
            str(config.get("INSTALL_DIR") or DEFAULT_INSTALL_DIR)
        )
        self.bypass_cache = bool(config.get("OVERRIDE_CACHE", False))

        ttl = int(config.get("CACHE_TTL", DEFAULT_CACHE_TTL_SECONDS))
        cache_dir = config.get("CACHE_DIR")
        self.release_cache = release_cache or ReleaseCache(cache_dir, ttl=ttl)
        self.artifact_cache = artifact_cache or ArtifactCache(
            cache_dir,
            ttl=ttl,
            max_age_days=int(config.get("ARTIFACT_MAX_AGE_DAYS", ARTIFACT_MAX_AGE_DAYS)),
        )
        self.database = database or PackageDatabase(config.get("DATA_DIR"))

        self.release_source = GithubReleaseSource(
            release_client or GithubReleaseClient(config.get("GITHUB_TOKEN")),
            self.release_cache,
        )
        self.downloader = downloader or HttpDownloader(
            int(config.get("CONNECT_RETRIES", DEFAULT_CONNECT_RETRIES))
        )
        self.file_operations = FileOperations()
        self.extractor = extractor or self.file_operations
        self.dependency_inspector = dependency_inspector or LddDependencyInspector()
        self.package_manager = package_manager or AptPackageManager()

        self.host_arch = host_arch or get_host_arch()
        self._work_dir = os.fspath(work_dir) if work_dir else None
        self._owns_work_dir = work_dir is None

    def __enter__(self) -> "InstallOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def work_dir(self) -> str:
        if self._work_dir is None:
            self._work_dir = tempfile.mkdtemp(prefix="ghr-installer-")
        return self._work_dir

    def cleanup(self) -> None:
        """Remove the temporary work directory if this orchestrator created it."""
        if self._owns_work_dir and self._work_dir and os.path.isdir(self._work_dir):
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None

    # ------------------------------------------------------------------
    # Checking
    # ------------------------------------------------------------------

    def check_repositories(self, repos: Sequence[RepoSpec]) -> Dict[str, PackageCheck]:
        """
        Check every repository in order.

        A failing repository gets its error recorded on its PackageCheck and
        the run continues with the next one.

        Returns:
            Dict[str, PackageCheck]: Results keyed by binary name, in input order.
        """
        start_time = time.time()
        logger.info(f"System architecture: {self.host_arch}")
        normalize_arch(self.host_arch)

        checks: Dict[str, PackageCheck] = {}
        for spec in repos:
            checks[spec.binary_name] = self.check_repository(spec)

        failed = sum(1 for c in checks.values() if c.error)
        summary = get_api_request_summary()
        logger.debug(
            "GitHub API requests: %d (cache hits: %d, misses: %d)",
            summary["total_requests"],
            summary["cache_hits"],
            summary["cache_misses"],
        )
        logger.info(
            f"Checked {len(checks)} repositories in {time.time() - start_time:.1f}s"
            + (f" ({failed} failed)" if failed else "")
        )
        return checks

    def check_repository(self, spec: RepoSpec) -> PackageCheck:
        """Run the full check for one repository; never raises application errors."""
        check = PackageCheck(repo=spec)
        name = spec.binary_name

        record = self.database.read(name)
        if record is not None:
            check.installed_version = record.version
        check.apt_version = self.package_manager.get_version(name)

        try:
            release, from_cache = self.release_source.get_latest_release(
                spec.repo, bypass_cache=self.bypass_cache
            )
        except GhrInstallerError as e:
            logger.warning(f"Could not fetch release for {spec.repo}: {e}")
            check.error = str(e)
            return check

        check.github_version = release.version
        logger.debug(
            "%s: latest release %s%s",
            spec.repo,
            release.tag_name,
            " (cached)" if from_cache else "",
        )

        try:
            asset = select_asset(release.assets, self.host_arch)
        except ValidationError as e:
            check.error = str(e)
            return check
        if asset is None:
            check.error = f"No suitable binary asset for {self.host_arch}"
            logger.warning(f"{spec.repo}: {check.error}")
            return check
        check.asset = asset

        try:
            archive_path = self._obtain_artifact(spec, asset, check)
            package_dir = os.path.join(self.work_dir, "packages", name)
            if os.path.isdir(package_dir):
                shutil.rmtree(package_dir)
            self.extractor.extract(archive_path, package_dir)
        except (GhrInstallerError, OSError) as e:
            logger.error(f"Failed to process asset for {name}: {e}")
            check.error = str(e)
            return check

        binary = self.file_operations.find_binary(package_dir, name)
        if binary is None:
            check.error = "Could not find binary in extracted files"
            logger.error(f"{check.error} for {name}")
            return check
        self._verify_binary_name(spec, binary)

        check.binary_path = str(binary)
        check.completion_files = [
            str(p) for p in self.file_operations.find_completion_files(package_dir)
        ]
        check.dependencies = self.dependency_inspector.inspect(binary)
        check.status = compute_status(check.github_version, check.apt_version)
        return check

    def _obtain_artifact(self, spec: RepoSpec, asset: Asset, check: PackageCheck) -> str:
        """
        Return a local path of the asset archive, from the cache or a fresh download.

        Raises:
            FileSystemError: The download failed.
        """
        cached = self.artifact_cache.get(
            spec.repo, asset.name, asset.download_url, bypass=self.bypass_cache
        )
        if cached is not None:
            check.asset_from_cache = True
            return cached

        download_dir = os.path.join(self.work_dir, "downloads", spec.binary_name)
        os.makedirs(download_dir, exist_ok=True)
        download_path = os.path.join(download_dir, asset.name)
        if not self.downloader.download(asset.download_url, download_path):
            raise FileSystemError(f"Failed to download {asset.name}", path=download_path)

        try:
            return self.artifact_cache.put(
                spec.repo, asset.name, asset.download_url, download_path
            )
        except (FileSystemError, OSError) as e:
            logger.warning(f"Could not cache {asset.name}: {e}")
            return download_path

    @staticmethod
    def _verify_binary_name(spec: RepoSpec, binary: Path) -> None:
        if binary.name == spec.binary_name:
            return
        logger.warning(
            f"Binary name '{spec.binary_name}' does not match extracted binary "
            f"'{binary.name}'. If this is the right binary, list it in the "
            f"repository file as: {spec.repo} | {binary.name}"
        )

    # ------------------------------------------------------------------
    # Installing
    # ------------------------------------------------------------------

    def _wants_install(self, check: PackageCheck, mode: str) -> bool:
        if mode == INSTALL_MODE_APT:
            return bool(check.apt_version)
        if not check.ok:
            logger.debug(f"Skipping {check.name}: {check.error or 'no binary found'}")
            return False
        if mode == INSTALL_MODE_GITHUB:
            return True
        if check.status not in (STATUS_GITHUB, STATUS_GITHUB_ONLY):
            return False
        if check.installed_version and check.github_version:
            return (
                compare_versions(check.github_version, check.installed_version)
                == VersionComparison.NEWER
            )
        return True

    def install_packages(
        self, checks: Dict[str, PackageCheck], mode: str = INSTALL_MODE_NEWER
    ) -> Tuple[List[str], List[str]]:
        """
        Install every checked package selected by `mode`.

        Modes:
        - "newer": GitHub releases newer than the system package (or with no
          system package) and newer than what is installed
        - "github": every GitHub release that checked cleanly
        - "apt": every package the system package manager offers

        Repositories whose check failed are skipped in the GitHub modes; their
        error is already shown in the check table.

        Returns:
            Tuple[List[str], List[str]]: Names installed and names that failed.

        Raises:
            LockBusyError: Another invocation holds the database lock.
        """
        if mode not in INSTALL_MODES:
            raise ValidationError(f"Unknown install mode: {mode}", field="mode", value=mode)

        installed: List[str] = []
        failed: List[str] = []
        with self.database.locked():
            for name, check in checks.items():
                if not self._wants_install(check, mode):
                    continue
                if mode == INSTALL_MODE_APT:
                    ok = self.install_apt(check)
                else:
                    ok = self.install_github(check)
                (installed if ok else failed).append(name)

        if installed:
            logger.info(f"Successfully installed {len(installed)} package(s)")
        if failed:
            logger.error(f"Failed to install {len(failed)} package(s)")
        return installed, failed

    def install_selected(
        self, checks: Dict[str, PackageCheck], selections: Dict[str, str]
    ) -> Tuple[List[str], List[str]]:
        """
        Install packages with a per-package source ("github" or "apt").

        Returns:
            Tuple[List[str], List[str]]: Names installed and names that failed.
        """
        installed: List[str] = []
        failed: List[str] = []
        with self.database.locked():
            for name, source in selections.items():
                check = checks.get(name)
                if check is None:
                    continue
                if source == INSTALL_MODE_APT:
                    ok = self.install_apt(check)
                else:
                    ok = self.install_github(check)
                (installed if ok else failed).append(name)
        return installed, failed

    def install_github(self, check: PackageCheck) -> bool:
        """
        Install the extracted GitHub binary of `check` and record it.

        Copies the binary into the install directory (mode 0755), installs
        completions and man pages, runs `--version` as a smoke test and writes
        the package record.

        Raises:
            LockBusyError: Another invocation holds the database lock.
        """
        name = check.name
        if not check.ok or not check.binary_path or not check.github_version:
            logger.error(f"Cannot install {name}: {check.error or 'no binary found'}")
            return False
        if not os.path.isfile(check.binary_path):
            logger.error(f"Error: Binary file not found at {check.binary_path}")
            return False

        with self.database.locked():
            try:
                os.makedirs(self.install_dir, exist_ok=True)
            except OSError as e:
                logger.error(f"Could not create {self.install_dir}: {e}")
                return False

            logger.info(f"Installing {name} to {self.install_dir}...")
            target = os.path.join(self.install_dir, name)
            if not copy_file_atomic(check.binary_path, target):
                logger.error(f"Failed to install {name}")
                return False
            if not self.file_operations.make_executable(target):
                return False

            files = [target]
            files.extend(
                install_completions(name, check.completion_files, home=self.home)
            )

            probed = probe_binary_version(target)
            if probed is None:
                logger.warning(
                    f"Warning: Installed binary {name} may not work correctly"
                )

            now = utc_timestamp()
            record = PackageRecord(
                version=check.github_version,
                files=files,
                installed_at=now,
                updated_at=now,
                source=PACKAGE_SOURCE_GITHUB,
                repo=check.repo.repo,
            )
            try:
                self.database.write(name, record)
            except DatabaseError as e:
                logger.error(f"Could not record installation of {name}: {e}")
                return False

        logger.info(f"Successfully installed {name} {check.github_version}")
        return True

    def install_apt(self, check: PackageCheck) -> bool:
        """Install `check`'s package through the system package manager."""
        if not check.apt_version:
            logger.warning(f"{check.name} is not available from the package manager")
            return False
        return self.package_manager.install(check.name)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @staticmethod
    def find_repo(name: str, repos: Sequence[RepoSpec]) -> Optional[RepoSpec]:
        """Match `name` against binary names, then repository names and identifiers."""
        for spec in repos:
            if spec.binary_name == name:
                return spec
        for spec in repos:
            if spec.repo_name == name or spec.repo == name:
                return spec
        return None

    def update_package(self, name: str, repos: Sequence[RepoSpec]) -> bool:
        """
        Check a single package and install it if the GitHub release is newer.

        The installed version is the baseline; without one, the system package
        version is used.

        Returns:
            bool: True if a newer version was installed, False if already up to date.

        Raises:
            ConfigurationError: `name` is not in the repository list.
            GhrInstallerError: The check or the install failed.
        """
        spec = self.find_repo(name, repos)
        if spec is None:
            raise ConfigurationError(f"Package {name} not found in repository list")

        check = self.check_repository(spec)
        if not check.ok or not check.github_version:
            raise GhrInstallerError(f"Could not check {name}", details=check.error)

        baseline = check.installed_version or check.apt_version
        if baseline and (
            compare_versions(check.github_version, baseline)
            != VersionComparison.NEWER
        ):
            logger.info(f"{spec.binary_name} is up to date ({baseline})")
            return False

        if not self.install_github(check):
            raise GhrInstallerError(f"Failed to update {spec.binary_name}")
        return True

    def remove_package(self, name: str) -> bool:
        """
        Delete the files recorded for `name` and then its record.

        Returns:
            bool: False when the package is not recorded.

        Raises:
            LockBusyError: Another invocation holds the database lock.
            DatabaseError: The record could not be removed.
        """
        with self.database.locked():
            record = self.database.read(name)
            if record is None:
                logger.warning(f"Package {name} is not managed by ghr-installer")
                return False

            logger.info(f"Removing {name} version {record.version}...")
            for file_path in record.files:
                if os.path.isfile(file_path) or os.path.islink(file_path):
                    if self.file_operations.cleanup_file(file_path):
                        logger.info(f"Removed: {file_path}")
            self.database.delete(name)

        logger.info(f"Successfully removed {name}")
        return True

    def list_installed(self) -> Dict[str, PackageRecord]:
        return self.database.list_packages()

    def installation_status(self, name: str) -> PackageStatus:
        return self.database.check_installation_status(name)

    def clear_caches(self) -> bool:
        """Wipe the release cache and every cached artifact."""
        releases_cleared = self.release_cache.clear()
        artifacts_cleared = self.artifact_cache.clear()
        return releases_cleared and artifacts_cleared

    def ensure_path_configured(self, shell: Optional[str] = None) -> Optional[str]:
        return ensure_path_configured(self.install_dir, shell=shell, home=self.home)
