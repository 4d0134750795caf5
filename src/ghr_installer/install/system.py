"""
System Integration for the ghr-installer Install Subsystem

Concrete implementations of the collaborator interfaces that touch the host:
HTTP downloads, the APT package manager and `ldd`, plus the helpers that
probe an installed binary, install completions and man pages, and add the
install directory to the user's shell startup file.
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from ghr_installer.constants import (
    BASH_COMPLETION_DIR,
    BASH_COMPLETION_MARKERS,
    BINARY_VERSION_TIMEOUT,
    DEFAULT_CONNECT_RETRIES,
    MAN1_DIR,
    MAN_PAGE_SUFFIXES,
    SHELL_RC_FILES,
    ZSH_COMPLETION_DIR,
    ZSH_COMPLETION_MARKERS,
)
from ghr_installer.log_utils import logger
from ghr_installer.utils import download_file_with_retry

from .files import copy_file_atomic
from .interfaces import (
    DependencyInspector,
    DependencyReport,
    DependencyStatus,
    Downloader,
    Pathish,
    SystemPackageManager,
)
from .version import parse_binary_version


def expand_home(path: str, home: Optional[Pathish] = None) -> Path:
    """Expand a leading `~/` against `home` (the real home directory by default)."""
    if home is not None and path.startswith("~/"):
        return Path(home) / path[2:]
    return Path(os.path.expanduser(path))


class HttpDownloader(Downloader):
    """Streams a URL to disk over requests; retries only when configured."""

    def __init__(self, retries: int = DEFAULT_CONNECT_RETRIES):
        self.retries = retries

    def download(self, url: str, target_path: Pathish) -> bool:
        return download_file_with_retry(url, os.fspath(target_path), self.retries)


class AptPackageManager(SystemPackageManager):
    """
    Version lookups through `apt-cache policy` and installs through
    `sudo apt-get install -y`.
    """

    def is_available(self) -> bool:
        return shutil.which("apt-cache") is not None

    @staticmethod
    def parse_policy(output: str) -> Optional[str]:
        """
        Pick the version out of `apt-cache policy` output.

        The installed version wins; otherwise the candidate. "(none)" means
        absent for either field.
        """
        installed = candidate = None
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith("Installed:"):
                installed = stripped.split(":", 1)[1].strip()
            elif stripped.startswith("Candidate:"):
                candidate = stripped.split(":", 1)[1].strip()
        for value in (installed, candidate):
            if value and value != "(none)":
                return value
        return None

    def get_version(self, package: str) -> Optional[str]:
        if not self.is_available():
            logger.debug("apt-cache not available; skipping APT lookup")
            return None
        try:
            result = subprocess.run(
                ["apt-cache", "policy", package],
                capture_output=True,
                text=True,
                check=False,
            )
        except (subprocess.SubprocessError, FileNotFoundError, OSError) as e:
            logger.debug(f"apt-cache policy failed for {package}: {e}")
            return None
        if result.returncode != 0:
            return None
        return self.parse_policy(result.stdout)

    def install(self, package: str) -> bool:
        logger.info(f"Installing {package} via apt...")
        try:
            result = subprocess.run(
                ["sudo", "apt-get", "install", "-y", package], check=False
            )
        except (subprocess.SubprocessError, FileNotFoundError, OSError) as e:
            logger.error(f"Could not run apt-get for {package}: {e}")
            return False
        if result.returncode != 0:
            logger.error(f"apt-get install {package} failed (exit {result.returncode})")
            return False
        return True


class LddDependencyInspector(DependencyInspector):
    """Shared library check using `ldd`."""

    STATIC_MARKERS = ("not a dynamic executable", "statically linked")

    @classmethod
    def parse_ldd_output(cls, output: str) -> DependencyReport:
        if any(marker in output for marker in cls.STATIC_MARKERS):
            return DependencyReport(DependencyStatus.STATIC)
        missing = [
            line.split()[0]
            for line in output.splitlines()
            if "not found" in line and line.split()
        ]
        if missing:
            return DependencyReport(DependencyStatus.MISSING, missing)
        return DependencyReport(DependencyStatus.SATISFIED)

    def inspect(self, binary_path: Pathish) -> DependencyReport:
        if shutil.which("ldd") is None:
            logger.warning("ldd not found, cannot check dependencies")
            return DependencyReport(DependencyStatus.SATISFIED)
        try:
            result = subprocess.run(
                ["ldd", os.fspath(binary_path)],
                capture_output=True,
                text=True,
                check=False,
            )
        except (subprocess.SubprocessError, FileNotFoundError, OSError) as e:
            logger.warning(f"ldd failed for {binary_path}: {e}")
            return DependencyReport(DependencyStatus.SATISFIED)
        return self.parse_ldd_output(f"{result.stdout}\n{result.stderr}")


def probe_binary_version(binary_path: Pathish) -> Optional[str]:
    """
    Run `<binary> --version` and return the first x.y.z it prints.

    Returns:
        The version, or None if the binary fails to run or prints no version.
    """
    try:
        result = subprocess.run(
            [os.fspath(binary_path), "--version"],
            capture_output=True,
            text=True,
            check=False,
            timeout=BINARY_VERSION_TIMEOUT,
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"Could not run {binary_path} --version: {e}")
        return None
    if result.returncode != 0:
        return None
    return parse_binary_version(f"{result.stdout}\n{result.stderr}")


def _completion_target(
    package: str, source: Path, home: Optional[Pathish]
) -> Optional[Path]:
    lowered = source.name.lower()
    if lowered.endswith(MAN_PAGE_SUFFIXES):
        return expand_home(MAN1_DIR, home) / source.name
    if any(marker in lowered for marker in ZSH_COMPLETION_MARKERS):
        return expand_home(ZSH_COMPLETION_DIR, home) / f"_{package}"
    if any(marker in lowered for marker in BASH_COMPLETION_MARKERS):
        return expand_home(BASH_COMPLETION_DIR, home) / package
    return None


def install_completions(
    package: str, completion_files: Iterable[Pathish], home: Optional[Pathish] = None
) -> List[str]:
    """
    Copy completion scripts and man pages into the per-user share directories.

    bash completions go to `bash-completion/completions/<package>`, zsh
    completions to `zsh/site-functions/_<package>` and man pages keep their
    name under `man/man1/`. Files that match none of these are skipped.

    Returns:
        List[str]: Absolute paths of the installed files.
    """
    installed: List[str] = []
    for file_path in completion_files:
        source = Path(file_path)
        target = _completion_target(package, source, home)
        if target is None:
            logger.debug("Skipping unrecognised completion file %s", source)
            continue
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create {target.parent}: {e}")
            continue
        if not copy_file_atomic(source, target):
            continue
        try:
            os.chmod(target, 0o644)
        except OSError:
            pass
        installed.append(str(target))
        logger.debug("Installed %s", target)
    return installed


def ensure_path_configured(
    install_dir: Pathish, shell: Optional[str] = None, home: Optional[Pathish] = None
) -> Optional[str]:
    """
    Make sure the user's shell startup file puts `install_dir` on PATH.

    Appends `export PATH="$PATH:<install_dir>"` to ~/.bashrc or ~/.zshrc when
    the directory is not mentioned there yet.

    Parameters:
        install_dir: Directory holding installed binaries.
        shell: Shell path or name; defaults to $SHELL.

    Returns:
        Optional[str]: The startup file that was modified, or None if nothing changed.
    """
    shell_name = os.path.basename(shell or os.environ.get("SHELL", ""))
    rc_template = SHELL_RC_FILES.get(shell_name)
    if rc_template is None:
        logger.warning(f"Unsupported shell: {shell_name or 'unknown'}")
        return None

    directory = os.fspath(install_dir)
    rc_file = expand_home(rc_template, home)
    try:
        if rc_file.exists() and directory in rc_file.read_text(encoding="utf-8"):
            return None
        with open(rc_file, "a", encoding="utf-8") as f:
            f.write(f'\nexport PATH="$PATH:{directory}"\n')
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Could not update {rc_file}: {e}")
        return None

    logger.info(f"Added {directory} to PATH in {rc_file}")
    return str(rc_file)
