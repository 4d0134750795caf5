"""
File Operations for the ghr-installer Install Subsystem

This module provides file operations utilities including atomic writes,
private directory creation, safe archive extraction and discovery of the
binary, completion and man page files inside an extracted release.
"""

import json
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Callable, List, Optional

from ghr_installer.constants import (
    EXECUTABLE_PERMISSIONS,
    MAN_PAGE_SUFFIXES,
    PRIVATE_DIR_PERMISSIONS,
    TAR_EXTENSIONS,
    ZIP_EXTENSION,
)
from ghr_installer.exceptions import ExtractionError, UnsupportedArchiveError
from ghr_installer.log_utils import logger

from .interfaces import ArchiveExtractor, Pathish


def _is_within_base(real_base_dir: str, candidate: str) -> bool:
    """
    Determine whether the candidate path resides within the given base directory.

    Returns:
        True if the candidate path is inside `real_base_dir`, False otherwise.
    """
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def ensure_private_dir(directory: Pathish) -> str:
    """
    Create `directory` (and parents) if needed, restricting the leaf to the owner.

    Returns:
        str: The directory path.

    Raises:
        OSError: If the directory cannot be created.
    """
    path = os.fspath(directory)
    os.makedirs(path, mode=PRIVATE_DIR_PERMISSIONS, exist_ok=True)
    try:
        os.chmod(path, PRIVATE_DIR_PERMISSIONS)
    except OSError as e:
        logger.debug("Could not restrict permissions of %s: %s", path, e)
    return path


def _atomic_write(
    file_path: str, writer_func: Callable[[Any], None], suffix: str = ".tmp"
) -> bool:
    """
    Write data to a file atomically by writing to a temporary file and atomically replacing the target on success.

    The temporary file is created with `mkstemp` in the destination directory,
    so it is only readable by the owner and the final rename never crosses a
    filesystem boundary. If anything fails before the rename the destination is
    left untouched.

    Parameters:
        file_path (str): Destination file path to be written.
        writer_func (Callable[[Any], None]): Callable that receives an open text file-like object and writes the desired content to it.
        suffix (str): Suffix to use for the temporary file name (default ".tmp").

    Returns:
        bool: `True` if the temporary write and atomic replace succeeded, `False` on any error.
    """
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=os.path.dirname(file_path) or ".", prefix="tmp-", suffix=suffix
        )
    except OSError as e:
        logger.error(f"Could not create temporary file for {file_path}: {e}")
        return False

    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            writer_func(temp_f)
            temp_f.flush()
            os.fsync(temp_f.fileno())
        os.replace(temp_path, file_path)
    except (IOError, UnicodeEncodeError, OSError, TypeError, ValueError) as e:
        logger.error(f"Could not write to {file_path}: {e}")
        return False
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
    return True


def _atomic_write_json(file_path: str, data: dict) -> bool:
    """
    Atomically write the given dictionary to the target file as pretty-printed JSON.

    Returns:
        bool: `True` if the file was written and moved into place successfully, `False` on error.
    """
    return _atomic_write(
        file_path, lambda f: json.dump(data, f, indent=2), suffix=".json"
    )


def copy_file_atomic(source_path: Pathish, target_path: Pathish) -> bool:
    """
    Copy a binary file next to `target_path` and rename it into place.

    File mode bits are copied along with the content.

    Returns:
        bool: `True` on success, `False` if the copy or rename failed.
    """
    target = os.fspath(target_path)
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=os.path.dirname(target) or ".", prefix="tmp-", suffix=".part"
        )
    except OSError as e:
        logger.error(f"Could not create temporary file for {target}: {e}")
        return False

    try:
        with os.fdopen(temp_fd, "wb") as dst, open(source_path, "rb") as src:
            shutil.copyfileobj(src, dst)
        shutil.copymode(source_path, temp_path)
        os.replace(temp_path, target)
    except OSError as e:
        logger.error(f"Could not copy {source_path} to {target}: {e}")
        return False
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
    return True


def safe_extract_path(extract_dir: str, file_path: str) -> str:
    """
    Resolve a safe absolute extraction path and prevent directory traversal.

    Parameters:
        extract_dir (str): Base directory intended for extraction.
        file_path (str): Member path from the archive to be extracted.

    Returns:
        str: Absolute, normalized path inside extract_dir suitable for extraction.

    Raises:
        ValueError: If the resolved path is outside extract_dir.
    """
    real_extract_dir = os.path.realpath(extract_dir)
    prospective_path = os.path.join(real_extract_dir, file_path)
    normalized_path = os.path.realpath(prospective_path)

    if not _is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{file_path}' is outside base '{extract_dir}'"
        )

    return normalized_path


def _is_executable_file(path: Path) -> bool:
    try:
        return path.is_file() and os.access(path, os.X_OK)
    except OSError:
        return False


class FileOperations(ArchiveExtractor):
    """
    Archive extraction and file discovery for downloaded release assets.

    Includes methods for:
    - Extracting .tar.gz/.tgz and .zip archives with traversal protection
    - Locating the binary inside an extracted tree
    - Collecting shell completions and man pages
    - File cleanup
    """

    def extract(self, archive_path: Pathish, target_dir: Pathish) -> List[Path]:
        """
        Extract every regular file of an archive into `target_dir`.

        Members with absolute paths, parent-directory references or that would
        resolve outside `target_dir` are skipped. Symlinks and device entries in
        tarballs are skipped as well. Executable bits recorded in the archive
        are preserved.

        Returns:
            List[Path]: Paths of the extracted files.

        Raises:
            UnsupportedArchiveError: For extensions other than .tar.gz, .tgz and .zip.
            ExtractionError: When the archive is corrupt or cannot be written out.
        """
        archive = os.fspath(archive_path)
        extract_dir = os.fspath(target_dir)
        lowered = archive.lower()

        os.makedirs(extract_dir, exist_ok=True)
        if lowered.endswith(TAR_EXTENSIONS):
            return self._extract_tar(archive, extract_dir)
        if lowered.endswith(ZIP_EXTENSION):
            return self._extract_zip(archive, extract_dir)
        raise UnsupportedArchiveError(
            f"Unsupported archive format: {os.path.basename(archive)}",
            archive_path=archive,
        )

    def _extract_tar(self, archive: str, extract_dir: str) -> List[Path]:
        extracted_files: List[Path] = []
        try:
            with tarfile.open(archive, "r:gz") as tar_ref:
                for member in tar_ref.getmembers():
                    if not member.isfile():
                        continue
                    if not self._is_safe_archive_member(member.name):
                        logger.warning(
                            "Skipping unsafe archive member %s (possible traversal)",
                            member.name,
                        )
                        continue
                    try:
                        extract_path = safe_extract_path(extract_dir, member.name)
                    except ValueError as e:
                        logger.warning(f"Skipping unsafe extraction path: {e}")
                        continue

                    source = tar_ref.extractfile(member)
                    if source is None:
                        continue
                    os.makedirs(os.path.dirname(extract_path), exist_ok=True)
                    with source, open(extract_path, "wb") as target:
                        shutil.copyfileobj(source, target)
                    os.chmod(extract_path, (member.mode & 0o777) | stat.S_IRUSR)

                    extracted_files.append(Path(extract_path))
                    logger.debug(f"Extracted {member.name} to {extract_path}")
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ExtractionError(
                f"Error extracting archive {os.path.basename(archive)}",
                archive_path=archive,
                details=str(e),
            ) from e
        return extracted_files

    def _extract_zip(self, archive: str, extract_dir: str) -> List[Path]:
        extracted_files: List[Path] = []
        try:
            with zipfile.ZipFile(archive, "r") as zip_ref:
                for file_info in zip_ref.infolist():
                    if file_info.is_dir():
                        continue

                    file_name = file_info.filename
                    if not self._is_safe_archive_member(file_name):
                        logger.warning(
                            "Skipping unsafe archive member %s (possible traversal)",
                            file_name,
                        )
                        continue
                    try:
                        extract_path = safe_extract_path(extract_dir, file_name)
                    except ValueError as e:
                        logger.warning(f"Skipping unsafe extraction path: {e}")
                        continue

                    os.makedirs(os.path.dirname(extract_path), exist_ok=True)
                    with (
                        zip_ref.open(file_info) as source,
                        open(extract_path, "wb") as target,
                    ):
                        shutil.copyfileobj(source, target)

                    # Unix permissions live in the high word of external_attr
                    unix_mode = (file_info.external_attr >> 16) & 0o777
                    if unix_mode:
                        os.chmod(extract_path, unix_mode | stat.S_IRUSR)

                    extracted_files.append(Path(extract_path))
                    logger.debug(f"Extracted {file_name} to {extract_path}")
        except (zipfile.BadZipFile, OSError) as e:
            raise ExtractionError(
                f"Error extracting archive {os.path.basename(archive)}",
                archive_path=archive,
                details=str(e),
            ) from e
        return extracted_files

    def _is_safe_archive_member(self, member_name: str) -> bool:
        """
        Determine whether an archive member name is safe to extract.

        Returns:
            `True` if the member name contains no absolute paths, parent-directory references, or null bytes, `False` otherwise.
        """
        if (
            not member_name
            or member_name.startswith("/")
            or member_name.startswith("\\")
        ):
            return False

        normalized = os.path.normpath(member_name)
        if os.path.isabs(normalized):
            return False
        if normalized == "..":
            return False
        if normalized.startswith(f"..{os.sep}"):
            return False
        if os.altsep and normalized.startswith(f"..{os.altsep}"):
            return False
        if "\x00" in normalized:
            return False
        return True

    def find_binary(self, extract_dir: Pathish, name: str) -> Optional[Path]:
        """
        Locate the executable for `name` inside an extracted release.

        Search order:
        1. any executable file named exactly `name` (shallowest first)
        2. `name` at the top level, in `bin/`, in `<name>/` or in `<name>-*/`
        3. the first executable file found anywhere

        Returns:
            Optional[Path]: The binary path, or None when nothing executable exists.
        """
        root = Path(extract_dir)
        if not root.is_dir():
            return None

        files = sorted(
            (p for p in root.rglob("*") if p.is_file()),
            key=lambda p: (len(p.relative_to(root).parts), str(p)),
        )

        for candidate in files:
            if candidate.name == name and _is_executable_file(candidate):
                return candidate

        subdirs = [root, root / "bin", root / name]
        subdirs.extend(sorted(p for p in root.glob(f"{name}-*") if p.is_dir()))
        for subdir in subdirs:
            candidate = subdir / name
            if _is_executable_file(candidate):
                return candidate

        for candidate in files:
            if _is_executable_file(candidate) and not self.is_completion_file(
                candidate
            ):
                return candidate
        return None

    @staticmethod
    def is_completion_file(path: Path) -> bool:
        """True for shell completions and man pages shipped inside an archive."""
        lowered = path.name.lower()
        if "completion" in lowered:
            return True
        if lowered.endswith(MAN_PAGE_SUFFIXES):
            return True
        return "man1" in (part.lower() for part in path.parts[:-1])

    def find_completion_files(self, extract_dir: Pathish) -> List[Path]:
        """Return shell completion and man page files below `extract_dir`, sorted."""
        root = Path(extract_dir)
        if not root.is_dir():
            return []
        return sorted(
            p for p in root.rglob("*") if p.is_file() and self.is_completion_file(p)
        )

    def make_executable(self, file_path: Pathish) -> bool:
        """Set 0755 on `file_path`; returns False if chmod failed."""
        try:
            os.chmod(file_path, EXECUTABLE_PERMISSIONS)
            return True
        except OSError as e:
            logger.error(f"Could not make {file_path} executable: {e}")
            return False

    def cleanup_file(self, file_path: Pathish) -> bool:
        """
        Remove a file if it exists.

        Returns:
            bool: `True` if the file is gone afterwards, `False` if removal failed.
        """
        try:
            if os.path.lexists(file_path):
                os.remove(file_path)
            return True
        except OSError as e:
            logger.error(f"Error cleaning up file {file_path}: {e}")
            return False
