"""
Cache Management for the ghr-installer Install Subsystem

This module provides the two cache tiers used when checking repositories:
a JSON document of latest-release metadata per repository, and an on-disk
store of downloaded release archives keyed by repository.
"""

import json
import os
import shutil
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import platformdirs

from ghr_installer.constants import (
    APP_NAME,
    ARTIFACT_MAX_AGE_DAYS,
    ARTIFACT_META_SUFFIX,
    ASSETS_CACHE_DIR_NAME,
    DEFAULT_CACHE_TTL_SECONDS,
    RELEASE_CACHE_FILE,
    RELEASE_CACHE_VERSION,
)
from ghr_installer.exceptions import FileSystemError
from ghr_installer.log_utils import logger
from ghr_installer.utils import track_api_cache_hit, track_api_cache_miss

from .files import _atomic_write_json, copy_file_atomic, ensure_private_dir
from .interfaces import Pathish


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso_datetime_utc(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp and normalize it to UTC.

    Parameters:
        value (Any): An ISO 8601 datetime representation (commonly a string). Falsey values or unparsable values are treated as absent.

    Returns:
        A timezone-aware datetime in UTC if parsing succeeds, `None` otherwise.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class CacheManager:
    """
    Shared plumbing for the on-disk caches: directory setup and JSON I/O.

    Writes always go through a temporary file and an atomic rename, so a
    reader sees either the previous document or the new one.
    """

    def __init__(self, cache_dir: Optional[Pathish] = None):
        """
        Parameters:
            cache_dir: Path to use for on-disk caches. If None, the platform user cache directory for ghr-installer is used.
        """
        self.cache_dir = (
            os.fspath(cache_dir) if cache_dir else platformdirs.user_cache_dir(APP_NAME)
        )
        self._ensure_cache_dir_exists()

    def _ensure_cache_dir_exists(self) -> None:
        """
        Ensure the manager's cache directory exists with owner-only permissions.

        Raises:
            OSError: If the directory cannot be created or is otherwise inaccessible.
        """
        try:
            ensure_private_dir(self.cache_dir)
        except OSError as e:
            logger.error(f"Could not create cache directory {self.cache_dir}: {e}")
            raise

    def read_json(self, file_path: str) -> Optional[Any]:
        """
        Load and parse JSON from the given file path.

        Returns:
            The parsed JSON value, or `None` if the file is missing or cannot be read/decoded.
        """
        if not os.path.exists(file_path):
            return None

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (IOError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read JSON file {file_path}: {e}")
            return None

    def atomic_write_json(self, file_path: str, data: Dict) -> bool:
        return _atomic_write_json(file_path, data)

    def clear_cache(self, cache_file: str) -> bool:
        """
        Delete the specified cache file from disk.

        Returns:
            True if the file was removed or did not exist, False if an error occurred.
        """
        try:
            if os.path.exists(cache_file):
                os.remove(cache_file)
            return True
        except OSError as e:
            logger.error(f"Could not clear cache file {cache_file}: {e}")
            return False


class ReleaseCache(CacheManager):
    """
    TTL-gated store of the latest release metadata per repository.

    Document layout::

        {
          "cache_version": "1.0",
          "settings": {"ttl": 3600},
          "repositories": {
            "owner/name": {"last_checked": "<iso-8601 UTC>", "latest_release": {...}}
          }
        }

    An unreadable or structurally invalid document is treated as empty; the
    next `put` replaces it with a valid one.
    """

    def __init__(
        self,
        cache_dir: Optional[Pathish] = None,
        ttl: int = DEFAULT_CACHE_TTL_SECONDS,
    ):
        super().__init__(cache_dir)
        self.ttl = int(ttl)
        self.cache_file = os.path.join(self.cache_dir, RELEASE_CACHE_FILE)

    def _load_document(self) -> Optional[Dict[str, Any]]:
        document = self.read_json(self.cache_file)
        if not isinstance(document, dict):
            return None
        if not isinstance(document.get("repositories"), dict):
            logger.debug("Release cache %s has no repositories map", self.cache_file)
            return None
        return document

    def get(self, repo: str, bypass: bool = False) -> Optional[Dict[str, Any]]:
        """
        Return the cached latest-release metadata for `repo` if still fresh.

        Parameters:
            repo: Repository identifier in `owner/name` form.
            bypass: Ignore whatever is cached and report a miss.

        Returns:
            The stored release mapping, or None when there is no entry, the
            entry is older than the TTL, the document is corrupt or `bypass`
            was requested.
        """
        if bypass:
            track_api_cache_miss()
            return None

        document = self._load_document()
        entry = document["repositories"].get(repo) if document else None
        if not isinstance(entry, dict):
            track_api_cache_miss()
            return None

        last_checked = _parse_iso_datetime_utc(entry.get("last_checked"))
        release = entry.get("latest_release")
        if last_checked is None or not isinstance(release, dict):
            track_api_cache_miss()
            return None

        age_s = (_utcnow() - last_checked).total_seconds()
        if age_s > self.ttl:
            logger.debug(
                "Release cache entry for %s expired (%.0fs > %ds)", repo, age_s, self.ttl
            )
            track_api_cache_miss()
            return None

        logger.debug("Using cached release data for %s", repo)
        track_api_cache_hit()
        return release

    def put(self, repo: str, release: Dict[str, Any]) -> bool:
        """
        Store `release` for `repo` with `last_checked` set to now.

        The release blob and its timestamp are replaced together in a single
        atomic document write.

        Returns:
            bool: `True` if the cache file was written, `False` otherwise.
        """
        document = self._load_document() or {}
        repositories = document.get("repositories") or {}
        repositories[repo] = {
            "last_checked": _utcnow().isoformat(),
            "latest_release": release,
        }
        document = {
            "cache_version": RELEASE_CACHE_VERSION,
            "settings": {"ttl": self.ttl},
            "repositories": repositories,
        }
        if self.atomic_write_json(self.cache_file, document):
            logger.debug("Cached release data for %s", repo)
            return True
        return False

    def clear(self) -> bool:
        """Remove the whole release cache document."""
        return self.clear_cache(self.cache_file)


class ArtifactCache(CacheManager):
    """
    Per-repository store of downloaded release archives.

    Each repository gets its own directory under `assets/` (the repository
    identifier is percent-quoted so `owner/name` never collides with a
    similarly prefixed repository). Next to every archive lives a
    `<filename>.meta.json` sidecar recording where it came from. Only one
    archive per repository is kept.
    """

    def __init__(
        self,
        cache_dir: Optional[Pathish] = None,
        ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        max_age_days: int = ARTIFACT_MAX_AGE_DAYS,
        sweep_on_init: bool = True,
    ):
        super().__init__(cache_dir)
        self.ttl = int(ttl)
        self.max_age_days = int(max_age_days)
        self.assets_dir = os.path.join(self.cache_dir, ASSETS_CACHE_DIR_NAME)
        ensure_private_dir(self.assets_dir)
        if sweep_on_init:
            self.sweep()

    def _repo_dir(self, repo: str) -> str:
        return os.path.join(self.assets_dir, quote(repo, safe=""))

    @staticmethod
    def _meta_path(artifact_path: str) -> str:
        return f"{artifact_path}{ARTIFACT_META_SUFFIX}"

    @staticmethod
    def _check_filename(filename: str) -> str:
        if (
            not filename
            or os.path.basename(filename) != filename
            or filename in {".", ".."}
            or filename.endswith(ARTIFACT_META_SUFFIX)
        ):
            raise ValueError(f"Invalid artifact filename: {filename!r}")
        return filename

    def artifact_path(self, repo: str, filename: str) -> str:
        """Path where the archive `filename` for `repo` is (or would be) stored."""
        return os.path.join(self._repo_dir(repo), self._check_filename(filename))

    def get(
        self, repo: str, filename: str, expected_url: str, bypass: bool = False
    ) -> Optional[str]:
        """
        Return the cached archive path when it can be reused.

        A hit requires the file to exist, its sidecar to record `expected_url`
        and its modification time to be no older than the TTL.

        Returns:
            The archive path on a hit, otherwise None.
        """
        if bypass:
            return None

        path = self.artifact_path(repo, filename)
        if not os.path.isfile(path):
            return None

        meta = self.read_json(self._meta_path(path))
        if not isinstance(meta, dict) or meta.get("url") != expected_url:
            logger.debug("Cached artifact %s does not match %s", path, expected_url)
            return None

        try:
            age_s = time.time() - os.path.getmtime(path)
        except OSError:
            return None
        if age_s > self.ttl:
            logger.debug("Cached artifact %s expired", path)
            return None

        logger.debug("Using cached artifact %s", path)
        return path

    def put(self, repo: str, filename: str, url: str, source_path: Pathish) -> str:
        """
        Copy a freshly downloaded archive into the cache.

        Writes the archive and its sidecar, then removes every other file kept
        for the same repository.

        Returns:
            str: Path of the cached archive.

        Raises:
            FileSystemError: If the archive cannot be copied into the cache.
        """
        repo_dir = ensure_private_dir(self._repo_dir(repo))
        path = self.artifact_path(repo, filename)

        if not copy_file_atomic(source_path, path):
            raise FileSystemError(f"Could not cache artifact {filename}", path=path)

        meta = {
            "repo": repo,
            "filename": filename,
            "url": url,
            "cached_at": _utcnow().isoformat(),
        }
        if not self.atomic_write_json(self._meta_path(path), meta):
            logger.warning(f"Could not write cache metadata for {path}")

        keep = {filename, os.path.basename(self._meta_path(path))}
        with os.scandir(repo_dir) as it:
            for entry in it:
                if entry.name in keep or not entry.is_file(follow_symlinks=False):
                    continue
                try:
                    os.remove(entry.path)
                    logger.debug("Removed superseded artifact %s", entry.path)
                except OSError as e:
                    logger.warning(f"Could not remove old artifact {entry.path}: {e}")
        return path

    def sweep(self, max_age_days: Optional[int] = None) -> int:
        """
        Delete archives not modified within `max_age_days` (default 30).

        Sidecars go with their archive; orphaned sidecars and empty repository
        directories are removed too.

        Returns:
            int: Number of archives removed.
        """
        days = self.max_age_days if max_age_days is None else max_age_days
        cutoff = time.time() - days * 86400
        removed = 0

        if not os.path.isdir(self.assets_dir):
            return 0

        for root, _dirs, files in os.walk(self.assets_dir, topdown=False):
            for name in files:
                path = os.path.join(root, name)
                try:
                    if name.endswith(ARTIFACT_META_SUFFIX):
                        artifact = path[: -len(ARTIFACT_META_SUFFIX)]
                        if not os.path.exists(artifact) and os.path.exists(path):
                            os.remove(path)
                        continue
                    if os.path.getmtime(path) < cutoff:
                        os.remove(path)
                        meta = self._meta_path(path)
                        if os.path.exists(meta):
                            os.remove(meta)
                        removed += 1
                except OSError as e:
                    logger.warning(f"Could not sweep cached file {path}: {e}")
            if root != self.assets_dir:
                try:
                    if not os.listdir(root):
                        os.rmdir(root)
                except OSError:
                    pass

        if removed:
            logger.info(f"Removed {removed} cached artifact(s) older than {days} days")
        return removed

    def clear(self) -> bool:
        """Remove every cached archive."""
        try:
            if os.path.isdir(self.assets_dir):
                shutil.rmtree(self.assets_dir)
            ensure_private_dir(self.assets_dir)
            return True
        except OSError as e:
            logger.error(f"Could not clear artifact cache {self.assets_dir}: {e}")
            return False
