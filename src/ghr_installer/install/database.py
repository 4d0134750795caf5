"""
Package Database for the ghr-installer Install Subsystem

Durable record of every package installed by ghr-installer, stored as a single
JSON document::

    {
      "version": 1,
      "last_updated": "<iso-8601 UTC>",
      "packages": {
        "fzf": {"version": "0.57.0", "files": [...], "installed_at": ..., "updated_at": ..., "source": "github"}
      }
    }

Every mutation rewrites the whole document through a temporary file and an
atomic rename while holding the process lock, and keeps a copy of the prior
document as `packages.json.backup`.
"""

import json
import os
import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import platformdirs

from ghr_installer.constants import (
    APP_NAME,
    DB_BACKUP_SUFFIX,
    DB_FILE_NAME,
    DB_SCHEMA_VERSION,
    LOCK_FILE_NAME,
    PACKAGE_SOURCE_GITHUB,
)
from ghr_installer.exceptions import DatabaseError, LockNotHeldError
from ghr_installer.log_utils import logger

from .files import _atomic_write_json, copy_file_atomic, ensure_private_dir
from .interfaces import PackageRecord, PackageStatus, Pathish
from .lock import PidLock


def utc_timestamp() -> str:
    """Current UTC time as `YYYY-MM-DDTHH:MM:SSZ`."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _empty_document() -> Dict[str, Any]:
    return {"version": DB_SCHEMA_VERSION, "packages": {}}


def _parse_legacy_lines(content: str) -> Dict[str, Dict[str, Any]]:
    """
    Convert the old line format into package entries.

    Each line is `package|version|file1,file2[|timestamp]`; lines without a
    package name or version are skipped.
    """
    timestamp = utc_timestamp()
    packages: Dict[str, Dict[str, Any]] = {}
    for line in content.splitlines():
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            continue
        files = [f.strip() for f in parts[2].split(",")] if len(parts) > 2 else []
        packages[parts[0]] = {
            "version": parts[1],
            "files": [f for f in files if f],
            "installed_at": timestamp,
            "updated_at": timestamp,
            "source": PACKAGE_SOURCE_GITHUB,
        }
    return packages


class PackageDatabase:
    """
    Lock-protected store of PackageRecord entries keyed by package name.

    Reads never take the lock. `write` and `delete` require it and raise
    LockNotHeldError otherwise; use `locked()` to wrap a batch of mutations.
    """

    def __init__(self, data_dir: Optional[Pathish] = None):
        self.data_dir = (
            os.fspath(data_dir) if data_dir else platformdirs.user_data_dir(APP_NAME)
        )
        ensure_private_dir(self.data_dir)
        self.db_path = os.path.join(self.data_dir, DB_FILE_NAME)
        self.backup_path = f"{self.db_path}{DB_BACKUP_SUFFIX}"
        self._lock = PidLock(os.path.join(self.data_dir, LOCK_FILE_NAME))

    @property
    def lock_path(self) -> str:
        return self._lock.lock_path

    @property
    def has_lock(self) -> bool:
        return self._lock.held

    def acquire_lock(self) -> None:
        """
        Acquire the database lock.

        Raises:
            LockBusyError: When another live process holds it.
        """
        self._lock.acquire()

    def release_lock(self) -> None:
        self._lock.release()

    @contextmanager
    def locked(self) -> Iterator["PackageDatabase"]:
        """Hold the lock for the duration of the block."""
        already_held = self._lock.held
        self.acquire_lock()
        try:
            yield self
        finally:
            if not already_held:
                self.release_lock()

    def _load(self) -> tuple[Dict[str, Any], bool]:
        """
        Read the document from disk.

        Returns:
            (document, needs_migration) where `document` always has a
            `packages` mapping.

        Raises:
            DatabaseError: If the file exists but cannot be read.
        """
        if not os.path.exists(self.db_path):
            return _empty_document(), False

        try:
            with open(self.db_path, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise DatabaseError(
                "Could not read package database", path=self.db_path, details=str(e)
            ) from e

        if not content.strip():
            return _empty_document(), False

        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("Package database is not JSON; reading legacy line format")
            document = _empty_document()
            document["packages"] = _parse_legacy_lines(content)
            return document, True

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed package database {self.db_path}")
            return _empty_document(), True

        packages = data.get("packages")
        document = dict(data)
        document["packages"] = packages if isinstance(packages, dict) else {}
        needs_migration = data.get("version") != DB_SCHEMA_VERSION
        if needs_migration:
            document.pop("db_version", None)
            document["version"] = DB_SCHEMA_VERSION
        return document, needs_migration

    def _save(self, document: Dict[str, Any]) -> None:
        """
        Replace the on-disk document.

        Raises:
            DatabaseError: If the new document could not be moved into place;
                the previous file is left as it was.
        """
        document["last_updated"] = utc_timestamp()

        if os.path.exists(self.db_path):
            if not copy_file_atomic(self.db_path, self.backup_path):
                logger.warning(f"Could not back up package database to {self.backup_path}")

        if not _atomic_write_json(self.db_path, document):
            raise DatabaseError("Could not write package database", path=self.db_path)

    def _require_lock(self, operation: str) -> None:
        if not self._lock.held:
            raise LockNotHeldError(
                f"Cannot {operation} without holding the database lock",
                path=self.lock_path,
            )

    def read(self, package: str) -> Optional[PackageRecord]:
        """Return the record for `package`, or None if it is not recorded."""
        document, _ = self._load()
        return self.read_entry(package, document["packages"].get(package))

    def list_packages(self) -> Dict[str, PackageRecord]:
        """All recorded packages, sorted by name."""
        document, _ = self._load()
        records: Dict[str, PackageRecord] = {}
        for name in sorted(document["packages"]):
            record = self.read_entry(name, document["packages"][name])
            if record is not None:
                records[name] = record
        return records

    @staticmethod
    def read_entry(name: str, entry: Any) -> Optional[PackageRecord]:
        if not isinstance(entry, dict):
            return None
        try:
            return PackageRecord.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed record for {name}: {e}")
            return None

    def write(self, package: str, record: PackageRecord) -> PackageRecord:
        """
        Insert or replace the record for `package`.

        The record replaces any previous one wholesale, except that the
        original `installed_at` is kept across reinstalls.

        Returns:
            PackageRecord: The record as stored.

        Raises:
            LockNotHeldError: The caller does not hold the lock.
            DatabaseError: The document could not be written.
        """
        self._require_lock("write")
        document, _ = self._load()

        previous = self.read_entry(package, document["packages"].get(package))
        if previous is not None and previous.installed_at:
            record.installed_at = previous.installed_at

        document["packages"][package] = record.to_dict()
        self._save(document)
        logger.debug("Recorded %s %s in package database", package, record.version)
        return record

    def delete(self, package: str) -> bool:
        """
        Remove the record for `package`.

        Returns:
            bool: True if a record was removed, False if none existed.

        Raises:
            LockNotHeldError: The caller does not hold the lock.
            DatabaseError: The document could not be written.
        """
        self._require_lock("delete")
        document, _ = self._load()
        if package not in document["packages"]:
            return False
        del document["packages"][package]
        self._save(document)
        logger.debug("Removed %s from package database", package)
        return True

    def migrate(self) -> bool:
        """
        Rewrite a legacy database in the current format.

        Returns:
            bool: True if the file was migrated, False if nothing needed doing.

        Raises:
            LockNotHeldError: The caller does not hold the lock.
        """
        self._require_lock("migrate")
        document, needs_migration = self._load()
        if not needs_migration:
            return False
        self._save(document)
        logger.info(
            f"Migrated package database to format version {DB_SCHEMA_VERSION} "
            f"({len(document['packages'])} package(s))"
        )
        return True

    def check_installation_status(self, package: str) -> PackageStatus:
        """
        Cross-check the recorded files of `package` against the filesystem.

        Drift is reported, never repaired.

        Returns:
            PackageStatus: NOT_INSTALLED, UNMANAGED (on PATH but not recorded),
            FILES_MISSING (recorded but a file is gone) or INSTALLED.
        """
        record = self.read(package)
        if record is None:
            if shutil.which(package):
                return PackageStatus.UNMANAGED
            return PackageStatus.NOT_INSTALLED
        if not record.files or not all(os.path.isfile(f) for f in record.files):
            return PackageStatus.FILES_MISSING
        return PackageStatus.INSTALLED
