# src/ghr_installer/setup_config.py

import os
from typing import Any, Dict, List, Optional

import platformdirs
import yaml

from ghr_installer.constants import (
    APP_NAME,
    ARTIFACT_MAX_AGE_DAYS,
    CONFIG_FILE_NAME,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_INSTALL_DIR,
    REPOS_FILE_NAME,
)
from ghr_installer.exceptions import (
    ConfigFileError,
    ConfigValidationError,
    ValidationError,
)
from ghr_installer.install.files import _atomic_write, ensure_private_dir
from ghr_installer.install.github_source import validate_repo
from ghr_installer.install.interfaces import RepoSpec
from ghr_installer.log_utils import logger

# Configuration lives in the platformdirs-managed config directory
CONFIG_DIR = platformdirs.user_config_dir(APP_NAME)

# Path to the configuration file
CONFIG_FILE = os.path.join(CONFIG_DIR, CONFIG_FILE_NAME)

INTEGER_KEYS = ("CACHE_TTL", "ARTIFACT_MAX_AGE_DAYS", "CONNECT_RETRIES")


def get_data_dir() -> str:
    return platformdirs.user_data_dir(APP_NAME)


def get_cache_dir() -> str:
    return platformdirs.user_cache_dir(APP_NAME)


def get_default_config() -> Dict[str, Any]:
    """
    Build the configuration used when no file exists.

    Directory defaults are resolved from platformdirs at call time.
    """
    return {
        "INSTALL_DIR": os.path.expanduser(DEFAULT_INSTALL_DIR),
        "DATA_DIR": get_data_dir(),
        "CACHE_DIR": get_cache_dir(),
        "REPOS_FILE": os.path.join(CONFIG_DIR, REPOS_FILE_NAME),
        "CACHE_TTL": DEFAULT_CACHE_TTL_SECONDS,
        "ARTIFACT_MAX_AGE_DAYS": ARTIFACT_MAX_AGE_DAYS,
        "GITHUB_TOKEN": None,
        "LOG_LEVEL": None,
        "CONNECT_RETRIES": DEFAULT_CONNECT_RETRIES,
        "OVERRIDE_CACHE": False,
    }


def _validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    for key in INTEGER_KEYS:
        value = config.get(key)
        try:
            config[key] = int(value)
        except (TypeError, ValueError):
            raise ConfigValidationError(
                f"{key} must be an integer, got {value!r}"
            ) from None
        if config[key] < 0:
            raise ConfigValidationError(f"{key} must not be negative")

    for key in ("INSTALL_DIR", "DATA_DIR", "CACHE_DIR", "REPOS_FILE"):
        value = config.get(key)
        if not value or not isinstance(value, str):
            raise ConfigValidationError(f"{key} must be a path")
        config[key] = os.path.expanduser(value)

    config["OVERRIDE_CACHE"] = bool(config.get("OVERRIDE_CACHE"))
    return config


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the ghr-installer configuration YAML merged over the defaults.

    Parameters:
        config_path (str | None): Explicit file to load; defaults to CONFIG_FILE.

    Returns:
        dict: The effective configuration. A missing file yields the defaults.

    Raises:
        ConfigFileError: The file cannot be read, is not valid YAML or is not a mapping.
        ConfigValidationError: A value has the wrong type.
    """
    path = config_path or CONFIG_FILE
    config = get_default_config()

    if not os.path.exists(path):
        logger.debug(f"No configuration file at {path}; using defaults")
        return _validate_config(config)

    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Invalid YAML in {path}", details=str(e)) from e
    except OSError as e:
        raise ConfigFileError(f"Could not read {path}", details=str(e)) from e

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigFileError(f"Configuration in {path} must be a mapping")

    unknown = sorted(set(loaded) - set(config))
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
    for key in config:
        if key in loaded and loaded[key] is not None:
            config[key] = loaded[key]

    return _validate_config(config)


def save_config(config: Dict[str, Any], config_path: Optional[str] = None) -> bool:
    """
    Write `config` as YAML atomically, creating the config directory if needed.

    OVERRIDE_CACHE is a per-run flag and is never persisted.

    Returns:
        bool: `True` if the file was written, `False` otherwise.
    """
    path = config_path or CONFIG_FILE
    to_save = {k: v for k, v in config.items() if k != "OVERRIDE_CACHE"}
    try:
        ensure_private_dir(os.path.dirname(path) or ".")
    except OSError as e:
        logger.error(f"Could not create config directory for {path}: {e}")
        return False

    if _atomic_write(
        path,
        lambda f: yaml.safe_dump(to_save, f, default_flow_style=False, sort_keys=True),
        suffix=".yaml",
    ):
        logger.debug(f"Saved configuration to {path}")
        return True
    return False


def parse_repo_line(line: str) -> Optional[RepoSpec]:
    """
    Parse one repository list line.

    `owner/repo` installs a binary named after the repository;
    `owner/repo | binary` names the binary explicitly. Blank lines and
    `#` comments yield None.

    Raises:
        ConfigValidationError: The repository identifier is malformed.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    repo_part, _, binary_part = stripped.partition("|")
    try:
        repo = validate_repo(repo_part.strip())
    except ValidationError as e:
        raise ConfigValidationError(
            f"Invalid repository line: {stripped!r}", details=str(e)
        ) from e

    binary = binary_part.strip() or repo.split("/", 1)[1]
    if any(ch.isspace() for ch in binary) or "/" in binary:
        raise ConfigValidationError(f"Invalid binary name in line: {stripped!r}")
    return RepoSpec(repo=repo, binary_name=binary)


def load_repos(path: str) -> List[RepoSpec]:
    """
    Read the repository list file, creating it empty when missing.

    Duplicate binary names keep the first entry.

    Raises:
        ConfigFileError: The file cannot be created or read.
        ConfigValidationError: A line is malformed.
    """
    if not os.path.exists(path):
        try:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(path, "a", encoding="utf-8"):
                pass
        except OSError as e:
            raise ConfigFileError(f"Could not create {path}", details=str(e)) from e
        logger.info(f"Created empty repository list at {path}")
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigFileError(f"Could not read {path}", details=str(e)) from e

    repos: List[RepoSpec] = []
    seen = set()
    for number, line in enumerate(lines, start=1):
        try:
            spec = parse_repo_line(line)
        except ConfigValidationError as e:
            raise ConfigValidationError(f"{path}:{number}: {e.message}") from e
        if spec is None:
            continue
        if spec.binary_name in seen:
            logger.warning(f"Duplicate entry for {spec.binary_name} in {path}; ignoring")
            continue
        seen.add(spec.binary_name)
        repos.append(spec)
    return repos
