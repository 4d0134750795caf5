import io
import os
import tarfile
import time
import zipfile
from pathlib import Path

import platformdirs
import pytest
import requests

from ghr_installer.utils import reset_api_tracking

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """
    Register the markers used to group the test suite.

    Parameters:
        config: pytest.Config
            The pytest configuration object.
    """
    for marker, description in (
        ("unit", "fast tests without external processes or network"),
        ("infrastructure", "caches, files, locking and persistence"),
        ("core", "version, asset selection and install orchestration"),
        ("user_interface", "command line and interactive menus"),
    ):
        config.addinivalue_line("markers", f"{marker}: {description}")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point every platformdirs location and the config module constants at a temporary tree.

    Also clears GITHUB_TOKEN and GHR_INSTALLER_LOG_LEVEL so the developer's
    environment cannot leak into the tests, and resets API request tracking.
    """
    base = tmp_path_factory.mktemp("ghr-installer")
    cache_dir = base / "cache"
    config_dir = base / "config"
    data_dir = base / "data"
    log_dir = base / "log"

    for path in (cache_dir, config_dir, data_dir, log_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GHR_INSTALLER_LOG_LEVEL", raising=False)

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_data_dir", lambda *_args, **_kwargs: str(data_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )

    import ghr_installer.setup_config as setup_config

    monkeypatch.setattr(setup_config, "CONFIG_DIR", str(config_dir))
    monkeypatch.setattr(
        setup_config,
        "CONFIG_FILE",
        str(config_dir / setup_config.CONFIG_FILE_NAME),
    )

    reset_api_tracking()


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    requests.get = _block_network
    requests.post = _block_network
    requests.head = _block_network
    requests.Session.request = _block_network


@pytest.fixture(autouse=True)
def _mock_time_sleep(monkeypatch):
    """
    Make time.sleep instant for all tests.

    Every GitHub API request ends with a short courtesy delay.
    """
    monkeypatch.setattr(time, "sleep", lambda *_args, **_kwargs: None)


# =============================================================================
# Archive and configuration fixtures
# =============================================================================


def _add_tar_member(tar, name: str, content: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    info.mode = mode
    tar.addfile(info, io.BytesIO(content))


def _make_tarball(path: Path, members) -> Path:
    """
    Write a gzip tarball at `path`.

    `members` is an iterable of (name, content, mode) tuples.
    """
    with tarfile.open(path, "w:gz") as tar:
        for name, content, mode in members:
            _add_tar_member(tar, name, content, mode)
    return path


def _make_zipfile(path: Path, members) -> Path:
    """Write a zip archive at `path` from (name, content, mode) tuples."""
    with zipfile.ZipFile(path, "w") as zf:
        for name, content, mode in members:
            info = zipfile.ZipInfo(name)
            info.external_attr = (0o100000 | mode) << 16
            zf.writestr(info, content)
    return path


FAKE_BINARY = b"#!/bin/sh\necho 'fzf 0.57.0 (0476a65)'\n"


@pytest.fixture
def fzf_tarball(tmp_path):
    """A release archive laid out like fzf's: binary plus completions and a man page."""
    return _make_tarball(
        tmp_path / "fzf-0.57.0-linux_amd64.tar.gz",
        [
            ("fzf", FAKE_BINARY, 0o755),
            ("shell/completion.bash", b"# bash completion\n", 0o644),
            ("shell/completion.zsh", b"#compdef fzf\n", 0o644),
            ("man/man1/fzf.1", b".TH FZF 1\n", 0o644),
        ],
    )


@pytest.fixture
def app_config(tmp_path):
    """A fully populated configuration dict rooted in `tmp_path`."""
    return {
        "INSTALL_DIR": str(tmp_path / "bin"),
        "DATA_DIR": str(tmp_path / "data"),
        "CACHE_DIR": str(tmp_path / "cache"),
        "REPOS_FILE": str(tmp_path / "repos.txt"),
        "CACHE_TTL": 3600,
        "ARTIFACT_MAX_AGE_DAYS": 30,
        "GITHUB_TOKEN": None,
        "LOG_LEVEL": None,
        "CONNECT_RETRIES": 0,
        "OVERRIDE_CACHE": False,
    }


@pytest.fixture
def fake_home(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return home


def _age_file(path, seconds: float) -> None:
    """Move the access and modification time of `path` `seconds` into the past."""
    past = time.time() - seconds
    os.utime(path, (past, past))


@pytest.fixture
def make_tarball():
    return _make_tarball


@pytest.fixture
def make_zipfile():
    return _make_zipfile


@pytest.fixture
def age_file():
    return _age_file
