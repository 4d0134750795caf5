"""
Tests for the HTTP helpers: GitHub API requests, downloads and request tracking.
"""

import os
from unittest.mock import MagicMock, Mock

import pytest
import requests

from ghr_installer import utils
from ghr_installer.exceptions import (
    HTTPError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
)
from ghr_installer.utils import (
    download_file_with_retry,
    get_api_request_summary,
    get_effective_github_token,
    get_user_agent,
    make_github_api_request,
    reset_api_tracking,
    track_api_cache_hit,
    track_api_cache_miss,
)

pytestmark = [pytest.mark.unit, pytest.mark.infrastructure]

URL = "https://api.github.com/repos/junegunn/fzf/releases/latest"


def _http_error_response(status, headers=None):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.raise_for_status.side_effect = requests.HTTPError(
        f"{status} error", response=response
    )
    return response


def _ok_response(headers=None):
    response = Mock()
    response.status_code = 200
    response.headers = headers or {}
    response.raise_for_status.return_value = None
    return response


class TestTokens:
    def test_explicit_token_is_stripped(self):
        assert get_effective_github_token("  abc  ") == "abc"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "from-env")
        assert get_effective_github_token(None) == "from-env"
        assert get_effective_github_token(None, allow_env_token=False) is None

    def test_blank_token_means_none(self):
        assert get_effective_github_token("   ") is None

    def test_user_agent(self):
        assert get_user_agent().startswith("ghr-installer/")


class TestMakeGithubApiRequest:
    def test_success_sends_bearer_token(self, mocker):
        get = mocker.patch(
            "ghr_installer.utils.requests.get", return_value=_ok_response()
        )
        response = make_github_api_request(URL, github_token="secret")

        assert response.status_code == 200
        headers = get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        assert headers["Accept"] == "application/vnd.github+json"
        summary = get_api_request_summary()
        assert summary["total_requests"] == 1
        assert summary["auth_used"] is True

    def test_unauthenticated_request_has_no_auth_header(self, mocker):
        get = mocker.patch(
            "ghr_installer.utils.requests.get", return_value=_ok_response()
        )
        make_github_api_request(URL)
        assert "Authorization" not in get.call_args.kwargs["headers"]

    def test_401_retries_once_without_token(self, mocker):
        get = mocker.patch(
            "ghr_installer.utils.requests.get",
            side_effect=[_http_error_response(401), _ok_response()],
        )
        response = make_github_api_request(URL, github_token="expired")

        assert response.status_code == 200
        assert get.call_count == 2
        assert "Authorization" not in get.call_args_list[1].kwargs["headers"]

    def test_rate_limit(self, mocker):
        mocker.patch(
            "ghr_installer.utils.requests.get",
            return_value=_http_error_response(
                403,
                {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1735689600"},
            ),
        )
        with pytest.raises(RateLimitError) as exc_info:
            make_github_api_request(URL)
        assert exc_info.value.reset_time == 1735689600
        assert "2025-01-01 00:00:00 UTC" in exc_info.value.message

    def test_403_without_exhausted_quota_is_http_error(self, mocker):
        mocker.patch(
            "ghr_installer.utils.requests.get",
            return_value=_http_error_response(403, {"X-RateLimit-Remaining": "12"}),
        )
        with pytest.raises(HTTPError) as exc_info:
            make_github_api_request(URL)
        assert not isinstance(exc_info.value, RateLimitError)
        assert exc_info.value.status_code == 403

    def test_not_found(self, mocker):
        mocker.patch(
            "ghr_installer.utils.requests.get",
            return_value=_http_error_response(404),
        )
        with pytest.raises(ResourceNotFoundError):
            make_github_api_request(URL)

    def test_connection_error(self, mocker):
        mocker.patch(
            "ghr_installer.utils.requests.get",
            side_effect=requests.ConnectionError("no route"),
        )
        with pytest.raises(NetworkError):
            make_github_api_request(URL)
        assert get_api_request_summary()["total_requests"] == 1

    def test_low_rate_limit_warns(self, mocker):
        mocker.patch(
            "ghr_installer.utils.requests.get",
            return_value=_ok_response({"X-RateLimit-Remaining": "3"}),
        )
        mock_logger = mocker.patch("ghr_installer.utils.logger")
        make_github_api_request(URL)
        assert any(
            "running low" in call.args[0] for call in mock_logger.warning.call_args_list
        )


class TestApiTracking:
    def test_counters_and_reset(self):
        track_api_cache_hit()
        track_api_cache_hit()
        track_api_cache_miss()
        summary = get_api_request_summary()
        assert summary["cache_hits"] == 2
        assert summary["cache_misses"] == 1

        reset_api_tracking()
        assert get_api_request_summary() == {
            "total_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "auth_used": False,
        }


class TestDownloadFileWithRetry:
    def _session(self, mocker, response=None, error=None):
        session = MagicMock()
        if error is not None:
            session.get.side_effect = error
        else:
            session.get.return_value = response
        mocker.patch("ghr_installer.utils.requests.Session", return_value=session)
        return session

    def test_download_writes_file_atomically(self, tmp_path, mocker):
        response = Mock()
        response.raise_for_status.return_value = None
        response.iter_content.return_value = [b"abc", b"", b"def"]
        self._session(mocker, response=response)
        target = tmp_path / "sub" / "fzf.tar.gz"

        assert download_file_with_retry("https://x/fzf.tar.gz", str(target)) is True
        assert target.read_bytes() == b"abcdef"
        assert os.listdir(target.parent) == ["fzf.tar.gz"]
        response.close.assert_called_once()

    def test_http_failure_leaves_nothing_behind(self, tmp_path, mocker):
        response = Mock()
        response.raise_for_status.side_effect = requests.HTTPError("500")
        self._session(mocker, response=response)
        target = tmp_path / "fzf.tar.gz"

        assert download_file_with_retry("https://x/fzf.tar.gz", str(target)) is False
        assert os.listdir(tmp_path) == []

    def test_connection_failure(self, tmp_path, mocker):
        self._session(mocker, error=requests.ConnectionError("refused"))
        assert (
            download_file_with_retry("https://x/fzf.tar.gz", str(tmp_path / "f"))
            is False
        )

    def test_retries_are_configured_on_the_adapter(self, tmp_path, mocker):
        session = self._session(mocker, error=requests.ConnectionError("refused"))
        retry = mocker.patch("ghr_installer.utils.Retry", wraps=utils.Retry)

        download_file_with_retry("https://x/f", str(tmp_path / "f"), retries=3)

        assert retry.call_args.kwargs["total"] == 3
        assert session.mount.call_count == 2
