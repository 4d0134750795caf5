# src/ghr_installer/utils.py
import importlib.metadata
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry  # type: ignore

from ghr_installer.constants import (
    API_CALL_DELAY,
    APP_NAME,
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    GITHUB_API_TIMEOUT,
    GITHUB_TOKEN_ENV_VAR,
)
from ghr_installer.exceptions import (
    HTTPError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
)
from ghr_installer.log_utils import logger

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE = None

# API request tracking for the end-of-run summary
_api_request_count = 0
_api_cache_hits = 0
_api_cache_misses = 0
_api_auth_used = False
_api_tracking_lock = threading.Lock()


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `ghr-installer/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        try:
            app_version = importlib.metadata.version(APP_NAME)
        except importlib.metadata.PackageNotFoundError:
            app_version = "unknown"

        _USER_AGENT_CACHE = f"{APP_NAME}/{app_version}"

    return _USER_AGENT_CACHE


def track_api_cache_hit() -> None:
    """Track a cache hit for API requests."""
    global _api_cache_hits
    with _api_tracking_lock:
        _api_cache_hits += 1


def track_api_cache_miss() -> None:
    """Track a cache miss for API requests."""
    global _api_cache_misses
    with _api_tracking_lock:
        _api_cache_misses += 1


def get_api_request_summary() -> Dict[str, Any]:
    """
    Build a summary of API request and cache statistics for the current session.

    Returns:
        summary (dict): Keys "total_requests", "cache_hits", "cache_misses" and "auth_used".
    """
    with _api_tracking_lock:
        return {
            "total_requests": _api_request_count,
            "cache_hits": _api_cache_hits,
            "cache_misses": _api_cache_misses,
            "auth_used": _api_auth_used,
        }


def reset_api_tracking() -> None:
    """Reset API request and cache counters to zero."""
    global _api_request_count, _api_cache_hits, _api_cache_misses, _api_auth_used
    with _api_tracking_lock:
        _api_request_count = 0
        _api_cache_hits = 0
        _api_cache_misses = 0
        _api_auth_used = False


def get_effective_github_token(
    github_token: Optional[str] = None, allow_env_token: bool = True
) -> Optional[str]:
    """
    Resolve the GitHub token to use for API requests.

    Parameters:
        github_token (Optional[str]): Explicit token; surrounding whitespace is stripped.
        allow_env_token (bool): Whether to fall back to the GITHUB_TOKEN environment variable.

    Returns:
        Optional[str]: The token to use, or None for unauthenticated requests.
    """
    if github_token and github_token.strip():
        return github_token.strip()
    if allow_env_token:
        env_token = os.environ.get(GITHUB_TOKEN_ENV_VAR, "").strip()
        if env_token:
            return env_token
    return None


def _parse_rate_limit_header(header_value: Any) -> Optional[int]:
    """Parse an X-RateLimit-* header into an int, or None when absent or invalid."""
    if header_value is None:
        return None
    try:
        return int(str(header_value).strip())
    except (TypeError, ValueError):
        return None


def make_github_api_request(
    url: str,
    github_token: Optional[str] = None,
    allow_env_token: bool = True,
    params: Optional[Dict[str, Any]] = None,
    timeout: Optional[int] = None,
    _is_retry: bool = False,
) -> requests.Response:
    """
    Perform a GitHub API GET request with optional bearer authentication.

    A 401 on an authenticated request is retried once without credentials. Error
    responses are translated into the application exception hierarchy.

    Parameters:
        url (str): GitHub API URL to request.
        github_token (Optional[str]): Explicit GitHub token; trimmed before use.
        allow_env_token (bool): Allow falling back to the GITHUB_TOKEN environment variable.
        params (Optional[Dict[str, Any]]): Query parameters to include in the request.
        timeout (Optional[int]): Request timeout in seconds; module default when omitted.

    Returns:
        requests.Response: The successful HTTP response.

    Raises:
        RateLimitError: When GitHub reports the rate limit as exhausted.
        ResourceNotFoundError: On HTTP 404.
        HTTPError: For any other HTTP error status.
        NetworkError: For lower-level connection errors.
    """
    global _api_request_count, _api_auth_used

    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": get_user_agent(),
    }

    effective_token = get_effective_github_token(github_token, allow_env_token)
    if effective_token:
        headers["Authorization"] = f"Bearer {effective_token}"
        logger.debug("Using GitHub token for API authentication")
    else:
        logger.debug("No GitHub token available - using unauthenticated API requests")

    try:
        logger.debug(f"Making GitHub API request: {url}")
        response = requests.get(
            url,
            timeout=timeout or GITHUB_API_TIMEOUT,
            headers=headers,
            params=params,
        )
        response.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        if not _is_retry and status == 401 and effective_token:
            logger.warning(
                f"GitHub token authentication failed for {url}. Retrying without authentication."
            )
            return make_github_api_request(
                url,
                github_token=None,
                allow_env_token=False,
                params=params,
                timeout=timeout,
                _is_retry=True,
            )
        if status in (403, 429):
            resp_headers = e.response.headers if e.response is not None else {}
            remaining = _parse_rate_limit_header(
                resp_headers.get("X-RateLimit-Remaining")
            )
            if remaining == 0 or status == 429:
                reset_time = _parse_rate_limit_header(
                    resp_headers.get("X-RateLimit-Reset")
                )
                reset_str = (
                    datetime.fromtimestamp(reset_time, timezone.utc).strftime(
                        "%Y-%m-%d %H:%M:%S UTC"
                    )
                    if reset_time
                    else "unknown"
                )
                raise RateLimitError(
                    f"GitHub API rate limit exceeded. Resets at {reset_str}. "
                    f"Set {GITHUB_TOKEN_ENV_VAR} for higher rate limits.",
                    reset_time=reset_time,
                    remaining=remaining or 0,
                    url=url,
                    status_code=status,
                ) from None
        if status == 404:
            raise ResourceNotFoundError(
                f"Resource not found: {url}", endpoint=url, status_code=404
            ) from None
        raise HTTPError(
            f"GitHub API request failed with status {status}",
            status_code=status,
            url=url,
            details=str(e),
        ) from e
    except requests.RequestException as e:
        raise NetworkError(
            f"Network error while requesting {url}", url=url, details=str(e)
        ) from e
    finally:
        # Small delay to be respectful to GitHub API, even on errors
        time.sleep(API_CALL_DELAY)
        with _api_tracking_lock:
            _api_request_count += 1
            if effective_token:
                _api_auth_used = True

    remaining = _parse_rate_limit_header(
        getattr(response, "headers", {}).get("X-RateLimit-Remaining")
    )
    if remaining is not None:
        logger.debug(f"GitHub API rate-limit remaining: {remaining}")
        if remaining <= 10:
            logger.warning(
                f"GitHub API rate limit running low: {remaining} requests remaining"
            )

    return response


def download_file_with_retry(
    url: str,
    download_path: str,
    retries: int = DEFAULT_CONNECT_RETRIES,
) -> bool:
    """
    Download a remote file to disk and atomically move it into place.

    Streams the URL into a temporary file next to `download_path` and replaces the
    destination only after the whole body was written. With the default of zero
    retries a failure is reported immediately; callers that configure retries get
    urllib3's backoff for connection and 5xx errors.

    Parameters:
        url (str): The HTTP(S) URL of the remote file to download.
        download_path (str): Final filesystem path of the downloaded file.
        retries (int): Number of transport-level retries.

    Returns:
        bool: `True` if the file was downloaded and moved into place, `False` otherwise.
    """
    temp_path = f"{download_path}.tmp.{os.getpid()}.{int(time.time() * 1000)}"
    session = requests.Session()
    response = None
    try:
        retry_strategy: Retry = Retry(
            total=retries,
            connect=retries,
            read=retries,
            status=retries,
            backoff_factor=DEFAULT_BACKOFF_FACTOR,
            status_forcelist=[408, 429, 500, 502, 503, 504],
            allowed_methods=frozenset({"GET", "HEAD"}),
            raise_on_status=False,
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        logger.debug(f"Downloading {url} to temp path: {temp_path}")
        start_time = time.time()
        response = session.get(
            url,
            stream=True,
            timeout=DEFAULT_REQUEST_TIMEOUT,
            headers={
                "Accept": "application/octet-stream",
                "User-Agent": get_user_agent(),
            },
        )
        response.raise_for_status()

        parent_dir = os.path.dirname(download_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        downloaded_bytes = 0
        with open(temp_path, "wb") as file:
            for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                if chunk:
                    file.write(chunk)
                    downloaded_bytes += len(chunk)

        os.replace(temp_path, download_path)
        logger.debug(
            "Downloaded %d bytes from %s in %.2fs",
            downloaded_bytes,
            url,
            time.time() - start_time,
        )
        file_size_mb = downloaded_bytes / (1024 * 1024)
        if file_size_mb >= 1.0:
            logger.info(
                f"Downloaded: {os.path.basename(download_path)} ({file_size_mb:.1f} MB)"
            )
        else:
            logger.info(
                f"Downloaded: {os.path.basename(download_path)} ({downloaded_bytes} bytes)"
            )
        return True
    except requests.RequestException as e:
        logger.error(f"Failed to download {url}: {e}")
        return False
    except OSError as e:
        logger.error(f"Could not write download {download_path}: {e}")
        return False
    finally:
        if response is not None:
            response.close()
        session.close()
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
