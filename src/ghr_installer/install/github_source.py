"""
GitHub Release Source

This module fetches the latest release of a repository from the GitHub API
and layers the release cache in front of it, so repeated checks within the
cache TTL do not touch the network.
"""

import re
from typing import Any, Dict, Optional, Tuple

from ghr_installer.constants import GITHUB_LATEST_RELEASE_URL
from ghr_installer.exceptions import MalformedResponseError, ValidationError
from ghr_installer.log_utils import logger
from ghr_installer.utils import make_github_api_request

from .assets import create_release_from_github_data
from .cache import ReleaseCache
from .interfaces import Release, ReleaseClient

REPO_RX = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def validate_repo(repo: str) -> str:
    """
    Check that `repo` looks like `owner/name`.

    Raises:
        ValidationError: For empty identifiers, extra slashes or odd characters.
    """
    candidate = (repo or "").strip()
    if not REPO_RX.match(candidate) or ".." in candidate:
        raise ValidationError(
            f"Invalid repository identifier: {repo!r}", field="repo", value=repo
        )
    return candidate


class GithubReleaseClient(ReleaseClient):
    """
    ReleaseClient backed by the GitHub REST API.

    Authentication uses the explicit token when given, otherwise the
    GITHUB_TOKEN environment variable (unless disabled).
    """

    def __init__(self, github_token: Optional[str] = None, allow_env_token: bool = True):
        self.github_token = github_token
        self.allow_env_token = allow_env_token

    def fetch_latest_release(self, repo: str) -> Dict[str, Any]:
        """
        Fetch `/repos/{repo}/releases/latest`.

        Returns:
            Dict[str, Any]: The raw release mapping (always has `tag_name`).

        Raises:
            RateLimitError: The API rate limit is exhausted.
            ResourceNotFoundError: The repository has no releases.
            MalformedResponseError: The body is not a release object.
            HTTPError, NetworkError: Other transport failures.
        """
        url = GITHUB_LATEST_RELEASE_URL.format(repo=validate_repo(repo))
        response = make_github_api_request(
            url,
            github_token=self.github_token,
            allow_env_token=self.allow_env_token,
        )
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON in release response for {repo}",
                endpoint=url,
                details=str(e),
            ) from e

        if not isinstance(data, dict) or not data.get("tag_name"):
            raise MalformedResponseError(
                f"Release response for {repo} has no tag_name", endpoint=url
            )
        assets = data.get("assets")
        if assets is not None and not isinstance(assets, list):
            raise MalformedResponseError(
                f"Release response for {repo} has a malformed asset list",
                endpoint=url,
            )
        return data


class GithubReleaseSource:
    """
    Latest-release lookup through the release cache.

    On a cache miss (or when bypassing) the client is queried and a valid
    response is written back to the cache. Client errors propagate unchanged.
    """

    def __init__(self, client: ReleaseClient, cache: ReleaseCache):
        self.client = client
        self.cache = cache

    def get_latest_release(
        self, repo: str, bypass_cache: bool = False
    ) -> Tuple[Release, bool]:
        """
        Resolve the latest release of `repo`.

        Returns:
            Tuple[Release, bool]: The parsed release and whether it came from the cache.

        Raises:
            MalformedResponseError: Fresh data cannot be parsed into a Release.
        """
        cached = self.cache.get(repo, bypass=bypass_cache)
        if cached is not None:
            release = create_release_from_github_data(cached)
            if release is not None:
                return release, True
            logger.debug("Discarding unusable cached release data for %s", repo)

        data = self.client.fetch_latest_release(repo)
        release = create_release_from_github_data(data)
        if release is None:
            raise MalformedResponseError(f"Release response for {repo} has no tag_name")
        self.cache.put(repo, data)
        logger.debug("Fetched latest release %s for %s", release.tag_name, repo)
        return release, False
