"""
GitHub Release Source

This module lists the releases of a GitHub repository through the REST API,
following pagination and translating API failures into SourceUnavailable.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests  # type: ignore[import-untyped]

from s3mirror.constants import (
    API_CALL_DELAY,
    GITHUB_API_BASE,
    GITHUB_API_TIMEOUT,
    GITHUB_API_VERSION,
    GITHUB_MAX_PER_PAGE,
)
from s3mirror.exceptions import SourceUnavailable
from s3mirror.log_utils import logger
from s3mirror.utils import get_effective_github_token, get_user_agent

from .interfaces import Release, ReleaseSource

RATE_LIMIT_WARNING_THRESHOLD = 10


def release_from_github_data(release_data: Dict[str, Any]) -> Release:
    """Build a Release from one entry of the GitHub releases payload."""
    tag_name = release_data.get("tag_name")
    return Release(
        tag_name=tag_name if isinstance(tag_name, str) else None,
        prerelease=bool(release_data.get("prerelease", False)),
    )


def _parse_rate_limit_header(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class GithubReleaseSource(ReleaseSource):
    """
    Lists GitHub releases, page by page, in the order the API returns them.

    Usage:
        source = GithubReleaseSource(github_token=token, session=session)
        releases = source.list_releases("kubernetes", "kubernetes")
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        allow_env_token: bool = True,
        session: Optional[requests.Session] = None,
        api_base: str = GITHUB_API_BASE,
        timeout: float = GITHUB_API_TIMEOUT,
    ):
        """
        Parameters:
            github_token (Optional[str]): Token for authenticated requests.
            allow_env_token (bool): Fall back to the GITHUB_TOKEN environment variable.
            session (Optional[requests.Session]): Session to issue requests with;
                a plain session is created when omitted.
            api_base (str): Base URL of the repository endpoints.
            timeout (float): Per-request timeout in seconds.
        """
        self.token = get_effective_github_token(github_token, allow_env_token)
        self.session = session or requests.Session()
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def releases_url(self, owner: str, repo: str) -> str:
        return f"{self.api_base}/{owner}/{repo}/releases"

    def list_releases(self, owner: str, repo: str) -> List[Release]:
        """
        Fetch every release of ``owner/repo``.

        Raises:
            SourceUnavailable: If any page cannot be fetched or decoded.
        """
        url: Optional[str] = self.releases_url(owner, repo)
        params: Optional[Dict[str, Any]] = {"per_page": GITHUB_MAX_PER_PAGE}
        releases: List[Release] = []
        page = 0

        while url:
            page += 1
            response = self._request(owner, repo, url, params)
            try:
                payload = response.json()
            except ValueError as e:
                raise SourceUnavailable(
                    owner, repo, f"invalid JSON on page {page}: {e}"
                ) from e
            if not isinstance(payload, list):
                raise SourceUnavailable(
                    owner,
                    repo,
                    f"unexpected payload type {type(payload).__name__} on page {page}",
                )

            for release_data in payload:
                if not isinstance(release_data, dict):
                    logger.warning(
                        f"Skipping malformed release entry for {owner}/{repo}: {release_data!r}"
                    )
                    continue
                releases.append(release_from_github_data(release_data))

            url = self._next_page_url(response)
            # The next link already carries the query string
            params = None

        logger.debug(
            f"Fetched {len(releases)} releases for {owner}/{repo} in {page} page(s)"
        )
        return releases

    @staticmethod
    def _next_page_url(response: requests.Response) -> Optional[str]:
        links = getattr(response, "links", None)
        if not isinstance(links, dict):
            return None
        next_link = links.get("next")
        if not isinstance(next_link, dict):
            return None
        next_url = next_link.get("url")
        return next_url if isinstance(next_url, str) and next_url else None

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": get_user_agent(),
        }
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    def _request(
        self,
        owner: str,
        repo: str,
        url: str,
        params: Optional[Dict[str, Any]],
        token: Optional[str] = None,
        _is_retry: bool = False,
    ) -> requests.Response:
        """
        GET one page of the listing.

        A 401 with a token is retried once without authentication. Rate-limit
        exhaustion, missing repositories and other HTTP errors surface as
        SourceUnavailable with a descriptive message.
        """
        if not _is_retry:
            token = self.token
        logger.debug(f"Making GitHub API request: {url}")
        try:
            response = self.session.get(
                url,
                headers=self._headers(token),
                params=params,
                timeout=self.timeout,
            )
            self._log_rate_limit(response)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 401 and token and not _is_retry:
                logger.warning(
                    f"GitHub token authentication failed for {url}. Retrying without authentication."
                )
                return self._request(owner, repo, url, params, None, _is_retry=True)
            raise SourceUnavailable(
                owner, repo, self._describe_http_error(e), status_code=status
            ) from e
        except requests.RequestException as e:
            raise SourceUnavailable(owner, repo, str(e)) from e
        finally:
            time.sleep(API_CALL_DELAY)
        return response

    @staticmethod
    def _describe_http_error(error: requests.HTTPError) -> str:
        response = error.response
        if response is None:
            return str(error)
        status = response.status_code
        if status == 403:
            remaining = _parse_rate_limit_header(
                response.headers.get("X-RateLimit-Remaining")
            )
            if remaining == 0:
                reset = _parse_rate_limit_header(
                    response.headers.get("X-RateLimit-Reset")
                )
                reset_str = (
                    datetime.fromtimestamp(reset, timezone.utc).strftime(
                        "%Y-%m-%d %H:%M:%S UTC"
                    )
                    if reset is not None
                    else "unknown"
                )
                return (
                    f"GitHub API rate limit exceeded. Resets at {reset_str}. "
                    f"Set GITHUB_TOKEN environment variable for higher rate limits."
                )
            return "GitHub API access forbidden"
        if status == 404:
            return "repository not found"
        return f"HTTP {status}"

    @staticmethod
    def _log_rate_limit(response: requests.Response) -> None:
        headers = getattr(response, "headers", None)
        if headers is None:
            return
        remaining = _parse_rate_limit_header(headers.get("X-RateLimit-Remaining"))
        if remaining is None:
            return
        logger.debug(f"GitHub API rate limit remaining: {remaining}")
        if remaining <= RATE_LIMIT_WARNING_THRESHOLD:
            logger.warning(f"GitHub API rate limit low: {remaining} requests remaining")
