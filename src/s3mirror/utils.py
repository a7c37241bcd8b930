# src/s3mirror/utils.py
import hashlib
import importlib.metadata
import os
from typing import Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry  # type: ignore

from s3mirror.constants import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_RETRIES,
    FALSY_STRINGS,
    GITHUB_TOKEN_ENV_VAR,
    RETRY_STATUS_FORCELIST,
    TRUTHY_STRINGS,
)
from s3mirror.log_utils import logger

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE = None


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `s3mirror/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        try:
            app_version = importlib.metadata.version("s3mirror")
        except importlib.metadata.PackageNotFoundError:
            app_version = "unknown"

        _USER_AGENT_CACHE = f"s3mirror/{app_version}"

    return _USER_AGENT_CACHE


def get_effective_github_token(
    github_token: Optional[str], allow_env_token: bool = True
) -> Optional[str]:
    """
    Determine the GitHub token to use, preferring the explicit argument over the environment.

    Parameters:
        github_token (Optional[str]): Explicit token to use; leading and trailing whitespace are ignored.
        allow_env_token (bool): If True, fall back to the `GITHUB_TOKEN` environment variable when no explicit token is provided.

    Returns:
        Optional[str]: The chosen token with surrounding whitespace removed, or `None` if no token is available.
    """
    candidate = (github_token or "").strip()
    if candidate:
        return candidate
    if not allow_env_token:
        return None
    env_token = os.environ.get(GITHUB_TOKEN_ENV_VAR)
    return env_token.strip() if env_token and env_token.strip() else None


def create_retry_session(
    retries: int = DEFAULT_CONNECT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
) -> requests.Session:
    """
    Build a requests Session that retries transient failures.

    Connection, read and status failures (408, 429 and 5xx) are retried with
    exponential backoff for GET and HEAD requests. The final response status is
    not raised by urllib3; callers judge it with `raise_for_status()`.

    Returns:
        requests.Session: A session with the retry adapter mounted for http and https.
    """
    retry_strategy: Retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff_factor,
        status_forcelist=list(RETRY_STATUS_FORCELIST),
        allowed_methods=frozenset({"GET", "HEAD"}),
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = get_user_agent()
    return session


def calculate_sha256(file_path: Union[str, "os.PathLike[str]"]) -> str:
    """
    Compute the SHA-256 hex digest of a file.

    Streams the file in chunks without loading it into memory.

    Returns:
        str: The 64-character lowercase hexadecimal digest.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(DEFAULT_CHUNK_SIZE), b""):
            sha256_hash.update(chunk)
    digest = sha256_hash.hexdigest()
    logger.debug(f"SHA-256 of {file_path}: {digest}")
    return digest


def parse_bool(value: Union[str, bool, None], default: bool = False) -> bool:
    """
    Interpret a boolean from an environment-style string.

    Accepts 1/true/yes/on and 0/false/no/off (case-insensitive). Empty or missing
    values return `default`.

    Raises:
        ValueError: If the value is not a recognised boolean spelling.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = value.strip().lower()
    if not normalized:
        return default
    if normalized in TRUTHY_STRINGS:
        return True
    if normalized in FALSY_STRINGS:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")
