"""
Sync Pipeline for the s3mirror Sync Subsystem

Runs one expanded target through existence check, download, optional checksum
verification and upload. Every target gets its own scratch file, released on
every exit path.
"""

import os
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Optional

import requests

from s3mirror.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    SCRATCH_FILE_PREFIX,
)
from s3mirror.exceptions import (
    ChecksumFetchFailure,
    ChecksumMismatch,
    DeadlineExceeded,
    DownloadFailure,
    FatalSyncFailure,
    RecoverableSyncFailure,
    RunCancelled,
    SyncFailure,
)
from s3mirror.log_utils import logger
from s3mirror.utils import calculate_sha256

from .interfaces import ExpandedTarget, ObjectStore, SyncOutcome, SyncResult


class FailureAction(Enum):
    CONTINUE = "continue"
    ABORT = "abort"


@dataclass(frozen=True)
class FailurePolicy:
    """
    What a failure at each stage does to the run.

    Fetch failures (download, checksum fetch, checksum mismatch, per-target
    deadline) abandon the target and continue by default. Publish failures
    (upload) abort the run by default.
    """

    on_fetch_failure: FailureAction = FailureAction.CONTINUE
    on_publish_failure: FailureAction = FailureAction.ABORT


DEFAULT_FAILURE_POLICY = FailurePolicy()


class Deadline:
    """A per-target deadline measured on the monotonic clock."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class CancellationToken:
    """Run-wide stop signal shared by every pipeline unit."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(
        self, url: Optional[str] = None, key: Optional[str] = None
    ) -> None:
        if self._event.is_set():
            raise RunCancelled("Run cancelled", url=url, key=key)


@contextmanager
def scratch_file(prefix: str = SCRATCH_FILE_PREFIX) -> Iterator[Path]:
    """
    Provide a temporary file path that is removed when the block exits.

    Removal happens on success, on failure and on interrupt alike.
    """
    try:
        fd, path = tempfile.mkstemp(prefix=prefix)
    except OSError as e:
        raise FatalSyncFailure("Failed to create temporary file", details=str(e)) from e
    os.close(fd)
    try:
        yield Path(path)
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary file {path}: {e}")


ScratchFactory = Callable[[], ContextManager[Path]]


class SyncPipeline:
    """
    Idempotently mirrors expanded targets into one bucket.

    The store and HTTP session are passed in and shared by every unit; both
    are safe to call from several worker threads.
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        session: requests.Session,
        policy: FailurePolicy = DEFAULT_FAILURE_POLICY,
        cancellation: Optional[CancellationToken] = None,
        target_timeout: Optional[float] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        scratch_factory: ScratchFactory = scratch_file,
    ):
        self.store = store
        self.bucket = bucket
        self.session = session
        self.policy = policy
        self.cancellation = cancellation or CancellationToken()
        self.target_timeout = target_timeout
        self.request_timeout = request_timeout
        self.scratch_factory = scratch_factory

    def describe(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def sync(self, target: ExpandedTarget) -> SyncResult:
        """
        Mirror one target.

        Returns:
            SyncResult: SKIPPED_EXISTS, SUCCEEDED, or FAILED_RECOVERABLE when
            the failure policy says to continue.

        Raises:
            SyncFailure: Any failure the policy says aborts the run, plus
                existence-check failures and cancellation, which always do.
        """
        key = target.key
        self.cancellation.raise_if_cancelled(url=target.url, key=key)

        if self.store.exists(self.bucket, key):
            logger.debug(f"File already exists in {self.describe(key)}, skipping download")
            return SyncResult(SyncOutcome.SKIPPED_EXISTS, target)

        deadline = Deadline(self.target_timeout) if self.target_timeout else None
        with self.scratch_factory() as scratch_path:
            try:
                size = self.download(target.url, scratch_path, deadline, key)
                if target.checksum_url is not None:
                    self.verify_checksum(
                        scratch_path, target.checksum_url, deadline, key
                    )
                self._checkpoint(deadline, target.url, key)
            except RecoverableSyncFailure as exc:
                return self._apply_policy(exc, self.policy.on_fetch_failure, target)

            try:
                self.upload(scratch_path, key)
            except RunCancelled:
                raise
            except FatalSyncFailure as exc:
                return self._apply_policy(exc, self.policy.on_publish_failure, target)

        return SyncResult(SyncOutcome.SUCCEEDED, target, bytes_downloaded=size)

    def _apply_policy(
        self, error: SyncFailure, action: FailureAction, target: ExpandedTarget
    ) -> SyncResult:
        if action is FailureAction.ABORT:
            raise error
        return SyncResult(SyncOutcome.FAILED_RECOVERABLE, target, error=error)

    def _checkpoint(
        self, deadline: Optional[Deadline], url: Optional[str], key: Optional[str]
    ) -> None:
        self.cancellation.raise_if_cancelled(url=url, key=key)
        if deadline is not None and deadline.expired():
            raise DeadlineExceeded(
                f"Deadline of {deadline.seconds:g}s exceeded", url=url, key=key
            )

    def _timeout(self, deadline: Optional[Deadline]) -> float:
        if deadline is None:
            return self.request_timeout
        return max(0.001, min(self.request_timeout, deadline.remaining()))

    def download(
        self,
        url: str,
        dest: Path,
        deadline: Optional[Deadline] = None,
        key: Optional[str] = None,
    ) -> int:
        """
        Stream ``url`` into ``dest``.

        Returns:
            int: Number of bytes written.

        Raises:
            DownloadFailure: On transport errors, non-success status or write errors.
            DeadlineExceeded: If the deadline passes mid-download.
            RunCancelled: If the run is cancelled mid-download.
        """
        self._checkpoint(deadline, url, key)
        logger.debug(f"Downloading {url} to {dest}")
        response = None
        written = 0
        try:
            response = self.session.get(url, stream=True, timeout=self._timeout(deadline))
            logger.debug(
                f"Received HTTP response status code: {response.status_code} for URL: {url}"
            )
            response.raise_for_status()
            if response.status_code != requests.codes.ok:
                raise DownloadFailure(
                    f"Failed to download file: HTTP {response.status_code}",
                    url=url,
                    key=key,
                    status_code=response.status_code,
                )
            with open(dest, "wb") as out:
                for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                    self._checkpoint(deadline, url, key)
                    if chunk:
                        out.write(chunk)
                        written += len(chunk)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise DownloadFailure(
                f"Failed to download file: HTTP {status}",
                url=url,
                key=key,
                status_code=status,
            ) from e
        except requests.RequestException as e:
            raise DownloadFailure(
                "Failed to download file", url=url, key=key, details=str(e)
            ) from e
        except OSError as e:
            raise DownloadFailure(
                "Failed to write downloaded file", url=url, key=key, details=str(e)
            ) from e
        finally:
            if response is not None:
                response.close()

        logger.debug(f"Finished downloading {url}: {written} bytes")
        return written

    def verify_checksum(
        self,
        file_path: Path,
        checksum_url: str,
        deadline: Optional[Deadline] = None,
        key: Optional[str] = None,
    ) -> str:
        """
        Compare the SHA-256 of ``file_path`` with the digest published at ``checksum_url``.

        Returns:
            str: The verified digest.

        Raises:
            ChecksumFetchFailure: If the checksum source cannot be fetched.
            ChecksumMismatch: If the digests differ.
        """
        self._checkpoint(deadline, checksum_url, key)
        logger.debug(f"Verifying checksum for {file_path} against {checksum_url}")
        try:
            response = self.session.get(checksum_url, timeout=self._timeout(deadline))
            try:
                response.raise_for_status()
                if response.status_code != requests.codes.ok:
                    raise ChecksumFetchFailure(
                        f"Failed to download checksum: HTTP {response.status_code}",
                        url=checksum_url,
                        key=key,
                        status_code=response.status_code,
                    )
                expected = response.text.strip()
            finally:
                response.close()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ChecksumFetchFailure(
                f"Failed to download checksum: HTTP {status}",
                url=checksum_url,
                key=key,
                status_code=status,
            ) from e
        except requests.RequestException as e:
            raise ChecksumFetchFailure(
                "Failed to download checksum", url=checksum_url, key=key, details=str(e)
            ) from e

        self._checkpoint(deadline, checksum_url, key)
        try:
            actual = calculate_sha256(file_path)
        except OSError as e:
            raise RecoverableSyncFailure(
                "Failed to hash downloaded file", url=checksum_url, key=key, details=str(e)
            ) from e

        if expected != actual:
            raise ChecksumMismatch(expected, actual, url=checksum_url, key=key)
        return actual

    def upload(self, file_path: Path, key: str) -> None:
        """
        Push ``file_path`` to the destination key.

        Raises:
            UploadFailure: If the store rejects the upload.
            RunCancelled: If the run was cancelled before the upload started.
        """
        self.cancellation.raise_if_cancelled(key=key)
        logger.debug(f"Uploading {file_path} to {self.describe(key)}")
        self.store.put_file(self.bucket, key, file_path)

