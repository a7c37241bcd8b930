"""
Core Interfaces for the s3mirror Sync Subsystem

This module defines the data model loaded from configuration, the records
produced while expanding and syncing targets, and the adapter interfaces the
core consumes for the source repository and the object store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from s3mirror.constants import CONTEXT_FIELDS, GITHUB_WEB_HOSTS
from s3mirror.exceptions import (
    ConfigValidationError,
    InvalidLocatorError,
    MirrorError,
)

Pathish = Union[str, Path]


def parse_github_locator(url: str) -> Tuple[str, str]:
    """
    Split a GitHub repository URL into its owner and repository name.

    Accepts ``https://github.com/owner/repo`` (with or without scheme, trailing
    slash or ``.git`` suffix) as well as a bare ``owner/repo``.

    Raises:
        InvalidLocatorError: If the path does not have exactly two segments.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidLocatorError(str(url), "repository URL is empty")

    path = url.strip()
    for scheme in ("https://", "http://"):
        if path.lower().startswith(scheme):
            path = path[len(scheme) :]
            break
    host, _, rest = path.partition("/")
    if host.lower() in GITHUB_WEB_HOSTS:
        path = rest

    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]

    segments = path.split("/")
    if len(segments) != 2 or not all(segments):
        raise InvalidLocatorError(url, "expected https://github.com/<owner>/<repo>")
    return segments[0], segments[1]


@dataclass(frozen=True)
class VersionSpec:
    """Which releases of a source repository to mirror."""

    github: str
    """Repository URL as written in configuration"""

    semver: str
    """Version range expression, e.g. '>=1.28.0 <1.29.0'"""

    prereleases: bool = False
    """Whether releases flagged as prereleases are considered"""

    owner: str = field(init=False)
    repo: str = field(init=False)

    def __post_init__(self) -> None:
        owner, repo = parse_github_locator(self.github)
        object.__setattr__(self, "owner", owner)
        object.__setattr__(self, "repo", repo)


@dataclass(frozen=True)
class TargetSpec:
    """One declared download target; every field is a template."""

    url: str
    destination: str
    checksum: Optional[str] = None
    """Checksum source URL; None disables integrity verification"""

    condition: Optional[str] = None
    """Inclusion condition; None includes every combination"""


@dataclass(frozen=True)
class BinaryEntry:
    """A binary to mirror and the matrix it expands over."""

    name: str
    versions: VersionSpec
    targets: Tuple[TargetSpec, ...] = ()
    os: Tuple[str, ...] = ()
    arch: Tuple[str, ...] = ()
    bins: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.bins:
            object.__setattr__(self, "bins", (self.name,))
        if self.targets and (not self.os or not self.arch):
            raise ConfigValidationError(
                f"Binary {self.name!r} declares targets but no os/arch values",
                field="os" if not self.os else "arch",
            )


@dataclass(frozen=True)
class ExpansionContext:
    """
    Substitution context for one (version, os, arch, bin, target) combination.

    The shape is fixed: templates can reference exactly these fields.
    """

    name: str
    version: str
    os: str
    arch: str
    bin: str
    github: str

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if not isinstance(value, str):
                raise TypeError(
                    f"ExpansionContext.{item.name} must be a string, got {type(value).__name__}"
                )

    def as_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in CONTEXT_FIELDS}


@dataclass(frozen=True)
class ExpandedTarget:
    """A fully rendered target ready for the sync pipeline."""

    context: ExpansionContext
    url: str
    key: str
    checksum_url: Optional[str] = None
    target_index: int = 0

    @property
    def label(self) -> str:
        ctx = self.context
        return f"{ctx.name} {ctx.version} {ctx.os}/{ctx.arch} ({ctx.bin})"


class SyncOutcome(Enum):
    """
    Control-flow result of one expanded combination.

    A SyncResult only ever carries SKIPPED_EXISTS, SUCCEEDED or
    FAILED_RECOVERABLE. Exclusions are reported by the expander's callback
    before any target is rendered, and fatal failures are raised.
    """

    SKIPPED_EXISTS = "skipped-exists"
    SKIPPED_EXCLUDED = "skipped-excluded"
    SUCCEEDED = "succeeded"
    FAILED_RECOVERABLE = "failed-recoverable"
    FAILED_FATAL = "failed-fatal"


@dataclass
class SyncResult:
    """Result of running one expanded target through the sync pipeline."""

    outcome: SyncOutcome
    target: ExpandedTarget
    error: Optional[MirrorError] = None
    bytes_downloaded: int = 0

    @property
    def success(self) -> bool:
        return self.outcome in (SyncOutcome.SUCCEEDED, SyncOutcome.SKIPPED_EXISTS)


@dataclass(frozen=True)
class Release:
    """A release as listed by the source repository."""

    tag_name: Optional[str]
    prerelease: bool = False


class ReleaseSource(ABC):
    """Source Repository Adapter: lists the releases of a repository."""

    @abstractmethod
    def list_releases(self, owner: str, repo: str) -> List[Release]:
        """
        Return every release of ``owner/repo`` in source order.

        Raises:
            SourceUnavailable: If the listing cannot be obtained.
        """


class ObjectStore(ABC):
    """Object Store Adapter: existence checks and uploads by local path."""

    @abstractmethod
    def exists(self, bucket: str, key: str) -> bool:
        """
        Report whether ``key`` is present in ``bucket``.

        A missing object is ``False``, not an error.

        Raises:
            ExistenceCheckFailure: For any other store error.
        """

    @abstractmethod
    def put_file(self, bucket: str, key: str, local_path: Pathish) -> None:
        """
        Upload the file at ``local_path`` to ``bucket``/``key``.

        Raises:
            UploadFailure: If the upload fails.
        """
