"""
s3mirror Sync Subsystem

This package resolves release versions, expands them into download targets
through templates, and idempotently syncs each target into object storage.

Core Components:
- interfaces: Data model and adapter interfaces
- version: Tolerant version parsing and range resolution
- templating: Template engine and condition evaluator
- expander: Target expansion over the version/os/arch/bin matrix
- pipeline: Per-target sync pipeline and failure policy
- orchestrator: Run coordination and summary
- github_source: GitHub release listing adapter
- object_store: S3-compatible object store adapter
"""

from .expander import TargetExpander
from .github_source import GithubReleaseSource
from .interfaces import (
    BinaryEntry,
    ExpandedTarget,
    ExpansionContext,
    ObjectStore,
    Release,
    ReleaseSource,
    SyncOutcome,
    SyncResult,
    TargetSpec,
    VersionSpec,
)
from .object_store import S3ObjectStore
from .orchestrator import MirrorOrchestrator, RunSummary
from .pipeline import (
    CancellationToken,
    FailureAction,
    FailurePolicy,
    SyncPipeline,
)
from .templating import evaluate_condition, render
from .version import VersionResolver, parse_range, parse_tolerant

__all__ = [
    # Interfaces
    "BinaryEntry",
    "VersionSpec",
    "TargetSpec",
    "ExpansionContext",
    "ExpandedTarget",
    "SyncOutcome",
    "SyncResult",
    "Release",
    "ReleaseSource",
    "ObjectStore",
    # Adapters
    "GithubReleaseSource",
    "S3ObjectStore",
    # Core components
    "VersionResolver",
    "parse_range",
    "parse_tolerant",
    "render",
    "evaluate_condition",
    "TargetExpander",
    "SyncPipeline",
    "FailurePolicy",
    "FailureAction",
    "CancellationToken",
    # Orchestration
    "MirrorOrchestrator",
    "RunSummary",
]
