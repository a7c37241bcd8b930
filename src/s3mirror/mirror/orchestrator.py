"""
Mirror Run Orchestrator

This module drives a full mirror run: for every configured binary it resolves
versions, expands targets and feeds them through the sync pipeline, either
sequentially or through a bounded worker pool.
"""

import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Deque, Iterable, List, Optional, Sequence

from s3mirror.constants import INFLIGHT_PER_WORKER
from s3mirror.exceptions import MirrorError
from s3mirror.log_utils import logger

from .expander import TargetExpander
from .interfaces import (
    BinaryEntry,
    ExpandedTarget,
    ExpansionContext,
    SyncOutcome,
    SyncResult,
    TargetSpec,
)
from .pipeline import SyncPipeline
from .version import VersionResolver


@dataclass
class RunSummary:
    """Accumulated outcome counts for one run."""

    uploaded: int = 0
    skipped: int = 0
    excluded: int = 0
    failed: int = 0
    planned: int = 0
    failures: List[SyncResult] = field(default_factory=list)

    def record(self, result: SyncResult) -> None:
        if result.outcome is SyncOutcome.SUCCEEDED:
            self.uploaded += 1
        elif result.outcome is SyncOutcome.SKIPPED_EXISTS:
            self.skipped += 1
        else:
            self.failed += 1
            self.failures.append(result)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


class MirrorOrchestrator:
    """
    Coordinates version resolution, target expansion and syncing for a run.

    Parameters:
        binaries: Binary entries in configuration order.
        resolver: Resolves the tags of each entry.
        pipeline: Syncs expanded targets; may be None for a dry run.
        workers: Number of concurrent sync units; 1 keeps the run strictly sequential.
        dry_run: Only expand and report targets.
    """

    def __init__(
        self,
        binaries: Sequence[BinaryEntry],
        resolver: VersionResolver,
        pipeline: Optional[SyncPipeline] = None,
        workers: int = 1,
        dry_run: bool = False,
    ):
        if pipeline is None and not dry_run:
            raise ValueError("A sync pipeline is required unless dry_run is set")
        self.binaries = list(binaries)
        self.resolver = resolver
        self.pipeline = pipeline
        self.workers = max(1, int(workers))
        self.dry_run = dry_run
        self.summary = RunSummary()
        self.expander = TargetExpander(on_excluded=self._record_excluded)

    def run(self) -> RunSummary:
        """
        Mirror every configured binary.

        Returns:
            RunSummary: Counts of uploaded, skipped, excluded and failed targets.

        Raises:
            MirrorError: On the first fatal failure; nothing after it is processed.
        """
        start_time = time.time()
        logger.info("Starting mirror run...")
        for entry in self.binaries:
            self.process_binary(entry)
        self._log_summary(start_time)
        return self.summary

    def process_binary(self, entry: BinaryEntry) -> None:
        versions = self.resolver.resolve_spec(entry.versions)
        logger.info(f"Filtered versions for {entry.name}: {versions}")
        if not versions or not entry.targets:
            return

        targets = self.expander.expand(entry, versions)
        if self.dry_run:
            for target in targets:
                self.summary.planned += 1
                logger.info(f"[dry-run] {target.url} -> {target.key}")
        elif self.workers == 1:
            for target in targets:
                self._record(self.pipeline.sync(target))
        else:
            self._sync_concurrently(targets)

    def _sync_concurrently(self, targets: Iterable[ExpandedTarget]) -> None:
        """
        Sync targets on a bounded pool while reporting results in expansion order.

        At most ``workers * INFLIGHT_PER_WORKER`` units are in flight. Results
        are collected head first, so every unit ahead of a fatal failure
        finishes and is recorded before the failure is raised. Only then is the
        shared token cancelled, stopping the units behind it at their next
        checkpoint. A template error during expansion is raised after the
        units already submitted have been collected.
        """
        token = self.pipeline.cancellation
        max_inflight = self.workers * INFLIGHT_PER_WORKER
        iterator = iter(targets)
        exhausted = False
        expansion_error: Optional[MirrorError] = None

        with ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="s3mirror"
        ) as executor:
            inflight: Deque[Future] = deque()
            try:
                while True:
                    while (
                        not exhausted
                        and len(inflight) < max_inflight
                        and not self._has_failed_unit(inflight)
                    ):
                        try:
                            target = next(iterator)
                        except StopIteration:
                            exhausted = True
                            break
                        except MirrorError as exc:
                            expansion_error = exc
                            exhausted = True
                            break
                        inflight.append(executor.submit(self.pipeline.sync, target))
                    if not inflight:
                        break
                    head = inflight.popleft()
                    self._record(head.result())
            except BaseException:
                token.cancel()
                for future in inflight:
                    future.cancel()
                raise

        if expansion_error is not None:
            raise expansion_error

    @staticmethod
    def _has_failed_unit(inflight: Iterable[Future]) -> bool:
        """Whether a submitted unit has already raised; nothing more is submitted then."""
        return any(
            future.done() and not future.cancelled() and future.exception() is not None
            for future in inflight
        )

    def _record(self, result: SyncResult) -> None:
        self.summary.record(result)
        target = result.target
        destination = self.pipeline.describe(target.key)
        if result.outcome is SyncOutcome.SUCCEEDED:
            logger.info(f"Uploaded {target.url} to {destination}")
        elif result.outcome is SyncOutcome.SKIPPED_EXISTS:
            logger.info(f"Skipped: {destination} already exists")
        else:
            logger.error(f"Failed {target.label}: {result.error}")
            if result.error is not None and getattr(result.error, "url", None):
                logger.error(f"URL: {result.error.url}")

    def _record_excluded(self, context: ExpansionContext, target: TargetSpec) -> None:
        self.summary.excluded += 1

    def _log_summary(self, start_time: float) -> None:
        elapsed_time = time.time() - start_time
        summary = self.summary
        logger.info("Mirror run completed")
        logger.info(f"Time taken: {elapsed_time:.2f} seconds")
        if self.dry_run:
            logger.info(
                "Targets: %d planned, %d excluded", summary.planned, summary.excluded
            )
            return
        logger.info(
            "Targets: %d uploaded, %d skipped, %d excluded, %d failed",
            summary.uploaded,
            summary.skipped,
            summary.excluded,
            summary.failed,
        )
        if summary.has_failures:
            logger.warning(
                f"{summary.failed} targets failed - check logs for details"
            )
