"""
Tests for MirrorOrchestrator: run loop, summary, fatal-abort semantics,
bounded parallelism and dry runs.
"""

import threading
from unittest.mock import Mock

import pytest
from fakes import CountingScratch, FakeObjectStore, FakeReleaseSource, make_entry, make_response

from s3mirror.exceptions import (
    InvalidRangeExpression,
    SourceUnavailable,
    TemplateError,
    UploadFailure,
)
from s3mirror.mirror.interfaces import Release, SyncOutcome, TargetSpec
from s3mirror.mirror.orchestrator import MirrorOrchestrator, RunSummary
from s3mirror.mirror.pipeline import CancellationToken, SyncPipeline
from s3mirror.mirror.version import VersionResolver

pytestmark = [pytest.mark.integration]

RELEASES = {
    "acme/tool": [Release("v1.0.0"), Release("v1.1.0"), Release("v1.2.0")],
}


def _entry(**kwargs):
    defaults = dict(
        name="tool",
        github="https://github.com/acme/tool",
        semver=">=1.0.0",
        targets=[
            TargetSpec(
                url="https://dl.example.com/{{.version}}/{{.os}}",
                destination="tool/{{.version}}/{{.os}}",
            )
        ],
        os=["linux", "darwin"],
    )
    defaults.update(kwargs)
    return make_entry(**defaults)


def _ok_session():
    session = Mock()
    session.get.side_effect = lambda url, **_kwargs: make_response(content=url.encode())
    return session


def _orchestrator(tmp_path, store, binaries, session=None, workers=1, **kwargs):
    pipeline = SyncPipeline(
        store=store,
        bucket="mirror",
        session=session or _ok_session(),
        scratch_factory=CountingScratch(tmp_path),
        cancellation=CancellationToken(),
    )
    return MirrorOrchestrator(
        binaries,
        VersionResolver(FakeReleaseSource(RELEASES)),
        pipeline=pipeline,
        workers=workers,
        **kwargs,
    )


class TestRunSummary:
    def test_record_counts_outcomes(self):
        summary = RunSummary()
        for outcome in (
            SyncOutcome.SUCCEEDED,
            SyncOutcome.SKIPPED_EXISTS,
            SyncOutcome.FAILED_RECOVERABLE,
        ):
            summary.record(Mock(outcome=outcome))

        assert (summary.uploaded, summary.skipped, summary.failed) == (1, 1, 1)
        assert summary.has_failures
        assert len(summary.failures) == 1


class TestSequentialRun:
    def test_uploads_every_target_in_order(self, tmp_path):
        store = FakeObjectStore()
        orchestrator = _orchestrator(tmp_path, store, [_entry()])

        summary = orchestrator.run()

        assert store.put_calls == [
            "tool/v1.0.0/linux",
            "tool/v1.0.0/darwin",
            "tool/v1.1.0/linux",
            "tool/v1.1.0/darwin",
            "tool/v1.2.0/linux",
            "tool/v1.2.0/darwin",
        ]
        assert summary.uploaded == 6
        assert not summary.has_failures

    def test_second_run_is_idempotent(self, tmp_path):
        store = FakeObjectStore()
        _orchestrator(tmp_path, store, [_entry()]).run()
        session = _ok_session()

        summary = _orchestrator(tmp_path, store, [_entry()], session=session).run()

        assert summary.skipped == 6
        assert summary.uploaded == 0
        session.get.assert_not_called()

    def test_recoverable_failure_does_not_stop_run(self, tmp_path):
        store = FakeObjectStore()
        session = Mock()

        def get(url, **_kwargs):
            if "v1.1.0/linux" in url:
                return make_response(status_code=404)
            return make_response(content=b"bin")

        session.get.side_effect = get
        orchestrator = _orchestrator(tmp_path, store, [_entry()], session=session)

        summary = orchestrator.run()

        assert summary.uploaded == 5
        assert summary.failed == 1
        assert summary.failures[0].target.key == "tool/v1.1.0/linux"
        assert "tool/v1.1.0/linux" not in store.put_calls

    def test_upload_failure_halts_run(self, tmp_path):
        """No target after the failing upload is visited."""
        store = FakeObjectStore(fail_put=["tool/v1.0.0/darwin"])
        session = _ok_session()
        orchestrator = _orchestrator(tmp_path, store, [_entry(), _entry(name="other")], session=session)

        with pytest.raises(UploadFailure):
            orchestrator.run()

        assert store.put_calls == ["tool/v1.0.0/linux", "tool/v1.0.0/darwin"]
        assert store.exists_calls == ["tool/v1.0.0/linux", "tool/v1.0.0/darwin"]
        assert session.get.call_count == 2

    def test_excluded_targets_are_counted(self, tmp_path):
        store = FakeObjectStore()
        entry = _entry(
            targets=[
                TargetSpec(
                    url="u/{{.version}}/{{.os}}",
                    destination="k/{{.version}}/{{.os}}",
                    condition='{{ eq .os "linux" }}',
                )
            ]
        )

        summary = _orchestrator(tmp_path, store, [entry]).run()

        assert summary.uploaded == 3
        assert summary.excluded == 3
        assert summary.failed == 0
        assert all(key.endswith("/linux") for key in store.put_calls)

    def test_binaries_processed_in_configuration_order(self, tmp_path):
        store = FakeObjectStore()
        first = _entry(name="a", semver="1.0.0", os=["linux"], targets=[TargetSpec(url="u", destination="{{.name}}")])
        second = _entry(name="b", semver="1.0.0", os=["linux"], targets=[TargetSpec(url="u", destination="{{.name}}")])

        _orchestrator(tmp_path, store, [first, second]).run()

        assert store.put_calls == ["a", "b"]

    def test_entry_without_targets_only_resolves(self, tmp_path):
        store = FakeObjectStore()
        entry = _entry(targets=[], os=(), arch=())

        summary = _orchestrator(tmp_path, store, [entry]).run()

        assert store.exists_calls == []
        assert summary.uploaded == 0

    def test_source_unavailable_aborts(self, tmp_path):
        store = FakeObjectStore()
        entry = _entry(github="https://github.com/acme/missing")

        with pytest.raises(SourceUnavailable):
            _orchestrator(tmp_path, store, [entry]).run()

    def test_invalid_range_aborts_before_any_sync(self, tmp_path):
        store = FakeObjectStore()
        entries = [_entry(semver=">=>1")]

        with pytest.raises(InvalidRangeExpression):
            _orchestrator(tmp_path, store, entries).run()

        assert store.exists_calls == []

    def test_template_error_aborts(self, tmp_path):
        store = FakeObjectStore()
        entry = _entry(targets=[TargetSpec(url="{{ .nope }}", destination="k")])

        with pytest.raises(TemplateError):
            _orchestrator(tmp_path, store, [entry]).run()

        assert store.exists_calls == []

    def test_outcomes_are_logged(self, tmp_path, mocker):
        mock_logger = mocker.patch("s3mirror.mirror.orchestrator.logger")
        store = FakeObjectStore(existing=["tool/v1.0.0/linux"])
        entry = _entry(semver="1.0.0")

        _orchestrator(tmp_path, store, [entry]).run()

        messages = [call.args[0] for call in mock_logger.info.call_args_list]
        assert "Filtered versions for tool: ['v1.0.0']" in messages
        assert "Skipped: s3://mirror/tool/v1.0.0/linux already exists" in messages
        assert (
            "Uploaded https://dl.example.com/v1.0.0/darwin to s3://mirror/tool/v1.0.0/darwin"
            in messages
        )


class TestParallelRun:
    def test_results_recorded_in_expansion_order(self, tmp_path, mocker):
        mock_logger = mocker.patch("s3mirror.mirror.orchestrator.logger")
        store = FakeObjectStore()
        release_first = threading.Event()
        session = Mock()

        def get(url, **_kwargs):
            # The first target finishes last
            if url.endswith("v1.0.0/linux"):
                release_first.wait(timeout=5)
            else:
                release_first.set()
            return make_response(content=b"bin")

        session.get.side_effect = get
        orchestrator = _orchestrator(tmp_path, store, [_entry()], session=session, workers=3)

        summary = orchestrator.run()

        assert summary.uploaded == 6
        uploaded = [
            call.args[0]
            for call in mock_logger.info.call_args_list
            if call.args and str(call.args[0]).startswith("Uploaded")
        ]
        assert [line.rsplit(" ", 1)[1] for line in uploaded] == [
            "s3://mirror/tool/v1.0.0/linux",
            "s3://mirror/tool/v1.0.0/darwin",
            "s3://mirror/tool/v1.1.0/linux",
            "s3://mirror/tool/v1.1.0/darwin",
            "s3://mirror/tool/v1.2.0/linux",
            "s3://mirror/tool/v1.2.0/darwin",
        ]

    def test_fatal_failure_raised_once_and_stops_submission(self, tmp_path):
        store = FakeObjectStore(fail_put=["tool/v1.0.0/linux"])
        orchestrator = _orchestrator(tmp_path, store, [_entry()], workers=2)

        with pytest.raises(UploadFailure) as exc_info:
            orchestrator.run()

        assert exc_info.value.key == "tool/v1.0.0/linux"
        # At most the in-flight window (2 workers * 2) was ever submitted
        assert len(store.exists_calls) <= 4
        assert orchestrator.pipeline.cancellation.cancelled

    def test_recoverable_failures_isolated_between_units(self, tmp_path):
        store = FakeObjectStore()
        session = Mock()

        def get(url, **_kwargs):
            if url.endswith("/darwin"):
                return make_response(status_code=500)
            return make_response(content=b"bin")

        session.get.side_effect = get
        orchestrator = _orchestrator(tmp_path, store, [_entry()], session=session, workers=4)

        summary = orchestrator.run()

        assert summary.uploaded == 3
        assert summary.failed == 3
        assert sorted(store.put_calls) == [
            "tool/v1.0.0/linux",
            "tool/v1.1.0/linux",
            "tool/v1.2.0/linux",
        ]

    def test_units_ahead_of_fatal_failure_still_complete(self, tmp_path):
        """A failing upload never cancels targets listed before it."""
        failed = threading.Event()

        class SignallingStore(FakeObjectStore):
            def put_file(self, bucket, key, local_path):
                try:
                    super().put_file(bucket, key, local_path)
                except UploadFailure:
                    failed.set()
                    raise

        store = SignallingStore(fail_put=["tool/v1.0.0/darwin"])
        orchestrator = _orchestrator(
            tmp_path, store, [_entry(semver="1.0.0")], workers=2
        )
        token = orchestrator.pipeline.cancellation
        session = orchestrator.pipeline.session

        def get(url, **_kwargs):
            if url.endswith("v1.0.0/linux"):
                # Finish only after the later target has failed, and give a
                # premature cancellation the chance to land first
                failed.wait(timeout=5)
                token._event.wait(timeout=0.5)
            return make_response(content=b"bin")

        session.get.side_effect = get

        with pytest.raises(UploadFailure) as exc_info:
            orchestrator.run()

        assert exc_info.value.key == "tool/v1.0.0/darwin"
        assert "tool/v1.0.0/linux" in store.objects
        assert orchestrator.summary.uploaded == 1
        assert token.cancelled

    def test_expansion_error_collects_submitted_units_first(self, tmp_path):
        store = FakeObjectStore()
        entry = _entry(
            targets=[
                TargetSpec(
                    url="https://dl/{{.version}}/{{.os}}",
                    destination="t/{{.version}}/{{.os}}",
                ),
                TargetSpec(url="{{ .nope }}", destination="k"),
            ]
        )
        orchestrator = _orchestrator(tmp_path, store, [entry], workers=2)

        with pytest.raises(TemplateError):
            orchestrator.run()

        assert sorted(store.put_calls) == [
            "t/v1.0.0/darwin",
            "t/v1.0.0/linux",
            "t/v1.1.0/darwin",
            "t/v1.1.0/linux",
            "t/v1.2.0/darwin",
            "t/v1.2.0/linux",
        ]
        assert orchestrator.summary.uploaded == 6


class TestDryRun:
    def test_dry_run_touches_nothing(self, tmp_path, mocker):
        mock_logger = mocker.patch("s3mirror.mirror.orchestrator.logger")
        orchestrator = MirrorOrchestrator(
            [_entry(semver="1.0.0")],
            VersionResolver(FakeReleaseSource(RELEASES)),
            dry_run=True,
        )

        summary = orchestrator.run()

        assert summary.planned == 2
        messages = [call.args[0] for call in mock_logger.info.call_args_list]
        assert "[dry-run] https://dl.example.com/v1.0.0/linux -> tool/v1.0.0/linux" in messages

    def test_pipeline_required_without_dry_run(self):
        with pytest.raises(ValueError):
            MirrorOrchestrator([], VersionResolver(FakeReleaseSource()))
