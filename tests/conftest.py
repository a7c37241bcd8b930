import time

import platformdirs
import pytest
import requests
from fakes import CountingScratch, FakeObjectStore

from s3mirror.mirror.interfaces import Release

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """Register the markers used across the suite."""
    config.addinivalue_line("markers", "unit: fast isolated unit test")
    config.addinivalue_line("markers", "integration: exercises several components")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point user directories and s3mirror environment variables at an isolated layout.

    Patches platformdirs.user_log_dir to a temporary directory and clears every
    environment variable the CLI reads, so tests never see the developer's setup.
    """
    base = tmp_path_factory.mktemp("s3mirror")
    log_dir = base / "log"
    log_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )

    for name in (
        "S3_BUCKET",
        "CONFIG_FILE",
        "AWS_REGION",
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "S3_ENDPOINT",
        "S3_TLSSECURE",
        "GITHUB_TOKEN",
        "S3MIRROR_LOG_LEVEL",
        "S3MIRROR_WORKERS",
        "S3MIRROR_TARGET_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    requests.get = _block_network
    requests.post = _block_network
    requests.put = _block_network
    requests.delete = _block_network
    requests.head = _block_network
    requests.patch = _block_network
    requests.options = _block_network
    requests.Session.request = _block_network


@pytest.fixture(autouse=True)
def _mock_time_sleep(monkeypatch):
    """
    Make time.sleep instant for all tests to prevent delays.

    The GitHub adapter sleeps between API calls; tests that need real timing
    should monkeypatch sleep back within the test.
    """
    monkeypatch.setattr(time, "sleep", lambda *_args, **_kwargs: None)


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def kubectl_releases():
    """The kubectl release listing, newest first as GitHub returns it."""
    return {
        "kubernetes/kubernetes": [
            Release("v1.29.0"),
            Release("v1.29.0-rc.1", prerelease=True),
            Release("v1.28.1"),
            Release("v1.28.0"),
        ]
    }


@pytest.fixture
def counting_scratch(tmp_path):
    return CountingScratch(tmp_path)
