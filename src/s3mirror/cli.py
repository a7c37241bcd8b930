# src/s3mirror/cli.py

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import platformdirs

from s3mirror import log_utils
from s3mirror.config import MirrorSettings, load_config
from s3mirror.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_REGION,
    DEFAULT_WORKERS,
    GITHUB_TOKEN_ENV_VAR,
    LOG_LEVEL_ENV_VAR,
    LOGGER_NAME,
    TARGET_TIMEOUT_ENV_VAR,
    WORKERS_ENV_VAR,
)
from s3mirror.exceptions import MirrorError
from s3mirror.mirror.github_source import GithubReleaseSource
from s3mirror.mirror.interfaces import BinaryEntry
from s3mirror.mirror.object_store import S3ObjectStore
from s3mirror.mirror.orchestrator import MirrorOrchestrator, RunSummary
from s3mirror.mirror.pipeline import CancellationToken, SyncPipeline
from s3mirror.mirror.version import VersionResolver
from s3mirror.utils import create_retry_session, get_user_agent, parse_bool

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

# Flags that have no value until the run touches the object store
_STORE_FLAGS = (
    ("bucket", "--bucket", "S3_BUCKET"),
    ("access_key", "--access-key", "AWS_ACCESS_KEY_ID"),
    ("secret_key", "--secret-key", "AWS_SECRET_ACCESS_KEY"),
    ("endpoint", "--endpoint", "S3_ENDPOINT"),
)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Every option falls back to its environment variable, read when the parser
    is built, so tests can set the environment before calling this.
    """
    parser = argparse.ArgumentParser(
        prog="s3mirror",
        description="Mirror GitHub release binaries into S3-compatible object storage",
    )
    parser.add_argument(
        "--version", action="version", version=get_user_agent().replace("/", " ")
    )
    parser.add_argument(
        "--bucket", default=_env("S3_BUCKET"), help="Destination bucket (env S3_BUCKET)"
    )
    parser.add_argument(
        "--config",
        default=_env("CONFIG_FILE", DEFAULT_CONFIG_FILE),
        help="Path to the binaries config file (env CONFIG_FILE)",
    )
    parser.add_argument(
        "--region",
        default=_env("AWS_REGION", DEFAULT_REGION),
        help="Object store region (env AWS_REGION)",
    )
    parser.add_argument(
        "--access-key",
        default=_env("AWS_ACCESS_KEY_ID"),
        help="Object store access key (env AWS_ACCESS_KEY_ID)",
    )
    parser.add_argument(
        "--secret-key",
        default=_env("AWS_SECRET_ACCESS_KEY"),
        help="Object store secret key (env AWS_SECRET_ACCESS_KEY)",
    )
    parser.add_argument(
        "--endpoint",
        default=_env("S3_ENDPOINT"),
        help="Object store endpoint, host[:port] or URL (env S3_ENDPOINT)",
    )
    parser.add_argument(
        "--tlssecure",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Use TLS for the object store endpoint (env S3_TLSSECURE, default true)",
    )
    parser.add_argument(
        "--github-token",
        default=_env(GITHUB_TOKEN_ENV_VAR),
        help=f"GitHub API token (env {GITHUB_TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        help=f"Targets synced concurrently (env {WORKERS_ENV_VAR}, default {DEFAULT_WORKERS})",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help=f"Per-target deadline in seconds (env {TARGET_TIMEOUT_ENV_VAR})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Expand targets and log them without touching the object store",
    )
    parser.add_argument(
        "--log-level",
        default=_env(LOG_LEVEL_ENV_VAR, "INFO"),
        help=f"Log level (env {LOG_LEVEL_ENV_VAR})",
    )
    log_group = parser.add_mutually_exclusive_group()
    log_group.add_argument(
        "--log-dir", type=Path, help="Also write logs to this directory"
    )
    log_group.add_argument(
        "--log-file",
        action="store_true",
        help="Also write logs to the user log directory",
    )
    return parser


def _resolve_env_overrides(
    parser: argparse.ArgumentParser, args: argparse.Namespace
) -> Tuple[bool, int, Optional[float]]:
    """Resolve options whose environment fallback needs parsing."""
    tls_secure = args.tlssecure
    if tls_secure is None:
        try:
            tls_secure = parse_bool(_env("S3_TLSSECURE"), default=True)
        except ValueError as e:
            parser.error(f"S3_TLSSECURE: {e}")

    workers = args.workers
    if workers is None:
        raw = _env(WORKERS_ENV_VAR)
        try:
            workers = _positive_int(raw) if raw is not None else DEFAULT_WORKERS
        except argparse.ArgumentTypeError as e:
            parser.error(f"{WORKERS_ENV_VAR}: {e}")

    timeout = args.timeout
    if timeout is None:
        raw = _env(TARGET_TIMEOUT_ENV_VAR)
        try:
            timeout = _positive_float(raw) if raw is not None else None
        except argparse.ArgumentTypeError as e:
            parser.error(f"{TARGET_TIMEOUT_ENV_VAR}: {e}")

    return tls_secure, workers, timeout


def parse_settings(argv: Optional[Sequence[str]] = None) -> MirrorSettings:
    """
    Parse command-line arguments into MirrorSettings.

    Object store settings are only required when the run will touch the store,
    i.e. not for ``--dry-run``. Usage errors exit with status 2.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    tls_secure, workers, timeout = _resolve_env_overrides(parser, args)

    if not args.dry_run:
        missing = [
            f"{flag} (env {env})"
            for attr, flag, env in _STORE_FLAGS
            if not getattr(args, attr)
        ]
        if missing:
            parser.error("missing required settings: " + ", ".join(missing))

    log_dir = args.log_dir
    if args.log_file:
        log_dir = Path(platformdirs.user_log_dir(LOGGER_NAME))

    return MirrorSettings(
        bucket=args.bucket,
        config_path=Path(args.config),
        region=args.region,
        access_key=args.access_key,
        secret_key=args.secret_key,
        endpoint=args.endpoint,
        tls_secure=tls_secure,
        github_token=args.github_token,
        workers=workers,
        target_timeout=timeout,
        dry_run=args.dry_run,
        log_level=args.log_level,
        log_dir=log_dir,
    )


def build_orchestrator(
    settings: MirrorSettings,
    binaries: List[BinaryEntry],
    cancellation: Optional[CancellationToken] = None,
) -> MirrorOrchestrator:
    """
    Wire the adapters and the pipeline for one run.

    The HTTP session is shared by the release source and the pipeline; the
    object store client is only created when the run is not a dry run.
    """
    session = create_retry_session()
    resolver = VersionResolver(
        GithubReleaseSource(github_token=settings.github_token, session=session)
    )

    pipeline = None
    if not settings.dry_run:
        store = S3ObjectStore.from_settings(
            endpoint=settings.endpoint or "",
            access_key=settings.access_key or "",
            secret_key=settings.secret_key or "",
            region=settings.region,
            secure=settings.tls_secure,
        )
        pipeline = SyncPipeline(
            store=store,
            bucket=settings.bucket or "",
            session=session,
            cancellation=cancellation,
            target_timeout=settings.target_timeout,
        )

    return MirrorOrchestrator(
        binaries,
        resolver,
        pipeline=pipeline,
        workers=settings.workers,
        dry_run=settings.dry_run,
    )


def run(
    settings: MirrorSettings, cancellation: Optional[CancellationToken] = None
) -> RunSummary:
    """
    Load the config and mirror every binary.

    Raises:
        MirrorError: On configuration errors and fatal run failures.
    """
    binaries = load_config(settings.config_path)
    orchestrator = build_orchestrator(settings, binaries, cancellation)
    return orchestrator.run()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Entry point for the s3mirror command-line interface.

    Exits 0 when the run completes (recoverable target failures included), 1 on
    a fatal error, 2 on usage errors and 130 when interrupted.
    """
    settings = parse_settings(argv)
    log_utils.set_log_level(settings.log_level)
    if settings.log_dir is not None:
        log_utils.add_file_logging(settings.log_dir, settings.log_level)

    cancellation = CancellationToken()
    try:
        run(settings, cancellation)
    except MirrorError as e:
        log_utils.logger.error(f"Fatal: {e}")
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        cancellation.cancel()
        log_utils.logger.error("Fatal: Run cancelled by interrupt")
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
