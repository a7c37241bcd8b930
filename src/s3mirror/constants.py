"""
Constants and configuration values for s3mirror.

This module contains all hardcoded values, URLs, timeouts, and other constants
used throughout the application.
"""

# GitHub API URLs
GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_WEB_HOSTS = ("github.com", "www.github.com")
GITHUB_MAX_PER_PAGE = 100
GITHUB_API_VERSION = "2022-11-28"

# Network timeouts and delays (in seconds)
GITHUB_API_TIMEOUT = 10
API_CALL_DELAY = 0.1  # Small delay to be respectful to GitHub API

# Download configuration defaults
DEFAULT_CONNECT_RETRIES = 5
DEFAULT_BACKOFF_FACTOR = 0.3
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 8192
RETRY_STATUS_FORCELIST = (408, 429, 500, 502, 503, 504)

# Scratch files
SCRATCH_FILE_PREFIX = "binary-"

# Concurrency
DEFAULT_WORKERS = 1
INFLIGHT_PER_WORKER = 2

# Object store
DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_REGION = "us-east-1"
S3_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})

# Template context fields, in the order they are documented
CONTEXT_FIELDS = ("name", "version", "os", "arch", "bin", "github")
CONDITION_TRUE = "true"

# Logging configuration
LOGGER_NAME = "s3mirror"
LOG_FILE_NAME = "s3mirror.log"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Environment variable names
LOG_LEVEL_ENV_VAR = "S3MIRROR_LOG_LEVEL"
WORKERS_ENV_VAR = "S3MIRROR_WORKERS"
TARGET_TIMEOUT_ENV_VAR = "S3MIRROR_TARGET_TIMEOUT"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"

TRUTHY_STRINGS = frozenset({"1", "true", "yes", "on"})
FALSY_STRINGS = frozenset({"0", "false", "no", "off"})
