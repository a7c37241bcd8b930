"""
Custom exceptions for the s3mirror application.

This module defines domain-specific exceptions that separate configuration
defects, source outages and per-target sync failures, so the run loop can
decide which failures abandon a single target and which abort the run.
"""


class MirrorError(Exception):
    """
    Base exception for all s3mirror errors.

    All custom exceptions in s3mirror should inherit from this class
    to allow for easy catching of all application-specific errors.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(MirrorError):
    """
    Exception raised when configuration is invalid.

    This includes:
    - Unreadable or unparseable configuration files
    - Structurally invalid binary entries
    - Malformed repository locators, range expressions or templates
    """

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when the configuration file cannot be read or parsed."""

    pass


class ConfigValidationError(ConfigurationError):
    """
    Exception raised when configuration validation fails.

    Attributes:
        field: The configuration field that failed validation.
    """

    def __init__(
        self, message: str, field: str | None = None, details: str | None = None
    ) -> None:
        super().__init__(message, details)
        self.field = field


class InvalidLocatorError(ConfigurationError):
    """Exception raised when a repository URL does not name exactly owner/repo."""

    def __init__(self, locator: str, details: str | None = None) -> None:
        super().__init__(f"Invalid GitHub URL: {locator}", details)
        self.locator = locator


class InvalidRangeExpression(ConfigurationError):
    """
    Exception raised when a version range expression cannot be parsed.

    Attributes:
        expression: The offending range expression.
    """

    def __init__(self, expression: str, details: str | None = None) -> None:
        super().__init__(f"Invalid version range: {expression!r}", details)
        self.expression = expression


class TemplateError(ConfigurationError):
    """
    Exception raised when a template fails to parse or to render.

    Attributes:
        phase: ``"parse"`` for malformed templates, ``"execute"`` for templates
            that fail while being evaluated against a context.
        template: The template source.
        cause: Human-readable description of the underlying problem.
    """

    PARSE = "parse"
    EXECUTE = "execute"

    def __init__(self, phase: str, template: str, cause: str) -> None:
        super().__init__(
            f"Failed to {phase} template {template!r}",
            details=cause,
        )
        self.phase = phase
        self.template = template
        self.cause = cause


# =============================================================================
# Source Errors
# =============================================================================


class SourceUnavailable(MirrorError):
    """
    Exception raised when the release listing for a repository cannot be fetched.

    Attributes:
        owner: Repository owner.
        repo: Repository name.
        status_code: HTTP status code when the failure was an HTTP error.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        details: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"Failed to fetch GitHub releases for {owner}/{repo}", details)
        self.owner = owner
        self.repo = repo
        self.status_code = status_code


# =============================================================================
# Sync Errors
# =============================================================================


class SyncFailure(MirrorError):
    """
    Base exception for failures of a single expanded target.

    Attributes:
        url: The download or checksum URL involved, when known.
        key: The destination key of the target, when known.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        key: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.key = key


class RecoverableSyncFailure(SyncFailure):
    """Failure that abandons one target while the run continues."""

    pass


class DownloadFailure(RecoverableSyncFailure):
    """
    Exception raised when an artifact cannot be downloaded.

    Attributes:
        status_code: The HTTP status code returned by the server, if any.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        key: str | None = None,
        status_code: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, url=url, key=key, details=details)
        self.status_code = status_code


class ChecksumFetchFailure(DownloadFailure):
    """Exception raised when the checksum source cannot be fetched."""

    pass


class ChecksumMismatch(RecoverableSyncFailure):
    """
    Exception raised when a downloaded artifact does not match its checksum.

    Attributes:
        expected: The trimmed digest text published by the checksum source.
        actual: The computed lower-case hexadecimal digest.
    """

    def __init__(
        self,
        expected: str,
        actual: str,
        url: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(
            "Checksum mismatch",
            url=url,
            key=key,
            details=f"expected {expected}, got {actual}",
        )
        self.expected = expected
        self.actual = actual


class DeadlineExceeded(RecoverableSyncFailure):
    """Exception raised when a target runs past its per-target deadline."""

    pass


class FatalSyncFailure(SyncFailure):
    """Failure that aborts the entire run."""

    pass


class ExistenceCheckFailure(FatalSyncFailure):
    """Exception raised when the object store cannot answer an existence check."""

    pass


class UploadFailure(FatalSyncFailure):
    """Exception raised when an artifact cannot be uploaded to the object store."""

    pass


class RunCancelled(FatalSyncFailure):
    """Exception raised when the run is stopped from outside, e.g. by an interrupt."""

    pass
