"""Custom exception hierarchy for SiteDeck configuration and deployments."""

from __future__ import annotations

from enum import Enum


class SiteDeckError(Exception):
    """Base exception for all SiteDeck errors.

    All SiteDeck-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI layer.
    """

    pass


class ConfigError(SiteDeckError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class CredentialsError(SiteDeckError):
    """Exception raised when AWS credentials cannot be resolved or verified."""

    def __init__(self, message: str) -> None:
        """Create a credentials error."""
        self.message = message
        super().__init__(message)


class DeploymentError(SiteDeckError):
    """Exception raised when a deployment operation fails.

    Attributes:
        operation: The deployment step that failed (e.g. ``bucket``, ``cdn``)
        message: Human-readable error message, including remediation
    """

    def __init__(self, operation: str, message: str) -> None:
        """Initialize DeploymentError with the failing operation.

        Args:
            operation: Name of the deployment step that failed
            message: Descriptive error message
        """
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class ScanError(DeploymentError):
    """Exception raised when the build directory cannot be scanned."""

    def __init__(self, path: str, message: str) -> None:
        """Create a scan error for a path."""
        self.path = path
        super().__init__("scan", f"{path}: {message}")


class UploadError(DeploymentError):
    """Exception raised when a file upload fails with a non-transient error.

    Attributes:
        key: Object key whose upload aborted the operation
    """

    def __init__(self, key: str, message: str) -> None:
        """Create an upload error for an object key."""
        self.key = key
        super().__init__("upload", f"Failed to upload '{key}': {message}")


class StateCorruptError(DeploymentError):
    """Exception raised when a state record on disk is structurally invalid."""

    def __init__(self, path: str, message: str) -> None:
        """Create a corrupt state error."""
        self.path = path
        super().__init__(
            "state",
            f"Corrupt deployment state at {path}: {message}\n"
            "Fix or delete the file, or rebuild it with 'sitedeck recover --force'.",
        )


class StateConflictError(DeploymentError):
    """Exception raised when an update would replace a recorded identifier."""

    def __init__(self, message: str) -> None:
        """Create a state conflict error."""
        super().__init__("state", message)


class CertificateError(DeploymentError):
    """Exception raised when a TLS certificate cannot be made ready.

    Attributes:
        domain: Domain the certificate was provisioned for
        name_servers: Name servers of the hosted zone, for registrar delegation
    """

    def __init__(
        self, domain: str, message: str, name_servers: list[str] | None = None
    ) -> None:
        """Create a certificate error with optional delegation hints."""
        self.domain = domain
        self.name_servers = list(name_servers or [])
        super().__init__("certificate", message)


class DnsError(DeploymentError):
    """Exception raised for hosted zone and DNS record failures."""

    def __init__(self, message: str) -> None:
        """Create a DNS error."""
        super().__init__("dns", message)


class ErrorKind(str, Enum):
    """Closed set of provider error categories callers branch on."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    FATAL = "fatal"


class ProviderError(SiteDeckError):
    """Exception raised by a remote AWS call, classified by kind.

    Attributes:
        operation: The API operation that failed (e.g. ``HeadBucket``)
        kind: Classified error category
        code: Provider error code, when one was returned
        message: Provider error message
    """

    def __init__(
        self, operation: str, kind: ErrorKind, code: str | None, message: str
    ) -> None:
        """Initialize ProviderError.

        Args:
            operation: API operation name
            kind: Classified error category
            code: Provider error code (e.g. ``NoSuchBucket``)
            message: Provider error message
        """
        self.operation = operation
        self.kind = kind
        self.code = code
        self.message = message
        label = f"{code}: " if code else ""
        super().__init__(f"{operation} failed ({kind.value}) {label}{message}")
