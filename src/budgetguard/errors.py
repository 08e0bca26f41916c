"""Exception hierarchy for budgetguard.

All exceptions inherit from BudgetGuardError, the base exception class.
Each exception carries the CLI exit code used when it escapes a command.

Exception Hierarchy:
    BudgetGuardError (base)
    ├── ConfigurationError          # Invalid or incomplete configuration
    ├── BackendUnavailableError     # Metrics/controller/repository unreachable
    ├── AuthenticationError         # Backend rejected credentials
    ├── ApplicationNotFoundError    # Controller does not know the application
    ├── MetricsQueryError           # Metrics backend rejected the query
    ├── NoDataError                 # Query returned no samples
    ├── InvalidEdgeError            # Promotion between non-adjacent environments
    ├── NoRevertTargetError         # Config repository history is empty
    ├── PushRejectedError           # Config repository push conflict
    ├── RollbackTimeoutError        # Controller did not become healthy in time
    ├── SyncTimeoutError            # Controller sync did not finish in time
    └── RemediationInProgressError  # Another actor holds the remediation lock

Exit Codes:
    0  - Nominal
    1  - Warning (no action) / general error
    2  - Critical or emergency tier (action taken or blocked) / configuration error
    3  - No data
    4  - Invalid promotion edge
    5  - Backend unavailable
    6  - Authentication failed
    7  - Application not found
    8  - Malformed metrics query
    9  - No revert target
    10 - Push rejected
    11 - Controller wait timed out
    12 - Remediation already in progress

Example:
    >>> from budgetguard.errors import InvalidEdgeError
    >>> raise InvalidEdgeError("dev", "production")
    Traceback (most recent call last):
        ...
    InvalidEdgeError: Invalid promotion edge dev -> production: ...
"""

from __future__ import annotations


class BudgetGuardError(Exception):
    """Base exception for all budgetguard errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = 1


class ConfigurationError(BudgetGuardError):
    """Raised when the configuration file or overrides are invalid.

    Attributes:
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2


class BackendUnavailableError(BudgetGuardError):
    """Raised when an external backend cannot be reached.

    Fatal to the current invocation. The next scheduled invocation is the
    retry; nothing busy-retries in process.

    Attributes:
        backend: Backend name (metrics, controller, config_repository).
        reason: Description of the failure.
        exit_code: CLI exit code (5).

    Example:
        >>> raise BackendUnavailableError("metrics", "connection refused")
        Traceback (most recent call last):
            ...
        BackendUnavailableError: metrics backend unavailable: connection refused
    """

    exit_code: int = 5

    def __init__(self, backend: str, reason: str) -> None:
        """Initialize BackendUnavailableError.

        Args:
            backend: Backend name (metrics, controller, config_repository).
            reason: Description of the failure.
        """
        self.backend = backend
        self.reason = reason
        super().__init__(f"{backend} backend unavailable: {reason}")


class AuthenticationError(BudgetGuardError):
    """Raised when a backend rejects the configured credentials.

    Attributes:
        backend: Backend that rejected the credentials.
        reason: Description of why authentication failed.
        exit_code: CLI exit code (6).
    """

    exit_code: int = 6

    def __init__(self, backend: str, reason: str) -> None:
        """Initialize AuthenticationError.

        Args:
            backend: Backend that rejected the credentials.
            reason: Description of why authentication failed.
        """
        self.backend = backend
        self.reason = reason
        super().__init__(f"Authentication failed for {backend}: {reason}")


class ApplicationNotFoundError(BudgetGuardError):
    """Raised when the deployment controller does not know the application.

    Attributes:
        app_name: Application that was requested.
        exit_code: CLI exit code (7).
    """

    exit_code: int = 7

    def __init__(self, app_name: str) -> None:
        """Initialize ApplicationNotFoundError.

        Args:
            app_name: Application that was requested.
        """
        self.app_name = app_name
        super().__init__(f"Application not found: {app_name}")


class MetricsQueryError(BudgetGuardError):
    """Raised when the metrics backend rejects a query as malformed.

    Attributes:
        query: The rejected expression.
        reason: Error reported by the backend.
        exit_code: CLI exit code (8).
    """

    exit_code: int = 8

    def __init__(self, query: str, reason: str) -> None:
        """Initialize MetricsQueryError.

        Args:
            query: The rejected expression.
            reason: Error reported by the backend.
        """
        self.query = query
        self.reason = reason
        super().__init__(f"Metrics query rejected: {reason}")


class NoDataError(BudgetGuardError):
    """Raised when a metrics query returns no samples.

    Callers that tolerate missing data treat this as zero traffic.

    Attributes:
        query: The expression that returned nothing.
        exit_code: CLI exit code (3).
    """

    exit_code: int = 3

    def __init__(self, query: str) -> None:
        """Initialize NoDataError.

        Args:
            query: The expression that returned nothing.
        """
        self.query = query
        super().__init__(f"No samples returned for query: {query}")


class InvalidEdgeError(BudgetGuardError):
    """Raised when a promotion is requested between non-adjacent environments.

    Attributes:
        from_env: Requested source environment.
        to_env: Requested target environment.
        reason: Why the edge is invalid.
        exit_code: CLI exit code (4).
    """

    exit_code: int = 4

    def __init__(self, from_env: str, to_env: str, reason: str | None = None) -> None:
        """Initialize InvalidEdgeError.

        Args:
            from_env: Requested source environment.
            to_env: Requested target environment.
            reason: Why the edge is invalid.
        """
        self.from_env = from_env
        self.to_env = to_env
        self.reason = reason or "only adjacent environments can be promoted"
        super().__init__(f"Invalid promotion edge {from_env} -> {to_env}: {self.reason}")


class NoRevertTargetError(BudgetGuardError):
    """Raised when no commit can be found to revert the environment path to.

    Attributes:
        path: Environment path inside the config repository.
        exit_code: CLI exit code (9).
    """

    exit_code: int = 9

    def __init__(self, path: str, reason: str | None = None) -> None:
        """Initialize NoRevertTargetError.

        Args:
            path: Environment path inside the config repository.
            reason: Optional extra detail.
        """
        self.path = path
        msg = f"No revert target found for {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PushRejectedError(BudgetGuardError):
    """Raised when the config repository rejects a push.

    Not retried automatically; the backend path is reported as Failed.

    Attributes:
        branch: Branch that was pushed.
        reason: Output of the rejected push.
        exit_code: CLI exit code (10).
    """

    exit_code: int = 10

    def __init__(self, branch: str, reason: str) -> None:
        """Initialize PushRejectedError.

        Args:
            branch: Branch that was pushed.
            reason: Output of the rejected push.
        """
        self.branch = branch
        self.reason = reason
        super().__init__(f"Push to {branch} rejected: {reason}")


class RollbackTimeoutError(BudgetGuardError):
    """Raised when the controller does not report healthy after a rollback.

    Attributes:
        app_name: Application that was rolled back.
        timeout_seconds: How long we waited.
        exit_code: CLI exit code (11).
    """

    exit_code: int = 11

    def __init__(self, app_name: str, timeout_seconds: float) -> None:
        """Initialize RollbackTimeoutError.

        Args:
            app_name: Application that was rolled back.
            timeout_seconds: How long we waited.
        """
        self.app_name = app_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Application {app_name} not synced and healthy after {timeout_seconds:.0f}s"
        )


class SyncTimeoutError(RollbackTimeoutError):
    """Raised when a controller sync does not finish within the deadline."""

    def __init__(self, app_name: str, timeout_seconds: float) -> None:
        """Initialize SyncTimeoutError.

        Args:
            app_name: Application being synced.
            timeout_seconds: How long we waited.
        """
        super().__init__(app_name, timeout_seconds)
        self.args = (f"Sync of {app_name} did not complete within {timeout_seconds:.0f}s",)


class RemediationInProgressError(BudgetGuardError):
    """Raised when another actor holds the remediation lock for an environment.

    Callers skip and log; they never retry.

    Attributes:
        environment: Target environment.
        lock_path: Path of the held lock file.
        exit_code: CLI exit code (12).
    """

    exit_code: int = 12

    def __init__(self, environment: str, lock_path: str) -> None:
        """Initialize RemediationInProgressError.

        Args:
            environment: Target environment.
            lock_path: Path of the held lock file.
        """
        self.environment = environment
        self.lock_path = lock_path
        super().__init__(
            f"Remediation already in progress for {environment} (lock: {lock_path})"
        )


__all__: list[str] = [
    "ApplicationNotFoundError",
    "AuthenticationError",
    "BackendUnavailableError",
    "BudgetGuardError",
    "ConfigurationError",
    "InvalidEdgeError",
    "MetricsQueryError",
    "NoDataError",
    "NoRevertTargetError",
    "PushRejectedError",
    "RemediationInProgressError",
    "RollbackTimeoutError",
    "SyncTimeoutError",
]
