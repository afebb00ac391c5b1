"""Custom exceptions for Agent Reactor."""

from typing import Iterable


class ReactorError(Exception):
    """Base exception for Agent Reactor errors."""

    pass


class ConfigurationError(ReactorError):
    """Base exception for configuration errors, which are never retried."""

    pass


class InvalidVariantError(ConfigurationError):
    """Exception raised when a variant name is unknown or empty."""

    def __init__(self, variant: str, available: Iterable[str] = ()) -> None:
        """
        Initialize InvalidVariantError.

        Args:
            variant: Variant name that was rejected
            available: Variant names that would have been accepted
        """
        self.variant = variant
        self.available = sorted(available)
        if not variant:
            message = "variant cannot be empty"
        else:
            message = f"invalid variant '{variant}'"
        if self.available:
            message += f". Available variants: {', '.join(self.available)}"
        super().__init__(message)


class InvalidAccountError(ConfigurationError):
    """Exception raised when an account name cannot be used in names and paths."""

    def __init__(self, account: str) -> None:
        """
        Initialize InvalidAccountError.

        Args:
            account: Account name that was rejected
        """
        self.account = account
        super().__init__(
            f"invalid account '{account}': must start with a letter or digit and "
            "contain only letters, digits, '_', '.' or '-'"
        )


class UnsupportedArchitectureError(ConfigurationError):
    """Exception raised when the host architecture cannot be mapped."""

    def __init__(self, machine: str) -> None:
        """
        Initialize UnsupportedArchitectureError.

        Args:
            machine: Raw machine string reported by the host
        """
        self.machine = machine
        super().__init__(f"unsupported architecture: {machine}")


class MountValidationError(ConfigurationError):
    """Exception raised when one or more mount sources are unusable."""

    def __init__(self, problems: list[str]) -> None:
        """
        Initialize MountValidationError.

        Args:
            problems: One description per rejected mount source
        """
        self.problems = problems
        super().__init__("mount validation failed: " + "; ".join(problems))


class ContainerError(ReactorError):
    """Base exception for container-related errors."""

    pass


class ContainerNotFoundError(ContainerError):
    """Exception raised when a container is not found."""

    def __init__(self, identifier: str) -> None:
        """
        Initialize ContainerNotFoundError.

        Args:
            identifier: Container ID or name that was not found
        """
        self.identifier = identifier
        super().__init__(f"Container not found: {identifier}")


class ContainerNameConflictError(ContainerError):
    """Exception raised when the engine already has a container with the name."""

    def __init__(self, name: str, original_error: Exception | None = None) -> None:
        """
        Initialize ContainerNameConflictError.

        Args:
            name: Container name already in use
            original_error: Original exception from Docker
        """
        self.name = name
        self.original_error = original_error
        super().__init__(f"Container name '{name}' is already in use")


class EngineError(ReactorError):
    """Exception raised when container engine calls fail."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize EngineError.

        Args:
            message: Error message
            original_error: Original exception from Docker
        """
        self.original_error = original_error
        super().__init__(message)


class ImageNotFoundError(EngineError):
    """Exception raised when a Docker image is not found."""

    def __init__(self, image: str, original_error: Exception | None = None) -> None:
        """
        Initialize ImageNotFoundError.

        Args:
            image: Image reference that was not found
            original_error: Original exception from Docker
        """
        self.image = image
        super().__init__(f"Docker image not found: {image}", original_error)


class DockerDaemonUnreachableError(EngineError):
    """Exception raised when Docker daemon is unreachable."""

    def __init__(self, message: str = "Docker daemon is unreachable") -> None:
        """
        Initialize DockerDaemonUnreachableError.

        Args:
            message: Error message
        """
        super().__init__(message)


class RecoveryError(ReactorError):
    """Base exception for failures reported by the recovery engine."""

    def __init__(
        self,
        message: str,
        operation: str,
        identity: str,
        last_error: Exception | None = None,
    ) -> None:
        """
        Initialize RecoveryError.

        Args:
            message: Error message
            operation: Operation that was attempted (start, build, stop)
            identity: Container name, ID or image the operation targeted
            last_error: Final underlying cause
        """
        self.operation = operation
        self.identity = identity
        self.last_error = last_error
        super().__init__(message)


class NonRetryableError(RecoveryError):
    """Exception raised when an operation fails with a non-retryable error."""

    def __init__(self, operation: str, identity: str, last_error: Exception) -> None:
        super().__init__(
            f"{operation} of {identity} failed (non-retryable): {last_error}",
            operation,
            identity,
            last_error,
        )


class RetryExhaustedError(RecoveryError):
    """Exception raised when every allowed attempt failed."""

    def __init__(
        self, operation: str, identity: str, attempts: int, last_error: Exception | None
    ) -> None:
        self.attempts = attempts
        super().__init__(
            f"failed to {operation} {identity} after {attempts} attempts: {last_error}",
            operation,
            identity,
            last_error,
        )


class HealthCheckFailedError(RecoveryError):
    """Exception raised when a started container never proves itself running."""

    def __init__(self, identity: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"container {identity} started but failed health check after {attempts} attempts",
            "start",
            identity,
        )


class SessionStoreError(ReactorError):
    """Exception raised when a session record cannot be read or written."""

    def __init__(self, path: str, reason: str) -> None:
        """
        Initialize SessionStoreError.

        Args:
            path: Record file involved
            reason: What went wrong
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Session record error for '{path}': {reason}")
