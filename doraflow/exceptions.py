"""Exception hierarchy shared by ingestion, detection and metrics code."""


class DoraflowError(Exception):
    """Base class for all doraflow errors."""
    pass


class ConfigurationError(DoraflowError):
    """Raised when required configuration is missing or invalid. Fatal for a run."""
    pass


class DiscoveryError(DoraflowError):
    """Raised when the organization's project list cannot be retrieved. Fatal for a run."""
    pass


class TransformError(DoraflowError):
    """Raised when an upstream record is too malformed to transform."""
    pass


class OperationTimeoutError(DoraflowError, TimeoutError):
    """Raised when a wrapped operation exceeds its wall-clock budget."""

    timed_out = True

    def __init__(self, operation_name: str, timeout_seconds: float):
        self.operation_name = operation_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation_name} timed out after {timeout_seconds:g}s")


class DuplicateDeploymentError(DoraflowError):
    """Raised when a deployment with the same identifier already exists."""
    pass
