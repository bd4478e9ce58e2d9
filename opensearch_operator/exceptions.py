"""Custom exceptions for the OpenSearch operator."""


class OperatorError(Exception):
    """Base exception for all operator errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class InvalidSpec(OperatorError):
    """Raised when the desired state is malformed or contradictory.

    Not retried; surfaced through the cluster status.
    """

    pass


class TransientInfraError(OperatorError):
    """Raised when the child-resource store is temporarily unavailable."""

    pass


class DrainTimeout(OperatorError):
    """Raised when data could not be relocated off members before a restart."""

    pass


class OwnershipConflict(OperatorError):
    """Raised when a child resource exists but belongs to something else."""

    def __init__(self, kind: str, name: str, owner_uid: str | None, details: str = None):
        self.kind = kind
        self.name = name
        self.owner_uid = owner_uid
        owner = owner_uid or "nobody"
        super().__init__(f"{kind} '{name}' is owned by {owner}", details)


class KubernetesError(OperatorError):
    """Exception raised for non-retryable Kubernetes API errors."""

    pass


class ConfigurationError(OperatorError):
    """Exception raised for operator configuration errors."""

    pass
