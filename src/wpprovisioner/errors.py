"""Domain errors for wpprovisioner."""


class ProvisionerError(RuntimeError):
    """Raised when the site provisioning cannot continue safely."""


class DatabaseTimeoutError(ProvisionerError, TimeoutError):
    """Raised when the database server never answers the readiness probe."""


class ProvisioningError(ProvisionerError):
    """Raised when a database cannot be created, verified or granted."""


class MigrationError(ProvisionerError):
    """Raised when a dump is missing or cannot be imported."""


class ReconciliationError(ProvisionerError):
    """Raised when the administrator account cannot be reconciled."""


class ToolInvocationError(ProvisionerError):
    """Raised when an external command fails and no fallback exists."""


class DatabaseQueryError(ToolInvocationError):
    """Raised by the SQL client when a statement is rejected by the server."""

    def __init__(self, message: str, statement: str = "", stderr: str = ""):
        super().__init__(message)
        self.statement = statement
        self.stderr = stderr
