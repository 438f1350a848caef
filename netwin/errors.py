"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    code = "app_error"

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def to_dict(self):
        """Render the error as a JSON-friendly payload."""
        return {"message": self.message, "code": self.code}


class ValidationError(AppError):
    """Raised when input fails validation."""

    code = "validation_error"

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    code = "not_found"

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class PreconditionFailedError(AppError):
    """Raised when an operation is not allowed in the resource's current state.

    Nothing has been written when this is raised, so the caller can treat it
    as benign.
    """

    code = "precondition_failed"

    def __init__(self, message="Operation not allowed in the current state."):
        """Initialize the error."""
        super().__init__(message, 400)


class NotPendingError(PreconditionFailedError):
    """Raised when a funding request has already been approved or rejected."""

    code = "not_pending"

    def __init__(self, message="Request is not pending."):
        """Initialize the error."""
        super().__init__(message)


class InsufficientFundsError(AppError):
    """Raised when a debit would leave a wallet balance negative."""

    code = "insufficient_funds"

    def __init__(self, message="Insufficient balance."):
        """Initialize the error."""
        super().__init__(message, 400)


class StoreFailureError(AppError):
    """Raised when the document store fails to read or commit."""

    code = "store_failure"

    def __init__(self, message="A database error occurred. Please try again later."):
        """Initialize the error."""
        super().__init__(message, 500)
