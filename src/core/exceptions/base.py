from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    """Validation error. Raised before anything is persisted."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class ConcurrencyConflict(AppException):
    """Sequence allocation kept colliding and the retry budget is exhausted."""

    def __init__(self, document_type: str, year: int, attempts: int, message: str | None = None):
        msg = message or (
            f"Could not allocate a {document_type} number for {year} "
            f"after {attempts} attempts"
        )
        super().__init__(
            message=msg,
            status_code=409,
            details={"document_type": document_type, "year": year, "attempts": attempts},
        )


class MaintenanceInProgress(ConcurrencyConflict):
    """Numbering maintenance (reset/repair) holds the flag for this document type."""

    def __init__(self, document_type: str, holder: str | None = None, year: int = 0, attempts: int = 0):
        message = f"Numbering maintenance in progress for {document_type}"
        if holder:
            message = f"{message} (held by {holder})"
        super().__init__(document_type, year, attempts, message=message)
        self.details["holder"] = holder


class StorageUnavailable(AppException):
    """Backing store unreachable or failing. Never retried here."""

    def __init__(self, operation: str, reason: str | None = None):
        message = f"Document numbering storage unavailable during {operation}"
        super().__init__(
            message=message,
            status_code=503,
            details={"operation": operation, "reason": reason},
        )


class CatalogUnavailable(AppException):
    """External product/tax lookup failed or timed out."""

    def __init__(self, message: str = "Product catalog unavailable", resource: str | None = None):
        super().__init__(message=message, status_code=503, details={"resource": resource})
