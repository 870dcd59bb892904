from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    ConcurrencyConflict,
    MaintenanceInProgress,
    StorageUnavailable,
    CatalogUnavailable,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "ConcurrencyConflict",
    "MaintenanceInProgress",
    "StorageUnavailable",
    "CatalogUnavailable",
]
