"""Services package."""

from src.services.auth import AuthInterface
from src.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryEntityStore,
    NotFoundError,
    PostgresClient,
    PostgresEntityStore,
    StorageError,
    StoreUnavailableError,
)

__all__ = [
    # Auth
    "AuthInterface",
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "EntityStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "InMemoryAuditStorage",
    "InMemoryEntityStore",
    "NotFoundError",
    "PostgresClient",
    "PostgresEntityStore",
    "StorageError",
    "StoreUnavailableError",
]
