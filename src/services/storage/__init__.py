"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Goals, groups and memberships live in PostgreSQL (or in memory for tests);
the audit trail can be mirrored to Google Sheets.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
)
from src.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryEntityStore,
)
from src.services.storage.postgres import (
    PostgresClient,
    PostgresEntityStore,
)
from src.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "EntityStoreInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "StoreUnavailableError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryEntityStore",
    # PostgreSQL implementation
    "PostgresClient",
    "PostgresEntityStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
]
