"""Exceptions raised by the identity store.

Driver exceptions never leave the store: they are wrapped into one of the
types below with the original exception chained as ``__cause__``.
"""

from typing import Optional


class IdentityStoreError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(IdentityStoreError):
    """The storage backend is unselected, unknown, or has no destination."""


class MigrationError(IdentityStoreError):
    """Creating the base tables or applying a named migration failed."""

    def __init__(self, message: str, migration: Optional[str] = None) -> None:
        super().__init__(message)
        self.migration = migration


class StorageError(IdentityStoreError):
    """A statement failed or affected an unexpected number of rows."""


class DuplicateKeyError(StorageError):
    """An insert collided with a primary key or unique constraint.

    For application-service transactions this is how a replayed delivery
    is detected, so callers are expected to catch it.
    """


class IntegrityViolationError(StorageError):
    """A lookup on a logically unique key returned more than one row."""


class InvalidCredentialsError(IdentityStoreError):
    """The access token does not resolve to an account."""
