"""Matrix identity store - persistence and schema migrations for a Matrix identity service."""

from importlib import metadata

__version__ = "0.1.0"
__license__ = "MIT"

try:
    __version__ = metadata.version("matrix-identity-store")
except metadata.PackageNotFoundError:
    # Package is not installed
    pass

from .config import (
    LogConfig,
    PolicyConfig,
    PolicyObject,
    PostgresqlStorageConfig,
    Settings,
    SQLiteStorageConfig,
    StorageConfig,
    StorageProvider,
    TermObject,
)
from .database import Backend, create_engine
from .errors import (
    ConfigurationError,
    DuplicateKeyError,
    IdentityStoreError,
    IntegrityViolationError,
    InvalidCredentialsError,
    MigrationError,
    StorageError,
)
from .hashes import HashLookupIndex
from .logger import get_logger, setup_logging
from .migrations import MIGRATIONS, Migration, MigrationResult, SchemaMigrator
from .models import (
    Account,
    AcceptedPolicy,
    ASTransaction,
    ChangelogEntry,
    HistoricalThreePidInvite,
    ThreePid,
    ThreePidInvite,
    ThreePidMapping,
    ThreePidSession,
)
from .storage import SqlStorage

__all__ = [
    "Settings",
    "StorageConfig",
    "StorageProvider",
    "SQLiteStorageConfig",
    "PostgresqlStorageConfig",
    "PolicyConfig",
    "PolicyObject",
    "TermObject",
    "LogConfig",
    "setup_logging",
    "get_logger",
    "Backend",
    "create_engine",
    "IdentityStoreError",
    "ConfigurationError",
    "MigrationError",
    "StorageError",
    "DuplicateKeyError",
    "IntegrityViolationError",
    "InvalidCredentialsError",
    "Migration",
    "MigrationResult",
    "MIGRATIONS",
    "SchemaMigrator",
    "HashLookupIndex",
    "SqlStorage",
    "Account",
    "AcceptedPolicy",
    "ASTransaction",
    "ChangelogEntry",
    "HistoricalThreePidInvite",
    "ThreePid",
    "ThreePidInvite",
    "ThreePidMapping",
    "ThreePidSession",
]
