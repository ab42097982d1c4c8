"""Engine construction for the supported storage backends.

Each backend has a ``BackendProfile`` describing how to reach it; engines
are built from the profile rather than by inspecting the driver at runtime.
"""
import enum
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Union

import sqlalchemy
from sqlalchemy import event
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DisconnectionError, IntegrityError, SQLAlchemyError
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from .config import PostgresqlStorageConfig, SQLiteStorageConfig, StorageConfig
from .errors import ConfigurationError, DuplicateKeyError, StorageError
from .logger import get_logger

logger = get_logger(__name__)

MEMORY_DATABASE = ":memory:"


class Backend(str, enum.Enum):
    sqlite = "sqlite"
    postgresql = "postgresql"


@dataclass(frozen=True)
class BackendProfile:
    url: Callable[[Any], URL]
    engine_options: Callable[[Any], Dict[str, Any]]
    settings: Callable[[StorageConfig], Any]
    # Whether bounded VARCHAR columns must be converted to TEXT explicitly
    widens_varchar: bool


def _require_destination(database: str) -> None:
    if not database or not database.strip():
        raise ConfigurationError("Storage destination cannot be empty")


def _sqlite_url(config: SQLiteStorageConfig) -> URL:
    return URL.create("sqlite", database=config.database)


def _sqlite_options(config: SQLiteStorageConfig) -> Dict[str, Any]:
    if config.database == MEMORY_DATABASE:
        # One shared connection, otherwise each thread sees its own empty database
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {}


def _postgresql_url(config: PostgresqlStorageConfig) -> URL:
    return URL.create(
        "postgresql+psycopg2",
        username=config.username or None,
        password=config.password or None,
        host=config.host or None,
        port=config.port,
        database=config.database,
    )


def _postgresql_options(config: PostgresqlStorageConfig) -> Dict[str, Any]:
    if not config.pool:
        return {"poolclass": NullPool}

    return {
        "poolclass": QueuePool,
        "pool_size": max(1, config.max_connections_free),
        "max_overflow": 10,
        "pool_recycle": max(1, config.max_connection_age_millis // 1000),
        "pool_pre_ping": config.test_before_get_from_pool,
    }


PROFILES: Dict[Backend, BackendProfile] = {
    Backend.sqlite: BackendProfile(
        url=_sqlite_url,
        engine_options=_sqlite_options,
        settings=lambda storage: storage.provider.sqlite,
        widens_varchar=False,
    ),
    Backend.postgresql: BackendProfile(
        url=_postgresql_url,
        engine_options=_postgresql_options,
        settings=lambda storage: storage.provider.postgresql,
        widens_varchar=True,
    ),
}


def resolve_backend(backend: Union[Backend, str, None]) -> Backend:
    """Turn a configured backend selector into a ``Backend``"""
    if isinstance(backend, Backend):
        return backend
    if backend is None or not str(backend).strip():
        raise ConfigurationError("storage.backend")
    try:
        return Backend(str(backend).strip().lower())
    except ValueError:
        raise ConfigurationError("storage.backend") from None


def install_health_check(engine: Engine, interval_millis: int) -> None:
    """Ping pooled connections that have not been checked for ``interval_millis``.

    A failed ping raises ``DisconnectionError`` so the pool discards the
    connection and hands out a fresh one.
    """
    interval = interval_millis / 1000

    @event.listens_for(engine, "connect")
    def _mark_fresh(dbapi_connection, connection_record):
        connection_record.info["checked_at"] = time.monotonic()

    @event.listens_for(engine, "checkout")
    def _check_stale(dbapi_connection, connection_record, connection_proxy):
        now = time.monotonic()
        if now - connection_record.info.get("checked_at", 0) < interval:
            return
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("SELECT 1")
        except Exception as e:
            raise DisconnectionError(f"Pooled connection failed health check: {e}") from e
        finally:
            cursor.close()
        connection_record.info["checked_at"] = now


@contextmanager
def wrap_errors(action: str) -> Iterator[None]:
    """Re-raise driver errors from the enclosed block as ``StorageError``"""
    try:
        yield
    except IntegrityError as e:
        raise DuplicateKeyError(f"Failed to {action}: {e.orig}") from e
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to {action}: {e}") from e


def create_engine(
    backend: Union[Backend, str, None], storage_config: Optional[StorageConfig]
) -> Engine:
    """Build the engine (single connection source or pool) for ``backend``"""
    backend = resolve_backend(backend)
    profile = PROFILES[backend]
    settings = profile.settings(storage_config or StorageConfig())
    _require_destination(settings.database)

    options = profile.engine_options(settings)
    if options.get("poolclass") is QueuePool:
        logger.info("Enable pooling")

    engine = sqlalchemy.create_engine(profile.url(settings), **options)

    if backend is Backend.postgresql and settings.pool:
        install_health_check(engine, settings.check_connections_every_millis)

    logger.info(f"Storage backend {backend.value} ready")
    return engine
