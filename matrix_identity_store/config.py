import os
from typing import Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class SQLiteStorageConfig(BaseModel):
    database: str = ""  # File path, or ":memory:"


class PostgresqlStorageConfig(BaseModel):
    """Connection and pool settings for the PostgreSQL backend."""

    host: str = "localhost"
    port: int = 5432
    database: str = ""
    username: str = ""
    password: str = ""
    pool: bool = False
    max_connections_free: int = 1  # Idle connections kept in the pool
    max_connection_age_millis: int = 60 * 60 * 1000
    check_connections_every_millis: int = 30 * 1000
    test_before_get_from_pool: bool = False


class StorageProvider(BaseModel):
    sqlite: SQLiteStorageConfig = SQLiteStorageConfig()
    postgresql: PostgresqlStorageConfig = PostgresqlStorageConfig()


class StorageConfig(BaseModel):
    # Validated by the connection factory, see database.create_engine
    backend: Optional[str] = None
    provider: StorageProvider = StorageProvider()


class TermObject(BaseModel):
    name: str
    url: str


class PolicyObject(BaseModel):
    version: str
    terms: dict[str, TermObject] = {}  # Keyed by language


class PolicyConfig(BaseModel):
    policies: dict[str, PolicyObject] = {}


class LogConfig(BaseModel):
    file_path: str = "logs/identity_store.log"
    max_size_mb: int = 10
    backup_count: int = 5
    level: str = "INFO"


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).strip().lower() == "true"


class Settings(BaseSettings):
    storage: StorageConfig
    policy: PolicyConfig = PolicyConfig()
    logging: LogConfig = LogConfig()

    class Config:
        env_nested_delimiter = "__"
        env_file = ".env"

    def __init__(self, **kwargs):
        if "storage" not in kwargs:
            kwargs["storage"] = self._storage_from_env()
        super().__init__(**kwargs)

    @staticmethod
    def _storage_from_env() -> StorageConfig:
        sqlite_config = SQLiteStorageConfig(
            database=os.environ.get("SQLITE_DATABASE", ""),
        )

        postgresql_config = PostgresqlStorageConfig(
            host=os.environ.get("POSTGRES_HOST", "localhost"),
            port=int(os.environ.get("POSTGRES_PORT", "5432")),
            database=os.environ.get("POSTGRES_DB", ""),
            username=os.environ.get("POSTGRES_USER", ""),
            password=os.environ.get("POSTGRES_PASSWORD", ""),
            pool=_env_bool("POSTGRES_POOL"),
            max_connections_free=int(
                os.environ.get("POSTGRES_MAX_CONNECTIONS_FREE", "1")
            ),
            max_connection_age_millis=int(
                os.environ.get("POSTGRES_MAX_CONNECTION_AGE_MILLIS", "3600000")
            ),
            check_connections_every_millis=int(
                os.environ.get("POSTGRES_CHECK_CONNECTIONS_EVERY_MILLIS", "30000")
            ),
            test_before_get_from_pool=_env_bool("POSTGRES_TEST_BEFORE_GET_FROM_POOL"),
        )

        backend = os.environ.get("STORAGE_BACKEND", "").strip() or None
        return StorageConfig(
            backend=backend,
            provider=StorageProvider(sqlite=sqlite_config, postgresql=postgresql_config),
        )
