"""Common test fixtures for identity store tests."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from matrix_identity_store.config import (
    Settings,
    SQLiteStorageConfig,
    StorageConfig,
    StorageProvider,
)
from matrix_identity_store.models import Account, ThreePidInvite, ThreePidSession
from matrix_identity_store.storage import SqlStorage


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test files."""
    return tmp_path


@pytest.fixture
def sqlite_config(temp_dir: Path) -> StorageConfig:
    """Storage configuration pointing at a fresh SQLite file."""
    return StorageConfig(
        backend="sqlite",
        provider=StorageProvider(
            sqlite=SQLiteStorageConfig(database=str(temp_dir / "identity.db"))
        ),
    )


@pytest.fixture
def memory_config() -> StorageConfig:
    return StorageConfig(
        backend="sqlite",
        provider=StorageProvider(sqlite=SQLiteStorageConfig(database=":memory:")),
    )


@pytest.fixture
def storage(memory_config: StorageConfig):
    """An in-memory store with every migration applied."""
    store = SqlStorage("sqlite", memory_config)
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def test_settings(temp_dir: Path, monkeypatch) -> Settings:
    """Create test settings from environment variables."""
    for name, value in {
        "STORAGE_BACKEND": "sqlite",
        "SQLITE_DATABASE": str(temp_dir / "settings.db"),
        "LOGGING__LEVEL": "DEBUG",
    }.items():
        monkeypatch.setenv(name, value)

    settings = Settings()
    settings.logging.file_path = str(temp_dir / "test.log")
    return settings


@pytest.fixture
def invite() -> ThreePidInvite:
    return ThreePidInvite(
        id="inv1",
        sender="@alice:example.org",
        medium="email",
        address="bob@example.org",
        room_id="!room:example.org",
        token="tok-inv1",
        properties={"room_name": "Example", "sender_display_name": "Alice"},
    )


@pytest.fixture
def session() -> ThreePidSession:
    return ThreePidSession(
        id="sid1",
        server="example.org",
        medium="email",
        address="bob@example.org",
        secret="s3cret",
        attempt=1,
        token="123456",
        creation_time=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        next_link="https://example.org/next",
    )


@pytest.fixture
def account() -> Account:
    return Account(
        token="access-token",
        user_id="@alice:example.org",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        expires_in=3600,
    )
