"""Integration tests against a real PostgreSQL server."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import inspect, text

from matrix_identity_store.config import PostgresqlStorageConfig, StorageConfig, StorageProvider
from matrix_identity_store.errors import DuplicateKeyError
from matrix_identity_store.migrations import MIGRATIONS
from matrix_identity_store.storage import SqlStorage

pytestmark = pytest.mark.integration


def storage_config(database: dict, **kwargs) -> StorageConfig:
    return StorageConfig(
        backend="postgresql",
        provider=StorageProvider(postgresql=PostgresqlStorageConfig(**database, **kwargs)),
    )


def test_migrations_widen_invite_columns(clean_database):
    with SqlStorage("postgresql", storage_config(clean_database)) as store:
        assert store.migration_result.applied == [m.name for m in MIGRATIONS]

        inspector = inspect(store.engine)
        for table in ("invite_3pid", "invite_3pid_history"):
            columns = {c["name"]: c for c in inspector.get_columns(table)}
            assert str(columns["roomId"]["type"]).upper() == "TEXT"
            assert str(columns["properties"]["type"]).upper() == "TEXT"


def test_upgrade_from_varchar_schema(clean_database, invite):
    config = storage_config(clean_database)

    # Simulate a deployment that predates the widening migrations
    with SqlStorage("postgresql", config, MIGRATIONS[:2]) as store:
        columns = {c["name"]: c for c in inspect(store.engine).get_columns("invite_3pid")}
        assert "VARCHAR" in str(columns["roomId"]["type"]).upper()
        store.insert_invite(invite)

    with SqlStorage("postgresql", config) as store:
        assert store.migration_result.applied == [m.name for m in MIGRATIONS[2:]]
        assert store.get_invite(invite.id) == invite

        invite.id = "inv2"
        invite.properties = {"room_avatar_url": "mxc://example.org/" + "a" * 400}
        store.insert_invite(invite)
        assert store.get_invite("inv2").properties == invite.properties


def test_restart_is_idempotent(clean_database):
    config = storage_config(clean_database)
    SqlStorage("postgresql", config).close()

    with SqlStorage("postgresql", config) as store:
        assert store.migration_result.applied == []
        with store.engine.connect() as conn:
            names = conn.execute(text("select id from changelog")).scalars().all()
    assert sorted(names) == sorted(m.name for m in MIGRATIONS)


def test_pooled_store(clean_database, account):
    config = storage_config(
        clean_database,
        pool=True,
        max_connections_free=2,
        check_connections_every_millis=10,
        test_before_get_from_pool=True,
    )
    with SqlStorage("postgresql", config) as store:
        store.insert_token(account)
        store.accept_term(account.token, "https://example.org/terms")
        store.accept_term(account.token, "https://example.org/TERMS")
        assert len(store.get_accepted_policies(account.user_id)) == 1


def test_transaction_replay(clean_database):
    with SqlStorage("postgresql", storage_config(clean_database)) as store:
        now = datetime.now(timezone.utc)
        store.insert_transaction_result("mxisd", "1", now, "{}")
        store.insert_transaction_result("mxisd", "2", now, "{}")
        with pytest.raises(DuplicateKeyError):
            store.insert_transaction_result("mxisd", "1", now, "{}")


def test_hash_lookup(clean_database):
    with SqlStorage("postgresql", storage_config(clean_database)) as store:
        store.add_hash("@alice:example.org", "email", "alice@example.org", "h1")
        store.add_hash("@carol:example.org", "email", "carol@example.org", "h3")

        assert sorted(h for h, _ in store.find_hashes({"h1", "h2", "h3"})) == ["h1", "h3"]
        store.clear_hashes()
        assert store.find_hashes({"h1", "h3"}) == []
