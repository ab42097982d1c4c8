import sys
import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, select, update

from . import schema
from .config import PolicyObject, Settings, StorageConfig
from .database import Backend, create_engine, resolve_backend, wrap_errors
from .errors import (
    ConfigurationError,
    DuplicateKeyError,
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
    HistoricalThreePidInvite,
    ThreePid,
    ThreePidInvite,
    ThreePidMapping,
    ThreePidSession,
    to_millis,
    utcnow,
)

# Create logger for this module
logger = get_logger(__name__)


def expect_one_row(count: int) -> None:
    """Fail unless a write affected exactly one row"""
    if count != 1:
        raise StorageError(f"Unexpected row count after DB action: {count}")


def at_most_one(rows: Sequence[Any], description: str) -> Optional[Any]:
    """Return the only row, or None, and fail when the key matched several rows"""
    if len(rows) > 1:
        raise IntegrityViolationError(f"Lookup for {description} returned more than one result")
    return rows[0] if rows else None


class SqlStorage:
    """Persistent storage of the identity service on SQLite or PostgreSQL.

    Building the store opens the connection source and brings the schema up
    to date before returning; afterwards every method is a blocking call that
    is safe to use from several threads. Release the connection source with
    ``close()`` or by using the store as a context manager.
    """

    def __init__(
        self,
        backend: Union[Backend, str, None],
        storage_config: Optional[StorageConfig] = None,
        migrations: Sequence[Migration] = MIGRATIONS,
    ) -> None:
        self.backend: Backend = resolve_backend(backend)
        self.engine = create_engine(self.backend, storage_config)
        self.migrator = SchemaMigrator(self.engine, self.backend, migrations)
        try:
            self.migration_result: MigrationResult = self.migrator.run()
        except MigrationError:
            self.engine.dispose()
            raise
        self.hashes = HashLookupIndex(self.engine)
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlStorage":
        return cls(settings.storage.backend, settings.storage)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.engine.dispose()

    def __enter__(self) -> "SqlStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Invites

    def get_invites(self) -> List[ThreePidInvite]:
        with wrap_errors("list invites"), self.engine.connect() as conn:
            rows = conn.execute(select(schema.invites)).all()
        return [schema.INVITE.from_row(row) for row in rows]

    def get_invite(self, invite_id: str) -> Optional[ThreePidInvite]:
        query = select(schema.invites).where(schema.invites.c.id == invite_id)
        with wrap_errors("read invite"), self.engine.connect() as conn:
            row = conn.execute(query).first()
        return schema.INVITE.from_row(row) if row is not None else None

    def insert_invite(self, invite: ThreePidInvite) -> None:
        with wrap_errors("insert invite"), self.engine.begin() as conn:
            result = conn.execute(schema.invites.insert().values(**schema.INVITE.to_row(invite)))
            expect_one_row(result.rowcount)

    def delete_invite(self, invite_id: str) -> None:
        statement = delete(schema.invites).where(schema.invites.c.id == invite_id)
        with wrap_errors("delete invite"), self.engine.begin() as conn:
            expect_one_row(conn.execute(statement).rowcount)

    def insert_historical_invite(
        self,
        invite: ThreePidInvite,
        resolved_to: str,
        resolved_at: datetime,
        could_publish: bool,
    ) -> str:
        """Archive a resolved invite and return the id it is stored under.

        The row is written under the invite's id, then moved to a random id
        in a second statement. Both run in their own transaction: if the
        process dies in between, the row stays under the invite's id.
        """
        historical = HistoricalThreePidInvite(
            id=invite.id,
            sender=invite.sender,
            medium=invite.medium,
            address=invite.address,
            room_id=invite.room_id,
            resolved_to=resolved_to,
            resolved_at=resolved_at,
            could_publish=could_publish,
            token=invite.token,
            properties=dict(invite.properties),
        )
        table = schema.invites_history
        with wrap_errors("insert historical invite"), self.engine.begin() as conn:
            result = conn.execute(table.insert().values(**schema.HISTORICAL_INVITE.to_row(historical)))
            expect_one_row(result.rowcount)

        new_id = uuid.uuid4().hex
        statement = update(table).where(table.c.id == invite.id).values(id=new_id)
        with wrap_errors("relabel historical invite"), self.engine.begin() as conn:
            expect_one_row(conn.execute(statement).rowcount)
        return new_id

    def get_historical_invite(self, invite_id: str) -> Optional[HistoricalThreePidInvite]:
        table = schema.invites_history
        with wrap_errors("read historical invite"), self.engine.connect() as conn:
            row = conn.execute(select(table).where(table.c.id == invite_id)).first()
        return schema.HISTORICAL_INVITE.from_row(row) if row is not None else None

    def get_historical_invites(self) -> List[HistoricalThreePidInvite]:
        with wrap_errors("list historical invites"), self.engine.connect() as conn:
            rows = conn.execute(select(schema.invites_history)).all()
        return [schema.HISTORICAL_INVITE.from_row(row) for row in rows]

    # 3PID sessions

    def get_threepid_session(self, sid: str) -> Optional[ThreePidSession]:
        query = select(schema.sessions).where(schema.sessions.c.id == sid)
        with wrap_errors("read 3PID session"), self.engine.connect() as conn:
            row = conn.execute(query).first()
        return schema.SESSION.from_row(row) if row is not None else None

    def find_threepid_session(self, threepid: ThreePid, secret: str) -> Optional[ThreePidSession]:
        mapping = schema.SESSION
        query = select(schema.sessions).where(
            mapping.column("medium") == threepid.medium,
            mapping.column("address") == threepid.address,
            mapping.column("secret") == secret,
        )
        with wrap_errors("find 3PID session"), self.engine.connect() as conn:
            rows = conn.execute(query).all()
        row = at_most_one(rows, f"3PID Session {threepid}")
        return mapping.from_row(row) if row is not None else None

    def insert_threepid_session(self, session: ThreePidSession) -> None:
        with wrap_errors("insert 3PID session"), self.engine.begin() as conn:
            result = conn.execute(schema.sessions.insert().values(**schema.SESSION.to_row(session)))
            expect_one_row(result.rowcount)

    def update_threepid_session(self, session: ThreePidSession) -> None:
        values = schema.SESSION.to_row(session)
        del values["id"]
        statement = update(schema.sessions).where(schema.sessions.c.id == session.id).values(**values)
        with wrap_errors("update 3PID session"), self.engine.begin() as conn:
            expect_one_row(conn.execute(statement).rowcount)

    # Application service transactions

    def insert_transaction_result(
        self, localpart: str, txn_id: str, completion: datetime, result: str
    ) -> None:
        """Record the outcome of a transaction; a replayed (localpart, txn_id) raises ``DuplicateKeyError``"""
        txn = ASTransaction(localpart, txn_id, completion, result)
        with wrap_errors("insert transaction result"), self.engine.begin() as conn:
            created = conn.execute(
                schema.as_transactions.insert().values(**schema.AS_TRANSACTION.to_row(txn))
            )
            expect_one_row(created.rowcount)

    def get_transaction_result(self, localpart: str, txn_id: str) -> Optional[ASTransaction]:
        mapping = schema.AS_TRANSACTION
        query = select(schema.as_transactions).where(
            mapping.column("localpart") == localpart,
            mapping.column("transaction_id") == txn_id,
        )
        with wrap_errors("read transaction result"), self.engine.connect() as conn:
            rows = conn.execute(query).all()
        row = at_most_one(rows, f"Transaction {txn_id} for localpart {localpart}")
        return mapping.from_row(row) if row is not None else None

    # Accounts and policies

    def insert_token(self, account: Account) -> None:
        with wrap_errors("insert token"), self.engine.begin() as conn:
            created = conn.execute(schema.accounts.insert().values(**schema.ACCOUNT.to_row(account)))
            expect_one_row(created.rowcount)

    def find_account(self, token: str) -> Optional[Account]:
        query = select(schema.accounts).where(schema.accounts.c.token == token)
        with wrap_errors("find account"), self.engine.connect() as conn:
            rows = conn.execute(query).all()
        row = at_most_one(rows, "access token")
        return schema.ACCOUNT.from_row(row) if row is not None else None

    def delete_token(self, token: str) -> None:
        statement = delete(schema.accounts).where(schema.accounts.c.token == token)
        with wrap_errors("delete token"), self.engine.begin() as conn:
            expect_one_row(conn.execute(statement).rowcount)

    def _require_account(self, token: str) -> Account:
        account = self.find_account(token)
        if account is None:
            raise InvalidCredentialsError("Unknown access token")
        return account

    def get_accepted_policies(self, user_id: str) -> List[AcceptedPolicy]:
        query = select(schema.accepted).where(schema.accepted.c.userId == user_id)
        with wrap_errors("list accepted policies"), self.engine.connect() as conn:
            rows = conn.execute(query).all()
        return [schema.ACCEPTED.from_row(row) for row in rows]

    def accept_term(self, token: str, url: str) -> None:
        """Record that the token's user accepted ``url``; accepting twice is a no-op"""
        account = self._require_account(token)
        for accepted in self.get_accepted_policies(account.user_id):
            if accepted.url.lower() == url.lower():
                return

        values = {"url": url, "userId": account.user_id, "acceptedAt": to_millis(utcnow())}
        try:
            with wrap_errors("accept term"), self.engine.begin() as conn:
                expect_one_row(conn.execute(schema.accepted.insert().values(**values)).rowcount)
        except DuplicateKeyError:
            logger.debug(f"Term {url} accepted concurrently for {account.user_id}")

    def delete_accepts(self, token: str) -> int:
        account = self._require_account(token)
        statement = delete(schema.accepted).where(schema.accepted.c.userId == account.user_id)
        with wrap_errors("delete accepted terms"), self.engine.begin() as conn:
            return conn.execute(statement).rowcount

    def is_term_accepted(self, token: str, policies: Iterable[PolicyObject]) -> bool:
        account = self._require_account(token)
        accepted_urls = {a.url.lower() for a in self.get_accepted_policies(account.user_id)}
        if not accepted_urls:
            return False
        for policy in policies:
            for term in policy.terms.values():
                if term.url.lower() in accepted_urls:
                    return True
        return False

    # Hashes

    def clear_hashes(self) -> None:
        self.hashes.clear()

    def add_hash(self, mxid: str, medium: str, address: str, hash: str) -> None:
        self.hashes.add(mxid, medium, address, hash)

    def find_hashes(self, hashes: Iterable[str]) -> List[Tuple[str, ThreePidMapping]]:
        return self.hashes.find(hashes)


def main() -> int:
    """Bring the configured database schema up to date"""
    settings: Settings = Settings()

    # Set up logging before opening the store
    setup_logging(settings)
    logger.info("Starting identity store schema migration")

    try:
        with SqlStorage.from_settings(settings) as storage:
            result = storage.migration_result
            for name in result.applied:
                logger.info(f"Applied migration {name}")
            logger.info(
                f"Schema up to date: {len(result.applied)} applied, {len(result.skipped)} already present"
            )
    except ConfigurationError as e:
        logger.error(f"Invalid storage configuration: {e}")
        return 2
    except MigrationError as e:
        logger.error(f"Schema migration failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
