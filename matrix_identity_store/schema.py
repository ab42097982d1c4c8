"""Database schema for the identity store.

Tables are declared with SQLAlchemy Core. Column names follow the schema
shipped by earlier releases (camelCase), so each table is paired with a
``RecordMapping`` that translates between record attributes and columns.
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Row

from . import models
from .models import from_millis, to_millis

metadata = MetaData()

changelog = Table(
    "changelog",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("createdAt", BigInteger, nullable=False),
    Column("comment", Text, nullable=True),
)

# Bounded columns on the invite tables are widened to TEXT by migration
invites = Table(
    "invite_3pid",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("token", String(255), nullable=True),
    Column("sender", String(255), nullable=False),
    Column("medium", String(255), nullable=False),
    Column("address", String(255), nullable=False),
    Column("roomId", String(255), nullable=False),
    Column("properties", String(255), nullable=True),
)

invites_history = Table(
    "invite_3pid_history",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("token", String(255), nullable=True),
    Column("sender", String(255), nullable=False),
    Column("medium", String(255), nullable=False),
    Column("address", String(255), nullable=False),
    Column("roomId", String(255), nullable=False),
    Column("properties", String(255), nullable=True),
    Column("resolvedTo", String(255), nullable=False),
    Column("resolvedAt", BigInteger, nullable=False),
    Column("couldPublish", Boolean, nullable=False),
)

sessions = Table(
    "session_3pid",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("server", Text, nullable=False),
    Column("medium", String(255), nullable=False),
    Column("address", String(255), nullable=False),
    Column("secret", String(255), nullable=False),
    Column("attempt", Integer, nullable=False),
    Column("nextLink", Text, nullable=True),
    Column("token", Text, nullable=False),
    Column("creationTime", BigInteger, nullable=False),
    Column("validated", Boolean, nullable=False, default=False),
    Column("validationTime", BigInteger, nullable=True),
    Column("isRemote", Boolean, nullable=False, default=False),
    Column("remoteServer", Text, nullable=True),
    Column("remoteId", Text, nullable=True),
    Column("remoteSecret", Text, nullable=True),
    Column("remoteAttempt", Integer, nullable=False, default=0),
    Column("isRemoteValidated", Boolean, nullable=False, default=False),
    UniqueConstraint("medium", "address", "secret", name="uq_session_3pid_secret"),
)

as_transactions = Table(
    "as_txn",
    metadata,
    Column("localpart", String(255), nullable=False),
    Column("transactionId", String(255), nullable=False),
    Column("completion", BigInteger, nullable=False),
    Column("result", Text, nullable=False),
    PrimaryKeyConstraint("localpart", "transactionId", name="pk_as_txn"),
)

accounts = Table(
    "account",
    metadata,
    Column("token", String(255), primary_key=True),
    Column("userId", Text, nullable=False, index=True),
    Column("tokenType", String(255), nullable=False),
    Column("createdAt", BigInteger, nullable=False),
    Column("expiresIn", BigInteger, nullable=True),
)

accepted = Table(
    "accepted",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("url", Text, nullable=False),
    Column("userId", Text, nullable=False),
    Column("acceptedAt", BigInteger, nullable=False),
    UniqueConstraint("userId", "url", name="uq_accepted_user_url"),
)

hashes = Table(
    "hashes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("mxid", Text, nullable=False),
    Column("medium", String(255), nullable=False),
    Column("address", Text, nullable=False),
    Column("hash", String(255), nullable=False),
    UniqueConstraint("mxid", "medium", "address", name="uq_hashes_threepid"),
    Index("ix_hashes_hash", "hash"),
)


def _same(value: Any) -> Any:
    return value


def _dump_json(value: Dict[str, Any]) -> str:
    return json.dumps(value or {})


def _load_json(value: Any) -> Dict[str, Any]:
    if not value:
        return {}
    return json.loads(value)


@dataclass(frozen=True)
class FieldMapping:
    attribute: str
    column: str
    to_db: Callable[[Any], Any] = _same
    from_db: Callable[[Any], Any] = _same


def field(attribute: str, column: Optional[str] = None) -> FieldMapping:
    return FieldMapping(attribute, column or attribute)


def millis(attribute: str, column: str) -> FieldMapping:
    return FieldMapping(attribute, column, to_millis, from_millis)


def as_json(attribute: str, column: str) -> FieldMapping:
    return FieldMapping(attribute, column, _dump_json, _load_json)


def as_bool(attribute: str, column: str) -> FieldMapping:
    return FieldMapping(attribute, column, bool, bool)


class RecordMapping:
    """Explicit attribute <-> column mapping for one table."""

    def __init__(self, table: Table, record_type: type, fields: Sequence[FieldMapping]) -> None:
        self.table = table
        self.record_type = record_type
        self.fields = tuple(fields)
        self._by_attribute = {f.attribute: f for f in self.fields}
        for f in self.fields:
            if f.column not in table.c:
                raise ValueError(f"Table {table.name} has no column {f.column}")

    def column(self, attribute: str) -> Column:
        return self.table.c[self._by_attribute[attribute].column]

    def to_row(self, record: Any) -> Dict[str, Any]:
        return {f.column: f.to_db(getattr(record, f.attribute)) for f in self.fields}

    def from_row(self, row: Row) -> Any:
        values = row._mapping
        return self.record_type(
            **{f.attribute: f.from_db(values[f.column]) for f in self.fields}
        )


_invite_fields = (
    field("id"),
    field("token"),
    field("sender"),
    field("medium"),
    field("address"),
    field("room_id", "roomId"),
    as_json("properties", "properties"),
)

INVITE = RecordMapping(invites, models.ThreePidInvite, _invite_fields)

HISTORICAL_INVITE = RecordMapping(
    invites_history,
    models.HistoricalThreePidInvite,
    _invite_fields
    + (
        field("resolved_to", "resolvedTo"),
        millis("resolved_at", "resolvedAt"),
        as_bool("could_publish", "couldPublish"),
    ),
)

SESSION = RecordMapping(
    sessions,
    models.ThreePidSession,
    (
        field("id"),
        field("server"),
        field("medium"),
        field("address"),
        field("secret"),
        field("attempt"),
        field("next_link", "nextLink"),
        field("token"),
        millis("creation_time", "creationTime"),
        as_bool("validated", "validated"),
        millis("validation_time", "validationTime"),
        as_bool("is_remote", "isRemote"),
        field("remote_server", "remoteServer"),
        field("remote_id", "remoteId"),
        field("remote_secret", "remoteSecret"),
        field("remote_attempt", "remoteAttempt"),
        as_bool("is_remote_validated", "isRemoteValidated"),
    ),
)

AS_TRANSACTION = RecordMapping(
    as_transactions,
    models.ASTransaction,
    (
        field("localpart"),
        field("transaction_id", "transactionId"),
        millis("completion", "completion"),
        field("result"),
    ),
)

ACCOUNT = RecordMapping(
    accounts,
    models.Account,
    (
        field("token"),
        field("user_id", "userId"),
        field("token_type", "tokenType"),
        millis("created_at", "createdAt"),
        field("expires_in", "expiresIn"),
    ),
)

ACCEPTED = RecordMapping(
    accepted,
    models.AcceptedPolicy,
    (
        field("id"),
        field("user_id", "userId"),
        field("url"),
        millis("accepted_at", "acceptedAt"),
    ),
)

CHANGELOG = RecordMapping(
    changelog,
    models.ChangelogEntry,
    (
        field("name", "id"),
        millis("created_at", "createdAt"),
        field("comment"),
    ),
)
