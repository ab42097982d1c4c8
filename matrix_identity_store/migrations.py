"""Named, run-once schema migrations.

The ``changelog`` table records the name of every migration that has been
applied. On startup every base table is created if missing, then each entry
of ``MIGRATIONS`` whose name is not in the changelog is applied and recorded
in the same transaction. Entries are only ever appended to ``MIGRATIONS``;
a deployment that skipped several releases applies all pending entries in
order, exactly as it would have one release at a time.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from sqlalchemy import select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from . import schema
from .database import PROFILES, Backend
from .errors import MigrationError
from .logger import get_logger
from .models import ChangelogEntry, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    name: str
    description: str
    apply: Callable[[Connection, Backend], None]


@dataclass
class MigrationResult:
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _recreate_accepted(conn: Connection, backend: Backend) -> None:
    schema.accepted.drop(conn, checkfirst=True)
    schema.accepted.create(conn)


def _recreate_hashes(conn: Connection, backend: Backend) -> None:
    schema.hashes.drop(conn, checkfirst=True)
    schema.hashes.create(conn)


def _widen_to_text(table_name: str, columns: Sequence[str]) -> Callable[[Connection, Backend], None]:
    def apply(conn: Connection, backend: Backend) -> None:
        if not PROFILES[backend].widens_varchar:
            return
        for column in columns:
            conn.execute(text(f'alter table {table_name} alter column "{column}" type text'))

    return apply


MIGRATIONS = (
    Migration(
        "2019_12_09__2254__fix_accepted_dao",
        "Recreate the accepted table.",
        _recreate_accepted,
    ),
    Migration(
        "2020_03_22__1153__fix_hash_dao_unique_index",
        "Add the id and migrate the unique index.",
        _recreate_hashes,
    ),
    Migration(
        "2020_04_21__2338__change_type_table_invites",
        "Modify column type to text.",
        _widen_to_text(
            "invite_3pid",
            ("roomId", "id", "token", "sender", "medium", "address", "properties"),
        ),
    ),
    Migration(
        "2020_10_26__2200__change_type_table_invite_history",
        "Modify column type to text.",
        _widen_to_text(
            "invite_3pid_history",
            ("resolvedTo", "id", "token", "sender", "medium", "address", "roomId", "properties"),
        ),
    ),
)


class SchemaMigrator:
    """Creates the base tables and applies pending migrations.

    Parameters
    ----------
    engine
        Engine returned by ``database.create_engine``.
    backend
        The backend the engine talks to; handed to every migration body.
    migrations
        Ordered migrations, defaults to ``MIGRATIONS``.
    """

    def __init__(
        self,
        engine: Engine,
        backend: Backend,
        migrations: Sequence[Migration] = MIGRATIONS,
    ) -> None:
        names = [m.name for m in migrations]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise MigrationError(f"Duplicate migration names: {', '.join(duplicates)}")

        self.engine = engine
        self.backend = backend
        self.migrations = tuple(migrations)

    def run(self) -> MigrationResult:
        self.create_tables()

        result = MigrationResult()
        for migration in self.migrations:
            if self._apply(migration):
                result.applied.append(migration.name)
            else:
                result.skipped.append(migration.name)
        return result

    def create_tables(self) -> None:
        try:
            schema.metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create the base tables: {e}")
            raise MigrationError(f"Failed to create the base tables: {e}") from e

    def applied(self) -> List[ChangelogEntry]:
        """Return the changelog ledger in the order entries were written"""
        query = select(schema.changelog).order_by(
            schema.changelog.c.createdAt, schema.changelog.c.id
        )
        try:
            with self.engine.connect() as conn:
                return [schema.CHANGELOG.from_row(row) for row in conn.execute(query)]
        except SQLAlchemyError as e:
            raise MigrationError(f"Failed to read the changelog: {e}") from e

    def _apply(self, migration: Migration) -> bool:
        try:
            with self.engine.begin() as conn:
                found = conn.execute(
                    select(schema.changelog.c.id).where(schema.changelog.c.id == migration.name)
                ).first()
                if found is not None:
                    logger.debug(f"Migration {migration.name} already applied")
                    return False

                logger.info(f"Migration: {migration.name}")
                migration.apply(conn, self.backend)
                entry = ChangelogEntry(migration.name, utcnow(), migration.description)
                conn.execute(schema.changelog.insert().values(**schema.CHANGELOG.to_row(entry)))
                return True
        except MigrationError:
            raise
        except Exception as e:
            logger.error(f"Migration {migration.name} failed: {e}")
            raise MigrationError(
                f"Migration {migration.name} failed: {e}", migration=migration.name
            ) from e
