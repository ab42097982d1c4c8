"""Reverse lookup of 3PID mappings by their one-way hash."""
from typing import Iterable, List, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine

from . import schema
from .database import wrap_errors
from .errors import StorageError
from .logger import get_logger
from .models import ThreePidMapping

logger = get_logger(__name__)

# Upper bound of bound parameters sent in a single IN clause
FIND_BATCH_SIZE = 1000


class HashLookupIndex:
    """Set-membership lookups over the ``hashes`` table.

    The table is rebuilt wholesale: callers ``clear()`` it, then ``add()``
    one row per (mxid, medium, address) with the freshly computed hash.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def clear(self) -> int:
        """Delete every mapping and return how many were removed"""
        table = schema.hashes
        with wrap_errors("clear hashes"), self.engine.begin() as conn:
            expected = conn.execute(select(func.count()).select_from(table)).scalar_one()
            deleted = conn.execute(delete(table)).rowcount
            if deleted != expected:
                raise StorageError(f"Not all hashes deleted: {deleted} of {expected}")
        logger.info(f"Cleared {deleted} hash mappings")
        return deleted

    def add(self, mxid: str, medium: str, address: str, hash: str) -> None:
        values = {"mxid": mxid, "medium": medium, "address": address, "hash": hash}
        with wrap_errors("add hash"), self.engine.begin() as conn:
            conn.execute(schema.hashes.insert().values(**values))

    def find(self, hashes: Iterable[str]) -> List[Tuple[str, ThreePidMapping]]:
        """Return (hash, mapping) pairs for every stored hash in ``hashes``"""
        wanted = sorted(set(hashes))
        if not wanted:
            return []

        table = schema.hashes
        found = []
        with wrap_errors("find hashes"), self.engine.connect() as conn:
            for start in range(0, len(wanted), FIND_BATCH_SIZE):
                batch = wanted[start:start + FIND_BATCH_SIZE]
                query = select(table.c.hash, table.c.medium, table.c.address, table.c.mxid).where(
                    table.c.hash.in_(batch)
                )
                for row in conn.execute(query):
                    found.append((row.hash, ThreePidMapping(row.medium, row.address, row.mxid)))
        return found
