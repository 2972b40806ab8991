"""Database provider base class.

A provider backed by a SQLite database. The connection is opened on first
use and kept for the lifetime of the provider; table columns are read once
per table with ``PRAGMA table_info``.

    class BlogDbProvider(DbSyncProvider):
        entity_types = ("Post", "Comment")

        def build_definition(self, entity_type):
            return self.builder_for(
                entity_type,
                operations=[SyncOperation.READ, SyncOperation.READ_LIST],
                table=snake_case(entity_type.__name__) + "s",
            )
"""

import logging
import os
import sqlite3
from typing import Any

from ...api.database import check_database_health, connect, fetch_all
from ...api.exceptions import DatabaseError, SyncEntityNotFound
from ..domain.entities import SyncEntity
from .db_definition import DbSyncDefinition, quote_identifier
from .provider import SyncProvider

logger = logging.getLogger(__name__)


class DbSyncProvider(SyncProvider):
    """Base class for providers with a SQLite backend.

    Attributes:
        database: Database file path, or ":memory:"
    """

    unreachable_errors = (DatabaseError,)

    def __init__(self, store, database: str, timeout: float = 5.0):
        self.database = database
        self.timeout = timeout
        self._db: sqlite3.Connection | None = None
        self._columns: dict[str, list[str]] = {}
        super().__init__(store)

    def get_backend_identifier(self) -> list[str]:
        if self.database == ":memory:":
            return [self.database]
        return [os.path.abspath(self.database).lower()]

    def get_db(self) -> sqlite3.Connection:
        if self._db is None:
            self._db = connect(self.database, self.timeout)
        return self._db

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def __enter__(self) -> "DbSyncProvider":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get_table_columns(self, table: str) -> list[str]:
        columns = self._columns.get(table)
        if columns is None:
            rows = fetch_all(self.get_db(), f"PRAGMA table_info({quote_identifier(table)})")
            columns = [row["name"] for row in rows]
            if not columns:
                raise DatabaseError(f"Table not found: {table}", details={"table": table})
            self._columns[table] = columns
        return columns

    def get_heartbeat(self) -> Any:
        health = check_database_health(self.get_db())
        if not health["healthy"]:
            raise DatabaseError(f"Database unreachable: {health.get('error')}")
        return health

    def first(self, rows: list[dict[str, Any]], entity_type: type[SyncEntity], entity_id: Any) -> dict[str, Any]:
        """First row of a recordset fetched by a declared READ.

        Raises:
            SyncEntityNotFound: If there are no rows
        """
        if not rows:
            raise SyncEntityNotFound(self, entity_type, entity_id)
        return rows[0]

    # ----------------------------------------
    # Definitions
    # ----------------------------------------

    def builder_for(self, entity_type: type[SyncEntity], **kwargs: Any) -> DbSyncDefinition:
        return DbSyncDefinition(entity_type, self, **kwargs)

    def build_definition(self, entity_type: type[SyncEntity]) -> DbSyncDefinition:
        return self.builder_for(entity_type)


__all__ = ["DbSyncProvider"]
