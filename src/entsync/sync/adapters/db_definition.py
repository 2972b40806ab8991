"""Tabular operation definition.

Binds one entity type to one table in a SQLite backend. Rows map to records
by column name, so the field mapper sees exactly what an HTTP backend would
send. READ_LIST claims every filter that names a column (``author`` and
``author_id`` both match an ``author_id`` column) and turns it into a WHERE
condition; list values become ``IN (...)``.

Example:
    DbSyncDefinition(
        Post,
        provider,
        operations=[SyncOperation.READ, SyncOperation.READ_LIST],
        table="posts",
    )
"""

import logging
import re
from typing import Any, Callable, Iterable, Iterator

from ...api.database import database_transaction, fetch_all, fetch_one
from ...api.exceptions import LogicError, SyncEntityNotFound, UnexpectedValueError
from ..domain.context import SyncContext
from ..domain.entities import SyncEntity
from ..domain.enums import EntitySource, FilterPolicy, ListConformity, SyncOperation
from ..domain.naming import snake_case, type_basename
from .definition import KeyMap, SyncDefinition
from .pipeline import Pipeline, SyncPipelineArgument

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise UnexpectedValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


class DbSyncDefinition(SyncDefinition):
    """Binding of one entity type to one table.

    Attributes:
        table: Table name (default: the entity type's snake_case name)
        key_column: Column holding the entity id
    """

    def __init__(
        self,
        entity: type[SyncEntity],
        provider,
        operations: Iterable[SyncOperation] = (),
        table: str | None = None,
        key_column: str = "id",
        conformity: ListConformity = ListConformity.COMPLETE,
        filter_policy: FilterPolicy | None = None,
        overrides: dict | None = None,
        key_map: KeyMap | None = None,
        pipeline_from_backend: Pipeline | None = None,
        pipeline_to_backend: Pipeline | None = None,
        read_from_read_list: bool = False,
        return_entities_from: EntitySource | None = EntitySource.PROVIDER_OUTPUT,
    ):
        super().__init__(
            entity,
            provider,
            operations,
            conformity,
            filter_policy,
            overrides,
            key_map,
            pipeline_from_backend,
            pipeline_to_backend,
            read_from_read_list,
            return_entities_from,
        )
        self.table = table or snake_case(type_basename(entity))
        self.key_column = key_column

    def with_table(self, table: str, key_column: str | None = None) -> "DbSyncDefinition":
        return self._with(table=table, key_column=key_column or self.key_column)

    # ----------------------------------------
    # SQL
    # ----------------------------------------

    def get_columns(self) -> list[str]:
        return self.provider.get_table_columns(self.table)

    def _select(self) -> str:
        return f"SELECT * FROM {quote_identifier(self.table)}"

    def _where(self, ctx: SyncContext) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []
        for column in self.get_columns():
            value = ctx.get_filter(column, or_value=False)
            if value is None:
                continue
            ctx.claim_filter(column, or_value=False)
            if isinstance(value, (list, tuple, set)):
                value = list(value)
                conditions.append(f"{quote_identifier(column)} IN ({', '.join('?' * len(value))})")
                params.extend(value)
            else:
                conditions.append(f"{quote_identifier(column)} = ?")
                params.append(value)
        sql = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        return sql, params

    def _fetch_row(self, entity_id: Any) -> dict[str, Any] | None:
        return fetch_one(
            self.provider.get_db(),
            f"{self._select()} WHERE {quote_identifier(self.key_column)} = ?",
            (entity_id,),
        )

    def _row_from_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        columns = set(self.get_columns())
        row = {}
        for key, value in payload.items():
            # Related entity (or link) -> "<key>_id" column
            if isinstance(value, dict) and f"{key}_id" in columns:
                row[f"{key}_id"] = value.get("id", value.get("@id"))
                continue
            if key not in columns or isinstance(value, (dict, list)):
                continue
            row[key] = value
        return row

    # ----------------------------------------
    # Generated closures
    # ----------------------------------------

    def _get_closure(self, operation: SyncOperation) -> Callable | None:
        if operation == SyncOperation.READ:
            return self._read
        if operation == SyncOperation.READ_LIST:
            return self._read_list
        if operation.is_list:
            single = self._get_closure(operation.single)

            def write_list(ctx: SyncContext, entities: Iterable[SyncEntity], *args) -> Iterator[SyncEntity]:
                if self.apply_filter_policy(operation, ctx)[0]:
                    return
                for entity in entities:
                    result = single(ctx, entity, *args)
                    if result is not None:
                        yield result
            return write_list
        return {
            SyncOperation.CREATE: self._create,
            SyncOperation.UPDATE: self._update,
            SyncOperation.DELETE: self._delete,
        }[operation]

    def _read(self, ctx: SyncContext, entity_id: Any, *args) -> SyncEntity | None:
        return_empty, empty = self.apply_filter_policy(SyncOperation.READ, ctx)
        if return_empty:
            return empty
        row = self._fetch_row(entity_id)
        if row is None:
            raise SyncEntityNotFound(self.provider, self.entity, entity_id)
        arg = SyncPipelineArgument(SyncOperation.READ, ctx, args, id=entity_id)
        return self.get_pipeline_from_backend().run(row, arg)

    def _read_list(self, ctx: SyncContext, *args) -> Iterator[SyncEntity]:
        where, params = self._where(ctx)
        return_empty, empty = self.apply_filter_policy(SyncOperation.READ_LIST, ctx)
        if return_empty:
            return iter(empty)
        sql = f"{self._select()}{where} ORDER BY {quote_identifier(self.key_column)}"
        logger.debug(f"READ_LIST {type_basename(self.entity)}: {sql}")
        rows = fetch_all(self.provider.get_db(), sql, params)
        return self.entities_from_backend(rows, SyncOperation.READ_LIST, ctx, args)

    def _payload(self, operation: SyncOperation, ctx: SyncContext, entity: SyncEntity, args: tuple) -> dict[str, Any]:
        arg = SyncPipelineArgument(operation, ctx, args, entity=entity)
        payload = self.get_pipeline_to_backend().run(entity, arg)
        if not isinstance(payload, dict):
            raise LogicError(
                f"{type_basename(self.entity)} must serialize to a dict for table {self.table}"
            )
        return self._row_from_payload(payload)

    def _round_trip(self, operation, ctx, args, entity, row_id):
        if self.check_entity_source(operation) == EntitySource.SYNC_OPERATION:
            return entity
        row = self._fetch_row(row_id)
        if row is None:
            return None
        arg = SyncPipelineArgument(operation, ctx, args, entity=entity)
        return self.get_pipeline_from_backend().run(row, arg)

    def _create(self, ctx: SyncContext, entity: SyncEntity, *args) -> SyncEntity | None:
        return_empty, empty = self.apply_filter_policy(SyncOperation.CREATE, ctx)
        if return_empty:
            return empty
        row = self._payload(SyncOperation.CREATE, ctx, entity, args)
        if row.get(self.key_column) is None:
            row.pop(self.key_column, None)
        columns = ", ".join(quote_identifier(c) for c in row)
        placeholders = ", ".join("?" * len(row))
        sql = f"INSERT INTO {quote_identifier(self.table)} ({columns}) VALUES ({placeholders})"
        with database_transaction(self.provider.get_db()) as cur:
            cur.execute(sql, list(row.values()))
            row_id = row.get(self.key_column, cur.lastrowid)
        return self._round_trip(SyncOperation.CREATE, ctx, args, entity, row_id)

    def _update(self, ctx: SyncContext, entity: SyncEntity, *args) -> SyncEntity | None:
        return_empty, empty = self.apply_filter_policy(SyncOperation.UPDATE, ctx)
        if return_empty:
            return empty
        row = self._payload(SyncOperation.UPDATE, ctx, entity, args)
        row.pop(self.key_column, None)
        if not row:
            return self._round_trip(SyncOperation.UPDATE, ctx, args, entity, entity.id)
        assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in row)
        sql = (
            f"UPDATE {quote_identifier(self.table)} SET {assignments} "
            f"WHERE {quote_identifier(self.key_column)} = ?"
        )
        with database_transaction(self.provider.get_db()) as cur:
            cur.execute(sql, [*row.values(), entity.id])
            updated = cur.rowcount
        if not updated:
            raise SyncEntityNotFound(self.provider, self.entity, entity.id)
        return self._round_trip(SyncOperation.UPDATE, ctx, args, entity, entity.id)

    def _delete(self, ctx: SyncContext, entity: SyncEntity, *args) -> SyncEntity | None:
        return_empty, empty = self.apply_filter_policy(SyncOperation.DELETE, ctx)
        if return_empty:
            return empty
        result = self._round_trip(SyncOperation.DELETE, ctx, args, entity, entity.id)
        sql = f"DELETE FROM {quote_identifier(self.table)} WHERE {quote_identifier(self.key_column)} = ?"
        with database_transaction(self.provider.get_db()) as cur:
            cur.execute(sql, (entity.id,))
            deleted = cur.rowcount
        if not deleted:
            raise SyncEntityNotFound(self.provider, self.entity, entity.id)
        return result


__all__ = ["DbSyncDefinition", "quote_identifier"]
