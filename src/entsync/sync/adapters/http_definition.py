"""HTTP operation definition.

Turns a SyncOperation into a request against a REST endpoint:

- Path templates with ``:name`` placeholders, tried in order until one
  resolves. ``:id`` (or any placeholder whose snake_case form is ``id``)
  takes the operation's id; other placeholders take context values, then
  filters. Filters (including one matching the context value used) are
  claimed only once a template fully resolves.
- A method map from operation to HTTP verb (DEFAULT_METHOD_MAP)
- Pagination of READ_LIST via GET or POST when a pager is configured
- Round trips: entities returned by writes come from the response body
  (PROVIDER_OUTPUT) or are the entities passed in (SYNC_OPERATION)

Example:
    HttpSyncDefinition(
        User,
        provider,
        operations=[SyncOperation.READ, SyncOperation.READ_LIST],
        path=["/groups/:group_id/users", "/users"],
        pager=OffsetPager(),
    )
"""

import logging
import re
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import quote

from ...api.client import HttpClient, Pager
from ...api.exceptions import (
    LogicError,
    NotFoundError,
    SyncEntityNotFound,
    SyncInvalidContext,
    UnexpectedValueError,
)
from ..domain.context import SyncContext
from ..domain.entities import SyncEntity
from ..domain.enums import EntitySource, FilterPolicy, ListConformity, SyncOperation
from ..domain.naming import snake_case, type_basename
from .definition import KeyMap, SyncDefinition
from .pipeline import Pipeline, SyncPipelineArgument

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")

DEFAULT_METHOD_MAP: dict[SyncOperation, str] = {
    SyncOperation.CREATE: "POST",
    SyncOperation.READ: "GET",
    SyncOperation.UPDATE: "PUT",
    SyncOperation.DELETE: "DELETE",
    SyncOperation.CREATE_LIST: "POST",
    SyncOperation.READ_LIST: "GET",
    SyncOperation.UPDATE_LIST: "PUT",
    SyncOperation.DELETE_LIST: "DELETE",
}

DefinitionCallback = Callable[..., "HttpSyncDefinition"]
ClientCallback = Callable[..., HttpClient]


def _filter_path_value(value: str, name: str, path: str) -> str:
    if "/" in value:
        raise UnexpectedValueError(f"Cannot apply value of '{name}' to path '{path}': {value}")
    return quote(value, safe="")


def _apply_path_value(value: str, name: str, path: str) -> str:
    value = _filter_path_value(value, name, path)
    return re.sub(rf":{re.escape(name)}(?![A-Za-z0-9_])", lambda _: value, path)


class HttpSyncDefinition(SyncDefinition):
    """Binding of one entity type to one HTTP provider.

    Attributes:
        path: Path template, or templates to try in order
        query: Query parameters sent with every request
        headers: Headers replacing the provider's defaults
        pager: Pager replacing the provider's default
        always_paginate: Route every GET/POST through the pager
        callback: ``callback(definition, operation, ctx, *args)`` returning
            the definition to use for one request
        method_map: Operation -> HTTP method
        client_callback: ``client_callback(client, definition, operation,
            ctx, *args)`` returning the client to use for one request
        sync_one_entity_per_request: Send one request per entity for list
            writes
        args: Arguments used in place of the operation's own for the path
            and payload
    """

    def __init__(
        self,
        entity: type[SyncEntity],
        provider,
        operations: Iterable[SyncOperation] = (),
        path: str | list[str] | None = None,
        query: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        pager: Pager | None = None,
        always_paginate: bool = False,
        callback: DefinitionCallback | None = None,
        conformity: ListConformity = ListConformity.NONE,
        filter_policy: FilterPolicy | None = None,
        method_map: dict[SyncOperation, str] | None = None,
        client_callback: ClientCallback | None = None,
        sync_one_entity_per_request: bool = False,
        overrides: dict | None = None,
        key_map: KeyMap | None = None,
        pipeline_from_backend: Pipeline | None = None,
        pipeline_to_backend: Pipeline | None = None,
        read_from_read_list: bool = False,
        return_entities_from: EntitySource | None = EntitySource.PROVIDER_OUTPUT,
        args: Iterable[Any] | None = None,
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
        self.path = path
        self.query = query
        self.headers = headers
        self.pager = pager
        self.always_paginate = bool(pager) and always_paginate
        self.callback = callback
        self.method_map = dict(DEFAULT_METHOD_MAP if method_map is None else method_map)
        self.client_callback = client_callback
        self.sync_one_entity_per_request = sync_one_entity_per_request
        self.args = None if args is None else tuple(args)

    # ----------------------------------------
    # Clones
    # ----------------------------------------

    def with_path(self, path: str | list[str] | None) -> "HttpSyncDefinition":
        return self._with(path=path)

    def with_query(self, query: dict[str, Any] | None) -> "HttpSyncDefinition":
        return self._with(query=query)

    def with_headers(self, headers: dict[str, str] | None) -> "HttpSyncDefinition":
        return self._with(headers=headers)

    def with_pager(self, pager: Pager | None, always_paginate: bool = False) -> "HttpSyncDefinition":
        return self._with(pager=pager, always_paginate=bool(pager) and always_paginate)

    def with_method_map(self, method_map: dict[SyncOperation, str]) -> "HttpSyncDefinition":
        return self._with(method_map=dict(method_map))

    def with_client_callback(self, client_callback: ClientCallback | None) -> "HttpSyncDefinition":
        return self._with(client_callback=client_callback)

    def with_args(self, args: Iterable[Any] | None) -> "HttpSyncDefinition":
        return self._with(args=None if args is None else tuple(args))

    # ----------------------------------------
    # Generated closures
    # ----------------------------------------

    def _get_closure(self, operation: SyncOperation) -> Callable | None:
        if not self.path and self.callback is None:
            return None

        if operation == SyncOperation.READ:
            def read(ctx: SyncContext, entity_id=None, *args):
                all_args = (entity_id,) + args
                response = self._run_http_operation(operation, ctx, all_args)
                if response is None:
                    return None
                arg = SyncPipelineArgument(operation, ctx, args, id=entity_id)
                return self.get_pipeline_from_backend().run(response, arg)
            return read

        if operation == SyncOperation.READ_LIST:
            def read_list(ctx: SyncContext, *args) -> Iterator[SyncEntity]:
                records = self._run_http_operation(operation, ctx, args)
                return self.entities_from_backend(records or [], operation, ctx, args)
            return read_list

        if not operation.is_list:
            def write(ctx: SyncContext, entity: SyncEntity, *args):
                arg = SyncPipelineArgument(operation, ctx, args, entity=entity)
                payload = self.get_pipeline_to_backend().run(entity, arg)
                response = self._run_http_operation(
                    operation, ctx, (entity,) + args, entity=entity, payload=payload
                )
                return self._round_trip(operation, ctx, args, response, entity)
            return write

        def write_list(ctx: SyncContext, entities: Iterable[SyncEntity], *args) -> Iterator[SyncEntity]:
            arg = SyncPipelineArgument(operation, ctx, args)
            to_backend = self.get_pipeline_to_backend()
            if self.sync_one_entity_per_request:
                return self._write_each(operation, ctx, args, entities, to_backend, arg)
            entities = list(entities)
            payload = [to_backend.run(entity, arg) for entity in entities]
            response = self._run_http_operation(
                operation, ctx, (entities,) + args, payload=payload
            )
            return self._round_trip_list(operation, ctx, args, response, entities)
        return write_list

    def _write_each(self, operation, ctx, args, entities, to_backend, arg) -> Iterator[SyncEntity]:
        single = operation.single
        for entity in entities:
            arg.entity = entity
            payload = to_backend.run(entity, arg)
            response = self._run_http_operation(
                operation, ctx, (entity,) + args, entity=entity, payload=payload
            )
            result = self._round_trip(single, ctx, args, response, entity)
            if result is not None:
                yield result

    # ----------------------------------------
    # Round trips
    # ----------------------------------------

    def _round_trip(self, operation, ctx, args, response, entity):
        source = self.check_entity_source(operation)
        if source == EntitySource.SYNC_OPERATION or self.provider.dry_run:
            return entity
        if response is None or response == "":
            return None
        arg = SyncPipelineArgument(operation, ctx, args, entity=entity)
        return self.get_pipeline_from_backend().run(response, arg)

    def _round_trip_list(self, operation, ctx, args, response, entities) -> Iterator[SyncEntity]:
        source = self.check_entity_source(operation)
        if source == EntitySource.SYNC_OPERATION or self.provider.dry_run:
            return iter(entities)
        if response is None or response == "":
            return iter(())
        records = response if isinstance(response, list) else [response]
        return self.entities_from_backend(records, operation, ctx, args)

    # ----------------------------------------
    # Requests
    # ----------------------------------------

    def _run_http_operation(self, operation, ctx, args, entity=None, payload=None):
        definition = self
        if self.callback is not None:
            definition = self.callback(self, operation, ctx, *args)
            if not isinstance(definition, HttpSyncDefinition):
                raise LogicError(
                    f"Definition callback for {type_basename(self.entity)} must return "
                    f"an HttpSyncDefinition, got {type(definition).__name__}"
                )
        return definition._do_run_http_operation(operation, ctx, args, entity, payload)

    def _get_id(self, operation: SyncOperation, args: tuple, entity: SyncEntity | None):
        if operation.is_list:
            return None
        first = args[0] if args else None
        if operation == SyncOperation.READ:
            if first is None or (isinstance(first, (int, str)) and not isinstance(first, bool)):
                return first
            return None
        if isinstance(first, SyncEntity):
            return first.id
        return entity.id if entity is not None else None

    def resolve_path(self, operation: SyncOperation, ctx: SyncContext, entity_id: Any) -> tuple[str, bool]:
        """Resolve the first path template that can be fully resolved.

        Returns:
            (path, id_applied)

        Raises:
            SyncInvalidContext: If no template can be resolved
            UnexpectedValueError: If a value contains a path separator
        """
        if not self.path:
            raise LogicError("Path required")

        templates = [self.path] if isinstance(self.path, str) else list(self.path)
        for index, template in enumerate(templates):
            is_last = index == len(templates) - 1
            names = list(dict.fromkeys(_PLACEHOLDER.findall(template)))
            path = template
            claim: list[str] = []
            id_applied = False
            resolved = True

            for name in names:
                if entity_id is not None and snake_case(name) == "id":
                    path = _apply_path_value(str(entity_id), name, path)
                    id_applied = True
                    continue

                value = ctx.get_value(name) if ctx.has_value(name) else None
                filter_value = ctx.get_filter(name, or_value=False)
                if value is None:
                    value = filter_value
                # A filter satisfied by the path is claimed with it
                is_filter = filter_value is not None and str(filter_value) == str(value)

                if value is None:
                    if is_last:
                        raise SyncInvalidContext(f"Unable to resolve '{name}' in path '{template}'")
                    resolved = False
                    break

                if isinstance(value, (list, tuple, set)):
                    if is_last:
                        raise SyncInvalidContext(f"Cannot apply list to '{name}' in path '{template}'")
                    resolved = False
                    break

                path = _apply_path_value(str(value), name, path)
                if is_filter:
                    claim.append(name)

            if not resolved:
                continue

            for name in claim:
                ctx.claim_filter(name, or_value=False)
            return path, id_applied

        raise SyncInvalidContext(f"No path template resolved for {type_basename(self.entity)}")

    def _do_run_http_operation(self, operation, ctx, args, entity, payload):
        if self.args is not None:
            args = self.args
        entity_id = self._get_id(operation, args, entity)

        path, id_applied = self.resolve_path(operation, ctx, entity_id)

        # Conventional "/:id" for a known id no template consumed
        if entity_id is not None and not id_applied and self.callback is None and "?" not in path:
            path += "/" + _filter_path_value(str(entity_id), "id", f"{path}/:id")

        client = self.provider.get_http_client(
            path,
            headers=self.headers,
            pager=self.pager,
            always_paginate=self.always_paginate,
        )
        if self.client_callback is not None:
            client = self.client_callback(client, self, operation, ctx, *args)

        return_empty, empty = self.apply_filter_policy(operation, ctx)
        if return_empty:
            return empty

        if payload is None and args and isinstance(args[0], dict):
            payload = args[0]

        method = self.method_map.get(operation)
        if method is None:
            raise LogicError(f"No HTTP method for SyncOperation.{operation.name}")

        if operation.is_write and self.provider.dry_run:
            logger.info(f"Dry run: {method} {client.url} not sent")
            return payload if payload is not None else {}

        logger.debug(f"{operation.name} {type_basename(self.entity)}: {method} {client.url}")
        try:
            return self._send(client, operation, method, payload)
        except NotFoundError as e:
            if operation == SyncOperation.READ and entity_id is not None:
                raise SyncEntityNotFound(self.provider, self.entity, entity_id, cause=e)
            raise

    def _send(self, client: HttpClient, operation: SyncOperation, method: str, payload: Any) -> Any:
        query = self.query
        if operation == SyncOperation.READ_LIST and method == "GET":
            return client.get_paginated(query)
        if operation == SyncOperation.READ_LIST and method == "POST":
            return client.post_paginated(payload, query)
        if method == "GET":
            return client.get(query)
        if method == "POST":
            return client.post(payload, query)
        if method == "PUT":
            return client.put(payload, query)
        if method == "PATCH":
            return client.patch(payload, query)
        if method == "DELETE":
            return client.delete(payload, query)
        raise LogicError(f"Invalid HTTP method for SyncOperation.{operation.name}: {method}")


__all__ = ["HttpSyncDefinition", "DEFAULT_METHOD_MAP"]
