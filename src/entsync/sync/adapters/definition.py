"""Operation definitions binding one entity type to one provider.

A definition answers one question: given a SyncOperation, what callable
performs it? The answer is resolved once per operation and cached:

1. An override passed to the constructor, called as
   ``override(definition, operation, ctx, *args)``
2. A method the provider declares for the exact (entity type, operation)
   pair with ``@declared_operation``
3. READ via READ_LIST, when ``read_from_read_list`` is set
4. None, when the operation is not in ``operations``
5. The closure generated by the subclass (``_get_closure``)

Closures are called as ``closure(ctx, *args)``.
"""

import copy
import logging
from abc import abstractmethod
from typing import Any, Callable, Iterable, Iterator

from ...api.exceptions import (
    FilterPolicyViolation,
    InvalidEntitySource,
    LogicError,
    SyncEntityNotFound,
)
from ..domain.context import SyncContext
from ..domain.entities import SyncEntity
from ..domain.enums import EntitySource, FilterPolicy, ListConformity, SyncOperation
from ..domain.naming import type_basename
from ..domain.ports import ISyncDefinition
from ..domain.serialization import serialize
from .pipeline import Pipeline, SyncPipelineArgument

logger = logging.getLogger(__name__)

Override = Callable[..., Any]
KeyMap = dict[str, str | list[str]]


def key_map_stage(key_map: KeyMap, add_unmapped: bool = True) -> Callable[[dict, Any], dict]:
    """Pipeline stage renaming backend keys to entity keys.

    A backend key may map to several entity keys. Unmapped keys are kept
    unless ``add_unmapped`` is False.
    """

    def stage(record: dict[str, Any], arg: Any) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in record.items():
            targets = key_map.get(key)
            if targets is None:
                if add_unmapped:
                    result[key] = value
                continue
            for target in [targets] if isinstance(targets, str) else targets:
                result[target] = value
        return result

    return stage


class SyncDefinition(ISyncDefinition):
    """Base definition: operation precedence, filter policy and pipelines.

    Attributes:
        entity: Entity type being serviced
        provider: Provider servicing the entity
        operations: Operations the generated closures implement
        conformity: How uniform list responses are
        filter_policy: What to do with unclaimed filters
        overrides: Closures that take precedence over everything else
        key_map: Backend key -> entity key(s), applied before mapping
        pipeline_from_backend: Stages run on records before mapping
        pipeline_to_backend: Stages run on serialized entities
        read_from_read_list: Perform READ by scanning READ_LIST
        return_entities_from: Source of entities returned by writes
    """

    def __init__(
        self,
        entity: type[SyncEntity],
        provider,
        operations: Iterable[SyncOperation] = (),
        conformity: ListConformity = ListConformity.NONE,
        filter_policy: FilterPolicy | None = None,
        overrides: dict[SyncOperation | tuple[SyncOperation, ...], Override] | None = None,
        key_map: KeyMap | None = None,
        pipeline_from_backend: Pipeline | None = None,
        pipeline_to_backend: Pipeline | None = None,
        read_from_read_list: bool = False,
        return_entities_from: EntitySource | None = None,
    ):
        if filter_policy is None:
            filter_policy = provider.get_filter_policy() or FilterPolicy.THROW_EXCEPTION

        self.entity = entity
        self.provider = provider
        self.conformity = conformity
        self.filter_policy = filter_policy
        self.key_map = key_map
        self.pipeline_from_backend = pipeline_from_backend
        self.pipeline_to_backend = pipeline_to_backend
        self.read_from_read_list = read_from_read_list
        self.return_entities_from = return_entities_from

        self.overrides: dict[SyncOperation, Override] = {}
        for ops, override in (overrides or {}).items():
            for op in ops if isinstance(ops, tuple) else (ops,):
                if op in self.overrides:
                    raise LogicError(
                        f"Too many overrides for SyncOperation.{op.name} on "
                        f"{type_basename(entity)}: {type_basename(provider)}"
                    )
                self.overrides[op] = override

        self.operations = frozenset(operations) | frozenset(self.overrides)

        self._closures: dict[SyncOperation, Callable | None] = {}
        self._without_overrides: "SyncDefinition | None" = None

    def __copy__(self):
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone._closures = {}
        clone._without_overrides = None
        return clone

    def _with(self, **changes) -> "SyncDefinition":
        clone = copy.copy(self)
        for name, value in changes.items():
            setattr(clone, name, value)
        return clone

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {type_basename(self.entity)} via {type_basename(self.provider)}>"

    # ----------------------------------------
    # Closure resolution
    # ----------------------------------------

    @abstractmethod
    def _get_closure(self, operation: SyncOperation) -> Callable | None:
        """Generated closure for an operation in ``self.operations``."""
        ...

    def get_sync_operation_closure(self, operation: SyncOperation) -> Callable | None:
        if operation in self._closures:
            return self._closures[operation]
        closure = self._resolve_closure(operation)
        self._closures[operation] = closure
        return closure

    def _resolve_closure(self, operation: SyncOperation) -> Callable | None:
        override = self.overrides.get(operation)
        if override is not None:
            def run_override(ctx: SyncContext, *args):
                return override(self, operation, self._bind_filter_policy(operation, ctx), *args)
            return run_override

        declared = self.provider.get_declared_operation(self.entity, operation)
        if declared is not None:
            def run_declared(ctx: SyncContext, *args):
                return declared(self._bind_filter_policy(operation, ctx), *args)
            return run_declared

        if operation == SyncOperation.READ and self.read_from_read_list:
            read_list = self.get_sync_operation_closure(SyncOperation.READ_LIST)
            if read_list is not None:
                def read_via_list(ctx: SyncContext, entity_id, *args):
                    for entity in read_list(ctx, *args):
                        if entity is not None and str(entity.id) == str(entity_id):
                            return entity
                    raise SyncEntityNotFound(self.provider, self.entity, entity_id)
                return read_via_list

        if operation not in self.operations:
            return None

        return self._get_closure(operation)

    def get_fallback_closure(self, operation: SyncOperation) -> Callable | None:
        """Closure for ``operation`` ignoring overrides.

        Lets an override delegate to the behaviour it replaces.
        """
        if self._without_overrides is None:
            clone = copy.copy(self)
            clone.overrides = {}
            self._without_overrides = clone
        return self._without_overrides.get_sync_operation_closure(operation)

    # ----------------------------------------
    # Clones
    # ----------------------------------------

    def with_read_from_read_list(self, read_from_read_list: bool = True) -> "SyncDefinition":
        return self._with(read_from_read_list=read_from_read_list)

    def with_conformity(self, conformity: ListConformity) -> "SyncDefinition":
        return self._with(conformity=conformity)

    def with_filter_policy(self, filter_policy: FilterPolicy) -> "SyncDefinition":
        return self._with(filter_policy=filter_policy)

    def with_return_entities_from(self, source: EntitySource | None) -> "SyncDefinition":
        return self._with(return_entities_from=source)

    # ----------------------------------------
    # Filter policy
    # ----------------------------------------

    def apply_filter_policy(self, operation: SyncOperation, ctx: SyncContext) -> tuple[bool, Any]:
        """Enforce the filter policy on filters ``ctx`` has not claimed.

        Returns:
            (return_empty, empty) where empty is [] for list operations and
            None otherwise

        Raises:
            FilterPolicyViolation: If filters remain and the policy is
                THROW_EXCEPTION
            LogicError: If the policy is FILTER
        """
        filters = ctx.get_filters()
        if self.filter_policy == FilterPolicy.IGNORE or not filters:
            return False, None

        if self.filter_policy == FilterPolicy.THROW_EXCEPTION:
            raise FilterPolicyViolation(self.provider, self.entity, filters)

        if self.filter_policy == FilterPolicy.RETURN_EMPTY:
            logger.debug(
                f"Unclaimed filters for {type_basename(self.entity)}, returning empty: {sorted(filters)}"
            )
            return True, [] if operation.is_list else None

        raise LogicError(f"FilterPolicy invalid or not implemented: {self.filter_policy}")

    def _bind_filter_policy(self, operation: SyncOperation, ctx: SyncContext) -> SyncContext:
        return ctx.with_filter_policy_callback(lambda c: self.apply_filter_policy(operation, c))

    def check_entity_source(self, operation: SyncOperation) -> EntitySource:
        """Where entities returned by a write come from.

        Raises:
            InvalidEntitySource: If ``return_entities_from`` is unset or
                unknown
        """
        source = self.return_entities_from
        if source not in (EntitySource.PROVIDER_OUTPUT, EntitySource.SYNC_OPERATION):
            raise InvalidEntitySource(self.provider, self.entity, operation, source)
        return source

    # ----------------------------------------
    # Pipelines
    # ----------------------------------------

    def get_pipeline_from_backend(self) -> Pipeline:
        """Records -> entities: custom stages, key map, then the field mapper.

        The mapping closure is chosen on the first record, so reuse one
        pipeline per batch of records.
        """
        pipeline = self.pipeline_from_backend or Pipeline()
        if self.key_map is not None:
            pipeline = pipeline.through(key_map_stage(self.key_map))

        build = self.provider.get_mapper(self.entity).builder(self.conformity)
        state: dict[str, SyncContext] = {}

        def to_entity(record: dict[str, Any], arg: SyncPipelineArgument) -> SyncEntity:
            ctx = state.get("ctx")
            if ctx is None:
                ctx = state["ctx"] = arg.ctx.with_conformity(self.conformity)
            return build(record, ctx)

        return pipeline.then(to_entity)

    def get_pipeline_to_backend(self) -> Pipeline:
        """Entities -> records: serialization, then custom stages."""
        store = self.provider.store

        def from_entity(payload: Any, arg: SyncPipelineArgument) -> Any:
            if isinstance(payload, SyncEntity):
                return serialize(payload, store=store)
            return payload

        pipeline = Pipeline((from_entity,))
        for stage in (self.pipeline_to_backend.stages if self.pipeline_to_backend else ()):
            pipeline = pipeline.through(stage)
        return pipeline

    def entities_from_backend(
        self,
        records: Iterable[dict[str, Any]],
        operation: SyncOperation,
        ctx: SyncContext,
        args: tuple = (),
    ) -> Iterator[SyncEntity]:
        """Stream records through a fresh from-backend pipeline."""
        arg = SyncPipelineArgument(operation, ctx, args)
        return self.get_pipeline_from_backend().stream(records, arg)


__all__ = ["SyncDefinition", "key_map_stage", "Override", "KeyMap"]
