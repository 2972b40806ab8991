"""Entity Provider Use Case - Runs sync operations on one entity type.

This use case is the front door of the engine. It binds an entity type to
a provider and its definition, and runs operations through the definition's
closures while applying the context's policies:

1. Look the entity up in the store first (READ only, unless online-only)
2. Derive filters from the operation's arguments (SyncContext.with_args)
3. Call the closure resolved by the definition
4. Resolve deferred entities and relationships per the deferral policy

Policy setters mutate this object's context and return ``self`` so they can
be chained:

    posts = provider.with_entity(Post).resolve_late().do_not_hydrate().get_list_a()
"""

import logging
from typing import Any, Iterable, Iterator

from ...api.exceptions import LogicError, OperationNotImplemented, SyncEntityNotFound
from ..adapters.resolver import SyncEntityFuzzyResolver, SyncEntityResolver, TextComparison
from ..domain.context import SyncContext
from ..domain.entities import SyncEntity
from ..domain.enums import DeferralPolicy, HydrationPolicy, SyncOperation
from ..domain.naming import type_basename

logger = logging.getLogger(__name__)


class SyncEntityProvider:
    """Runs sync operations for one entity type against one provider.

    Example:
        users = provider.with_entity(User)
        user = users.get(1)
        for user in users.get_list({"group": 7}):
            ...
    """

    def __init__(self, entity_type: type[SyncEntity], provider, definition, ctx: SyncContext | None = None):
        if not (isinstance(entity_type, type) and issubclass(entity_type, SyncEntity)):
            raise LogicError(f"Not a SyncEntity subclass: {entity_type!r}")
        if not provider.handles(entity_type):
            raise LogicError(f"{type_basename(provider)} does not service {type_basename(entity_type)}")

        self.entity_type = entity_type
        self.provider = provider
        self.definition = definition
        self.ctx = ctx if ctx is not None else provider.get_context()
        self.store = provider.store

    def __repr__(self) -> str:
        return f"<SyncEntityProvider {type_basename(self.entity_type)} via {type_basename(self.provider)}>"

    # ----------------------------------------
    # Running operations
    # ----------------------------------------

    def _run(self, operation: SyncOperation, *args) -> Any:
        closure = self.definition.get_sync_operation_closure(operation)
        if closure is None:
            raise OperationNotImplemented(self.provider, self.entity_type, operation)
        return closure(self.ctx.with_args(operation, *args), *args)

    def run(self, operation: SyncOperation, *args) -> Any:
        """Run an operation, returning an entity or an iterator of entities.

        Raises:
            OperationNotImplemented: If the definition has no closure for
                ``operation``
        """
        from_checkpoint = self.store.deferral_checkpoint
        policy = self.ctx.deferral_policy

        if not operation.is_list:
            result = self._run(operation, *args)
            if policy == DeferralPolicy.RESOLVE_LATE:
                self.store.resolve_deferred(from_checkpoint)
            return result

        if policy == DeferralPolicy.RESOLVE_LATE:
            return self._resolve_after(from_checkpoint, operation, *args)

        result = self._run(operation, *args)
        return iter(result) if result is not None else iter(())

    def _resolve_after(self, from_checkpoint: int, operation: SyncOperation, *args) -> Iterator[SyncEntity]:
        yield from self._run(operation, *args) or ()
        self.store.resolve_deferred(from_checkpoint)

    def run_a(self, operation: SyncOperation, *args) -> list[SyncEntity]:
        """Run a list operation and collect its results.

        Raises:
            LogicError: If ``operation`` is not a list operation
        """
        if not operation.is_list:
            raise LogicError(f"Not a list operation: SyncOperation.{operation.name}")

        from_checkpoint = self.store.deferral_checkpoint
        result = list(self._run(operation, *args) or ())
        if self.ctx.deferral_policy == DeferralPolicy.RESOLVE_LATE:
            self.store.resolve_deferred(from_checkpoint)
        return result

    # ----------------------------------------
    # Single entities
    # ----------------------------------------

    def create(self, entity: SyncEntity, *args) -> SyncEntity:
        return self.run(SyncOperation.CREATE, entity, *args)

    def get(self, entity_id: Any = None, *args) -> SyncEntity | None:
        """Get an entity by id, from the store when the context allows it.

        Raises:
            SyncEntityNotFound: If the context is offline-only and the store
                has no such entity
        """
        offline = self.ctx.offline_mode
        if offline is not False and entity_id is not None:
            entity = self.store.get_entity(self.provider.provider_id, self.entity_type, entity_id)
            if entity is not None:
                return entity
            if offline:
                raise SyncEntityNotFound(self.provider, self.entity_type, entity_id)
        return self.run(SyncOperation.READ, entity_id, *args)

    def update(self, entity: SyncEntity, *args) -> SyncEntity:
        return self.run(SyncOperation.UPDATE, entity, *args)

    def delete(self, entity: SyncEntity, *args) -> SyncEntity:
        return self.run(SyncOperation.DELETE, entity, *args)

    # ----------------------------------------
    # Lists
    # ----------------------------------------

    def create_list(self, entities: Iterable[SyncEntity], *args) -> Iterator[SyncEntity]:
        return self.run(SyncOperation.CREATE_LIST, entities, *args)

    def get_list(self, *args) -> Iterator[SyncEntity]:
        return self.run(SyncOperation.READ_LIST, *args)

    def update_list(self, entities: Iterable[SyncEntity], *args) -> Iterator[SyncEntity]:
        return self.run(SyncOperation.UPDATE_LIST, entities, *args)

    def delete_list(self, entities: Iterable[SyncEntity], *args) -> Iterator[SyncEntity]:
        return self.run(SyncOperation.DELETE_LIST, entities, *args)

    def create_list_a(self, entities: Iterable[SyncEntity], *args) -> list[SyncEntity]:
        return self.run_a(SyncOperation.CREATE_LIST, entities, *args)

    def get_list_a(self, *args) -> list[SyncEntity]:
        return self.run_a(SyncOperation.READ_LIST, *args)

    def update_list_a(self, entities: Iterable[SyncEntity], *args) -> list[SyncEntity]:
        return self.run_a(SyncOperation.UPDATE_LIST, entities, *args)

    def delete_list_a(self, entities: Iterable[SyncEntity], *args) -> list[SyncEntity]:
        return self.run_a(SyncOperation.DELETE_LIST, entities, *args)

    # ----------------------------------------
    # Context
    # ----------------------------------------

    def online(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.online()
        return self

    def offline(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.offline()
        return self

    def offline_first(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.offline_first()
        return self

    def do_not_resolve(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.with_deferral_policy(DeferralPolicy.DO_NOT_RESOLVE)
        return self

    def resolve_early(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.with_deferral_policy(DeferralPolicy.RESOLVE_EARLY)
        return self

    def resolve_late(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.with_deferral_policy(DeferralPolicy.RESOLVE_LATE)
        return self

    def do_not_hydrate(self) -> "SyncEntityProvider":
        self.ctx = self.ctx.with_hydration_policy(HydrationPolicy.SUPPRESS)
        return self

    def hydrate(
        self,
        policy: HydrationPolicy = HydrationPolicy.EAGER,
        entity_type: type[SyncEntity] | None = None,
        depth: int | list[int] | None = None,
    ) -> "SyncEntityProvider":
        self.ctx = self.ctx.with_hydration_policy(policy, entity_type, depth)
        return self

    # ----------------------------------------
    # Resolvers
    # ----------------------------------------

    def get_resolver(
        self,
        name_property: str | None = None,
        algorithm: TextComparison = TextComparison.SAME,
        uncertainty_threshold: float | dict | None = None,
        weight_property: str | None = None,
        require_one_match: bool = False,
    ) -> SyncEntityResolver | SyncEntityFuzzyResolver:
        """Resolver mapping names to entities of this type.

        An exact SyncEntityResolver is returned when only a name property is
        given; anything else returns a SyncEntityFuzzyResolver.
        """
        if (
            name_property is not None
            and algorithm == TextComparison.SAME
            and weight_property is None
            and not require_one_match
        ):
            return SyncEntityResolver(self, name_property)
        return SyncEntityFuzzyResolver(
            self,
            name_property,
            algorithm,
            uncertainty_threshold,
            weight_property,
            require_one_match,
        )

    def id_from_name_or_id(
        self,
        name_or_id: Any,
        name_property: str | None = None,
        uncertainty_threshold: float | None = None,
    ) -> Any:
        """Return ``name_or_id`` if it is a valid id, else the id of the entity it names.

        Raises:
            SyncEntityNotFound: If no entity has that name
        """
        if name_or_id is None or self.provider.is_valid_identifier(name_or_id, self.entity_type):
            return name_or_id

        if uncertainty_threshold is None:
            entity = SyncEntityResolver(self, name_property).get_by_name(str(name_or_id))
        else:
            entity = self.get_resolver(
                name_property,
                TextComparison.SAME | TextComparison.CONTAINS | TextComparison.SIMILARITY | TextComparison.NORMALISE,
                uncertainty_threshold,
                require_one_match=True,
            ).get_by_name(str(name_or_id))

        if entity is None:
            raise SyncEntityNotFound(self.provider, self.entity_type, name_or_id)
        return entity.id


__all__ = ["SyncEntityProvider"]
