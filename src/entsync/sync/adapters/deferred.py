"""Placeholders for entities and relationships that have not been loaded.

A placeholder stands in a slot (an attribute of an entity, or an index of a
list) until the entity it refers to is registered with the store, at which
point the store delivers the entity into that slot. Slots are described
explicitly:

    into=(post, "author")       setattr(post, "author", entity)
    into=(authors, 2)           authors[2] = entity
    callback=lambda e: ...      anything else
"""

import logging
from typing import Any, Callable, Iterable

from ...api.exceptions import LogicError
from ..domain.context import SyncContext
from ..domain.enums import HydrationPolicy
from ..domain.naming import type_basename, type_snake_name
from ..domain.ports import IDeferredEntity, IDeferredRelationship

logger = logging.getLogger(__name__)

Slot = tuple[Any, Any]


def _deliver(into: Slot | None, callback: Callable | None, value: Any) -> None:
    if callback is not None:
        callback(value)
        return
    if into is None:
        return
    owner, key = into
    if isinstance(owner, (list, dict)):
        owner[key] = value
    else:
        setattr(owner, key, value)


class DeferredEntity(IDeferredEntity):
    """Stands in for an entity of ``entity_type`` with ``entity_id``."""

    def __init__(
        self,
        provider,
        ctx: SyncContext | None,
        entity_type: type,
        entity_id: Any,
        into: Slot | None = None,
        callback: Callable | None = None,
    ):
        self.provider = provider
        self.ctx = ctx
        self.entity_type = entity_type
        self.entity_id = entity_id
        self._into = into
        self._callback = callback
        self._resolved = None

        if callback is None:
            _deliver(into, None, self)

    @classmethod
    def defer(
        cls,
        provider,
        ctx: SyncContext | None,
        entity_type: type,
        entity_id: Any,
        into: Slot | None = None,
        callback: Callable | None = None,
    ) -> "DeferredEntity":
        """Create a placeholder and file it with the provider's store.

        If the store already holds the entity, it is delivered at once.
        """
        deferred = cls(provider, ctx, entity_type, entity_id, into, callback)
        store = provider.store
        store.register_entity_type(entity_type)
        store.defer_entity(provider.provider_id, entity_type, entity_id, deferred)
        return deferred

    @classmethod
    def defer_list(
        cls,
        provider,
        ctx: SyncContext | None,
        entity_type: type,
        entity_ids: Iterable[Any],
        into: Slot | None = None,
        callback: Callable | None = None,
    ) -> list[Any]:
        """Defer several entities, delivering a list into ``into``.

        Each list item is a placeholder until its entity is registered.
        With ``callback``, each entity is passed to it individually instead.
        """
        if callback is not None:
            for entity_id in entity_ids:
                cls.defer(provider, ctx, entity_type, entity_id, callback=callback)
            return []

        items: list[Any] = []
        for index, entity_id in enumerate(entity_ids):
            items.append(None)
            cls.defer(provider, ctx, entity_type, entity_id, into=(items, index))
        _deliver(into, None, items)
        return items

    @property
    def is_resolved(self) -> bool:
        return self._resolved is not None

    def resolve(self):
        """Return the entity, fetching it if the store does not have it yet."""
        if self._resolved is not None:
            return self._resolved
        return self.provider.with_entity(self.entity_type, self.ctx).get(self.entity_id)

    def replace(self, entity) -> None:
        """Deliver ``entity`` to the placeholder's slot.

        Raises:
            LogicError: If the placeholder was already resolved
        """
        if self._resolved is not None:
            raise LogicError("Entity already resolved")
        self._resolved = entity
        _deliver(self._into, self._callback, entity)

    def to_link(self, store=None) -> dict[str, Any]:
        store = store or self.provider.store
        return {
            "@type": self.entity_type.type_uri(store),
            "@id": self.entity_id,
        }

    def uri(self, store=None) -> str:
        link = self.to_link(store)
        return f"{link['@type']}/{link['@id']}"

    def __getattr__(self, name: str):
        # Attribute access on a placeholder loads the entity
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.resolve(), name)

    def __repr__(self) -> str:
        return f"<DeferredEntity {type_basename(self.entity_type)} id={self.entity_id!r}>"


class DeferredRelationship(IDeferredRelationship):
    """Stands in for the entities of ``entity_type`` related to one entity.

    Attributes:
        entity_type: Type of the related entities
        for_entity_type: Type of the entity that owns the relationship
        for_entity_property: Attribute the entities are delivered into
        for_entity_id: Id of the owning entity
        filter: Filter passed to get_list_a (default: {owner_type: owner_id})
        hydration_policy: Policy in force when the relationship was deferred
    """

    def __init__(
        self,
        provider,
        ctx: SyncContext | None,
        entity_type: type,
        for_entity_type: type,
        for_entity_property: str,
        for_entity_id: Any,
        filter: dict[str, Any] | None = None,
        into: Slot | None = None,
        callback: Callable | None = None,
        hydration_policy: HydrationPolicy = HydrationPolicy.DEFER,
    ):
        self.provider = provider
        self.ctx = ctx
        self.entity_type = entity_type
        self.for_entity_type = for_entity_type
        self.for_entity_property = for_entity_property
        self.for_entity_id = for_entity_id
        self.filter = filter
        self.hydration_policy = hydration_policy
        self._into = into
        self._callback = callback
        self._resolved: list[Any] | None = None

        if callback is None:
            _deliver(into, None, self)

    @classmethod
    def defer(cls, provider, ctx, entity_type, for_entity_type, for_entity_property, for_entity_id, **kwargs) -> "DeferredRelationship":
        """Create a relationship placeholder and file it with the store."""
        deferred = cls(
            provider, ctx, entity_type, for_entity_type, for_entity_property, for_entity_id, **kwargs
        )
        store = provider.store
        store.register_entity_type(entity_type)
        store.register_entity_type(for_entity_type)
        store.defer_relationship(
            provider.provider_id,
            entity_type,
            for_entity_type,
            for_entity_property,
            for_entity_id,
            deferred,
        )
        return deferred

    @property
    def is_resolved(self) -> bool:
        return self._resolved is not None

    def resolve(self) -> list[Any]:
        """Fetch the related entities (once) and deliver them."""
        if self._resolved is not None:
            return self._resolved
        query = self.filter or {type_snake_name(self.for_entity_type): self.for_entity_id}
        logger.debug(
            f"Resolving {type_basename(self.for_entity_type)}.{self.for_entity_property} "
            f"for {self.for_entity_id}"
        )
        entities = self.provider.with_entity(self.entity_type, self.ctx).get_list_a(query)
        self.replace(entities)
        return self._resolved

    def replace(self, entities: Iterable[Any]) -> None:
        if self._resolved is not None:
            raise LogicError("Relationship already resolved")
        self._resolved = list(entities)
        _deliver(self._into, self._callback, self._resolved)

    def __iter__(self):
        return iter(self.resolve())

    def __len__(self) -> int:
        return len(self.resolve())

    def __repr__(self) -> str:
        return (
            f"<DeferredRelationship {type_basename(self.for_entity_type)}"
            f".{self.for_entity_property} id={self.for_entity_id!r}>"
        )


__all__ = ["DeferredEntity", "DeferredRelationship"]
