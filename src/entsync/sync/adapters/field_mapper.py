"""Field mapper adapter for transforming backend records into entities.

This adapter turns backend dictionaries into SyncEntity instances:
- Key normalisation (camelCase/kebab-case -> snake_case, prefix stripping)
- Field, alias and timestamp handling
- Relationship handling: nested records become nested entities, bare ids
  become deferred placeholders resolved through the store
- Hydration of missing one-to-many relationships on new entities
- Unmatched keys kept in ``entity.meta``

A mapping closure is built once per record key signature and cached, so
records of the same shape are mapped without re-analysing their keys.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator

from ..domain.context import SyncContext
from ..domain.entities import Relationship, SyncEntity, parse_timestamp
from ..domain.enums import HydrationPolicy, ListConformity
from ..domain.naming import snake_case
from .deferred import DeferredEntity, DeferredRelationship

logger = logging.getLogger(__name__)

MapClosure = Callable[[dict[str, Any], SyncContext], SyncEntity]


@dataclass
class KeyTargets:
    """Where each backend key of a record signature goes."""

    id_key: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    relationships: dict[str, tuple[str, Relationship, bool]] = field(default_factory=dict)
    meta: list[str] = field(default_factory=list)


class SyncEntityMapper:
    """Maps backend records to entities of one type for one provider.

    Example:
        mapper = SyncEntityMapper(User, provider)
        user = mapper.map({"id": 1, "userName": "ann"}, ctx)
    """

    def __init__(self, entity_type: type[SyncEntity], provider):
        self.entity_type = entity_type
        self.provider = provider
        self._closures: dict[tuple[str, ...], MapClosure] = {}
        self._fields = set(entity_type.entity_fields())
        self._prefixes = entity_type.get_removable_prefixes()

    # ----------------------------------------
    # Key analysis
    # ----------------------------------------

    def normalise_key(self, key: str) -> str:
        """snake_case a key, strip removable prefixes and apply aliases."""
        name = snake_case(key)
        for prefix in self._prefixes:
            if name.startswith(prefix) and len(name) > len(prefix):
                stripped = name[len(prefix):]
                if stripped in self._fields or stripped in self.entity_type.field_aliases:
                    name = stripped
                    break
        return self.entity_type.field_aliases.get(name, name)

    def get_key_targets(self, keys: Iterable[str]) -> KeyTargets:
        targets = KeyTargets()
        relationships = self.entity_type.relationships
        claimed: set[str] = set()
        pending: list[tuple[str, str]] = []

        for key in keys:
            name = self.normalise_key(key)
            if name == "id":
                targets.id_key = key
            elif name in relationships:
                targets.relationships[key] = (name, relationships[name], False)
            elif name in self._fields:
                targets.fields[key] = name
            else:
                pending.append((key, name))
                continue
            claimed.add(name)

        # "author_id" -> author, "tag_ids" -> tags
        for key, name in pending:
            attr = None
            if name.endswith("_id"):
                attr = name[:-3]
            elif name.endswith("_ids"):
                attr = _plural_relationship(relationships, name[:-4])
            rel = relationships.get(attr) if attr else None
            if rel is not None and attr not in claimed and rel.many == name.endswith("_ids"):
                targets.relationships[key] = (attr, rel, True)
                claimed.add(attr)
            else:
                targets.meta.append(key)
        return targets

    # ----------------------------------------
    # Closures
    # ----------------------------------------

    def get_closure(self, keys: Iterable[str]) -> MapClosure:
        """Mapping closure for records with exactly these keys (cached)."""
        signature = tuple(keys)
        closure = self._closures.get(signature)
        if closure is None:
            closure = self._build_closure(self.get_key_targets(signature))
            self._closures[signature] = closure
        return closure

    def _build_closure(self, targets: KeyTargets) -> MapClosure:
        entity_type = self.entity_type
        provider = self.provider
        date_fields = set(entity_type.date_fields)
        present = {attr for attr, _, _ in targets.relationships.values()}
        missing_many = [
            (attr, rel) for attr, rel in entity_type.relationships.items()
            if rel.many and attr not in present
        ]

        def closure(record: dict[str, Any], ctx: SyncContext) -> SyncEntity:
            entity_id = record.get(targets.id_key) if targets.id_key else None
            store = provider.store if provider is not None else None

            entity = None
            if entity_id is not None and store is not None:
                store.register_entity_type(entity_type)
                entity = store.get_entity(provider.provider_id, entity_type, entity_id)
            is_new = entity is None
            if is_new:
                entity = entity_type()
                entity.provider = provider
            entity.id = entity_id

            for key, attr in targets.fields.items():
                value = record[key]
                if attr in date_fields:
                    value = parse_timestamp(value)
                setattr(entity, attr, value)
            for key in targets.meta:
                entity.meta[key] = record[key]

            if is_new and entity_id is not None and store is not None:
                store.entity(provider.provider_id, entity)

            for key, (attr, rel, by_id) in targets.relationships.items():
                self._apply_relationship(entity, attr, rel, record[key], ctx)

            if is_new and entity_id is not None and provider is not None:
                self._hydrate(entity, missing_many, ctx)

            return entity

        return closure

    def _apply_relationship(self, entity: SyncEntity, attr: str, rel: Relationship, value: Any, ctx: SyncContext) -> None:
        target = rel.target_type
        provider = self.provider
        is_list = isinstance(value, (list, tuple))

        if value is None or is_list != rel.many or provider is None:
            setattr(entity, attr, value)
            return

        # References to types this provider does not service stay as ids
        if not provider.handles(target) and not isinstance(value, dict) and not (
            rel.many and value and isinstance(value[0], dict)
        ):
            setattr(entity, attr, value)
            return

        if rel.many:
            if value and _is_identifier(value[0]):
                DeferredEntity.defer_list(
                    provider, ctx.push_with_recursion_check(entity), target, value, into=(entity, attr)
                )
                return
            nested_ctx = ctx.push(entity)
            mapper = provider.get_mapper(target)
            setattr(entity, attr, [
                item if isinstance(item, SyncEntity) else mapper.map(item, nested_ctx)
                for item in value
            ])
            return

        if _is_identifier(value):
            DeferredEntity.defer(
                provider, ctx.push_with_recursion_check(entity), target, value, into=(entity, attr)
            )
            return

        if isinstance(value, dict):
            setattr(entity, attr, provider.get_mapper(target).map(value, ctx.push(entity)))
            return

        setattr(entity, attr, value)

    def _hydrate(self, entity: SyncEntity, missing: list[tuple[str, Relationship]], ctx: SyncContext) -> None:
        provider = self.provider
        for attr, rel in missing:
            target = rel.target_type
            if not provider.handles(target):
                continue
            policy = ctx.get_hydration_policy(target)
            if policy == HydrationPolicy.SUPPRESS:
                continue
            DeferredRelationship.defer(
                provider,
                ctx.push_with_recursion_check(entity),
                target,
                self.entity_type,
                attr,
                entity.id,
                into=(entity, attr),
                hydration_policy=policy,
            )

    # ----------------------------------------
    # Mapping
    # ----------------------------------------

    def map(self, record: dict[str, Any], ctx: SyncContext) -> SyncEntity:
        """Map one record to an entity."""
        return self.get_closure(record.keys())(record, ctx)

    def builder(self, conformity: ListConformity = ListConformity.NONE) -> MapClosure:
        """Stateful mapping function for one batch of records.

        With PARTIAL or COMPLETE conformity, the closure built for the first
        record is reused. COMPLETE skips the key signature check entirely;
        PARTIAL falls back to a per-record closure when keys differ.
        """
        if conformity == ListConformity.NONE:
            return self.map

        first: list[tuple[tuple[str, ...], MapClosure]] = []

        def build(record: dict[str, Any], ctx: SyncContext) -> SyncEntity:
            if not first:
                signature = tuple(record.keys())
                first.append((signature, self.get_closure(signature)))
            signature, closure = first[0]
            if conformity == ListConformity.PARTIAL and tuple(record.keys()) != signature:
                return self.map(record, ctx)
            return closure(record, ctx)

        return build

    def map_list(
        self,
        records: Iterable[dict[str, Any]],
        ctx: SyncContext,
        conformity: ListConformity = ListConformity.NONE,
    ) -> Iterator[SyncEntity]:
        """Map records lazily."""
        build = self.builder(conformity)
        for record in records:
            yield build(record, ctx)


def _plural_relationship(relationships: dict[str, Relationship], singular: str) -> str:
    """Relationship named by the plural of ``singular``, else ``singular`` itself."""
    candidates = [singular + "s", singular + "es"]
    if singular.endswith("y"):
        candidates.append(singular[:-1] + "ies")
    for name in candidates:
        if name in relationships:
            return name
    return singular


def _is_identifier(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


__all__ = ["SyncEntityMapper", "KeyTargets"]
