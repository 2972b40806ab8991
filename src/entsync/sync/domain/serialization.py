"""Entity graph serialization.

Converts an entity (and everything reachable from it) to plain dicts,
lists and scalars under a set of SyncSerializeRules.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from ...api.exceptions import UnexpectedValueError
from .entities import SyncEntity
from .enums import EntityState
from .ports import IDeferredEntity, IDeferredRelationship
from .serialize_rules import SyncSerializeRules


def entity_to_dict(entity: SyncEntity, rules: SyncSerializeRules) -> dict[str, Any]:
    """Shallow dict of an entity's data attributes (nested values untouched)."""
    entity.state |= EntityState.SERIALIZING
    try:
        data = {name: getattr(entity, name) for name in type(entity).entity_fields()}
        if rules.remove_canonical_id:
            data.pop("canonical_id", None)
        if rules.include_meta:
            for key, value in entity.meta.items():
                data.setdefault(key, value)
        return data
    finally:
        entity.state &= ~EntityState.SERIALIZING


class SyncSerializer:
    """Walks an entity graph applying remove/replace rules.

    Example:
        data = SyncSerializer(User.get_serialize_rules()).serialize(user)
    """

    def __init__(self, rules: SyncSerializeRules, store=None):
        self.rules = rules
        self.store = store

    def serialize(self, node: Any) -> Any:
        return self._serialize(node, [], frozenset(), False)

    def _serialize(self, node: Any, path: list[str], parents: frozenset, ruled: bool) -> Any:
        rules = self.rules
        if rules.max_depth and len(path) > rules.max_depth:
            raise UnexpectedValueError("In too deep: " + ".".join(path))

        if isinstance(node, (datetime, date)):
            return node.isoformat()

        if isinstance(node, Enum):
            return node.value

        # Deferred entities are never resolved during serialization
        if isinstance(node, IDeferredEntity):
            return node.to_link(self.store)

        if isinstance(node, IDeferredRelationship):
            return None

        cls = None
        if isinstance(node, SyncEntity):
            if path and rules.for_sync_store:
                return node.to_link(self.store)
            if rules.detect_recursion:
                if id(node) in parents:
                    link = node.to_link(self.store)
                    link["@why"] = "Circular reference detected"
                    return link
                parents = parents | {id(node)}
            cls = type(node)
            node = entity_to_dict(node, rules)
            ruled = True

        if isinstance(node, dict):
            return self._serialize_dict(node, cls, path, parents, ruled)

        if isinstance(node, (list, tuple)):
            return self._serialize_list(list(node), cls, path, parents, ruled)

        return node

    def _serialize_dict(self, node: dict, cls, path, parents, ruled) -> dict:
        if ruled:
            node = self._apply_rules(dict(node), cls, path)

        result = {}
        for key, child in node.items():
            if child is None or isinstance(child, (str, int, float, bool)):
                result[key] = child
                continue
            result[key] = self._serialize(child, path + [str(key)], parents, ruled)

        if self.rules.sort_by_key:
            result = {key: result[key] for key in sorted(result, key=str)}
        return result

    def _serialize_list(self, node: list, cls, path, parents, ruled) -> list:
        if ruled:
            replace = self.rules.get_replace_in(cls, path).get("[]")
            if replace is not None:
                _, _, callback = replace
                item_path = self._list_path(path)
                if callback:
                    node = [callback(child, self.store) for child in node]
                else:
                    node = [self._serialize_id(child, item_path) for child in node]

        item_path = self._list_path(path)
        return [
            child if child is None or isinstance(child, (str, int, float, bool))
            else self._serialize(child, item_path, parents, ruled)
            for child in node
        ]

    @staticmethod
    def _list_path(path: list[str]) -> list[str]:
        if not path:
            return ["[]"]
        return path[:-1] + [path[-1] + "[]"]

    def _apply_rules(self, node: dict, cls, path: list[str]) -> dict:
        remove = self.rules.get_remove_from(cls, path)
        replace = self.rules.get_replace_in(cls, path)

        # Keys with a replace rule are never removed
        remove = remove - set(replace)
        if remove:
            node = {key: value for key, value in node.items() if key not in remove}

        for key, (_, new_key, callback) in replace.items():
            if key == "[]" or key not in node:
                continue
            if new_key is not None and new_key != key:
                node = {(new_key if k == key else k): v for k, v in node.items()}
                key = new_key
            if callback:
                node[key] = callback(node[key], self.store)
            else:
                node[key] = self._serialize_id(node[key], path + [str(key)])
        return node

    @staticmethod
    def _serialize_id(value: Any, path: list[str]) -> Any:
        if value is None:
            return None
        if isinstance(value, (list, tuple)) and all(
            isinstance(v, (SyncEntity, IDeferredEntity)) for v in value
        ):
            return [_id_of(v) for v in value]
        if isinstance(value, (SyncEntity, IDeferredEntity)):
            return _id_of(value)
        raise UnexpectedValueError(
            "Cannot replace (not a SyncEntity): " + ".".join(path)
        )


def _id_of(value: Any) -> Any:
    if isinstance(value, IDeferredEntity):
        return value.entity_id
    return value.id


def serialize(entity: Any, rules: SyncSerializeRules | None = None, store=None) -> Any:
    """Serialize an entity (or list of entities) with its default or given rules.

    Args:
        entity: Entity, list of entities, or a plain structure
        rules: Rules to use (default: the entity type's own rules)
        store: Store used to build type URIs for links

    Raises:
        UnexpectedValueError: If the graph is nested too deeply or a replace
            rule targets a value that is not an entity
    """
    if rules is None:
        sample = entity[0] if isinstance(entity, (list, tuple)) and entity else entity
        if not isinstance(sample, SyncEntity):
            return SyncSerializer(SyncSerializeRules(SyncEntity), store).serialize(entity)
        rules = type(sample).get_serialize_rules()
    return SyncSerializer(rules, store).serialize(entity)


__all__ = ["SyncSerializer", "entity_to_dict", "serialize"]
