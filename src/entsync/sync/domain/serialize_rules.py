"""Instructions for serializing nested sync entities.

Rules in ``remove`` and ``replace`` target paths in the serialized graph:

    rules = SyncSerializeRules(
        User,
        remove=[".manager.org_unit"],
        replace=[(".posts[]", None, lambda post, store: post.title)],
        remove_from={OrgUnit: ["users"]},
        replace_in={User: [("org_unit", "org_unit_id")]},
    )

Path rules act on particular nodes (``.manager.org_unit`` is the org unit
of the user's manager only); class rules act on every instance of a class
found anywhere in the graph. ``[]`` addresses every item of a list. When
several rules target the same key, path rules win over class rules and
later rules win over earlier ones.

A replace rule is a key, or a tuple of ``(key, new_key, callback)`` where
``new_key`` and ``callback`` may be None. The callback receives
``(value, store)``; without one, entities are replaced with their ids.
"""

import copy
import re
from typing import Any, Callable, Iterable

from ...api.exceptions import LogicError
from .naming import snake_case

_SEGMENT = re.compile(r"[^\].\[]+")

Rule = tuple[str, Any, Callable | None]


def _normalise_target(target: str) -> str:
    return _SEGMENT.sub(lambda m: snake_case(m.group(0)), target)


def _to_rule(rule: Any) -> Rule:
    if isinstance(rule, str):
        return (_normalise_target(rule), None, None)
    if isinstance(rule, (tuple, list)) and rule and isinstance(rule[0], str):
        padded = tuple(rule) + (None, None)
        new_key = padded[1]
        if isinstance(new_key, str):
            new_key = snake_case(new_key)
        return (_normalise_target(padded[0]), new_key, padded[2])
    raise LogicError(f"Invalid serialization rule: {rule!r}")


def _rule_path(target: str) -> str:
    """Everything but the last component of a rule target."""
    if target.endswith("[]"):
        return target[:-2] or "."
    return target[: target.rfind(".")] or "."


def _rule_key(target: str) -> str:
    """The last component of a rule target."""
    if target.endswith("[]"):
        return "[]"
    return target[target.rfind(".") + 1:]


def _flatten(path_rules: Iterable, class_rules: dict | None) -> tuple[dict[str, Rule], dict[type, dict[str, Rule]]]:
    paths: dict[str, Rule] = {}
    for rule in path_rules or ():
        normalised = _to_rule(rule)
        paths[normalised[0]] = normalised
    classes: dict[type, dict[str, Rule]] = {}
    for cls, rules in (class_rules or {}).items():
        for rule in rules:
            normalised = _to_rule(rule)
            classes.setdefault(cls, {})[normalised[0]] = normalised
    return paths, classes


class SyncSerializeRules:
    """Options and rules applied when an entity is converted to a dict.

    Options left as None fall back to the inherited rules, then to the
    defaults below.

    Attributes:
        entity: Entity class the rules are for
        include_meta: Include undeclared backend keys (default True)
        sort_by_key: Sort dict keys (default False)
        max_depth: Raise when nesting exceeds this depth; 0 disables (default 99)
        detect_recursion: Replace circular references with links (default True)
        remove_canonical_id: Drop canonical_id from entities (default True)
        recurse_rules: Reapply path rules under nested instances of entity (default True)
        for_sync_store: Serialize nested entities as links (default False)
    """

    DEFAULTS = {
        "include_meta": True,
        "sort_by_key": False,
        "max_depth": 99,
        "detect_recursion": True,
        "remove_canonical_id": True,
        "recurse_rules": True,
        "for_sync_store": False,
    }

    def __init__(
        self,
        entity: type,
        include_meta: bool | None = None,
        sort_by_key: bool | None = None,
        max_depth: int | None = None,
        detect_recursion: bool | None = None,
        remove_canonical_id: bool | None = None,
        recurse_rules: bool | None = None,
        for_sync_store: bool | None = None,
        remove: Iterable = (),
        replace: Iterable = (),
        remove_from: dict | None = None,
        replace_in: dict | None = None,
        inherit: "SyncSerializeRules | None" = None,
    ):
        self.entity = entity
        self._options = {
            "include_meta": include_meta,
            "sort_by_key": sort_by_key,
            "max_depth": max_depth,
            "detect_recursion": detect_recursion,
            "remove_canonical_id": remove_canonical_id,
            "recurse_rules": recurse_rules,
            "for_sync_store": for_sync_store,
        }
        self._remove, self._remove_classes = _flatten(remove, remove_from)
        self._replace, self._replace_classes = _flatten(replace, replace_in)
        self._reset_caches()

        if inherit is not None:
            self._merge(inherit, self)

    def _reset_caches(self) -> None:
        self._rule_cache: dict[tuple, dict[str, Rule]] = {}
        self._root_paths: set[str] = set()

    def _merge(self, base: "SyncSerializeRules", incoming: "SyncSerializeRules") -> None:
        if not issubclass(incoming.entity, base.entity):
            raise LogicError(
                f"Not a subclass of {base.entity.__name__}: {incoming.entity.__name__}"
            )
        self.entity = incoming.entity
        self._options = {
            key: incoming._options[key] if incoming._options[key] is not None else base._options[key]
            for key in self._options
        }
        self._remove = {**base._remove, **incoming._remove}
        self._replace = {**base._replace, **incoming._replace}
        self._remove_classes = self._merge_classes(base._remove_classes, incoming._remove_classes)
        self._replace_classes = self._merge_classes(base._replace_classes, incoming._replace_classes)
        self._reset_caches()

    @staticmethod
    def _merge_classes(base: dict, incoming: dict) -> dict:
        merged = {cls: dict(rules) for cls, rules in base.items()}
        for cls, rules in incoming.items():
            merged.setdefault(cls, {}).update(rules)
        return merged

    def apply(self, rules: "SyncSerializeRules") -> "SyncSerializeRules":
        """Return a copy with ``rules`` merged in (incoming rules take precedence)."""
        clone = copy.copy(self)
        clone._merge(self, rules)
        return clone

    def _option(self, name: str) -> Any:
        value = self._options[name]
        return self.DEFAULTS[name] if value is None else value

    @property
    def include_meta(self) -> bool:
        return self._option("include_meta")

    @property
    def sort_by_key(self) -> bool:
        return self._option("sort_by_key")

    @property
    def max_depth(self) -> int:
        return self._option("max_depth")

    @property
    def detect_recursion(self) -> bool:
        return self._option("detect_recursion")

    @property
    def remove_canonical_id(self) -> bool:
        return self._option("remove_canonical_id")

    @property
    def recurse_rules(self) -> bool:
        return self._option("recurse_rules")

    @property
    def for_sync_store(self) -> bool:
        return self._option("for_sync_store")

    # ----------------------------------------
    # Rule compilation
    # ----------------------------------------

    def get_remove_from(self, cls: type | None, path: list[str]) -> set[str]:
        """Keys to remove from a node of class ``cls`` found at ``path``."""
        rules = self._compile(cls, path, self._remove, self._remove_classes, "remove")
        return set(rules)

    def get_replace_in(self, cls: type | None, path: list[str]) -> dict[str, Rule]:
        """Replacement rules for a node of class ``cls`` found at ``path``."""
        return self._compile(cls, path, self._replace, self._replace_classes, "replace")

    def _compile(
        self,
        cls: type | None,
        path: list[str],
        path_rules: dict[str, Rule],
        class_rules: dict[type, dict[str, Rule]],
        kind: str,
    ) -> dict[str, Rule]:
        depth = len(path)
        path_str = "." + ".".join(path)
        cache_key = (kind, cls, path_str)
        if cache_key in self._rule_cache:
            return self._rule_cache[cache_key]

        paths = [path_str]
        if self.recurse_rules:
            # When an instance of the rules' entity was found at a parent
            # path, path rules also apply relative to that instance
            prefix = path_str
            for _ in range(depth - 1):
                prefix = prefix[: prefix.rfind(".")]
                if prefix in self._root_paths:
                    paths.append(path_str[len(prefix):])
            if depth and cls is self.entity:
                self._root_paths.add(path_str)
                paths.append(".")

        compiled: dict[str, Rule] = {}
        if cls is not None:
            for klass in reversed(cls.__mro__):
                for target, rule in class_rules.get(klass, {}).items():
                    compiled[target] = rule

        for target, rule in path_rules.items():
            if _rule_path(target) in paths:
                key = _rule_key(target)
                compiled[key] = (key, rule[1], rule[2])

        self._rule_cache[cache_key] = compiled
        return compiled


__all__ = ["SyncSerializeRules", "Rule"]
