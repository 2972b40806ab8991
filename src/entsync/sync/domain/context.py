"""Per-call context passed through every sync operation.

A SyncContext is treated as immutable: every ``with_*``/``push`` method
returns a modified copy. The one exception is ``claim_filter()``, which
removes a filter from the instance it is called on so the definition that
built the request can prove every filter was consumed.
"""

import copy
import re
from typing import Any, Callable

from ...api.exceptions import InvalidFilterSignature, LogicError, SyncEntityRecursion
from .entities import SyncEntity
from .enums import DeferralPolicy, HydrationPolicy, ListConformity, SyncOperation
from .naming import snake_case, type_basename, type_snake_name

_NON_IDENTIFIER = re.compile(r"[^A-Za-z0-9_\-]")

FilterPolicyCallback = Callable[["SyncContext"], tuple[bool, Any]]


def _reduce_filter_value(value: Any) -> Any:
    if isinstance(value, SyncEntity):
        return value.id
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, SyncEntity) for v in value):
        return [v.id for v in value]
    return value


def _strip_id(name: str) -> str:
    return snake_case(name[:-3]) if name.endswith("_id") else ""


class SyncContext:
    """The provider, entity stack, values, filters and policies of one call.

    Attributes:
        provider: Provider the operation runs against
        stack: Entities being mapped, outermost first
        values: Named values available to path templates and overrides
        filters: Filters derived from the operation's arguments
        conformity: Conformity override for list responses
        offline_mode: True (store only), False (backend only), None (store first)
        deferral_policy: When references to unseen entities are fetched
    """

    def __init__(self, provider: Any = None):
        self.provider = provider
        self.stack: tuple[SyncEntity, ...] = ()
        self.values: dict[str, Any] = {}
        self.conformity = ListConformity.NONE
        self.filters: dict[str, Any] = {}
        self.filter_keys: dict[str, str] = {}
        self.filter_policy_callback: FilterPolicyCallback | None = None
        self.offline_mode: bool | None = None
        self.deferral_policy = DeferralPolicy.RESOLVE_EARLY
        self.entity_hydration_policy: dict[type, dict[int, HydrationPolicy]] = {}
        self.fallback_hydration_policy: dict[int, HydrationPolicy] = {0: HydrationPolicy.DEFER}
        self.last_recursed_into: SyncEntity | None = None

    def _clone(self) -> "SyncContext":
        clone = copy.copy(self)
        clone.values = dict(self.values)
        clone.filters = dict(self.filters)
        clone.filter_keys = dict(self.filter_keys)
        clone.entity_hydration_policy = {k: dict(v) for k, v in self.entity_hydration_policy.items()}
        clone.fallback_hydration_policy = dict(self.fallback_hydration_policy)
        return clone

    def _with(self, **changes) -> "SyncContext":
        clone = self._clone()
        for name, value in changes.items():
            setattr(clone, name, value)
        return clone

    def __repr__(self) -> str:
        return (
            f"<SyncContext provider={type_basename(self.provider) if self.provider else None} "
            f"depth={len(self.stack)} filters={self.filters!r}>"
        )

    # ----------------------------------------
    # Stack and values
    # ----------------------------------------

    def push(self, entity: SyncEntity) -> "SyncContext":
        """Return a context with ``entity`` on the stack and its id as a value."""
        clone = self._with(stack=self.stack + (entity,))
        if getattr(entity, "id", None) is not None:
            return clone.with_value(f"{type_basename(entity)}_id", entity.id)
        return clone

    def push_with_recursion_check(self, entity: SyncEntity) -> "SyncContext":
        already_stacked = any(e is entity for e in self.stack)
        clone = self.push(entity)
        clone.last_recursed_into = entity if already_stacked else None
        return clone

    def maybe_throw_recursion_exception(self) -> None:
        """Raise if the last push re-entered an entity already being mapped.

        Raises:
            SyncEntityRecursion: If a circular reference was pushed
        """
        if self.last_recursed_into is not None and self.stack and self.stack[-1] is self.last_recursed_into:
            raise SyncEntityRecursion(
                f"Circular reference detected: {self.last_recursed_into.uri()}"
            )

    @property
    def last(self) -> SyncEntity | None:
        return self.stack[-1] if self.stack else None

    def with_value(self, name: str, value: Any) -> "SyncContext":
        name = snake_case(name)
        values = dict(self.values)
        values[name] = value
        short = _strip_id(name)
        if short:
            values[short] = value
        return self._with(values=values)

    def get_value(self, name: str) -> Any:
        name = snake_case(name)
        if name in self.values:
            return self.values[name]
        short = _strip_id(name)
        return self.values.get(short) if short else None

    def has_value(self, name: str) -> bool:
        name = snake_case(name)
        if name in self.values:
            return True
        short = _strip_id(name)
        return bool(short) and short in self.values

    def with_conformity(self, conformity: ListConformity) -> "SyncContext":
        return self._with(conformity=conformity)

    # ----------------------------------------
    # Filters
    # ----------------------------------------

    def with_args(self, operation: SyncOperation, *args) -> "SyncContext":
        """Derive filters from an operation's arguments.

        The first argument of every operation except READ_LIST is mandatory
        (an id or an entity) and never a filter. Remaining arguments may be a
        single dict, one or more ids, or one or more entities.

        Raises:
            InvalidFilterSignature: If the arguments match none of those shapes
        """
        if operation != SyncOperation.READ_LIST:
            args = args[1:]

        if not args:
            return self._apply_filters({}, {})

        if len(args) == 1 and isinstance(args[0], dict):
            filters: dict[str, Any] = {}
            filter_keys: dict[str, str] = {}
            for key, value in args[0].items():
                if not isinstance(key, str):
                    raise InvalidFilterSignature(*args)
                if _NON_IDENTIFIER.search(key):
                    filters[key] = _reduce_filter_value(value)
                    continue
                key = snake_case(key)
                if not key:
                    raise InvalidFilterSignature(*args)
                filters[key] = _reduce_filter_value(value)
                short = _strip_id(key)
                if short:
                    filter_keys[short] = key
            return self._apply_filters(filters, filter_keys)

        if all(isinstance(a, (int, str)) and not isinstance(a, bool) for a in args):
            return self._apply_filters({"id": list(args)}, {})

        if all(isinstance(a, SyncEntity) for a in args):
            filters = {}
            for entity in args:
                filters.setdefault(type_snake_name(entity), []).append(entity.id)
            return self._apply_filters(filters, {})

        raise InvalidFilterSignature(*args)

    def _apply_filters(self, filters: dict[str, Any], filter_keys: dict[str, str]) -> "SyncContext":
        return self._with(filters=filters, filter_keys=filter_keys)

    def get_filters(self) -> dict[str, Any]:
        """Filters not yet claimed."""
        return dict(self.filters)

    def get_filter(self, key: str, or_value: bool = True) -> Any:
        return self._get_filter(key, or_value, claim=False)

    def claim_filter(self, key: str, or_value: bool = True) -> Any:
        """Return a filter's value and remove it from this context.

        ``user_id`` matches a ``user`` filter and ``user`` matches a
        ``user_id`` filter. With ``or_value``, a context value of the same
        name is returned when no filter matches (values are never claimed).
        """
        return self._get_filter(key, or_value, claim=True)

    def _get_filter(self, key: str, or_value: bool, claim: bool) -> Any:
        if key not in self.filters:
            key = snake_case(key)
            if key not in self.filters:
                short = _strip_id(key)
                if not short:
                    return self.get_value(key) if or_value else None
                if short in self.filter_keys:
                    alias = self.filter_keys[short]
                    if claim:
                        del self.filter_keys[short]
                    key = alias
                elif short in self.filters:
                    key = short
                else:
                    return self.get_value(key) if or_value else None
                if key not in self.filters:
                    return self.get_value(key) if or_value else None

        value = self.filters[key]
        if claim:
            del self.filters[key]
        return value

    def with_filter_policy_callback(self, callback: FilterPolicyCallback | None) -> "SyncContext":
        return self._with(filter_policy_callback=callback)

    def apply_filter_policy(self) -> tuple[bool, Any]:
        """Apply the bound filter policy to the unclaimed filters.

        Returns:
            (return_empty, empty): when return_empty is True the caller
            returns ``empty`` without contacting the backend
        """
        if self.filter_policy_callback is None:
            return False, None
        return self.filter_policy_callback(self)

    # ----------------------------------------
    # Online / offline
    # ----------------------------------------

    def online(self) -> "SyncContext":
        """Always ask the backend."""
        return self._with(offline_mode=False)

    def offline(self) -> "SyncContext":
        """Only return entities already in the store."""
        return self._with(offline_mode=True)

    def offline_first(self) -> "SyncContext":
        """Check the store first, then the backend."""
        return self._with(offline_mode=None)

    # ----------------------------------------
    # Deferral and hydration
    # ----------------------------------------

    def with_deferral_policy(self, policy: DeferralPolicy) -> "SyncContext":
        return self._with(deferral_policy=policy)

    def with_hydration_policy(
        self,
        policy: HydrationPolicy,
        entity: type | None = None,
        depth: int | list[int] | None = None,
    ) -> "SyncContext":
        """Set the hydration policy, optionally per entity type and depth.

        Depths count from the current stack: 1 is the relationships of the
        entities returned by the next operation, 2 the relationships of
        those related entities, and so on.

        Raises:
            LogicError: If a depth below 1 is given
        """
        depths = None if depth is None else ([depth] if isinstance(depth, int) else list(depth))
        if depths is not None and any(d < 1 for d in depths):
            raise LogicError("depth must be greater than 0")

        clone = self._clone()
        current_depth = len(self.stack)

        def apply(current: dict[int, HydrationPolicy]) -> dict[int, HydrationPolicy]:
            if depths is None:
                return {0: policy}
            updated = dict(current)
            for d in depths:
                updated[current_depth + d] = policy
            return updated

        if entity is None and depths is None:
            clone.entity_hydration_policy = {}
            clone.fallback_hydration_policy = {0: policy}
            return clone

        if entity is None:
            clone.fallback_hydration_policy = apply(clone.fallback_hydration_policy)
        else:
            clone.entity_hydration_policy.setdefault(entity, dict(clone.fallback_hydration_policy))

        for entity_type, value in clone.entity_hydration_policy.items():
            if entity is None or issubclass(entity_type, entity):
                clone.entity_hydration_policy[entity_type] = apply(value)
        return clone

    def get_hydration_policy(self, entity: type | None) -> HydrationPolicy:
        """Policy for relationships of ``entity`` at the next depth."""
        depth = len(self.stack) + 1

        if entity is not None and self.entity_hydration_policy:
            applied = None
            for entity_type, values in self.entity_hydration_policy.items():
                if not issubclass(entity_type, entity):
                    continue
                value = values.get(depth, values.get(0))
                if value is not None:
                    applied = value
            if applied is not None:
                return applied

        return self.fallback_hydration_policy.get(
            depth, self.fallback_hydration_policy.get(0, HydrationPolicy.DEFER)
        )


__all__ = ["SyncContext", "FilterPolicyCallback"]
