"""Provider base class.

A provider is one connection to one backend. It registers itself with the
store it is given, builds (and caches) a definition and a field mapper per
entity type, and may declare methods that implement operations for specific
entity types directly:

    class CrmProvider(HttpSyncProvider):
        entity_types = ("User", "Post")

        @declared_operation(SyncOperation.READ, "User")
        def get_user(self, ctx, user_id):
            ...

Declared methods take precedence over the definition's generated closures
but not over its overrides.
"""

import logging
import re
import time
from abc import abstractmethod
from typing import Any, Callable, ClassVar

from ...api.exceptions import BackendUnreachable
from ..domain.context import SyncContext
from ..domain.entities import SyncEntity, get_entity_type
from ..domain.enums import SyncOperation
from ..domain.naming import type_qualname
from ..domain.ports import ISyncProvider
from .field_mapper import SyncEntityMapper

logger = logging.getLogger(__name__)

_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_OBJECT_ID = re.compile(r"^[0-9a-f]{24}$", re.IGNORECASE)

_DECLARED_ATTR = "_declared_operations"

# (provider class, backend signature) -> unix time the last OK heartbeat expires
_heartbeats: dict[tuple[type, str], float] = {}


def declared_operation(operation: SyncOperation, entity: type | str) -> Callable:
    """Mark a provider method as the implementation of ``operation`` for ``entity``.

    The method is called as ``method(ctx, *args)``. A method may be
    decorated more than once to serve several operations or entity types.
    Class names are resolved through the entity registry when the method is
    looked up, so a class may be named before it is defined.
    """

    def decorator(func: Callable) -> Callable:
        declared = list(getattr(func, _DECLARED_ATTR, ()))
        declared.append((entity, SyncOperation(operation)))
        setattr(func, _DECLARED_ATTR, declared)
        return func

    return decorator


def _resolve_type(entity_type: type | str) -> type:
    return get_entity_type(entity_type) if isinstance(entity_type, str) else entity_type


class SyncProvider(ISyncProvider):
    """Base class for providers.

    Subclasses implement ``get_backend_identifier()`` and
    ``build_definition()``, and list the entity types they service in
    ``entity_types`` (classes or class names).
    """

    entity_types: ClassVar[tuple[type | str, ...]] = ()
    declared_operations: ClassVar[dict[tuple[type | str, SyncOperation], str]] = {}
    unreachable_errors: ClassVar[tuple[type[Exception], ...]] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        declared: dict[tuple[type | str, SyncOperation], str] = {}
        for base in reversed(cls.__mro__):
            for attr, value in vars(base).items():
                for key in getattr(value, _DECLARED_ATTR, ()):
                    declared[key] = attr
        cls.declared_operations = declared

    def __init__(self, store):
        self.store = store
        self._provider_id: int | None = None
        self._definitions: dict[type, Any] = {}
        self._mappers: dict[type, SyncEntityMapper] = {}
        store.register_provider(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self._provider_id!r}>"

    # ----------------------------------------
    # Identity
    # ----------------------------------------

    @abstractmethod
    def get_backend_identifier(self) -> list[str]:
        ...

    @property
    def provider_id(self) -> int:
        """Store-assigned id (starts the run if necessary)."""
        if self._provider_id is None:
            self._provider_id = self.store.get_provider_id(self)
        return self._provider_id

    def set_provider_id(self, provider_id: int) -> None:
        self._provider_id = provider_id

    def is_valid_identifier(self, value: Any, entity_type: type | None = None) -> bool:
        """Whether ``value`` looks like a backend id rather than a name."""
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return True
        if isinstance(value, str):
            return bool(_UUID.match(value) or _OBJECT_ID.match(value))
        return False

    # ----------------------------------------
    # Entity types and definitions
    # ----------------------------------------

    def get_entity_types(self) -> list[type]:
        types = [_resolve_type(t) for t in self.entity_types]
        for entity, _ in self.declared_operations:
            declared = _resolve_type(entity)
            if declared not in types:
                types.append(declared)
        return types

    def handles(self, entity_type: type) -> bool:
        return any(issubclass(entity_type, t) for t in self.get_entity_types())

    def get_declared_operation(self, entity_type: type, operation: SyncOperation) -> Callable | None:
        """Bound method declared for exactly this (entity type, operation) pair.

        Types are compared by module-qualified name, so same-named classes
        from different modules do not share declared methods.
        """
        key = type_qualname(entity_type)
        for (entity, declared_op), attr in self.declared_operations.items():
            if declared_op == operation and type_qualname(_resolve_type(entity)) == key:
                return getattr(self, attr)
        return None

    @abstractmethod
    def build_definition(self, entity_type: type[SyncEntity]):
        """Create the definition for ``entity_type`` (called once per type)."""
        ...

    def get_definition(self, entity_type: type[SyncEntity]):
        definition = self._definitions.get(entity_type)
        if definition is None:
            definition = self.build_definition(entity_type)
            self._definitions[entity_type] = definition
        return definition

    def get_mapper(self, entity_type: type[SyncEntity]) -> SyncEntityMapper:
        mapper = self._mappers.get(entity_type)
        if mapper is None:
            mapper = SyncEntityMapper(entity_type, self)
            self._mappers[entity_type] = mapper
        return mapper

    # ----------------------------------------
    # Heartbeat
    # ----------------------------------------

    def get_heartbeat(self) -> Any:
        """Make a cheap call proving the backend is reachable.

        Raises:
            NotImplementedError: If the provider has no heartbeat
        """
        raise NotImplementedError(f"{type(self).__name__} does not implement get_heartbeat()")

    def check_heartbeat(self, ttl: int = 300) -> "SyncProvider":
        """Call get_heartbeat() unless it succeeded less than ``ttl`` seconds ago.

        Raises:
            BackendUnreachable: If get_heartbeat() raises one of
                ``unreachable_errors``
        """
        key = (type(self), self.store.get_provider_signature(self))
        now = time.time()
        if _heartbeats.get(key, 0.0) > now:
            logger.debug(f"Heartbeat cached: {self!r}")
            return self

        try:
            self.get_heartbeat()
        except self.unreachable_errors as e:
            _heartbeats.pop(key, None)
            raise BackendUnreachable(getattr(e, "message", str(e)), provider=self, cause=e)

        if ttl > 0:
            _heartbeats[key] = now + ttl
        return self

    # ----------------------------------------
    # Operations
    # ----------------------------------------

    def get_context(self) -> SyncContext:
        return SyncContext(self)

    def with_entity(self, entity_type: type[SyncEntity] | str, ctx: SyncContext | None = None):
        """Facade for running operations on ``entity_type``.

        Raises:
            SyncEntityRecursion: If ``ctx`` re-entered an entity being mapped
        """
        from ..use_cases.entity_provider import SyncEntityProvider

        entity_type = _resolve_type(entity_type)
        if ctx is None:
            ctx = self.get_context()
        else:
            ctx.maybe_throw_recursion_exception()
        return SyncEntityProvider(entity_type, self, self.get_definition(entity_type), ctx)

    def run(self, ctx: SyncContext, operation: Callable[[], Any]) -> Any:
        """Apply the context's filter policy, then call ``operation``.

        For declared methods that claim filters themselves.
        """
        return_empty, empty = ctx.apply_filter_policy()
        if return_empty:
            return empty
        return operation()


def clear_heartbeat_cache() -> None:
    """Forget every cached heartbeat result."""
    _heartbeats.clear()


__all__ = ["SyncProvider", "declared_operation", "clear_heartbeat_cache"]
