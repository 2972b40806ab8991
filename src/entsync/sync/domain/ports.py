"""Port interfaces for sync operations.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable

from .context import SyncContext
from .entities import SyncEntity
from .enums import FilterPolicy, SyncOperation


class ISyncProvider(ABC):
    """Port for a backend that services one or more entity types."""

    @abstractmethod
    def get_backend_identifier(self) -> list[str]:
        """Values that, with the provider class, uniquely identify the backend.

        Returns:
            Non-empty list of strings (e.g. base URL, database and schema)
        """
        ...

    @abstractmethod
    def handles(self, entity_type: type) -> bool:
        """Whether this provider services ``entity_type``."""
        ...

    @abstractmethod
    def get_definition(self, entity_type: type) -> "ISyncDefinition":
        """Operation definition for ``entity_type``."""
        ...

    @abstractmethod
    def get_context(self) -> SyncContext:
        """A new context bound to this provider."""
        ...

    def get_filter_policy(self) -> FilterPolicy | None:
        """Default filter policy for this provider's definitions."""
        return None

    def check_heartbeat(self, ttl: int = 300) -> "ISyncProvider":
        """Verify the backend is reachable.

        Raises:
            BackendUnreachable: If the backend cannot be reached
        """
        return self


class ISyncDefinition(ABC):
    """Port for the binding of one entity type to one provider."""

    @abstractmethod
    def get_sync_operation_closure(self, operation: SyncOperation) -> Callable | None:
        """Callable that runs ``operation`` as ``fn(ctx, *args)``, or None."""
        ...

    @abstractmethod
    def get_fallback_closure(self, operation: SyncOperation) -> Callable | None:
        """The closure ``operation`` would have without overrides."""
        ...


class IDeferredEntity(ABC):
    """Port for a placeholder standing in for an entity not yet loaded."""

    entity_type: type
    entity_id: Any

    @abstractmethod
    def resolve(self) -> SyncEntity:
        """Return the entity, fetching it from its provider if necessary."""
        ...

    @abstractmethod
    def replace(self, entity: SyncEntity) -> None:
        """Deliver ``entity`` to wherever the placeholder stands."""
        ...

    @abstractmethod
    def to_link(self, store=None) -> dict[str, Any]:
        """``{"@type": ..., "@id": ...}`` reference to the deferred entity."""
        ...


class IDeferredRelationship(ABC):
    """Port for a placeholder standing in for a list of related entities."""

    entity_type: type

    @abstractmethod
    def resolve(self) -> list[SyncEntity]:
        """Return the related entities, fetching them if necessary."""
        ...

    @abstractmethod
    def replace(self, entities: Iterable[SyncEntity]) -> None:
        """Deliver ``entities`` to wherever the placeholder stands."""
        ...


__all__ = [
    "ISyncProvider",
    "ISyncDefinition",
    "IDeferredEntity",
    "IDeferredRelationship",
]
