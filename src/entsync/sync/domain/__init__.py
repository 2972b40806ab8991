"""Domain layer - Pure domain entities, policies and port interfaces.

This layer contains:
- Entities: The SyncEntity base class and its relationship tables
- Context: The immutable per-call SyncContext
- Serialization: Rules and the serializer that applies them
- Errors: Structured sync errors recorded against a run
- Ports: Abstract interfaces defining contracts for adapters

No infrastructure dependencies allowed in this layer.
"""

from .context import SyncContext
from .entities import Relationship, SyncEntity, get_entity_type, parse_timestamp
from .enums import (
    DeferralPolicy,
    EntitySource,
    EntityState,
    FilterPolicy,
    HydrationPolicy,
    ListConformity,
    SyncErrorType,
    SyncOperation,
)
from .errors import SyncError, SyncErrorCollection
from .naming import snake_case, type_basename, type_qualname, type_snake_name
from .ports import IDeferredEntity, IDeferredRelationship, ISyncDefinition, ISyncProvider
from .serialization import SyncSerializer, serialize
from .serialize_rules import SyncSerializeRules

__all__ = [
    # Entities
    "SyncEntity",
    "Relationship",
    "get_entity_type",
    "parse_timestamp",
    # Enums
    "SyncOperation",
    "FilterPolicy",
    "ListConformity",
    "EntitySource",
    "DeferralPolicy",
    "HydrationPolicy",
    "SyncErrorType",
    "EntityState",
    # Context
    "SyncContext",
    # Errors
    "SyncError",
    "SyncErrorCollection",
    # Naming
    "snake_case",
    "type_basename",
    "type_qualname",
    "type_snake_name",
    # Serialization
    "SyncSerializeRules",
    "SyncSerializer",
    "serialize",
    # Ports
    "ISyncProvider",
    "ISyncDefinition",
    "IDeferredEntity",
    "IDeferredRelationship",
]
