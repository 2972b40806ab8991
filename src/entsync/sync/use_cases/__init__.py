"""Use cases layer - Running sync operations for one entity type.

SyncEntityProvider binds an entity type to a provider's definition and
applies the context's store lookup, deferral and hydration policies.
"""

from .entity_provider import SyncEntityProvider

__all__ = [
    "SyncEntityProvider",
]
