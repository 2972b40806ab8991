"""Enumerations shared by every layer of the sync engine."""

from enum import Enum, IntEnum, IntFlag


class SyncOperation(IntEnum):
    """Operations a definition can implement."""

    CREATE = 0
    READ = 1
    UPDATE = 2
    DELETE = 3
    CREATE_LIST = 4
    READ_LIST = 5
    UPDATE_LIST = 6
    DELETE_LIST = 7

    @property
    def is_list(self) -> bool:
        return self >= SyncOperation.CREATE_LIST

    @property
    def is_write(self) -> bool:
        return self not in (SyncOperation.READ, SyncOperation.READ_LIST)

    @property
    def single(self) -> "SyncOperation":
        """The single-entity counterpart of a list operation."""
        return SyncOperation(self - 4) if self.is_list else self

    @property
    def list(self) -> "SyncOperation":
        """The list counterpart of a single-entity operation."""
        return self if self.is_list else SyncOperation(self + 4)


class FilterPolicy(Enum):
    """What to do when filters remain unclaimed after a request is built."""

    IGNORE = "ignore"
    THROW_EXCEPTION = "throw_exception"
    RETURN_EMPTY = "return_empty"
    # Reserved: applying filters locally is not supported
    FILTER = "filter"


class ListConformity(Enum):
    """How uniform records in a list response are."""

    NONE = "none"
    PARTIAL = "partial"
    COMPLETE = "complete"


class EntitySource(Enum):
    """Where entities returned by a write operation come from."""

    PROVIDER_OUTPUT = "provider_output"
    SYNC_OPERATION = "sync_operation"
    OPERATION_INPUT = "sync_operation"


class DeferralPolicy(Enum):
    """When references to unseen entities are fetched."""

    DO_NOT_RESOLVE = "do_not_resolve"
    RESOLVE_EARLY = "resolve_early"
    RESOLVE_LATE = "resolve_late"


class HydrationPolicy(Enum):
    """How missing relationships of new entities are populated."""

    DEFER = "defer"
    SUPPRESS = "suppress"
    LAZY = "lazy"
    EAGER = "eager"


class SyncErrorType(IntEnum):
    """Categories of structured errors recorded against a run."""

    ENTITY_DOES_NOT_EXIST = 0
    ENTITY_MISSING = 1
    ENTITY_NOT_VALID = 2
    BACKEND_UNREACHABLE = 3
    OPERATION_FAILED = 4


class EntityState(IntFlag):
    """Transient state flags carried by an entity."""

    NONE = 0
    SERIALIZING = 1


__all__ = [
    "SyncOperation",
    "FilterPolicy",
    "ListConformity",
    "EntitySource",
    "DeferralPolicy",
    "HydrationPolicy",
    "SyncErrorType",
    "EntityState",
]
