"""Structured sync errors recorded against a run.

Unlike exceptions, these are collected while a run continues and are
summarised (and persisted to the ledger) when the run closes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .enums import SyncErrorType

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class SyncError:
    """An error or warning that occurred during a sync operation.

    Attributes:
        error_type: Category of the error
        message: printf-style format string, e.g. "Contact not returned: %s"
        values: Values for the format string (default: the entity name)
        level: logging level (logging.ERROR, logging.WARNING, ...)
        entity: Entity the error relates to
        entity_name: Display name of the entity (default: entity.uri())
        provider: Provider the error relates to (default: entity.provider)
        count: How many times the error has been reported
    """

    error_type: SyncErrorType
    message: str
    values: list[Any] = field(default_factory=list)
    level: int = logging.ERROR
    entity: Any = None
    entity_name: str | None = None
    provider: Any = None
    count: int = 1

    def __post_init__(self):
        if not self.entity_name and self.entity is not None:
            self.entity_name = self.entity.uri()
        if not self.values:
            self.values = [self.entity_name]
        if self.provider is None and self.entity is not None:
            self.provider = getattr(self.entity, "provider", None)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SyncError):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def _key(self) -> tuple:
        return (
            self.level,
            self.error_type,
            self.message,
            tuple(str(v) for v in self.values),
            self.entity_name,
            getattr(self.provider, "provider_id", None) if self.provider else None,
            getattr(self.entity, "id", None),
        )

    def increment(self) -> "SyncError":
        """Record another occurrence of the same error."""
        self.count += 1
        return self

    @property
    def code(self) -> str:
        """e.g. ``E-0003`` for an ERROR-level BACKEND_UNREACHABLE."""
        return f"{logging.getLevelName(self.level)[0]}-{int(self.error_type):04d}"

    @property
    def formatted_message(self) -> str:
        try:
            return self.message % tuple(self.values)
        except (TypeError, ValueError):
            return self.message

    def log(self) -> None:
        logger.log(self.level, f"[{self.error_type.name}] {self.formatted_message}")


class SyncErrorCollection:
    """Ordered collection of SyncError records with summary helpers."""

    def __init__(self, errors=None):
        self._errors: list[SyncError] = []
        for error in errors or ():
            self.append(error)

    def append(self, error: SyncError, deduplicate: bool = False) -> SyncError:
        """Add an error; with deduplicate, count repeats against the first copy."""
        if deduplicate:
            for seen in self._errors:
                if seen == error:
                    return seen.increment()
        self._errors.append(error)
        return error

    def __iter__(self):
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)

    @property
    def error_count(self) -> int:
        return sum(1 for e in self._errors if e.level >= logging.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for e in self._errors if logging.WARNING <= e.level < logging.ERROR)

    def get_summary(self) -> list[dict[str, Any]]:
        """Group errors by code and message format.

        Returns:
            List of {"code", "title", "detail", "meta": {"level", "count",
            "seen", "values"}} dicts sorted by code then format
        """
        summary: dict[str, dict[str, Any]] = {}
        for error in self._errors:
            key = f"{error.code}.{error.message}"
            entry = summary.setdefault(key, {
                "code": error.code,
                "title": error.error_type.name,
                "detail": error.message,
                "meta": {
                    "level": logging.getLevelName(error.level),
                    "count": 0,
                    "seen": 0,
                    "values": [],
                },
            })
            values = error.values
            if isinstance(values, (list, tuple)) and len(values) == 1:
                values = values[0]
            entry["meta"]["values"].append(values)
            entry["meta"]["count"] += 1
            entry["meta"]["seen"] += error.count
        return [summary[key] for key in sorted(summary)]

    def get_summary_text(self) -> str:
        lines = []
        for entry in self.get_summary():
            values = [str(v) for v in entry["meta"]["values"]]
            lines.append(
                "{%d} %s [%s] ('%s'):\n  %s" % (
                    entry["meta"]["seen"],
                    entry["title"],
                    entry["meta"]["level"],
                    entry["detail"],
                    "\n  ".join(values),
                )
            )
        return "\n".join(lines)

    def report(self, success_text: str = "No sync errors recorded") -> None:
        """Log the summary at ERROR (or WARNING when there are only warnings)."""
        if not self.error_count and not self.warning_count:
            logger.info(success_text)
            return

        level = logging.ERROR if self.error_count else logging.WARNING
        message = f"{self.error_count} sync error(s)"
        if self.warning_count:
            message += f" and {self.warning_count} warning(s)"
        logger.log(level, f"{message} recorded:\n{self.get_summary_text()}")

    def __str__(self) -> str:
        return self.get_summary_text()


__all__ = ["SyncError", "SyncErrorCollection"]
