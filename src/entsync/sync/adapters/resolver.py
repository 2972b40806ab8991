"""Name-to-entity resolvers.

Resolvers load every entity of one type from an entity provider once, then
answer "which entity is called X?".

- SyncEntityResolver: exact match on one property
- SyncEntityFuzzyResolver: narrows candidates with each enabled comparison
  in turn (SAME, CONTAINS, LEVENSHTEIN, SIMILARITY, NGRAM_SIMILARITY,
  NGRAM_INTERSECTION), stopping as soon as one candidate is left.
  Uncertainty is 0.0 for a perfect match and 1.0 for none.

Example:
    resolver = provider.with_entity(User).get_resolver(
        "name", TextComparison.SAME | TextComparison.SIMILARITY | TextComparison.NORMALISE,
        uncertainty_threshold=0.6,
    )
    user, uncertainty = resolver.get_by_name_with_uncertainty("graham, leanne")
"""

import logging
import re
from collections import Counter
from enum import IntFlag
from typing import Any, Callable

from rapidfuzz import distance, fuzz

from ...api.exceptions import LogicError
from ..domain.entities import SyncEntity

logger = logging.getLogger(__name__)

NameGetter = Callable[[SyncEntity], str | None]

_NAME_PROPERTIES = ("name", "display_name", "full_name", "title")

NGRAM_SIZE = 2


class TextComparison(IntFlag):
    """Comparisons a fuzzy resolver applies, in this order."""

    SAME = 1
    CONTAINS = 2
    # Edits needed, relative to the longer string
    LEVENSHTEIN = 4
    # Shared characters, relative to both lengths
    SIMILARITY = 8
    # Shared bigrams, relative to the string with more of them
    NGRAM_SIMILARITY = 16
    # Shared bigrams, relative to the string with fewer of them
    NGRAM_INTERSECTION = 32
    # Flag: compare normalised names
    NORMALISE = 64


ALGORITHMS = (
    TextComparison.SAME,
    TextComparison.CONTAINS,
    TextComparison.LEVENSHTEIN,
    TextComparison.SIMILARITY,
    TextComparison.NGRAM_SIMILARITY,
    TextComparison.NGRAM_INTERSECTION,
)


def normalise(text: str) -> str:
    """Upper-case, with runs of punctuation and whitespace reduced to one space."""
    return re.sub(r"[^0-9A-Z]+", " ", text.upper()).strip()


def default_name(entity: SyncEntity) -> str | None:
    for prop in _NAME_PROPERTIES:
        value = getattr(entity, prop, None)
        if value:
            return str(value)
    return None if entity.id is None else str(entity.id)


def _name_getter(name_property: str | NameGetter | None) -> NameGetter:
    if name_property is None:
        return default_name
    if callable(name_property):
        return name_property
    return lambda entity: getattr(entity, name_property, None)


def ngrams(text: str, size: int = NGRAM_SIZE) -> list[str]:
    """Every run of ``size`` consecutive characters in ``text``."""
    return [text[i:i + size] for i in range(len(text) - size + 1)]


def ngram_score(name1: str, name2: str, relative_to_longest: bool, size: int = NGRAM_SIZE) -> float:
    """Share of n-grams two names have in common, between 0.0 and 1.0."""
    if len(name1) < size and len(name2) < size:
        return 1.0
    ngrams1, ngrams2 = ngrams(name1, size), ngrams(name2, size)
    count = (max if relative_to_longest else min)(len(ngrams1), len(ngrams2))
    if not count:
        return 0.0
    same = sum((Counter(ngrams1) & Counter(ngrams2)).values())
    return same / count


def get_uncertainty(name1: str, name2: str, algorithm: TextComparison) -> float:
    if algorithm == TextComparison.SAME:
        return 0.0 if name1 == name2 else 1.0
    if algorithm == TextComparison.CONTAINS:
        return 0.0 if name1 in name2 or name2 in name1 else 1.0
    if algorithm == TextComparison.LEVENSHTEIN:
        return distance.Levenshtein.normalized_distance(name1, name2)
    if algorithm == TextComparison.SIMILARITY:
        return 1.0 - fuzz.ratio(name1, name2) / 100
    if algorithm == TextComparison.NGRAM_SIMILARITY:
        return 1.0 - ngram_score(name1, name2, True)
    if algorithm == TextComparison.NGRAM_INTERSECTION:
        return 1.0 - ngram_score(name1, name2, False)
    raise LogicError(f"Invalid algorithm: {algorithm!r}")


class SyncEntityResolver:
    """Resolves a name to the first entity whose property equals it."""

    def __init__(self, entity_provider, name_property: str | NameGetter | None = None):
        self.entity_provider = entity_provider
        self.get_name = _name_getter(name_property)
        self._entities: dict[str, SyncEntity] | None = None

    def _load(self) -> dict[str, SyncEntity]:
        entities: dict[str, SyncEntity] = {}
        for entity in self.entity_provider.get_list():
            name = self.get_name(entity)
            if name is not None:
                entities.setdefault(name, entity)
        return entities

    def get_by_name(self, name: str) -> SyncEntity | None:
        if self._entities is None:
            self._entities = self._load()
        return self._entities.get(name)


class SyncEntityFuzzyResolver:
    """Resolves a name to the most similar entity.

    Args:
        entity_provider: SyncEntityProvider the candidates are loaded from
        name_property: Property (or callable) giving each entity's name
        algorithm: TextComparison members to apply, plus NORMALISE
        uncertainty_threshold: Candidates at or above this uncertainty are
            dropped, either for every comparison or per comparison
        weight_property: Prefer the candidate with the highest value of this
            property when several are equally similar
        require_one_match: Return None unless exactly one candidate is left

    Raises:
        LogicError: If ``require_one_match`` is set but no comparison can
            narrow the candidates
    """

    def __init__(
        self,
        entity_provider,
        name_property: str | NameGetter | None = None,
        algorithm: TextComparison = (
            TextComparison.SAME | TextComparison.CONTAINS | TextComparison.SIMILARITY | TextComparison.NORMALISE
        ),
        uncertainty_threshold: float | dict[TextComparison, float] | None = None,
        weight_property: str | None = None,
        require_one_match: bool = False,
    ):
        if isinstance(uncertainty_threshold, dict):
            uncertainty_threshold = {
                alg: value for alg, value in uncertainty_threshold.items()
                if alg in ALGORITHMS and algorithm & alg
            } or None

        if (
            require_one_match
            and uncertainty_threshold is None
            and not algorithm & (TextComparison.SAME | TextComparison.CONTAINS)
        ):
            raise LogicError("require_one_match cannot be True when uncertainty_threshold is None")

        self.entity_provider = entity_provider
        self.get_name = _name_getter(name_property)
        self.algorithm = algorithm
        self.uncertainty_threshold = uncertainty_threshold
        self.weight_property = weight_property
        self.require_one_match = require_one_match
        # [(entity, name, weight)]
        self._entries: list[tuple[SyncEntity, str, Any]] | None = None
        self._cache: dict[str, tuple[SyncEntity | None, float | None]] = {}

    def _normalise(self, name: str) -> str:
        return normalise(name) if self.algorithm & TextComparison.NORMALISE else name

    def _load(self) -> list[tuple[SyncEntity, str, Any]]:
        entries = []
        for entity in self.entity_provider.get_list():
            name = self.get_name(entity)
            if name is None:
                continue
            weight = 0 if self.weight_property is None else getattr(entity, self.weight_property, 0)
            entries.append((entity, self._normalise(str(name)), weight or 0))
        logger.debug(f"Loaded {len(entries)} candidates for {type(self).__name__}")
        return entries

    def _threshold(self, algorithm: TextComparison) -> float | None:
        if self.require_one_match and algorithm in (TextComparison.SAME, TextComparison.CONTAINS):
            return 1.0
        if isinstance(self.uncertainty_threshold, dict):
            return self.uncertainty_threshold.get(algorithm)
        return self.uncertainty_threshold

    def get_by_name(self, name: str) -> SyncEntity | None:
        return self.get_by_name_with_uncertainty(name)[0]

    def get_by_name_with_uncertainty(self, name: str) -> tuple[SyncEntity | None, float | None]:
        if self._entries is None:
            self._entries = self._load()
        if not self._entries:
            return None, None

        name = self._normalise(name)
        if name in self._cache:
            return self._cache[name]

        # (entity, name, weight, [uncertainty per applied comparison])
        entries = [(entity, entity_name, weight, []) for entity, entity_name, weight in self._entries]
        applied = 0

        for algorithm in ALGORITHMS:
            if not self.algorithm & algorithm:
                continue
            threshold = self._threshold(algorithm)
            if self.require_one_match and threshold is None:
                continue

            matches = []
            for entity, entity_name, weight, uncertainties in entries:
                uncertainty = get_uncertainty(name, entity_name, algorithm)
                if threshold is not None and (
                    uncertainty > threshold if threshold == 0.0 else uncertainty >= threshold
                ):
                    continue
                matches.append((entity, entity_name, weight, uncertainties + [uncertainty]))

            if not matches:
                continue
            if len(matches) == 1:
                return self._cache_result(name, matches[0])
            entries = matches
            applied += 1

        if not applied or self.require_one_match:
            return self._cache_result(name, None)

        # Most recent comparison first, then highest weight
        entries.sort(key=lambda entry: (list(reversed(entry[3])), _negate(entry[2])))
        return self._cache_result(name, entries[0])

    def _cache_result(self, name: str, entry) -> tuple[SyncEntity | None, float | None]:
        result = (None, None) if entry is None else (entry[0], entry[3][-1])
        self._cache[name] = result
        return result


def _negate(weight: Any) -> Any:
    return -weight if isinstance(weight, (int, float)) else 0


__all__ = [
    "SyncEntityResolver",
    "SyncEntityFuzzyResolver",
    "TextComparison",
    "normalise",
    "ngrams",
    "ngram_score",
    "get_uncertainty",
]
