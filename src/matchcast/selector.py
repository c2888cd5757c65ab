"""Ranking of candidate streams by health and viewer preferences."""

import logging
from collections.abc import Sequence

from .health import HealthRegistry
from .types import (
    DEFAULT_LANGUAGE,
    DEFAULT_QUALITY_PREFERENCES,
    HealthStatus,
    Stream,
    endpoint_id,
)

logger = logging.getLogger(__name__)

STATUS_PRIORITY = {
    HealthStatus.WORKING: 0,
    HealthStatus.UNSTABLE: 1,
    HealthStatus.UNKNOWN: 2,
    HealthStatus.OFFLINE: 3,
}


class StreamSelector:
    """
    Picks the best stream out of a candidate list.

    Candidates are ordered by health first, then preferred language, then
    quality. The sort is stable, so candidates that tie on every key keep
    their input order. Selection only reads from the registry.

    Attributes:
        registry: Health registry consulted for each candidate.
        preferred_language: Language tag sorted ahead of all others.
        quality_preferences: Quality tags in order of preference.
    """

    def __init__(
        self,
        registry: HealthRegistry,
        preferred_language: str = DEFAULT_LANGUAGE,
        quality_preferences: Sequence[str] = DEFAULT_QUALITY_PREFERENCES,
    ) -> None:
        self.registry = registry
        self.preferred_language = preferred_language.lower()
        self.quality_preferences = tuple(q.lower() for q in quality_preferences)

    def _quality_rank(self, stream: Stream) -> int:
        """Index of the first preference contained in the quality tag, or past the end."""
        quality = (stream.quality or "").lower()
        for index, preference in enumerate(self.quality_preferences):
            if preference in quality:
                return index
        return len(self.quality_preferences)

    def _sort_key(self, stream: Stream) -> tuple[int, int, int]:
        status = self.registry.get_status(endpoint_id(stream)).status
        language = (stream.language or "").lower()
        return (
            STATUS_PRIORITY[status],
            0 if language == self.preferred_language else 1,
            self._quality_rank(stream),
        )

    def rank(self, candidates: Sequence[Stream]) -> list[Stream]:
        """
        Order candidates best-first.

        Args:
            candidates: Streams to rank.

        Returns:
            A new list with the best candidate first.
        """
        return sorted(candidates, key=self._sort_key)

    def select_best(self, candidates: Sequence[Stream]) -> Stream | None:
        """
        Get the best candidate.

        Args:
            candidates: Streams to choose from.

        Returns:
            The best stream, or None if there are no candidates.
        """
        if not candidates:
            return None

        ranked = self.rank(candidates)
        best = ranked[0] if ranked else candidates[0]
        logger.debug(
            "Selected %s out of %d candidates (%s)",
            best.playable_url,
            len(candidates),
            self.registry.get_status(endpoint_id(best)).status,
        )
        return best
