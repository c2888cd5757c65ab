"""Client for the remote match and stream catalog."""

import asyncio
import hashlib
import logging
import re
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from .types import URL, Match, MatchSource, Stream

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://streamed.pk/api"
REQUEST_TIMEOUT_SECONDS = 10.0

# A match dated within this window before now is considered live
LIVE_WINDOW = timedelta(hours=3)

TEAM_SEPARATORS = (" - ", " vs ", " VS ", " v ", " V ")


def parse_teams(title: str) -> tuple[str, str]:
    """
    Split a title such as ``"Team A vs Team B"`` into two team names.

    Args:
        title: Match title.

    Returns:
        Tuple of (team1, team2); team2 is empty if no separator is found.
    """
    for separator in TEAM_SEPARATORS:
        if separator in title:
            # Anything past a second separator is dropped
            parts = title.split(separator)
            return parts[0].strip(), parts[1].strip()
    return title, ""


def generate_match_id(raw: dict[str, Any]) -> str:
    """
    Build a stable id for a raw match record.

    Uses the record's own id when it has one, otherwise a digest of its
    descriptive fields and first source id.
    """
    if raw.get("id"):
        return str(raw["id"])

    parts = [
        str(raw[key])
        for key in ("sport", "league", "team1", "team2", "startTime")
        if raw.get(key)
    ]
    sources = raw.get("sources") or []
    if sources and isinstance(sources[0], dict) and sources[0].get("id"):
        parts.append(str(sources[0]["id"]))

    key = re.sub(r"[^a-z0-9-]", "-", "-".join(parts).lower())
    return hashlib.sha1(key.encode()).hexdigest()[:10]


def _parse_start(raw: dict[str, Any]) -> tuple[datetime | None, bool | None]:
    """Start time and, for epoch-millisecond dates, whether the match is live."""
    date = raw.get("date")
    if isinstance(date, int | float) and not isinstance(date, bool):
        start = datetime.fromtimestamp(date / 1000, tz=UTC)
        elapsed = datetime.now(UTC) - start
        return start, timedelta(0) <= elapsed <= LIVE_WINDOW

    value = date or raw.get("startTime") or raw.get("start_time") or raw.get("time")
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")), None
        except ValueError:
            logger.debug("Unparseable start time: %s", value)
    return None, None


def normalize_match(raw: dict[str, Any]) -> Match:
    """
    Convert a raw catalog record into a Match.

    Args:
        raw: Match record as returned by the catalog API.

    Returns:
        The normalized Match.
    """
    if raw.get("title"):
        team1, team2 = parse_teams(str(raw["title"]))
    else:
        team1, team2 = raw.get("team1") or "", raw.get("team2") or ""

    start_time, live = _parse_start(raw)
    if live is None:
        live = bool(raw.get("isLive", raw.get("is_live", raw.get("live", False))))

    sources = tuple(
        MatchSource(source=str(s["source"]), id=str(s["id"]))
        for s in raw.get("sources") or []
        if isinstance(s, dict) and s.get("source") and s.get("id")
    )

    return Match(
        id=generate_match_id(raw),
        sport=raw.get("sport") or raw.get("category") or "",
        league=raw.get("league") or raw.get("tournament") or raw.get("competition") or "",
        team1=team1,
        team2=team2,
        start_time=start_time,
        is_live=live,
        sources=sources,
    )


def normalize_matches(raws: Iterable[Any]) -> list[Match]:
    return [normalize_match(raw) for raw in raws if isinstance(raw, dict)]


def normalize_stream(raw: dict[str, Any], source: str) -> Stream:
    """
    Convert a raw stream record into a Stream.

    The plain and embed URLs stand in for each other when one is missing.
    An ``hd`` flag wins over any quality tag; the default quality is SD.
    """
    url = raw.get("url") or raw.get("embedUrl") or ""
    embed_url = raw.get("embedUrl") or raw.get("url") or None
    quality = "HD" if raw.get("hd") else (raw.get("quality") or "SD")
    return Stream(
        url=url,
        embed_url=embed_url,
        language=raw.get("language"),
        quality=quality,
        source=raw.get("source") or source,
    )


class StreamedCatalog:
    """
    Fetches matches and their streams from the catalog API.

    Every request failure is logged and turned into an empty result, so
    callers never have to handle network errors.

    Attributes:
        api_base: Base URL of the catalog API.
        timeout: Request timeout in seconds.
        executor: ThreadPoolExecutor for concurrent per-sport and per-source requests.
    """

    def __init__(
        self,
        api_base: URL = DEFAULT_API_BASE,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        max_workers: int = 5,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="catalog")

    def _get_json(self, path: str) -> Any:
        """GET a path below the API base and decode JSON, or None on any error."""
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = requests.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.warning("Catalog request failed: %s - %s", url, e)
        except ValueError:
            logger.warning("Catalog returned invalid JSON: %s", url)
        return None

    def fetch_sports(self) -> list[dict[str, Any]]:
        data = self._get_json("sports")
        if not isinstance(data, list):
            return []
        return [sport for sport in data if isinstance(sport, dict)]

    def fetch_matches(self, sport: str | None = None) -> list[Match]:
        """
        Fetch matches for one sport, or for every sport.

        Args:
            sport: Sport id; fetches all sports concurrently when None.

        Returns:
            Normalized matches.
        """
        if sport:
            data = self._get_json(f"matches/{sport}")
            return normalize_matches(data) if isinstance(data, list) else []

        sports = self.fetch_sports()
        if not sports:
            logger.warning("No sports available")
            return []

        paths = [f"matches/{info['id']}" for info in sports if info.get("id")]

        # Results come back in sport order
        matches: list[Match] = []
        for data in self.executor.map(self._get_json, paths):
            if isinstance(data, list):
                matches.extend(normalize_matches(data))
        return matches

    def fetch_streams(self, source: str, source_id: str) -> list[Stream]:
        """
        Fetch the streams published by one source for a match.

        Args:
            source: Source name.
            source_id: Match id within that source.

        Returns:
            Zero or more streams.
        """
        data = self._get_json(f"stream/{source}/{source_id}")
        if isinstance(data, list):
            return [normalize_stream(item, source) for item in data if isinstance(item, dict)]
        if isinstance(data, dict):
            return [normalize_stream(data, source)]
        return []

    def find_match(self, match_id: str, sport: str | None = None) -> Match | None:
        for match in self.fetch_matches(sport):
            if match.id == match_id:
                return match
        return None

    async def resolve_candidates(self, match: Match) -> list[Stream]:
        """
        Resolve every source of a match into one candidate list.

        Sources are fetched concurrently; a source that fails contributes
        nothing.

        Args:
            match: Match to resolve.

        Returns:
            Streams from all sources, in source order.
        """
        if not match.sources:
            return []

        loop = asyncio.get_running_loop()
        results = await asyncio.gather(
            *(
                loop.run_in_executor(self.executor, self.fetch_streams, ref.source, ref.id)
                for ref in match.sources
            ),
            return_exceptions=True,
        )

        streams: list[Stream] = []
        for ref, result in zip(match.sources, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Failed to resolve %s/%s: %s", ref.source, ref.id, result)
                continue
            streams.extend(result)

        logger.info("Resolved %d streams for %s", len(streams), match.title)
        return streams

    def close(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)
