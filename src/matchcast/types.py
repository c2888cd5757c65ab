"""Type definitions for matchcast."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TypeAlias

# Common type aliases
URL: TypeAlias = str
EndpointID: TypeAlias = str
MatchID: TypeAlias = str

# Health timing constants (seconds)
PROBE_TIMEOUT_SECONDS = 5.0
PROBE_INTERVAL_SECONDS = 30.0
RECOVERY_INTERVAL_SECONDS = 60.0
RECOVERY_WINDOW_SECONDS = 60.0

# Consecutive misses (including the current one) before an endpoint is offline
OFFLINE_FAILURE_THRESHOLD = 2

DEFAULT_MAX_SLOTS = 4
DEFAULT_LANGUAGE = "en"
DEFAULT_QUALITY_PREFERENCES = ("hd", "720p", "1080p", "sd", "480p", "360p")


class HealthStatus(StrEnum):
    """Reachability classification of an endpoint."""

    UNKNOWN = "unknown"
    WORKING = "working"
    UNSTABLE = "unstable"
    OFFLINE = "offline"


class LayoutMode(StrEnum):
    """How a session's slots are arranged on screen."""

    GRID = "grid"
    FOCUS = "focus"
    SIDE_BY_SIDE = "side-by-side"


class FailoverStatus(StrEnum):
    """Outcome of reporting a playback failure on a slot."""

    SWITCHED = "switched"
    EXHAUSTED = "exhausted"
    UNKNOWN_MATCH = "unknown-match"


@dataclass(frozen=True)
class Stream:
    """A candidate endpoint for one match.

    Attributes:
        url: Playable stream URL.
        embed_url: Embeddable player URL, preferred over ``url`` when present.
        language: Language tag (e.g. ``"en"``).
        quality: Quality tag (e.g. ``"HD"``, ``"720p"``).
        source: Label of the upstream source that produced the stream.
    """

    url: URL
    embed_url: URL | None = None
    language: str | None = None
    quality: str | None = None
    source: str | None = None

    @property
    def playable_url(self) -> URL:
        """URL a player should load: the embed URL if present, else the plain URL."""
        return self.embed_url or self.url


@dataclass(frozen=True)
class MatchSource:
    """Reference to one upstream listing of a match."""

    source: str
    id: str


@dataclass(frozen=True)
class Match:
    """A live event with its upstream stream references.

    Attributes:
        id: Stable match identifier.
        sport: Sport category.
        league: League or tournament name.
        team1: Home/first team name.
        team2: Away/second team name.
        start_time: Scheduled start, if known.
        is_live: Whether the match is currently live.
        sources: References used to resolve candidate streams.
    """

    id: MatchID
    sport: str = ""
    league: str = ""
    team1: str = ""
    team2: str = ""
    start_time: datetime | None = None
    is_live: bool = False
    sources: tuple[MatchSource, ...] = ()

    @property
    def title(self) -> str:
        if self.team2:
            return f"{self.team1} vs {self.team2}"
        return self.team1


@dataclass(frozen=True)
class HealthRecord:
    """Health of one endpoint at a point in time.

    Records are replaced whole on every update so readers never observe a
    partially written record.

    Attributes:
        endpoint_id: Identity of the endpoint this record describes.
        status: Current reachability classification.
        last_checked: Epoch seconds of the last report (0.0 if never checked).
        last_working: Epoch seconds of the last successful report, if any.
        error_count: Consecutive failures since the last success.
    """

    endpoint_id: EndpointID
    status: HealthStatus = HealthStatus.UNKNOWN
    last_checked: float = 0.0
    last_working: float | None = None
    error_count: int = 0


@dataclass
class ViewSlot:
    """One independent playback context within a session.

    Attributes:
        match: The match bound to this slot.
        candidates: Every stream resolved for the match.
        selected: Currently selected stream, always one of ``candidates``.
        muted: Whether audio is muted for this slot.
        focused: Layout hint marking the slot as the main view.
        exhausted: Set when the last failover found no replacement.
    """

    match: Match
    candidates: tuple[Stream, ...] = ()
    selected: Stream | None = None
    muted: bool = False
    focused: bool = False
    exhausted: bool = field(default=False)

    @property
    def endpoint_id(self) -> EndpointID | None:
        """Identity of the selected endpoint, or None if nothing is selected."""
        if self.selected is None:
            return None
        return endpoint_id(self.selected)


def endpoint_id(stream: Stream) -> EndpointID:
    """
    Derive a stable identity for a stream from its content.

    The identity depends only on the source label and playable URL, so the
    same stream keeps its health record when a candidate list is reordered.

    Args:
        stream: The stream to identify.

    Returns:
        Identifier of the form ``"<source>-<digest>"``.
    """
    source = stream.source or "unknown"
    digest = hashlib.sha1(f"{source}\n{stream.playable_url}".encode()).hexdigest()
    return f"{source}-{digest[:12]}"
