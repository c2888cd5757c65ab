"""Multi-view sessions with independent per-slot failover."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Self, TypeAlias

from .health import HealthRegistry
from .selector import StreamSelector
from .types import (
    DEFAULT_MAX_SLOTS,
    PROBE_INTERVAL_SECONDS,
    RECOVERY_INTERVAL_SECONDS,
    URL,
    EndpointID,
    FailoverStatus,
    HealthStatus,
    LayoutMode,
    Match,
    MatchID,
    Stream,
    ViewSlot,
    endpoint_id,
)

logger = logging.getLogger(__name__)

CandidateResolver: TypeAlias = Callable[[Match], Awaitable[list[Stream]]]


class Session:
    """
    A bounded set of view slots, each following its own match.

    Every slot selects the best stream for its match and fails over on its
    own when told that playback failed. All slots share one health registry,
    so an endpoint that fails for one slot is downgraded for every slot that
    considers it.

    While started, the session runs two background sweeps: a probe of every
    endpoint across all slots, and a recovery check of endpoints that are
    currently offline. Use ``async with`` to guarantee both are cancelled.

    Attributes:
        registry: Shared health registry.
        selector: Ranks candidates for each slot.
        resolver: Async callable resolving a match into candidate streams.
        max_slots: Maximum number of slots.
        probe_interval: Seconds between probe sweeps.
        recovery_interval: Seconds between recovery sweeps.
        layout: Presentation hint for arranging slots.
        slots: Active slots in insertion order.
    """

    def __init__(
        self,
        resolver: CandidateResolver,
        registry: HealthRegistry,
        selector: StreamSelector | None = None,
        max_slots: int = DEFAULT_MAX_SLOTS,
        probe_interval: float = PROBE_INTERVAL_SECONDS,
        recovery_interval: float = RECOVERY_INTERVAL_SECONDS,
        on_recovery: Callable[[EndpointID], None] | None = None,
    ) -> None:
        """
        Initialize an empty session.

        Args:
            resolver: Async callable returning the candidate streams of a match.
            registry: Health registry shared by every slot.
            selector: Selector to rank candidates (built on ``registry`` if None).
            max_slots: Slot capacity (default: 4).
            probe_interval: Seconds between probe sweeps (default: 30.0).
            recovery_interval: Seconds between recovery sweeps (default: 60.0).
            on_recovery: Callback invoked with the id of a recovered endpoint.
        """
        self.resolver = resolver
        self.registry = registry
        self.selector = selector or StreamSelector(registry)
        self.max_slots = max_slots
        self.probe_interval = probe_interval
        self.recovery_interval = recovery_interval
        self.on_recovery = on_recovery
        self.layout = LayoutMode.GRID
        self.slots: list[ViewSlot] = []
        self._recovery_task: asyncio.Task[None] | None = None

    @classmethod
    async def create(
        cls,
        initial_match: Match,
        resolver: CandidateResolver,
        registry: HealthRegistry,
        **kwargs,
    ) -> "Session":
        """
        Create a session already showing one match.

        Args:
            initial_match: Match for the first slot.
            resolver: Async callable returning the candidate streams of a match.
            registry: Health registry shared by every slot.
            **kwargs: Passed through to the constructor.

        Returns:
            A session with one unmuted, focused slot.
        """
        session = cls(resolver, registry, **kwargs)
        await session.add_match(initial_match)
        return session

    def __len__(self) -> int:
        return len(self.slots)

    def get_slot(self, match_id: MatchID) -> ViewSlot | None:
        for slot in self.slots:
            if slot.match.id == match_id:
                return slot
        return None

    def is_full(self) -> bool:
        return len(self.slots) >= self.max_slots

    async def _resolve(self, match: Match) -> tuple[Stream, ...]:
        """Resolve candidates, degrading to none if the resolver fails."""
        try:
            candidates = await self.resolver(match)
        except Exception:
            logger.exception("Failed to resolve streams for match %s", match.id)
            return ()
        return tuple(candidates)

    async def add_match(self, match: Match) -> bool:
        """
        Add a slot for a match.

        New slots are muted unless they are the first in the session.

        Args:
            match: The match to show.

        Returns:
            True if a slot was added, False if the session is full or the
            match is already shown.
        """
        if self.is_full() or self.get_slot(match.id) is not None:
            logger.info("Not adding match %s (slots: %d/%d)", match.id, len(self), self.max_slots)
            return False

        candidates = await self._resolve(match)

        # Another add may have completed while resolving.
        if self.is_full() or self.get_slot(match.id) is not None:
            logger.info("Not adding match %s after resolving streams", match.id)
            return False

        first = not self.slots
        slot = ViewSlot(
            match=match,
            candidates=candidates,
            selected=self.selector.select_best(candidates),
            muted=not first,
            focused=first,
        )
        self.slots.append(slot)

        if slot.selected is None:
            logger.warning("No streams available for %s", match.title)
        else:
            logger.info(
                "Added %s with %d candidates, playing %s",
                match.title,
                len(candidates),
                slot.selected.playable_url,
            )
        return True

    def remove_match(self, match_id: MatchID) -> bool:
        """
        Remove a match's slot.

        If the removed slot had focus, focus moves to the first remaining slot.

        Args:
            match_id: Match to remove.

        Returns:
            True if a slot was removed.
        """
        slot = self.get_slot(match_id)
        if slot is None:
            return False

        self.slots.remove(slot)
        if slot.focused and self.slots:
            self.slots[0].focused = True
        logger.info("Removed match %s (slots: %d/%d)", match_id, len(self), self.max_slots)
        return True

    def keep_first(self) -> None:
        """Drop every slot except the first, which keeps or takes focus."""
        del self.slots[1:]
        if self.slots:
            self.slots[0].focused = True

    def toggle_mute(self, match_id: MatchID) -> bool:
        """
        Flip the mute flag of a slot.

        Returns:
            The new mute state, or False if the match is not shown.
        """
        slot = self.get_slot(match_id)
        if slot is None:
            return False
        slot.muted = not slot.muted
        return slot.muted

    def focus(self, match_id: MatchID) -> bool:
        """Give focus to one slot and take it from all others."""
        if self.get_slot(match_id) is None:
            return False
        for slot in self.slots:
            slot.focused = slot.match.id == match_id
        return True

    def set_layout(self, layout: LayoutMode) -> bool:
        """Change the layout; side-by-side needs exactly two slots."""
        if layout == LayoutMode.SIDE_BY_SIDE and len(self.slots) != 2:  # noqa: PLR2004
            return False
        self.layout = layout
        return True

    def set_stream(self, match_id: MatchID, stream: Stream) -> bool:
        """
        Manually select a stream for a slot.

        Args:
            match_id: Match whose slot to change.
            stream: Stream to select; must be one of the slot's candidates.

        Returns:
            True if the selection changed, False if it was rejected.
        """
        slot = self.get_slot(match_id)
        if slot is None or stream not in slot.candidates:
            logger.warning("Rejected stream selection for match %s", match_id)
            return False

        slot.selected = stream
        slot.exhausted = False
        return True

    def report_success(self, match_id: MatchID) -> None:
        """Record that a slot's current stream loaded and is playing."""
        slot = self.get_slot(match_id)
        if slot is None or slot.endpoint_id is None:
            return
        self.registry.report(slot.endpoint_id, HealthStatus.WORKING, is_working=True)
        slot.exhausted = False

    def report_failure(self, match_id: MatchID) -> FailoverStatus:
        """
        Record a playback failure and fail over to the next best stream.

        The failed endpoint is downgraded in the registry. The replacement's
        error history is left as is; only a later success clears it. When no
        other candidate exists the slot keeps its current stream.

        Args:
            match_id: Match whose stream failed.

        Returns:
            SWITCHED if the slot moved to another stream, EXHAUSTED if no
            candidate was left, UNKNOWN_MATCH if the match is not shown.
        """
        slot = self.get_slot(match_id)
        if slot is None:
            return FailoverStatus.UNKNOWN_MATCH

        failed_id = slot.endpoint_id
        if failed_id is not None:
            self.registry.mark_failed(failed_id)

        remaining = [s for s in slot.candidates if endpoint_id(s) != failed_id]
        replacement = self.selector.select_best(remaining)
        if replacement is None:
            slot.exhausted = True
            logger.error("No more streams available for %s", slot.match.title)
            return FailoverStatus.EXHAUSTED

        slot.selected = replacement
        slot.exhausted = False
        logger.info("Switched %s to next stream: %s", slot.match.title, replacement.playable_url)
        return FailoverStatus.SWITCHED

    def reselect(self, match_id: MatchID) -> Stream | None:
        """
        Re-rank a slot's candidates against current health and rebind it.

        Returns:
            The slot's selection after re-ranking.
        """
        slot = self.get_slot(match_id)
        if slot is None:
            return None

        best = self.selector.select_best(slot.candidates)
        if best != slot.selected:
            logger.info("Reselected stream for %s", slot.match.title)
            slot.selected = best
            slot.exhausted = False
        return slot.selected

    def reselect_all(self) -> None:
        for slot in self.slots:
            self.reselect(slot.match.id)

    def endpoints(self) -> dict[EndpointID, URL]:
        """Every distinct endpoint across all slots, mapped to its URL."""
        return {
            endpoint_id(stream): stream.playable_url
            for slot in self.slots
            for stream in slot.candidates
        }

    def health_of(self, match_id: MatchID) -> HealthStatus:
        """Health badge of a slot's current stream."""
        slot = self.get_slot(match_id)
        if slot is None or slot.endpoint_id is None:
            return HealthStatus.UNKNOWN
        return self.registry.get_status(slot.endpoint_id).status

    async def recover_offline(self) -> list[EndpointID]:
        """
        Re-probe every offline endpoint once.

        Returns:
            Ids of endpoints that recovered.
        """
        offline = {
            eid: url
            for eid, url in self.endpoints().items()
            if self.registry.get_status(eid).status == HealthStatus.OFFLINE
        }
        if not offline:
            return []

        results = await asyncio.gather(
            *(self.registry.check_recovery(url, eid) for eid, url in offline.items())
        )
        recovered = [eid for eid, ok in zip(offline, results, strict=True) if ok]
        for eid in recovered:
            logger.info("Stream %s has recovered", eid)
            if self.on_recovery:
                try:
                    self.on_recovery(eid)
                except Exception:
                    logger.exception("Error in recovery callback")
        return recovered

    async def _recovery_loop(self) -> None:
        while True:
            await asyncio.sleep(self.recovery_interval)
            try:
                await self.recover_offline()
            except Exception:
                logger.exception("Error in recovery sweep")

    @property
    def is_running(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    def start(self) -> None:
        """Start the probe and recovery sweeps. Requires a running event loop."""
        if self.is_running:
            logger.warning("Session sweeps already running")
            return

        self.registry.start_periodic_probing(self.endpoints, self.probe_interval)
        self._recovery_task = asyncio.get_running_loop().create_task(
            self._recovery_loop(),
            name="session-recovery",
        )
        logger.info("Started session sweeps")

    async def close(self) -> None:
        """Cancel both sweeps and wait for the recovery task to finish."""
        self.registry.stop()
        task, self._recovery_task = self._recovery_task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped session sweeps")

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
