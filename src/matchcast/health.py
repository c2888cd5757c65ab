"""Endpoint health registry with active reachability probing."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import TypeAlias

import requests

from .types import (
    OFFLINE_FAILURE_THRESHOLD,
    PROBE_INTERVAL_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    RECOVERY_WINDOW_SECONDS,
    URL,
    EndpointID,
    HealthRecord,
    HealthStatus,
)

logger = logging.getLogger(__name__)

EndpointMap: TypeAlias = Mapping[EndpointID, URL]
EndpointSource: TypeAlias = EndpointMap | Iterable[tuple[EndpointID, URL]] | Callable[[], EndpointMap]


def check_reachability(url: URL, timeout: float = PROBE_TIMEOUT_SECONDS) -> bool:
    """
    Attempt a lightweight request against a URL.

    Any completed response counts as reachable; the status code and body
    are not interpreted.

    Args:
        url: URL to check.
        timeout: Request timeout in seconds (default: 5.0).

    Returns:
        True if the request completed, False on error or timeout.
    """
    try:
        response = requests.head(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        logger.debug("Reachability check failed: %s - %s", url, e)
        return False

    logger.debug("Reachability check passed (status %d): %s", response.status_code, url)
    return True


class HealthRegistry:
    """
    Tracks the reachability of stream endpoints over time.

    Every state change goes through :meth:`report`, which replaces the
    endpoint's record under a lock. Probes run the blocking HTTP check in a
    worker thread so concurrent probes for different endpoints never wait on
    each other.

    Attributes:
        probe_timeout: Upper bound in seconds for a single probe.
        recovery_window: Seconds without a success before a working probe
            counts as a recovery.
        executor: ThreadPoolExecutor for blocking reachability checks.
    """

    def __init__(
        self,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        recovery_window: float = RECOVERY_WINDOW_SECONDS,
        max_workers: int = 5,
        clock: Callable[[], float] = time.time,
        checker: Callable[[URL, float], bool] = check_reachability,
    ) -> None:
        """
        Initialize the registry.

        Args:
            probe_timeout: Seconds before a probe is treated as failed (default: 5.0).
            recovery_window: Staleness in seconds that qualifies a recovery (default: 60.0).
            max_workers: Maximum concurrent probe threads (default: 5).
            clock: Source of epoch seconds, replaceable in tests.
            checker: Blocking reachability check taking ``(url, timeout)``.
        """
        self.probe_timeout = probe_timeout
        self.recovery_window = recovery_window
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="probe")
        self._clock = clock
        self._checker = checker
        self._records: dict[EndpointID, HealthRecord] = {}
        self._lock = threading.Lock()
        self._schedule: asyncio.Task[None] | None = None
        self._sweeps: set[asyncio.Task[None]] = set()

    def get_status(self, endpoint_id: EndpointID) -> HealthRecord:
        """
        Get the current health record for an endpoint.

        Unseen endpoints get a fresh unknown record with no failures.

        Args:
            endpoint_id: Endpoint identity.

        Returns:
            The endpoint's current HealthRecord.
        """
        with self._lock:
            return self._records.get(endpoint_id) or HealthRecord(endpoint_id=endpoint_id)

    def snapshot(self) -> dict[EndpointID, HealthRecord]:
        """Copy of every record written so far."""
        with self._lock:
            return dict(self._records)

    def report(
        self,
        endpoint_id: EndpointID,
        status: HealthStatus,
        is_working: bool = False,
    ) -> HealthRecord:
        """
        Record an observation about an endpoint.

        A working observation stamps ``last_working`` and clears the failure
        count; any other observation adds one failure.

        Args:
            endpoint_id: Endpoint identity.
            status: Status to store.
            is_working: Whether the observation was a success.

        Returns:
            The new HealthRecord.
        """
        with self._lock:
            existing = self._records.get(endpoint_id) or HealthRecord(endpoint_id=endpoint_id)
            record = self._store(existing, status, is_working)

        self._log_transition(existing, record)
        return record

    def _store(self, existing: HealthRecord, status: HealthStatus, is_working: bool) -> HealthRecord:
        """Replace a record. Caller must hold the lock."""
        now = self._clock()
        record = replace(
            existing,
            status=status,
            last_checked=now,
            last_working=now if is_working else existing.last_working,
            error_count=0 if is_working else existing.error_count + 1,
        )
        self._records[record.endpoint_id] = record
        return record

    @staticmethod
    def _log_transition(existing: HealthRecord, record: HealthRecord) -> None:
        if record.status != existing.status:
            logger.info(
                "Endpoint %s: %s -> %s (errors: %d)",
                record.endpoint_id,
                existing.status,
                record.status,
                record.error_count,
            )

    def mark_failed(self, endpoint_id: EndpointID) -> HealthStatus:
        """
        Record a failed probe or playback attempt.

        A working endpoint only drops to unstable on its first miss. Otherwise
        the endpoint goes offline once this miss brings its consecutive
        failures to the threshold, and is unstable before that.

        Args:
            endpoint_id: Endpoint identity.

        Returns:
            The status the endpoint was downgraded to.
        """
        with self._lock:
            existing = self._records.get(endpoint_id) or HealthRecord(endpoint_id=endpoint_id)
            if existing.status == HealthStatus.WORKING:
                status = HealthStatus.UNSTABLE
            elif existing.error_count + 1 >= OFFLINE_FAILURE_THRESHOLD:
                status = HealthStatus.OFFLINE
            else:
                status = HealthStatus.UNSTABLE
            record = self._store(existing, status, is_working=False)

        self._log_transition(existing, record)
        return record.status

    async def probe(self, url: URL, endpoint_id: EndpointID) -> HealthStatus:
        """
        Actively check whether an endpoint is reachable.

        Never raises: errors and timeouts are folded into the endpoint's
        health state.

        Args:
            url: URL to check.
            endpoint_id: Endpoint identity to update.

        Returns:
            The endpoint's status after the probe.
        """
        if not url:
            self.report(endpoint_id, HealthStatus.OFFLINE, is_working=False)
            return HealthStatus.OFFLINE

        try:
            reachable = await self._run_check(url)
        except TimeoutError:
            logger.debug("Probe timed out after %.1fs: %s", self.probe_timeout, url)
            reachable = False
        except Exception:
            logger.exception("Probe failed for %s", url)
            reachable = False

        if reachable:
            self.report(endpoint_id, HealthStatus.WORKING, is_working=True)
            return HealthStatus.WORKING

        return self.mark_failed(endpoint_id)

    async def _run_check(self, url: URL) -> bool:
        """
        Run the blocking check in a worker thread.

        The timeout counts from the moment a worker picks the check up, so
        probes queued behind others are not failed while waiting for a thread.
        """
        loop = asyncio.get_running_loop()
        started = asyncio.Event()

        def run() -> bool:
            loop.call_soon_threadsafe(started.set)
            return self._checker(url, self.probe_timeout)

        future = loop.run_in_executor(self.executor, run)
        waiter = asyncio.ensure_future(started.wait())
        try:
            await asyncio.wait({waiter, future}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        # Dropped from the queue by close()
        if future.cancelled():
            return False
        return await asyncio.wait_for(future, timeout=self.probe_timeout)

    async def check_recovery(self, url: URL, endpoint_id: EndpointID) -> bool:
        """
        Probe an endpoint and tell whether it has come back.

        A success counts as a recovery when the endpoint never worked before
        or its last success is older than the recovery window, so an endpoint
        that was already healthy is not reported as recovered.

        Args:
            url: URL to check.
            endpoint_id: Endpoint identity.

        Returns:
            True if the endpoint recovered, False otherwise.
        """
        previous = self.get_status(endpoint_id)
        status = await self.probe(url, endpoint_id)
        if status != HealthStatus.WORKING:
            return False

        if previous.last_working is None:
            return True
        return previous.last_working < self._clock() - self.recovery_window

    async def probe_all(self, endpoints: EndpointSource) -> dict[EndpointID, HealthStatus]:
        """
        Probe a set of endpoints concurrently.

        Args:
            endpoints: Endpoint id to URL pairs, or a callable returning a mapping.

        Returns:
            Mapping of endpoint id to its status after probing.
        """
        pairs = list(_resolve_endpoints(endpoints).items())
        statuses = await asyncio.gather(*(self.probe(url, eid) for eid, url in pairs))
        return {eid: status for (eid, _), status in zip(pairs, statuses, strict=True)}

    def start_periodic_probing(
        self,
        endpoints: EndpointSource,
        interval: float = PROBE_INTERVAL_SECONDS,
    ) -> None:
        """
        Probe every endpoint on a fixed interval.

        Replaces any schedule already running on this registry. Must be called
        from within a running event loop.

        Args:
            endpoints: Endpoint id to URL pairs, or a callable evaluated on every sweep.
            interval: Seconds between sweeps (default: 30.0).
        """
        if self._schedule is not None:
            logger.debug("Replacing existing probe schedule")
            self._schedule.cancel()

        self._schedule = asyncio.get_running_loop().create_task(
            self._probe_loop(endpoints, interval),
            name="health-probe-schedule",
        )
        logger.info("Started periodic probing every %.0fs", interval)

    async def _probe_loop(self, endpoints: EndpointSource, interval: float) -> None:
        """Launch a sweep every interval without waiting for it to finish."""
        while True:
            await asyncio.sleep(interval)
            sweep = asyncio.get_running_loop().create_task(self._sweep(endpoints))
            self._sweeps.add(sweep)
            sweep.add_done_callback(self._sweeps.discard)

    async def _sweep(self, endpoints: EndpointSource) -> None:
        try:
            statuses = await self.probe_all(endpoints)
        except Exception:
            logger.exception("Error in periodic probe sweep")
            return

        degraded = [eid for eid, status in statuses.items() if status != HealthStatus.WORKING]
        logger.debug("Probe sweep: %d endpoints, %d not working", len(statuses), len(degraded))

    @property
    def is_probing(self) -> bool:
        return self._schedule is not None and not self._schedule.done()

    def stop(self) -> None:
        """Cancel the periodic probe schedule and any sweep in flight."""
        if self._schedule is None:
            return

        self._schedule.cancel()
        self._schedule = None
        for sweep in list(self._sweeps):
            sweep.cancel()
        self._sweeps.clear()
        logger.info("Stopped periodic probing")

    def close(self) -> None:
        """Stop probing and release the worker threads."""
        self.stop()
        self.executor.shutdown(wait=False, cancel_futures=True)


def _resolve_endpoints(endpoints: EndpointSource) -> dict[EndpointID, URL]:
    if callable(endpoints):
        endpoints = endpoints()
    return dict(endpoints)
