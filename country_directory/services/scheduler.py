"""
Background refresh scheduling for the directory cache.

A single worker task performs every refresh. Reads and the admin
trigger only ask the worker to run; they never wait for it.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from country_directory.errors import (
    ConfigurationError,
    RefreshFailure,
    RefreshInProgress,
)
from country_directory.services.cache import AggregationCache
from country_directory.utils.logging import get_logger, log_context

logger = get_logger(__name__)


class CacheState(str, Enum):
    """Freshness of the current snapshot."""
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


class RefreshScheduler:
    """
    Decides when the cache is due for a refresh and runs it off the
    request path, one at a time.
    """

    def __init__(
        self,
        cache: AggregationCache,
        ttl_seconds: float = 3600,
        timeout_seconds: float = 7200,
        check_interval: float = 60.0,
        failure_cooldown_seconds: float = 300.0,
        is_configured: Callable[[], bool] = lambda: True,
    ):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.check_interval = check_interval
        self.failure_cooldown_seconds = failure_cooldown_seconds
        self._is_configured = is_configured

        self._last_failure_at: Optional[datetime] = None
        self._requested = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self) -> CacheState:
        snapshot = self.cache.snapshot
        if snapshot is None:
            return CacheState.EMPTY
        if snapshot.age_seconds(self.cache.now()) > self.ttl_seconds:
            return CacheState.STALE
        return CacheState.FRESH

    @property
    def in_flight(self) -> bool:
        """True from the moment a refresh is requested until it finishes."""
        return self._requested or self.cache.is_refreshing

    def cooling_down(self) -> bool:
        """True for a while after a failed refresh. Only the manual trigger
        may start a refresh during that window."""
        if self._last_failure_at is None:
            return False
        elapsed = (self.cache.now() - self._last_failure_at).total_seconds()
        return elapsed < self.failure_cooldown_seconds

    def _due(self) -> bool:
        return (
            self.state() is not CacheState.FRESH
            and not self.in_flight
            and self._is_configured()
            and not self.cooling_down()
        )

    def _request(self) -> None:
        self._requested = True
        self._idle.clear()
        self._wakeup.set()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify_read(self) -> bool:
        """Called on every read. Requests a refresh when the cache is empty
        or stale, none is running and the last one did not just fail.
        Returns True if one was requested."""
        if not self._due():
            return False
        logger.info("Cache not fresh, scheduling background refresh", state=self.state().value)
        self._request()
        return True

    def trigger(self) -> Optional[datetime]:
        """Manual refresh regardless of freshness.

        Returns:
            Estimated completion time, or None when it cannot be estimated

        Raises:
            ConfigurationError: credentials are missing
            RefreshInProgress: a refresh is already running or queued
        """
        if not self._is_configured():
            raise ConfigurationError("Discourse API key and URL are not configured")
        if self.in_flight:
            raise RefreshInProgress("Cache update already in progress")

        self._request()
        logger.info("Manual cache refresh requested")

        estimate = self.cache.estimate_refresh_seconds()
        if estimate is None:
            return None
        return self.cache.now() + timedelta(seconds=estimate)

    async def wait_idle(self) -> None:
        """Wait until no refresh is requested or running."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background worker."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._worker(), name="directory-refresh")
        logger.info(
            "Refresh scheduler started",
            ttl_seconds=self.ttl_seconds,
            state=self.state().value,
        )
        # Warm an empty or stale cache straight away
        self.notify_read()

    async def stop(self) -> None:
        """Stop the worker, cancelling any refresh in flight."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._requested = False
        self._idle.set()
        logger.info("Refresh scheduler stopped")

    async def _worker(self) -> None:
        """Main loop: wait for a request or the periodic staleness check."""
        while self._running:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.check_interval)
            except asyncio.TimeoutError:
                if self._due():
                    self._request()
            self._wakeup.clear()

            if self._requested:
                await self.run_once()

    async def run_once(self) -> bool:
        """Run one refresh inline, bounded by the timeout. Returns success."""
        self._requested = True
        self._idle.clear()
        refresh_id = uuid.uuid4().hex[:8]

        with log_context(refresh_id=refresh_id):
            logger.info("Cache refresh started")
            try:
                await self.cache.refresh(timeout=self.timeout_seconds)
                self._last_failure_at = None
                return True
            except RefreshInProgress:
                logger.info("Cache refresh already running")
            except ConfigurationError as e:
                logger.warning("Cache refresh skipped", error=str(e))
            except RefreshFailure as e:
                self._last_failure_at = self.cache.now()
                logger.error(
                    "Cache refresh failed, keeping previous snapshot",
                    error=str(e),
                    retry_after_seconds=self.failure_cooldown_seconds,
                )
            except Exception as e:
                self._last_failure_at = self.cache.now()
                logger.exception("Unexpected refresh error", error=str(e))
            finally:
                self._requested = False
                self._idle.set()
        return False
