"""Poll scheduler: chained poll cycles plus an hourly dedup cleanup."""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable

from gmail_slack_forwarder.exceptions import StorageError
from gmail_slack_forwarder.poller.processor import MessageProcessor
from gmail_slack_forwarder.storage.dedup import DedupStore

CLEANUP_INTERVAL_SECONDS = 60 * 60


class PollerState(enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class Poller:
    """Single-threaded scheduler driving :class:`MessageProcessor`.

    The next poll is armed only after the current one has finished, so
    cycles never overlap however long one takes. Cleanup runs at a fixed
    rate from the same loop. A failing cycle is logged and the schedule
    carries on; only :class:`StorageError` escapes, since the dedup store
    is required for every cycle.

    Deadlines are plain numbers from ``clock``. :meth:`run_pending` fires
    whatever is due, which lets tests drive the schedule with a fake clock
    instead of real timers.

    Args:
        processor: Initialized message processor.
        storage: Dedup store to clean up.
        poll_interval_seconds: Delay between the end of one poll and the
            start of the next.
        retention_days: Age beyond which dedup records are deleted.
        cleanup_interval_seconds: Period of the cleanup pass.
        clock: Monotonic time source in seconds.
        logger: Logger to report to; defaults to this module's logger.
    """

    def __init__(
        self,
        processor: MessageProcessor,
        storage: DedupStore,
        poll_interval_seconds: float,
        retention_days: int,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self.processor = processor
        self.storage = storage
        self.poll_interval_seconds = poll_interval_seconds
        self.retention_days = retention_days
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self.state = PollerState.IDLE
        self._running = False
        self._next_poll_at: float | None = None
        self._next_cleanup_at: float | None = None
        self._wakeup = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Clean up, poll once immediately, then arm both timers."""
        if self._running:
            self.logger.warning("Poller is already running")
            return

        self._running = True
        self._wakeup.clear()
        self.logger.info(
            f"Starting poller (interval={self.poll_interval_seconds}s, "
            f"retention={self.retention_days}d)"
        )

        self.cleanup()
        self._next_cleanup_at = self._clock() + self.cleanup_interval_seconds

        self.poll()
        self._schedule_next_poll()

    def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        self._next_poll_at = None
        self._next_cleanup_at = None
        self.state = PollerState.IDLE
        self._wakeup.set()
        self.logger.info("Poller stopped")

    def next_deadline(self) -> float | None:
        deadlines = [d for d in (self._next_poll_at, self._next_cleanup_at) if d is not None]
        return min(deadlines) if deadlines else None

    def run_pending(self) -> None:
        """Fire every timer whose deadline has passed."""
        now = self._clock()

        if self._next_cleanup_at is not None and now >= self._next_cleanup_at:
            self.cleanup()
            if self._running:
                self._next_cleanup_at = max(
                    self._next_cleanup_at + self.cleanup_interval_seconds, now,
                )

        if self._next_poll_at is not None and now >= self._next_poll_at:
            self._next_poll_at = None
            self.poll()
            self._schedule_next_poll()

    def run_forever(self) -> None:
        """Block, firing timers as they come due, until :meth:`stop` is called."""
        while self._running:
            deadline = self.next_deadline()
            timeout = None if deadline is None else max(deadline - self._clock(), 0)
            if self._wakeup.wait(timeout):
                break
            self.run_pending()

    def _schedule_next_poll(self) -> None:
        if not self._running:
            self.state = PollerState.IDLE
            return
        self._next_poll_at = self._clock() + self.poll_interval_seconds
        self.state = PollerState.SCHEDULED

    def poll(self) -> None:
        """Run one cycle over all accounts and log a summary."""
        self.state = PollerState.RUNNING
        started = self._clock()
        self.logger.debug("Starting poll cycle")

        try:
            results = self.processor.process_all_accounts()
        except StorageError:
            raise
        except Exception:
            self.logger.exception("Error in poll cycle")
            return

        processed = sum(r.processed for r in results)
        skipped = sum(r.skipped for r in results)
        errors = sum(r.errors for r in results)
        duration_ms = int((self._clock() - started) * 1000)

        if processed or errors:
            self.logger.info(
                f"Poll cycle completed: processed={processed} skipped={skipped} "
                f"errors={errors} duration={duration_ms}ms"
            )
        else:
            self.logger.debug(
                f"Poll cycle completed (no new messages): skipped={skipped} "
                f"duration={duration_ms}ms"
            )

    def cleanup(self) -> None:
        try:
            deleted = self.storage.delete_old_records(self.retention_days)
        except Exception:
            self.logger.exception("Error during cleanup")
            return
        if deleted:
            self.logger.info(
                f"Cleaned up {deleted} dedup records older than {self.retention_days} days"
            )
