"""Periodic auto-sync on a background thread."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .engine import DEFAULT_COMMIT_MESSAGE, SyncEngine
from .models import FailureReason, SyncResult

logger = logging.getLogger(__name__)


class AutoSyncScheduler:
    """Runs ``engine.sync`` every ``interval_minutes``.

    A tick that fires while another sync is running is skipped, never
    queued. An interval of 0 disables the scheduler.
    """

    def __init__(
        self,
        engine: SyncEngine,
        remote_url: str,
        branch: str,
        commit_message_template: str = DEFAULT_COMMIT_MESSAGE,
        interval_minutes: float = 0,
    ) -> None:
        self.engine = engine
        self.remote_url = remote_url
        self.branch = branch
        self.commit_message_template = commit_message_template
        self.interval_minutes = interval_minutes
        self.last_result: Optional[SyncResult] = None
        self.skipped_ticks = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SyncResult:
        """One tick: sync now unless a sync is already in flight."""
        result = self.engine.sync(
            self.remote_url,
            self.branch,
            self.commit_message_template,
            wait=False,
        )
        if result.reason is FailureReason.BUSY:
            self.skipped_ticks += 1
            logger.info("Auto-sync tick skipped: a sync is already in progress")
        else:
            self.last_result = result
            if result.ok:
                logger.info(f"Auto sync completed: {result}")
            elif result.reason is not None and result.reason.retryable:
                logger.warning(f"Auto sync failed, will retry next tick: {result}")
            else:
                logger.error(f"Auto sync failed: {result}")
        return result

    def start(self) -> None:
        if not self.enabled:
            logger.info("Auto-sync disabled (interval is 0)")
            return
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="vault-auto-sync", daemon=True)
        self._thread.start()
        logger.info(f"Auto-sync every {self.interval_minutes:g} minute(s)")

    def stop(self, cancel: bool = True, timeout: Optional[float] = 10.0) -> None:
        """Stop ticking; with ``cancel`` also abort the sync in flight."""
        self._stop.set()
        if cancel:
            self.engine.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait(self) -> None:
        """Block until ``stop`` is called."""
        while self.running:
            self._stop.wait(1.0)

    def _loop(self) -> None:
        interval = self.interval_minutes * 60
        while not self._stop.wait(interval):
            self.run_once()
