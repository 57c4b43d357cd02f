"""Status reporting: state transitions and the last-known branch snapshot."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional, Protocol

from .models import StatusSnapshot, SyncResult, SyncState

logger = logging.getLogger(__name__)


class StatusReporter(Protocol):
    """Display surface fed by the engine."""

    def state_changed(self, state: SyncState, detail: str) -> None: ...

    def sync_finished(self, result: SyncResult) -> None: ...


@dataclass(frozen=True)
class StatusEvent:
    state: SyncState
    detail: str
    result: Optional[SyncResult] = None


Subscriber = Callable[[StatusEvent], None]


class LoggingReporter:
    """Reporter for headless runs: everything goes to the log."""

    def state_changed(self, state: SyncState, detail: str) -> None:
        logger.info(f"{state.value}: {detail}")

    def sync_finished(self, result: SyncResult) -> None:
        if result.ok:
            logger.info(str(result))
        else:
            logger.error(str(result))


class StatusHub:
    """Fans engine transitions out to subscribers and an optional reporter.

    A subscriber or reporter that raises is logged and skipped so display
    problems never abort a sync.
    """

    def __init__(self, reporter: Optional[StatusReporter] = None) -> None:
        self.reporter = reporter
        self._subscribers: list[Subscriber] = []
        self._snapshot = StatusSnapshot()
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def snapshot(self) -> StatusSnapshot:
        with self._lock:
            return self._snapshot

    def update_position(self, branch: Optional[str], ahead: int, behind: int) -> StatusSnapshot:
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                branch=branch,
                ahead=ahead,
                behind=behind,
                updated_at=datetime.now(),
            )
            return self._snapshot

    def transition(self, state: SyncState, detail: str = "") -> None:
        logger.debug(f"State -> {state.value} {detail}".rstrip())
        with self._lock:
            self._snapshot = replace(self._snapshot, state=state, updated_at=datetime.now())
        if self.reporter is not None:
            self._safely(self.reporter.state_changed, state, detail)
        self._notify(StatusEvent(state=state, detail=detail))

    def finished(self, result: SyncResult) -> None:
        with self._lock:
            self._snapshot = replace(self._snapshot, last_result=result, updated_at=datetime.now())
        if self.reporter is not None:
            self._safely(self.reporter.sync_finished, result)
        self._notify(StatusEvent(state=self._snapshot.state, detail=result.message, result=result))

    def _notify(self, event: StatusEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._safely(callback, event)

    @staticmethod
    def _safely(func, *args) -> None:
        try:
            func(*args)
        except Exception:
            logger.exception("Status reporter raised; continuing")
