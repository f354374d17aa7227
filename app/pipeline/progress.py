"""Progress observers for analysis runs.

The aggregation engine calls ``notify`` once when a run starts, once per
completed entity (in completion order) and once at the end. Observers are
fire-and-forget: a failing observer is logged and never interrupts the run.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING

from app.schemas.analysis import ProgressUpdate
from app.storage.base import AnalysisStore

if TYPE_CHECKING:
    from app.config import Settings

logger = logging.getLogger(__name__)


class ProgressObserver(ABC):
    """Receives ProgressUpdate notifications."""

    @abstractmethod
    def notify(self, update: ProgressUpdate) -> None:
        ...


def safe_notify(observer: ProgressObserver | None, update: ProgressUpdate) -> None:
    """Deliver *update*; observer errors are logged, not raised."""
    if observer is None:
        return
    try:
        observer.notify(update)
    except Exception as e:
        logger.warning(
            "Progress observer %s failed for session %s: %s",
            type(observer).__name__,
            update.session_id,
            e,
        )


class LoggingProgressObserver(ProgressObserver):
    def notify(self, update: ProgressUpdate) -> None:
        logger.info(
            "Analysis %s: %s %d/%d (%.1f%%) current=%s",
            update.session_id,
            update.status,
            update.completed,
            update.total,
            update.percentage,
            update.current_entity,
        )


class QueueProgressObserver(ProgressObserver):
    """Buffers updates in a bounded asyncio.Queue for a consumer (e.g. a stream).

    When the queue is full the oldest buffered update is dropped to make room,
    so a slow consumer always sees the most recent state. *maxsize* defaults
    to the PROGRESS_QUEUE_MAXSIZE setting.
    """

    def __init__(self, maxsize: int | None = None, settings: Settings | None = None) -> None:
        if maxsize is None:
            if settings is None:
                from app.config import get_settings

                settings = get_settings()
            maxsize = settings.progress_queue_maxsize
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.queue: asyncio.Queue[ProgressUpdate] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def notify(self, update: ProgressUpdate) -> None:
        while True:
            try:
                self.queue.put_nowait(update)
                return
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    def drain(self) -> list[ProgressUpdate]:
        """Remove and return everything currently buffered, oldest first."""
        items: list[ProgressUpdate] = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return items


class RunTrackingObserver(ProgressObserver):
    """Persists each update to the analysis_runs row for its session."""

    def __init__(
        self,
        store: AnalysisStore,
        *,
        identity: str | None = None,
        providers: list[str] | None = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._providers = providers
        self._created: set[str] = set()

    def notify(self, update: ProgressUpdate) -> None:
        first = update.session_id not in self._created
        self._store.save_run_progress(
            update,
            identity=self._identity if first else None,
            providers=self._providers if first else None,
            error=update.error,
        )
        self._created.add(update.session_id)


class CompositeProgressObserver(ProgressObserver):
    """Fans each update out to several observers, isolating their failures."""

    def __init__(self, observers: Iterable[ProgressObserver]) -> None:
        self.observers = list(observers)

    def notify(self, update: ProgressUpdate) -> None:
        for observer in self.observers:
            safe_notify(observer, update)
