"""Run registry — active runs plus a bounded, most-recent-first history.

A run lives in exactly one place: the active map while it executes, the
history once it is terminal. ``complete`` moves it under the same lock that
guards lookups, so no reader ever sees it in both or in neither.
"""

import logging
import threading
from collections import deque

from sentinelhub.errors import RunNotFoundError
from sentinelhub.pipeline.models import PipelineRun

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class RunRegistry:
    """Holds active and finished pipeline runs.

    Args:
        history_limit: Maximum finished runs retained; oldest evicted first
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self.history_limit = history_limit
        self._active: dict[str, PipelineRun] = {}
        # appendleft + maxlen: newest at index 0, overflow drops the right end
        self._history: deque[PipelineRun] = deque(maxlen=history_limit)
        self._lock = threading.Lock()

    def register(self, run: PipelineRun) -> None:
        """Add a new run to the active set.

        Raises:
            ValueError: If the id is already known
        """
        with self._lock:
            if run.id in self._active or any(r.id == run.id for r in self._history):
                raise ValueError(f"Duplicate pipeline id: {run.id}")
            self._active[run.id] = run

    def complete(self, pipeline_id: str) -> PipelineRun | None:
        """Move a run from active to the front of history.

        Returns:
            The oldest run, if the move pushed it out of history; else None

        Raises:
            RunNotFoundError: If the run is not active
            ValueError: If the run has not reached a terminal status
        """
        with self._lock:
            run = self._active.get(pipeline_id)
            if run is None:
                raise RunNotFoundError(pipeline_id)
            if not run.is_terminal:
                raise ValueError(f"Run {pipeline_id} is still {run.status.value}")
            del self._active[pipeline_id]
            evicted = None
            if len(self._history) == self._history.maxlen:
                evicted = self._history[-1]
                logger.debug("History full, evicting %s", evicted.id)
            self._history.appendleft(run)
            return evicted

    def get(self, pipeline_id: str) -> PipelineRun | None:
        """Look up a run, active set first, then history."""
        with self._lock:
            run = self._active.get(pipeline_id)
            if run is not None:
                return run
            for run in self._history:
                if run.id == pipeline_id:
                    return run
            return None

    def list_history(self, limit: int | None = None) -> list[PipelineRun]:
        """Finished runs, newest first."""
        with self._lock:
            runs = list(self._history)
        return runs if limit is None else runs[:max(limit, 0)]

    def active_runs(self) -> list[PipelineRun]:
        with self._lock:
            return list(self._active.values())

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def history_count(self) -> int:
        with self._lock:
            return len(self._history)
