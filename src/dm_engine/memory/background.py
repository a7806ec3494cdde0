"""Fire-and-forget background work.

Post-turn memory ingestion runs here so the player's response never
waits on embedding calls. Task failures are logged and never reach the
submitting thread.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from dm_engine.core.logging import get_logger


logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Thread pool for isolated background tasks.

    Example:
        >>> runner = BackgroundTaskRunner(max_workers=2)
        >>> runner.submit(pipeline.ingest_turn, record, description="ingest turn 4")
        >>> runner.wait_idle(timeout=5)
    """

    def __init__(self, *, max_workers: int = 2, name: str = "dm-engine-bg") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: set[Future[Any]] = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        description: str = "background task",
        **kwargs: Any,
    ) -> Future[Any] | None:
        """Schedule a call without waiting for it.

        Args:
            fn: Callable to run.
            *args: Positional arguments for ``fn``.
            description: Label used in failure logs.
            **kwargs: Keyword arguments for ``fn``.

        Returns:
            The future, or None if the runner has been shut down.
        """

        def run() -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                logger.error(
                    "Background task failed",
                    task=description,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return None

        with self._lock:
            if self._closed:
                logger.warning("Background runner is shut down, dropping task", task=description)
                return None
            future = self._executor.submit(run)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future[Any]) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every submitted task has finished.

        Args:
            timeout: Maximum seconds to wait; None waits forever.

        Returns:
            True if the runner is idle, False if the timeout expired.
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, *, wait_for_tasks: bool = True) -> None:
        """Stop accepting tasks and optionally drain the queue."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_tasks)


__all__ = [
    "BackgroundTaskRunner",
]
