"""Per-conversation sequential execution over a shared thread pool."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Condition, Lock
from typing import Any

logger = logging.getLogger(__name__)

_Task = tuple[Future, Callable[..., Any], tuple[Any, ...], dict[str, Any]]


class ConversationDispatcher:
    """Wrapper around :class:`ThreadPoolExecutor` with one FIFO queue per key.

    Tasks sharing a key (a contact phone) run one at a time in submission
    order; tasks of different keys run in parallel. A key whose queue is
    drained gives its worker back after each task, so a busy conversation
    cannot starve the others.
    """

    def __init__(self, max_workers: int = 8):
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="chatsync-worker"
        )
        self._lock = Lock()
        self._idle = Condition(self._lock)
        self._queues: dict[str, deque[_Task]] = {}
        self._pending = 0
        self._closed = False

    def submit(self, key: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Queue ``fn(*args, **kwargs)`` behind earlier tasks for ``key``."""

        future: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatcher is shut down")
            queue = self._queues.get(key)
            schedule = queue is None
            if queue is None:
                queue = self._queues[key] = deque()
            queue.append((future, fn, args, kwargs))
            self._pending += 1
        if schedule:
            self.executor.submit(self._run_next, key)
        return future

    def _run_next(self, key: str) -> None:
        with self._lock:
            future, fn, args, kwargs = self._queues[key].popleft()
        try:
            if future.set_running_or_notify_cancel():
                try:
                    result = fn(*args, **kwargs)
                except BaseException as exc:
                    logger.exception("Task for %s failed", key)
                    future.set_exception(exc)
                else:
                    future.set_result(result)
        finally:
            with self._lock:
                self._pending -= 1
                more = bool(self._queues[key])
                if not more:
                    del self._queues[key]
                if self._pending == 0:
                    self._idle.notify_all()
            if more:
                self.executor.submit(self._run_next, key)

    def pending(self) -> int:
        with self._lock:
            return self._pending

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued task has finished."""

        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        if wait:
            self.wait_idle()
        self.executor.shutdown(wait=wait)
