"""
core/background.py -- Supervised fire-and-forget work.

BackgroundTaskRunner runs side effects that must not hold up the HTTP
response (activation and password-reset mail) on a small thread pool:

  run(fn, *args)      submit and return immediately
  shutdown(grace)     stop accepting work, wait up to ``grace`` seconds for
                      in-flight tasks, then abandon whatever is left

Every task is wrapped so an exception inside it is logged with its traceback
and goes no further -- a failing mail server cannot crash the request that
queued the mail, nor the worker thread.

Threads rather than asyncio tasks: the tasks are blocking I/O (smtplib) and
are submitted from sync route handlers that FastAPI already runs in its
threadpool.

Lifecycle: created in the FastAPI lifespan startup, drained in lifespan
shutdown (api/main.py), mirroring the start/cancel pairing used for other
long-lived resources there.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

logger = logging.getLogger("offerland.background")


class BackgroundTaskRunner:
    """Bounded pool of worker threads with a drain-on-shutdown contract.

    Usage:
        runner = BackgroundTaskRunner(max_workers=4)
        runner.run(notifier.send_activation, user, issued)
        ...
        runner.shutdown(grace_seconds=20)
    """

    def __init__(self, max_workers: int = 4, name: str = "offerland-bg") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._pending)

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``fn(*args, **kwargs)`` and return without waiting.

        Raises RuntimeError once shutdown() has started.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("BackgroundTaskRunner is shut down")
            future = self._executor.submit(self._supervise, fn, args, kwargs)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    @staticmethod
    def _supervise(fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Background task %s failed", getattr(fn, "__qualname__", repr(fn)))

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def shutdown(self, grace_seconds: float = 20.0) -> int:
        """Wait up to ``grace_seconds`` for in-flight tasks. Returns how many were abandoned."""
        with self._lock:
            self._closed = True
            pending = set(self._pending)
        if pending:
            logger.info("Completing %d background task(s)", len(pending))
        _, not_done = wait(pending, timeout=grace_seconds)
        if not_done:
            logger.warning("Abandoning %d background task(s) after %.1fs grace period", len(not_done), grace_seconds)
        self._executor.shutdown(wait=False, cancel_futures=True)
        return len(not_done)
