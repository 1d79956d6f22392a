from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Generic, Optional, TypeVar

from .log import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Advisory abort flag handed to one computation.

    Computations poll `cancelled` and return early with a partial result; nothing
    is ever interrupted forcibly.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class BackgroundExecutor(Generic[T]):
    """Single-slot runner that restarts instead of queueing.

    `run()` cancels whatever computation is in flight and starts a fresh one.
    Results of superseded generations are dropped; the latest one is handed to
    `on_finish` on a dedicated control thread, so `on_finish` calls never overlap.
    """

    def __init__(
        self,
        compute: Optional[Callable[[CancellationToken], T]] = None,
        on_finish: Optional[Callable[[T], None]] = None,
        *,
        name: str = "executor",
    ):
        self.compute = compute
        self.on_finish = on_finish
        self.runtime_ms = 0
        self._generation = 0
        self._token: Optional[CancellationToken] = None
        self._pending = 0
        self._closed = False
        self._cond = threading.Condition()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{name}-worker")
        self._control = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{name}-control")

    @property
    def generation(self) -> int:
        return self._generation

    def run(self) -> int:
        """Supersede the current computation and start a new one. Returns its generation."""
        compute = self.compute
        if compute is None:
            raise RuntimeError("BackgroundExecutor.run() called without a compute function")
        with self._cond:
            if self._closed:
                log.debug("Ignoring run() after shutdown")
                return self._generation
            if self._token is not None:
                self._token.cancel()
            self._generation += 1
            generation = self._generation
            token = CancellationToken()
            self._token = token
            self._pending += 1
            # Submitted under the lock so shutdown() cannot slip in between.
            self._worker.submit(self._execute, generation, token, compute)
        return generation

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no computation or delivery is outstanding."""
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)

    def cancel(self) -> None:
        with self._cond:
            if self._token is not None:
                self._token.cancel()
            # Anything still running becomes stale.
            self._generation += 1

    def shutdown(self) -> None:
        with self._cond:
            self._closed = True
        self.cancel()
        self._worker.shutdown(wait=True)
        self._control.shutdown(wait=True)

    def _is_current(self, generation: int) -> bool:
        with self._cond:
            return generation == self._generation

    def _execute(self, generation: int, token: CancellationToken, compute: Callable[[CancellationToken], T]) -> None:
        try:
            if token.cancelled or not self._is_current(generation):
                log.debug("Skipping superseded computation (generation %d)", generation)
                return
            t0 = time.perf_counter()
            try:
                result = compute(token)
            except Exception:
                log.exception("Background computation failed (generation %d)", generation)
                return
            runtime_ms = int((time.perf_counter() - t0) * 1000)
            if token.cancelled:
                log.debug("Discarding cancelled computation (generation %d)", generation)
                return
            with self._cond:
                self._pending += 1
            self._control.submit(self._deliver, generation, result, runtime_ms)
        finally:
            self._done()

    def _deliver(self, generation: int, result: T, runtime_ms: int) -> None:
        try:
            if not self._is_current(generation):
                log.debug("Dropping stale result (generation %d, current %d)", generation, self._generation)
                return
            self.runtime_ms = runtime_ms
            on_finish = self.on_finish
            if on_finish is None:
                return
            try:
                on_finish(result)
            except Exception:
                log.exception("Result handler failed (generation %d)", generation)
        finally:
            self._done()

    def _done(self) -> None:
        with self._cond:
            self._pending -= 1
            self._cond.notify_all()
