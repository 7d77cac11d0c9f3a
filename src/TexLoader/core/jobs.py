"""Stage-barrier job graph on top of a thread pool.

A stage is a list of independent units (zero-argument callables). Scheduling a
stage returns a ``JobHandle``; scheduling another stage with ``depends_on``
holds its units back until every unit of the dependency has finished, so stages
form a chain with a barrier between each link. Units inside a stage run in any
order. Scheduled work cannot be cancelled.
"""

import asyncio
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger("texture_loader.jobs")

Unit = Callable[[], None]


class JobHandle:
    """Completion token for a scheduled stage and everything it depends on."""

    def __init__(self, label: str = ""):
        self.label = label
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._pending: Optional[int] = None
        self._error: Optional[BaseException] = None
        self._callbacks: List[Callable[["JobHandle"], None]] = []

    @property
    def is_completed(self) -> bool:
        """Non-blocking completion check."""
        return self._event.is_set()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the stage is done without raising; return completion."""
        return self._event.wait(timeout)

    def complete(self) -> None:
        """Block until the stage is done; re-raise the first unit failure."""
        self._event.wait()
        if self._error is not None:
            raise self._error

    async def wait_async(self) -> None:
        """Yield to the event loop until the stage is done."""
        while not self._event.is_set():
            await asyncio.sleep(0)
        self.complete()

    def add_done_callback(self, fn: Callable[["JobHandle"], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(fn)
                return
        fn(self)

    @classmethod
    def combine(cls, *handles: "JobHandle", label: str = "combined") -> "JobHandle":
        """Return a handle that completes once every given handle has."""
        combined = cls(label)
        combined._begin(len(handles))
        for handle in handles:
            handle.add_done_callback(lambda h: combined._unit_done(h.error))
        return combined

    def _begin(self, unit_count: int) -> None:
        with self._lock:
            self._pending = unit_count
        if unit_count == 0:
            self._finish()

    def _unit_done(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            if error is not None and self._error is None:
                self._error = error
            self._pending -= 1
            done = self._pending == 0
        if done:
            self._finish()

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            if self._error is None:
                self._error = error
        self._finish()

    def _finish(self) -> None:
        with self._lock:
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn(self)

    def __repr__(self) -> str:
        state = "done" if self.is_completed else "pending"
        if self._error is not None:
            state = f"failed: {self._error!r}"
        return f"JobHandle({self.label!r}, {state})"


class JobScheduler:
    """Run stage units on a worker pool with barriers between dependent stages.

    ``max_workers=0`` runs every unit inline on the thread that makes it
    runnable, which gives a fully synchronous schedule with the same results.
    """

    def __init__(self, max_workers: Optional[int] = None):
        if max_workers is None:
            max_workers = min(32, (os.cpu_count() or 1) + 4)
        if max_workers < 0:
            raise ValueError("max_workers must be >= 0")
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._shut_down = False
        if max_workers > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="texload-job"
            )
        logger.debug("JobScheduler started with %d workers", max_workers)

    def schedule(self, units: Sequence[Unit], depends_on: Optional[JobHandle] = None,
                 label: str = "") -> JobHandle:
        """Schedule a stage; its units start only after ``depends_on`` completes."""
        units = list(units)
        handle = JobHandle(label)

        def _launch(dependency: Optional[JobHandle]) -> None:
            if dependency is not None and dependency.error is not None:
                logger.debug("Stage %r skipped: dependency %r failed", label, dependency.label)
                handle._fail(dependency.error)
                return
            handle._begin(len(units))
            for index, unit in enumerate(units):
                try:
                    self._submit(unit, handle)
                except Exception as exc:
                    logger.error("Stage %r could not be submitted: %s", label, exc)
                    for _ in range(len(units) - index):
                        handle._unit_done(exc)
                    return

        if depends_on is None:
            _launch(None)
        else:
            depends_on.add_done_callback(_launch)
        return handle

    def _submit(self, unit: Unit, handle: JobHandle) -> None:
        if self._shut_down:
            raise RuntimeError("JobScheduler has been shut down")
        executor = self._executor
        if executor is None:
            self._run_unit(unit, handle)
        else:
            executor.submit(self._run_unit, unit, handle)

    @staticmethod
    def _run_unit(unit: Unit, handle: JobHandle) -> None:
        try:
            unit()
        except Exception as exc:
            logger.error("Job unit in stage %r failed: %s", handle.label, exc, exc_info=True)
            handle._unit_done(exc)
        else:
            handle._unit_done(None)

    def shutdown(self, wait: bool = True) -> None:
        self._shut_down = True
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False


_default_scheduler: Optional[JobScheduler] = None
_default_lock = threading.Lock()


def get_default_scheduler(max_workers: Optional[int] = None) -> JobScheduler:
    """Return the process-wide scheduler, creating it on first use."""
    global _default_scheduler
    with _default_lock:
        if _default_scheduler is None:
            _default_scheduler = JobScheduler(max_workers)
        return _default_scheduler


def shutdown_default_scheduler() -> None:
    global _default_scheduler
    with _default_lock:
        if _default_scheduler is not None:
            _default_scheduler.shutdown()
            _default_scheduler = None


class _ThreadCall:
    """Result slot shared between a worker thread and the task awaiting it."""

    def __init__(self, fn, args, on_abandon):
        self.fn = fn
        self.args = args
        self.on_abandon = on_abandon
        self.lock = threading.Lock()
        self.done = False
        self.abandoned = False
        self.result = None

    def run(self):
        result = self.fn(*self.args)
        with self.lock:
            self.done = True
            self.result = result
            abandoned = self.abandoned
        if abandoned:
            self.on_abandon(result)
        return result

    def abandon(self) -> None:
        with self.lock:
            self.abandoned = True
            done, result = self.done, self.result
        if done:
            self.on_abandon(result)


async def run_in_thread(fn: Callable, *args, on_abandon: Optional[Callable] = None):
    """Await ``fn(*args)`` on a worker thread.

    A cancelled await cannot stop the thread. When ``on_abandon`` is given, the
    value the thread eventually returns is passed to it instead of being lost,
    whether the thread finishes before or after the cancellation.
    """
    if on_abandon is None:
        return await asyncio.to_thread(fn, *args)
    call = _ThreadCall(fn, args, on_abandon)
    try:
        return await asyncio.to_thread(call.run)
    except asyncio.CancelledError:
        logger.debug("Await of %s cancelled; result will be handed off", getattr(fn, "__name__", fn))
        call.abandon()
        raise
