"""
Bounded thread pool with backpressure.

A feeder thread pulls items from a (possibly lazy) iterable into a task
queue of fixed depth, a fixed number of worker threads process them, and
results come back through an unbounded result queue that the caller
drains. Progress callbacks therefore run on the caller's thread and never
stall a worker.
"""

import queue
import threading
from typing import Any, Callable, Generic, Iterable, Iterator, NamedTuple, Optional, TypeVar

from loguru import logger

T = TypeVar("T")
R = TypeVar("R")

_SENTINEL = object()
_WORKER_EXITED = object()

# How long a blocked put waits before re-checking the cancel flag
_PUT_POLL_SECONDS = 0.1


class TaskOutcome(NamedTuple):
    item: Any
    result: Any = None
    error: Optional[BaseException] = None
    cancelled: bool = False


class BoundedWorkerPool(Generic[T, R]):
    """Run ``worker_fn`` over items with a fixed number of threads.

    Args:
        worker_fn: Called once per item on a worker thread
        workers: Number of worker threads
        queue_depth: Maximum items waiting for a worker
        cancel_event: When set, no further items are dispatched and queued
            items come back with ``cancelled=True``
        name: Thread name prefix (shows up in logs)
    """

    def __init__(
        self,
        worker_fn: Callable[[T], R],
        workers: int,
        queue_depth: int,
        cancel_event: Optional[threading.Event] = None,
        name: str = "worker",
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if queue_depth < 1:
            raise ValueError(f"queue_depth must be >= 1, got {queue_depth}")
        self.worker_fn = worker_fn
        self.workers = workers
        self.queue_depth = queue_depth
        self.cancel_event = cancel_event or threading.Event()
        self.name = name
        self.dispatched = 0
        self._feeder_error: Optional[BaseException] = None

    def _feed(self, items: Iterable[T], task_queue: queue.Queue) -> None:
        try:
            for item in items:
                if not self._put(task_queue, item):
                    break
                self.dispatched += 1
        except BaseException as e:
            self._feeder_error = e
            self.cancel_event.set()
        finally:
            for _ in range(self.workers):
                task_queue.put(_SENTINEL)

    def _put(self, task_queue: queue.Queue, item: T) -> bool:
        """Blocking put that gives up once cancellation is requested."""
        while not self.cancel_event.is_set():
            try:
                task_queue.put(item, timeout=_PUT_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _work(self, task_queue: queue.Queue, result_queue: queue.Queue) -> None:
        try:
            while True:
                item = task_queue.get()
                if item is _SENTINEL:
                    return
                if self.cancel_event.is_set():
                    result_queue.put(TaskOutcome(item, cancelled=True))
                    continue
                try:
                    result_queue.put(TaskOutcome(item, result=self.worker_fn(item)))
                except Exception as e:
                    logger.exception(f"{self.name}: task failed for {item!r}")
                    result_queue.put(TaskOutcome(item, error=e))
        finally:
            result_queue.put(_WORKER_EXITED)

    def run(self, items: Iterable[T]) -> Iterator[TaskOutcome]:
        """Yield one TaskOutcome per dispatched item, in completion order.

        Raises:
            Whatever the items iterable raised, after in-flight work drains
        """
        task_queue: queue.Queue = queue.Queue(maxsize=self.queue_depth)
        result_queue: queue.Queue = queue.Queue()
        self.dispatched = 0
        self._feeder_error = None

        feeder = threading.Thread(
            target=self._feed,
            args=(items, task_queue),
            name=f"{self.name}-feeder",
            daemon=True,
        )
        threads = [
            threading.Thread(
                target=self._work,
                args=(task_queue, result_queue),
                name=f"{self.name}-{i}",
                daemon=True,
            )
            for i in range(self.workers)
        ]
        feeder.start()
        for thread in threads:
            thread.start()

        exited = 0
        try:
            while exited < self.workers:
                outcome = result_queue.get()
                if outcome is _WORKER_EXITED:
                    exited += 1
                    continue
                yield outcome
        finally:
            if exited < self.workers:
                # Caller stopped iterating early: stop dispatch, let workers drain
                self.cancel_event.set()
            feeder.join()
            for thread in threads:
                thread.join()

        if self._feeder_error is not None:
            raise self._feeder_error
