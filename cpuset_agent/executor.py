"""Serializing writer for cgroup resource files."""

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, List, Optional

from .cgroup import read_cgroup_file, write_cgroup_file
from .config import EXECUTOR_POLL_SECONDS

logger = logging.getLogger(__name__)


class ResourceUpdateError(Exception):
    """Raised when a resource file could not be read or written."""

    def __init__(self, resource_path: str, reason: str):
        super().__init__(f"update {resource_path} failed: {reason}")
        self.resource_path = resource_path
        self.reason = reason


class ExecutorStoppedError(RuntimeError):
    """Raised for updates submitted after the executor was stopped."""


@dataclass
class ResourceUpdater:
    """
    One pending write.

    compute receives the current content of the file and returns the
    content to write, so applying the same updater twice is a no-op.
    """
    resource_path: str
    compute: Callable[[str], str]
    owner: str = ""

    @classmethod
    def set_value(cls, resource_path: str, value: str, owner: str = "") -> "ResourceUpdater":
        return cls(resource_path=resource_path, compute=lambda _prior: value, owner=owner)


class ResourceUpdateExecutor:
    """
    Applies resource updates on one background worker.

    A single worker drains a FIFO queue, so two updates to the same file
    are applied in submission order and never interleave.
    """

    def __init__(self, reader=read_cgroup_file, writer=write_cgroup_file):
        self._reader = reader
        self._writer = writer
        self._queue: "queue.Queue" = queue.Queue()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def run(self, stop_event: threading.Event) -> None:
        """Start the worker; it exits once stop_event is set and the queue is empty."""
        with self._lock:
            if self._thread is not None:
                return
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._worker,
                name="resource-executor",
                daemon=True
            )
            self._thread.start()
        logger.info("Resource update executor started")

    def update(self, updater: ResourceUpdater) -> Future:
        """
        Queue an update.

        Returns:
            A future resolving to True if the file was written, False if it
            already held the computed content
        """
        future: Future = Future()
        with self._lock:
            stopped = self._stop_event is None or self._stop_event.is_set()
            if not stopped:
                self._queue.put((updater, future))
        if stopped:
            future.set_exception(ExecutorStoppedError(
                f"executor is not running, dropped update of {updater.resource_path}"
            ))
        return future

    def update_batch(self, updaters: List[ResourceUpdater]) -> List[Future]:
        return [self.update(u) for u in updaters]

    def wait_for_drain(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has exited after stop. Returns False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _worker(self) -> None:
        while True:
            try:
                updater, future = self._queue.get(timeout=EXECUTOR_POLL_SECONDS)
            except queue.Empty:
                with self._lock:
                    if self._stop_event.is_set() and self._queue.empty():
                        break
                continue

            if future.set_running_or_notify_cancel():
                try:
                    future.set_result(self._apply(updater))
                except ResourceUpdateError as e:
                    logger.warning(f"{e} (owner: {updater.owner or 'unknown'})")
                    future.set_exception(e)
                except Exception as e:
                    logger.error(f"Unexpected error updating {updater.resource_path}: {e}")
                    future.set_exception(ResourceUpdateError(updater.resource_path, str(e)))
            self._queue.task_done()

        logger.info("Resource update executor stopped")

    def _apply(self, updater: ResourceUpdater) -> bool:
        path = updater.resource_path
        try:
            prior = self._reader(path)
        except (OSError, ValueError) as e:
            raise ResourceUpdateError(path, f"read: {e}") from e

        try:
            content = updater.compute(prior)
        except Exception as e:
            raise ResourceUpdateError(path, f"compute: {e}") from e
        if not isinstance(content, str):
            raise ResourceUpdateError(path, f"compute returned {type(content).__name__}, not str")

        if content == prior:
            logger.debug(f"{path} already {content!r}, skip")
            return False

        try:
            self._writer(path, content)
        except (OSError, ValueError, TypeError) as e:
            raise ResourceUpdateError(path, f"write: {e}") from e

        logger.debug(f"Wrote {content!r} to {path} (was {prior!r})")
        return True
