"""A pool of worker threads that run receiver processes for gateway tasks."""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable

from repogateway.logs import get_logger
from repogateway.receiver import CvmfsReceiver, Payload, ReceiverError
from repogateway.statistics import StatisticsManager
from repogateway.tags import RepositoryTag


@dataclass
class _Task:
    context: Any
    kind: str
    action: Callable[[CvmfsReceiver], Any]
    future: Future = field(default_factory=Future)


class WorkerPool:
    """Runs payload submission and commit tasks on a fixed number of worker threads.

    Each task is served by a freshly started receiver process, which is told
    to quit once the task is done. Usable as a context manager; leaving the
    block stops the pool.
    """

    def __init__(
        self, worker_exec: str, num_workers: int, stats_manager: StatisticsManager
    ) -> None:
        if num_workers < 1:
            raise ValueError(f"number of workers must be positive, got {num_workers}")
        self.worker_exec = worker_exec
        self.stats_manager = stats_manager
        self._tasks: queue.Queue[_Task | None] = queue.Queue()
        self._lock = threading.Lock()
        self._stopped = False
        self._threads = [
            threading.Thread(
                target=self._work, args=(index,), name=f"receiver-worker-{index}", daemon=True
            )
            for index in range(num_workers)
        ]
        for thread in self._threads:
            thread.start()
        get_logger("worker_pool").info("worker pool started")

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def submit_payload(
        self,
        context: Any,
        lease_path: str,
        payload: Payload,
        digest: str,
        header_size: int,
    ) -> None:
        """Have a receiver unpack a payload into the repository."""
        self._submit(
            context,
            "payload",
            lambda receiver: receiver.submit_payload(lease_path, payload, digest, header_size),
        )

    def commit_lease(
        self,
        context: Any,
        lease_path: str,
        old_root_hash: str,
        new_root_hash: str,
        tag: RepositoryTag,
    ) -> int:
        """Commit the changes made under a lease and return the final revision."""
        return self._submit(
            context,
            "commit",
            lambda receiver: receiver.commit(lease_path, old_root_hash, new_root_hash, tag),
        )

    def stop(self) -> None:
        """Finish the queued tasks and stop all workers. Calling it again does nothing."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            for _ in self._threads:
                self._tasks.put(None)
        for thread in self._threads:
            thread.join()

    def _test_crash(self, context: Any) -> None:
        self._submit(context, "testcrash", lambda receiver: receiver.test_crash())

    def _submit(self, context: Any, kind: str, action: Callable[[CvmfsReceiver], Any]) -> Any:
        task = _Task(context, kind, action)
        with self._lock:
            if self._stopped:
                raise RuntimeError("worker pool is stopped")
            self._tasks.put(task)
        return task.future.result()

    def _work(self, index: int) -> None:
        log = get_logger("worker_pool")
        log.debug("started", extra={"worker_id": index})
        while (task := self._tasks.get()) is not None:
            self._execute(task, index)
        log.debug("finished", extra={"worker_id": index})

    def _execute(self, task: _Task, index: int) -> None:
        log = get_logger("worker_pool", task.context)
        started = time.monotonic()
        try:
            receiver = CvmfsReceiver(self.worker_exec, self.stats_manager, context=task.context)
        except Exception as exc:
            task.future.set_exception(exc)
            return
        try:
            result = task.action(receiver)
        except Exception as exc:
            task.future.set_exception(exc)
        else:
            task.future.set_result(result)
            log.debug(
                f"{task.kind} task complete",
                extra={"worker_id": index, "task_dt": time.monotonic() - started},
            )
        finally:
            try:
                receiver.quit()
            except ReceiverError as exc:
                log.error(
                    f"error when quitting the receiver: {exc}", extra={"worker_id": index}
                )