from __future__ import annotations

from enum import Enum
import errno
from itertools import islice
import io
import logging
import os
import queue
import threading

from cpcp.config import CopyConfig
from cpcp.models import CopyTask, EntryKind
from cpcp.reporter import Reporter, format_error


class EngineState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


class TaskPool:
    """Free list of preallocated copy tasks.

    The capacity matches the work queue, so holding a task taken from the
    pool guarantees the queue has room for it.
    """

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._free: queue.Queue[CopyTask] = queue.Queue(maxsize=capacity)
        for _ in range(capacity):
            self._free.put_nowait(CopyTask())

    def acquire(self) -> CopyTask:
        return self._free.get()

    def try_acquire(self) -> CopyTask | None:
        try:
            return self._free.get_nowait()
        except queue.Empty:
            return None

    def release(self, task: CopyTask) -> None:
        task.clear()
        self._free.put_nowait(task)

    def available(self) -> int:
        return self._free.qsize()


class CompletionTracker:
    def __init__(self) -> None:
        self._cv = threading.Condition()
        self._outstanding = 0
        self.added = 0
        self.finished = 0

    @property
    def outstanding(self) -> int:
        with self._cv:
            return self._outstanding

    def add(self, count: int = 1) -> None:
        with self._cv:
            self._outstanding += count
            self.added += count

    def done(self) -> None:
        with self._cv:
            if self._outstanding <= 0:
                raise RuntimeError("completion tracker went negative")
            self._outstanding -= 1
            self.finished += 1
            if self._outstanding == 0:
                self._cv.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        with self._cv:
            return self._cv.wait_for(lambda: self._outstanding == 0, timeout=timeout)


class CopyEngine:
    def __init__(
        self,
        config: CopyConfig,
        reporter: Reporter,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.reporter = reporter
        self.log = logger or logging.getLogger("cpcp.engine")
        self.state = EngineState.IDLE
        self.tracker = CompletionTracker()
        self.pool = TaskPool(config.parallel_tasks)
        self.tasks: queue.Queue[CopyTask | None] = queue.Queue(maxsize=config.parallel_tasks)
        self._cancelled = threading.Event()
        self._workers: list[threading.Thread] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> None:
        if self.state is not EngineState.IDLE:
            raise RuntimeError(f"engine cannot start from state {self.state.value}")
        for index in range(self.config.parallel_tasks):
            worker = threading.Thread(target=self._worker_loop, name=f"cpcp-worker-{index}", daemon=True)
            worker.start()
            self._workers.append(worker)
        self.state = EngineState.RUNNING
        self.log.debug("Engine running with %s workers", len(self._workers))

    def submit(self, src: str, dst: str, mode: int) -> None:
        """Queue one root task, blocking until a pooled task is free."""
        if self.state is not EngineState.RUNNING:
            raise RuntimeError(f"engine cannot accept work in state {self.state.value}")
        task = self.pool.acquire().fill(src, dst, mode)
        self.tracker.add()
        self.tasks.put(task)

    def wait(self, timeout: float | None = None) -> bool:
        if not self.tracker.wait(timeout):
            return False
        if self.state is EngineState.RUNNING:
            self.state = EngineState.DRAINING
            self.log.debug(
                "Engine drained: %s task(s) added, %s finished",
                self.tracker.added,
                self.tracker.finished,
            )
        return True

    def cancel(self) -> None:
        if not self._cancelled.is_set():
            self.log.info("Cancelling copy; remaining tasks will be skipped")
        self._cancelled.set()

    def close(self) -> None:
        """Stop the idle workers once every submitted task has finished."""
        if self.state is EngineState.CLOSED:
            return
        if self.state is EngineState.RUNNING:
            self.wait()
        for _ in self._workers:
            self.tasks.put(None)
        for worker in self._workers:
            worker.join()
        self.state = EngineState.CLOSED
        self.log.debug("Engine closed")

    # worker side

    def _try_publish(self, src: str, dst: str, mode: int) -> bool:
        task = self.pool.try_acquire()
        if task is None:
            return False
        task.fill(src, dst, mode)
        try:
            self.tasks.put_nowait(task)
        except queue.Full:
            self.pool.release(task)
            return False
        return True

    def _worker_loop(self) -> None:
        overflow: list[CopyTask] = []
        buffer = memoryview(bytearray(self.config.copy_buffer))
        while True:
            if overflow:
                task = overflow.pop()
                if self._try_publish(task.src, task.dst, task.mode):
                    continue
                pooled = False
            else:
                task = self.tasks.get()
                if task is None:
                    return
                pooled = True
            try:
                if not self._cancelled.is_set():
                    self._execute(task, overflow, buffer)
            except Exception as exc:
                self.log.exception("Unexpected failure copying %s", task.src)
                self.reporter.error(format_error(task.src, exc))
            finally:
                if pooled:
                    self.pool.release(task)
                self.tracker.done()

    def _execute(self, task: CopyTask, overflow: list[CopyTask], buffer: memoryview) -> None:
        if self.config.verbosity > 0:
            self.reporter.message(f"{task.src} -> {task.dst}")
        kind = task.kind
        if kind is EntryKind.DIRECTORY:
            self._copy_directory(task, overflow)
        elif kind is EntryKind.REGULAR:
            self._copy_file(task, buffer)
        elif kind is EntryKind.SYMLINK:
            self._copy_symlink(task)
        else:
            self.reporter.error(f'cannot copy special file "{task.src}"')

    def _copy_directory(self, task: CopyTask, overflow: list[CopyTask]) -> None:
        if not self.config.recursive:
            self.reporter.error(f'omitting directory "{task.src}"')
            return
        mode = self.config.apply_mask(task.mode)
        try:
            os.mkdir(task.dst, mode)
        except FileExistsError:
            if not os.path.isdir(task.dst):
                not_dir = NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), task.dst)
                self.reporter.error(format_error(task.dst, not_dir))
                return
        except OSError as exc:
            self.reporter.error(format_error(task.dst, exc))
        # mkdir filters the mode through the process umask.
        if self.config.preserve_mode:
            try:
                os.chmod(task.dst, mode)
            except OSError as exc:
                self.reporter.error(format_error(task.dst, exc))

        try:
            entries = os.scandir(task.src)
        except OSError as exc:
            self.reporter.error(format_error(task.src, exc))
            return
        with entries:
            while True:
                try:
                    batch = list(islice(entries, self.config.readdir_batch))
                except OSError as exc:
                    self.reporter.error(format_error(task.src, exc))
                    return
                if not batch:
                    return
                for entry in batch:
                    self._discover(task, entry, overflow)

    def _discover(self, parent: CopyTask, entry: os.DirEntry[str], overflow: list[CopyTask]) -> None:
        child_src = os.path.join(parent.src, entry.name)
        try:
            child_mode = entry.stat(follow_symlinks=False).st_mode
        except OSError as exc:
            self.reporter.error(format_error(child_src, exc))
            return
        child_dst = os.path.join(parent.dst, entry.name)
        self.tracker.add()
        if not self._try_publish(child_src, child_dst, child_mode):
            overflow.append(CopyTask(child_src, child_dst, child_mode))

    def _copy_file(self, task: CopyTask, buffer: memoryview) -> None:
        try:
            source = open(task.src, "rb", buffering=0)
        except OSError as exc:
            self.reporter.error(format_error(task.src, exc))
            return
        with source:
            if _same_file(source, task.dst):
                self.reporter.error(f'"{task.src}" and "{task.dst}" are the same file')
                return
            try:
                destination = open(task.dst, "wb", buffering=0)
            except OSError as exc:
                self.reporter.error(format_error(task.dst, exc))
                return
            with destination:
                try:
                    _copy_through(source, destination, buffer)
                except OSError as exc:
                    self.reporter.error(format_error(task.dst, exc))
        try:
            os.chmod(task.dst, self.config.apply_mask(task.mode))
        except OSError as exc:
            self.reporter.error(format_error(task.dst, exc))

    def _copy_symlink(self, task: CopyTask) -> None:
        try:
            target = os.readlink(task.src)
        except OSError as exc:
            self.reporter.error(format_error(task.src, exc))
            return
        try:
            os.symlink(target, task.dst)
        except OSError as exc:
            self.reporter.error(format_error(task.dst, exc))


def _same_file(source: io.RawIOBase, dst: str) -> bool:
    try:
        existing = os.stat(dst)
    except OSError:
        return False
    opened = os.fstat(source.fileno())
    return (existing.st_dev, existing.st_ino) == (opened.st_dev, opened.st_ino)


def _copy_through(source: io.RawIOBase, destination: io.RawIOBase, buffer: memoryview) -> int:
    total = 0
    while True:
        read = source.readinto(buffer)
        if not read:
            return total
        chunk = buffer[:read]
        while chunk:
            written = destination.write(chunk)
            chunk = chunk[written:]
        total += read
