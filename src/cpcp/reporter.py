from __future__ import annotations

from typing import Callable
import logging
import queue
import threading


_SENTINEL = None


def format_error(path: str, exc: BaseException) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        message = exc.strerror
    else:
        message = str(exc)
    if not message:
        message = "unknown error"
    if path:
        return f"{path}: {message}"
    return message


class LineSink:
    """Single-consumer line channel.

    Producers call ``put`` from any thread; one consumer thread hands the
    lines to ``emit`` in the order they were received.
    """

    def __init__(
        self,
        name: str,
        emit: Callable[[str], None],
        capacity: int = 1000,
        counting: bool = False,
    ) -> None:
        self.name = name
        self._emit = emit
        self._counting = counting
        self._count = 0
        self._lines: queue.Queue[str | None] = queue.Queue(maxsize=capacity)
        self._consumer = threading.Thread(target=self._drain, name=f"cpcp-{name}", daemon=True)
        self._started = False
        self._closed = False

    @property
    def count(self) -> int:
        return self._count

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._consumer.start()

    def put(self, line: str) -> None:
        if self._closed:
            raise RuntimeError(f"{self.name} sink is closed")
        self._lines.put(line)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._lines.put(_SENTINEL)
        if self._started:
            self._consumer.join()

    def _drain(self) -> None:
        while True:
            line = self._lines.get()
            if line is _SENTINEL:
                break
            if self._counting:
                self._count += 1
            try:
                self._emit(line)
            except Exception:
                logging.getLogger("cpcp.reporter").exception("%s sink failed to emit a line", self.name)


class Reporter:
    def __init__(
        self,
        emit_message: Callable[[str], None] = print,
        emit_error: Callable[[str], None] = print,
        message_buffer: int = 1000,
        error_buffer: int = 1000,
    ) -> None:
        self.messages = LineSink("messages", emit_message, capacity=message_buffer)
        self.errors = LineSink("errors", emit_error, capacity=error_buffer, counting=True)

    @property
    def error_count(self) -> int:
        return self.errors.count

    def start(self) -> None:
        self.messages.start()
        self.errors.start()

    def message(self, line: str) -> None:
        self.messages.put(line)

    def error(self, line: str) -> None:
        self.errors.put(line)

    def close(self) -> int:
        self.messages.close()
        self.errors.close()
        return self.error_count
