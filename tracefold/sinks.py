"""Output sinks for rendered text.

A sink receives text piecewise. It can be bound to a ``RenderConfig`` so
``color(role)`` emits that configuration's escape for a role, skipping codes
that are already active. ``lock()`` returns a context manager that callers
hold while writing one whole tree, so concurrent renders onto one stream do
not interleave.
"""

from __future__ import annotations

import io
import sys
import threading
import weakref
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, nullcontext
from typing import TYPE_CHECKING, TextIO

from tracefold.config import RESET, ColorRole

if TYPE_CHECKING:
    from tracefold.config import RenderConfig


class Sink(ABC):
    def __init__(self) -> None:
        self._config: RenderConfig | None = None
        self._last_color: str | None = None

    @abstractmethod
    def print(self, text: str) -> None: ...

    def println(self, text: str = "") -> None:
        if text:
            self.print(text)
        if self._last_color not in (None, RESET):
            self.print(RESET)
        self._last_color = None
        self.print("\n")

    def lock(self) -> AbstractContextManager[object]:
        return nullcontext()

    def bind(self, config: RenderConfig) -> Sink:
        self._config = config
        self._last_color = None
        return self

    @property
    def config(self) -> RenderConfig | None:
        return self._config

    def color(self, role: ColorRole) -> None:
        config = self._config
        if config is None or not config.color_scheme_enabled:
            return
        code = config.color(role)
        if code and code != self._last_color:
            self.print(code)
            self._last_color = code

    def reset_last_color(self) -> None:
        """Forget the active colour after raw text carrying its own escapes was printed."""
        self._last_color = None

    def write(self, role: ColorRole, text: str) -> None:
        if text:
            self.color(role)
            self.print(text)


class StringSink(Sink):
    """Collects output in memory."""

    def __init__(self) -> None:
        super().__init__()
        self._buffer = io.StringIO()

    def print(self, text: str) -> None:
        self._buffer.write(text)

    def getvalue(self) -> str:
        return self._buffer.getvalue()

    def finish(self) -> str:
        """Close any open colour and return the collected text."""
        if self._last_color not in (None, RESET):
            self.print(RESET)
        self._last_color = None
        return self.getvalue()

    def __str__(self) -> str:
        return self.getvalue()


_stream_locks: weakref.WeakKeyDictionary[object, threading.RLock] = weakref.WeakKeyDictionary()
_stream_locks_guard = threading.Lock()
_fallback_lock = threading.RLock()


def _lock_for(stream: object) -> threading.RLock:
    with _stream_locks_guard:
        try:
            lock = _stream_locks.get(stream)
            if lock is None:
                lock = threading.RLock()
                _stream_locks[stream] = lock
            return lock
        except TypeError:
            # stream does not support weak references
            return _fallback_lock


class StreamSink(Sink):
    """Writes to a text stream; ``None`` means the current ``sys.stderr``."""

    def __init__(self, stream: TextIO | None = None) -> None:
        super().__init__()
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def print(self, text: str) -> None:
        self.stream.write(text)

    def lock(self) -> AbstractContextManager[object]:
        return _lock_for(self.stream)

    def flush(self) -> None:
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            flush()


__all__ = ["Sink", "StreamSink", "StringSink"]
