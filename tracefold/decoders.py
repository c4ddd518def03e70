"""Backtrace decoders.

A backtrace token is whatever a capture collaborator recorded about the call
stack of an exception. Four physical shapes are understood:

- ``TRACEBACK``: the interpreter's own ``types.TracebackType`` chain.
- ``FRAME_CHAIN``: a live ``types.FrameType`` walked through ``f_back``.
- ``CHUNKED``: ``BacktraceChunk`` segments of parallel code/module/offset
  arrays linked through ``next``.
- ``PAIR_ARRAY``: a flat ``array('q')`` of ``(method id, offset)`` pairs
  resolved through a ``CodeTable``.

``decode(token)`` hides the shape behind ``BacktraceDecoder``. Frames are
indexed innermost first.
"""

from __future__ import annotations

import bisect
import enum
import sys
import threading
import weakref
from abc import ABC, abstractmethod
from array import array
from collections import OrderedDict
from collections.abc import Sequence
from dataclasses import dataclass, field
from types import CodeType, FrameType, TracebackType
from typing import TYPE_CHECKING, Any, ClassVar

from tracefold.errors import MalformedBacktraceError, UnresolvableMethodError
from tracefold.frames import NO_OFFSET, UNKNOWN_LINE, RawFrame, RawPosition
from tracefold.identity import CodeMap, HiddenFlag, MethodIdentity, hidden_flags

if TYPE_CHECKING:
    from tracefold.config import RenderConfig

BACKTRACE_ATTR = "__backtrace__"


class BacktraceShape(enum.Enum):
    TRACEBACK = "traceback"
    FRAME_CHAIN = "frame_chain"
    CHUNKED = "chunked"
    PAIR_ARRAY = "pair_array"


@dataclass(frozen=True)
class DecodedFrame:
    """One decoded stack entry, classified under a configuration."""

    identity: MethodIdentity
    hidden: HiddenFlag
    position: RawPosition
    module: str | None


# --------------------------------------------------------------------------
# line tables
# --------------------------------------------------------------------------

_line_tables: weakref.WeakKeyDictionary[CodeType, tuple[list[int], list[tuple[int, int | None]]]] = (
    weakref.WeakKeyDictionary()
)
_line_tables_lock = threading.Lock()


def _line_table(code: CodeType) -> tuple[list[int], list[tuple[int, int | None]]]:
    table = _line_tables.get(code)
    if table is None:
        starts: list[int] = []
        spans: list[tuple[int, int | None]] = []
        for start, end, line in code.co_lines():
            starts.append(start)
            spans.append((end, line))
        table = (starts, spans)
        with _line_tables_lock:
            table = _line_tables.setdefault(code, table)
    return table


def line_for_offset(code: CodeType, offset: int) -> int:
    """Source line of the instruction at byte ``offset``; ``UNKNOWN_LINE`` when there is none."""
    if offset < 0:
        return UNKNOWN_LINE
    starts, spans = _line_table(code)
    index = bisect.bisect_right(starts, offset) - 1
    if index < 0:
        return UNKNOWN_LINE
    end, line = spans[index]
    if offset >= end or line is None:
        return UNKNOWN_LINE
    return line


# --------------------------------------------------------------------------
# decoder interface
# --------------------------------------------------------------------------


class BacktraceDecoder(ABC):
    """Translate one backtrace token into per-index frames.

    ``depth()`` may differ from the number of frames the host reported for the
    exception. ``aligned_raw_frames()`` reconciles the two by deriving a raw
    list of the decoder's own depth, and raises ``MalformedBacktraceError``
    when that is impossible.
    """

    shape: ClassVar[BacktraceShape]

    def __init__(self, token: Any) -> None:
        self.token = token
        self._raw_frames: list[RawFrame] | None = None

    @abstractmethod
    def depth(self) -> int: ...

    @abstractmethod
    def locate(self, index: int) -> tuple[CodeType, str | None, RawPosition]:
        """Code object, module name and position of frame ``index``.

        Raises ``UnresolvableMethodError`` when the method can no longer be resolved.
        """

    def frame_at(self, index: int, config: RenderConfig) -> DecodedFrame:
        code, module, position = self.locate(index)
        return DecodedFrame(
            identity=MethodIdentity.of(code),
            hidden=hidden_flags(code, module, config),
            position=position,
            module=module,
        )

    def derive_raw_frame(self, index: int) -> RawFrame:
        code, module, position = self.locate(index)
        return RawFrame.from_code(code, position.line, module)

    def derive_raw_frames(self) -> list[RawFrame]:
        try:
            return [self.derive_raw_frame(i) for i in range(self.depth())]
        except (IndexError, TypeError, ValueError, UnresolvableMethodError) as exc:
            raise MalformedBacktraceError(f"cannot derive raw frames: {exc}", shape=self.shape.value) from exc

    def set_raw_frames(self, frames: Sequence[RawFrame] | None) -> None:
        """Supply the host's textual frames for this token."""
        self._raw_frames = list(frames) if frames is not None else None

    def aligned_raw_frames(self) -> list[RawFrame]:
        depth = self.depth()
        if self._raw_frames is not None and len(self._raw_frames) == depth:
            return self._raw_frames
        derived = self.derive_raw_frames()
        if len(derived) != depth:
            raise MalformedBacktraceError(
                "re-derived raw frames disagree with decoder depth",
                shape=self.shape.value,
                depth=depth,
                expected=len(derived),
            )
        self._raw_frames = derived
        return derived

    def raw_frame_at(self, index: int) -> RawFrame:
        return self.aligned_raw_frames()[index]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} depth={self.depth()}>"


def _module_of(frame: FrameType) -> str | None:
    name = frame.f_globals.get("__name__")
    return name if isinstance(name, str) else None


def _position(code: CodeType, line: int | None, offset: int) -> RawPosition:
    if line is None or line <= 0:
        line = line_for_offset(code, offset)
    return RawPosition(line, offset if offset >= 0 else NO_OFFSET)


class _EagerDecoder(BacktraceDecoder):
    """Decoders whose shape is walked once into a list of entries."""

    def __init__(self, token: Any) -> None:
        super().__init__(token)
        self._entries: list[tuple[CodeType, str | None, RawPosition]] = self._walk(token)

    @abstractmethod
    def _walk(self, token: Any) -> list[tuple[CodeType, str | None, RawPosition]]: ...

    def depth(self) -> int:
        return len(self._entries)

    def locate(self, index: int) -> tuple[CodeType, str | None, RawPosition]:
        return self._entries[index]


class TracebackDecoder(_EagerDecoder):
    shape = BacktraceShape.TRACEBACK

    def _walk(self, token: TracebackType) -> list[tuple[CodeType, str | None, RawPosition]]:
        entries = []
        tb: TracebackType | None = token
        while tb is not None:
            frame = tb.tb_frame
            code = frame.f_code
            entries.append((code, _module_of(frame), _position(code, tb.tb_lineno, tb.tb_lasti)))
            tb = tb.tb_next
        entries.reverse()
        return entries


class FrameChainDecoder(_EagerDecoder):
    shape = BacktraceShape.FRAME_CHAIN

    def _walk(self, token: FrameType) -> list[tuple[CodeType, str | None, RawPosition]]:
        entries = []
        frame: FrameType | None = token
        while frame is not None:
            code = frame.f_code
            entries.append((code, _module_of(frame), _position(code, frame.f_lineno, frame.f_lasti)))
            frame = frame.f_back
        return entries


# --------------------------------------------------------------------------
# chunked shape
# --------------------------------------------------------------------------


@dataclass(eq=False)
class BacktraceChunk:
    """One segment of a chunked backtrace.

    ``codes``, ``modules`` and ``offsets`` are parallel. A ``None`` code ends
    the backtrace; later entries and chunks are ignored.
    """

    codes: list[CodeType | None]
    modules: list[str | None]
    offsets: array = field(default_factory=lambda: array("q"))
    next: BacktraceChunk | None = None


class ChunkedDecoder(_EagerDecoder):
    shape = BacktraceShape.CHUNKED

    def _walk(self, token: BacktraceChunk) -> list[tuple[CodeType, str | None, RawPosition]]:
        codes: list[CodeType | None] = []
        modules: list[str | None] = []
        offsets: list[int] = []
        chunk: BacktraceChunk | None = token
        seen: set[int] = set()
        while chunk is not None:
            if id(chunk) in seen:
                raise MalformedBacktraceError("chunk list loops back on itself", shape=self.shape.value)
            seen.add(id(chunk))
            if not len(chunk.codes) == len(chunk.modules) == len(chunk.offsets):
                raise MalformedBacktraceError(
                    f"chunk arrays differ in length ({len(chunk.codes)}, {len(chunk.modules)}, {len(chunk.offsets)})",
                    shape=self.shape.value,
                )
            codes.extend(chunk.codes)
            modules.extend(chunk.modules)
            offsets.extend(chunk.offsets)
            chunk = chunk.next
        entries = []
        for code, module, offset in zip(codes, modules, offsets):
            if code is None:
                break
            entries.append((code, module, _position(code, None, offset)))
        return entries


def capture_chunked(frame: FrameType | None = None, *, chunk_size: int = 32, limit: int | None = None) -> BacktraceChunk:
    """Record the stack starting at ``frame`` (default: the caller) as chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if frame is None:
        frame = sys._getframe(1)
    head = BacktraceChunk([], [], array("q"))
    chunk = head
    count = 0
    while frame is not None and (limit is None or count < limit):
        if len(chunk.codes) == chunk_size:
            chunk.next = BacktraceChunk([], [], array("q"))
            chunk = chunk.next
        chunk.codes.append(frame.f_code)
        chunk.modules.append(_module_of(frame))
        chunk.offsets.append(frame.f_lasti)
        count += 1
        frame = frame.f_back
    return head


# --------------------------------------------------------------------------
# pair-array shape
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class _TableEntry:
    ref: weakref.ref[CodeType]
    module: str | None
    raw: RawFrame


class CodeTable:
    """Registry assigning integer ids to code objects without keeping them alive.

    Once a registered code object is collected its id stops resolving, but the
    raw frame text recorded at registration is kept for the ``retired_limit``
    most recently collected ids so older backtraces still print something.
    """

    def __init__(self, retired_limit: int = 1024) -> None:
        self._lock = threading.Lock()
        self._ids: CodeMap[int] = CodeMap(on_release=self._retire)
        self._entries: dict[int, _TableEntry] = {}
        self._retired: OrderedDict[int, RawFrame] = OrderedDict()
        self._retired_limit = retired_limit
        self._next_id = 1

    def register(self, code: CodeType, module: str | None = None) -> int:
        with self._lock:
            method_id = self._ids.get(code)
            if method_id is None:
                method_id = self._next_id
                self._next_id += 1
                self._entries[method_id] = _TableEntry(weakref.ref(code), module, RawFrame.from_code(code, None, module))
                self._ids.setdefault(code, method_id)
            return method_id

    def _retire(self, method_id: int) -> None:
        # Runs from a weakref callback, possibly while ``_lock`` is held.
        entry = self._entries.pop(method_id, None)
        if entry is None:
            return
        self._retired[method_id] = entry.raw
        while len(self._retired) > self._retired_limit:
            self._retired.popitem(last=False)

    def lookup(self, method_id: int) -> tuple[CodeType, str | None]:
        entry = self._entries.get(method_id)
        if entry is None:
            if method_id in self._retired:
                raise LookupError(f"method id {method_id} refers to collected code")
            raise LookupError(f"unknown method id {method_id}")
        code = entry.ref()
        if code is None:
            raise LookupError(f"method id {method_id} refers to collected code")
        return code, entry.module

    def describe(self, method_id: int) -> RawFrame | None:
        entry = self._entries.get(method_id)
        if entry is not None:
            return entry.raw
        return self._retired.get(method_id)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(eq=False)
class PairBacktrace:
    pairs: array
    table: CodeTable


class PairArrayDecoder(BacktraceDecoder):
    shape = BacktraceShape.PAIR_ARRAY

    def __init__(self, token: PairBacktrace) -> None:
        super().__init__(token)
        if len(token.pairs) % 2:
            raise MalformedBacktraceError(
                f"pair array has odd length {len(token.pairs)}", shape=self.shape.value
            )
        self._pairs = token.pairs
        self._table = token.table

    def depth(self) -> int:
        return len(self._pairs) // 2

    def locate(self, index: int) -> tuple[CodeType, str | None, RawPosition]:
        if not 0 <= index < self.depth():
            raise IndexError(index)
        method_id = self._pairs[2 * index]
        offset = self._pairs[2 * index + 1]
        try:
            code, module = self._table.lookup(method_id)
        except LookupError as exc:
            raise UnresolvableMethodError(index, str(exc)) from exc
        return code, module, _position(code, None, offset)

    def derive_raw_frame(self, index: int) -> RawFrame:
        try:
            return super().derive_raw_frame(index)
        except UnresolvableMethodError:
            method_id = self._pairs[2 * index]
            described = self._table.describe(method_id)
            if described is None:
                raise
            return described


def capture_pairs(table: CodeTable, frame: FrameType | None = None, *, limit: int | None = None) -> PairBacktrace:
    """Record the stack starting at ``frame`` (default: the caller) as id/offset pairs."""
    if frame is None:
        frame = sys._getframe(1)
    pairs = array("q")
    count = 0
    while frame is not None and (limit is None or count < limit):
        pairs.append(table.register(frame.f_code, _module_of(frame)))
        pairs.append(frame.f_lasti)
        count += 1
        frame = frame.f_back
    return PairBacktrace(pairs, table)


# --------------------------------------------------------------------------
# dispatch
# --------------------------------------------------------------------------

_DECODERS: dict[type, type[BacktraceDecoder]] = {
    TracebackType: TracebackDecoder,
    FrameType: FrameChainDecoder,
    BacktraceChunk: ChunkedDecoder,
    PairBacktrace: PairArrayDecoder,
}


def shape_of(token: Any) -> BacktraceShape:
    for kind, decoder in _DECODERS.items():
        if isinstance(token, kind):
            return decoder.shape
    raise MalformedBacktraceError(f"unsupported backtrace token {type(token).__name__}")


def decode(token: Any) -> BacktraceDecoder:
    for kind, decoder in _DECODERS.items():
        if isinstance(token, kind):
            return decoder(token)
    raise MalformedBacktraceError(f"unsupported backtrace token {type(token).__name__}")


def attach_backtrace(exc: BaseException, token: Any) -> BaseException:
    """Record a captured backtrace on ``exc``; it takes precedence over ``__traceback__``."""
    shape_of(token)
    setattr(exc, BACKTRACE_ATTR, token)
    return exc


def backtrace_of(exc: BaseException) -> Any:
    token = exc.__dict__.get(BACKTRACE_ATTR) if hasattr(exc, "__dict__") else None
    return token if token is not None else exc.__traceback__


__all__ = [
    "BACKTRACE_ATTR",
    "BacktraceChunk",
    "BacktraceDecoder",
    "BacktraceShape",
    "ChunkedDecoder",
    "CodeTable",
    "DecodedFrame",
    "FrameChainDecoder",
    "PairArrayDecoder",
    "PairBacktrace",
    "TracebackDecoder",
    "attach_backtrace",
    "backtrace_of",
    "capture_chunked",
    "capture_pairs",
    "decode",
    "line_for_offset",
]
