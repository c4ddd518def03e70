"""Tests for the four backtrace shapes behind BacktraceDecoder."""

import gc
import sys
from array import array

import pytest

from tracefold.config import RenderConfig
from tracefold.decoders import (
    BacktraceChunk,
    BacktraceShape,
    CodeTable,
    PairBacktrace,
    attach_backtrace,
    backtrace_of,
    capture_chunked,
    capture_pairs,
    decode,
    line_for_offset,
)
from tracefold.errors import MalformedBacktraceError, UnresolvableMethodError
from tracefold.frames import UNKNOWN_LINE, RawFrame
from tracefold.identity import HiddenFlag, MethodIdentity


def fail(depth: int) -> None:
    if depth == 0:
        raise ValueError("bottom")
    fail(depth - 1)


def raise_nested() -> None:
    fail(2)


def capture_exception() -> BaseException:
    try:
        raise_nested()
    except ValueError as exc:
        return exc
    raise AssertionError("raise_nested did not raise")


RAISE_LINE = fail.__code__.co_firstlineno + 2
RECURSE_LINE = fail.__code__.co_firstlineno + 3


def test_traceback_shape_is_innermost_first() -> None:
    exc = capture_exception()
    decoder = decode(exc.__traceback__)
    assert decoder.shape is BacktraceShape.TRACEBACK
    assert decoder.depth() == 5
    raws = decoder.derive_raw_frames()
    assert [raw.method_name for raw in raws] == ["fail", "fail", "fail", "raise_nested", "capture_exception"]
    assert [raw.line_number for raw in raws[:3]] == [RAISE_LINE, RECURSE_LINE, RECURSE_LINE]
    assert raws[0].class_name == __name__
    assert raws[0].file_name == "test_decoders.py"


def test_frame_at_reports_identity_position_and_module() -> None:
    exc = capture_exception()
    decoder = decode(exc.__traceback__)
    decoded = decoder.frame_at(0, RenderConfig())
    assert decoded.identity == MethodIdentity.of(fail.__code__)
    assert decoded.hidden == HiddenFlag.NONE
    assert decoded.position.line == RAISE_LINE
    assert decoded.position.offset >= 0
    assert decoded.module == __name__
    assert line_for_offset(fail.__code__, decoded.position.offset) == RAISE_LINE


def test_frame_at_is_deterministic() -> None:
    exc = capture_exception()
    decoder = decode(exc.__traceback__)
    config = RenderConfig()
    assert decoder.frame_at(1, config) == decoder.frame_at(1, config)


def test_frame_chain_shape_and_realignment() -> None:
    frame = sys._getframe()
    decoder = decode(frame)
    assert decoder.shape is BacktraceShape.FRAME_CHAIN
    assert decoder.depth() > 1
    decoder.set_raw_frames([RawFrame("elsewhere", "other", "other.py", 1)])
    aligned = decoder.aligned_raw_frames()
    assert len(aligned) == decoder.depth()
    assert aligned[0].method_name == "test_frame_chain_shape_and_realignment"
    assert decoder.frame_at(0, RenderConfig()).identity == MethodIdentity.of(frame.f_code)


def test_supplied_raw_frames_are_used_when_depth_matches() -> None:
    exc = capture_exception()
    decoder = decode(exc.__traceback__)
    supplied = [RawFrame("host", f"m{i}", "host.py", i + 1) for i in range(decoder.depth())]
    decoder.set_raw_frames(supplied)
    assert decoder.raw_frame_at(2) is supplied[2]


def _caller_with_chunks(chunk_size: int) -> tuple[BacktraceChunk, list[str]]:
    frame = sys._getframe()
    chunk = capture_chunked(frame, chunk_size=chunk_size)
    names = [raw.method_name for raw in decode(frame).derive_raw_frames()]
    return chunk, names


def test_chunked_shape_merges_segments() -> None:
    chunk, names = _caller_with_chunks(chunk_size=2)
    assert chunk.next is not None
    decoder = decode(chunk)
    assert decoder.shape is BacktraceShape.CHUNKED
    assert [raw.method_name for raw in decoder.derive_raw_frames()] == names
    assert names[:2] == ["_caller_with_chunks", "test_chunked_shape_merges_segments"]


def test_chunked_depth_stops_at_first_missing_code() -> None:
    code = fail.__code__
    tail = BacktraceChunk([code], [__name__], array("q", [0]))
    head = BacktraceChunk([code, None], [__name__, None], array("q", [0, 0]), next=tail)
    assert decode(head).depth() == 1


def test_chunked_arrays_must_agree() -> None:
    broken = BacktraceChunk([fail.__code__, fail.__code__], [__name__], array("q", [0, 0]))
    with pytest.raises(MalformedBacktraceError, match="differ in length"):
        decode(broken)


def test_pair_array_shape() -> None:
    table = CodeTable()
    token = capture_pairs(table, sys._getframe(), limit=3)
    assert len(token.pairs) == 6
    decoder = decode(token)
    assert decoder.shape is BacktraceShape.PAIR_ARRAY
    assert decoder.depth() == 3
    decoded = decoder.frame_at(0, RenderConfig())
    assert decoded.identity == MethodIdentity.of(test_pair_array_shape.__code__)
    assert decoded.module == __name__
    assert decoder.raw_frame_at(0).method_name == "test_pair_array_shape"


def test_code_table_reuses_ids() -> None:
    table = CodeTable()
    first = table.register(fail.__code__, __name__)
    assert table.register(fail.__code__, __name__) == first
    assert table.register(raise_nested.__code__, __name__) != first
    assert len(table) == 2


def _compiled(source: str, filename: str):
    namespace: dict[str, object] = {}
    exec(compile(source, filename, "exec"), namespace)
    return namespace


def test_code_table_ids_follow_code_identity() -> None:
    table = CodeTable()
    alpha = _compiled("def twin():\n    return 1\n", "alpha.py")["twin"].__code__  # type: ignore[attr-defined]
    beta = _compiled("def twin():\n    return 1\n", "beta.py")["twin"].__code__  # type: ignore[attr-defined]
    first, second = table.register(alpha, "alpha"), table.register(beta, "beta")
    assert first != second
    assert table.lookup(second) == (beta, "beta")
    assert table.describe(second).file_name == "beta.py"  # type: ignore[union-attr]


def test_code_table_keeps_bounded_raw_text_for_collected_code() -> None:
    table = CodeTable(retired_limit=2)
    namespaces = [_compiled(f"def gone_{index}():\n    return {index}\n", f"gone_{index}.py") for index in range(4)]
    ids = [table.register(namespace[f"gone_{index}"].__code__) for index, namespace in enumerate(namespaces)]  # type: ignore[attr-defined]
    assert len(table) == 4

    for namespace in namespaces:
        namespace.clear()
    gc.collect()

    assert len(table) == 0
    assert [table.describe(method_id) for method_id in ids[:2]] == [None, None]
    assert [table.describe(method_id).method_name for method_id in ids[2:]] == ["gone_2", "gone_3"]  # type: ignore[union-attr]
    with pytest.raises(LookupError, match="collected"):
        table.lookup(ids[3])
    with pytest.raises(LookupError, match="unknown"):
        table.lookup(ids[0])


def test_pair_array_unknown_id_is_unresolvable() -> None:
    decoder = decode(PairBacktrace(array("q", [999, 0]), CodeTable()))
    with pytest.raises(UnresolvableMethodError) as excinfo:
        decoder.frame_at(0, RenderConfig())
    assert excinfo.value.index == 0
    with pytest.raises(MalformedBacktraceError):
        decoder.derive_raw_frames()


def test_pair_array_collected_code_keeps_raw_text() -> None:
    table = CodeTable()
    namespace: dict[str, object] = {}
    exec(compile("def gone():\n    return 1\n", "gone_module.py", "exec"), namespace)
    method_id = table.register(namespace["gone"].__code__, "gone_module")  # type: ignore[attr-defined]
    namespace.clear()
    gc.collect()

    decoder = decode(PairBacktrace(array("q", [method_id, 4]), table))
    with pytest.raises(UnresolvableMethodError, match="collected"):
        decoder.frame_at(0, RenderConfig())
    assert decoder.raw_frame_at(0) == RawFrame("gone_module", "gone", "gone_module.py", UNKNOWN_LINE)


def test_pair_array_odd_length_is_malformed() -> None:
    with pytest.raises(MalformedBacktraceError, match="odd length"):
        decode(PairBacktrace(array("q", [1, 2, 3]), CodeTable()))


def test_unknown_token_is_malformed() -> None:
    with pytest.raises(MalformedBacktraceError, match="unsupported"):
        decode(object())


def test_attach_backtrace_takes_precedence() -> None:
    exc = capture_exception()
    assert backtrace_of(exc) is exc.__traceback__
    chunk = capture_chunked(sys._getframe())
    assert attach_backtrace(exc, chunk) is exc
    assert backtrace_of(exc) is chunk
    with pytest.raises(MalformedBacktraceError):
        attach_backtrace(exc, "not a backtrace")


def test_line_for_offset_outside_code() -> None:
    assert line_for_offset(fail.__code__, -1) == UNKNOWN_LINE
    assert line_for_offset(fail.__code__, 10**6) == UNKNOWN_LINE
