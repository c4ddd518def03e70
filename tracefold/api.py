"""Top-level entry points.

Each call captures one configuration snapshot (the explicit argument or the
process-wide default) before doing any work and uses it until it returns.
"""

from __future__ import annotations

import traceback
from typing import TextIO

from tracefold.config import RenderConfig, get_default_config
from tracefold.graph import GraphNode, SyntheticNode, require_node
from tracefold.printer import TreePrinter
from tracefold.resolver import resolve_frames
from tracefold.sinks import Sink, StreamSink, StringSink


def _snapshot(config: RenderConfig | None) -> RenderConfig:
    if config is None:
        return get_default_config()
    if not isinstance(config, RenderConfig):
        raise TypeError(f"config must be RenderConfig, got {type(config).__name__}")
    return config


def render(exc: GraphNode, config: RenderConfig | None = None) -> str:
    """Render ``exc`` with its causes and suppressed exceptions as one string."""
    exc = require_node(exc)
    config = _snapshot(config)
    sink = StringSink()
    TreePrinter(sink, config).print_tree(exc)
    return sink.finish()


def render_to(exc: GraphNode, sink: Sink, config: RenderConfig | None = None) -> None:
    """Stream the rendering of ``exc`` into ``sink`` while holding the sink's lock."""
    exc = require_node(exc)
    if sink is None:
        raise TypeError("sink must not be None")
    config = _snapshot(config)
    TreePrinter(sink, config).print_tree(exc)


def print_exception(exc: GraphNode, file: TextIO | None = None, config: RenderConfig | None = None) -> None:
    """Write the rendering of ``exc`` to ``file`` (default ``sys.stderr``)."""
    sink = StreamSink(file)
    render_to(exc, sink, config)
    sink.flush()


def exception_to_string(exc: GraphNode, config: RenderConfig | None = None) -> str:
    """The header alone: ``Type: message`` with merged cause lines, no frames."""
    exc = require_node(exc)
    config = _snapshot(config)
    sink = StringSink()
    TreePrinter(sink, config).print_header(exc, "")
    return sink.finish()


def format_plain(exc: GraphNode) -> str:
    """The interpreter's own formatting, for side-by-side comparison."""
    exc = require_node(exc)
    if isinstance(exc, SyntheticNode):
        return str(exc) + "\n"
    return "".join(traceback.format_exception(exc))


__all__ = [
    "exception_to_string",
    "format_plain",
    "print_exception",
    "render",
    "render_to",
    "resolve_frames",
]
