"""
tracefold - Folded, cacheable exception tree rendering for Python.

Renders an exception with its cause chain and suppressed exceptions. Each
frame gets a precise method descriptor, cached per code object and
configuration. Runs of repeated frames are compressed, frames shared with the
enclosing trace are elided, and cyclic graphs terminate with a marker.

Example:
    >>> import tracefold
    >>>
    >>> try:
    ...     run()
    ... except Exception as exc:
    ...     print(tracefold.render(exc))
"""

from loguru import logger as _logger

# Configuration
from tracefold.config import (
    RESET,
    ColorRole,
    ColorScheme,
    RenderConfig,
    Style,
    ansi,
    get_default_config,
    set_default_config,
)

# Errors
from tracefold.errors import (
    InvalidConfigurationError,
    MalformedBacktraceError,
    NullGraphNodeError,
    TracefoldError,
    UnresolvableMethodError,
)

# Frames and identities
from tracefold.frames import RawFrame, ResolvedFrame, is_similar
from tracefold.identity import HiddenFlag, MethodIdentity

# Backtrace shapes
from tracefold.decoders import (
    BacktraceChunk,
    BacktraceDecoder,
    BacktraceShape,
    CodeTable,
    PairBacktrace,
    attach_backtrace,
    capture_chunked,
    capture_pairs,
    decode,
)

# Cache, classification, graph
from tracefold.cache import FrameDescriptorCache, get_frame_cache
from tracefold.modules import DistributionClassifier, ModuleInfo, set_module_classifier
from tracefold.graph import SyntheticNode, add_suppressed

# Rendering
from tracefold.sinks import Sink, StreamSink, StringSink
from tracefold.styles import CanonicalStyle, CompactStyle, RenderStyle
from tracefold.resolver import resolve_frames, set_stack_frames
from tracefold.api import exception_to_string, format_plain, print_exception, render, render_to

# Export and hooks
from tracefold.export import dump_frames, frames_from_dicts, frames_to_dicts, load_frames
from tracefold.hooks import excepthook_installed, install_excepthook, uninstall_excepthook

_logger.disable("tracefold")

__version__ = "0.1.0"

__all__ = [  # noqa: RUF022
    # Configuration
    "RESET",
    "ColorRole",
    "ColorScheme",
    "RenderConfig",
    "Style",
    "ansi",
    "get_default_config",
    "set_default_config",
    # Errors
    "InvalidConfigurationError",
    "MalformedBacktraceError",
    "NullGraphNodeError",
    "TracefoldError",
    "UnresolvableMethodError",
    # Frames and identities
    "HiddenFlag",
    "MethodIdentity",
    "RawFrame",
    "ResolvedFrame",
    "is_similar",
    # Backtrace shapes
    "BacktraceChunk",
    "BacktraceDecoder",
    "BacktraceShape",
    "CodeTable",
    "PairBacktrace",
    "attach_backtrace",
    "capture_chunked",
    "capture_pairs",
    "decode",
    # Cache, classification, graph
    "DistributionClassifier",
    "FrameDescriptorCache",
    "ModuleInfo",
    "SyntheticNode",
    "add_suppressed",
    "get_frame_cache",
    "set_module_classifier",
    # Rendering
    "CanonicalStyle",
    "CompactStyle",
    "RenderStyle",
    "Sink",
    "StreamSink",
    "StringSink",
    "exception_to_string",
    "format_plain",
    "print_exception",
    "render",
    "render_to",
    "resolve_frames",
    "set_stack_frames",
    # Export and hooks
    "dump_frames",
    "excepthook_installed",
    "frames_from_dicts",
    "frames_to_dicts",
    "install_excepthook",
    "load_frames",
    "uninstall_excepthook",
]
