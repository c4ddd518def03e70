from __future__ import annotations

from typing import Any


class TracefoldError(Exception):
    """Base class for errors raised by tracefold."""


class MalformedBacktraceError(TracefoldError):
    """Raised when a backtrace token cannot be reconciled with its raw frames."""

    def __init__(self, reason: str, *, shape: Any = None, depth: int | None = None, expected: int | None = None) -> None:
        self.reason = reason
        self.shape = shape
        self.depth = depth
        self.expected = expected
        detail = reason
        if depth is not None and expected is not None:
            detail = f"{reason} (decoded depth {depth}, raw frame count {expected})"
        if shape is not None:
            detail = f"{detail} [shape={shape}]"
        super().__init__(detail)


class UnresolvableMethodError(TracefoldError):
    """Raised when a decoded method identity no longer refers to live code."""

    def __init__(self, index: int, reason: str) -> None:
        self.index = index
        self.reason = reason
        super().__init__(f"Frame {index} cannot be resolved: {reason}")


class InvalidConfigurationError(TracefoldError, ValueError):
    """Raised eagerly when a RenderConfig is built with an invalid value."""

    def __init__(self, field_name: str, value: Any, hint: str) -> None:
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid value for {field_name}: {value!r}\nHint: {hint}")


class NullGraphNodeError(TracefoldError, TypeError):
    """Raised when a render entry point is given no exception."""

    def __init__(self, name: str = "exception") -> None:
        self.name = name
        super().__init__(f"{name} must not be None")


__all__ = [
    "InvalidConfigurationError",
    "MalformedBacktraceError",
    "NullGraphNodeError",
    "TracefoldError",
    "UnresolvableMethodError",
]
