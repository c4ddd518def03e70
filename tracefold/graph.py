"""Exception graph view.

The printer walks exceptions through three accessors so that interpreter
exceptions and hand-built ``SyntheticNode`` graphs look alike:

- ``cause_of(node)`` returns ``(cause, caption)``. An explicit ``__cause__``
  is captioned "Caused by"; an implicit, unsuppressed ``__context__`` is
  captioned "While handling".
- ``suppressed_of(node)`` returns the members of an exception group followed
  by exceptions registered with ``add_suppressed``.
- ``header_of(node)`` returns the displayed type name and message.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from tracefold.errors import NullGraphNodeError

if TYPE_CHECKING:
    from tracefold.frames import Frame

CAUSE_CAPTION = "Caused by"
CONTEXT_CAPTION = "While handling"
SUPPRESSED_CAPTION = "Suppressed"
SUPPRESSED_ATTR = "__suppressed__"


@dataclass(eq=False)
class SyntheticNode:
    """A hand-built exception node.

    ``frames`` are rendered as given. Graphs of synthetic nodes may contain
    cycles through ``cause`` or ``suppressed``.
    """

    type_name: str
    message: str | None = None
    frames: list[Frame] = field(default_factory=list)
    cause: GraphNode | None = None
    suppressed: list[GraphNode] = field(default_factory=list)
    cause_caption: str = CAUSE_CAPTION

    def __str__(self) -> str:
        return f"{self.type_name}: {self.message}" if self.message is not None else self.type_name


GraphNode = Union[BaseException, SyntheticNode]


def require_node(node: object, name: str = "exception") -> GraphNode:
    if node is None:
        raise NullGraphNodeError(name)
    if not isinstance(node, (BaseException, SyntheticNode)):
        raise TypeError(f"{name} must be an exception or SyntheticNode, got {type(node).__name__}")
    return node


def add_suppressed(exc: BaseException, other: BaseException) -> None:
    """Record ``other`` as suppressed while ``exc`` propagated."""
    if other is None:
        raise NullGraphNodeError("suppressed")
    if other is exc:
        raise ValueError("an exception cannot suppress itself")
    registered = exc.__dict__.setdefault(SUPPRESSED_ATTR, [])
    registered.append(other)


def type_name(exc: BaseException) -> str:
    cls = type(exc)
    module = cls.__module__
    if module in ("builtins", "__main__"):
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def message_of(exc: BaseException) -> str | None:
    try:
        message = str(exc)
    except Exception:
        return "<exception str() failed>"
    return message or None


def header_of(node: GraphNode) -> tuple[str, str | None]:
    if isinstance(node, SyntheticNode):
        return node.type_name, node.message
    return type_name(node), message_of(node)


def node_string(node: GraphNode) -> str:
    """``Type: message`` (or ``Type``) used when merging cause headers."""
    name, message = header_of(node)
    return f"{name}: {message}" if message is not None else name


def notes_of(node: GraphNode) -> Sequence[str]:
    if isinstance(node, SyntheticNode):
        return ()
    notes = getattr(node, "__notes__", None)
    if not isinstance(notes, (list, tuple)):
        return ()
    return [note if isinstance(note, str) else repr(note) for note in notes]


def cause_of(node: GraphNode) -> tuple[GraphNode | None, str]:
    if isinstance(node, SyntheticNode):
        return node.cause, node.cause_caption
    if node.__cause__ is not None:
        return node.__cause__, CAUSE_CAPTION
    if node.__context__ is not None and not node.__suppress_context__:
        return node.__context__, CONTEXT_CAPTION
    return None, CAUSE_CAPTION


def suppressed_of(node: GraphNode) -> list[GraphNode]:
    if isinstance(node, SyntheticNode):
        return list(node.suppressed)
    members: list[GraphNode] = []
    if isinstance(node, BaseExceptionGroup):
        members.extend(node.exceptions)
    members.extend(node.__dict__.get(SUPPRESSED_ATTR, ()))
    return members


__all__ = [
    "CAUSE_CAPTION",
    "CONTEXT_CAPTION",
    "SUPPRESSED_CAPTION",
    "GraphNode",
    "SyntheticNode",
    "add_suppressed",
    "cause_of",
    "header_of",
    "node_string",
    "notes_of",
    "require_node",
    "suppressed_of",
]
