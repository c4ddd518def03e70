"""Frame value types.

``RawFrame`` is the textual, unresolved form of a stack entry (what the host
reports without decoding). ``ResolvedFrame`` adds the descriptor computed by a
render style; it is cached per method and re-stamped with the line and offset
of each occurrence.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from functools import cached_property
from types import CodeType
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from tracefold.config import RenderConfig
    from tracefold.identity import MethodIdentity

NATIVE_LINE = -2
UNKNOWN_LINE = -1
NO_OFFSET = -1


class RawPosition(NamedTuple):
    """Source position reported by a backtrace shape."""

    line: int
    offset: int


def module_from_filename(filename: str) -> str:
    if filename.startswith("<"):
        return filename
    stem = os.path.splitext(os.path.basename(filename))[0]
    return stem or filename


def split_qualname(code: CodeType) -> tuple[str, str]:
    """Split ``co_qualname`` into ``(owner, name)``; owner is empty at module level."""
    owner, _, name = code.co_qualname.rpartition(".")
    return owner, name


@dataclass(frozen=True)
class RawFrame:
    """Unresolved stack entry: declaring scope, function name and location."""

    class_name: str
    method_name: str
    file_name: str | None
    line_number: int = UNKNOWN_LINE

    @classmethod
    def from_code(cls, code: CodeType, line: int | None, module_name: str | None) -> RawFrame:
        owner, name = split_qualname(code)
        module = module_name or module_from_filename(code.co_filename)
        class_name = f"{module}.{owner}" if owner else module
        filename = code.co_filename
        file_name = filename if filename.startswith("<") else os.path.basename(filename)
        return cls(
            class_name=class_name,
            method_name=name,
            file_name=file_name or None,
            line_number=line if line is not None and line > 0 else UNKNOWN_LINE,
        )

    @property
    def is_native(self) -> bool:
        return self.line_number == NATIVE_LINE

    @property
    def location(self) -> str:
        if self.is_native:
            return "Native Method"
        if self.file_name is None:
            return "Unknown Source"
        if self.line_number > 0:
            return f"{self.file_name}:{self.line_number}"
        return self.file_name

    def __str__(self) -> str:
        return f"{self.class_name}.{self.method_name}({self.location})"


@dataclass(frozen=True, eq=False)
class ResolvedFrame:
    """A frame with its cached descriptor.

    Equality and hashing cover the descriptor, file, line and offset, so two
    occurrences of the same call site compare equal.
    """

    descriptor: str
    class_name: str
    method_name: str
    file_name: str | None
    line_number: int = UNKNOWN_LINE
    module_name: str | None = None
    module_version: str | None = None
    loader_name: str | None = None
    offset: int = NO_OFFSET
    identity: MethodIdentity | None = field(default=None, repr=False)

    def restamp(self, line_number: int, offset: int) -> ResolvedFrame:
        """Copy with a new position; the descriptor is reused, never recomputed."""
        return dataclasses.replace(self, line_number=line_number, offset=offset)

    @property
    def is_native(self) -> bool:
        return self.line_number == NATIVE_LINE

    def to_raw_frame(self) -> RawFrame:
        return RawFrame(self.class_name, self.method_name, self.file_name, self.line_number)

    def render(self, config: RenderConfig | None = None) -> str:
        if config is None:
            from tracefold.config import get_default_config

            config = get_default_config()
        return config.style.impl.render_frame(self, config)

    @cached_property
    def _hash(self) -> int:
        return hash((self.descriptor, self.file_name, self.line_number, self.offset))

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, ResolvedFrame):
            return NotImplemented
        return (
            self.line_number == other.line_number
            and self.offset == other.offset
            and self.descriptor == other.descriptor
            and self.file_name == other.file_name
        )

    def __getstate__(self) -> dict[str, object]:
        state = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        state["identity"] = None
        return state

    def __setstate__(self, state: dict[str, object]) -> None:
        for name, value in state.items():
            object.__setattr__(self, name, value)

    def __str__(self) -> str:
        return self.render()


Frame = ResolvedFrame | RawFrame


def is_similar(a: Frame | None, b: Frame | None) -> bool:
    """Whether two frames denote the same call site for common-suffix elision."""
    if a is None or b is None:
        return False
    if type(a) is type(b):
        return a == b
    return (
        a.class_name == b.class_name
        and a.method_name == b.method_name
        and a.file_name == b.file_name
        and a.line_number == b.line_number
    )


__all__ = [
    "NATIVE_LINE",
    "NO_OFFSET",
    "UNKNOWN_LINE",
    "Frame",
    "RawFrame",
    "RawPosition",
    "ResolvedFrame",
    "is_similar",
    "module_from_filename",
    "split_qualname",
]
