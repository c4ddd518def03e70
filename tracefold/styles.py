"""Render styles: descriptor syntax and layout tokens.

Two styles are built in and selected by ``Style`` value:

``CompactStyle``
    Binary-signature descriptors such as ``Lpkg/mod$Owner;->name(AAV)F`` and
    frame lines ``descriptor  [dist/file.py:12:40]``.

``CanonicalStyle``
    Readable descriptors such as ``function pkg.mod.Owner.name(a, *args)`` and
    frame lines ``descriptor (dist/file.py:12)``.

Descriptors embed colour escapes when the configuration enables colour, which
is why the colour table takes part in ``RenderConfig.descriptor_hash``.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from types import CodeType
from typing import TYPE_CHECKING

from tracefold.config import ColorRole, Style
from tracefold.frames import NATIVE_LINE, RawFrame, ResolvedFrame, split_qualname
from tracefold.identity import HiddenFlag, is_synthetic_file
from tracefold.sinks import StringSink

if TYPE_CHECKING:
    from tracefold.config import RenderConfig
    from tracefold.frames import Frame


POSITIONAL_ONLY = "P"
POSITIONAL_OR_KEYWORD = "A"
VAR_POSITIONAL = "V"
KEYWORD_ONLY = "K"
VAR_KEYWORD = "M"


def code_parameters(code: CodeType) -> list[tuple[str, str]]:
    """``(kind letter, name)`` for each parameter of ``code`` in declaration order."""
    names = code.co_varnames
    argcount = code.co_argcount
    posonly = code.co_posonlyargcount
    kwonly = code.co_kwonlyargcount
    params = [(POSITIONAL_ONLY, name) for name in names[:posonly]]
    params.extend((POSITIONAL_OR_KEYWORD, name) for name in names[posonly:argcount])
    index = argcount + kwonly
    if code.co_flags & inspect.CO_VARARGS:
        params.append((VAR_POSITIONAL, names[index]))
        index += 1
    params.extend((KEYWORD_ONLY, name) for name in names[argcount : argcount + kwonly])
    if code.co_flags & inspect.CO_VARKEYWORDS:
        params.append((VAR_KEYWORD, names[index]))
    return params


def code_kind(code: CodeType) -> str:
    flags = code.co_flags
    if flags & inspect.CO_ASYNC_GENERATOR:
        return "async_generator"
    if flags & inspect.CO_COROUTINE:
        return "coroutine"
    if flags & inspect.CO_GENERATOR:
        return "generator"
    return "function"


def signature_parts(code: CodeType) -> list[str]:
    """Parameter list of ``code`` as written in a ``def`` statement."""
    params = code_parameters(code)
    parts = [name for kind, name in params if kind == POSITIONAL_ONLY]
    if parts:
        parts.append("/")
    parts.extend(name for kind, name in params if kind == POSITIONAL_OR_KEYWORD)
    varargs = [name for kind, name in params if kind == VAR_POSITIONAL]
    kwonly = [name for kind, name in params if kind == KEYWORD_ONLY]
    if varargs:
        parts.append("*" + varargs[0])
    elif kwonly:
        parts.append("*")
    parts.extend(kwonly)
    parts.extend("**" + name for kind, name in params if kind == VAR_KEYWORD)
    return parts


_KIND_LETTERS = {"function": "F", "generator": "G", "coroutine": "C", "async_generator": "Y"}


class RenderStyle(ABC):
    """Descriptor syntax plus the layout tokens the printer composes around it."""

    name: str
    tab: str
    at: str
    at_duplicate: str

    @abstractmethod
    def method_descriptor(self, code: CodeType, module_name: str, config: RenderConfig) -> str:
        """Full descriptor for a resolved code object."""

    @abstractmethod
    def raw_descriptor(self, raw: RawFrame, config: RenderConfig, flags: HiddenFlag) -> str:
        """Fallback descriptor built from raw frame text for hidden or unresolvable frames."""

    @abstractmethod
    def render_resolved_frame(self, frame: ResolvedFrame, config: RenderConfig) -> str: ...

    @abstractmethod
    def render_raw_frame(self, frame: RawFrame, config: RenderConfig) -> str: ...

    def render_frame(self, frame: Frame, config: RenderConfig) -> str:
        if isinstance(frame, RawFrame):
            return self.render_raw_frame(frame, config)
        return self.render_resolved_frame(frame, config)

    def _location_prefix(self, sink: StringSink, frame: ResolvedFrame, config: RenderConfig) -> None:
        if config.loader_name_visible and frame.loader_name:
            sink.write(ColorRole.LOADER, frame.loader_name)
            sink.write(ColorRole.PUNCTUATION, "/")
        if config.module_name_visible and frame.module_name:
            sink.write(ColorRole.DISTRIBUTION, frame.module_name)
            if config.module_version_visible and frame.module_version:
                sink.write(ColorRole.PUNCTUATION, "@")
                sink.write(ColorRole.VERSION, frame.module_version)
            sink.write(ColorRole.PUNCTUATION, "/")

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class CompactStyle(RenderStyle):
    name = Style.COMPACT.value
    tab = "    "
    at = "-> "
    at_duplicate = "-> -- "

    def method_descriptor(self, code: CodeType, module_name: str, config: RenderConfig) -> str:
        sink = StringSink().bind(config)
        synthetic = is_synthetic_file(code.co_filename)
        owner, name = split_qualname(code)
        sink.write(ColorRole.SIG_PREFIX, "L")
        sink.write(
            ColorRole.SIG_MODULE_SYNTHETIC if synthetic else ColorRole.SIG_MODULE,
            module_name.replace(".", "/"),
        )
        if owner:
            for segment in owner.split("."):
                role = ColorRole.SIG_SCOPE_SYNTHETIC if segment.startswith("<") else ColorRole.SIG_SCOPE
                sink.write(role, "$" + segment)
        sink.write(ColorRole.SIG_SEMICOLON, ";")
        sink.write(ColorRole.SIG_ARROW, "->")
        sink.write(ColorRole.SIG_NAME_SYNTHETIC if name.startswith("<") else ColorRole.SIG_NAME, name)
        sink.write(ColorRole.PUNCTUATION, "(")
        sink.write(ColorRole.SIG_PARAM, "".join(kind for kind, _ in code_parameters(code)))
        sink.write(ColorRole.PUNCTUATION, ")")
        sink.write(ColorRole.SIG_PREFIX, _KIND_LETTERS[code_kind(code)])
        return sink.finish()

    def raw_descriptor(self, raw: RawFrame, config: RenderConfig, flags: HiddenFlag) -> str:
        sink = StringSink().bind(config)
        sink.write(ColorRole.SIG_PREFIX, "L")
        sink.write(ColorRole.SIG_MODULE_SYNTHETIC, raw.class_name.replace(".", "/"))
        sink.write(ColorRole.SIG_SEMICOLON, ";")
        sink.write(ColorRole.SIG_ARROW, "->")
        sink.write(ColorRole.SIG_NAME_SYNTHETIC, raw.method_name)
        if flags != HiddenFlag.UNIQUE_NAME:
            sink.write(ColorRole.PUNCTUATION, "(?)?")
        return sink.finish()

    def _position(self, sink: StringSink, file_name: str | None, line: int, offset: int, config: RenderConfig) -> None:
        sink.write(ColorRole.FILE_NAME, file_name or "???")
        if line == NATIVE_LINE:
            sink.write(ColorRole.PUNCTUATION, "::")
            sink.write(ColorRole.LINE_NUMBER, "native")
        elif line > 0:
            sink.write(ColorRole.PUNCTUATION, ":")
            sink.write(ColorRole.LINE_NUMBER, str(line))
            if config.offset_visible and offset >= 0:
                sink.write(ColorRole.PUNCTUATION, ":")
                sink.write(ColorRole.NUMBER, str(offset))
        elif offset >= 0:
            sink.write(ColorRole.PUNCTUATION, ":")
            sink.write(ColorRole.NUMBER, f"BCI-{offset}")

    def render_resolved_frame(self, frame: ResolvedFrame, config: RenderConfig) -> str:
        sink = StringSink().bind(config)
        sink.print(frame.descriptor)
        sink.reset_last_color()
        sink.write(ColorRole.PUNCTUATION, "  [")
        self._location_prefix(sink, frame, config)
        self._position(sink, frame.file_name, frame.line_number, frame.offset, config)
        sink.write(ColorRole.PUNCTUATION, "]")
        return sink.finish()

    def render_raw_frame(self, frame: RawFrame, config: RenderConfig) -> str:
        sink = StringSink().bind(config)
        sink.print(self.raw_descriptor(frame, config, HiddenFlag.NONE))
        sink.reset_last_color()
        sink.write(ColorRole.PUNCTUATION, "  [")
        self._position(sink, frame.file_name, frame.line_number, -1, config)
        sink.write(ColorRole.PUNCTUATION, "]")
        return sink.finish()


class CanonicalStyle(RenderStyle):
    name = Style.CANONICAL.value
    tab = "\t"
    at = "at "
    at_duplicate = "at -- "

    def method_descriptor(self, code: CodeType, module_name: str, config: RenderConfig) -> str:
        sink = StringSink().bind(config)
        synthetic = is_synthetic_file(code.co_filename)
        owner, name = split_qualname(code)
        sink.write(ColorRole.SIG_PREFIX, code_kind(code) + " ")
        sink.write(
            ColorRole.SIG_MODULE_SYNTHETIC if synthetic else ColorRole.SIG_MODULE,
            module_name + ".",
        )
        if owner:
            sink.write(ColorRole.SIG_SCOPE, owner + ".")
        sink.write(ColorRole.SIG_NAME_SYNTHETIC if name.startswith("<") else ColorRole.SIG_NAME, name)
        sink.write(ColorRole.PUNCTUATION, "(")
        for index, param in enumerate(signature_parts(code)):
            if index:
                sink.write(ColorRole.PUNCTUATION, ", ")
            sink.write(ColorRole.SIG_PARAM, param)
        sink.write(ColorRole.PUNCTUATION, ")")
        return sink.finish()

    def raw_descriptor(self, raw: RawFrame, config: RenderConfig, flags: HiddenFlag) -> str:
        sink = StringSink().bind(config)
        sink.write(ColorRole.SIG_MODULE_SYNTHETIC, raw.class_name + ".")
        sink.write(ColorRole.SIG_NAME_SYNTHETIC, raw.method_name)
        return sink.finish()

    def render_resolved_frame(self, frame: ResolvedFrame, config: RenderConfig) -> str:
        sink = StringSink().bind(config)
        sink.print(frame.descriptor)
        sink.reset_last_color()
        sink.write(ColorRole.PUNCTUATION, " (")
        self._location_prefix(sink, frame, config)
        if frame.is_native:
            sink.write(ColorRole.FILE_NAME, "Native Method")
        else:
            sink.write(ColorRole.FILE_NAME, frame.file_name or "Unknown Source")
            if frame.file_name and frame.line_number > 0:
                sink.write(ColorRole.PUNCTUATION, ":")
                sink.write(ColorRole.LINE_NUMBER, str(frame.line_number))
        sink.write(ColorRole.PUNCTUATION, ")")
        return sink.finish()

    def render_raw_frame(self, frame: RawFrame, config: RenderConfig) -> str:
        if not config.color_scheme_enabled:
            return str(frame)
        sink = StringSink().bind(config)
        sink.write(ColorRole.SIG_MODULE_SYNTHETIC, frame.class_name + ".")
        sink.write(ColorRole.SIG_NAME_SYNTHETIC, frame.method_name)
        sink.write(ColorRole.PUNCTUATION, "(")
        sink.write(ColorRole.FILE_NAME, frame.location)
        sink.write(ColorRole.PUNCTUATION, ")")
        return sink.finish()


_STYLES: dict[Style, RenderStyle] = {
    Style.COMPACT: CompactStyle(),
    Style.CANONICAL: CanonicalStyle(),
}


def style_for(style: Style | str) -> RenderStyle:
    return _STYLES[Style(style)]


__all__ = [
    "CanonicalStyle",
    "CompactStyle",
    "RenderStyle",
    "code_kind",
    "code_parameters",
    "signature_parts",
    "style_for",
]
