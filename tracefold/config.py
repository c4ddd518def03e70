"""Rendering configuration.

A ``RenderConfig`` is an immutable snapshot of every toggle that influences how
an exception tree is rendered. Each top-level render captures one snapshot
(the explicit argument, or the process-wide default) and reads only that
snapshot until it finishes.

``descriptor_hash`` covers only the fields that change descriptor text. It
partitions the frame descriptor cache and invalidates frame lists stashed on
exceptions by earlier renders with a different configuration.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, IntEnum
from functools import cached_property
from typing import TYPE_CHECKING, Any

from tracefold.errors import InvalidConfigurationError

if TYPE_CHECKING:
    from tracefold.styles import RenderStyle


class Style(str, Enum):
    """Descriptor syntax selected per render."""

    COMPACT = "compact"
    CANONICAL = "canonical"

    @property
    def impl(self) -> RenderStyle:
        from tracefold.styles import style_for

        return style_for(self)


class ColorRole(IntEnum):
    TEXT = 0
    PACKAGE = 1
    TYPE_NAME = 2
    FILE_NAME = 3
    LINE_NUMBER = 4
    LOADER = 5
    DISTRIBUTION = 6
    VERSION = 7
    NUMBER = 8
    MESSAGE = 9
    CAPTION = 10
    AT = 11
    PUNCTUATION = 12
    SIG_PREFIX = 13
    SIG_MODULE = 14
    SIG_MODULE_SYNTHETIC = 15
    SIG_SCOPE = 16
    SIG_SCOPE_SYNTHETIC = 17
    SIG_NAME = 18
    SIG_NAME_SYNTHETIC = 19
    SIG_PARAM = 20
    SIG_SEMICOLON = 21
    SIG_ARROW = 22


RESET = "\x1b[0m"

_BASE_PALETTE: dict[ColorRole, int | None] = {
    ColorRole.TEXT: None,
    ColorRole.PACKAGE: 208,
    ColorRole.TYPE_NAME: 196,
    ColorRole.FILE_NAME: 105,
    ColorRole.LINE_NUMBER: None,
    ColorRole.LOADER: 246,
    ColorRole.DISTRIBUTION: 246,
    ColorRole.VERSION: 246,
    ColorRole.NUMBER: 250,
    ColorRole.MESSAGE: 208,
    ColorRole.CAPTION: None,
    ColorRole.AT: 208,
    ColorRole.PUNCTUATION: 252,
    ColorRole.SIG_PREFIX: 252,
    ColorRole.SIG_MODULE: 246,
    ColorRole.SIG_MODULE_SYNTHETIC: 246,
    ColorRole.SIG_SCOPE: 39,
    ColorRole.SIG_SCOPE_SYNTHETIC: 252,
    ColorRole.SIG_NAME: 208,
    ColorRole.SIG_NAME_SYNTHETIC: 252,
    ColorRole.SIG_PARAM: 39,
    ColorRole.SIG_SEMICOLON: 252,
    ColorRole.SIG_ARROW: 196,
}


def ansi(x: int, y: int, z: int) -> str:
    """Build an SGR escape; ``(0, 0, 0)`` is the reset sequence."""
    for component in (x, y, z):
        if isinstance(component, bool) or not isinstance(component, int) or not 0 <= component <= 255:
            raise InvalidConfigurationError(
                "color", (x, y, z), "Each color component must be an int in 0..255"
            )
    if x == 0 and y == 0 and z == 0:
        return RESET
    return f"\x1b[{x};{y};{z}m"


@dataclass(frozen=True)
class ColorScheme:
    """Escape sequence per ``ColorRole``."""

    codes: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.codes) != len(ColorRole):
            raise InvalidConfigurationError(
                "color_scheme", len(self.codes), f"A color scheme needs exactly {len(ColorRole)} entries"
            )

    @classmethod
    def base(cls) -> ColorScheme:
        codes = []
        for role in ColorRole:
            z = _BASE_PALETTE[role]
            codes.append(RESET if z is None else ansi(38, 5, z))
        return cls(tuple(codes))

    def __getitem__(self, role: ColorRole) -> str:
        return self.codes[role]

    def with_color(self, role: ColorRole, value: int | str | tuple[int, int, int]) -> ColorScheme:
        """Return a copy with ``role`` set to a 256-colour index, an SGR triple or a raw escape."""
        try:
            role = ColorRole(role)
        except ValueError as exc:
            raise InvalidConfigurationError("color_role", role, "Use a ColorRole member") from exc
        if isinstance(value, str):
            code = value
        elif isinstance(value, tuple):
            code = ansi(*value)
        else:
            code = ansi(38, 5, value)
        codes = list(self.codes)
        codes[role] = code
        return ColorScheme(tuple(codes))


@dataclass(frozen=True)
class RenderConfig:
    """Immutable rendering options.

    Attributes:
        style: Descriptor syntax and layout tokens.
        tab: Indent override; ``None`` uses the style's own indent.
        cache_enabled: Use the process-wide frame descriptor cache.
        fold_enabled: Elide trailing frames shared with the enclosing trace.
        boot_method_type_visible: Render standard-library frames with full descriptors.
        synthesized_method_type_visible: Render lambdas, comprehensions and code
            compiled from strings with full descriptors.
        unique_method_type_visible: Render full signatures even when the name alone
            identifies the function inside its module.
        throwable_id_visible: Tag each exception header with a per-render number.
        loader_name_visible: Prefix frame locations with the module loader name.
        module_name_visible: Prefix frame locations with the distribution name.
        module_version_visible: Append the distribution version to its name.
        offset_visible: Show bytecode offsets next to line numbers.
        check_duplicate_trace_enabled: Compress runs of repeated frames.
        only_compare_hash_enabled: Compare frames by hash only when looking for runs.
        duplicate_trace_max_size: Largest repeating block considered.
        color_scheme_enabled: Emit ANSI escapes from ``color_scheme``.
        color_scheme: Escape table; defaults to ``ColorScheme.base()`` when colour is on.
    """

    style: Style = Style.COMPACT
    tab: str | None = None
    cache_enabled: bool = True
    fold_enabled: bool = True
    boot_method_type_visible: bool = False
    synthesized_method_type_visible: bool = False
    unique_method_type_visible: bool = True
    throwable_id_visible: bool = False
    loader_name_visible: bool = False
    module_name_visible: bool = True
    module_version_visible: bool = False
    offset_visible: bool = True
    check_duplicate_trace_enabled: bool = True
    only_compare_hash_enabled: bool = True
    duplicate_trace_max_size: int = 8
    color_scheme_enabled: bool = False
    color_scheme: ColorScheme | None = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "style", Style(self.style))
        except ValueError as exc:
            raise InvalidConfigurationError(
                "style", self.style, f"Use one of {[s.value for s in Style]}"
            ) from exc
        size = self.duplicate_trace_max_size
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise InvalidConfigurationError(
                "duplicate_trace_max_size", size, "The largest repeating block must be a positive int"
            )
        if self.tab is not None and not isinstance(self.tab, str):
            raise InvalidConfigurationError("tab", self.tab, "Use a string or None")
        if self.color_scheme_enabled and self.color_scheme is None:
            object.__setattr__(self, "color_scheme", ColorScheme.base())

    @property
    def indent(self) -> str:
        return self.tab if self.tab is not None else self.style.impl.tab

    def color(self, role: ColorRole) -> str:
        if self.color_scheme_enabled and self.color_scheme is not None:
            return self.color_scheme[role]
        return ""

    @cached_property
    def descriptor_hash(self) -> int:
        colors = self.color_scheme.codes if self.color_scheme_enabled and self.color_scheme else None
        return hash(
            (
                self.style.value,
                self.boot_method_type_visible,
                self.synthesized_method_type_visible,
                self.unique_method_type_visible,
                colors,
            )
        )

    def replace(self, **changes: Any) -> RenderConfig:
        return dataclasses.replace(self, **changes)

    def with_colors(self, scheme: ColorScheme | None = None) -> RenderConfig:
        return self.replace(color_scheme_enabled=True, color_scheme=scheme or self.color_scheme or ColorScheme.base())

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, *, base: RenderConfig | None = None) -> RenderConfig:
        """Overlay ``TRACEFOLD_*`` environment variables on ``base``."""
        env = os.environ if environ is None else environ
        config = base if base is not None else cls()
        changes: dict[str, Any] = {}
        if "TRACEFOLD_STYLE" in env:
            changes["style"] = env["TRACEFOLD_STYLE"].strip().lower()
        for name, attr in (
            ("TRACEFOLD_COLOR", "color_scheme_enabled"),
            ("TRACEFOLD_FOLD", "fold_enabled"),
            ("TRACEFOLD_CACHE", "cache_enabled"),
            ("TRACEFOLD_DUPLICATES", "check_duplicate_trace_enabled"),
            ("TRACEFOLD_SHOW_IDS", "throwable_id_visible"),
        ):
            if name in env:
                changes[attr] = _parse_flag(name, env[name])
        if "TRACEFOLD_DUPLICATE_MAX_SIZE" in env:
            raw = env["TRACEFOLD_DUPLICATE_MAX_SIZE"]
            try:
                changes["duplicate_trace_max_size"] = int(raw)
            except ValueError as exc:
                raise InvalidConfigurationError(
                    "TRACEFOLD_DUPLICATE_MAX_SIZE", raw, "Use a positive integer"
                ) from exc
        return config.replace(**changes) if changes else config


def _parse_flag(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise InvalidConfigurationError(name, raw, "Use 1/0, true/false, yes/no or on/off")


_default_config = RenderConfig()


def get_default_config() -> RenderConfig:
    return _default_config


def set_default_config(config: RenderConfig) -> None:
    """Replace the process-wide default used when a render is given no config."""
    global _default_config
    if not isinstance(config, RenderConfig):
        raise TypeError(f"config must be RenderConfig, got {type(config).__name__}")
    _default_config = config


__all__ = [
    "RESET",
    "ColorRole",
    "ColorScheme",
    "RenderConfig",
    "Style",
    "ansi",
    "get_default_config",
    "set_default_config",
]
