"""Method identities and hidden-frame classification."""

from __future__ import annotations

import enum
import inspect
import sys
import sysconfig
import threading
import weakref
from collections import Counter
from collections.abc import Callable, Iterator
from functools import lru_cache
from types import CodeType, ModuleType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from tracefold.config import RenderConfig


class HiddenFlag(enum.IntFlag):
    """Reasons a frame is rendered from its raw text instead of its code object."""

    NONE = 0
    BOOT = 1 << 0
    SYNTHETIC_SCOPE = 1 << 1
    SYNTHETIC_METHOD = 1 << 2
    UNIQUE_NAME = 1 << 3


SYNTHETIC_NAMES = frozenset({"<lambda>", "<genexpr>", "<listcomp>", "<setcomp>", "<dictcomp>"})

_V = TypeVar("_V")


class CodeMap(Generic[_V]):
    """Map keyed on code object identity that holds its keys weakly.

    ``WeakKeyDictionary`` looks keys up by equality, and code objects compiled
    from the same source compare equal even when their filenames and qualified
    names differ. Entries here match only the exact code object and are dropped
    when it is collected; ``on_release`` then receives the dropped value.
    """

    def __init__(self, on_release: Callable[[_V], None] | None = None) -> None:
        self._data: dict[int, tuple[weakref.ref[CodeType], _V]] = {}
        self._on_release = on_release

    def _releaser(self, key: int) -> Callable[[weakref.ref[CodeType]], None]:
        data = self._data
        on_release = self._on_release

        def release(ref: weakref.ref[CodeType]) -> None:
            entry = data.get(key)
            if entry is None or entry[0] is not ref:
                return
            data.pop(key, None)
            if on_release is not None:
                on_release(entry[1])

        return release

    def get(self, code: CodeType, default: _V | None = None) -> _V | None:
        entry = self._data.get(id(code))
        if entry is None or entry[0]() is not code:
            return default
        return entry[1]

    def setdefault(self, code: CodeType, value: _V) -> _V:
        key = id(code)
        entry = self._data.get(key)
        if entry is not None and entry[0]() is code:
            return entry[1]
        self._data[key] = (weakref.ref(code, self._releaser(key)), value)
        return value

    def values(self) -> list[_V]:
        return [value for ref, value in list(self._data.values()) if ref() is not None]

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, code: object) -> bool:
        entry = self._data.get(id(code))
        return entry is not None and entry[0]() is code

    def __len__(self) -> int:
        return len(self._data)


class MethodIdentity:
    """Stable handle for one code object.

    Only a weak reference to the code is held, so neither the identity nor the
    cache entries keyed on it keep the code alive. Use ``MethodIdentity.of``;
    identities are interned per code object.
    """

    __slots__ = ("_ref", "_hash", "qualname", "filename", "firstlineno", "__weakref__")

    _interned: CodeMap[MethodIdentity] = CodeMap()
    _lock = threading.Lock()

    def __init__(self, code: CodeType) -> None:
        self._ref = weakref.ref(code)
        self.qualname = code.co_qualname
        self.filename = code.co_filename
        self.firstlineno = code.co_firstlineno
        self._hash = hash((self.filename, self.qualname, self.firstlineno))

    @classmethod
    def of(cls, code: CodeType) -> MethodIdentity:
        identity = cls._interned.get(code)
        if identity is not None:
            return identity
        with cls._lock:
            return cls._interned.setdefault(code, cls(code))

    def resolve(self) -> CodeType | None:
        return self._ref()

    @property
    def alive(self) -> bool:
        return self._ref() is not None

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, MethodIdentity):
            return NotImplemented
        mine = self._ref()
        return mine is not None and mine is other._ref()

    def __repr__(self) -> str:
        state = "" if self.alive else ", collected"
        return f"MethodIdentity({self.qualname!r}, {self.filename!r}:{self.firstlineno}{state})"


class ScopeNames:
    """Qualified-name census of every code object defined in one module."""

    _cache: weakref.WeakKeyDictionary[ModuleType, ScopeNames] = weakref.WeakKeyDictionary()
    _lock = threading.Lock()

    def __init__(self, module: ModuleType) -> None:
        self.module_name = module.__name__
        self._counts = Counter(code.co_qualname for code in _module_codes(module))

    @classmethod
    def for_module(cls, module: ModuleType) -> ScopeNames:
        names = cls._cache.get(module)
        if names is None:
            computed = cls(module)
            with cls._lock:
                names = cls._cache.setdefault(module, computed)
        return names

    def count(self, qualname: str) -> int:
        return self._counts.get(qualname, 0)

    def is_unique(self, qualname: str) -> bool:
        return self._counts.get(qualname, 0) == 1


def _nested_codes(code: CodeType) -> Iterator[CodeType]:
    yield code
    for const in code.co_consts:
        if isinstance(const, CodeType):
            yield from _nested_codes(const)


def _member_functions(value: Any) -> Iterator[Any]:
    if isinstance(value, (staticmethod, classmethod)):
        value = value.__func__
    if isinstance(value, property):
        for accessor in (value.fget, value.fset, value.fdel):
            if accessor is not None:
                yield accessor
        return
    while value is not None and inspect.isfunction(value):
        yield value
        value = getattr(value, "__wrapped__", None)


def _module_codes(module: ModuleType) -> Iterator[CodeType]:
    seen_classes: set[int] = set()
    seen_codes: set[int] = set()
    pending = list(vars(module).values())
    while pending:
        value = pending.pop()
        if inspect.isclass(value):
            if id(value) in seen_classes or getattr(value, "__module__", None) != module.__name__:
                continue
            seen_classes.add(id(value))
            pending.extend(vars(value).values())
            continue
        for function in _member_functions(value):
            if getattr(function, "__module__", None) != module.__name__:
                continue
            for code in _nested_codes(function.__code__):
                if id(code) not in seen_codes:
                    seen_codes.add(id(code))
                    yield code


def _stdlib_roots() -> tuple[str, ...]:
    paths = sysconfig.get_paths()
    roots = {paths[key] for key in ("stdlib", "platstdlib") if key in paths}
    return tuple(sorted(roots))


_STDLIB_ROOTS = _stdlib_roots()


@lru_cache(maxsize=4096)
def is_boot_file(filename: str) -> bool:
    """Whether ``filename`` belongs to the interpreter's own library."""
    if filename.startswith("<frozen "):
        return True
    if "site-packages" in filename or "dist-packages" in filename:
        return False
    return any(filename.startswith(root) for root in _STDLIB_ROOTS)


def is_synthetic_file(filename: str) -> bool:
    return filename.startswith("<") and not filename.startswith("<frozen ") and filename != "<stdin>"


def hidden_flags(code: CodeType, module_name: str | None, config: RenderConfig) -> HiddenFlag:
    """Classify ``code`` under the visibility toggles of ``config``."""
    flags = HiddenFlag.NONE
    filename = code.co_filename

    if not config.boot_method_type_visible and is_boot_file(filename):
        flags |= HiddenFlag.BOOT

    if not config.synthesized_method_type_visible:
        if is_synthetic_file(filename):
            flags |= HiddenFlag.SYNTHETIC_SCOPE
        if code.co_name in SYNTHETIC_NAMES:
            flags |= HiddenFlag.SYNTHETIC_METHOD

    if not config.unique_method_type_visible:
        if code.co_name == "<module>":
            flags |= HiddenFlag.UNIQUE_NAME
        else:
            module = sys.modules.get(module_name) if module_name else None
            if module is not None and ScopeNames.for_module(module).is_unique(code.co_qualname):
                flags |= HiddenFlag.UNIQUE_NAME

    return flags


__all__ = [
    "SYNTHETIC_NAMES",
    "CodeMap",
    "HiddenFlag",
    "MethodIdentity",
    "ScopeNames",
    "hidden_flags",
    "is_boot_file",
    "is_synthetic_file",
]
