"""Frame descriptor cache.

Descriptors are expensive to build (signature inspection, module
classification, colour escapes) and identical for every occurrence of the same
method under the same configuration. The cache stores one ``ResolvedFrame``
per ``(code object, descriptor hash, hidden)`` and re-stamps it with the line
and offset of each occurrence.

Entries are keyed weakly on the identity of the code object. Cached frames hold only a
``MethodIdentity`` (itself a weak reference), so a collected function takes its
entries with it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import CodeType
from typing import TYPE_CHECKING

from tracefold.errors import UnresolvableMethodError
from tracefold.frames import ResolvedFrame, module_from_filename
from tracefold.identity import CodeMap, HiddenFlag
from tracefold.modules import classify

if TYPE_CHECKING:
    from tracefold.config import RenderConfig
    from tracefold.decoders import BacktraceDecoder

logger = logging.getLogger(__name__)

CacheKey = tuple[int, bool]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    uncached: int = 0


class FrameDescriptorCache:
    """Concurrent weak-keyed map from code objects to resolved frames."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: CodeMap[dict[CacheKey, ResolvedFrame]] = CodeMap()
        self.stats = CacheStats()

    def get(self, code: CodeType, key: CacheKey) -> ResolvedFrame | None:
        with self._lock:
            bucket = self._entries.get(code)
            return bucket.get(key) if bucket is not None else None

    def put(self, code: CodeType, key: CacheKey, frame: ResolvedFrame) -> ResolvedFrame:
        """Insert unless another thread won the race; returns the stored frame."""
        with self._lock:
            return self._entries.setdefault(code, {}).setdefault(key, frame)

    def _count(self, field: str) -> None:
        with self._lock:
            setattr(self.stats, field, getattr(self.stats, field) + 1)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._entries.values())

    def __contains__(self, code: object) -> bool:
        with self._lock:
            return code in self._entries

    def resolve(self, decoder: BacktraceDecoder, index: int, config: RenderConfig) -> ResolvedFrame:
        """Resolve frame ``index`` of ``decoder`` under ``config``.

        Raises ``MalformedBacktraceError`` when the decoder's raw frames cannot
        be aligned; the caller degrades the whole node. A frame whose code object
        is gone is rendered from its raw text and is not cached, since no code
        object is left to key it on.
        """
        style = config.style.impl
        raw = decoder.raw_frame_at(index)
        try:
            decoded = decoder.frame_at(index, config)
            code = decoded.identity.resolve()
            if code is None:
                raise UnresolvableMethodError(index, "code object was collected")
        except UnresolvableMethodError as exc:
            logger.debug("falling back to raw descriptor: %s", exc)
            self._count("uncached")
            return ResolvedFrame(
                descriptor=style.raw_descriptor(raw, config, HiddenFlag.NONE),
                class_name=raw.class_name,
                method_name=raw.method_name,
                file_name=raw.file_name,
                line_number=raw.line_number,
            )

        line, offset = raw.line_number, decoded.position.offset
        key = (config.descriptor_hash, bool(decoded.hidden))
        if config.cache_enabled:
            cached = self.get(code, key)
            if cached is not None:
                self._count("hits")
                return cached.restamp(line, offset)
            self._count("misses")

        module = decoded.module or module_from_filename(code.co_filename)
        if decoded.hidden:
            descriptor = style.raw_descriptor(raw, config, decoded.hidden)
        else:
            descriptor = style.method_descriptor(code, module, config)
        info = classify(module)
        frame = ResolvedFrame(
            descriptor=descriptor,
            class_name=raw.class_name,
            method_name=raw.method_name,
            file_name=raw.file_name,
            line_number=line,
            module_name=info.name,
            module_version=info.version,
            loader_name=info.loader,
            offset=offset,
            identity=decoded.identity,
        )
        if config.cache_enabled:
            stored = self.put(code, key, frame)
            if stored is not frame:
                return stored.restamp(line, offset)
        return frame


_cache = FrameDescriptorCache()


def get_frame_cache() -> FrameDescriptorCache:
    return _cache


def resolve(decoder: BacktraceDecoder, index: int, config: RenderConfig) -> ResolvedFrame:
    return _cache.resolve(decoder, index, config)


__all__ = [
    "CacheStats",
    "FrameDescriptorCache",
    "get_frame_cache",
    "resolve",
]
