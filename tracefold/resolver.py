"""Per-exception frame resolution and the frame stash."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from types import TracebackType

from tracefold.cache import get_frame_cache
from tracefold.config import RenderConfig, get_default_config
from tracefold.decoders import TracebackDecoder, backtrace_of, decode
from tracefold.errors import MalformedBacktraceError
from tracefold.frames import Frame, RawFrame, ResolvedFrame
from tracefold.graph import GraphNode, SyntheticNode, require_node

logger = logging.getLogger(__name__)

STASH_ATTR = "__tracefold_frames__"


@dataclass(frozen=True)
class FrameStash:
    """Frames remembered on an exception.

    ``descriptor_hash`` is the hash of the configuration that produced them;
    ``None`` marks frames pinned by ``set_stack_frames``, valid for any
    configuration. Decoded frames also remember the backtrace token and
    traceback they came from: a re-raised exception grows a longer traceback,
    which makes the stash stale.
    """

    descriptor_hash: int | None
    frames: tuple[Frame, ...]
    token: Any = field(default=None, compare=False, repr=False)
    traceback: TracebackType | None = field(default=None, compare=False, repr=False)

    def valid_for(self, config: RenderConfig, exc: BaseException) -> bool:
        if self.descriptor_hash is None:
            return True
        return (
            self.descriptor_hash == config.descriptor_hash
            and self.token is backtrace_of(exc)
            and self.traceback is exc.__traceback__
        )


def set_stack_frames(exc: BaseException, frames: Iterable[Frame] | None) -> None:
    """Pin ``frames`` on ``exc`` in place of its decoded backtrace; ``None`` unpins."""
    require_node(exc)
    if frames is None:
        exc.__dict__.pop(STASH_ATTR, None)
        return
    pinned = list(frames)
    for index, frame in enumerate(pinned):
        if frame is None:
            raise ValueError(f"frames[{index}] is None")
        if not isinstance(frame, (ResolvedFrame, RawFrame)):
            raise TypeError(f"frames[{index}] must be ResolvedFrame or RawFrame, got {type(frame).__name__}")
    exc.__dict__[STASH_ATTR] = FrameStash(None, tuple(pinned))


def stash_of(exc: BaseException) -> FrameStash | None:
    stash = exc.__dict__.get(STASH_ATTR)
    return stash if isinstance(stash, FrameStash) else None


def host_raw_frames(tb: TracebackType | None) -> list[RawFrame]:
    """The interpreter's own view of ``tb`` as raw frames, innermost first."""
    if tb is None:
        return []
    return TracebackDecoder(tb).derive_raw_frames()


def _decode_frames(exc: BaseException, config: RenderConfig) -> list[Frame]:
    token = backtrace_of(exc)
    if token is None:
        return []
    cache = get_frame_cache()
    try:
        decoder = decode(token)
        if token is not exc.__traceback__ and exc.__traceback__ is not None:
            decoder.set_raw_frames(host_raw_frames(exc.__traceback__))
        return [cache.resolve(decoder, index, config) for index in range(decoder.depth())]
    except MalformedBacktraceError as error:
        logger.debug("printing raw frames for %s: %s", type(exc).__name__, error)
        try:
            return list(host_raw_frames(exc.__traceback__))
        except MalformedBacktraceError:
            logger.debug("no raw frames available for %s", type(exc).__name__)
            return []


def resolve_frames(node: GraphNode, config: RenderConfig | None = None) -> list[Frame]:
    """Resolved frames of ``node``, innermost first.

    Frames that could not be decoded come back as ``RawFrame``. With the cache
    enabled, results are stashed on the exception and reused while the
    configuration hash matches and the exception still carries the same
    backtrace.
    """
    node = require_node(node)
    if config is None:
        config = get_default_config()
    if isinstance(node, SyntheticNode):
        return list(node.frames)
    stash = stash_of(node)
    if stash is not None and stash.descriptor_hash is None:
        return list(stash.frames)
    if config.cache_enabled and stash is not None and stash.valid_for(config, node):
        return list(stash.frames)
    token, traceback = backtrace_of(node), node.__traceback__
    frames = _decode_frames(node, config)
    if config.cache_enabled:
        node.__dict__[STASH_ATTR] = FrameStash(config.descriptor_hash, tuple(frames), token, traceback)
    return frames


__all__ = [
    "STASH_ATTR",
    "FrameStash",
    "host_raw_frames",
    "resolve_frames",
    "set_stack_frames",
    "stash_of",
]
