"""Structured export of resolved frames.

Frames become plain dicts (JSON friendly) or a cloudpickle payload. The weak
method identity is never exported; imported frames carry ``identity=None``
and can be pinned on another exception with ``set_stack_frames``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import cloudpickle

from tracefold.frames import NO_OFFSET, UNKNOWN_LINE, Frame, RawFrame, ResolvedFrame

_RESOLVED_KEYS = (
    "descriptor",
    "class_name",
    "method_name",
    "file_name",
    "line_number",
    "module_name",
    "module_version",
    "loader_name",
    "offset",
)
_RAW_KEYS = ("class_name", "method_name", "file_name", "line_number")


def _safe_object_repr(value: Any) -> str:
    try:
        return repr(value)
    except Exception as repr_error:
        return f"<repr failed: {repr_error!r}>"


def frame_to_dict(frame: Frame) -> dict[str, Any]:
    if isinstance(frame, ResolvedFrame):
        data = {key: getattr(frame, key) for key in _RESOLVED_KEYS}
        data["kind"] = "resolved"
        return data
    if isinstance(frame, RawFrame):
        data = {key: getattr(frame, key) for key in _RAW_KEYS}
        data["kind"] = "raw"
        return data
    raise TypeError(f"cannot export {type(frame).__name__}; expected ResolvedFrame or RawFrame")


def frame_from_dict(data: Mapping[str, Any]) -> Frame:
    kind = data.get("kind", "resolved" if "descriptor" in data else "raw")
    try:
        if kind == "raw":
            return RawFrame(
                class_name=data["class_name"],
                method_name=data["method_name"],
                file_name=data.get("file_name"),
                line_number=data.get("line_number", UNKNOWN_LINE),
            )
        if kind == "resolved":
            return ResolvedFrame(
                descriptor=data["descriptor"],
                class_name=data["class_name"],
                method_name=data["method_name"],
                file_name=data.get("file_name"),
                line_number=data.get("line_number", UNKNOWN_LINE),
                module_name=data.get("module_name"),
                module_version=data.get("module_version"),
                loader_name=data.get("loader_name"),
                offset=data.get("offset", NO_OFFSET),
            )
    except KeyError as exc:
        raise ValueError(f"frame record is missing {exc.args[0]!r}: {_safe_object_repr(data)}") from exc
    raise ValueError(f"unknown frame kind {kind!r}")


def frames_to_dicts(frames: Iterable[Frame]) -> list[dict[str, Any]]:
    return [frame_to_dict(frame) for frame in frames]


def frames_from_dicts(records: Iterable[Mapping[str, Any]]) -> list[Frame]:
    return [frame_from_dict(record) for record in records]


def dump_frames(frames: Iterable[Frame]) -> bytes:
    """Serialize frames with cloudpickle."""
    payload = list(frames)
    try:
        return cloudpickle.dumps(payload)
    except Exception as exc:
        raise TypeError(
            f"Failed to cloudpickle frames; object type={type(payload).__name__}; repr={_safe_object_repr(payload)}"
        ) from exc


def load_frames(payload: bytes) -> list[Frame]:
    try:
        frames = cloudpickle.loads(payload)
    except Exception as exc:
        raise TypeError(f"Failed to load frames via cloudpickle: {exc}") from exc
    if not isinstance(frames, list) or not all(isinstance(f, (ResolvedFrame, RawFrame)) for f in frames):
        raise TypeError(f"payload does not contain a frame list: {type(frames).__name__}")
    return frames


__all__ = [
    "dump_frames",
    "frame_from_dict",
    "frame_to_dict",
    "frames_from_dicts",
    "frames_to_dicts",
    "load_frames",
]
