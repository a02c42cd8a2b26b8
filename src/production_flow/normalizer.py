"""Reduce heterogeneous provider outputs to one artifact locator.

Provider responses are first classified into a closed set of shapes, then
resolved shape by shape. Anything that does not classify resolves to None,
which callers must treat as a :class:`ResultFormatError`.
"""

from __future__ import annotations

import base64
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence, Union

from .errors import ResultFormatError

logger = logging.getLogger(__name__)

MAX_DEPTH = 5

WRAPPER_FIELDS = ("url", "video", "videos", "output")

_MAGIC_MIME_TYPES: tuple[tuple[bytes, int, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"GIF8", 0, "image/gif"),
    (b"WEBP", 8, "image/webp"),
    (b"ftyp", 4, "video/mp4"),
)


@dataclass(frozen=True)
class StringResult:
    value: str


@dataclass(frozen=True)
class BufferResult:
    data: bytes


@dataclass(frozen=True)
class AccessorResult:
    accessor: Callable[[], Any]


@dataclass(frozen=True)
class AwaitableResult:
    awaitable: Any


@dataclass(frozen=True)
class WrapperResult:
    field: str
    inner: Any


@dataclass(frozen=True)
class ArrayResult:
    items: Sequence[Any]


ResultShape = Union[StringResult, BufferResult, AccessorResult, AwaitableResult, WrapperResult, ArrayResult]


def _wrapped_field(value: Any) -> WrapperResult | None:
    if isinstance(value, Mapping):
        for field in WRAPPER_FIELDS:
            if field in value:
                return WrapperResult(field=field, inner=value[field])
        return None
    for field in WRAPPER_FIELDS:
        if hasattr(value, field):
            return WrapperResult(field=field, inner=getattr(value, field))
    return None


def classify(value: Any) -> ResultShape | None:
    """Tag ``value`` with the shape it arrived in, or None if unsupported."""
    if value is None:
        return None
    if isinstance(value, str):
        return StringResult(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BufferResult(bytes(value))
    if isinstance(value, (list, tuple)):
        return ArrayResult(value)
    if inspect.isawaitable(value):
        return AwaitableResult(value)
    if callable(value) and not isinstance(value, type):
        return AccessorResult(value)
    return _wrapped_field(value)


def sniff_mime_type(data: bytes, default: str = "image/png") -> str:
    for magic, offset, mime in _MAGIC_MIME_TYPES:
        if data[offset : offset + len(magic)] == magic:
            return mime
    return default


def to_data_url(data: bytes, mime_type: str | None = None) -> str:
    mime = mime_type or sniff_mime_type(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


async def normalize_result(value: Any, *, _depth: int = 0) -> str | None:
    """Resolve a provider response to a locator (URL or data URL)."""
    if _depth > MAX_DEPTH:
        logger.warning("Provider output nested too deeply", extra={"depth": _depth})
        return None

    shape = classify(value)
    if shape is None:
        return None

    if isinstance(shape, StringResult):
        return shape.value.strip() or None

    if isinstance(shape, BufferResult):
        return to_data_url(shape.data) if shape.data else None

    if isinstance(shape, ArrayResult):
        for item in shape.items:
            locator = await normalize_result(item, _depth=_depth + 1)
            if locator:
                return locator
        return None

    if isinstance(shape, AwaitableResult):
        return await normalize_result(await shape.awaitable, _depth=_depth + 1)

    if isinstance(shape, AccessorResult):
        return await normalize_result(shape.accessor(), _depth=_depth + 1)

    return await normalize_result(shape.inner, _depth=_depth + 1)


async def require_locator(value: Any) -> str:
    locator = await normalize_result(value)
    if not locator:
        raise ResultFormatError(f"Unexpected provider output format: {_describe(value)}")
    return locator


def _describe(value: Any, limit: int = 200) -> str:
    text = repr(value)
    return text if len(text) <= limit else f"{text[: limit - 1]}…"


__all__ = [
    "AccessorResult",
    "ArrayResult",
    "AwaitableResult",
    "BufferResult",
    "MAX_DEPTH",
    "ResultShape",
    "StringResult",
    "WrapperResult",
    "classify",
    "normalize_result",
    "require_locator",
    "sniff_mime_type",
    "to_data_url",
]
