"""Backend wire messages and the streaming JSON decoder.

The backend answers most commands with a stream of JSON objects, one per
logical event, concatenated with (optional) whitespace between them rather
than wrapped in an array. ``decode_messages`` walks such a body lazily and
turns each object into a typed message.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from ..types import DecodeError

_WHITESPACE = " \t\n\r"

# [0-9] rather than \d, which also matches non-ASCII digits.
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


def _field(data: dict[str, Any], name: str, default: Any = None) -> Any:
    """Look up *name* exactly, then case-insensitively."""
    if name in data:
        return data[name]
    lowered = name.lower()
    for key, value in data.items():
        if key.lower() == lowered:
            return value
    return default


def _as_int(value: Any, what: str) -> int:
    """Base-10 int64: optional sign, ASCII digits, nothing else."""
    if isinstance(value, bool):
        raise DecodeError(f"invalid {what}: {value!r}")
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str) or not _DECIMAL.fullmatch(value):
        raise DecodeError(f"invalid {what}: {value!r}")
    number = int(value)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise DecodeError(f"{what} out of range: {value!r}")
    return number


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@dataclass
class AddResponseMessage:
    """One entry of an /add response: a file, a directory, or the wrapper."""
    name: str = ""
    hash: str = ""
    size: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AddResponseMessage:
        size = _field(data, "Size", "")
        return cls(
            name=str(_field(data, "Name", "") or ""),
            hash=str(_field(data, "Hash", "") or ""),
            size=str(size) if size is not None else "",
        )

    def to_json(self) -> dict[str, str]:
        return {"Name": self.name, "Hash": self.hash, "Size": self.size}

    def size_int(self) -> int:
        return _as_int(self.size, "size")


@dataclass
class RootMeta:
    cid: dict[str, str] = field(default_factory=dict)
    pin_error_msg: str = ""

    def root_cid(self) -> str | None:
        return self.cid.get("/")


@dataclass
class CarImportStats:
    block_count: int = 0
    block_bytes_count: int = 0


@dataclass
class DAGImportResponseMessage:
    """Either a root report or the aggregate stats of a /dag/import call."""
    root: RootMeta | None = None
    stats: CarImportStats | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> DAGImportResponseMessage:
        msg = cls()

        root = _field(data, "Root")
        if root is not None:
            if not isinstance(root, dict):
                raise DecodeError(f"invalid Root: {root!r}")
            cid = _field(root, "Cid") or {}
            if not isinstance(cid, dict):
                raise DecodeError(f"invalid Cid: {cid!r}")
            msg.root = RootMeta(
                cid={str(k): str(v) for k, v in cid.items()},
                pin_error_msg=str(_field(root, "PinErrorMsg", "") or ""),
            )

        stats = _field(data, "Stats")
        if stats is not None:
            if not isinstance(stats, dict):
                raise DecodeError(f"invalid Stats: {stats!r}")
            msg.stats = CarImportStats(
                block_count=_as_int(_field(stats, "BlockCount", 0), "BlockCount"),
                block_bytes_count=_as_int(_field(stats, "BlockBytesCount", 0), "BlockBytesCount"),
            )

        return msg

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.root is not None:
            out["Root"] = {"Cid": dict(self.root.cid), "PinErrorMsg": self.root.pin_error_msg}
        if self.stats is not None:
            out["Stats"] = {
                "BlockCount": self.stats.block_count,
                "BlockBytesCount": self.stats.block_bytes_count,
            }
        return out


@dataclass
class PinLsResponseMessage:
    keys: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def recursive(cls, hashes: list[str]) -> PinLsResponseMessage:
        return cls(keys={h: {"Type": "recursive"} for h in hashes})

    def to_json(self) -> dict[str, Any]:
        return {"Keys": self.keys}


@dataclass
class PinRmResponseMessage:
    pins: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> PinRmResponseMessage:
        pins = _field(data, "Pins") or []
        if not isinstance(pins, list):
            raise DecodeError(f"invalid Pins: {pins!r}")
        return cls(pins=[str(p) for p in pins])

    def to_json(self) -> dict[str, Any]:
        return {"Pins": self.pins}


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------

class _Decodable(Protocol):
    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Any: ...


M = TypeVar("M", bound=_Decodable)


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def iter_json_objects(body: bytes) -> Iterator[dict[str, Any]]:
    """Yield each JSON object of a concatenated-objects body, in order.

    Ends cleanly at end of input. Raises ``DecodeError`` on the first value
    that is malformed or not an object; objects before it have already been
    yielded.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"response is not valid UTF-8: {e}") from e

    decoder = json.JSONDecoder()
    pos = _skip_whitespace(text, 0)
    while pos < len(text):
        try:
            obj, end = decoder.raw_decode(text, pos)
        except json.JSONDecodeError as e:
            raise DecodeError(f"malformed JSON response: {e}") from e
        if not isinstance(obj, dict):
            raise DecodeError(f"unexpected JSON value in response: {obj!r}")
        yield obj
        pos = _skip_whitespace(text, end)


def decode_messages(body: bytes, message_type: type[M]) -> Iterator[M]:
    """Lazily decode *body* into ``message_type`` instances."""
    for obj in iter_json_objects(body):
        yield message_type.from_json(obj)
