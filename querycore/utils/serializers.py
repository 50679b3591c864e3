"""JSON serialization utilities for querycore.

Thin wrappers around :mod:`msgspec` used for structured log lines, result
payloads and deterministic cache-key fingerprints.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Literal, overload
from uuid import UUID

import msgspec

__all__ = ("fingerprint_bytes", "from_json", "to_json")

_encoder = msgspec.json.Encoder(decimal_format="number")
_decoder = msgspec.json.Decoder()


def _fingerprint_hook(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    return repr(value)


_fingerprint_encoder = msgspec.json.Encoder(enc_hook=_fingerprint_hook, order="deterministic")


@overload
def to_json(data: Any, *, as_bytes: Literal[False] = ...) -> str: ...


@overload
def to_json(data: Any, *, as_bytes: Literal[True]) -> bytes: ...


def to_json(data: Any, *, as_bytes: bool = False) -> "str | bytes":
    """Encode data to JSON string or bytes.

    Args:
        data: Data to encode. msgspec Structs, dataclasses, datetimes, UUIDs and decimals are supported.
        as_bytes: Whether to return bytes instead of string.

    Returns:
        JSON string or bytes representation based on as_bytes parameter.
    """
    encoded = _encoder.encode(data)
    if as_bytes:
        return encoded
    return encoded.decode("utf-8")


def from_json(data: "str | bytes") -> Any:
    """Decode JSON string or bytes to Python object.

    Args:
        data: JSON string or bytes to decode.

    Returns:
        Decoded Python object.
    """
    return _decoder.decode(data)


def fingerprint_bytes(data: Any) -> bytes:
    """Encode ``data`` into a stable byte string for hashing.

    Dictionary keys are sorted, and values msgspec cannot encode natively fall
    back to a typed ``repr`` so that unusual parameter types still produce a
    deterministic fingerprint. Type tags keep ``1``, ``1.0``, ``True`` and
    ``"1"`` apart.

    Args:
        data: Value to encode.

    Returns:
        Deterministic JSON bytes.
    """
    return _fingerprint_encoder.encode(_tag(data))


def _tag(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return ["bool", value]
    if isinstance(value, int):
        return ["int", value]
    if isinstance(value, float):
        return ["float", repr(value)]
    if isinstance(value, Decimal):
        return ["decimal", str(value)]
    if isinstance(value, (datetime, date, time)):
        return [type(value).__name__, value.isoformat()]
    if isinstance(value, UUID):
        return ["uuid", str(value)]
    if isinstance(value, dict):
        return {str(k): _tag(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_tag(v) for v in value]
    return value
