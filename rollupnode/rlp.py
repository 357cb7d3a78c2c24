"""Recursive Length Prefix encoding with canonical-form checks on decode."""

from __future__ import annotations

from typing import Union

Item = Union[bytes, list]


class RLPError(ValueError):
    """Raised when data is not valid canonical RLP."""


def _length_prefix(offset: int, length: int) -> bytes:
    if length < 56:
        return bytes([offset + length])
    size = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([offset + 55 + len(size)]) + size


def encode(item) -> bytes:
    """Encode bytes, strings, non-negative integers and (nested) sequences of them."""
    if isinstance(item, (bytes, bytearray, memoryview)):
        raw = bytes(item)
        if len(raw) == 1 and raw[0] < 0x80:
            return raw
        return _length_prefix(0x80, len(raw)) + raw
    if isinstance(item, str):
        return encode(item.encode("utf-8"))
    if isinstance(item, int):
        if item < 0:
            raise RLPError(f"cannot encode negative integer {item}")
        return encode(item.to_bytes((item.bit_length() + 7) // 8, "big"))
    if isinstance(item, (list, tuple)):
        payload = b"".join(encode(element) for element in item)
        return _length_prefix(0xC0, len(payload)) + payload
    raise TypeError(f"cannot RLP-encode value of type {type(item).__name__}")


def _read_size(data: bytes, pos: int, size_len: int) -> int:
    if pos + size_len > len(data):
        raise RLPError("unexpected end of input reading size")
    size_bytes = data[pos : pos + size_len]
    if size_bytes[0] == 0:
        raise RLPError("non-canonical size information")
    size = int.from_bytes(size_bytes, "big")
    if size < 56:
        raise RLPError("non-canonical size information")
    return size


def _payload_bounds(data: bytes, start: int, size: int) -> int:
    end = start + size
    if end > len(data):
        raise RLPError("value size exceeds available input length")
    return end


def _decode_at(data: bytes, pos: int) -> tuple:
    if pos >= len(data):
        raise RLPError("unexpected end of input")
    prefix = data[pos]
    if prefix < 0x80:
        return bytes([prefix]), pos + 1
    if prefix < 0xB8:
        start = pos + 1
        end = _payload_bounds(data, start, prefix - 0x80)
        if end - start == 1 and data[start] < 0x80:
            raise RLPError("non-canonical size information")
        return data[start:end], end
    if prefix < 0xC0:
        size_len = prefix - 0xB7
        size = _read_size(data, pos + 1, size_len)
        start = pos + 1 + size_len
        end = _payload_bounds(data, start, size)
        return data[start:end], end
    if prefix < 0xF8:
        start = pos + 1
        size = prefix - 0xC0
    else:
        size_len = prefix - 0xF7
        size = _read_size(data, pos + 1, size_len)
        start = pos + 1 + size_len
    end = _payload_bounds(data, start, size)
    payload = data[start:end]
    items = []
    cursor = 0
    while cursor < len(payload):
        element, cursor = _decode_at(payload, cursor)
        items.append(element)
    return items, end


def decode(data) -> Item:
    """Decode exactly one RLP value; strings become bytes and lists become lists."""
    raw = bytes(data)
    item, end = _decode_at(raw, 0)
    if end != len(raw):
        raise RLPError("input contains more than one value")
    return item