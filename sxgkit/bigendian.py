"""Fixed-width big-endian unsigned integer helpers."""

from __future__ import annotations


class OutOfRangeError(ValueError):
    """Raised when an integer cannot be encoded in the requested width."""

    def __init__(self) -> None:
        super().__init__("bigendian: Given integer is out of encodable range.")


def encode_bytes_uint(n: int, size: int) -> bytes:
    """Encode ``n`` as a ``size``-byte big-endian unsigned integer."""
    if n < 0:
        raise OutOfRangeError()
    if size < 7 and n > 1 << (size * 8):
        raise OutOfRangeError()
    mask = (1 << (size * 8)) - 1
    return (n & mask).to_bytes(size, "big")


def decode_3bytes_uint(data: bytes) -> int:
    """Decode exactly three big-endian bytes into an unsigned integer."""
    if len(data) != 3:
        raise ValueError(f"bigendian: expected 3 bytes, got {len(data)}")
    return int.from_bytes(data, "big")