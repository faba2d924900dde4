"""Merkle Integrity Content Encoding (draft-thomson-http-mice 02 and 03)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
import struct
from enum import Enum
from typing import BinaryIO, NamedTuple

_HASH_SIZE = hashlib.sha256().digest_size
_RAW_URL_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


class MiceError(ValueError):
    """Raised when a mice-encoded payload or digest cannot be processed."""


class ValidationFailure(MiceError):
    """Raised when an integrity check of a record fails."""

    def __init__(self) -> None:
        super().__init__("mice: failed to validate record")


class EncodedPayload(NamedTuple):
    """Result of encoding: the encoded body and its digest header value."""

    payload: bytes
    digest: str


def validate_record(record: bytes | None, proof: bytes | None, is_last_record: bool) -> bool:
    """Return whether ``record`` hashes to ``proof``."""
    if proof is None:
        return False
    marker = b"\x00" if is_last_record else b"\x01"
    return hashlib.sha256((record or b"") + marker).digest() == proof


def _read_full(stream: BinaryIO, n: int) -> bytes:
    parts = []
    remaining = n
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def _decode_raw_url(text: str) -> bytes:
    if not _RAW_URL_ALPHABET.fullmatch(text) or len(text) % 4 == 1:
        raise MiceError(f"illegal base64 data in {text!r}")
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class Encoding(str, Enum):
    """A draft version of the mice content encoding."""

    DRAFT02 = "mi-sha256-draft2"
    DRAFT03 = "mi-sha256-03"

    def __str__(self) -> str:
        return self.value

    def content_encoding(self) -> str:
        """The Content-Encoding token of this encoding."""
        return self.value

    def digest_header_name(self) -> str:
        """The name of the header that carries the integrity proof."""
        return "MI-Draft2" if self is Encoding.DRAFT02 else "Digest"

    def integrity_identifier(self) -> str:
        """The signature "integrity" parameter for this encoding."""
        if self is Encoding.DRAFT02:
            return "mi-draft2"
        return "digest/mi-sha256-03"

    def _b64encode(self, data: bytes) -> str:
        if self is Encoding.DRAFT02:
            return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")
        return base64.b64encode(data).decode("ascii")

    def _b64decode(self, text: str) -> bytes:
        if self is Encoding.DRAFT02:
            return _decode_raw_url(text)
        return base64.b64decode(text, validate=True)

    def format_digest_header(self, top_level_proof: bytes) -> str:
        """Format a top-level proof as a digest header value."""
        return f"{self.content_encoding()}={self._b64encode(top_level_proof)}"

    def encode(self, data: bytes, record_size: int) -> EncodedPayload:
        """Encode ``data`` into records of ``record_size`` bytes."""
        if record_size <= 0:
            raise ValueError(f"mice: invalid record size {record_size}")
        data = bytes(data)
        if not data:
            if self is Encoding.DRAFT03:
                # The empty payload encodes to an empty message whose proof
                # is SHA-256("\0").
                proof = hashlib.sha256(b"\x00").digest()
                return EncodedPayload(b"", self.format_digest_header(proof))
            records = [b""]
        else:
            records = [data[i:i + record_size] for i in range(0, len(data), record_size)]

        proof = hashlib.sha256(records[-1] + b"\x00").digest()
        proofs = [proof]
        for record in reversed(records[:-1]):
            proof = hashlib.sha256(record + proof + b"\x01").digest()
            proofs.append(proof)
        proofs.reverse()

        body = b"".join(
            proofs[i] + record if i else record for i, record in enumerate(records)
        )
        encoded = struct.pack(">Q", record_size) + body
        return EncodedPayload(encoded, self.format_digest_header(proofs[0]))

    def parse_digest_header(self, digest_header_value: str) -> bytes:
        """Extract the top-level proof from a digest header value."""
        algorithm, sep, digest = digest_header_value.partition("=")
        if not sep:
            raise MiceError(f"mice: cannot parse digest value {digest_header_value!r}")
        if algorithm != self.content_encoding():
            raise MiceError(f"mice: unsupported digest algorithm {algorithm!r}")
        try:
            proof = self._b64decode(digest)
        except (binascii.Error, ValueError) as exc:
            raise MiceError(f"mice: failed to decode digest value {digest!r}: {exc}") from exc
        if len(proof) != _HASH_SIZE:
            raise MiceError(f"mice: wrong digest length {digest!r}")
        return proof

    def new_decoder(
        self, stream: BinaryIO, digest_header_value: str, max_record_size: int
    ) -> "MiceDecoder":
        """Create a decoder reading encoded data from ``stream``."""
        top_level_proof = self.parse_digest_header(digest_header_value)
        header = _read_full(stream, 8)
        if not header and self is not Encoding.DRAFT02:
            if not validate_record(None, top_level_proof, True):
                raise ValidationFailure()
            return MiceDecoder(self, None, 0, None)
        if len(header) < 8:
            raise MiceError("mice: cannot read record size: unexpected EOF")
        (record_size,) = struct.unpack(">Q", header)
        if record_size == 0 or record_size > max_record_size:
            raise MiceError(f"mice: invalid record size {record_size}")
        return MiceDecoder(self, stream, record_size, top_level_proof)


class MiceDecoder:
    """Streaming decoder that verifies each record as it is read."""

    def __init__(
        self,
        encoding: Encoding,
        stream: BinaryIO | None,
        record_size: int,
        next_proof: bytes | None,
    ) -> None:
        self.encoding = encoding
        self.record_size = record_size
        self._stream = stream
        self._next_proof = next_proof
        self._out = b""

    def _read_next_record(self) -> None:
        full = self.record_size + _HASH_SIZE
        data = _read_full(self._stream, full)
        if not data:
            if self.encoding is Encoding.DRAFT02:
                if not validate_record(None, self._next_proof, True):
                    raise ValidationFailure()
                self._out = b""
                self._next_proof = None
                return
            raise MiceError("mice: unexpected end of input")
        if len(data) < full:
            if len(data) > self.record_size:
                raise MiceError("mice: end of input reached in the middle of hash")
            if not validate_record(data, self._next_proof, True):
                raise ValidationFailure()
            self._out = data
            self._next_proof = None
            return
        if not validate_record(data, self._next_proof, False):
            raise ValidationFailure()
        self._out = data[: self.record_size]
        self._next_proof = data[self.record_size:]

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` decoded bytes; all remaining if negative."""
        if size is None or size < 0:
            return self.read_all()
        if not self._out:
            if self._next_proof is None:
                return b""
            self._read_next_record()
        chunk, self._out = self._out[:size], self._out[size:]
        return chunk

    def read_all(self) -> bytes:
        """Read and verify every remaining record."""
        parts = [self._out]
        self._out = b""
        while self._next_proof is not None:
            self._read_next_record()
            parts.append(self._out)
            self._out = b""
        return b"".join(parts)