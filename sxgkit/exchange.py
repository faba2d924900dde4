"""The application/signed-exchange container: headers, payload and framing."""

from __future__ import annotations

import base64
import hashlib
import io
import re
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable, Iterator, TextIO, Union
from urllib.parse import urlsplit

import cbor2

from .bigendian import decode_3bytes_uint, encode_bytes_uint
from .headers import Headers
from .version import HEADER_MAGIC_BYTES_LEN, Version, from_magic_bytes

_KEY_METHOD = b":method"
_KEY_URL = b":url"
_KEY_STATUS = b":status"

MAX_SIGNATURE_HEADER_VALUE_LEN = 16 * 1024
MAX_HEADER_LEN = 512 * 1024

_ATOI = re.compile(r"[+-]?[0-9]+")
_BAD_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")

HeaderMap = dict


class ExchangeError(ValueError):
    """Raised when a signed exchange cannot be encoded or decoded."""


def _to_bytes(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _to_str(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def normalize_header_values(values: Iterable[str]) -> str:
    """Combine repeated header field values into one comma-separated value."""
    return ",".join(values)


def validate_fallback_url(url_bytes: bytes) -> str:
    """Return the fallback URL as text if it is an absolute https URL."""
    url = _to_str(bytes(url_bytes))
    if _CONTROL.search(url):
        raise ExchangeError(
            f"signedexchange: cannot parse fallback URL {url!r}: "
            "invalid control character in URL"
        )
    if _BAD_PERCENT.search(url):
        raise ExchangeError(
            f"signedexchange: cannot parse fallback URL {url!r}: invalid URL escape"
        )
    try:
        scheme = urlsplit(url).scheme
    except ValueError as exc:
        raise ExchangeError(
            f"signedexchange: cannot parse fallback URL {url!r}: {exc}"
        ) from exc
    if scheme != "https":
        raise ExchangeError(f"signedexchange: non-https fallback URL: {url!r}")
    return url


def _encode_headers(entries: dict, headers: Headers) -> None:
    for name, values in headers.items():
        entries[_to_bytes(name.lower())] = _to_bytes(normalize_header_values(values))


def _header_entries(obj: object, kind: str) -> Iterator[tuple[bytes, str, bytes]]:
    if not isinstance(obj, dict):
        raise ExchangeError(
            f"signedexchange: failed to decode {kind} map header: not a map"
        )
    for key, value in obj.items():
        if not isinstance(key, bytes) or not isinstance(value, bytes):
            raise ExchangeError(
                f"signedexchange: {kind} map entries must be byte strings"
            )
        key_str = _to_str(key)
        if key_str != key_str.lower():
            raise ExchangeError(
                f"signedexchange: {kind} header key MUST NOT contain uppercase "
                f"alphabet(s): {key_str}"
            )
        yield key, key_str, value


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    parts = []
    remaining = n
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise ExchangeError("signedexchange: unexpected EOF")
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def _as_headers(value: Union[Headers, dict, None]) -> Headers:
    if isinstance(value, Headers):
        return value
    return Headers(value)


@dataclass
class Exchange:
    """An HTTP exchange carried inside a signed exchange."""

    version: Version
    request_uri: str = ""
    request_method: str = "GET"
    request_headers: Headers = field(default_factory=Headers)
    response_status: int = 200
    response_headers: Headers = field(default_factory=Headers)
    payload: bytes = b""
    signature_header_value: str = ""

    def __post_init__(self) -> None:
        self.version = Version(self.version)
        self.request_headers = _as_headers(self.request_headers)
        self.response_headers = _as_headers(self.response_headers)
        self.payload = bytes(self.payload)

    @property
    def _has_request_map(self) -> bool:
        return self.version in (Version.V1B1, Version.V1B2)

    def mi_encode_payload(self, record_size: int) -> None:
        """Replace the payload by its mice encoding and add the matching headers."""
        enc = self.version.mice_encoding()
        if self.response_headers.get(enc.digest_header_name()) != "":
            raise ExchangeError(
                f"signedexchange: response already has "
                f"{enc.digest_header_name()!r} header"
            )
        encoded = enc.encode(self.payload, record_size)
        self.payload = encoded.payload
        self.response_headers.add("Content-Encoding", enc.content_encoding())
        self.response_headers.add(enc.digest_header_name(), encoded.digest)

    def _request_map(self) -> dict:
        entries = {_KEY_METHOD: _to_bytes(self.request_method)}
        if self.version is Version.V1B1:
            entries[_KEY_URL] = _to_bytes(self.request_uri)
        _encode_headers(entries, self.request_headers)
        return entries

    def _response_map(self) -> dict:
        entries = {_KEY_STATUS: str(self.response_status).encode("ascii")}
        _encode_headers(entries, self.response_headers)
        return entries

    def _exchange_headers_object(self) -> Union[list, dict]:
        """The CBOR data model value of the exchange headers."""
        if self._has_request_map:
            return [self._request_map(), self._response_map()]
        return self._response_map()

    def encode_exchange_headers(self) -> bytes:
        """The canonical CBOR serialization of the exchange headers."""
        return cbor2.dumps(self._exchange_headers_object(), canonical=True)

    def dump_exchange_headers(self, stream: BinaryIO) -> None:
        """Write the canonical CBOR exchange headers to ``stream``."""
        stream.write(self.encode_exchange_headers())

    def _decode_request_map(self, obj: object) -> None:
        for key, key_str, value in _header_entries(obj, "request"):
            if key == _KEY_METHOD:
                self.request_method = _to_str(value)
            elif key == _KEY_URL:
                if self.version is not Version.V1B1:
                    raise ExchangeError(
                        f"signedexchange: found a deprecated request key {_to_str(_KEY_URL)!r}"
                    )
                self.request_uri = validate_fallback_url(value)
            else:
                self.request_headers.add(key_str, _to_str(value))

    def _decode_response_map(self, obj: object) -> None:
        for key, key_str, value in _header_entries(obj, "response"):
            if key == _KEY_STATUS:
                text = _to_str(value)
                if not _ATOI.fullmatch(text):
                    raise ExchangeError(
                        f"signedexchange: invalid response status {text!r}"
                    )
                self.response_status = int(text)
            else:
                self.response_headers.add(key_str, _to_str(value))

    def _decode_exchange_headers(self, data: bytes) -> None:
        try:
            obj = cbor2.CBORDecoder(io.BytesIO(data)).decode()
        except (cbor2.CBORDecodeError, EOFError, ValueError, TypeError) as exc:
            raise ExchangeError(
                f"signedexchange: failed to decode exchange headers: {exc}"
            ) from exc
        if self._has_request_map:
            if not isinstance(obj, list):
                raise ExchangeError(
                    "signedexchange: failed to decode top-level array header"
                )
            if len(obj) != 2:
                raise ExchangeError(
                    f"signedexchange: length of header array must be 2 but {len(obj)}"
                )
            self._decode_request_map(obj[0])
            self._decode_response_map(obj[1])
        else:
            self.request_method = "GET"
            self._decode_response_map(obj)

    def write(self, stream: BinaryIO) -> None:
        """Write the exchange in the application/signed-exchange format."""
        headers = self.encode_exchange_headers()
        signature = _to_bytes(self.signature_header_value)
        parts = [self.version.header_magic_bytes()]
        if self.version is not Version.V1B1:
            url = _to_bytes(self.request_uri)
            parts += [encode_bytes_uint(len(url), 2), url]
            if len(signature) > MAX_SIGNATURE_HEADER_VALUE_LEN:
                raise ExchangeError(
                    f"signedexchange: sigLength must <= "
                    f"{MAX_SIGNATURE_HEADER_VALUE_LEN} but {len(signature)}"
                )
            if len(headers) > MAX_HEADER_LEN:
                raise ExchangeError(
                    f"signedexchange: headerLength must <= {MAX_HEADER_LEN} "
                    f"but {len(headers)}"
                )
        parts += [
            encode_bytes_uint(len(signature), 3),
            encode_bytes_uint(len(headers), 3),
            signature,
            headers,
            self.payload,
        ]
        stream.write(b"".join(parts))

    def pretty_print_headers(self, stream: TextIO) -> None:
        """Write a readable summary of the headers to a text stream."""
        lines = [
            f"format version: {self.version}",
            "request:",
            f"  method: {self.request_method}",
            f"  uri: {self.request_uri}",
            "  headers:",
        ]
        lines += [f"    {k}: {self.request_headers.get(k)}" for k in self.request_headers]
        lines += ["response:", f"  status: {self.response_status}", "  headers:"]
        lines += [f"    {k}: {self.response_headers.get(k)}" for k in self.response_headers]
        lines.append(f"signature: {self.signature_header_value}")
        stream.write("\n".join(lines) + "\n")

    def pretty_print_payload(self, stream: BinaryIO) -> None:
        """Write the payload, preceded by its size, to a binary stream."""
        stream.write(f"payload [{len(self.payload)} bytes]:\n".encode("ascii"))
        stream.write(self.payload)

    def compute_header_integrity(self) -> str:
        """The SHA-256 header integrity string of the exchange headers."""
        digest = hashlib.sha256(self.encode_exchange_headers()).digest()
        return "sha256-" + base64.b64encode(digest).decode("ascii")

    def pretty_print_header_integrity(self, stream: TextIO) -> None:
        """Write the header integrity line to a text stream."""
        stream.write(f"header integrity: {self.compute_header_integrity()}\n")


def read_exchange(stream: BinaryIO) -> Exchange:
    """Read an application/signed-exchange resource from ``stream``."""
    magic = _read_exact(stream, HEADER_MAGIC_BYTES_LEN)
    try:
        version = from_magic_bytes(magic)
    except ValueError as exc:
        raise ExchangeError(str(exc)) from exc

    exchange = Exchange(version, request_method="", response_status=0)
    if version is not Version.V1B1:
        url_length = int.from_bytes(_read_exact(stream, 2), "big")
        exchange.request_uri = validate_fallback_url(_read_exact(stream, url_length))

    sig_length = decode_3bytes_uint(_read_exact(stream, 3))
    header_length = decode_3bytes_uint(_read_exact(stream, 3))
    exchange.signature_header_value = _to_str(_read_exact(stream, sig_length))
    exchange._decode_exchange_headers(_read_exact(stream, header_length))
    exchange.payload = stream.read()
    return exchange