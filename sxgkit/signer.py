"""Construction of the signed message and the Signature header of an exchange."""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Optional, Sequence, Union

import cbor2

from .bigendian import encode_bytes_uint
from .exchange import Exchange
from .structuredheader import ParameterisedIdentifier, Token
from .version import Version

_PADDING = b"\x20" * 64
_ALLOWED_CERT_URL_SCHEMES = ("https", "data")

Timestamp = Union[int, datetime]


def context_string(version: Union[Version, str]) -> str:
    """The context string mixed into the signed message for ``version``."""
    return f"HTTP Exchange 1 {Version(version).value[1:]}"


def calculate_cert_sha256(certs: Sequence[bytes]) -> Optional[bytes]:
    """SHA-256 of the first DER-encoded certificate, or None if there is none."""
    if not certs:
        return None
    return hashlib.sha256(bytes(certs[0])).digest()


def _unix(value: Timestamp) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def _length_prefixed(data: bytes) -> bytes:
    return encode_bytes_uint(len(data), 8) + data


def serialize_signed_message(
    exchange: Exchange,
    cert_sha256: Optional[bytes],
    validity_url: str,
    date: Timestamp,
    expires: Timestamp,
) -> bytes:
    """Build the byte string that a signature of ``exchange`` covers."""
    date = _unix(date)
    expires = _unix(expires)
    version = exchange.version
    prefix = _PADDING + context_string(version).encode("ascii") + b"\x00"
    headers = exchange.encode_exchange_headers()

    if version is Version.V1B1:
        entries: dict = {}
        if cert_sha256 is not None:
            entries["cert-sha256"] = bytes(cert_sha256)
        entries["validity-url"] = validity_url.encode("utf-8")
        entries["date"] = date
        entries["expires"] = expires
        entries["headers"] = cbor2.loads(headers)
        return prefix + cbor2.dumps(entries, canonical=True)

    parts = [prefix]
    if cert_sha256 is not None:
        parts.append(b"\x20" + bytes(cert_sha256))
    parts += [
        _length_prefixed(validity_url.encode("utf-8")),
        encode_bytes_uint(date, 8),
        encode_bytes_uint(expires, 8),
        _length_prefixed(exchange.request_uri.encode("utf-8")),
        _length_prefixed(headers),
    ]
    return b"".join(parts)


def signature_header_value(
    exchange: Exchange,
    sig: bytes,
    cert_url: str,
    validity_url: str,
    cert_sha256: Optional[bytes],
    date: Timestamp,
    expires: Timestamp,
) -> str:
    """Format the Signature header value carrying ``sig`` for ``exchange``."""
    scheme, sep, _ = cert_url.partition(":")
    scheme = scheme.lower() if sep else ""
    if scheme not in _ALLOWED_CERT_URL_SCHEMES:
        raise ValueError(
            f"signedexchange: cert-url with disallowed scheme {scheme!r}. "
            'cert-url must have a scheme of "https" or "data".'
        )
    identifier = ParameterisedIdentifier(
        Token("label"),
        {
            "sig": bytes(sig),
            "validity-url": validity_url,
            "integrity": exchange.version.mice_encoding().integrity_identifier(),
            "cert-url": cert_url,
            "cert-sha256": bytes(cert_sha256) if cert_sha256 is not None else b"",
            "date": _unix(date),
            "expires": _unix(expires),
        },
    )
    return identifier.serialize()