"""Checks that make up the validation of a signed exchange's signatures."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Dict, Optional, Union
from urllib.parse import SplitResult, urlsplit

from .exchange import Exchange
from .headers import is_stateful_request_header, verify_uncached_header
from .mice import MiceError
from .structuredheader import ParameterisedIdentifier, Token
from .version import Version

# Records larger than this are rejected when checking payload integrity.
MAX_MI_RECORD_SIZE = 16384

# Longest allowed gap between a signature's date and its expiry, in seconds.
MAX_SIGNATURE_VALIDITY = 7 * 24 * 60 * 60

# Status codes cacheable by default (Section 6.1 of RFC 7231).
CACHEABLE_STATUS_CODES = frozenset(
    {200, 203, 204, 206, 300, 301, 404, 405, 410, 414, 501}
)

_KNOWN_STATUS_CODES = frozenset(status.value for status in HTTPStatus)

_log = logging.getLogger(__name__)

Instant = Union[int, float, datetime]
UrlLike = Union[str, SplitResult]


class VerificationError(ValueError):
    """Raised when a signature or its exchange fails a verification step."""


@dataclass
class Signature:
    """The fields of one signature in a Signature header."""

    label: Token
    sig: bytes
    integrity: str
    cert_url: str
    cert_sha256: bytes
    validity_url: str
    date: int
    expires: int


def _param(params: Dict[str, object], name: str, kind: type) -> object:
    value = params.get(name)
    valid = isinstance(value, kind)
    if kind is str and isinstance(value, Token):
        valid = False
    if kind is int and isinstance(value, bool):
        valid = False
    if not valid:
        raise VerificationError(f"verify: no valid '{name}' value")
    return value


def extract_signature_fields(identifier: ParameterisedIdentifier) -> Signature:
    """Read the signature fields out of a parsed Signature header entry."""
    params = identifier.params
    return Signature(
        label=identifier.label,
        sig=_param(params, "sig", bytes),
        integrity=_param(params, "integrity", str),
        cert_url=_param(params, "cert-url", str),
        cert_sha256=_param(params, "cert-sha256", bytes),
        validity_url=_param(params, "validity-url", str),
        date=_param(params, "date", int),
        expires=_param(params, "expires", int),
    )


def parse_cache_control_directives(cache_control: str) -> Dict[str, str]:
    """Split a Cache-Control value into lower-cased directives and arguments."""
    directives: Dict[str, str] = {}
    for part in cache_control.split(","):
        part = part.strip()
        name, sep, argument = part.partition("=")
        directives[name.lower()] = argument if sep else ""
    return directives


def is_cacheable(exchange: Exchange, logger: Optional[logging.Logger] = None) -> bool:
    """Whether a shared cache may store the exchange's response (RFC 7234, section 3)."""
    if exchange.version in (Version.V1B1, Version.V1B2):
        raise ValueError("is_cacheable is only applicable to version b3 or later")
    log = logger or _log

    status = exchange.response_status
    if status not in _KNOWN_STATUS_CODES:
        log.info("Unknown response status %d", status)
        return False

    directives = parse_cache_control_directives(
        exchange.response_headers.get("Cache-Control")
    )
    if "no-store" in directives:
        log.info('Response has the "no-store" cache directive')
        return False
    if "private" in directives:
        log.info('Response has the "private" response directive')
        return False

    if exchange.response_headers.get("Expires") != "":
        return True
    if "max-age" in directives or "s-maxage" in directives:
        return True
    if status in CACHEABLE_STATUS_CODES:
        return True
    if "public" in directives:
        return True

    log.info("Response is not cacheable by a shared cache")
    return False


def _seconds(value: Instant) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def _fmt(seconds: int) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def verify_timestamps(signature: Signature, verification_time: Instant) -> None:
    """Check the signature's validity window against ``verification_time``."""
    if signature.expires - signature.date > MAX_SIGNATURE_VALIDITY:
        raise VerificationError(
            f"verify: expires ({_fmt(signature.expires)}) is more than 7 days "
            f"(604800 seconds) after date ({_fmt(signature.date)})"
        )
    now = _seconds(verification_time)
    if now < signature.date:
        raise VerificationError(
            f"verify: signature is not yet valid. date={signature.date} "
            f"({_fmt(signature.date)})"
        )
    if now > signature.expires:
        raise VerificationError(
            f"verify: signature is expired. expires={signature.expires} "
            f"({_fmt(signature.expires)})"
        )


def verify_payload(exchange: Exchange, signature: Signature) -> bytes:
    """Check the payload's integrity proof and return the decoded payload."""
    enc = exchange.version.mice_encoding()
    if signature.integrity != enc.integrity_identifier():
        raise VerificationError(
            f"verify: unsupported integrity scheme {signature.integrity!r}"
        )
    digest = exchange.response_headers.get(enc.digest_header_name())
    if digest == "":
        raise VerificationError(
            f"verify: response header {enc.digest_header_name()!r} not present"
        )
    try:
        decoder = enc.new_decoder(
            io.BytesIO(exchange.payload), digest, MAX_MI_RECORD_SIZE
        )
        return decoder.read_all()
    except MiceError as exc:
        raise VerificationError(str(exc)) from exc


def _origin(url: UrlLike) -> tuple:
    parts = urlsplit(url) if isinstance(url, str) else url
    host = parts.netloc.rpartition("@")[2]
    return parts.scheme, host


def is_same_origin(url1: UrlLike, url2: UrlLike) -> bool:
    """Whether two URLs share scheme and host (including port)."""
    return _origin(url1) == _origin(url2)


def verify_headers(exchange: Exchange) -> None:
    """Reject stateful request headers and uncached response headers."""
    for name in exchange.request_headers:
        if is_stateful_request_header(name):
            raise VerificationError(
                f'exchange has stateful request header "{name}"'
            )
    verify_uncached_header(exchange.response_headers)