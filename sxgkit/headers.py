"""HTTP header multimap and the header rules for signed exchanges."""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789"
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
)

STATEFUL_REQUEST_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "cookie2",
        "proxy-authorization",
        "sec-websocket-key",
    }
)

UNCACHED_HEADERS = frozenset(
    {
        # Hop-by-hop header fields.
        "connection",
        "keep-alive",
        "proxy-connection",
        "trailer",
        "transfer-encoding",
        "upgrade",
        # Stateful header fields.
        "authentication-control",
        "authentication-info",
        "clear-site-data",
        "optional-www-authenticate",
        "proxy-authenticate",
        "proxy-authentication-info",
        "public-key-pins",
        "sec-websocket-accept",
        "set-cookie",
        "set-cookie2",
        "setprofile",
        "strict-transport-security",
        "www-authenticate",
    }
)


def _canonical_key(name: str) -> str:
    if not name or any(c not in _TOKEN_CHARS for c in name):
        return name
    out = []
    upper = True
    for c in name:
        out.append(c.upper() if upper else c.lower())
        upper = c == "-"
    return "".join(out)


class Headers:
    """An ordered, case-insensitive multimap of HTTP header fields."""

    def __init__(self, initial: Mapping[str, str | Iterable[str]] | None = None) -> None:
        self._fields: dict[str, list[str]] = {}
        for name, value in (initial or {}).items():
            values = [value] if isinstance(value, str) else list(value)
            for v in values:
                self.add(name, v)

    def add(self, name: str, value: str) -> None:
        """Append a value to the field ``name``."""
        self._fields.setdefault(_canonical_key(name), []).append(value)

    def get(self, name: str, default: str = "") -> str:
        """Return the first value of ``name``, or ``default``."""
        values = self._fields.get(_canonical_key(name))
        return values[0] if values else default

    def get_all(self, name: str) -> list[str]:
        """Return every value of ``name`` in order."""
        return list(self._fields.get(_canonical_key(name), ()))

    def items(self) -> Iterator[tuple[str, list[str]]]:
        """Yield each field name with its list of values."""
        for name, values in self._fields.items():
            yield name, list(values)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._fields))

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _canonical_key(name) in self._fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"Headers({self._fields!r})"


class UncachedHeaderError(ValueError):
    """Raised when headers contain a field that a signed exchange cannot hold."""


def is_stateful_request_header(name: str) -> bool:
    """Whether ``name`` is a stateful request header (versions 1b1 and 1b2)."""
    return name.lower() in STATEFUL_REQUEST_HEADERS


def is_uncached_header(name: str) -> bool:
    """Whether ``name`` is a hop-by-hop or stateful response header."""
    return name.lower() in UNCACHED_HEADERS


def verify_uncached_header(headers: Iterable[str]) -> None:
    """Raise UncachedHeaderError if any field name is an uncached header."""
    for name in headers:
        if is_uncached_header(name):
            raise UncachedHeaderError(
                f'signedexchange: uncached header "{name}" can\'t be captured '
                "inside a signed exchange."
            )