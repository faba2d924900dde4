"""Structured Headers for HTTP (draft-ietf-httpbis-header-structure-09).

Items are represented as Python values: ``int`` for Numbers, ``str`` for
Strings, :class:`Token` for Tokens and ``bytes`` for Byte Sequences.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_RAW_STD_ALPHABET = re.compile(r"[A-Za-z0-9+/]*")


class StructuredHeaderError(ValueError):
    """Raised when a structured header cannot be parsed or serialized."""


class Token(str):
    """A Structured Headers Token."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Token({str.__repr__(self)})"


Item = Union[int, str, Token, bytes]
Parameters = Dict[str, Optional[Item]]


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


def _is_lcalpha(c: str) -> bool:
    return "a" <= c <= "z"


def _is_alpha(c: str) -> bool:
    return "a" <= c <= "z" or "A" <= c <= "Z"


def _is_key_char(c: str) -> bool:
    return _is_lcalpha(c) or _is_digit(c) or c in "_-"


def _is_token_char(c: str) -> bool:
    return _is_alpha(c) or _is_digit(c) or c in "_-.:%*/"


def _is_valid_key(s: str) -> bool:
    return bool(s) and _is_lcalpha(s[0]) and all(_is_key_char(c) for c in s)


def _is_valid_token(s: str) -> bool:
    return bool(s) and _is_alpha(s[0]) and all(_is_token_char(c) for c in s)


def _decode_base64(s: str) -> bytes:
    s = s.replace("\r", "").replace("\n", "")
    if len(s) % 4 == 0:
        return base64.b64decode(s, validate=True)
    # Unpadded encoding is allowed.
    if not _RAW_STD_ALPHABET.fullmatch(s) or len(s) % 4 == 1:
        raise ValueError("illegal base64 data")
    return base64.b64decode(s + "=" * (-len(s) % 4), validate=True)


@dataclass
class ParameterisedIdentifier:
    """A labelled identifier with an ordered set of parameters."""

    label: Token
    params: Parameters = field(default_factory=dict)

    def serialize(self) -> str:
        """Serialize with parameters in sorted key order."""
        if not _is_valid_token(str(self.label)):
            raise StructuredHeaderError(
                f"structuredheader: label {str(self.label)!r} is not a valid token"
            )
        parts = [str(self.label)]
        for key in sorted(self.params):
            if not _is_valid_key(key):
                raise StructuredHeaderError(f"structuredheader: invalid key {key!r}")
            value = self.params[key]
            if value is None:
                parts.append(f";{key}")
            else:
                parts.append(f";{key}={serialize_item(value)}")
        return "".join(parts)

    def __str__(self) -> str:
        return self.serialize()


class Parser:
    """Recursive-descent parser over the remaining input text."""

    def __init__(self, text: str) -> None:
        self.remaining = text

    def _discard_leading_ows(self) -> None:
        self.remaining = self.remaining.lstrip(" \t")

    def _is_empty(self) -> bool:
        return not self.remaining

    def _get_char(self) -> str:
        c, self.remaining = self.remaining[0], self.remaining[1:]
        return c

    def _get_string(self, n: int) -> str:
        s, self.remaining = self.remaining[:n], self.remaining[n:]
        return s

    def _consume_char(self, c: str) -> bool:
        if self.remaining.startswith(c):
            self.remaining = self.remaining[1:]
            return True
        return False

    def _span(self, start: int, predicate) -> int:
        i = start
        while i < len(self.remaining) and predicate(self.remaining[i]):
            i += 1
        return i

    def parse_key(self) -> str:
        """Parse a Key."""
        if self._is_empty():
            raise StructuredHeaderError("structuredheader: token expected, got EOS")
        if not _is_lcalpha(self.remaining[0]):
            raise StructuredHeaderError(
                f"structuredheader: token expected, got '{self.remaining[0]}'"
            )
        return self._get_string(self._span(0, _is_key_char))

    def parse_list_of_lists(self) -> List[List[Item]]:
        """Parse a List of Lists."""
        top: List[List[Item]] = []
        inner: List[Item] = []
        while not self._is_empty():
            inner.append(self.parse_item())
            self._discard_leading_ows()
            if self._is_empty():
                top.append(inner)
                return top
            if self._consume_char(","):
                top.append(inner)
                inner = []
            elif not self._consume_char(";"):
                raise StructuredHeaderError(
                    f"structuredheader: ',' or ';' expected, got '{self.remaining[0]}'"
                )
            self._discard_leading_ows()
        raise StructuredHeaderError(
            "structuredheader: unexpected end of input; List of Lists expected"
        )

    def parse_parameterised_list(self) -> List[ParameterisedIdentifier]:
        """Parse a Parameterised List."""
        items: List[ParameterisedIdentifier] = []
        while not self._is_empty():
            items.append(self.parse_parameterised_identifier())
            self._discard_leading_ows()
            if self._is_empty():
                return items
            if not self._consume_char(","):
                raise StructuredHeaderError(
                    f"structuredheader: ',' expected, got '{self.remaining[0]}'"
                )
            self._discard_leading_ows()
        raise StructuredHeaderError(
            "structuredheader: unexpected end of input; "
            "Parameterised Identifier expected"
        )

    def parse_parameterised_identifier(self) -> ParameterisedIdentifier:
        """Parse a Parameterised Identifier."""
        label = self.parse_token()
        params: Parameters = {}
        while True:
            self._discard_leading_ows()
            if not self._consume_char(";"):
                break
            self._discard_leading_ows()
            name = self.parse_key()
            if name in params:
                raise StructuredHeaderError(
                    f"structuredheader: duplicated parameter '{name}'"
                )
            value: Optional[Item] = None
            if self._consume_char("="):
                value = self.parse_item()
            params[name] = value
        return ParameterisedIdentifier(label, params)

    def parse_item(self) -> Item:
        """Parse an Item of any supported type."""
        if self._is_empty():
            raise StructuredHeaderError("structuredheader: item expected, got EOS")
        c = self.remaining[0]
        if c == "-" or _is_digit(c):
            return self.parse_number()
        if c == '"':
            return self.parse_string()
        if c == "*":
            return self.parse_byte_sequence()
        if _is_alpha(c):
            return self.parse_token()
        raise StructuredHeaderError(f"structuredheader: item expected, got '{c}'")

    def parse_number(self) -> int:
        """Parse an integer Number within the signed 64-bit range."""
        if self._is_empty():
            raise StructuredHeaderError("structuredheader: number expected, got EOS")
        first = self.remaining[0]
        if first != "-" and not _is_digit(first):
            raise StructuredHeaderError(
                f"structuredheader: number expected, got '{first}'"
            )
        s = self._get_string(self._span(1, _is_digit))
        digits = s[1:] if s.startswith("-") else s
        if not digits:
            raise StructuredHeaderError(
                f"structuredheader: couldn't parse {s!r} as number"
            )
        n = int(s)
        if not _INT64_MIN <= n <= _INT64_MAX:
            raise StructuredHeaderError(
                f"structuredheader: couldn't parse {s!r} as number: value out of range"
            )
        return n

    def parse_string(self) -> str:
        """Parse a quoted String."""
        if self._is_empty():
            raise StructuredHeaderError("structuredheader: string expected, got EOS")
        if not self._consume_char('"'):
            raise StructuredHeaderError(
                f"structuredheader: '\"' expected, got '{self.remaining[0]}'"
            )
        out: List[str] = []
        while not self._is_empty():
            c = self._get_char()
            if c == "\\":
                if self._is_empty():
                    break
                c = self._get_char()
                if c not in '"\\':
                    raise StructuredHeaderError(
                        f"structuredheader: invalid escape \\{c}"
                    )
                out.append(c)
            elif c == '"':
                return "".join(out)
            elif c < " " or c > "~":
                raise StructuredHeaderError(
                    f"structuredheader: invalid character \\x{ord(c):02x}"
                )
            else:
                out.append(c)
        raise StructuredHeaderError("structuredheader: missing closing '\"'")

    def parse_token(self) -> Token:
        """Parse a Token."""
        if self._is_empty():
            raise StructuredHeaderError("structuredheader: token expected, got EOS")
        if not _is_alpha(self.remaining[0]):
            raise StructuredHeaderError(
                f"structuredheader: token expected, got '{self.remaining[0]}'"
            )
        return Token(self._get_string(self._span(0, _is_token_char)))

    def parse_byte_sequence(self) -> bytes:
        """Parse a base64 Byte Sequence delimited by asterisks."""
        if self._is_empty():
            raise StructuredHeaderError(
                "structuredheader: byte sequence expected, got EOS"
            )
        if not self._consume_char("*"):
            raise StructuredHeaderError(
                f"structuredheader: '*' expected, got '{self.remaining[0]}'"
            )
        end = self.remaining.find("*")
        if end < 0:
            raise StructuredHeaderError("structuredheader: missing closing '*'")
        s = self._get_string(end)
        try:
            data = _decode_base64(s)
        except (binascii.Error, ValueError) as exc:
            raise StructuredHeaderError(
                f"structuredheader: couldn't decode base64 {s!r}: {exc}"
            ) from exc
        self._consume_char("*")
        return data


def _parse_whole(text: str, method):
    parser = Parser(text)
    parser._discard_leading_ows()
    result = method(parser)
    parser._discard_leading_ows()
    if not parser._is_empty():
        raise StructuredHeaderError("structuredheader: extraneous data at the end")
    return result


def parse_list_of_lists(text: str) -> List[List[Item]]:
    """Parse a complete header value as a List of Lists."""
    return _parse_whole(text, Parser.parse_list_of_lists)


def parse_parameterised_list(text: str) -> List[ParameterisedIdentifier]:
    """Parse a complete header value as a Parameterised List."""
    return _parse_whole(text, Parser.parse_parameterised_list)


def serialize_item(item: Item) -> str:
    """Serialize a single Item."""
    if isinstance(item, bool):
        raise StructuredHeaderError(f"structuredheader: couldn't serialize {item!r} as item")
    if isinstance(item, Token):
        if not _is_valid_token(str(item)):
            raise StructuredHeaderError(
                f"structuredheader: couldn't serialize {str(item)!r} as token"
            )
        return str(item)
    if isinstance(item, int):
        if not _INT64_MIN <= item <= _INT64_MAX:
            raise StructuredHeaderError(
                f"structuredheader: couldn't serialize {item} as number"
            )
        return str(item)
    if isinstance(item, str):
        if any(c < " " or c > "~" for c in item):
            raise StructuredHeaderError(
                f"structuredheader: couldn't serialize {item!r} as string"
            )
        return '"' + item.replace("\\", "\\\\").replace('"', '\\"') + '"'
    if isinstance(item, (bytes, bytearray, memoryview)):
        return "*" + base64.b64encode(bytes(item)).decode("ascii") + "*"
    raise StructuredHeaderError(f"structuredheader: couldn't serialize {item!r} as item")


def serialize_list_of_lists(lists: Sequence[Sequence[Item]]) -> str:
    """Serialize a List of Lists."""
    if not lists:
        raise StructuredHeaderError("structuredheader: empty List of Lists")
    outer = []
    for inner in lists:
        if not inner:
            raise StructuredHeaderError(
                "structuredheader: empty inner list in List of Lists"
            )
        outer.append("; ".join(serialize_item(item) for item in inner))
    return ", ".join(outer)


def serialize_parameterised_list(items: Iterable[ParameterisedIdentifier]) -> str:
    """Serialize a Parameterised List."""
    parts = [item.serialize() for item in items]
    if not parts:
        raise StructuredHeaderError("structuredheader: empty Parameterised List")
    return ", ".join(parts)