"""Signed exchange format versions."""

from __future__ import annotations

from enum import Enum

from .mice import Encoding

HEADER_MAGIC_BYTES_LEN = 8


class Version(str, Enum):
    """A version of the application/signed-exchange format."""

    V1B1 = "1b1"
    V1B2 = "1b2"
    V1B3 = "1b3"

    def __str__(self) -> str:
        return self.value

    def header_magic_bytes(self) -> bytes:
        """The 8-byte file signature for this version."""
        return f"sxg1-{self.value[1:]}\x00".encode("ascii")

    def mime_type(self) -> str:
        """The MIME type naming this version."""
        return f"application/signed-exchange;v={self.value[1:]}"

    def mice_encoding(self) -> Encoding:
        """The payload integrity encoding used by this version."""
        if self is Version.V1B1:
            return Encoding.DRAFT02
        return Encoding.DRAFT03


ALL_VERSIONS = tuple(Version)


def parse(text: str) -> Version:
    """Look up a version by its name, such as ``"1b3"``."""
    try:
        return Version(text)
    except ValueError:
        raise ValueError(f"failed to parse version {text!r}") from None


def from_magic_bytes(data: bytes) -> Version:
    """Identify a version from its file signature."""
    data = bytes(data)
    for version in Version:
        if data == version.header_magic_bytes():
            return version
    raise ValueError(f"signedexchange: unknown magic bytes: {list(data)}")