"""Read, write and check signed HTTP exchanges and their building blocks."""

__version__ = "0.1.0"

__all__ = [
    "bigendian",
    "exchange",
    "headers",
    "mice",
    "signer",
    "structuredheader",
    "verifier",
    "version",
]