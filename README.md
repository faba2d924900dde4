# sxgkit

`sxgkit` reads, writes and inspects signed HTTP exchanges. These use the
`application/signed-exchange` format, and the package handles versions `1b1`,
`1b2` and `1b3`.

## Modules

- `sxgkit.bigendian`: fixed-width big-endian integers.
  - `encode_bytes_uint(n, size)` encodes an integer.
  - `decode_3bytes_uint(data)` decodes three bytes.
- `sxgkit.mice`: Merkle Integrity Content Encoding.
  - `Encoding.DRAFT02` is `mi-sha256-draft2`.
  - `Encoding.DRAFT03` is `mi-sha256-03`.
  - `Encoding.encode` encodes a payload.
  - `Encoding.new_decoder` gives back a `MiceDecoder`. The decoder checks every
    record as it reads it.
- `sxgkit.version`: the `Version` enum, with `V1B1`, `V1B2` and `V1B3`.
  - Each version knows its magic bytes, its MIME type and its MICE encoding.
  - `parse(text)` looks a version up by its name.
  - `from_magic_bytes(data)` looks a version up by its magic bytes.
- `sxgkit.headers`: header storage and header rules.
  - `Headers` is a case-insensitive multimap of header fields.
  - `is_stateful_request_header`, `is_uncached_header` and
    `verify_uncached_header` apply the header rules for signed exchanges.
- `sxgkit.structuredheader`: structured headers, following
  draft-ietf-httpbis-header-structure-09.
  - Parsing: `parse_list_of_lists` and `parse_parameterised_list`.
  - Serializing: `serialize_item`, `serialize_list_of_lists`,
    `serialize_parameterised_list` and `ParameterisedIdentifier.serialize`.
- `sxgkit.exchange`: the exchange itself.
  - `Exchange` holds one exchange. Its methods MICE-encode the payload, write
    the canonical CBOR headers, write the binary format and compute the header
    integrity string (`sha256-…`). They can also print a readable summary.
  - `read_exchange` parses the binary format.
- `sxgkit.signer`: the signature's inputs and output.
  - `serialize_signed_message` builds the exact bytes that a signature covers.
  - `signature_header_value` formats a `Signature` header value around a
    signature that you have already computed.
  - `context_string` and `calculate_cert_sha256` are helpers used in signing.
- `sxgkit.verifier`: single verification steps.
  - `extract_signature_fields` reads the fields of one signature.
  - `verify_timestamps` checks the validity window, which may be at most
    7 days.
  - `is_cacheable` checks shared-cache storage rules for `1b3`.
  - `verify_payload` checks the MICE integrity of the payload and returns the
    decoded payload.
  - `is_same_origin` compares two URLs.
  - `verify_headers` rejects stateful request headers and uncached response
    headers.

## Installation

```
pip install sxgkit
```

## Usage

Build an exchange, encode its payload with MICE, write it out and read it back:

```python
import io

from sxgkit.exchange import Exchange, read_exchange
from sxgkit.headers import Headers
from sxgkit.version import Version

response_headers = Headers()
response_headers.add("Content-Type", "text/html; charset=utf-8")

exchange = Exchange(
    version=Version.V1B3,
    request_uri="https://example.com/",
    response_status=200,
    response_headers=response_headers,
    payload=b"<h1>hello</h1>",
)
exchange.mi_encode_payload(16)

buf = io.BytesIO()
exchange.write(buf)

buf.seek(0)
parsed = read_exchange(buf)
print(parsed.compute_header_integrity())
```

Encode a payload with MICE, then decode it and check its integrity:

```python
import io

from sxgkit.mice import Encoding

enc = Encoding.DRAFT03
encoded = enc.encode(b"When I grow up, I want to be a watermelon", 16)
print(encoded.digest)  # mi-sha256-03=IVa9shfs0nyKEhHqtB3WVNANJ2Njm5KjQLjRtnbkYJ4=

decoder = enc.new_decoder(io.BytesIO(encoded.payload), encoded.digest, 16384)
print(decoder.read_all())
```

`Encoding.encode` returns an `EncodedPayload`, which holds the encoded bytes
and the digest header value. If a record fails its integrity check,
`MiceDecoder.read_all()` raises `ValidationFailure`.

Parse and serialize structured headers:

```python
from sxgkit.structuredheader import parse_parameterised_list, serialize_parameterised_list

items = parse_parameterised_list("item1;n=123, item2")
print(serialize_parameterised_list(items))  # item1;n=123, item2
```

## What it does not do

- **No command-line tools.** The package is a library only.
- **No cryptographic signing.** The package does not sign with private keys.
  `signer.signature_header_value` only formats a signature that was made
  elsewhere.
- **No certificate handling.** The package does not fetch certificates, parse
  certificate chains or fetch OCSP responses.
- **No complete verification.** The package does not check a signature
  cryptographically. `sxgkit.verifier` provides the separate checks, and you
  combine them yourself.

## Errors

Every failure raises an exception:

| Exception | Raised for |
| --- | --- |
| `OutOfRangeError` | integer encoding |
| `MiceError` and its subclass `ValidationFailure` | content encoding |
| `StructuredHeaderError` | header syntax |
| `ExchangeError` | the exchange format |
| `UncachedHeaderError` and `VerificationError` | verification |

Each of these is a `ValueError`.

## Running the tests

```
pip install -e .[test]
pytest
```