import hashlib
import base64
import io

import cbor2
import pytest

from sxgkit.bigendian import encode_bytes_uint
from sxgkit.exchange import (
    Exchange,
    ExchangeError,
    normalize_header_values,
    read_exchange,
    validate_fallback_url,
)
from sxgkit.headers import Headers
from sxgkit.mice import Encoding
from sxgkit.version import Version

URL = "https://example.com/index.html"


def make_exchange(version, payload=b"<p>hello</p>"):
    response_headers = Headers({"Content-Type": "text/html"})
    request_headers = Headers({"Accept": "*/*"})
    return Exchange(
        version,
        request_uri=URL,
        request_method="GET",
        request_headers=request_headers,
        response_status=200,
        response_headers=response_headers,
        payload=payload,
        signature_header_value="label;sig=*AAAA*",
    )


def serialize(exchange):
    buf = io.BytesIO()
    exchange.write(buf)
    return buf.getvalue()


def raw_file(magic, url, header_obj, signature=b"", payload=b""):
    headers = cbor2.dumps(header_obj, canonical=True)
    parts = [magic]
    if url is not None:
        parts += [encode_bytes_uint(len(url), 2), url]
    parts += [
        encode_bytes_uint(len(signature), 3),
        encode_bytes_uint(len(headers), 3),
        signature,
        headers,
        payload,
    ]
    return b"".join(parts)


@pytest.mark.parametrize("version", list(Version))
def test_round_trip(version):
    original = make_exchange(version)
    decoded = read_exchange(io.BytesIO(serialize(original)))
    assert decoded.version is version
    assert decoded.request_uri == URL
    assert decoded.request_method == "GET"
    assert decoded.response_status == 200
    assert decoded.response_headers.get("Content-Type") == "text/html"
    assert decoded.payload == original.payload
    assert decoded.signature_header_value == original.signature_header_value


@pytest.mark.parametrize("version", [Version.V1B1, Version.V1B2])
def test_round_trip_keeps_request_headers(version):
    decoded = read_exchange(io.BytesIO(serialize(make_exchange(version))))
    assert decoded.request_headers.get("Accept") == "*/*"


def test_b3_has_no_request_headers():
    decoded = read_exchange(io.BytesIO(serialize(make_exchange(Version.V1B3))))
    assert len(decoded.request_headers) == 0
    assert decoded.request_method == "GET"


def test_b3_layout():
    exchange = make_exchange(Version.V1B3)
    data = serialize(exchange)
    assert data.startswith(b"sxg1-b3\x00")
    url = URL.encode()
    assert data[8:10] == len(url).to_bytes(2, "big")
    assert data[10:10 + len(url)] == url
    assert data.endswith(exchange.payload)


def test_b1_layout_has_no_fallback_url():
    exchange = make_exchange(Version.V1B1)
    data = serialize(exchange)
    sig = exchange.signature_header_value.encode()
    assert data[:8] == b"sxg1-b1\x00"
    assert data[8:11] == len(sig).to_bytes(3, "big")
    assert data[14:14 + len(sig)] == sig


def test_b3_minimal_header_bytes():
    exchange = Exchange(Version.V1B3, request_uri=URL, response_status=200)
    assert exchange.encode_exchange_headers() == bytes.fromhex("a1473a7374617475734332303030"[:-2])


def test_header_map_keys_are_canonically_ordered():
    exchange = make_exchange(Version.V1B3)
    exchange.response_headers.add("X-Long-Header-Name", "v")
    decoded = cbor2.loads(exchange.encode_exchange_headers())
    keys = list(decoded)
    assert keys == sorted(keys, key=lambda k: (len(k), k))
    assert decoded[b"content-type"] == b"text/html"


def test_request_map_contents():
    decoded = cbor2.loads(make_exchange(Version.V1B1).encode_exchange_headers())
    assert len(decoded) == 2
    assert decoded[0][b":method"] == b"GET"
    assert decoded[0][b":url"] == URL.encode()
    decoded_b2 = cbor2.loads(make_exchange(Version.V1B2).encode_exchange_headers())
    assert b":url" not in decoded_b2[0]


def test_repeated_header_values_are_joined():
    exchange = make_exchange(Version.V1B3)
    exchange.response_headers.add("Vary", "Accept")
    exchange.response_headers.add("Vary", "Accept-Encoding")
    decoded = cbor2.loads(exchange.encode_exchange_headers())
    assert decoded[b"vary"] == b"Accept,Accept-Encoding"


def test_normalize_header_values():
    assert normalize_header_values(["a", "b", "c"]) == "a,b,c"
    assert normalize_header_values(["only"]) == "only"


def test_dump_exchange_headers_matches_encoding():
    exchange = make_exchange(Version.V1B2)
    buf = io.BytesIO()
    exchange.dump_exchange_headers(buf)
    assert buf.getvalue() == exchange.encode_exchange_headers()


def test_header_integrity():
    exchange = make_exchange(Version.V1B3)
    integrity = exchange.compute_header_integrity()
    assert integrity.startswith("sha256-")
    digest = base64.b64decode(integrity[len("sha256-"):])
    assert digest == hashlib.sha256(exchange.encode_exchange_headers()).digest()
    out = io.StringIO()
    exchange.pretty_print_header_integrity(out)
    assert out.getvalue() == f"header integrity: {integrity}\n"


@pytest.mark.parametrize(
    "version, encoding",
    [(Version.V1B1, Encoding.DRAFT02), (Version.V1B3, Encoding.DRAFT03)],
)
def test_mi_encode_payload_round_trip(version, encoding):
    body = b"When I grow up, I want to be a watermelon"
    exchange = make_exchange(version, payload=body)
    exchange.mi_encode_payload(16)
    assert exchange.response_headers.get("Content-Encoding") == encoding.value
    digest = exchange.response_headers.get(encoding.digest_header_name())
    decoder = encoding.new_decoder(io.BytesIO(exchange.payload), digest, 16384)
    assert decoder.read_all() == body


def test_mi_encode_payload_rejects_existing_digest():
    exchange = make_exchange(Version.V1B3)
    exchange.response_headers.add("Digest", "mi-sha256-03=x")
    with pytest.raises(ExchangeError):
        exchange.mi_encode_payload(16)


def test_write_rejects_long_signature():
    exchange = make_exchange(Version.V1B3)
    exchange.signature_header_value = "a" * (16 * 1024 + 1)
    with pytest.raises(ExchangeError):
        exchange.write(io.BytesIO())
    exchange.signature_header_value = "a" * (16 * 1024)
    out = io.BytesIO()
    exchange.write(out)
    decoded = read_exchange(io.BytesIO(out.getvalue()))
    assert decoded.signature_header_value == "a" * (16 * 1024)


def test_write_accepts_signature_at_limit():
    exchange = make_exchange(Version.V1B3)
    exchange.signature_header_value = "a" * (16 * 1024)
    decoded = read_exchange(io.BytesIO(serialize(exchange)))
    assert decoded.signature_header_value == exchange.signature_header_value


def test_read_rejects_unknown_magic():
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(b"sxg1-b9\x00" + b"\x00" * 16))


def test_read_rejects_truncated_input():
    data = serialize(make_exchange(Version.V1B3))
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(data[:20]))


def test_read_rejects_non_https_fallback():
    data = raw_file(b"sxg1-b3\x00", b"http://example.com/", {b":status": b"200"})
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(data))


def test_read_rejects_uppercase_response_key():
    data = raw_file(
        b"sxg1-b3\x00", URL.encode(), {b":status": b"200", b"Content-Type": b"x"}
    )
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(data))


def test_read_rejects_bad_status():
    data = raw_file(b"sxg1-b3\x00", URL.encode(), {b":status": b"ok"})
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(data))


def test_read_b2_rejects_url_key():
    header = [{b":method": b"GET", b":url": URL.encode()}, {b":status": b"200"}]
    data = raw_file(b"sxg1-b2\x00", URL.encode(), header)
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(data))


def test_read_b2_rejects_wrong_array_length():
    header = [{b":method": b"GET"}, {b":status": b"200"}, {}]
    data = raw_file(b"sxg1-b2\x00", URL.encode(), header)
    with pytest.raises(ExchangeError):
        read_exchange(io.BytesIO(data))


def test_read_b1_takes_url_from_request_map():
    header = [{b":method": b"GET", b":url": URL.encode()}, {b":status": b"404"}]
    decoded = read_exchange(io.BytesIO(raw_file(b"sxg1-b1\x00", None, header, payload=b"x")))
    assert decoded.request_uri == URL
    assert decoded.response_status == 404
    assert decoded.payload == b"x"


def test_validate_fallback_url():
    assert validate_fallback_url(URL.encode()) == URL
    with pytest.raises(ExchangeError):
        validate_fallback_url(b"http://example.com/")
    with pytest.raises(ExchangeError):
        validate_fallback_url(b"/relative/path")
    with pytest.raises(ExchangeError):
        validate_fallback_url(b"https://example.com/%zz")


def test_pretty_print_headers():
    exchange = make_exchange(Version.V1B3)
    out = io.StringIO()
    exchange.pretty_print_headers(out)
    lines = out.getvalue().splitlines()
    assert lines[0] == "format version: 1b3"
    assert f"  uri: {URL}" in lines
    assert "  status: 200" in lines
    assert "    Content-Type: text/html" in lines
    assert lines[-1] == f"signature: {exchange.signature_header_value}"


def test_pretty_print_payload():
    exchange = make_exchange(Version.V1B3, payload=b"hello")
    out = io.BytesIO()
    exchange.pretty_print_payload(out)
    assert out.getvalue() == b"payload [5 bytes]:\nhello"