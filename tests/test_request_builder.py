"""Tests for building transmittable requests from stage input."""

import pytest

from replay.errors import DefinitionError
from replay.request_builder import Destination, RequestShape, RequestSpec, build_request


DEST = Destination(address="waf.local", port=8080, protocol="http")


class TestRequestSpec:
    """Shape validation happens when the input is constructed."""

    @pytest.mark.parametrize("fields", [
        {"data": "a=1", "encoded_request": "GET%20/"},
        {"data": "a=1", "raw_request": "GET / HTTP/1.1\r\n\r\n"},
        {"encoded_request": "GET%20/", "raw_request": "GET / HTTP/1.1\r\n\r\n"},
        {"data": "a", "encoded_request": "b", "raw_request": "c"},
    ])
    def test_more_than_one_body_source_is_rejected(self, fields):
        with pytest.raises(DefinitionError):
            RequestSpec(**fields)

    def test_shape(self):
        assert RequestSpec().shape is RequestShape.STRUCTURED
        assert RequestSpec(data="x").shape is RequestShape.STRUCTURED
        assert RequestSpec(encoded_request="GET%20/").shape is RequestShape.ENCODED
        assert RequestSpec(raw_request=b"GET /").shape is RequestShape.RAW

    def test_destination_defaults(self):
        assert RequestSpec().destination() == Destination("localhost", 80, "http")
        assert RequestSpec(dest_addr="a", port=1, protocol="https").destination() == Destination("a", 1, "https")


class TestStructuredRequests:

    def test_defaults(self):
        wire = build_request(RequestSpec()).to_bytes(DEST)
        assert wire.startswith(b"GET / HTTP/1.1\r\n")
        assert b"Host: waf.local\r\n" in wire
        assert wire.endswith(b"\r\n\r\n")

    def test_content_length_completed_for_body(self):
        spec = RequestSpec(method="POST", uri="/login", headers={"Content-Type": "text/plain"}, data="user=admin")
        wire = build_request(spec).to_bytes(DEST)
        assert wire.startswith(b"POST /login HTTP/1.1\r\n")
        assert b"Content-Length: 10\r\n" in wire
        assert wire.endswith(b"\r\n\r\nuser=admin")

    def test_existing_headers_are_kept_case_insensitively(self):
        spec = RequestSpec(headers={"host": "custom", "content-length": "99"}, data="abc")
        wire = build_request(spec).to_bytes(DEST)
        assert b"host: custom\r\n" in wire
        assert b"Host: waf.local" not in wire
        assert b"content-length: 99\r\n" in wire

    def test_header_order_is_preserved(self):
        spec = RequestSpec(headers={"Z-First": "1", "A-Second": "2"})
        wire = build_request(spec).to_bytes(DEST)
        assert wire.index(b"Z-First") < wire.index(b"A-Second")

    def test_autocomplete_disabled(self):
        spec = RequestSpec(data="abc", autocomplete_headers=False)
        wire = build_request(spec).to_bytes(DEST)
        assert wire == b"GET / HTTP/1.1\r\n\r\nabc"

    def test_non_ascii_header_value_sent_as_utf8(self):
        spec = RequestSpec(headers={"X-Name": "café", "Référer": "ü"})
        wire = build_request(spec).to_bytes(DEST)
        assert "X-Name: café\r\n".encode("utf-8") in wire
        assert "Référer: ü\r\n".encode("utf-8") in wire

    def test_uri_outside_latin1_sent_as_utf8(self):
        wire = build_request(RequestSpec(uri="/€?q=日本")).to_bytes(DEST)
        assert wire.startswith("GET /€?q=日本 HTTP/1.1\r\n".encode("utf-8"))

    def test_unencodable_header_is_a_definition_error(self):
        with pytest.raises(DefinitionError):
            build_request(RequestSpec(headers={"X-Bad": "\ud800"}))

    def test_unencodable_uri_is_a_definition_error(self):
        request = build_request(RequestSpec(uri="/\ud800"))
        with pytest.raises(DefinitionError):
            request.to_bytes(DEST)


class TestRawRequests:

    def test_malformed_bytes_pass_through(self):
        raw = b"GET /\x00 HTTP/9.9\r\nBroken"
        request = build_request(RequestSpec(raw_request=raw))
        assert request.to_bytes(DEST) == raw

    def test_unmodified_when_autocomplete_disabled(self):
        raw = b"POST / HTTP/1.1\r\n\r\nbody"
        request = build_request(RequestSpec(raw_request=raw, autocomplete_headers=False))
        assert request.to_bytes(DEST) == raw

    def test_missing_headers_completed(self):
        raw = "POST / HTTP/1.1\r\nX-A: 1\r\n\r\nbody"
        wire = build_request(RequestSpec(raw_request=raw)).to_bytes(DEST)
        assert wire == b"POST / HTTP/1.1\r\nX-A: 1\r\nHost: waf.local\r\nContent-Length: 4\r\n\r\nbody"

    def test_encoded_request_is_percent_decoded(self):
        request = build_request(RequestSpec(encoded_request="GET%20/%3Fa%3D1%20HTTP/1.1%0D%0AHost:%20x%0D%0A%0D%0A"))
        assert request.is_raw
        assert request.method == "GET"
        assert request.to_bytes(DEST) == b"GET /?a=1 HTTP/1.1\r\nHost: x\r\n\r\n"
