"""Tests for the wire-level HTTP client."""

import asyncio

import pytest

from conftest import unused_port
from replay.errors import TransportError, TransportErrorKind
from replay.http_engine import Client, ClientConfig
from replay.request_builder import Destination, RequestSpec, build_request


def _client(**kwargs) -> Client:
    return Client(ClientConfig(connect_timeout=kwargs.get("connect_timeout", 2.0),
                               read_timeout=kwargs.get("read_timeout", 2.0)))


class TestClient:

    @pytest.mark.asyncio
    async def test_send_and_parse_response(self, fake_waf):
        async with fake_waf() as waf:
            client = _client()
            destination = Destination("127.0.0.1", waf.port)
            await client.new_connection(destination)
            response = await client.do(build_request(RequestSpec(uri="/hello")))
            await client.close()

        assert response.status_code == 200
        assert response.reason == "OK"
        assert response.headers["content-type"] == "text/plain"
        assert response.body == b"hello from backend"
        assert response.raw.startswith(b"HTTP/1.1 200 OK\r\n")
        assert client.round_trip_time.duration > 0
        assert waf.requests[0][:2] == ("GET", "/hello")

    @pytest.mark.asyncio
    async def test_connection_reused_for_same_destination(self, fake_waf):
        async with fake_waf() as waf:
            client = _client()
            destination = Destination("127.0.0.1", waf.port)
            for _ in range(3):
                await client.new_or_reused_connection(destination)
                await client.do(build_request(RequestSpec()))
            await client.close()

        assert waf.connections == 1
        assert len(waf.requests) == 3

    @pytest.mark.asyncio
    async def test_new_connection_after_server_close(self, fake_waf):
        async with fake_waf(close_after_response=True) as waf:
            client = _client()
            destination = Destination("127.0.0.1", waf.port)
            for _ in range(2):
                await client.new_or_reused_connection(destination)
                await client.do(build_request(RequestSpec()))
            await client.close()

        assert waf.connections == 2

    @pytest.mark.asyncio
    async def test_new_connection_when_destination_changes(self, fake_waf, log_file):
        async with fake_waf() as first:
            async with fake_waf() as second:
                client = _client()
                await client.new_or_reused_connection(Destination("127.0.0.1", first.port))
                await client.do(build_request(RequestSpec()))
                await client.new_or_reused_connection(Destination("127.0.0.1", second.port))
                await client.do(build_request(RequestSpec()))
                await client.close()

        assert first.connections == 1
        assert second.connections == 1

    @pytest.mark.asyncio
    async def test_non_latin1_uri_reaches_server(self, fake_waf):
        async with fake_waf() as waf:
            client = _client()
            await client.new_connection(Destination("127.0.0.1", waf.port))
            response = await client.do(build_request(RequestSpec(uri="/€?q=日本", headers={"X-Name": "café"})))
            await client.close()

        assert response.status_code == 200
        _, target, headers = waf.requests[0]
        assert target.encode("latin-1").decode("utf-8") == "/€?q=日本"
        assert headers["x-name"].encode("latin-1").decode("utf-8") == "café"

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        client = _client()
        with pytest.raises(TransportError) as excinfo:
            await client.new_connection(Destination("127.0.0.1", unused_port()))
        assert excinfo.value.kind is TransportErrorKind.CONNECT_FAILED

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        async def silent(reader, writer):
            await reader.read(1024)
            await asyncio.sleep(1)
            writer.close()

        server = await asyncio.start_server(silent, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        client = _client(read_timeout=0.2)
        try:
            await client.new_connection(Destination("127.0.0.1", port))
            with pytest.raises(TransportError) as excinfo:
                await client.do(build_request(RequestSpec()))
            assert excinfo.value.kind is TransportErrorKind.TIMEOUT
            assert client.transport is None
        finally:
            await client.close()
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_closed_without_response(self):
        async def hang_up(reader, writer):
            await reader.read(1024)
            writer.close()

        server = await asyncio.start_server(hang_up, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        client = _client()
        try:
            await client.new_connection(Destination("127.0.0.1", port))
            with pytest.raises(TransportError) as excinfo:
                await client.do(build_request(RequestSpec()))
            assert excinfo.value.kind is TransportErrorKind.RECEIVE_FAILED
        finally:
            await client.close()
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_do_without_connection(self):
        with pytest.raises(TransportError):
            await _client().do(build_request(RequestSpec()))


class TestCookies:

    @pytest.mark.asyncio
    async def test_cookie_sent_back_to_same_destination(self, fake_waf):
        async with fake_waf(set_cookies={"/login": "session=abc123; Path=/"}) as waf:
            client = _client()
            destination = Destination("127.0.0.1", waf.port)
            for uri in ("/login", "/account"):
                await client.new_or_reused_connection(destination)
                await client.do(build_request(RequestSpec(uri=uri)))
            await client.close()

        assert "cookie" not in waf.requests[0][2]
        assert waf.requests[1][2]["cookie"] == "session=abc123"

    @pytest.mark.asyncio
    async def test_explicit_cookie_header_wins(self, fake_waf):
        async with fake_waf(set_cookies={"/login": "session=abc123"}) as waf:
            client = _client()
            destination = Destination("127.0.0.1", waf.port)
            await client.new_connection(destination)
            await client.do(build_request(RequestSpec(uri="/login")))
            await client.new_or_reused_connection(destination)
            await client.do(build_request(RequestSpec(uri="/", headers={"Cookie": "mine=1"})))
            await client.close()

        assert waf.requests[1][2]["cookie"] == "mine=1"

    @pytest.mark.asyncio
    async def test_raw_requests_and_other_hosts_get_no_cookie(self, fake_waf):
        async with fake_waf(set_cookies={"/login": "session=abc123"}) as waf:
            client = _client()
            await client.new_connection(Destination("127.0.0.1", waf.port))
            await client.do(build_request(RequestSpec(uri="/login")))

            await client.new_or_reused_connection(Destination("127.0.0.1", waf.port))
            await client.do(build_request(RequestSpec(raw_request="GET /raw HTTP/1.1\r\nHost: x\r\n\r\n")))

            await client.new_connection(Destination("localhost", waf.port))
            await client.do(build_request(RequestSpec(uri="/other")))
            await client.close()

        assert "cookie" not in waf.requests[1][2]
        assert "cookie" not in waf.requests[2][2]

    def test_clear_cookies(self):
        client = _client()
        client.cookies.set("session", "abc", domain="127.0.0.1")
        client.clear_cookies()
        assert not client.cookies
