"""Pytest configuration and an in-process fake WAF for the replay tests."""

import asyncio
import io
import socket
from typing import Dict, List, Optional, Tuple

import pytest
from rich.console import Console

from replay.config import Config
from replay.reporter import Reporter

MARKER_HEADER = "X-CRS-Test"
BLOCKED_RULE = "[id 920100]"


class FakeWAF:
    """
    HTTP/1.1 server that behaves like a WAF writing an access log.

    Every request produces one log line with the request line and the marker
    header value. Requests whose path starts with a blocked prefix get a 403 and
    a rule id in their log line. Paths listed in ``set_cookies`` answer with that
    Set-Cookie header. Log lines are buffered and written to disk
    once ``flush_every`` lines are pending.
    """

    def __init__(self, log_path, blocked_prefixes=("/attack",), flush_every: int = 1,
                 log_markers: bool = True, status: int = 200, close_after_response: bool = False,
                 set_cookies: Optional[Dict[str, str]] = None):
        self.log_path = log_path
        self.blocked_prefixes = blocked_prefixes
        self.flush_every = flush_every
        self.log_markers = log_markers
        self.status = status
        self.close_after_response = close_after_response
        self.set_cookies = set_cookies or {}
        self.requests: List[Tuple[str, str, Dict[str, str]]] = []
        self.connections = 0
        self.port: Optional[int] = None
        self._pending: List[str] = []
        self._writers = []
        self._server = None

    async def __aenter__(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc):
        self._server.close()
        for writer in self._writers:
            writer.close()
        await self._server.wait_closed()

    def probes(self) -> int:
        return sum(1 for _, target, _ in self.requests if target == "/status/200")

    def _log(self, line: str):
        self._pending.append(line)
        if len(self._pending) >= self.flush_every:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.writelines(pending + "\n" for pending in self._pending)
            self._pending = []

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        self._writers.append(writer)
        try:
            while True:
                head = await reader.readuntil(b"\r\n\r\n")
                lines = head.decode("latin-1").split("\r\n")
                method, target, _ = (lines[0].split(" ", 2) + ["", ""])[:3]
                headers = {}
                for line in lines[1:]:
                    if ":" in line:
                        name, value = line.split(":", 1)
                        headers[name.strip().lower()] = value.strip()

                length = int(headers.get("content-length", "0") or 0)
                if length:
                    await reader.readexactly(length)

                self.requests.append((method, target, headers))
                blocked = any(target.startswith(prefix) for prefix in self.blocked_prefixes)

                entry = f'[client 127.0.0.1] "{method} {target}"'
                if blocked:
                    entry += f" ModSecurity: Access denied {BLOCKED_RULE}"
                if self.log_markers and MARKER_HEADER.lower() in headers:
                    entry += f" {MARKER_HEADER}: {headers[MARKER_HEADER.lower()]}"
                self._log(entry)

                status = 403 if blocked else self.status
                body = b"Forbidden by WAF" if blocked else b"hello from backend"
                response = (
                    f"HTTP/1.1 {status} {'Forbidden' if blocked else 'OK'}\r\n"
                    f"Content-Length: {len(body)}\r\n"
                    f"Content-Type: text/plain\r\n"
                )
                if target in self.set_cookies:
                    response += f"Set-Cookie: {self.set_cookies[target]}\r\n"
                if self.close_after_response:
                    response += "Connection: close\r\n"
                writer.write(response.encode() + b"\r\n" + body)
                await writer.drain()
                if self.close_after_response:
                    break
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "waf.log"
    path.write_text("")
    return path


@pytest.fixture
def fake_waf(log_file):
    def factory(**kwargs):
        return FakeWAF(log_file, **kwargs)
    return factory


@pytest.fixture
def config(log_file):
    return Config(
        log_file=str(log_file),
        log_marker_header_name=MARKER_HEADER,
        connect_timeout=2.0,
        read_timeout=2.0,
        max_marker_retries=5,
        max_marker_log_lines=100,
    )


@pytest.fixture
def quiet_reporter():
    return Reporter(console=Console(file=io.StringIO(), width=120))
