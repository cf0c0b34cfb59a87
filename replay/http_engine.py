"""HTTP transport: connections, wire-level send/receive and round-trip timing."""

import asyncio
import logging
import re
import ssl
import time
from dataclasses import dataclass, field
from typing import Optional

import h11
import httpx

from .errors import TransportError, TransportErrorKind
from .request_builder import Destination, Request

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

_METHOD_TOKEN = re.compile(r"^[A-Z]+$")


@dataclass
class ClientConfig:
    """Timeouts in seconds."""
    connect_timeout: float = 3.0
    read_timeout: float = 1.0


@dataclass
class RoundTripTime:
    """Time a single transaction takes."""
    begin: Optional[float] = None
    end: Optional[float] = None

    def start(self):
        self.begin = time.perf_counter()
        self.end = None

    def stop(self):
        self.end = time.perf_counter()

    @property
    def duration(self) -> float:
        if self.begin is None or self.end is None:
            return 0.0
        return self.end - self.begin


@dataclass
class Response:
    """Response received from the server/WAF."""
    raw: bytes
    status_code: int
    reason: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Connection:
    """An open transport to one destination."""

    def __init__(self, destination: Destination, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter, read_timeout: float):
        self.destination = destination
        self.reader = reader
        self.writer = writer
        self.read_timeout = read_timeout
        self.reusable = True

    @classmethod
    async def open(cls, destination: Destination, config: ClientConfig) -> "Connection":
        ssl_context = None
        if destination.protocol == "https":
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(destination.address, destination.port, ssl=ssl_context),
                timeout=config.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                TransportErrorKind.TIMEOUT,
                f"connect timed out after {config.connect_timeout}s",
                destination=destination,
            ) from e
        except OSError as e:
            raise TransportError(TransportErrorKind.CONNECT_FAILED, str(e), destination=destination) from e

        logger.debug(f"Opened connection to {destination}")
        return cls(destination, reader, writer, config.read_timeout)

    async def request(self, request: Request) -> Response:
        await self.send(request.to_bytes(self.destination))
        return await self.receive(request.method)

    async def send(self, data: bytes):
        try:
            self.writer.write(data)
            await asyncio.wait_for(self.writer.drain(), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            self.reusable = False
            raise TransportError(TransportErrorKind.TIMEOUT, "send timed out", destination=self.destination) from e
        except OSError as e:
            self.reusable = False
            raise TransportError(TransportErrorKind.SEND_FAILED, str(e), destination=self.destination) from e

    async def receive(self, method: str = "GET") -> Response:
        """Read one response off the wire and parse it."""
        parser = _response_parser(method, self.destination.address)
        raw = bytearray()
        body = bytearray()
        head = None

        while True:
            try:
                event = parser.next_event()
            except h11.RemoteProtocolError as e:
                self.reusable = False
                raise TransportError(
                    TransportErrorKind.RECEIVE_FAILED, f"malformed response: {e}", destination=self.destination
                ) from e

            if event is h11.NEED_DATA:
                chunk = await self._read_chunk()
                raw += chunk
                parser.receive_data(chunk)
                continue

            if isinstance(event, h11.InformationalResponse):
                continue
            if isinstance(event, h11.Response):
                head = event
            elif isinstance(event, h11.Data):
                body += event.data
            elif event is h11.PAUSED or isinstance(event, (h11.EndOfMessage, h11.ConnectionClosed)):
                break

        if head is None:
            self.reusable = False
            raise TransportError(
                TransportErrorKind.RECEIVE_FAILED,
                "connection closed before a response was received",
                destination=self.destination,
            )

        self.reusable = parser.our_state is h11.DONE and parser.their_state is h11.DONE

        return Response(
            raw=bytes(raw),
            status_code=head.status_code,
            reason=head.reason.decode("latin-1"),
            headers=httpx.Headers(
                [(name.decode("latin-1"), value.decode("latin-1")) for name, value in head.headers.raw_items()]
            ),
            body=bytes(body),
        )

    async def _read_chunk(self) -> bytes:
        try:
            return await asyncio.wait_for(self.reader.read(READ_CHUNK_SIZE), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            self.reusable = False
            raise TransportError(
                TransportErrorKind.TIMEOUT,
                f"no response within {self.read_timeout}s",
                destination=self.destination,
            ) from e
        except OSError as e:
            self.reusable = False
            raise TransportError(TransportErrorKind.RECEIVE_FAILED, str(e), destination=self.destination) from e

    async def close(self):
        self.reusable = False
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (OSError, ssl.SSLError) as e:
            logger.debug(f"Error while closing connection to {self.destination}: {e}")


def _response_parser(method: str, host: str) -> h11.Connection:
    """
    Build an h11 client primed as if ``method`` had been sent.

    The request bytes themselves are written by us (possibly malformed), so h11
    only tracks the response side; the request method still matters for HEAD.
    """
    if not _METHOD_TOKEN.match(method) or method == "CONNECT":
        method = "GET"
    parser = h11.Connection(our_role=h11.CLIENT)
    parser.send(h11.Request(method=method, target="/", headers=[("Host", host or "localhost")]))
    parser.send(h11.EndOfMessage())
    return parser


class Client:
    """Sends requests over a single (re)usable connection and keeps the cookies the server sets."""

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self.transport: Optional[Connection] = None
        self.round_trip_time = RoundTripTime()
        self.cookies = httpx.Cookies()

    async def new_connection(self, destination: Destination):
        """Open a fresh connection, dropping any existing one."""
        await self.close()
        self.transport = await Connection.open(destination, self.config)

    async def new_or_reused_connection(self, destination: Destination):
        """Reuse the open connection when it points at the same destination."""
        if self.transport is not None and self.transport.reusable and self.transport.destination == destination:
            logger.debug(f"Reusing connection to {destination}")
            return
        await self.new_connection(destination)

    def start_tracking_time(self):
        self.round_trip_time.start()

    def stop_tracking_time(self):
        self.round_trip_time.stop()

    async def do(self, request: Request) -> Response:
        """Send the request over the current connection and return the response."""
        if self.transport is None:
            raise TransportError(TransportErrorKind.SEND_FAILED, "no connection established")
        destination = self.transport.destination
        self._add_cookie_header(request, destination)
        self.start_tracking_time()
        try:
            response = await self.transport.request(request)
        finally:
            self.stop_tracking_time()
            if not self.transport.reusable:
                await self.close()
        self._store_cookies(request, response, destination)
        return response

    def clear_cookies(self):
        self.cookies.clear()

    def _add_cookie_header(self, request: Request, destination: Destination):
        """Structured requests carry the stored cookies unless they set their own Cookie header."""
        if request.is_raw or not request.autocomplete_headers or "Cookie" in request.headers or not self.cookies:
            return
        exchange = _cookie_exchange(request, destination)
        self.cookies.set_cookie_header(exchange)
        if "Cookie" in exchange.headers:
            request.headers["Cookie"] = exchange.headers["Cookie"]

    def _store_cookies(self, request: Request, response: Response, destination: Destination):
        if "Set-Cookie" not in response.headers:
            return
        self.cookies.extract_cookies(
            httpx.Response(response.status_code, headers=response.headers,
                           request=_cookie_exchange(request, destination))
        )
        logger.debug(f"Stored cookies from {destination}: {list(self.cookies.keys())}")

    async def close(self):
        if self.transport is not None:
            transport, self.transport = self.transport, None
            await transport.close()


def _cookie_exchange(request: Request, destination: Destination) -> httpx.Request:
    """The request as seen by the cookie jar: URL built from the destination and the request target."""
    method = request.method if _METHOD_TOKEN.match(request.method) else "GET"
    origin = f"{destination.protocol}://{destination.address}:{destination.port}"
    target = request.target
    if target.startswith("/"):
        try:
            return httpx.Request(method, origin + target)
        except httpx.InvalidURL:
            logger.debug(f"Target {target!r} is not a valid URL path, using / for cookies")
    return httpx.Request(method, origin + "/")
