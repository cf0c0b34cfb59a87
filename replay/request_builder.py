"""Request building from declarative stage input."""

import logging
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Union

import httpx

from .errors import DefinitionError

logger = logging.getLogger(__name__)


DEFAULT_METHOD = "GET"
DEFAULT_URI = "/"
DEFAULT_VERSION = "HTTP/1.1"


class RequestShape(Enum):
    STRUCTURED = auto()
    ENCODED = auto()
    RAW = auto()


@dataclass(frozen=True)
class Destination:
    """Host, port and protocol used when connecting to a remote host."""
    address: str = "localhost"
    port: int = 80
    protocol: str = "http"

    def __str__(self) -> str:
        return f"{self.protocol}://{self.address}:{self.port}"


@dataclass
class RequestSpec:
    """
    Declarative input of a stage.

    Exactly one body source may be set: ``data`` (structured), ``encoded_request``
    (percent-encoded whole request) or ``raw_request`` (bytes sent on the wire).
    """
    dest_addr: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    method: Optional[str] = None
    uri: Optional[str] = None
    version: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[Union[str, bytes]] = None
    encoded_request: Optional[str] = None
    raw_request: Optional[Union[str, bytes]] = None
    autocomplete_headers: bool = True

    def __post_init__(self):
        populated = [name for name in ("data", "encoded_request", "raw_request") if getattr(self, name)]
        if len(populated) > 1:
            raise DefinitionError(
                f"bad test: choose between data, encoded_request, or raw_request (got {', '.join(populated)})"
            )

    @property
    def shape(self) -> RequestShape:
        if self.raw_request:
            return RequestShape.RAW
        if self.encoded_request:
            return RequestShape.ENCODED
        return RequestShape.STRUCTURED

    def destination(self) -> Destination:
        return Destination(
            address=self.dest_addr or "localhost",
            port=self.port or 80,
            protocol=self.protocol or "http",
        )


@dataclass
class RequestLine:
    method: str = DEFAULT_METHOD
    uri: str = DEFAULT_URI
    version: str = DEFAULT_VERSION

    def to_bytes(self) -> bytes:
        return _encode(f"{self.method} {self.uri} {self.version}\r\n", "request line")


@dataclass
class Request:
    """A transmittable request; ``raw`` wins over the structured fields when set."""
    request_line: RequestLine = field(default_factory=RequestLine)
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    data: bytes = b""
    raw: Optional[bytes] = None
    autocomplete_headers: bool = True

    @property
    def is_raw(self) -> bool:
        return self.raw is not None

    @property
    def method(self) -> str:
        if self.is_raw:
            return self.raw.split(b" ", 1)[0].decode("latin-1", "replace")
        return self.request_line.method

    @property
    def target(self) -> str:
        if self.is_raw:
            parts = self.raw.split(b"\r\n", 1)[0].split(b" ")
            return parts[1].decode("latin-1", "replace") if len(parts) > 1 else ""
        return self.request_line.uri

    def to_bytes(self, destination: Optional[Destination] = None) -> bytes:
        """Serialize the request as it goes on the wire."""
        if self.is_raw:
            if self.autocomplete_headers:
                return _complete_raw_headers(self.raw, destination)
            return self.raw

        headers = httpx.Headers(self.headers)
        if self.autocomplete_headers:
            if "Host" not in headers and destination is not None:
                headers["Host"] = destination.address
            if self.data and "Content-Length" not in headers:
                headers["Content-Length"] = str(len(self.data))

        head = self.request_line.to_bytes()
        for name, value in headers.raw:
            head += name + b": " + value + b"\r\n"
        return head + b"\r\n" + self.data


def _complete_raw_headers(raw: bytes, destination: Optional[Destination]) -> bytes:
    """Add a missing Host / Content-Length to a well-formed raw request."""
    separator = b"\r\n\r\n"
    if separator not in raw:
        return raw

    head, body = raw.split(separator, 1)
    lines = head.split(b"\r\n")
    names = {line.split(b":", 1)[0].strip().lower() for line in lines[1:] if b":" in line}

    extra: List[bytes] = []
    if b"host" not in names and destination is not None:
        extra.append(b"Host: " + destination.address.encode("utf-8"))
    if body and b"content-length" not in names and b"transfer-encoding" not in names:
        extra.append(b"Content-Length: " + str(len(body)).encode())

    if not extra:
        return raw
    return b"\r\n".join(lines + extra) + separator + body


def _encode(value: str, what: str) -> bytes:
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise DefinitionError(f"bad test: {what} {value!r} cannot be encoded: {e}") from e


def _to_bytes(value: Union[str, bytes, None]) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return _encode(value, "body")


def _encode_headers(headers: Dict[str, str]) -> httpx.Headers:
    """Header names and values go on the wire as UTF-8 bytes."""
    return httpx.Headers([
        (_encode(str(name), "header name"), _encode(str(value), f"value of header {name}"))
        for name, value in headers.items()
    ])


def build_request(spec: RequestSpec) -> Request:
    """Turn a stage input into a transmittable request."""
    shape = spec.shape
    if shape is RequestShape.RAW:
        return Request(raw=_to_bytes(spec.raw_request), autocomplete_headers=spec.autocomplete_headers)

    if shape is RequestShape.ENCODED:
        raw = urllib.parse.unquote_to_bytes(spec.encoded_request)
        logger.debug(f"Decoded encoded request into {len(raw)} bytes")
        return Request(raw=raw, autocomplete_headers=spec.autocomplete_headers)

    return Request(
        request_line=RequestLine(
            method=spec.method or DEFAULT_METHOD,
            uri=spec.uri or DEFAULT_URI,
            version=spec.version or DEFAULT_VERSION,
        ),
        headers=_encode_headers(spec.headers or {}),
        data=_to_bytes(spec.data),
        autocomplete_headers=spec.autocomplete_headers,
    )
