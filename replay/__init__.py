"""WAF Replay Modules"""

from .config import Config, RunMode, load_config
from .definitions import Expectation, WAFTestFile, load_tests
from .errors import (
    ConfigurationError,
    DefinitionError,
    MarkerNotFoundError,
    ReplayError,
    TransportError,
    TransportErrorKind,
)
from .http_engine import Client, ClientConfig, Response
from .reporter import Reporter
from .request_builder import Destination, Request, RequestSpec, build_request
from .results import RunStats, Verdict
from .runner import RunContext, run

__all__ = [
    "Config",
    "RunMode",
    "load_config",
    "Expectation",
    "WAFTestFile",
    "load_tests",
    "ConfigurationError",
    "DefinitionError",
    "MarkerNotFoundError",
    "ReplayError",
    "TransportError",
    "TransportErrorKind",
    "Client",
    "ClientConfig",
    "Response",
    "Reporter",
    "Destination",
    "Request",
    "RequestSpec",
    "build_request",
    "RunStats",
    "Verdict",
    "RunContext",
    "run",
]
