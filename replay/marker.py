"""Log marker synchronization between HTTP exchanges and the WAF log."""

import logging
from typing import Optional

import httpx

from .errors import MarkerNotFoundError
from .request_builder import Destination, Request, RequestLine
from .waf_log import Marker

logger = logging.getLogger(__name__)

# `/status/200` is cheap on httpbin, the usual backend behind a test WAF.
MARKER_URI = "/status/200"
MARKER_USER_AGENT = "waf-replay test agent"


def build_marker_request(header_name: str, stage_id: str, destination: Destination) -> Request:
    headers = httpx.Headers({
        "Accept": "*/*",
        "User-Agent": MARKER_USER_AGENT,
        "Host": destination.address,
        header_name: stage_id,
    })
    return Request(
        request_line=RequestLine(method="GET", uri=MARKER_URI, version="HTTP/1.1"),
        headers=headers,
        autocomplete_headers=True,
    )


async def mark_and_flush(run_context, destination: Destination, stage_id: str,
                         after: Optional[Marker] = None) -> Marker:
    """
    Send marker probes until the stage ID shows up in the WAF log.

    Each attempt re-sends the probe before scanning the log. Transport errors
    while probing are raised as is.
    """
    config = run_context.config
    request = build_marker_request(config.log_marker_header_name, stage_id, destination)
    client = run_context.client
    log_reader = run_context.log_reader

    for attempt in range(1, config.max_marker_retries + 1):
        await client.new_or_reused_connection(destination)
        await client.do(request)

        marker = log_reader.find_marker(stage_id, config.max_marker_log_lines, after=after)
        if marker is not None:
            logger.debug(f"Found marker for stage {stage_id} on attempt {attempt}")
            return marker
        logger.debug(f"Marker for stage {stage_id} not found (attempt {attempt}/{config.max_marker_retries})")

    raise MarkerNotFoundError(
        f"can't find log marker. Am I reading the correct log? Log file: {log_reader.file_name}",
        attempts=config.max_marker_retries,
        destination=destination,
        stage_id=stage_id,
    )
