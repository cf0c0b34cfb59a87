"""Stage orchestration: filtering, marker bracketing, verdicts and statistics."""

import dataclasses
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Pattern

from .check import Check, overridden_verdict, resolve
from .config import Config, InputOverride
from .definitions import WAFTestCase, WAFTestFile, WAFTestStage
from .errors import ConfigurationError, MarkerNotFoundError, ReplayError, TransportError
from .http_engine import Client, ClientConfig, Response
from .marker import mark_and_flush
from .reporter import Reporter
from .request_builder import RequestSpec, build_request
from .results import RunStats, Verdict
from .waf_log import LogReader, Marker

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ("http", "https")


@dataclass
class RunContext:
    """State of one run; owned by the orchestrator and passed into every stage."""
    config: Config
    client: Client
    log_reader: Optional[LogReader]
    reporter: Reporter
    include: Optional[Pattern] = None
    exclude: Optional[Pattern] = None
    stats: RunStats = field(default_factory=RunStats)
    result: Optional[Verdict] = None


def need_to_skip_test(include: Optional[Pattern], exclude: Optional[Pattern], title: str, enabled: bool) -> bool:
    """Explicit inclusion wins over both the enabled flag and exclusion."""
    if include is not None:
        return include.search(title) is None

    if not enabled:
        return True

    if exclude is not None and exclude.search(title):
        return True

    return False


def apply_input_override(overrides: InputOverride, spec: RequestSpec) -> RequestSpec:
    """Substitute the configured destination fields into a stage input."""
    changes = {}
    if overrides.port is not None:
        changes["port"] = overrides.port
    if overrides.dest_addr is not None:
        changes["dest_addr"] = overrides.dest_addr
        headers = dict(spec.headers or {})
        if not any(name.lower() == "host" for name in headers):
            headers["Host"] = overrides.dest_addr
        changes["headers"] = headers
    if overrides.protocol is not None:
        changes["protocol"] = overrides.protocol

    if not changes:
        return spec
    return dataclasses.replace(spec, **changes)


async def run(tests: List[WAFTestFile], config: Config, reporter: Optional[Reporter] = None) -> RunContext:
    """Run the tests in order; fatal errors propagate, failed assertions are counted."""
    config.validate()
    _warn_on_input_override(config.test_override.input)

    log_reader = None
    if not config.cloud_mode:
        log_reader = LogReader(config.log_file)
        if not log_reader.exists():
            raise ConfigurationError(f"log file {config.log_file} does not exist")

    run_context = RunContext(
        config=config,
        client=Client(ClientConfig(connect_timeout=config.connect_timeout, read_timeout=config.read_timeout)),
        log_reader=log_reader,
        reporter=reporter or Reporter(show_only_failed=config.show_only_failed, show_time=config.show_time),
        include=config.include_pattern,
        exclude=config.exclude_pattern,
    )

    run_context.reporter.start()
    try:
        for test_file in tests:
            await run_test(run_context, test_file)
    finally:
        await run_context.client.close()

    run_context.reporter.print_summary(run_context.stats)
    return run_context


async def run_test(run_context: RunContext, test_file: WAFTestFile):
    """Run every test case of one definition file."""
    announced = False

    for test_case in test_file.tests:
        if need_to_skip_test(run_context.include, run_context.exclude, test_case.title, test_file.meta.enabled):
            logger.debug(f"Skipping {test_case.title}")
            run_context.stats.add_result(Verdict.SKIPPED, test_case.title)
            run_context.reporter.skipping(test_case.title, disabled=not test_file.meta.enabled)
            continue

        if not announced:
            run_context.reporter.executing_file(test_file.meta.name)
            announced = True

        run_context.reporter.running(test_case.title)
        run_context.client.clear_cookies()

        # Overrides skip execution entirely
        check = Check(run_context.config, run_context.log_reader)
        overridden = overridden_verdict(check, test_case.title)

        for stage in test_case.stages:
            if overridden is not None:
                run_context.stats.add_result(overridden, test_case.title, stage_id=str(uuid.uuid4()))
                run_context.result = overridden
                run_context.reporter.display_result(test_case.title, overridden)
                continue
            await run_stage(run_context, Check(run_context.config, run_context.log_reader), test_case, stage)


async def run_stage(run_context: RunContext, check: Check, test_case: WAFTestCase, stage: WAFTestStage) -> Verdict:
    """Run one stage: bracket the request with log markers and resolve its verdict."""
    stage_start_time = time.perf_counter()
    stage_id = str(uuid.uuid4())
    config = run_context.config
    expected = stage.output
    client = run_context.client

    spec = apply_input_override(config.test_override.input, stage.input)
    request = build_request(spec)
    destination = spec.destination()

    try:
        if not check.cloud_mode():
            start_marker = await _marker_or_expected_error(run_context, destination, stage_id, expected.expect_error)
            check.set_start_marker(start_marker)

        response: Optional[Response] = None
        response_error: Optional[TransportError] = None
        round_trip = 0.0
        try:
            await client.new_connection(destination)
            response = await client.do(request)
            round_trip = client.round_trip_time.duration
        except TransportError as e:
            if not expected.expect_error:
                raise
            logger.debug(f"Expected error for {test_case.title}: {e}")
            response_error = e

        if not check.cloud_mode():
            end_marker = await _marker_or_expected_error(
                run_context, destination, stage_id, expected.expect_error, after=check.start_marker
            )
            check.set_end_marker(end_marker)
    except ReplayError as e:
        e.destination = e.destination or destination
        e.stage_id = e.stage_id or stage_id
        logger.debug(f"Aborting run in {test_case.title}: {e}")
        raise

    check.set_expected(expected)
    verdict = resolve(check, test_case.title, response, response_error)

    stage_time = time.perf_counter() - stage_start_time

    run_context.stats.add_result(verdict, test_case.title, stage_time, round_trip, stage_id=stage_id)
    run_context.stats.add_run_time(stage_time)
    run_context.result = verdict
    run_context.reporter.display_result(test_case.title, verdict, stage_time, round_trip)
    return verdict


async def _marker_or_expected_error(run_context: RunContext, destination, stage_id: str, expect_error: bool,
                                    after: Optional[Marker] = None) -> Optional[Marker]:
    try:
        return await mark_and_flush(run_context, destination, stage_id, after=after)
    except (TransportError, MarkerNotFoundError) as e:
        if not expect_error:
            raise
        logger.debug(f"Marker lookup failed for stage {stage_id}, error expected: {e}")
        return None


def _warn_on_input_override(overrides: InputOverride):
    if overrides.protocol is not None and overrides.protocol not in SUPPORTED_PROTOCOLS:
        logger.warning(f"Input override protocol {overrides.protocol!r} is not http or https, plain HTTP will be used")
    if overrides.port is not None and not 0 < overrides.port < 65536:
        logger.warning(f"Input override port {overrides.port} is outside the TCP port range")
