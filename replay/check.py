"""Verdict resolution from response and log evidence."""

import dataclasses
import logging
import re
from typing import Dict, Optional

from .config import Config
from .definitions import Expectation
from .errors import ReplayError
from .http_engine import Response
from .results import Verdict
from .waf_log import LogReader, Marker

logger = logging.getLogger(__name__)

CLOUD_BLOCKED_STATUS = [403]
CLOUD_ALLOWED_STATUS = [200, 404, 405]


class Check:
    """Assertions for one stage, against the run-wide override table."""

    def __init__(self, config: Config, log_reader: Optional[LogReader] = None):
        self.config = config
        self.log_reader = log_reader
        self.expected = Expectation()
        self.start_marker: Optional[Marker] = None
        self.end_marker: Optional[Marker] = None

    def set_expected(self, expected: Expectation):
        self.expected = expected
        if self.cloud_mode():
            self.set_cloud_mode()

    def set_start_marker(self, marker: Optional[Marker]):
        self.start_marker = marker

    def set_end_marker(self, marker: Optional[Marker]):
        self.end_marker = marker

    def cloud_mode(self) -> bool:
        return self.config.cloud_mode

    def set_cloud_mode(self):
        """Without log access, log expectations become status expectations."""
        expected = self.expected
        status = expected.status
        if expected.log_contains:
            status = CLOUD_BLOCKED_STATUS
        elif expected.no_log_contains:
            status = CLOUD_ALLOWED_STATUS
        self.expected = dataclasses.replace(expected, status=status, log_contains=None, no_log_contains=None)

    def _forced(self, table: Dict[str, str], test_id: str) -> bool:
        for expression, reason in table.items():
            if re.search(expression, test_id):
                logger.debug(f"{test_id} matched override {expression!r}: {reason}")
                return True
        return False

    def forced_ignore(self, test_id: str) -> bool:
        return self._forced(self.config.test_override.ignore, test_id)

    def forced_pass(self, test_id: str) -> bool:
        return self._forced(self.config.test_override.force_pass, test_id)

    def forced_fail(self, test_id: str) -> bool:
        return self._forced(self.config.test_override.force_fail, test_id)

    def assert_expect_error(self, error: Optional[Exception]) -> bool:
        return error is not None and self.expected.expect_error

    def assert_status(self, status: int) -> bool:
        return bool(self.expected.status) and status in self.expected.status

    def assert_response_contains(self, body: str) -> bool:
        if not self.expected.response_contains:
            return False
        return re.search(self.expected.response_contains, body) is not None

    def assert_log_contains(self) -> bool:
        if not self.expected.log_contains or self.log_reader is None:
            return False
        return self.log_reader.region_contains(self.expected.log_contains, self.start_marker, self.end_marker)

    def assert_no_log_contains(self) -> bool:
        if not self.expected.no_log_contains or self.log_reader is None:
            return False
        if self.start_marker is None or self.end_marker is None:
            return False
        return not self.log_reader.region_contains(self.expected.no_log_contains, self.start_marker, self.end_marker)


def overridden_verdict(check: Check, test_id: str) -> Optional[Verdict]:
    """Forced verdict for ``test_id``, if the override table has one."""
    if check.forced_ignore(test_id):
        return Verdict.IGNORED
    if check.forced_fail(test_id):
        return Verdict.FORCE_FAIL
    if check.forced_pass(test_id):
        return Verdict.FORCE_PASS
    return None


def resolve(check: Check, test_id: str, response: Optional[Response],
            error: Optional[ReplayError]) -> Verdict:
    """Resolve the stage verdict; the first rule that applies wins."""
    overridden = overridden_verdict(check, test_id)
    if overridden is not None:
        return overridden

    # An error might be what the stage expects
    if error is not None:
        return Verdict.SUCCESS if check.assert_expect_error(error) else Verdict.FAILED

    if response is not None:
        if check.assert_status(response.status_code):
            return Verdict.SUCCESS
        if check.assert_response_contains(response.text):
            return Verdict.SUCCESS

    if check.cloud_mode():
        return Verdict.FAILED

    if check.assert_log_contains():
        return Verdict.SUCCESS
    if check.assert_no_log_contains():
        return Verdict.SUCCESS

    return Verdict.FAILED
