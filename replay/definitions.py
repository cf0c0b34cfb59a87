"""Test definitions and their YAML loader."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import DefinitionError
from .request_builder import RequestSpec

logger = logging.getLogger(__name__)


@dataclass
class Expectation:
    """What a stage expects back; patterns are regular expressions."""
    status: Optional[List[int]] = None
    response_contains: Optional[str] = None
    log_contains: Optional[str] = None
    no_log_contains: Optional[str] = None
    expect_error: bool = False


@dataclass
class WAFTestStage:
    input: RequestSpec
    output: Expectation


@dataclass
class WAFTestCase:
    title: str
    stages: List[WAFTestStage] = field(default_factory=list)


@dataclass
class WAFTestMeta:
    name: str
    enabled: bool = True
    author: str = ""
    description: str = ""


@dataclass
class WAFTestFile:
    """One definition file: metadata plus its ordered test cases."""
    meta: WAFTestMeta
    tests: List[WAFTestCase] = field(default_factory=list)
    file_name: Optional[str] = None


def _parse_status(value: Any) -> Optional[List[int]]:
    if value is None:
        return None
    if isinstance(value, list):
        return [int(v) for v in value]
    return [int(value)]


def _parse_input(data: Dict[str, Any]) -> RequestSpec:
    port = data.get("port")
    return RequestSpec(
        dest_addr=data.get("dest_addr"),
        port=int(port) if port is not None else None,
        protocol=data.get("protocol"),
        method=data.get("method"),
        uri=data.get("uri"),
        version=data.get("version"),
        headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
        data=data.get("data"),
        encoded_request=data.get("encoded_request"),
        raw_request=data.get("raw_request"),
        autocomplete_headers=not data.get("stop_magic", False),
    )


def _parse_output(data: Dict[str, Any]) -> Expectation:
    return Expectation(
        status=_parse_status(data.get("status")),
        response_contains=data.get("response_contains") or None,
        log_contains=data.get("log_contains") or None,
        no_log_contains=data.get("no_log_contains") or None,
        expect_error=bool(data.get("expect_error", False)),
    )


def parse_test_file(document: Dict[str, Any], file_name: Optional[str] = None) -> WAFTestFile:
    """Build a test file from an already parsed YAML document."""
    if not isinstance(document, dict):
        raise DefinitionError(f"{file_name}: expected a mapping at the top level")

    meta_data = document.get("meta") or {}
    meta = WAFTestMeta(
        name=meta_data.get("name") or (Path(file_name).name if file_name else ""),
        enabled=bool(meta_data.get("enabled", True)),
        author=meta_data.get("author", ""),
        description=meta_data.get("description", ""),
    )

    tests = []
    for entry in document.get("tests") or []:
        title = entry.get("test_title")
        if not title:
            raise DefinitionError(f"{file_name}: test without test_title")
        stages = []
        for stage_entry in entry.get("stages") or []:
            stage = stage_entry.get("stage", stage_entry)
            try:
                stages.append(WAFTestStage(
                    input=_parse_input(stage.get("input") or {}),
                    output=_parse_output(stage.get("output") or {}),
                ))
            except DefinitionError as e:
                raise DefinitionError(f"{file_name}: {title}: {e}") from e
            except (TypeError, ValueError, AttributeError) as e:
                raise DefinitionError(f"{file_name}: {title}: malformed stage: {e}") from e
        tests.append(WAFTestCase(title=str(title), stages=stages))

    return WAFTestFile(meta=meta, tests=tests, file_name=file_name)


def load_tests(directory: str, pattern: str = "**/*.yaml") -> List[WAFTestFile]:
    """Load every definition file below ``directory``, sorted by path."""
    files = sorted(Path(directory).glob(pattern))
    logger.debug(f"Found {len(files)} test files in {directory}")

    test_files = []
    for path in files:
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise DefinitionError(f"{path}: malformed YAML: {e}") from e
        test_files.append(parse_test_file(document, str(path)))
    return test_files
