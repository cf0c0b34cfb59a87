"""Stage verdicts and run statistics."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


class Verdict(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    FORCE_PASS = "forcepass"
    FORCE_FAIL = "forcefail"


@dataclass
class StageResult:
    title: str
    verdict: Verdict
    elapsed: float = 0.0
    round_trip: float = 0.0


@dataclass
class RunStats:
    """Results recorded per verdict; entries are only ever appended."""
    results: List[StageResult] = field(default_factory=list)
    run: int = 0
    total_time: float = 0.0
    _scored: Set[str] = field(default_factory=set, repr=False)

    def add_result(self, verdict: Verdict, title: str, elapsed: float = 0.0,
                   round_trip: float = 0.0, stage_id: Optional[str] = None):
        if stage_id is not None:
            if stage_id in self._scored:
                raise RuntimeError(f"stage {stage_id} of {title} was already scored")
            self._scored.add(stage_id)
        self.results.append(StageResult(title, verdict, elapsed, round_trip))

    def add_run_time(self, elapsed: float):
        self.run += 1
        self.total_time += elapsed

    def titles(self, verdict: Verdict) -> List[str]:
        return [r.title for r in self.results if r.verdict is verdict]

    def count(self, verdict: Verdict) -> int:
        return sum(1 for r in self.results if r.verdict is verdict)

    def counts(self) -> Dict[Verdict, int]:
        return {verdict: self.count(verdict) for verdict in Verdict}

    def total_failed(self) -> int:
        return self.count(Verdict.FAILED) + self.count(Verdict.FORCE_FAIL)

    def slowest(self, limit: int = 5) -> List[StageResult]:
        timed = [r for r in self.results if r.verdict in (Verdict.SUCCESS, Verdict.FAILED)]
        return sorted(timed, key=lambda r: r.elapsed, reverse=True)[:limit]

    def to_dict(self) -> Dict:
        return {
            "run": self.run,
            "total_time": self.total_time,
            "counts": {verdict.value: count for verdict, count in self.counts().items()},
            "failed": self.titles(Verdict.FAILED) + self.titles(Verdict.FORCE_FAIL),
            "results": [
                {
                    "title": r.title,
                    "verdict": r.verdict.value,
                    "elapsed": r.elapsed,
                    "round_trip": r.round_trip,
                }
                for r in self.results
            ],
        }
