"""Console and file reporting for replay runs."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .results import RunStats, Verdict

logger = logging.getLogger(__name__)

VERDICT_STYLES = {
    Verdict.SUCCESS: "green",
    Verdict.FAILED: "red",
    Verdict.SKIPPED: "dim",
    Verdict.IGNORED: "cyan",
    Verdict.FORCE_PASS: "yellow",
    Verdict.FORCE_FAIL: "magenta",
}


class Reporter:
    """Per-stage result lines and the end-of-run summary."""

    def __init__(self, console: Optional[Console] = None, show_only_failed: bool = False,
                 show_time: bool = False, output_file: Optional[str] = None):
        self.console = console or Console()
        self.show_only_failed = show_only_failed
        self.show_time = show_time
        self.output_file = output_file
        self.start_time = datetime.now()

    def start(self):
        self.start_time = datetime.now()
        self.console.print("[bold cyan]** Running WAF replay![/]")

    def executing_file(self, name: str):
        if not self.show_only_failed:
            self.console.print(f"[bold]=> executing tests in file {name}[/]")

    def skipping(self, title: str, disabled: bool):
        if disabled and not self.show_only_failed:
            self.console.print(f"\tskipping {title} - (enabled: false) in file.", style="dim")

    def running(self, title: str):
        if not self.show_only_failed:
            self.console.print(f"\trunning {title}: ", end="")

    def display_result(self, title: str, verdict: Verdict, stage_time: float = 0.0, round_trip: float = 0.0):
        timing = f" in {stage_time:.3f}s (RTT {round_trip * 1000:.1f}ms)" if self.show_time else ""

        if verdict is Verdict.SUCCESS:
            if not self.show_only_failed:
                self.console.print(f"[green]+ passed{timing}[/]")
        elif verdict is Verdict.FAILED:
            prefix = f"\t{title}: " if self.show_only_failed else ""
            self.console.print(f"{prefix}[bold red]- failed{timing}[/]")
        elif verdict is Verdict.IGNORED:
            if not self.show_only_failed:
                self.console.print("[cyan]test ignored[/]")
        elif verdict is Verdict.FORCE_FAIL:
            prefix = f"\t{title}: " if self.show_only_failed else ""
            self.console.print(f"{prefix}[magenta]test forced to fail[/]")
        elif verdict is Verdict.FORCE_PASS:
            if not self.show_only_failed:
                self.console.print("[yellow]test forced to pass[/]")

    def print_summary(self, stats: RunStats):
        self.console.print("\n")
        self.console.print(Panel("RUN SUMMARY", style="bold green"))

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Result", style="cyan")
        table.add_column("Count", justify="right")

        for verdict, count in stats.counts().items():
            style = VERDICT_STYLES[verdict]
            table.add_row(f"[{style}]{verdict.value}[/]", str(count))

        self.console.print(table)
        self.console.print(f"[bold]Stages run:[/] {stats.run} in {stats.total_time:.2f} seconds")

        if self.show_time and stats.run:
            slow_table = Table(title="Slowest stages", show_header=True, header_style="bold magenta")
            slow_table.add_column("Test", style="yellow")
            slow_table.add_column("Time", justify="right")
            slow_table.add_column("RTT", justify="right")
            for result in stats.slowest():
                slow_table.add_row(result.title, f"{result.elapsed:.3f}s", f"{result.round_trip * 1000:.1f}ms")
            self.console.print(slow_table)

        failed = stats.total_failed()
        if failed:
            self.console.print(f"\n[bold red]Failed {failed} tests:[/]")
            for title in stats.titles(Verdict.FAILED) + stats.titles(Verdict.FORCE_FAIL):
                self.console.print(f"  • {title}")
        else:
            self.console.print("\n[bold green]All tests passed![/]")

        if self.output_file:
            self.save_report(stats)

    def save_report(self, stats: RunStats):
        """Save the run statistics to ``output_file`` (JSON for .json, text otherwise)."""
        end_time = datetime.now()
        report_data = {
            "metadata": {
                "start_time": self.start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "duration_seconds": (end_time - self.start_time).total_seconds(),
            },
            "stats": stats.to_dict(),
        }

        output_path = Path(self.output_file)
        if output_path.suffix == ".json":
            with open(output_path, "w") as f:
                json.dump(report_data, f, indent=2)
        else:
            with open(output_path, "w") as f:
                f.write(self._generate_text_report(report_data))

        logger.debug(f"Report written to {output_path}")
        self.console.print(f"\n[bold green]Report saved to {self.output_file}[/]")

    def _generate_text_report(self, report_data: Dict) -> str:
        stats = report_data["stats"]
        lines = [
            "=" * 60,
            "WAF REPLAY REPORT",
            "=" * 60,
            "",
            f"Duration: {report_data['metadata']['duration_seconds']:.2f} seconds",
            f"Start Time: {report_data['metadata']['start_time']}",
            f"End Time: {report_data['metadata']['end_time']}",
            "",
            "-" * 60,
            "SUMMARY",
            "-" * 60,
        ]
        for name, count in stats["counts"].items():
            lines.append(f"{name}: {count}")

        if stats["failed"]:
            lines.extend(["", "FAILED:"])
            lines.extend(f"  - {title}" for title in stats["failed"])

        return "\n".join(lines) + "\n"
