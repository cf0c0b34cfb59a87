#!/usr/bin/env python3
"""
WAF Replay

Replays declarative YAML test cases against a WAF-protected endpoint and
judges each stage from the HTTP response and the WAF's own log.

Only run it against systems you own or have explicit permission to test.
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from replay.config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_MAX_MARKER_LOG_LINES,
    DEFAULT_MAX_MARKER_RETRIES,
    DEFAULT_READ_TIMEOUT,
    Config,
    RunMode,
    load_config,
)
from replay.definitions import load_tests
from replay.errors import ReplayError
from replay.reporter import Reporter
from replay.runner import run

console = Console()

BANNER = """
╔═══════════════════════════════════════════════════════════════════╗
║                    WAF Replay Test Runner                         ║
║                                                                   ║
║  Only test systems you own or have explicit permission to test    ║
╚═══════════════════════════════════════════════════════════════════╝
"""


def display_banner():
    console.print(Panel(BANNER, style="bold blue"))


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def build_config(args) -> Config:
    """Merge the config file (if any) with command-line flags."""
    config = Config()
    if args.config:
        config = load_config(args.config, config)

    if args.log_file:
        config.log_file = args.log_file
    if args.cloud:
        config.run_mode = RunMode.CLOUD

    config.include = args.include
    config.exclude = args.exclude
    config.connect_timeout = args.connect_timeout
    config.read_timeout = args.read_timeout
    config.max_marker_retries = args.max_marker_retries
    config.max_marker_log_lines = args.max_marker_log_lines
    config.show_time = args.time
    config.show_only_failed = args.show_failures_only
    config.output_file = args.output
    config.verbose = args.verbose
    return config


def run_tests(config: Config, directory: str) -> int:
    """Execute the tests found in ``directory``; returns the number of failed stages."""
    config.validate()
    tests = load_tests(directory)
    console.print(f"[bold cyan]Loaded {len(tests)} test files from {directory}[/]\n")

    reporter = Reporter(
        console=console,
        show_only_failed=config.show_only_failed,
        show_time=config.show_time,
        output_file=config.output_file,
    )
    run_context = asyncio.run(run(tests, config, reporter))
    return run_context.stats.total_failed()


def main():
    parser = argparse.ArgumentParser(
        description="WAF regression test runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all tests below ./tests, reading the WAF log
  python waf_replay.py --dir tests --log-file /var/log/modsec_audit.log

  # Only tests whose title starts with 920
  python waf_replay.py --dir tests --config .ftw.yaml --include '^920'

  # No log access: judge by response only
  python waf_replay.py --dir tests --cloud --show-failures-only
        """
    )

    parser.add_argument("-d", "--dir", default=".", help="Recursively find yaml tests in this directory")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument("-i", "--include", help="Include only tests matching this regexp")
    parser.add_argument("-e", "--exclude", help="Exclude tests matching this regexp")
    parser.add_argument("--log-file", help="WAF log file to search for markers")
    parser.add_argument("--cloud", action="store_true", help="Cloud mode: no log access, judge by response only")
    parser.add_argument("--connect-timeout", type=float, default=DEFAULT_CONNECT_TIMEOUT,
                        help=f"Timeout in seconds for connecting to endpoints (default: {DEFAULT_CONNECT_TIMEOUT})")
    parser.add_argument("--read-timeout", type=float, default=DEFAULT_READ_TIMEOUT,
                        help=f"Timeout in seconds for receiving responses (default: {DEFAULT_READ_TIMEOUT})")
    parser.add_argument("--max-marker-retries", type=int, default=DEFAULT_MAX_MARKER_RETRIES,
                        help="Maximum number of times the search for log markers will be repeated; "
                             "each time an additional request is sent to the web server")
    parser.add_argument("--max-marker-log-lines", type=int, default=DEFAULT_MAX_MARKER_LOG_LINES,
                        help="Maximum number of log lines to search for a marker")
    parser.add_argument("-t", "--time", action="store_true", help="Show time spent per test")
    parser.add_argument("--show-failures-only", action="store_true", help="Show only the results of failed tests")
    parser.add_argument("-o", "--output", help="Output report file path (.json for JSON)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.include and args.exclude:
        parser.error(f"you need to choose one: use --include ({args.include}) or --exclude ({args.exclude})")

    setup_logging(args.verbose)
    display_banner()

    try:
        failed = run_tests(build_config(args), args.dir)
    except ReplayError as e:
        console.print(f"[bold red]Error:[/] {e}")
        sys.exit(1)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
