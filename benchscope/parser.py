"""
Parser for ``go test -bench`` result lines.

A result line looks like::

    BenchmarkSort-8   1000000   1234 ns/op   12.50 MB/s   512 B/op   10 allocs/op

The throughput, bytes and allocation fields are each optional but appear in
that order when present. Any other line (``goos:``, ``PASS``, ``ok`` ...) is
ignored.

The parser works in three modes that can be combined:

- batch: :func:`parse_output` over a complete blob of text
- streaming with a callback: ``OutputParser(on_result=...)``
- streaming with verbose passthrough: ``OutputParser(verbose=sys.stdout)``
"""

import logging
import re
from typing import Callable, Iterable, List, Optional, TextIO

from .errors import NoResultsFound
from .models import BenchmarkResult

logger = logging.getLogger(__name__)

BENCH_LINE = re.compile(
    r"^Benchmark(\S+)\s+(\d+)\s+([\d.]+)\s+ns/op"
    r"(?:\s+([\d.]+)\s+MB/s)?"
    r"(?:\s+(\d+)\s+B/op)?"
    r"(?:\s+(\d+)\s+allocs/op)?"
)

ResultCallback = Callable[[BenchmarkResult], None]


def _optional_int(text: Optional[str]) -> int:
    if not text:
        return 0
    try:
        return int(text)
    except ValueError:
        return 0


def _optional_float(text: Optional[str]) -> float:
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return 0.0


def parse_line(line: str) -> Optional[BenchmarkResult]:
    """Parse one line of benchmark output.

    Args:
        line: A single line, with or without its trailing newline.

    Returns:
        A BenchmarkResult, or None if the line is not a result line.
    """
    match = BENCH_LINE.match(line.rstrip("\r\n"))
    if match is None:
        return None

    name, iterations, ns_per_op, mb_per_sec, bytes_per_op, allocs_per_op = match.groups()
    try:
        ns = float(ns_per_op)
    except ValueError:
        # "1.2.3" satisfies [\d.]+ but is not a measurement
        logger.debug("Ignoring line with malformed ns/op value: %r", line)
        return None

    return BenchmarkResult(
        name=name,
        iterations=int(iterations),
        ns_per_op=ns,
        bytes_per_op=_optional_int(bytes_per_op),
        allocs_per_op=_optional_int(allocs_per_op),
        mb_per_sec=_optional_float(mb_per_sec),
    )


class OutputParser:
    """Line-oriented result parser with optional progress and passthrough.

    Args:
        on_result: Called once per parsed result, as soon as its line arrives.
        verbose: Text sink that receives every raw line, matching or not.
    """

    def __init__(self, on_result: Optional[ResultCallback] = None,
                 verbose: Optional[TextIO] = None):
        self.on_result = on_result
        self.verbose = verbose

    def feed(self, line: str) -> Optional[BenchmarkResult]:
        """Process a single line and return its result, if any."""
        if self.verbose is not None:
            self.verbose.write(line if line.endswith("\n") else line + "\n")
            self.verbose.flush()

        result = parse_line(line)
        if result is not None and self.on_result is not None:
            self.on_result(result)
        return result

    def stream(self, lines: Iterable[str]) -> List[BenchmarkResult]:
        """Consume ``lines`` until exhausted and return every parsed result.

        ``lines`` may be a live pipe; results are reported through
        ``on_result`` while the producer is still running.

        Raises:
            NoResultsFound: If no line matched.
        """
        results = []
        for line in lines:
            result = self.feed(line)
            if result is not None:
                results.append(result)

        if not results:
            raise NoResultsFound()
        return results


def parse_output(text: str) -> List[BenchmarkResult]:
    """Parse a complete blob of benchmark output.

    Raises:
        NoResultsFound: If the text has no result lines.
    """
    return OutputParser().stream(text.splitlines())
