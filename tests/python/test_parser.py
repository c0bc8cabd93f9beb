"""
Tests for parsing benchmark-result lines.
"""

import io

import pytest

from benchscope import BenchmarkResult, NoResultsFound, OutputParser, parse_line, parse_output


class TestParseLine:
    """Single-line parsing."""

    def test_full_line(self):
        """All optional fields present."""
        result = parse_line(
            "BenchmarkParse-8   1000000   1024 ns/op   95.50 MB/s   512 B/op   10 allocs/op")
        assert result.name == "Parse-8"
        assert result.iterations == 1000000
        assert result.ns_per_op == 1024.0
        assert result.mb_per_sec == 95.5
        assert result.bytes_per_op == 512
        assert result.allocs_per_op == 10

    def test_time_only(self):
        """Lines without -benchmem columns default the rest to zero."""
        result = parse_line("BenchmarkNoMem-8\t50000000\t        23.5 ns/op")
        assert result.ns_per_op == 23.5
        assert result.bytes_per_op == 0

    def test_same_line_twice(self):
        line = "BenchmarkSort-8   5000   105432 ns/op   4096 B/op   3 allocs/op"
        assert parse_line(line) == parse_line(line)
        assert result.allocs_per_op == 0
        assert result.mb_per_sec == 0.0

    def test_memory_without_throughput(self):
        result = parse_line("BenchmarkSort-4  10000  105432 ns/op  8192 B/op  1 allocs/op")
        assert result.bytes_per_op == 8192
        assert result.allocs_per_op == 1
        assert result.mb_per_sec == 0.0

    def test_sub_benchmark_name_kept(self):
        """Everything up to the first whitespace is the name."""
        result = parse_line("BenchmarkMap/size=100-8  500  2400 ns/op")
        assert result.name == "Map/size=100-8"

    def test_trailing_newline(self):
        assert parse_line("BenchmarkX-2 10 5 ns/op\n").name == "X-2"

    @pytest.mark.parametrize("line", [
        "goos: linux",
        "PASS",
        "ok  \texample.com/demo\t3.214s",
        "--- FAIL: BenchmarkBroken",
        "",
        "  BenchmarkIndented-8 10 5 ns/op",
        "BenchmarkNoUnit-8 10 5",
    ])
    def test_non_result_lines(self, line):
        """Anything that is not a result line is ignored."""
        assert parse_line(line) is None

    def test_malformed_ns_value(self):
        """A value the regex accepts but float() rejects drops the line."""
        assert parse_line("BenchmarkBad-8 10 1.2.3 ns/op") is None


class TestOutputParser:
    """Streaming parser behavior."""

    def test_stream_collects_in_order(self, sample_output):
        results = OutputParser().stream(io.StringIO(sample_output))
        assert [r.name for r in results] == ["Sort-8", "Parse-8", "NoMem-8"]

    def test_callback_fires_per_result(self, sample_output):
        """The callback sees each result once, in output order."""
        seen = []
        OutputParser(on_result=seen.append).stream(sample_output.splitlines())
        assert [r.name for r in seen] == ["Sort-8", "Parse-8", "NoMem-8"]

    def test_callback_runs_before_stream_ends(self):
        """Results are reported while lines are still arriving."""
        events = []

        def lines():
            events.append("line1")
            yield "BenchmarkA-8 10 5 ns/op\n"
            events.append("line2")
            yield "BenchmarkB-8 10 5 ns/op\n"

        OutputParser(on_result=lambda r: events.append(r.name)).stream(lines())
        assert events == ["line1", "A-8", "line2", "B-8"]

    def test_verbose_passthrough(self, sample_output):
        """Every raw line, matching or not, reaches the verbose sink."""
        sink = io.StringIO()
        OutputParser(verbose=sink).stream(sample_output.splitlines())
        assert sink.getvalue() == sample_output

    def test_verbose_and_callback_combined(self):
        sink = io.StringIO()
        seen = []
        parser = OutputParser(on_result=seen.append, verbose=sink)
        parser.feed("goos: linux")
        parser.feed("BenchmarkA-8 10 5 ns/op")
        assert len(seen) == 1
        assert sink.getvalue() == "goos: linux\nBenchmarkA-8 10 5 ns/op\n"

    def test_no_results_raises(self):
        with pytest.raises(NoResultsFound):
            OutputParser().stream(["PASS", "ok  \tpkg\t0.01s"])


class TestParseOutput:
    """Batch parsing."""

    def test_parse_output(self, sample_output):
        results = parse_output(sample_output)
        assert len(results) == 3
        assert results[0].ns_per_op == 105432.0

    def test_single_result_blob(self):
        results = parse_output("BenchmarkA-8 1000 100.0 ns/op 64 B/op 1 allocs/op\nPASS")
        assert results == [BenchmarkResult("A-8", 1000, 100.0, bytes_per_op=64,
                                           allocs_per_op=1, mb_per_sec=0.0)]

    def test_empty_output(self):
        with pytest.raises(NoResultsFound) as excinfo:
            parse_output("")
        assert "--verbose" in str(excinfo.value)


class TestParserBenchmarks:
    """Throughput of the line parser."""

    @pytest.mark.benchmark
    def test_parse_10k_lines(self, benchmark):
        """Benchmark parsing 10,000 mixed output lines."""
        lines = []
        for i in range(5000):
            lines.append(f"BenchmarkCase{i}-8\t{i + 1}\t{i * 1.5:.1f} ns/op\t{i} B/op\t1 allocs/op")
            lines.append("noise line")
        results = benchmark(lambda: OutputParser().stream(lines))
        assert len(results) == 5000
