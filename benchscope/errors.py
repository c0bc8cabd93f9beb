"""
Error taxonomy.

Fatal errors derive from :class:`BenchscopeError` and abort the command.
Degraded-profiling conditions are :class:`UserWarning` subclasses; they are
logged and never propagate out of the pipeline.
"""

from typing import Iterable, Optional


class BenchscopeError(Exception):
    """Base class for fatal errors, carrying optional hints for the user."""

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 suggestions: Iterable[str] = ()):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.suggestions = list(suggestions)

    def __str__(self) -> str:
        lines = [self.message]
        if self.cause is not None:
            lines.append(f"  Cause: {self.cause}")
        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            lines.extend(f"  -> {hint}" for hint in self.suggestions)
        return "\n".join(lines)


class ConfigError(BenchscopeError):
    """Invalid run configuration."""


class NoBenchmarksFound(BenchscopeError):
    """Scanning or filtering yielded no benchmark functions."""

    def __init__(self, bench_filter: str, location: str = ""):
        where = f" in {location}" if location else ""
        super().__init__(
            f"No benchmarks match filter: {bench_filter}{where}",
            suggestions=[
                "Check the -bench pattern; it is a regular expression",
                "Benchmark functions must look like: func BenchmarkXxx(b *testing.B)",
            ],
        )
        self.bench_filter = bench_filter
        self.location = location


class NoResultsFound(BenchscopeError):
    """The process ran but produced no parseable benchmark-result line."""

    def __init__(self, message: str = "No benchmark results found in output"):
        super().__init__(
            message,
            suggestions=["Run with --verbose to see the raw toolchain output"],
        )


class ExecutionFailed(BenchscopeError):
    """The toolchain or harness could not be spawned or exited non-zero.

    ``stderr`` is the captured diagnostic text, kept verbatim.
    """

    def __init__(self, cause: str, stderr: str = "",
                 original: Optional[BaseException] = None):
        message = f"Benchmark execution failed: {cause}"
        if stderr:
            message += f"\nStderr: {stderr}"
        super().__init__(message, cause=original)
        self.reason = cause
        self.stderr = stderr


class ToolchainNotFound(ExecutionFailed):
    """The Go toolchain binary is not on PATH."""

    def __init__(self, binary: str, original: Optional[BaseException] = None):
        super().__init__(f"Go toolchain not found: {binary}", original=original)
        self.binary = binary
        self.suggestions = [
            "Install Go from https://go.dev/dl/",
            "Or point BENCHSCOPE_GO at the go binary",
        ]


class CompileFailed(BenchscopeError):
    """The generated direct-execution harness did not build."""

    def __init__(self, stderr: str, source: str):
        super().__init__(
            f"Failed to compile harness\nStderr: {stderr}\nHarness:\n{source}",
            suggestions=[
                "Benchmark functions must be exported by a package that can be imported",
                "Functions declared only in _test.go files are not importable; "
                "use the default go test strategy instead",
            ],
        )
        self.stderr = stderr
        self.source = source


class ModuleRootNotFound(BenchscopeError):
    """No go.mod was found walking upward from the working directory."""

    def __init__(self, start: str):
        super().__init__(
            f"go.mod not found above {start}",
            suggestions=["Run from inside a Go module"],
        )
        self.start = start


class ProfileFormatError(BenchscopeError):
    """A sample set could not be decoded or violates its shape invariant."""


class ProfileCaptureWarning(UserWarning):
    """One sampling stream failed; the run continues with partial profiling."""


class AnalysisWarning(UserWarning):
    """Profile analysis failed; the run is kept without a summary."""
