"""
benchscope: run Go benchmarks and turn their profiles into findings.

Two execution strategies produce a :class:`BenchmarkRun`:

- :class:`ProcessExecutor` drives ``go test -bench`` and parses its output
  as it streams.
- :class:`DirectExecutor` scans the source for benchmark functions,
  generates a driver program, builds and runs it.

When CPU or heap sampling is enabled, :class:`ProfileCapture` stores the raw
pprof data and :class:`ProfileAnalyzer` attaches a :class:`ProfileSummary`
with hot functions, hot paths, leak candidates and suggestions.
"""

from .analyzer import (
    AnalyzerThresholds,
    ProfileAnalyzer,
    analyze_profiles,
    clean_function_name,
    format_bytes,
)
from .capture import ProfileCapture, ProfileOptions
from .config import RunConfig, parse_profile_flag
from .direct import DirectExecutor
from .errors import (
    AnalysisWarning,
    BenchscopeError,
    CompileFailed,
    ConfigError,
    ExecutionFailed,
    ModuleRootNotFound,
    NoBenchmarksFound,
    NoResultsFound,
    ProfileCaptureWarning,
    ProfileFormatError,
    ToolchainNotFound,
)
from .executor import ExecutorState, ProcessExecutor
from .harness import generate_harness, render_harness
from .models import (
    BenchmarkResult,
    BenchmarkRun,
    FunctionProfile,
    HotPath,
    MemoryLeak,
    ProfileSummary,
    Suggestion,
)
from .parser import OutputParser, parse_line, parse_output
from .pprof import SampleSet, parse_profile
from .scanner import BenchmarkFunction, SourceScanner, filter_benchmarks
from .storage import Storage

__version__ = "0.1.0"
__author__ = "benchscope Contributors"

__all__ = [
    "AnalysisWarning",
    "AnalyzerThresholds",
    "BenchmarkFunction",
    "BenchmarkResult",
    "BenchmarkRun",
    "BenchscopeError",
    "CompileFailed",
    "ConfigError",
    "DirectExecutor",
    "ExecutionFailed",
    "ExecutorState",
    "FunctionProfile",
    "HotPath",
    "MemoryLeak",
    "ModuleRootNotFound",
    "NoBenchmarksFound",
    "NoResultsFound",
    "OutputParser",
    "ProcessExecutor",
    "ProfileAnalyzer",
    "ProfileCapture",
    "ProfileCaptureWarning",
    "ProfileFormatError",
    "ProfileOptions",
    "ProfileSummary",
    "RunConfig",
    "SampleSet",
    "SourceScanner",
    "Storage",
    "Suggestion",
    "ToolchainNotFound",
    "analyze_profiles",
    "clean_function_name",
    "filter_benchmarks",
    "format_bytes",
    "generate_harness",
    "parse_line",
    "parse_output",
    "parse_profile",
    "parse_profile_flag",
    "render_harness",
]
