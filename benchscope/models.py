"""
Data model shared by the executors, the profile analyzer and storage.

Every record converts to and from the snake_case JSON shape written by
:class:`benchscope.storage.Storage`. Optional fields are left out of the
JSON when they hold their zero value.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class BenchmarkResult:
    """One parsed benchmark-result line.

    ``name`` has the ``Benchmark`` prefix removed and keeps the
    ``-GOMAXPROCS`` suffix, e.g. ``"Sort-8"``.
    """
    name: str
    iterations: int
    ns_per_op: float
    bytes_per_op: int = 0
    allocs_per_op: int = 0
    mb_per_sec: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "iterations": self.iterations,
            "ns_per_op": self.ns_per_op,
        }
        if self.bytes_per_op:
            data["bytes_per_op"] = self.bytes_per_op
        if self.allocs_per_op:
            data["allocs_per_op"] = self.allocs_per_op
        if self.mb_per_sec:
            data["mb_per_sec"] = self.mb_per_sec
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BenchmarkResult":
        return cls(
            name=data["name"],
            iterations=int(data["iterations"]),
            ns_per_op=float(data["ns_per_op"]),
            bytes_per_op=int(data.get("bytes_per_op", 0)),
            allocs_per_op=int(data.get("allocs_per_op", 0)),
            mb_per_sec=float(data.get("mb_per_sec", 0.0)),
        )


@dataclass
class FunctionProfile:
    """Flat and cumulative share of one function in a sample set."""
    name: str
    flat_percent: float
    cum_percent: float
    flat_value: int
    cum_value: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "flat_percent": self.flat_percent,
            "cum_percent": self.cum_percent,
            "flat_value": self.flat_value,
            "cum_value": self.cum_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FunctionProfile":
        return cls(
            name=data["name"],
            flat_percent=float(data["flat_percent"]),
            cum_percent=float(data["cum_percent"]),
            flat_value=int(data["flat_value"]),
            cum_value=int(data["cum_value"]),
        )


@dataclass
class HotPath:
    """A distinct call stack (root first) carrying a large share of samples."""
    path: List[str]
    percentage: float
    occurrences: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": list(self.path),
            "percentage": self.percentage,
            "occurrences": self.occurrences,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HotPath":
        return cls(
            path=list(data["path"]),
            percentage=float(data["percentage"]),
            occurrences=int(data["occurrences"]),
            description=data.get("description", ""),
        )


@dataclass
class MemoryLeak:
    """A function flagged by the allocated-versus-in-use heuristic."""
    function: str
    allocations: int
    bytes: int
    severity: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "function": self.function,
            "allocations": self.allocations,
            "bytes": self.bytes,
            "severity": self.severity,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryLeak":
        return cls(
            function=data["function"],
            allocations=int(data["allocations"]),
            bytes=int(data["bytes"]),
            severity=data["severity"],
            description=data.get("description", ""),
        )


SUGGESTION_TYPES = ("cpu", "memory", "algorithm", "general")
SEVERITIES = ("low", "medium", "high")


@dataclass
class Suggestion:
    """An optimization hint derived from a profile summary."""
    type: str
    severity: str
    function: str
    issue: str
    suggestion: str
    impact: str

    def __post_init__(self):
        if self.type not in SUGGESTION_TYPES:
            raise ValueError(f"Unknown suggestion type: {self.type!r}")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {self.severity!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "function": self.function,
            "issue": self.issue,
            "suggestion": self.suggestion,
            "impact": self.impact,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Suggestion":
        return cls(**{key: data[key] for key in (
            "type", "severity", "function", "issue", "suggestion", "impact")})


@dataclass
class ProfileSummary:
    """Everything the analyzer derives from one CPU and one memory sample set.

    A summary is built once per analysis and not mutated afterwards; use
    :meth:`with_suggestions` to get a copy with a different suggestion list.
    """
    cpu_top_functions: List[FunctionProfile] = field(default_factory=list)
    memory_top_functions: List[FunctionProfile] = field(default_factory=list)
    memory_leaks: List[MemoryLeak] = field(default_factory=list)
    hot_paths: List[HotPath] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)
    total_cpu_samples: int = 0
    total_memory_bytes: int = 0

    def with_suggestions(self, suggestions: List[Suggestion]) -> "ProfileSummary":
        """Return a copy of this summary with ``suggestions`` replaced."""
        return replace(self, suggestions=list(suggestions))

    def is_empty(self) -> bool:
        return not (self.cpu_top_functions or self.memory_top_functions
                    or self.memory_leaks or self.hot_paths or self.suggestions)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key in ("cpu_top_functions", "memory_top_functions",
                    "memory_leaks", "hot_paths", "suggestions"):
            items = getattr(self, key)
            if items:
                data[key] = [item.to_dict() for item in items]
        if self.total_cpu_samples:
            data["total_cpu_samples"] = self.total_cpu_samples
        if self.total_memory_bytes:
            data["total_memory_bytes"] = self.total_memory_bytes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileSummary":
        return cls(
            cpu_top_functions=[FunctionProfile.from_dict(d)
                               for d in data.get("cpu_top_functions", [])],
            memory_top_functions=[FunctionProfile.from_dict(d)
                                  for d in data.get("memory_top_functions", [])],
            memory_leaks=[MemoryLeak.from_dict(d) for d in data.get("memory_leaks", [])],
            hot_paths=[HotPath.from_dict(d) for d in data.get("hot_paths", [])],
            suggestions=[Suggestion.from_dict(d) for d in data.get("suggestions", [])],
            total_cpu_samples=int(data.get("total_cpu_samples", 0)),
            total_memory_bytes=int(data.get("total_memory_bytes", 0)),
        )


@dataclass
class BenchmarkRun:
    """A complete benchmark run with its metadata.

    Created by an executor, enriched by profile capture, then handed to
    storage. ``duration`` is wall-clock seconds from invocation start to
    process exit.
    """
    id: str
    timestamp: datetime
    package_path: str
    toolchain_version: str
    results: List[BenchmarkResult]
    command: str
    duration: float
    cpu_profile_ref: Optional[str] = None
    memory_profile_ref: Optional[str] = None
    profile_summary: Optional[ProfileSummary] = None

    @property
    def has_profiles(self) -> bool:
        return bool(self.cpu_profile_ref or self.memory_profile_ref)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "package": self.package_path,
            "toolchain_version": self.toolchain_version,
            "results": [result.to_dict() for result in self.results],
            "command": self.command,
            "duration": self.duration,
        }
        if self.cpu_profile_ref:
            data["cpu_profile"] = self.cpu_profile_ref
        if self.memory_profile_ref:
            data["memory_profile"] = self.memory_profile_ref
        if self.profile_summary is not None:
            data["profile_summary"] = self.profile_summary.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BenchmarkRun":
        summary = data.get("profile_summary")
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            package_path=data.get("package", ""),
            toolchain_version=data.get("toolchain_version", ""),
            results=[BenchmarkResult.from_dict(r) for r in data.get("results", [])],
            command=data.get("command", ""),
            duration=float(data.get("duration", 0.0)),
            cpu_profile_ref=data.get("cpu_profile"),
            memory_profile_ref=data.get("memory_profile"),
            profile_summary=ProfileSummary.from_dict(summary) if summary is not None else None,
        )


def generate_run_id(now: Optional[datetime] = None) -> str:
    """Return a timestamp-derived run ID such as ``run-1700000000``."""
    now = now or datetime.now()
    return f"run-{int(now.timestamp())}"
