"""
Profile analysis: turn CPU and heap sample sets into a ProfileSummary.

CPU
    The first value slot is the weight of each sample. The leaf frame gets
    the weight as *flat*, every frame on the stack gets it as *cumulative*
    (a function appearing twice in one stack is credited twice). The top
    functions by flat value are reported.

Hot paths
    Each sample's stack, root first and joined with ``" -> "``, is a path
    key. Paths are sorted by weight and reported while their share stays at
    or above the cutoff, up to a fixed number of paths.

Memory
    Uses the ``alloc_space`` and ``inuse_space`` slots. If either is missing
    the memory analysis is skipped.

Leaks
    A function whose allocated bytes exceed twice its in-use bytes and one
    MiB is reported as a leak candidate. This is a heuristic, not a proof:
    short-lived high-churn allocation trips it just as real retention does.

Suggestions
    Independent rules over the finished summary; each may add one entry.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import FunctionProfile, HotPath, MemoryLeak, ProfileSummary, Suggestion
from .pprof import SampleSet, parse_profile

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
PATH_SEPARATOR = " -> "
ALLOC_SPACE = "alloc_space"
INUSE_SPACE = "inuse_space"
SEVERITY_ORDER = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class AnalyzerThresholds:
    """Cutoffs used by the analysis. Percentages are 0-100."""
    top_functions: int = 10
    hot_path_cutoff: float = 5.0
    max_hot_paths: int = 5
    leak_ratio: int = 2
    leak_min_bytes: int = MIB
    leak_medium_bytes: int = 5 * MIB
    leak_high_bytes: int = 10 * MIB
    max_leaks: int = 5
    cpu_suggestion_percent: float = 30.0
    memory_suggestion_percent: float = 40.0
    hot_path_suggestion_percent: float = 25.0


DEFAULT_THRESHOLDS = AnalyzerThresholds()


def clean_function_name(name: str) -> str:
    """Strip the package path and any generic type parameters.

    >>> clean_function_name("github.com/acme/lib/sort.Slice[...]")
    'sort.Slice'
    """
    name = name.rsplit("/", 1)[-1]
    bracket = name.find("[")
    if bracket != -1:
        name = name[:bracket]
    return name


def format_bytes(count: int) -> str:
    """Human-readable byte count, e.g. ``1536 -> "1.5 KB"``."""
    unit = 1024
    if count < unit:
        return f"{count} B"
    div, exp = unit, 0
    n = count // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{count / div:.1f} {'KMGTPE'[exp]}B"


@dataclass
class _FuncStat:
    flat: int = 0
    cum: int = 0


@dataclass
class _LeakStat:
    allocated: int = 0
    inuse: int = 0
    count: int = 0


class ProfileAnalyzer:
    """Derive function rankings, hot paths, leaks and suggestions.

    Args:
        cpu: CPU sample set, if one was captured.
        memory: Heap sample set, if one was captured.
        thresholds: Cutoffs to apply; defaults to :data:`DEFAULT_THRESHOLDS`.
    """

    def __init__(self, cpu: Optional[SampleSet] = None, memory: Optional[SampleSet] = None,
                 thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS):
        self.cpu = cpu
        self.memory = memory
        self.thresholds = thresholds

    def load_cpu_profile(self, data: bytes) -> None:
        """Decode and keep a CPU profile. Raises ProfileFormatError."""
        self.cpu = parse_profile(data)

    def load_memory_profile(self, data: bytes) -> None:
        """Decode and keep a heap profile. Raises ProfileFormatError."""
        self.memory = parse_profile(data)

    def analyze(self) -> ProfileSummary:
        """Build a summary from whichever sample sets are loaded."""
        cpu_top: List[FunctionProfile] = []
        hot_paths: List[HotPath] = []
        total_cpu = 0
        if self.cpu is not None:
            cpu_top, total_cpu = self.top_cpu_functions()
            hot_paths = self.hot_paths()

        memory_top: List[FunctionProfile] = []
        leaks: List[MemoryLeak] = []
        total_memory = 0
        if self.memory is not None:
            memory_top, total_memory = self.top_memory_functions()
            leaks = self.memory_leaks()

        summary = ProfileSummary(
            cpu_top_functions=cpu_top,
            memory_top_functions=memory_top,
            memory_leaks=leaks,
            hot_paths=hot_paths,
            total_cpu_samples=total_cpu,
            total_memory_bytes=total_memory,
        )
        return summary.with_suggestions(self.suggestions(summary))

    # CPU

    def top_cpu_functions(self) -> Tuple[List[FunctionProfile], int]:
        """Return the top functions by flat CPU weight and the total weight."""
        if self.cpu is None or not self.cpu.sample_types:
            return [], 0
        total = self.cpu.total(0)
        if total == 0:
            return [], 0

        stats: Dict[str, _FuncStat] = defaultdict(_FuncStat)
        for sample in self.cpu.samples:
            if not sample.stack:
                continue
            value = sample.values[0]
            stats[sample.stack[0]].flat += value
            for name in sample.stack:
                stats[name].cum += value

        return self._rank(stats, total), total

    def hot_paths(self) -> List[HotPath]:
        """Return the heaviest distinct call stacks at or above the cutoff."""
        if self.cpu is None or not self.cpu.sample_types:
            return []
        total = self.cpu.total(0)
        if total == 0:
            return []

        weights: Dict[str, int] = defaultdict(int)
        paths: Dict[str, List[str]] = {}
        for sample in self.cpu.samples:
            path = [clean_function_name(name) for name in reversed(sample.stack)]
            if not path:
                continue
            key = PATH_SEPARATOR.join(path)
            weights[key] += sample.values[0]
            paths.setdefault(key, path)

        result = []
        for key, weight in sorted(weights.items(), key=lambda item: item[1], reverse=True):
            percentage = weight / total * 100
            if percentage < self.thresholds.hot_path_cutoff:
                break
            if len(result) >= self.thresholds.max_hot_paths:
                break
            result.append(HotPath(
                path=paths[key],
                percentage=percentage,
                occurrences=weight,
                description=f"Critical path consuming {percentage:.1f}% of execution time",
            ))
        return result

    # Memory

    def top_memory_functions(self) -> Tuple[List[FunctionProfile], int]:
        """Return the top allocating functions and total allocated bytes.

        Returns nothing when the profile has no ``alloc_space`` stream.
        """
        if self.memory is None:
            return [], 0
        alloc_idx = self.memory.value_index(ALLOC_SPACE)
        inuse_idx = self.memory.value_index(INUSE_SPACE)
        if alloc_idx is None or inuse_idx is None:
            logger.debug("Memory profile lacks %s/%s, skipping memory analysis",
                         ALLOC_SPACE, INUSE_SPACE)
            return [], 0

        total = self.memory.total(alloc_idx)
        if total == 0:
            return [], 0

        stats: Dict[str, _FuncStat] = defaultdict(_FuncStat)
        for sample in self.memory.samples:
            if not sample.stack:
                continue
            value = sample.values[alloc_idx]
            stat = stats[sample.stack[0]]
            stat.flat += value
            stat.cum += value

        return self._rank(stats, total), total

    def memory_leaks(self) -> List[MemoryLeak]:
        """Apply the allocated-versus-in-use heuristic per leaf function."""
        if self.memory is None:
            return []
        alloc_idx = self.memory.value_index(ALLOC_SPACE)
        inuse_idx = self.memory.value_index(INUSE_SPACE)
        if alloc_idx is None or inuse_idx is None:
            return []

        t = self.thresholds
        stats: Dict[str, _LeakStat] = defaultdict(_LeakStat)
        for sample in self.memory.samples:
            allocated = sample.values[alloc_idx]
            if not sample.stack or allocated == 0:
                continue
            stat = stats[sample.stack[0]]
            stat.allocated += allocated
            stat.inuse += sample.values[inuse_idx]
            stat.count += 1

        leaks = []
        for name, stat in stats.items():
            if stat.allocated > stat.inuse * t.leak_ratio and stat.allocated > t.leak_min_bytes:
                if stat.allocated > t.leak_high_bytes:
                    severity = "high"
                elif stat.allocated > t.leak_medium_bytes:
                    severity = "medium"
                else:
                    severity = "low"
                leaks.append(MemoryLeak(
                    function=clean_function_name(name),
                    allocations=stat.count,
                    bytes=stat.allocated,
                    severity=severity,
                    description=(f"Allocated {format_bytes(stat.allocated)} but much less "
                                 f"in use - potential leak"),
                ))

        leaks.sort(key=lambda leak: (-SEVERITY_ORDER[leak.severity], -leak.bytes))
        return leaks[:t.max_leaks]

    # Suggestions

    def suggestions(self, summary: ProfileSummary) -> List[Suggestion]:
        """Generate suggestions from an already built summary.

        Every rule is evaluated; none suppresses another.
        """
        t = self.thresholds
        found = []

        if summary.cpu_top_functions:
            top = summary.cpu_top_functions[0]
            if top.flat_percent > t.cpu_suggestion_percent:
                found.append(Suggestion(
                    type="cpu",
                    severity="high",
                    function=top.name,
                    issue=f"Function consumes {top.flat_percent:.1f}% of CPU time",
                    suggestion=("Consider optimizing this hot function - profile it in isolation, "
                                "look for unnecessary allocations, consider algorithmic improvements"),
                    impact=f"Could improve overall performance by up to {top.flat_percent * 0.7:.0f}%",
                ))

        if summary.memory_top_functions:
            top = summary.memory_top_functions[0]
            if top.flat_percent > t.memory_suggestion_percent:
                found.append(Suggestion(
                    type="memory",
                    severity="high",
                    function=top.name,
                    issue=f"Function allocates {top.flat_percent:.1f}% of total memory",
                    suggestion=("Consider using sync.Pool for reusable objects, or pre-allocate "
                                "slices/maps with appropriate capacity"),
                    impact=(f"Removing these allocations would cut allocated bytes by up to "
                            f"{top.flat_percent:.0f}% and reduce GC overhead"),
                ))

        for leak in summary.memory_leaks:
            if leak.severity == "high":
                found.append(Suggestion(
                    type="memory",
                    severity="high",
                    function=leak.function,
                    issue=f"Potential memory leak detected ({format_bytes(leak.bytes)} allocated)",
                    suggestion=("Review this function for retained references, unclosed resources, "
                                "or unbounded caches"),
                    impact="Could prevent memory growth and improve stability",
                ))

        if summary.hot_paths:
            path = summary.hot_paths[0]
            if path.percentage > t.hot_path_suggestion_percent:
                found.append(Suggestion(
                    type="cpu",
                    severity="medium",
                    function=PATH_SEPARATOR.join(path.path),
                    issue=f"Hot path consuming {path.percentage:.1f}% of execution",
                    suggestion=("Analyze this call chain for optimization opportunities - consider "
                                "caching, lazy evaluation, or algorithmic improvements"),
                    impact=(f"Optimizing this path could improve performance by "
                            f"{path.percentage * 0.5:.0f}-{path.percentage * 0.8:.0f}%"),
                ))

        return found

    def _rank(self, stats: Dict[str, _FuncStat], total: int) -> List[FunctionProfile]:
        ranked = sorted(stats.items(), key=lambda item: item[1].flat, reverse=True)
        return [
            FunctionProfile(
                name=clean_function_name(name),
                flat_percent=stat.flat / total * 100,
                cum_percent=stat.cum / total * 100,
                flat_value=stat.flat,
                cum_value=stat.cum,
            )
            for name, stat in ranked[:self.thresholds.top_functions]
        ]


def analyze_profiles(cpu_data: Optional[bytes] = None, memory_data: Optional[bytes] = None,
                     thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS) -> ProfileSummary:
    """Decode raw pprof bytes for either stream and analyze them.

    Raises:
        ProfileFormatError: If a given profile cannot be decoded.
    """
    analyzer = ProfileAnalyzer(thresholds=thresholds)
    if cpu_data:
        analyzer.load_cpu_profile(cpu_data)
    if memory_data:
        analyzer.load_memory_profile(memory_data)
    return analyzer.analyze()
