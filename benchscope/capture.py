"""
Profile capture around a benchmark execution.

The executors ask :class:`ProfileCapture` for private output paths before
spawning, then hand the finished run back to :meth:`ProfileCapture.finalize`
which stores the raw profiles and attaches the analysis summary.

A failure in one stream never aborts the run: it is logged as a
:class:`~benchscope.errors.ProfileCaptureWarning` (or
:class:`~benchscope.errors.AnalysisWarning` when decoding or analysis fails)
and the other stream carries on.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Type, Union

from .analyzer import DEFAULT_THRESHOLDS, AnalyzerThresholds, ProfileAnalyzer
from .config import parse_profile_flag
from .errors import AnalysisWarning, BenchscopeError, ProfileCaptureWarning
from .models import BenchmarkRun
from .storage import Storage

logger = logging.getLogger(__name__)

CPU_PROFILE_NAME = "cpu.prof"
MEM_PROFILE_NAME = "mem.prof"


@dataclass
class ProfileOptions:
    """Which sampling streams to enable and where to store them."""
    enable_cpu: bool = False
    enable_memory: bool = False
    storage: Optional[Storage] = None

    @property
    def enabled(self) -> bool:
        return self.enable_cpu or self.enable_memory

    @classmethod
    def from_flag(cls, flag: str, storage: Optional[Storage] = None) -> "ProfileOptions":
        """Build options from a ``cpu,mem`` style flag."""
        enable_cpu, enable_memory = parse_profile_flag(flag)
        return cls(enable_cpu=enable_cpu, enable_memory=enable_memory, storage=storage)

    def describe(self) -> str:
        enabled = []
        if self.enable_cpu:
            enabled.append("CPU")
        if self.enable_memory:
            enabled.append("Memory")
        return ", ".join(enabled)


class ProfileCapture:
    """Coordinate sampling output files, storage and analysis for one run.

    Args:
        options: Streams to capture and the storage collaborator.
        thresholds: Analyzer cutoffs.
    """

    def __init__(self, options: ProfileOptions,
                 thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS):
        self.options = options
        self.thresholds = thresholds
        self.warnings: List[UserWarning] = []

    def profile_paths(self, directory: Union[str, Path]) -> Tuple[Optional[Path], Optional[Path]]:
        """Return (cpu_path, mem_path) inside ``directory`` for enabled streams."""
        directory = Path(directory)
        cpu_path = directory / CPU_PROFILE_NAME if self.options.enable_cpu else None
        mem_path = directory / MEM_PROFILE_NAME if self.options.enable_memory else None
        return cpu_path, mem_path

    @staticmethod
    def go_test_flags(cpu_path: Optional[Path], mem_path: Optional[Path]) -> List[str]:
        """Flags that make ``go test`` write the requested profiles.

        ``go test -memprofile`` runs a GC before writing the heap profile, so
        in-use numbers do not count garbage.
        """
        flags = []
        if cpu_path is not None:
            flags += ["-cpuprofile", str(cpu_path)]
        if mem_path is not None:
            flags += ["-memprofile", str(mem_path)]
        return flags

    def _warn(self, category: Type[UserWarning], message: str) -> None:
        warning = category(message)
        self.warnings.append(warning)
        logger.warning("%s: %s", category.__name__, message)

    def _read(self, path: Optional[Path], label: str) -> Optional[bytes]:
        if path is None:
            return None
        try:
            data = path.read_bytes()
        except OSError as exc:
            self._warn(ProfileCaptureWarning, f"failed to read {label} profile: {exc}")
            return None
        if not data:
            self._warn(ProfileCaptureWarning, f"{label} profile is empty")
            return None
        return data

    def _store(self, run: BenchmarkRun, kind: str, data: bytes) -> Optional[str]:
        storage = self.options.storage
        if storage is None:
            return None
        try:
            storage.save_profile(run.id, kind, data)
        except OSError as exc:
            self._warn(ProfileCaptureWarning, f"failed to save {kind} profile: {exc}")
            return None
        if kind == "cpu":
            return storage.get_cpu_profile_path(run.id)
        return storage.get_memory_profile_path(run.id)

    def finalize(self, run: BenchmarkRun, cpu_path: Optional[Path] = None,
                 mem_path: Optional[Path] = None) -> BenchmarkRun:
        """Store captured profiles and attach their analysis to ``run``.

        Must be called while the profile files still exist, i.e. before the
        executor's temporary directory is removed.

        Returns:
            The same run, with profile refs and summary filled in where
            capture and analysis succeeded.
        """
        analyzer = ProfileAnalyzer(thresholds=self.thresholds)
        loaded = False

        for kind, label, path, loader in (
            ("cpu", "CPU", cpu_path, analyzer.load_cpu_profile),
            ("memory", "memory", mem_path, analyzer.load_memory_profile),
        ):
            data = self._read(path, label)
            if data is None:
                continue

            ref = self._store(run, kind, data)
            if kind == "cpu":
                run.cpu_profile_ref = ref
            else:
                run.memory_profile_ref = ref

            try:
                loader(data)
            except BenchscopeError as exc:
                self._warn(AnalysisWarning, f"failed to analyze {label} profile: {exc}")
                continue
            loaded = True

        if not loaded:
            return run

        try:
            run.profile_summary = analyzer.analyze()
        except (BenchscopeError, ValueError, IndexError, KeyError) as exc:
            self._warn(AnalysisWarning, f"failed to analyze profiles: {exc}")
        return run
