"""
Alternative execution strategy: scan, generate a driver, build it, run it.

This path does not rely on ``go test``'s own ``-bench`` filtering. Only
benchmarks that other packages can import are eligible, i.e. functions
declared in non-test ``.go`` files; declarations found in ``_test.go`` files
are reported at debug level and left out.
"""

import logging
import subprocess
import tempfile
import time
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, TextIO

from .capture import ProfileCapture, ProfileOptions
from .config import RunConfig
from .errors import CompileFailed, NoBenchmarksFound, ToolchainNotFound
from .executor import ExecutorState
from .harness import (ENV_BENCHTIME, ENV_COUNT, ENV_CPU, ENV_CPUPROFILE, ENV_MEMPROFILE,
                      render_harness)
from .models import BenchmarkResult, BenchmarkRun, generate_run_id
from .parser import OutputParser, ResultCallback
from .scanner import BenchmarkFunction, SourceScanner, filter_benchmarks
from .toolchain import StreamingProcess, find_module_root, go_version, package_import_path

logger = logging.getLogger(__name__)

HARNESS_SOURCE = "harness.go"
HARNESS_BINARY = "harness"


class DirectExecutor:
    """Run a subset of benchmarks through a generated driver program.

    Args:
        config: Run configuration.
        profile_options: Sampling streams to capture.
        on_result: Progress callback invoked once per parsed result.
        verbose: Sink receiving every raw output line.
        workdir: Directory to resolve the package path and module root
            from (default: current working directory).
    """

    def __init__(self, config: RunConfig, profile_options: Optional[ProfileOptions] = None,
                 on_result: Optional[ResultCallback] = None, verbose: Optional[TextIO] = None,
                 workdir: Optional[Path] = None):
        self.config = config
        self.profile_options = profile_options or ProfileOptions.from_flag(config.profile)
        self.on_result = on_result
        self.verbose = verbose
        self.workdir = Path(workdir) if workdir else Path.cwd()
        self.scanner = SourceScanner(self.workdir)
        self.state = ExecutorState.IDLE
        self.capture: Optional[ProfileCapture] = None

    def select_benchmarks(self) -> List[BenchmarkFunction]:
        """Scan the package path and apply the name filter.

        Raises:
            NoBenchmarksFound: If nothing importable matches the filter.
        """
        found = self.scanner.scan(self.config.package_path)
        importable = [b for b in found if not b.in_test_file]
        skipped = [b.name for b in found if b.in_test_file]
        if skipped:
            logger.debug("Skipping benchmarks declared in _test.go files: %s", ", ".join(skipped))
        if not importable:
            raise NoBenchmarksFound(self.config.bench_filter, self.config.package_path)
        return filter_benchmarks(importable, self.config.bench_filter)

    def resolve_targets(self, benchmarks: List[BenchmarkFunction],
                        module_root: Path) -> Dict[str, List[str]]:
        """Group benchmarks by the import path of their package."""
        by_dir: "OrderedDict[Path, List[str]]" = OrderedDict()
        for bench in benchmarks:
            by_dir.setdefault(bench.package_dir, []).append(bench.name)

        targets: Dict[str, List[str]] = OrderedDict()
        for package_dir, names in by_dir.items():
            import_path = package_import_path(package_dir, self.config.go_binary, cwd=module_root)
            targets.setdefault(import_path, []).extend(names)
        return targets

    def harness_env(self, cpu_path: Optional[Path], mem_path: Optional[Path]) -> Dict[str, str]:
        cfg = self.config
        env = dict(cfg.env)
        if cfg.cpu:
            env[ENV_CPU] = cfg.cpu
        if cfg.benchtime:
            env[ENV_BENCHTIME] = cfg.benchtime
        if cfg.count:
            env[ENV_COUNT] = str(cfg.count)
        if cpu_path is not None:
            env[ENV_CPUPROFILE] = str(cpu_path)
        if mem_path is not None:
            env[ENV_MEMPROFILE] = str(mem_path)
        return env

    def compile(self, source: str, build_dir: Path, module_root: Path) -> Path:
        """Write ``source`` into ``build_dir`` and build it from ``module_root``.

        Building from the module root makes the module's own packages
        resolvable from the harness.

        Raises:
            CompileFailed: With the compiler diagnostics and the source.
        """
        source_path = build_dir / HARNESS_SOURCE
        binary_path = build_dir / HARNESS_BINARY
        source_path.write_text(source)

        argv = [self.config.go_binary, "build", "-o", str(binary_path), str(source_path)]
        logger.debug("Compiling harness: %s", " ".join(argv))
        try:
            result = subprocess.run(argv, cwd=str(module_root), capture_output=True,
                                    text=True, timeout=self.config.timeout)
        except FileNotFoundError as exc:
            raise ToolchainNotFound(self.config.go_binary, original=exc) from exc
        except subprocess.TimeoutExpired as exc:
            raise CompileFailed(f"build timed out after {self.config.timeout}s", source) from exc
        if result.returncode != 0:
            raise CompileFailed(result.stderr, source)
        return binary_path

    def run(self) -> BenchmarkRun:
        """Scan, generate, compile and execute; return the finished run.

        Raises:
            NoBenchmarksFound: If the filter selects nothing.
            ModuleRootNotFound: If there is no go.mod above the workdir.
            CompileFailed: If the harness does not build.
            ExecutionFailed: If the harness exits non-zero with diagnostics.
            NoResultsFound: If the harness printed no result lines.
        """
        started = datetime.now()
        start = time.perf_counter()
        try:
            toolchain = go_version(self.config.go_binary)
            run_id = generate_run_id(started)
            benchmarks = self.select_benchmarks()
            module_root = find_module_root(self.workdir)
            targets = self.resolve_targets(benchmarks, module_root)
            source = render_harness(targets)

            # Inside the module tree so the harness builds against the main
            # module; the leading dot keeps it out of ./... patterns
            with tempfile.TemporaryDirectory(prefix=".benchscope-harness-",
                                             dir=str(module_root)) as tmpdir:
                build_dir = Path(tmpdir)
                binary = self.compile(source, build_dir, module_root)

                cpu_path = mem_path = None
                if self.profile_options.enabled:
                    self.capture = ProfileCapture(self.profile_options)
                    cpu_path, mem_path = self.capture.profile_paths(build_dir)

                results = self._execute(binary, self.harness_env(cpu_path, mem_path))
                duration = time.perf_counter() - start

                run = BenchmarkRun(
                    id=run_id,
                    timestamp=started,
                    package_path=self.config.package_path,
                    toolchain_version=toolchain,
                    results=results,
                    command=self.describe_command(),
                    duration=duration,
                )
                logger.info("Run %s: %d results in %.2fs (direct)", run.id, len(results), duration)

                if self.capture is not None:
                    self.capture.finalize(run, cpu_path, mem_path)
        except Exception:
            self.state = ExecutorState.FAILED
            raise

        self.state = ExecutorState.COMPLETED
        return run

    def describe_command(self) -> str:
        cfg = self.config
        args = ["benchscope", "run", "--direct", "--bench", cfg.bench_filter]
        if cfg.cpu:
            args += ["--cpu", cfg.cpu]
        if cfg.benchtime:
            args += ["--benchtime", cfg.benchtime]
        if cfg.count:
            args += ["--count", str(cfg.count)]
        return " ".join(args) + " (direct execution)"

    def _execute(self, binary: Path, env: Dict[str, str]) -> List[BenchmarkResult]:
        process = StreamingProcess([str(binary)], cwd=self.workdir, env=env,
                                   timeout=self.config.timeout)
        process.start()
        self.state = ExecutorState.SPAWNED
        parser = OutputParser(on_result=self.on_result, verbose=self.verbose)
        self.state = ExecutorState.STREAMING
        return process.collect(parser)
