"""
Default execution strategy: ``go test -bench``.

The executor walks a small state machine::

    IDLE -> SPAWNED -> STREAMING -> COMPLETED
                                 \\-> FAILED

Results are reported through the progress callback as soon as each line
is printed, not after the process exits.
"""

import logging
import tempfile
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, TextIO

from .capture import ProfileCapture, ProfileOptions
from .config import RunConfig
from .models import BenchmarkResult, BenchmarkRun, generate_run_id
from .parser import OutputParser, ResultCallback
from .toolchain import StreamingProcess, go_version

logger = logging.getLogger(__name__)


class ExecutorState(Enum):
    IDLE = "idle"
    SPAWNED = "spawned"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessExecutor:
    """Run benchmarks through ``go test`` and parse them as they stream.

    Args:
        config: Run configuration (package, filter, flags, deadline).
        profile_options: Sampling streams to capture; defaults to the
            streams named by ``config.profile`` with no storage.
        on_result: Progress callback invoked once per parsed result.
        verbose: Sink receiving every raw output line.
        workdir: Directory to run ``go test`` in (default: current directory).
    """

    def __init__(self, config: RunConfig, profile_options: Optional[ProfileOptions] = None,
                 on_result: Optional[ResultCallback] = None, verbose: Optional[TextIO] = None,
                 workdir: Optional[Path] = None):
        self.config = config
        self.workdir = workdir
        self.profile_options = profile_options or ProfileOptions.from_flag(config.profile)
        self.on_result = on_result
        self.verbose = verbose
        self.state = ExecutorState.IDLE
        self.capture: Optional[ProfileCapture] = None

    def build_command(self, cpu_path: Optional[Path] = None,
                      mem_path: Optional[Path] = None) -> List[str]:
        """Return the ``go test`` command line for this configuration."""
        cfg = self.config
        argv = [cfg.go_binary, "test", "-bench", cfg.bench_filter, "-benchmem"]
        if cfg.cpu:
            argv += ["-cpu", cfg.cpu]
        if cfg.benchtime:
            argv += ["-benchtime", cfg.benchtime]
        if cfg.count:
            argv += ["-count", str(cfg.count)]
        argv += ProfileCapture.go_test_flags(cpu_path, mem_path)
        argv.append(cfg.package_path)
        return argv

    def run(self) -> BenchmarkRun:
        """Execute the benchmarks and return the finished run.

        Raises:
            ExecutionFailed: If ``go`` cannot be spawned, exits non-zero
                with diagnostics, or is killed by the deadline.
            NoResultsFound: If no result line was printed.
        """
        started = datetime.now()
        start = time.perf_counter()
        try:
            toolchain = go_version(self.config.go_binary)
            run_id = generate_run_id(started)

            with tempfile.TemporaryDirectory(prefix="benchscope-profile-") as tmpdir:
                cpu_path = mem_path = None
                if self.profile_options.enabled:
                    self.capture = ProfileCapture(self.profile_options)
                    cpu_path, mem_path = self.capture.profile_paths(tmpdir)

                argv = self.build_command(cpu_path, mem_path)
                results = self._execute(argv)
                duration = time.perf_counter() - start

                run = BenchmarkRun(
                    id=run_id,
                    timestamp=started,
                    package_path=self.config.package_path,
                    toolchain_version=toolchain,
                    results=results,
                    command=" ".join(["go"] + argv[1:]),
                    duration=duration,
                )
                logger.info("Run %s: %d results in %.2fs", run.id, len(results), duration)

                if self.capture is not None:
                    self.capture.finalize(run, cpu_path, mem_path)
        except Exception:
            self.state = ExecutorState.FAILED
            raise

        self.state = ExecutorState.COMPLETED
        return run

    def _execute(self, argv: List[str]) -> List[BenchmarkResult]:
        process = StreamingProcess(argv, cwd=self.workdir, env=self.config.env or None,
                                   timeout=self.config.timeout)
        process.start()
        self.state = ExecutorState.SPAWNED
        parser = OutputParser(on_result=self.on_result, verbose=self.verbose)
        self.state = ExecutorState.STREAMING
        return process.collect(parser)
