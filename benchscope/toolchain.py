"""
Helpers around the Go toolchain and the benchmark subprocess.

:class:`StreamingProcess` is the producer/consumer core shared by both
executors: a reader thread drains the child's stdout through an
:class:`~benchscope.parser.OutputParser` while a second thread buffers
stderr. The caller joins the readers first and only then waits for the
process to exit, so a chatty child can never block on a full pipe.
"""

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import psutil

from .errors import ExecutionFailed, ModuleRootNotFound, ToolchainNotFound
from .models import BenchmarkResult
from .parser import OutputParser

logger = logging.getLogger(__name__)

MODULE_MANIFEST = "go.mod"
KILL_GRACE_SECONDS = 5.0


def go_version(go_binary: str = "go") -> str:
    """Return the output of ``go version``, e.g. ``go version go1.22.1 linux/amd64``."""
    try:
        result = subprocess.run([go_binary, "version"], capture_output=True,
                                text=True, check=True)
    except FileNotFoundError as exc:
        raise ToolchainNotFound(go_binary, original=exc) from exc
    except subprocess.CalledProcessError as exc:
        raise ExecutionFailed("go version failed", exc.stderr or "", original=exc) from exc
    return result.stdout.strip()


def package_import_path(package_dir: Union[str, Path], go_binary: str = "go",
                        cwd: Optional[Union[str, Path]] = None) -> str:
    """Resolve the import path of the package in ``package_dir`` with ``go list``."""
    try:
        result = subprocess.run(
            [go_binary, "list", "-f", "{{.ImportPath}}", str(package_dir)],
            capture_output=True, text=True, check=True,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError as exc:
        raise ToolchainNotFound(go_binary, original=exc) from exc
    except subprocess.CalledProcessError as exc:
        raise ExecutionFailed(f"failed to get import path for {package_dir}",
                              exc.stderr or "", original=exc) from exc
    return result.stdout.strip()


def find_module_root(start: Optional[Union[str, Path]] = None) -> Path:
    """Walk upward from ``start`` (default: cwd) to the directory holding go.mod.

    Raises:
        ModuleRootNotFound: If the filesystem root is reached first.
    """
    current = Path(start or os.getcwd()).resolve()
    for directory in (current, *current.parents):
        if (directory / MODULE_MANIFEST).is_file():
            return directory
    raise ModuleRootNotFound(str(current))


def kill_process_tree(pid: int, grace: float = KILL_GRACE_SECONDS) -> None:
    """Kill ``pid`` and all of its descendants.

    ``go test`` runs the compiled test binary as a child process, so killing
    only the driver would leave the benchmark itself running.
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    procs = parent.children(recursive=True)
    procs.append(parent)
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    gone, alive = psutil.wait_procs(procs, timeout=grace)
    if alive:
        logger.warning("Processes still alive after kill: %s",
                       ", ".join(str(p.pid) for p in alive))


class StreamingProcess:
    """Run a command and parse its stdout while it is still running.

    Args:
        argv: Command line to execute.
        cwd: Working directory for the child.
        env: Extra environment variables layered over ``os.environ``.
        timeout: Optional deadline in seconds. When it expires the whole
            process tree is killed and :class:`ExecutionFailed` is raised.
    """

    def __init__(self, argv: Sequence[str], cwd: Optional[Union[str, Path]] = None,
                 env: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        self.argv = list(argv)
        self.cwd = str(cwd) if cwd else None
        self.env = env
        self.timeout = timeout
        self.process: Optional[subprocess.Popen] = None
        self.returncode: Optional[int] = None
        self.timed_out = False
        self._stderr_chunks: List[str] = []
        self._results: List[BenchmarkResult] = []
        self._reader_error: Optional[BaseException] = None

    @property
    def stderr(self) -> str:
        return "".join(self._stderr_chunks)

    def start(self) -> None:
        """Spawn the child process.

        Raises:
            ExecutionFailed: If the process cannot be started.
        """
        env = None
        if self.env:
            env = dict(os.environ)
            env.update(self.env)
        logger.debug("Spawning: %s", " ".join(self.argv))
        try:
            self.process = subprocess.Popen(
                self.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                cwd=self.cwd,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ToolchainNotFound(self.argv[0], original=exc) from exc
        except OSError as exc:
            raise ExecutionFailed(f"failed to start {self.argv[0]}: {exc}",
                                  original=exc) from exc

    def _read_stdout(self, parser: OutputParser) -> None:
        try:
            self._results = parser.stream(self.process.stdout)
        except BaseException as exc:  # handed to the joining thread
            self._reader_error = exc
            # Keep draining so the child never blocks on a full pipe
            for _ in self.process.stdout:
                pass

    def _read_stderr(self) -> None:
        for chunk in self.process.stderr:
            self._stderr_chunks.append(chunk)

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def _kill_on_deadline(self) -> None:
        self.timed_out = True
        logger.warning("Deadline of %ss expired, killing pid %d",
                       self.timeout, self.process.pid)
        kill_process_tree(self.process.pid)

    def collect(self, parser: OutputParser) -> List[BenchmarkResult]:
        """Stream stdout through ``parser``, then wait for the process to exit.

        Returns:
            The parsed results.

        Raises:
            ExecutionFailed: On a deadline kill, or a non-zero exit with
                diagnostic text on stderr.
            NoResultsFound: If the process exited cleanly with no results.
        """
        if self.process is None:
            self.start()

        stdout_reader = threading.Thread(target=self._read_stdout, args=(parser,),
                                         name="benchscope-stdout", daemon=True)
        stderr_reader = threading.Thread(target=self._read_stderr,
                                         name="benchscope-stderr", daemon=True)
        stdout_reader.start()
        stderr_reader.start()

        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        stdout_reader.join(self._remaining(deadline))
        if stdout_reader.is_alive():
            self._kill_on_deadline()
            stdout_reader.join()

        wait_timeout = None if self.timed_out else self._remaining(deadline)
        try:
            self.returncode = self.process.wait(timeout=wait_timeout)
        except subprocess.TimeoutExpired:
            # stdout closed early but the child kept running
            self._kill_on_deadline()
            self.returncode = self.process.wait()
        stderr_reader.join()
        self.process.stdout.close()
        self.process.stderr.close()

        if self.timed_out:
            raise ExecutionFailed(f"timed out after {self.timeout}s", self.stderr)

        if self.returncode != 0:
            if self.stderr.strip():
                raise ExecutionFailed(f"exit status {self.returncode}", self.stderr)
            logger.warning("%s exited with status %d and no diagnostics",
                           self.argv[0], self.returncode)

        if self._reader_error is not None:
            raise self._reader_error
        return self._results
