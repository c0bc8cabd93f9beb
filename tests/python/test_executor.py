"""
Tests for the go test execution strategy and the streaming subprocess core.
"""

import sys
import time

import psutil
import pytest

from benchscope import (ExecutionFailed, ExecutorState, NoResultsFound, ProcessExecutor,
                        ProfileOptions, RunConfig, Storage, ToolchainNotFound)
from benchscope.toolchain import StreamingProcess, find_module_root, go_version
from benchscope.parser import OutputParser
from benchscope.errors import ModuleRootNotFound


def _gone(pid):
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


class TestToolchainHelpers:
    """Small wrappers around the go binary."""

    def test_go_version(self, fake_go):
        assert go_version(str(fake_go)) == "go version go1.22.0 linux/amd64"

    def test_missing_binary(self, tmp_path):
        with pytest.raises(ToolchainNotFound) as excinfo:
            go_version(str(tmp_path / "no-such-go"))
        assert "BENCHSCOPE_GO" in str(excinfo.value)

    def test_find_module_root(self, go_module):
        assert find_module_root(go_module / "sorting") == go_module.resolve()

    def test_module_root_missing(self, tmp_path):
        with pytest.raises(ModuleRootNotFound):
            find_module_root(tmp_path)


class TestStreamingProcess:
    """Producer/consumer handling of the child process."""

    def test_results_and_stderr(self):
        script = ("import sys\n"
                  "print('BenchmarkA-8 10 5 ns/op', flush=True)\n"
                  "sys.stderr.write('noise\\n')\n")
        process = StreamingProcess([sys.executable, "-c", script])
        results = process.collect(OutputParser())
        assert [r.name for r in results] == ["A-8"]
        assert process.returncode == 0
        assert process.stderr == "noise\n"

    def test_large_stderr_does_not_block(self):
        """Both pipes are drained concurrently."""
        script = ("import sys\n"
                  "sys.stderr.write('x' * 1000000)\n"
                  "print('BenchmarkA-8 10 5 ns/op')\n")
        process = StreamingProcess([sys.executable, "-c", script], timeout=30)
        assert len(process.collect(OutputParser())) == 1
        assert len(process.stderr) == 1000000

    def test_nonzero_exit_with_stderr(self):
        script = "import sys\nsys.stderr.write('panic: boom\\n')\nsys.exit(2)\n"
        process = StreamingProcess([sys.executable, "-c", script])
        with pytest.raises(ExecutionFailed) as excinfo:
            process.collect(OutputParser())
        assert excinfo.value.reason == "exit status 2"
        assert excinfo.value.stderr == "panic: boom\n"

    def test_nonzero_exit_without_stderr_keeps_results(self, caplog):
        """A silent non-zero exit is logged, not raised."""
        script = "import sys\nprint('BenchmarkA-8 10 5 ns/op')\nsys.exit(1)\n"
        process = StreamingProcess([sys.executable, "-c", script])
        results = process.collect(OutputParser())
        assert len(results) == 1
        assert process.returncode == 1
        assert "no diagnostics" in caplog.text

    def test_no_results(self):
        process = StreamingProcess([sys.executable, "-c", "print('PASS')"])
        with pytest.raises(NoResultsFound):
            process.collect(OutputParser())

    @pytest.mark.slow
    def test_deadline_kills_process_tree(self):
        """The child and its descendants are killed when the deadline expires."""
        script = ("import subprocess, sys\n"
                  "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
                  "print(child.pid, flush=True)\n"
                  "child.wait()\n")
        seen = []
        parser = OutputParser()
        parser.feed = lambda line: seen.append(line.strip())
        process = StreamingProcess([sys.executable, "-c", script], timeout=2)

        started = time.monotonic()
        with pytest.raises(ExecutionFailed) as excinfo:
            process.collect(parser)

        assert time.monotonic() - started < 30
        assert process.timed_out
        assert "timed out" in excinfo.value.reason
        assert _gone(int(seen[0]))

    @pytest.mark.slow
    def test_deadline_after_stdout_closed(self):
        """The deadline still applies once the child has closed its stdout."""
        script = ("import os, time\n"
                  "print('BenchmarkA-8 10 5 ns/op', flush=True)\n"
                  "os.close(1)\n"
                  "time.sleep(30)\n")
        process = StreamingProcess([sys.executable, "-c", script], timeout=1)

        started = time.monotonic()
        with pytest.raises(ExecutionFailed) as excinfo:
            process.collect(OutputParser())

        assert time.monotonic() - started < 15
        assert process.timed_out
        assert "timed out" in excinfo.value.reason


class TestProcessExecutor:
    """End to end through a scripted go binary."""

    def test_build_command(self, tmp_path):
        config = RunConfig(package_path="./pkg", bench_filter="Sort", cpu="1,4",
                           benchtime="2s", count=3)
        executor = ProcessExecutor(config)
        argv = executor.build_command(tmp_path / "cpu.prof", None)
        assert argv == ["go", "test", "-bench", "Sort", "-benchmem", "-cpu", "1,4",
                        "-benchtime", "2s", "-count", "3",
                        "-cpuprofile", str(tmp_path / "cpu.prof"), "./pkg"]

    def test_default_command(self):
        argv = ProcessExecutor(RunConfig()).build_command()
        assert argv == ["go", "test", "-bench", ".", "-benchmem", "./..."]

    def test_run(self, fake_go, tmp_path):
        seen = []
        config = RunConfig(go_binary=str(fake_go))
        executor = ProcessExecutor(config, on_result=seen.append, workdir=tmp_path)
        run = executor.run()

        assert executor.state is ExecutorState.COMPLETED
        assert [r.name for r in run.results] == ["Sort-8", "Parse-8", "NoMem-8"]
        assert [r.name for r in seen] == ["Sort-8", "Parse-8", "NoMem-8"]
        assert run.toolchain_version == "go version go1.22.0 linux/amd64"
        assert run.command == "go test -bench . -benchmem ./..."
        assert run.id.startswith("run-")
        assert run.duration > 0
        assert run.profile_summary is None

    def test_run_with_profiles(self, fake_go, tmp_path, monkeypatch,
                               cpu_profile_bytes, heap_profile_bytes):
        cpu_src = tmp_path / "src-cpu.prof"
        mem_src = tmp_path / "src-mem.prof"
        cpu_src.write_bytes(cpu_profile_bytes)
        mem_src.write_bytes(heap_profile_bytes)
        monkeypatch.setenv("FAKE_GO_CPU_SRC", str(cpu_src))
        monkeypatch.setenv("FAKE_GO_MEM_SRC", str(mem_src))

        storage = Storage(tmp_path / "store")
        config = RunConfig(go_binary=str(fake_go), profile="cpu,mem")
        options = ProfileOptions.from_flag(config.profile, storage=storage)
        run = ProcessExecutor(config, options, workdir=tmp_path).run()

        assert "-cpuprofile" in run.command
        assert run.cpu_profile_ref == storage.get_cpu_profile_path(run.id)
        assert storage.load_profile(run.id, "memory") == heap_profile_bytes
        assert run.profile_summary.cpu_top_functions[0].name == "demo.hot"
        assert run.profile_summary.memory_leaks

    def test_profile_not_written(self, fake_go, tmp_path):
        """The run survives when go test writes no profile."""
        config = RunConfig(go_binary=str(fake_go), profile="cpu")
        executor = ProcessExecutor(config, workdir=tmp_path)
        run = executor.run()
        assert len(run.results) == 3
        assert run.profile_summary is None
        assert executor.capture.warnings

    def test_failure_sets_state(self, fake_go, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_GO_EXIT", "1")
        monkeypatch.setenv("FAKE_GO_STDERR", "# example.com/demo\n./x.go:3: undefined: y")
        executor = ProcessExecutor(RunConfig(go_binary=str(fake_go)), workdir=tmp_path)
        with pytest.raises(ExecutionFailed) as excinfo:
            executor.run()
        assert "undefined: y" in excinfo.value.stderr
        assert executor.state is ExecutorState.FAILED

    def test_callback_error_sets_state(self, fake_go, tmp_path):
        """Errors from outside the library still mark the run as failed."""
        def explode(result):
            raise RuntimeError("display closed")

        config = RunConfig(go_binary=str(fake_go))
        executor = ProcessExecutor(config, on_result=explode, workdir=tmp_path)
        with pytest.raises(RuntimeError, match="display closed"):
            executor.run()
        assert executor.state is ExecutorState.FAILED

    def test_no_results(self, fake_go, tmp_path, monkeypatch):
        empty = tmp_path / "empty.txt"
        empty.write_text("PASS\nok  \texample.com/demo\t0.01s\n")
        monkeypatch.setenv("FAKE_GO_STDOUT", str(empty))
        with pytest.raises(NoResultsFound):
            ProcessExecutor(RunConfig(go_binary=str(fake_go)), workdir=tmp_path).run()

    @pytest.mark.slow
    def test_timeout(self, fake_go, tmp_path, monkeypatch):
        monkeypatch.setenv("FAKE_GO_SLEEP", "60")
        config = RunConfig(go_binary=str(fake_go), timeout=1)
        started = time.monotonic()
        with pytest.raises(ExecutionFailed) as excinfo:
            ProcessExecutor(config, workdir=tmp_path).run()
        assert "timed out" in str(excinfo.value)
        assert time.monotonic() - started < 30

    def test_toolchain_missing(self, tmp_path):
        config = RunConfig(go_binary=str(tmp_path / "missing-go"))
        with pytest.raises(ToolchainNotFound):
            ProcessExecutor(config).run()
