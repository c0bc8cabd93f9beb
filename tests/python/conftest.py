"""
Pytest configuration and fixtures for the benchscope test suite.
"""

import gzip
import shutil
import stat
import sys
import textwrap

import pytest

from benchscope.pprof import Profile

MIB = 1024 * 1024

CPU_TYPES = [("samples", "count"), ("cpu", "nanoseconds")]
HEAP_TYPES = [
    ("alloc_objects", "count"),
    ("alloc_space", "bytes"),
    ("inuse_objects", "count"),
    ("inuse_space", "bytes"),
]

SAMPLE_OUTPUT = """\
goos: linux
goarch: amd64
pkg: example.com/demo
cpu: Intel(R) Core(TM) i7-9750H CPU @ 2.60GHz
BenchmarkSort-8           	   10000	    105432 ns/op	   8192 B/op	       1 allocs/op
BenchmarkParse-8          	 1000000	      1024 ns/op	  95.50 MB/s	     512 B/op	      10 allocs/op
BenchmarkNoMem-8          	50000000	        23.5 ns/op
PASS
ok  	example.com/demo	3.214s
"""


def build_profile(sample_types, samples, compress=True, period=10_000_000):
    """Encode a pprof profile.

    Args:
        sample_types: List of (type, unit) pairs.
        samples: List of (stack, values) with stacks leaf first, as
            fully qualified Go function names.
        compress: Gzip the result like the Go runtime does.

    Returns:
        Raw profile bytes.
    """
    strings = [""]

    def intern(text):
        if text not in strings:
            strings.append(text)
        return strings.index(text)

    profile = Profile()
    for type_name, unit in sample_types:
        profile.sample_type.add(type=intern(type_name), unit=intern(unit))

    function_ids = {}
    for stack, values in samples:
        location_ids = []
        for name in stack:
            if name not in function_ids:
                fid = len(function_ids) + 1
                function_ids[name] = fid
                profile.function.add(id=fid, name=intern(name), system_name=intern(name))
                location = profile.location.add(id=fid, address=0x1000 + fid)
                location.line.add(function_id=fid, line=fid)
            location_ids.append(function_ids[name])
        profile.sample.add(location_id=location_ids, value=list(values))

    profile.period = period
    profile.duration_nanos = 1_000_000_000
    profile.string_table.extend(strings)
    data = profile.SerializeToString()
    return gzip.compress(data) if compress else data


@pytest.fixture(scope="session")
def make_profile():
    """Return the profile builder."""
    return build_profile


@pytest.fixture(scope="session")
def cpu_profile_bytes():
    """CPU profile where main.hot owns 35% of the flat samples."""
    samples = [
        (["example.com/demo.hot", "example.com/demo.work", "main.main"], [35, 350]),
        (["example.com/demo.warm", "example.com/demo.work", "main.main"], [25, 250]),
        (["example.com/demo.cool", "main.main"], [20, 200]),
        (["runtime.mallocgc", "example.com/demo.work", "main.main"], [15, 150]),
        (["runtime.memmove", "main.main"], [3, 30]),
        (["runtime.gcBgMarkWorker"], [2, 20]),
    ]
    return build_profile(CPU_TYPES, samples)


@pytest.fixture(scope="session")
def heap_profile_bytes():
    """Heap profile with one clear leak candidate (leaky: 12 MiB alloc, 1 MiB in use)."""
    samples = [
        (["example.com/demo.leaky", "main.main"], [100, 12 * MIB, 10, MIB]),
        (["example.com/demo.churn", "main.main"], [50, 6 * MIB, 1, 512 * 1024]),
        (["example.com/demo.steady", "main.main"], [5, 2 * MIB, 5, 2 * MIB]),
    ]
    return build_profile(HEAP_TYPES, samples)


@pytest.fixture
def sample_output():
    return SAMPLE_OUTPUT


FAKE_GO = """\
#!/bin/sh
# Minimal stand-in for the go tool, driven by FAKE_GO_* variables.
cmd="$1"
shift
case "$cmd" in
  version)
    echo "go version go1.22.0 linux/amd64"
    ;;
  list)
    echo "example.com/demo/$(basename "$3")"
    ;;
  build)
    if [ -n "$FAKE_GO_BUILD_ERROR" ]; then
      printf '%s\\n' "$FAKE_GO_BUILD_ERROR" >&2
      exit 1
    fi
    if [ -n "$FAKE_GO_HARNESS_COPY" ]; then
      cp "$3" "$FAKE_GO_HARNESS_COPY"
    fi
    {
      echo '#!/bin/sh'
      echo 'env | grep ^BENCHSCOPE_ > "${FAKE_GO_ENV_DUMP:-/dev/null}"'
      echo 'if [ -n "$BENCHSCOPE_CPUPROFILE" ] && [ -n "$FAKE_GO_CPU_SRC" ]; then cp "$FAKE_GO_CPU_SRC" "$BENCHSCOPE_CPUPROFILE"; fi'
      echo 'if [ -n "$BENCHSCOPE_MEMPROFILE" ] && [ -n "$FAKE_GO_MEM_SRC" ]; then cp "$FAKE_GO_MEM_SRC" "$BENCHSCOPE_MEMPROFILE"; fi'
      echo "cat \\"$FAKE_GO_STDOUT\\""
    } > "$2"
    chmod +x "$2"
    ;;
  test)
    if [ -n "$FAKE_GO_ARGS" ]; then
      echo "$@" > "$FAKE_GO_ARGS"
    fi
    while [ $# -gt 0 ]; do
      case "$1" in
        -cpuprofile)
          shift
          if [ -n "$FAKE_GO_CPU_SRC" ]; then cp "$FAKE_GO_CPU_SRC" "$1"; fi
          ;;
        -memprofile)
          shift
          if [ -n "$FAKE_GO_MEM_SRC" ]; then cp "$FAKE_GO_MEM_SRC" "$1"; fi
          ;;
      esac
      shift
    done
    if [ -n "$FAKE_GO_STDOUT" ]; then cat "$FAKE_GO_STDOUT"; fi
    if [ -n "$FAKE_GO_STDERR" ]; then printf '%s\\n' "$FAKE_GO_STDERR" >&2; fi
    if [ -n "$FAKE_GO_SLEEP" ]; then sleep "$FAKE_GO_SLEEP"; fi
    exit "${FAKE_GO_EXIT:-0}"
    ;;
  *)
    echo "fake go: unknown command $cmd" >&2
    exit 2
    ;;
esac
"""


@pytest.fixture
def fake_go(tmp_path, monkeypatch):
    """Install a scripted ``go`` stand-in and return its path.

    Output is read from the file named by FAKE_GO_STDOUT, which defaults to
    SAMPLE_OUTPUT.
    """
    if sys.platform == "win32":
        pytest.skip("fake go toolchain is a POSIX shell script")
    bin_dir = tmp_path / "fakebin"
    bin_dir.mkdir()
    script = bin_dir / "go"
    script.write_text(FAKE_GO)
    script.chmod(script.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)

    stdout_file = tmp_path / "stdout.txt"
    stdout_file.write_text(SAMPLE_OUTPUT)
    monkeypatch.setenv("FAKE_GO_STDOUT", str(stdout_file))
    for name in ("FAKE_GO_STDERR", "FAKE_GO_EXIT", "FAKE_GO_SLEEP", "FAKE_GO_CPU_SRC",
                 "FAKE_GO_MEM_SRC", "FAKE_GO_BUILD_ERROR", "FAKE_GO_HARNESS_COPY",
                 "FAKE_GO_ARGS", "FAKE_GO_ENV_DUMP"):
        monkeypatch.delenv(name, raising=False)
    return script


@pytest.fixture
def go_module(tmp_path):
    """A small Go module with importable and test-only benchmarks."""
    root = tmp_path / "demo"
    (root / "sorting").mkdir(parents=True)
    (root / "go.mod").write_text("module example.com/demo\n\ngo 1.21\n")
    (root / "sorting" / "sorting.go").write_text(textwrap.dedent("""\
        package sorting

        import (
        \t"sort"
        \t"testing"
        )

        func SortInts(xs []int) { sort.Ints(xs) }

        // BenchmarkSortSmall is exported so a driver program can import it.
        func BenchmarkSortSmall(b *testing.B) {
        \tfor i := 0; i < b.N; i++ {
        \t\tSortInts([]int{5, 3, 1, 4, 2})
        \t}
        }

        func BenchmarkSortLarge(b *testing.B) {
        \tdata := make([]int, 1000)
        \tfor i := 0; i < b.N; i++ {
        \t\tfor j := range data {
        \t\t\tdata[j] = len(data) - j
        \t\t}
        \t\tSortInts(data)
        \t}
        }
        """))
    (root / "sorting" / "sorting_test.go").write_text(textwrap.dedent("""\
        package sorting

        import "testing"

        func BenchmarkSortInTest(b *testing.B) {
        \tfor i := 0; i < b.N; i++ {
        \t\tSortInts([]int{2, 1})
        \t}
        }
        """))
    return root


@pytest.fixture
def real_go():
    """Path of a real go binary, or skip."""
    path = shutil.which("go")
    if path is None:
        pytest.skip("go toolchain not installed")
    return path


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "benchmark: mark test as a benchmark (deselect with '-m \"not benchmark\"')"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers",
        "requires_go: test needs a real Go toolchain on PATH"
    )
