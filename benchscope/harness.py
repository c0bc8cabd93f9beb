"""
Generate a standalone Go driver for the direct execution strategy.

Generation is a pure function of the import path(s) and benchmark names,
so the produced source can be checked without a Go toolchain. The driver
prints one line per benchmark in the same shape as ``go test -bench``, which
lets :class:`~benchscope.parser.OutputParser` read both strategies.

Runtime knobs are passed through the environment:

- ``BENCHSCOPE_CPU``: first value of a ``-cpu`` list sets GOMAXPROCS
- ``BENCHSCOPE_BENCHTIME``: forwarded to ``test.benchtime``
- ``BENCHSCOPE_COUNT``: repeat each benchmark this many times
- ``BENCHSCOPE_CPUPROFILE`` / ``BENCHSCOPE_MEMPROFILE``: profile output files
"""

import re
from typing import Dict, List, Sequence

from .scanner import BENCHMARK_PREFIX

ENV_CPU = "BENCHSCOPE_CPU"
ENV_BENCHTIME = "BENCHSCOPE_BENCHTIME"
ENV_COUNT = "BENCHSCOPE_COUNT"
ENV_CPUPROFILE = "BENCHSCOPE_CPUPROFILE"
ENV_MEMPROFILE = "BENCHSCOPE_MEMPROFILE"

_IDENT = re.compile(r"^[A-Za-z_]\w*$")
_BAD_IMPORT = re.compile(r'["\\\s`]')

_HEADER = """\
// Code generated by benchscope. DO NOT EDIT.

package main

import (
	"flag"
	"fmt"
	"os"
	"runtime"
	"runtime/pprof"
	"strconv"
	"strings"
	"testing"

{imports}
)

"""

_MAIN_PROLOGUE = """\
func main() {
	testing.Init()

	if cpu := os.Getenv("%(cpu)s"); cpu != "" {
		first := strings.TrimSpace(strings.Split(cpu, ",")[0])
		if n, err := strconv.Atoi(first); err == nil && n > 0 {
			runtime.GOMAXPROCS(n)
		}
	}
	if benchtime := os.Getenv("%(benchtime)s"); benchtime != "" {
		if err := flag.Set("test.benchtime", benchtime); err != nil {
			fmt.Fprintf(os.Stderr, "invalid benchtime %%q: %%v\\n", benchtime, err)
			os.Exit(2)
		}
	}
	count := 1
	if c := os.Getenv("%(count)s"); c != "" {
		if n, err := strconv.Atoi(c); err == nil && n > 0 {
			count = n
		}
	}

	stopCPUProfile := startCPUProfile(os.Getenv("%(cpuprofile)s"))
	failed := false

	for i := 0; i < count; i++ {
"""

_MAIN_EPILOGUE = """\
	}

	stopCPUProfile()
	writeHeapProfile(os.Getenv("%(memprofile)s"))

	if failed {
		os.Exit(1)
	}
}

"""

_HELPERS = """\
func report(name string, r testing.BenchmarkResult) bool {
	if r.N == 0 {
		fmt.Fprintf(os.Stderr, "--- FAIL: Benchmark%s\\n", name)
		return false
	}
	fmt.Printf("Benchmark%s-%d\\t%d\\t%d ns/op", name, runtime.GOMAXPROCS(0), r.N, r.NsPerOp())
	if r.Bytes > 0 && r.T > 0 {
		fmt.Printf("\\t%.2f MB/s", float64(r.Bytes)*float64(r.N)/1e6/r.T.Seconds())
	}
	fmt.Printf("\\t%d B/op\\t%d allocs/op\\n", r.AllocedBytesPerOp(), r.AllocsPerOp())
	return true
}

func startCPUProfile(path string) func() {
	if path == "" {
		return func() {}
	}
	f, err := os.Create(path)
	if err != nil {
		fmt.Fprintf(os.Stderr, "cpu profile: %v\\n", err)
		return func() {}
	}
	if err := pprof.StartCPUProfile(f); err != nil {
		fmt.Fprintf(os.Stderr, "cpu profile: %v\\n", err)
		f.Close()
		return func() {}
	}
	return func() {
		pprof.StopCPUProfile()
		f.Close()
	}
}

func writeHeapProfile(path string) {
	if path == "" {
		return
	}
	f, err := os.Create(path)
	if err != nil {
		fmt.Fprintf(os.Stderr, "memory profile: %v\\n", err)
		return
	}
	defer f.Close()
	// Collect garbage first so in-use numbers only count live objects
	runtime.GC()
	if err := pprof.WriteHeapProfile(f); err != nil {
		fmt.Fprintf(os.Stderr, "memory profile: %v\\n", err)
	}
}
"""


def _check_import_path(import_path: str) -> None:
    if not import_path or _BAD_IMPORT.search(import_path):
        raise ValueError(f"Invalid import path: {import_path!r}")


def _check_name(name: str) -> None:
    if not _IDENT.match(name) or not name.startswith(BENCHMARK_PREFIX):
        raise ValueError(f"Not a benchmark function name: {name!r}")


def render_harness(targets: Dict[str, Sequence[str]]) -> str:
    """Render a driver for benchmarks spread over several packages.

    Args:
        targets: Import path -> benchmark function names in that package,
            in the order they should run.

    Returns:
        Go source for a ``package main`` program.
    """
    if not targets or not any(targets.values()):
        raise ValueError("No benchmarks to run")

    aliases = {}
    for index, import_path in enumerate(targets):
        _check_import_path(import_path)
        aliases[import_path] = "bench" if len(targets) == 1 else f"bench{index}"

    imports = "\n".join(f'\t{aliases[path]} "{path}"' for path in targets)
    env = {
        "cpu": ENV_CPU,
        "benchtime": ENV_BENCHTIME,
        "count": ENV_COUNT,
        "cpuprofile": ENV_CPUPROFILE,
        "memprofile": ENV_MEMPROFILE,
    }

    parts: List[str] = [_HEADER.format(imports=imports), _MAIN_PROLOGUE % env]
    for import_path, names in targets.items():
        alias = aliases[import_path]
        for name in names:
            _check_name(name)
            short = name[len(BENCHMARK_PREFIX):]
            parts.append(
                f'\t\tif !report("{short}", testing.Benchmark({alias}.{name})) {{\n'
                f"\t\t\tfailed = true\n"
                f"\t\t}}\n"
            )
    parts.append(_MAIN_EPILOGUE % env)
    parts.append(_HELPERS)
    return "".join(parts)


def generate_harness(import_path: str, benchmarks: Sequence[str]) -> str:
    """Render a driver that runs ``benchmarks`` from the package ``import_path``.

    >>> src = generate_harness("example.com/m/sorting", ["BenchmarkSort"])
    >>> 'bench "example.com/m/sorting"' in src
    True
    """
    return render_harness({import_path: list(benchmarks)})
