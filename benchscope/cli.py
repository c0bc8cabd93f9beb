"""
Command-line entry point.

    benchscope run [--bench PATTERN] [--pkg PATH] [--profile cpu,mem] ...
    benchscope analyze RUN_ID
    benchscope list
"""

import argparse
import logging
import sys
from typing import List, Optional

from .analyzer import analyze_profiles
from .capture import ProfileOptions
from .config import DEFAULT_FILTER, RunConfig
from .direct import DirectExecutor
from .errors import BenchscopeError
from .executor import ProcessExecutor
from .models import BenchmarkResult, BenchmarkRun, ProfileSummary
from .storage import Storage


def format_ns(ns: float) -> str:
    if ns < 1_000:
        return f"{ns:.2f} ns/op"
    if ns < 1_000_000:
        return f"{ns / 1_000:.2f} µs/op"
    if ns < 1_000_000_000:
        return f"{ns / 1_000_000:.2f} ms/op"
    return f"{ns / 1_000_000_000:.2f} s/op"


def print_progress(result: BenchmarkResult) -> None:
    print(f"  Completed: Benchmark{result.name} | {result.iterations:,} iters | "
          f"{format_ns(result.ns_per_op)} | {result.bytes_per_op} B/op | "
          f"{result.allocs_per_op} allocs/op", flush=True)


def print_results(run: BenchmarkRun) -> None:
    print(f"\nResults saved with ID: {run.id}\n")
    print(f"  Timestamp:  {run.timestamp.isoformat()}")
    print(f"  Duration:   {run.duration:.2f}s")
    print(f"  Toolchain:  {run.toolchain_version}")
    if run.cpu_profile_ref:
        print(f"  CPU profile:    {run.cpu_profile_ref}")
    if run.memory_profile_ref:
        print(f"  Memory profile: {run.memory_profile_ref}")

    print(f"\n{'Benchmark':<40} {'Iterations':>12} {'ns/op':>14} {'B/op':>10} {'allocs/op':>10}")
    print("-" * 90)
    for r in run.results:
        print(f"{r.name:<40} {r.iterations:>12} {r.ns_per_op:>14.2f} "
              f"{r.bytes_per_op:>10} {r.allocs_per_op:>10}")


def print_summary(summary: ProfileSummary) -> None:
    print("\n" + "=" * 80)
    print("PROFILE ANALYSIS")
    print("=" * 80)

    if summary.cpu_top_functions:
        print(f"\nCPU Hot Functions (Total samples: {summary.total_cpu_samples})")
        print("-" * 80)
        print(f"{'Function':<52} {'Flat%':>8} {'Cum%':>8}")
        for fn in summary.cpu_top_functions:
            name = fn.name if len(fn.name) <= 50 else fn.name[:47] + "..."
            print(f"{name:<52} {fn.flat_percent:>7.1f}% {fn.cum_percent:>7.1f}%")

    if summary.memory_top_functions:
        print(f"\nMemory Allocations (Total: {summary.total_memory_bytes} bytes)")
        print("-" * 80)
        for fn in summary.memory_top_functions:
            print(f"{fn.name:<52} {fn.flat_percent:>7.1f}%")

    if summary.hot_paths:
        print("\nHot Paths")
        print("-" * 80)
        for i, path in enumerate(summary.hot_paths, 1):
            print(f"{i}. {' -> '.join(path.path)} ({path.percentage:.1f}%)")

    if summary.memory_leaks:
        print("\nPotential Memory Leaks")
        print("-" * 80)
        for leak in summary.memory_leaks:
            print(f"[{leak.severity.upper()}] {leak.function}: {leak.description}")

    if summary.suggestions:
        print("\nOptimization Suggestions")
        print("-" * 80)
        for s in summary.suggestions:
            print(f"[{s.severity.upper()}/{s.type}] {s.function}")
            print(f"  Issue:      {s.issue}")
            print(f"  Suggestion: {s.suggestion}")
            print(f"  Impact:     {s.impact}")


def cmd_run(args: argparse.Namespace) -> int:
    config = RunConfig.from_env(
        package_path=args.pkg,
        bench_filter=args.bench,
        cpu=args.cpu,
        benchtime=args.benchtime,
        count=args.count,
        profile=args.profile,
        verbose=args.verbose,
        storage_dir=args.storage,
        timeout=args.timeout,
        direct=args.direct,
    )
    storage = Storage(config.storage_dir)
    options = ProfileOptions.from_flag(config.profile, storage=storage)
    if options.enabled:
        print(f"Profiling enabled: {options.describe()}")

    executor_cls = DirectExecutor if config.direct else ProcessExecutor
    if config.verbose:
        executor = executor_cls(config, options, verbose=sys.stdout)
    else:
        executor = executor_cls(config, options, on_result=print_progress)

    print("Running benchmarks...")
    run = executor.run()
    storage.save(run)
    print_results(run)
    if run.profile_summary is not None:
        print_summary(run.profile_summary)
    print(f"\nResults saved to: {storage.root}")
    return 0


def cmd_analyze(args: argparse.Namespace) -> int:
    storage = Storage(args.storage or RunConfig.from_env().storage_dir)
    run = storage.load(args.run_id)
    cpu = storage.load_profile(run.id, "cpu") if storage.has_profile(run.id, "cpu") else None
    mem = storage.load_profile(run.id, "memory") if storage.has_profile(run.id, "memory") else None
    if cpu is None and mem is None:
        raise BenchscopeError(f"Run {run.id} has no stored profiles",
                              suggestions=["Re-run with --profile=cpu,mem"])
    summary = analyze_profiles(cpu, mem)
    print_summary(summary)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    storage = Storage(args.storage or RunConfig.from_env().storage_dir)
    runs = storage.list()
    if not runs:
        print("No benchmark results found. Run 'benchscope run' first.")
        return 0
    for run in runs:
        print(f"{run.id:<20} {run.timestamp.isoformat():<28} {len(run.results):>4} results  "
              f"{run.package_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="benchscope",
                                     description="Run Go benchmarks and analyze their profiles")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run benchmarks and store the results")
    run.add_argument("--bench", default=DEFAULT_FILTER, help="Benchmark filter (regex)")
    run.add_argument("--pkg", default=None, help="Package path (default: ./...)")
    run.add_argument("--cpu", default=None, help="CPU list, passed to -cpu")
    run.add_argument("--benchtime", default=None, help="Benchmark time, passed to -benchtime")
    run.add_argument("--count", type=int, default=None, help="Run each benchmark N times")
    run.add_argument("--profile", default="", help="Enable profiling: cpu, mem, or cpu,mem")
    run.add_argument("--storage", default=None, help="Storage directory")
    run.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    run.add_argument("--direct", action="store_true",
                     help="Run through a generated driver instead of go test")
    run.add_argument("-v", "--verbose", action="store_true", help="Show raw benchmark output")
    run.set_defaults(func=cmd_run)

    analyze = sub.add_parser("analyze", help="Analyze the stored profiles of a run")
    analyze.add_argument("run_id")
    analyze.add_argument("--storage", default=None, help="Storage directory")
    analyze.set_defaults(func=cmd_analyze)

    listing = sub.add_parser("list", help="List stored runs")
    listing.add_argument("--storage", default=None, help="Storage directory")
    listing.set_defaults(func=cmd_list)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except BenchscopeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
