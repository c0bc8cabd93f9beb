"""
Discover Go benchmark functions by scanning source text.

A benchmark is a top-level declaration of the form::

    func BenchmarkXxx(b *testing.B) { ... }

Comments and string literals are blanked out before matching so commented
out code and embedded source snippets are not picked up. Methods, functions
with other signatures and unnamed parameters are ignored.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .config import DEFAULT_FILTER, RECURSIVE_SUFFIX
from .errors import BenchscopeError, ConfigError, NoBenchmarksFound

logger = logging.getLogger(__name__)

BENCHMARK_PREFIX = "Benchmark"
TEST_FILE_SUFFIX = "_test.go"

# Comments and string/rune literals, in the order the Go lexer sees them
_NOISE = re.compile(
    r"//[^\n]*"
    r"|/\*.*?\*/"
    r"|`[^`]*`"
    r'|"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])*'",
    re.DOTALL,
)

_BENCH_DECL = re.compile(
    r"^func\s+(" + BENCHMARK_PREFIX + r"\w*)\s*"
    r"\(\s*(\w+)\s+\*\s*testing\s*\.\s*B\s*,?\s*\)",
    re.MULTILINE,
)


@dataclass(frozen=True)
class BenchmarkFunction:
    """A benchmark declaration and where it was found."""
    name: str
    path: Path

    @property
    def package_dir(self) -> Path:
        return self.path.parent

    @property
    def short_name(self) -> str:
        return self.name[len(BENCHMARK_PREFIX):]

    @property
    def in_test_file(self) -> bool:
        return self.path.name.endswith(TEST_FILE_SUFFIX)


def _blank(match: "re.Match") -> str:
    # Keep line structure so ^ anchors still line up
    return re.sub(r"[^\n]", " ", match.group(0))


def strip_comments_and_strings(source: str) -> str:
    """Replace comments and literals with whitespace, preserving newlines."""
    return _NOISE.sub(_blank, source)


def find_declarations(source: str) -> List[str]:
    """Return benchmark function names declared in one file's source text."""
    return [match.group(1) for match in _BENCH_DECL.finditer(strip_comments_and_strings(source))]


def _skip_dir(name: str) -> bool:
    # Directories the go tool itself ignores
    return name.startswith((".", "_")) or name in ("testdata", "vendor")


class SourceScanner:
    """Find benchmark functions under a package path.

    Args:
        base_dir: Directory relative package paths are resolved against
            (default: the current working directory).
    """

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def find_source_files(self, package_path: str) -> List[Path]:
        """List ``.go`` files for ``package_path``.

        A path ending in ``/...`` is searched recursively; otherwise only the
        directory itself is read.
        """
        recursive = package_path.endswith(RECURSIVE_SUFFIX) or package_path == "..."
        if recursive:
            package_path = package_path[:-len(RECURSIVE_SUFFIX)] if package_path != "..." else ""
        root = (self.base_dir / (package_path or ".")).resolve()

        if not root.is_dir():
            raise BenchscopeError(f"Package path not found: {root}",
                                  suggestions=["Pass a directory, or ./... for all packages"])

        if not recursive:
            return sorted(root.glob("*.go"))

        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not _skip_dir(d))
            files.extend(Path(dirpath) / name for name in sorted(filenames) if name.endswith(".go"))
        return files

    def find_benchmarks(self, files: Iterable[Path]) -> List[BenchmarkFunction]:
        """Collect benchmark declarations across ``files``.

        Names declared in more than one file are reported once, at their
        first occurrence. Unreadable files are skipped.
        """
        found = []
        seen = set()
        for path in files:
            try:
                source = Path(path).read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.debug("Skipping unreadable file %s: %s", path, exc)
                continue
            for name in find_declarations(source):
                if name in seen:
                    continue
                seen.add(name)
                found.append(BenchmarkFunction(name=name, path=Path(path)))
        return found

    def scan(self, package_path: str) -> List[BenchmarkFunction]:
        """Find every benchmark function under ``package_path``."""
        return self.find_benchmarks(self.find_source_files(package_path))


def filter_benchmarks(benchmarks: List[BenchmarkFunction],
                      pattern: str = DEFAULT_FILTER) -> List[BenchmarkFunction]:
    """Narrow ``benchmarks`` to those matching ``pattern``.

    The pattern is a regular expression searched in both the full name and
    the name without the ``Benchmark`` prefix. An empty pattern or ``.``
    keeps everything.

    Raises:
        ConfigError: If ``pattern`` is not a valid regular expression.
        NoBenchmarksFound: If nothing matches.
    """
    if not pattern or pattern == DEFAULT_FILTER:
        selected = list(benchmarks)
    else:
        try:
            regex = re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid benchmark filter: {pattern}", cause=exc) from exc
        selected = [b for b in benchmarks
                    if regex.search(b.name) or regex.search(b.short_name)]

    if not selected:
        raise NoBenchmarksFound(pattern or DEFAULT_FILTER)
    return selected
