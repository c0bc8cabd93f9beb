"""
Run configuration.

Values come from the CLI, with a few defaults overridable through the
environment:

- ``BENCHSCOPE_GO``: path to the go binary (default ``go``)
- ``BENCHSCOPE_STORAGE``: storage directory (default ``.benchscope``)
- ``BENCHSCOPE_TIMEOUT``: deadline in seconds for one benchmark process
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .errors import ConfigError

DEFAULT_PACKAGE = "./..."
DEFAULT_FILTER = "."
DEFAULT_STORAGE_DIR = ".benchscope"
RECURSIVE_SUFFIX = "/..."

PROFILE_KINDS = {
    "cpu": "cpu",
    "mem": "memory",
    "memory": "memory",
}


def parse_profile_flag(value: str) -> Tuple[bool, bool]:
    """Parse a comma-joined profile flag such as ``"cpu,mem"``.

    Returns:
        (enable_cpu, enable_memory)

    Raises:
        ConfigError: On an unknown profile kind.
    """
    enable_cpu = enable_memory = False
    for part in value.split(","):
        part = part.strip().lower()
        if not part:
            continue
        kind = PROFILE_KINDS.get(part)
        if kind is None:
            raise ConfigError(
                f"Unknown profile type: {part}",
                suggestions=["Valid profile types: cpu, mem", "Example: --profile=cpu,mem"],
            )
        if kind == "cpu":
            enable_cpu = True
        else:
            enable_memory = True
    return enable_cpu, enable_memory


@dataclass
class RunConfig:
    """Everything one benchmark invocation needs."""
    package_path: str = DEFAULT_PACKAGE
    bench_filter: str = DEFAULT_FILTER
    cpu: Optional[str] = None
    benchtime: Optional[str] = None
    count: Optional[int] = None
    profile: str = ""
    verbose: bool = False
    storage_dir: str = DEFAULT_STORAGE_DIR
    go_binary: str = "go"
    timeout: Optional[float] = None
    direct: bool = False
    env: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.package_path:
            self.package_path = DEFAULT_PACKAGE
        if not self.bench_filter:
            self.bench_filter = DEFAULT_FILTER
        if self.count is not None and self.count < 1:
            raise ConfigError(f"count must be positive, got {self.count}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        # Fail early on a bad profile flag
        parse_profile_flag(self.profile)

    @property
    def enable_cpu_profile(self) -> bool:
        return parse_profile_flag(self.profile)[0]

    @property
    def enable_memory_profile(self) -> bool:
        return parse_profile_flag(self.profile)[1]

    @property
    def profiling(self) -> bool:
        return self.enable_cpu_profile or self.enable_memory_profile

    @property
    def recursive(self) -> bool:
        return self.package_path.endswith(RECURSIVE_SUFFIX)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides) -> "RunConfig":
        """Build a config from environment defaults plus explicit overrides.

        Explicit keyword arguments win over the environment. Overrides whose
        value is None are ignored so CLI flags left unset fall through.
        """
        environ = os.environ if environ is None else environ
        values = {}
        if environ.get("BENCHSCOPE_GO"):
            values["go_binary"] = environ["BENCHSCOPE_GO"]
        if environ.get("BENCHSCOPE_STORAGE"):
            values["storage_dir"] = environ["BENCHSCOPE_STORAGE"]
        if environ.get("BENCHSCOPE_TIMEOUT"):
            try:
                values["timeout"] = float(environ["BENCHSCOPE_TIMEOUT"])
            except ValueError as exc:
                raise ConfigError(
                    f"BENCHSCOPE_TIMEOUT is not a number: {environ['BENCHSCOPE_TIMEOUT']!r}",
                    cause=exc,
                ) from exc
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
