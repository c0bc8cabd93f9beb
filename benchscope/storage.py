"""
JSON-on-disk storage for benchmark runs and their raw profiles.

Layout under the storage root::

    <root>/<run id>.json
    <root>/profiles/<run id>/cpu.prof
    <root>/profiles/<run id>/mem.prof
"""

import json
import shutil
from pathlib import Path
from typing import List, Optional, Union

from .config import DEFAULT_STORAGE_DIR
from .errors import BenchscopeError
from .models import BenchmarkRun

PROFILE_FILES = {
    "cpu": "cpu.prof",
    "memory": "mem.prof",
}


class Storage:
    """Keyed-by-ID store of runs and profiles."""

    def __init__(self, root: Union[str, Path] = DEFAULT_STORAGE_DIR):
        self.root = Path(root)

    def _run_file(self, run_id: str) -> Path:
        return self.root / f"{run_id}.json"

    def save(self, run: BenchmarkRun) -> Path:
        """Write ``run``; an existing run with the same ID is overwritten."""
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._run_file(run.id)
        with open(path, "w") as f:
            json.dump(run.to_dict(), f, indent=2)
        return path

    def load(self, run_id: str) -> BenchmarkRun:
        path = self._run_file(run_id)
        if not path.exists():
            raise BenchscopeError(f"Invalid run ID: {run_id}",
                                  suggestions=["Use 'benchscope list' to see stored runs"])
        with open(path) as f:
            return BenchmarkRun.from_dict(json.load(f))

    def list(self) -> List[BenchmarkRun]:
        """Return all stored runs, newest first."""
        if not self.root.exists():
            return []
        runs = []
        for path in self.root.glob("*.json"):
            with open(path) as f:
                runs.append(BenchmarkRun.from_dict(json.load(f)))
        runs.sort(key=lambda run: run.timestamp, reverse=True)
        return runs

    def latest(self) -> Optional[BenchmarkRun]:
        runs = self.list()
        return runs[0] if runs else None

    def delete(self, run_id: str) -> None:
        path = self._run_file(run_id)
        if not path.exists():
            raise BenchscopeError(f"Invalid run ID: {run_id}")
        path.unlink()
        profile_dir = self.profile_dir(run_id)
        if profile_dir.exists():
            shutil.rmtree(profile_dir)

    # Profiles

    def profile_dir(self, run_id: str) -> Path:
        return self.root / "profiles" / run_id

    def profile_path(self, run_id: str, kind: str) -> Path:
        try:
            filename = PROFILE_FILES[kind]
        except KeyError:
            raise ValueError(f"Unknown profile kind: {kind!r}") from None
        return self.profile_dir(run_id) / filename

    def get_cpu_profile_path(self, run_id: str) -> str:
        return str(self.profile_path(run_id, "cpu"))

    def get_memory_profile_path(self, run_id: str) -> str:
        return str(self.profile_path(run_id, "memory"))

    def save_profile(self, run_id: str, kind: str, data: bytes) -> Path:
        """Store raw profile bytes of ``kind`` (``cpu`` or ``memory``)."""
        path = self.profile_path(run_id, kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def load_profile(self, run_id: str, kind: str) -> bytes:
        return self.profile_path(run_id, kind).read_bytes()

    def has_profile(self, run_id: str, kind: str) -> bool:
        return self.profile_path(run_id, kind).exists()
