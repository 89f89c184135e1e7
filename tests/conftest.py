"""
Shared fixtures: a small snapshot tree and an empty live share.

Snapshot layout (max_depth=1):
    snap/top.txt
    snap/jobs/job.cfg
    snap/jobs/alpha/data.bin      (directory linked at depth 1)
    snap/jobs/alpha/sub/deep.bin
    snap/jobs/beta/data.bin
"""

import os
from pathlib import Path

import pytest

from snaplink.config import EngineConfig

SNAP_MTIME = 1_600_000_000


@pytest.fixture(autouse=True)
def _no_master_log(monkeypatch, tmp_path):
    monkeypatch.setenv("SNAPLINK_LOG_DISABLED", "1")
    monkeypatch.setenv("SNAPLINK_LOG_DIR", str(tmp_path / "logs"))
    for name in ("MAX_DEPTH", "SEGMENT_LIMIT", "COPY_WORKERS", "COPY_TIMEOUT", "ENTRY_WORKERS"):
        monkeypatch.delenv(f"SNAPLINK_{name}", raising=False)


def write_file(path: Path, content: str, mtime: int = SNAP_MTIME) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    os.utime(path, (mtime, mtime))
    return path


def clone_file(snapshot_file: Path, live_file: Path) -> Path:
    """Write a live copy that matches the snapshot file by size and mtime."""
    live_file.parent.mkdir(parents=True, exist_ok=True)
    live_file.write_bytes(snapshot_file.read_bytes())
    st = os.stat(snapshot_file)
    os.utime(live_file, ns=(st.st_atime_ns, st.st_mtime_ns))
    return live_file


@pytest.fixture
def snapshot(tmp_path) -> Path:
    root = tmp_path / "snap" / "daily-2024-01-01"
    write_file(root / "top.txt", "top level\n")
    write_file(root / "jobs" / "job.cfg", "retention=7\n")
    write_file(root / "jobs" / "alpha" / "data.bin", "alpha data\n")
    write_file(root / "jobs" / "alpha" / "sub" / "deep.bin", "deep alpha\n")
    write_file(root / "jobs" / "beta" / "data.bin", "beta data\n")
    return root


@pytest.fixture
def live(tmp_path) -> Path:
    root = tmp_path / "live"
    root.mkdir()
    return root


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(max_depth=1, copy_workers=2)
