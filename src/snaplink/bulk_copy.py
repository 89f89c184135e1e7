"""
Bulk directory copy primitive.

Copies a whole snapshot directory into a staging path. The internal backend
walks the tree once, recreates directories and inner links, and copies file
bytes plus metadata on a bounded thread pool. The rsync backend hands the
whole tree to ``rsync -a``. Both honour a deadline.
"""

import os
import shutil
import subprocess
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from snaplink.config import default_copy_workers
from snaplink.errors import BulkCopyError, CopyTimeout


@dataclass
class CopyStats:
    """Totals for one bulk copy."""
    files: int = 0
    directories: int = 0
    links: int = 0
    bytes_copied: int = 0
    backend: str = "internal"


COPY_CHUNK_SIZE = 1024 * 1024


def _expired(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def _copy_file_worker(
    source: str,
    dest: str,
    deadline: Optional[float] = None,
    stop: Optional[threading.Event] = None,
) -> int:
    """
    Copy one regular file in chunks, then its metadata.

    The deadline and the stop event are checked between chunks, so a worker
    gives up within one chunk of either. A single read that never returns
    (a hung mount) still holds its worker.

    Returns:
        Bytes copied

    Raises:
        CopyTimeout: If the deadline passes or stop is set mid-copy
    """
    copied = 0
    with open(source, "rb") as fsrc, open(dest, "xb") as fdst:
        while True:
            if _expired(deadline) or (stop is not None and stop.is_set()):
                raise CopyTimeout(f"Stopped copying {source} after {copied} bytes")
            chunk = fsrc.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            fdst.write(chunk)
            copied += len(chunk)
    shutil.copystat(source, dest)
    return copied


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return deadline - time.monotonic()


def copy_tree(
    source: Path,
    dest: Path,
    workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> CopyStats:
    """
    Copy a directory tree with a bounded pool of file copy workers.

    ``dest`` must not exist. File contents, permissions and timestamps are
    preserved; directory timestamps are applied bottom-up after all files
    land. Links inside the tree are recreated, not followed.

    Args:
        source: Directory to copy
        dest: New directory to create
        workers: Parallel file copies (default: CPU count, capped)
        timeout: Deadline in seconds for the whole copy

    Returns:
        CopyStats

    Raises:
        CopyTimeout: If the deadline passes before the copy completes
        BulkCopyError: On any other failure
    """
    source = Path(source)
    dest = Path(dest)
    workers = max(1, workers or default_copy_workers())
    deadline = None if timeout is None else time.monotonic() + timeout
    stats = CopyStats()

    if os.path.lexists(dest):
        raise BulkCopyError(f"Destination already exists: {dest}")

    dir_pairs: List[Tuple[str, str]] = []
    file_pairs: List[Tuple[str, str]] = []
    try:
        os.mkdir(dest)
        dir_pairs.append((str(source), str(dest)))
        for root, dirnames, filenames in os.walk(source, onerror=_raise):
            rel = os.path.relpath(root, source)
            target_root = dest if rel == "." else dest / rel
            for name in dirnames:
                src = os.path.join(root, name)
                dst = os.path.join(target_root, name)
                if os.path.islink(src):
                    os.symlink(os.readlink(src), dst, target_is_directory=True)
                    stats.links += 1
                else:
                    os.mkdir(dst)
                    dir_pairs.append((src, dst))
                    stats.directories += 1
            for name in filenames:
                src = os.path.join(root, name)
                dst = os.path.join(target_root, name)
                if os.path.islink(src):
                    os.symlink(os.readlink(src), dst)
                    stats.links += 1
                elif os.path.isfile(src):
                    file_pairs.append((src, dst))
                else:
                    raise shutil.SpecialFileError(f"Cannot copy special file {src}")
            remaining = _remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise CopyTimeout(f"Copy of {source} exceeded {timeout}s while listing")
    except CopyTimeout:
        raise
    except OSError as e:
        raise BulkCopyError(f"Cannot prepare copy of {source}: {e}") from e

    if file_pairs:
        stop = threading.Event()
        executor = ThreadPoolExecutor(max_workers=workers)
        try:
            futures = [executor.submit(_copy_file_worker, src, dst, deadline, stop) for src, dst in file_pairs]
            done, pending = wait(futures, timeout=_remaining(deadline), return_when=FIRST_EXCEPTION)
            for fut in done:
                error = fut.exception()
                if isinstance(error, CopyTimeout):
                    raise CopyTimeout(f"Copy of {source} exceeded {timeout}s") from error
                if error is not None:
                    raise BulkCopyError(f"File copy failed: {error}") from error
                stats.bytes_copied += fut.result()
            if pending:
                raise CopyTimeout(
                    f"Copy of {source} exceeded {timeout}s with {len(pending)} files outstanding"
                )
            stats.files = len(done)
        finally:
            # Running workers see the event at their next chunk.
            stop.set()
            executor.shutdown(wait=True, cancel_futures=True)

    try:
        for src, dst in reversed(dir_pairs):
            shutil.copystat(src, dst, follow_symlinks=False)
    except OSError as e:
        raise BulkCopyError(f"Cannot copy directory metadata: {e}") from e

    return stats


def _raise(error: OSError) -> None:
    raise error


def rsync_tree(
    source: Path,
    dest: Path,
    rsync_cmd: str,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess:
    """Copy a tree with ``rsync -a`` into a new destination directory."""
    cmd = [rsync_cmd, "-a", "--", f"{source}/", f"{dest}/"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise CopyTimeout(f"rsync of {source} exceeded {timeout}s") from e
    except OSError as e:
        raise BulkCopyError(f"Cannot run rsync: {e}") from e

    if result.returncode != 0:
        err_text = (result.stderr or result.stdout or "").strip()
        if err_text:
            err_text = err_text.splitlines()[-1]
        message = f"rsync returned {result.returncode}"
        if err_text:
            message = f"{message}: {err_text}"
        raise BulkCopyError(message)
    return result


class BulkCopier:
    """
    Directory copy primitive used by the staged copy engine.

    Holds no per-copy state, so one instance can serve concurrent entries.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        timeout: Optional[float] = None,
        use_rsync: bool = False,
        rsync_path: Optional[str] = None,
    ):
        self.workers = workers or default_copy_workers()
        self.timeout = timeout
        self.rsync_cmd = None
        self.notes: List[str] = []
        if use_rsync:
            self.rsync_cmd = rsync_path or shutil.which("rsync")
            if not self.rsync_cmd:
                self.notes.append("rsync not found; falling back to internal copier")

    @classmethod
    def from_config(cls, config) -> "BulkCopier":
        return cls(
            workers=config.resolved_copy_workers,
            timeout=config.copy_timeout,
            use_rsync=config.use_rsync,
            rsync_path=config.rsync_path,
        )

    @property
    def backend(self) -> str:
        return "rsync" if self.rsync_cmd else "internal"

    def copy(self, source: Path, dest: Path) -> CopyStats:
        """Copy source tree to dest; raises CopyTimeout or BulkCopyError."""
        if self.rsync_cmd:
            if os.path.lexists(dest):
                raise BulkCopyError(f"Destination already exists: {dest}")
            rsync_tree(source, dest, self.rsync_cmd, timeout=self.timeout)
            return CopyStats(backend="rsync")
        return copy_tree(source, dest, workers=self.workers, timeout=self.timeout)
