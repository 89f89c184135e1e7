"""Path helpers and the bounded snapshot walk."""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from snaplink.model import EntryKind

_SEGMENT_SPLIT = re.compile(r"[\\/]+")


def split_segments(path) -> List[str]:
    """Named segments of a path, splitting on either separator flavour."""
    return [part for part in _SEGMENT_SPLIT.split(str(path)) if part]


def path_segments(path) -> int:
    """
    Count the named segments of a path.

    Separators of either flavour are collapsed, so ``/snap/a/b.txt`` and
    ``\\\\nas\\snap\\a\\b.txt`` count 3 and 4 segments respectively.
    """
    return len(split_segments(path))


def is_under(path: Path, root: Path) -> bool:
    """Return True if path is root or below it."""
    try:
        Path(path).relative_to(root)
        return True
    except ValueError:
        return False


def to_relpath(path: Path, root: Path) -> Optional[Path]:
    """Return relative path from root, or None if path is not under root."""
    try:
        return Path(path).relative_to(root)
    except ValueError:
        return None


def same_path(a, b) -> bool:
    """Compare two path strings after normalizing redundant separators."""
    return os.path.normpath(str(a)) == os.path.normpath(str(b))


def staging_path(path: Path, suffix: str) -> Path:
    """Temporary sibling used while replacing ``path``."""
    return path.with_name(path.name + suffix)


@dataclass(frozen=True)
class WalkEntry:
    """A snapshot entry selected for reconciliation."""
    path: Path
    relpath: Path
    kind: EntryKind
    depth: int


def walk_snapshot(
    root: Path,
    max_depth: int,
    segment_limit: Optional[int] = None,
    onerror: Optional[Callable[[Path, OSError], None]] = None,
) -> Iterator[WalkEntry]:
    """
    Enumerate the snapshot entries that get linked.

    Depth 0 is the direct children of root. Files are yielded at every depth
    up to max_depth; directories only at exactly max_depth. When
    segment_limit is set, entries whose full path has more segments are
    skipped. Links inside the snapshot are not followed and not yielded.
    Files come first, then directories, each in sorted order.

    Args:
        root: Snapshot root
        max_depth: Deepest level to visit
        segment_limit: Optional cap on full-path segments
        onerror: Called with (directory, error) when a directory below the
            root cannot be listed. Without it the error propagates.

    Returns:
        Iterator of WalkEntry
    """
    files: List[WalkEntry] = []
    dirs: List[WalkEntry] = []
    root = Path(root)

    def within_limit(path: Path) -> bool:
        return segment_limit is None or path_segments(path) <= segment_limit

    def visit(directory: Path, depth: int) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            if onerror is None or directory == root:
                raise
            onerror(directory, e)
            return
        for entry in entries:
            path = Path(entry.path)
            if entry.is_symlink():
                continue
            if entry.is_file(follow_symlinks=False):
                if within_limit(path):
                    files.append(WalkEntry(path, path.relative_to(root), EntryKind.FILE, depth))
            elif entry.is_dir(follow_symlinks=False):
                if depth == max_depth:
                    if within_limit(path):
                        dirs.append(WalkEntry(path, path.relative_to(root), EntryKind.DIRECTORY, depth))
                elif depth < max_depth:
                    visit(path, depth + 1)

    visit(root, 0)
    yield from files
    yield from dirs
