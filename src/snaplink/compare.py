"""
Metadata comparison between live entries and their snapshot counterparts.

Equality is size plus modification time; content is never read. A stat
failure on either side counts as a mismatch.
"""

import os
from pathlib import Path
from typing import Optional, Tuple


def compare_file(live_path: Path, snapshot_path: Path) -> Tuple[bool, Optional[str]]:
    """
    Compare a live regular file against its snapshot counterpart.

    Args:
        live_path: Live file
        snapshot_path: Snapshot file

    Returns:
        Tuple of (matches, mismatch_detail)
    """
    try:
        live = os.stat(live_path)
        snap = os.stat(snapshot_path)
    except OSError as e:
        return False, f"Cannot stat file: {e}"

    if live.st_size != snap.st_size:
        return False, f"Size differs: live {live.st_size}, snapshot {snap.st_size}"

    if live.st_mtime_ns != snap.st_mtime_ns:
        return False, "Modification time differs"

    return True, None


def matches(live_path: Path, snapshot_path: Path) -> bool:
    """True iff byte length and modification time are equal."""
    ok, _ = compare_file(live_path, snapshot_path)
    return ok


def compare_directory(live_dir: Path, snapshot_dir: Path) -> Tuple[bool, Optional[str]]:
    """
    Compare a live directory against its snapshot counterpart, one level deep.

    Every direct child file of the snapshot directory must exist in the live
    directory as a regular file and match by size and mtime. Subdirectories
    are not inspected, so a stale grandchild never fails the comparison.
    Live files with no snapshot counterpart are not considered.

    Returns:
        Tuple of (matches, mismatch_detail)
    """
    try:
        with os.scandir(snapshot_dir) as it:
            names = sorted(e.name for e in it if e.is_file(follow_symlinks=False))
    except OSError as e:
        return False, f"Cannot list snapshot directory: {e}"

    for name in names:
        live_child = Path(live_dir) / name
        if os.path.islink(live_child) or not live_child.is_file():
            return False, f"Missing or not a regular file: {name}"
        ok, detail = compare_file(live_child, Path(snapshot_dir) / name)
        if not ok:
            return False, f"{name}: {detail}"

    return True, None


def directory_matches(live_dir: Path, snapshot_dir: Path) -> bool:
    ok, _ = compare_directory(live_dir, snapshot_dir)
    return ok
