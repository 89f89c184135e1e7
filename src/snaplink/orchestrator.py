"""
Recovery orchestration.

Runs the preflight checks, resolves which snapshot is in use, and sequences
the reconciliation and copy passes. Only the checks in this module are
fatal; everything after them is recorded per entry.
"""

import os
from collections import Counter
from pathlib import Path
from typing import Callable, List, Optional

from snaplink.bulk_copy import BulkCopier
from snaplink.config import EngineConfig
from snaplink.errors import PathNotFound, PathOverlap, SnapshotNotFound
from snaplink.link_codec import DEFAULT_CODEC
from snaplink.materialize import find_placeholders, materialize, placeholders_from
from snaplink.model import CopyOutcome, CopyStatus, EntryKind, Placeholder, Reason, ResultSet, Snapshot
from snaplink.pathing import is_under, split_segments
from snaplink.reconcile import reconcile


def preflight(snapshot_root: Optional[Path], live_root: Path) -> None:
    """
    Check both roots before anything is touched.

    Args:
        snapshot_root: Snapshot root, or None when it is not known yet
        live_root: Live root

    Raises:
        PathNotFound: If a root is missing or not a directory
        PathOverlap: If one root contains the other
    """
    if snapshot_root is not None and not Path(snapshot_root).is_dir():
        raise PathNotFound("Snapshot", snapshot_root)
    if not Path(live_root).is_dir():
        raise PathNotFound("Live", live_root)
    if snapshot_root is not None:
        snap = Path(os.path.realpath(snapshot_root))
        live = Path(os.path.realpath(live_root))
        if is_under(snap, live) or is_under(live, snap):
            raise PathOverlap(snapshot_root, live_root)


def derive_snapshot(live_root: Path, config: Optional[EngineConfig] = None, codec=None) -> Snapshot:
    """
    Recover the active snapshot from existing placeholders.

    The placeholder at ``live_root/rel`` targets ``snapshot_root/rel``, so a
    link whose decoded target ends in ``rel`` gives a candidate root.
    Links that do not end in their own relative path are user links and
    are skipped, as are candidates that overlap the live root. When
    candidates disagree, the root backed by the most links wins; ties go to
    the first one in walk order.

    Raises:
        SnapshotNotFound: If no placeholder under live_root yields a root
    """
    live_root = Path(os.path.abspath(live_root))
    live_real = Path(os.path.realpath(live_root))
    votes: Counter = Counter()

    for placeholder in find_placeholders(live_root, config, codec, onerror=_not_searched):
        if placeholder.target is None:
            continue
        root = _strip_relative(str(placeholder.target), placeholder.path.relative_to(live_root))
        if root is None:
            continue
        root_real = Path(os.path.realpath(root))
        if is_under(live_real, root_real) or is_under(root_real, live_real):
            continue
        votes[root] += 1

    if not votes:
        raise SnapshotNotFound(f"No placeholder link found under {live_root} to derive the snapshot from")
    root, _ = votes.most_common(1)[0]
    return Snapshot(Path(root))


def _not_searched(path: Path, error: OSError) -> None:
    # Unreadable live directories are reported by the copy pass.
    return None


def _strip_relative(target: str, rel: Path) -> Optional[str]:
    """Remove ``rel`` from the end of target, or None if target does not end with it."""
    rel_parts = split_segments(rel)
    target_parts = split_segments(target)
    if not rel_parts or len(target_parts) <= len(rel_parts):
        return None
    if target_parts[-len(rel_parts):] != rel_parts:
        return None
    root = target
    for _ in rel_parts:
        root = _strip_last_segment(root)
    return root or None


def _strip_last_segment(path: str) -> str:
    trimmed = path.rstrip("\\/")
    cut = max(trimmed.rfind("/"), trimmed.rfind("\\"))
    if cut <= 0:
        return trimmed[:cut + 1] if cut == 0 else ""
    return trimmed[:cut]


def resolve_snapshot(
    live_root: Path,
    snapshot_root: Optional[Path] = None,
    config: Optional[EngineConfig] = None,
    codec=None,
) -> Snapshot:
    """Use the given snapshot root, or derive it from an existing placeholder."""
    if snapshot_root is not None:
        return Snapshot(Path(snapshot_root))
    return derive_snapshot(live_root, config, codec)


def run_recovery(
    live_root: Path,
    snapshot_root: Optional[Path] = None,
    copy_only: bool = False,
    config: Optional[EngineConfig] = None,
    codec=None,
    confirm: Optional[Callable[[ResultSet, List[Placeholder]], bool]] = None,
    dry_run: bool = False,
    reconcile_progress=None,
    copy_progress=None,
) -> ResultSet:
    """
    Run a full recovery: reconcile, confirm, materialize.

    Args:
        live_root: Writable share being repaired
        snapshot_root: Snapshot root; required unless copy_only
        copy_only: Skip reconciliation and materialize the existing
            placeholders that point into the snapshot
        config: Engine tuning
        codec: Link codec
        confirm: Called with the reconcile results and the placeholders about
            to be materialized; returning False stops before copying
        dry_run: Reconcile without mutation and never copy
        reconcile_progress: Progress callback for the reconcile pass
        copy_progress: Progress callback for the copy pass

    Returns:
        Combined ResultSet of both passes

    Raises:
        PathNotFound, PathOverlap, SnapshotNotFound: Before any mutation
    """
    config = config or EngineConfig()
    codec = codec or DEFAULT_CODEC

    if not copy_only and snapshot_root is None:
        raise ValueError("snapshot_root is required unless copy_only is set")

    preflight(snapshot_root, live_root)
    snapshot = resolve_snapshot(live_root, snapshot_root, config, codec)
    preflight(snapshot.root, live_root)

    if copy_only:
        unreadable: List[CopyOutcome] = []

        def record_unreadable(path: Path, error: OSError) -> None:
            is_dir = os.path.isdir(path) and not os.path.islink(path)
            unreadable.append(CopyOutcome(
                path=path,
                kind=EntryKind.DIRECTORY if is_dir else EntryKind.FILE,
                status=CopyStatus.FAILED,
                reason=Reason.LIVE_UNREADABLE,
                detail=str(error),
            ))

        entries = find_placeholders(
            live_root, config, codec,
            snapshot_root=snapshot.root,
            onerror=record_unreadable,
        )
        result = ResultSet.of(copied=unreadable)
    else:
        result = reconcile(
            snapshot.root, live_root,
            config=config, codec=codec, dry_run=dry_run,
            progress_callback=reconcile_progress,
        )
        entries = placeholders_from(result)

    if dry_run or not entries:
        return result
    if confirm is not None and not confirm(result, entries):
        return result

    copier = BulkCopier.from_config(config)
    return result + materialize(entries, config=config, copier=copier, progress_callback=copy_progress)
