"""
Reconciliation engine.

Walks the snapshot to a bounded depth and makes the live root point at it:
missing entries get a placeholder link, stale entries are replaced by one,
and current entries are left alone.

DECISIONS (per entry, live state decided once):
- absent       -> create link
- file / dir   -> size+mtime match ? ignore : replace with link
- placeholder  -> target == snapshot path ? ignore : replace with link
- other        -> ignore, never modified
"""

import os
from pathlib import Path
from typing import Callable, List, Optional

from snaplink.compare import compare_directory, compare_file
from snaplink.config import EngineConfig
from snaplink.errors import MalformedLinkTarget
from snaplink.fs_utils import classify, create_placeholder, replace_with_placeholder
from snaplink.link_codec import DEFAULT_CODEC
from snaplink.model import (
    Decision,
    EntryKind,
    EntryState,
    Reason,
    ReconcileOutcome,
    ResultSet,
)
from snaplink.pathing import is_under, same_path, walk_snapshot

ProgressCallback = Callable[[int, int, ReconcileOutcome], None]


def reconcile(
    snapshot_root: Path,
    live_root: Path,
    config: Optional[EngineConfig] = None,
    codec=None,
    dry_run: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> ResultSet:
    """
    Reconcile the live root against a snapshot.

    Args:
        snapshot_root: Read-only snapshot tree
        live_root: Writable share being repaired
        config: Depth and segment limits (default: EngineConfig())
        codec: Link codec (default: UNC-token codec)
        dry_run: If True, decide every entry without touching the live root
        progress_callback: Optional callback(processed, total, outcome)

    Returns:
        ResultSet holding one ReconcileOutcome per selected snapshot entry
    """
    config = config or EngineConfig()
    codec = codec or DEFAULT_CODEC
    snapshot_root = Path(os.path.abspath(snapshot_root))
    live_root = Path(os.path.abspath(live_root))

    outcomes: List[ReconcileOutcome] = []

    def unreadable(directory: Path, error: OSError) -> None:
        outcomes.append(ReconcileOutcome(
            path=live_root / directory.relative_to(snapshot_root),
            kind=EntryKind.DIRECTORY,
            decision=Decision.FAILED,
            reason=Reason.SNAPSHOT_UNREADABLE,
            target=directory,
            detail=str(error),
        ))

    entries = list(walk_snapshot(
        snapshot_root,
        max_depth=config.max_depth,
        segment_limit=config.segment_limit,
        onerror=unreadable,
    ))

    total = len(entries)
    for processed, entry in enumerate(entries, 1):
        outcome = reconcile_entry(
            entry.path,
            live_root / entry.relpath,
            entry.kind,
            codec=codec,
            dry_run=dry_run,
            snapshot_root=snapshot_root,
        )
        outcomes.append(outcome)
        if progress_callback:
            progress_callback(processed, total, outcome)

    return ResultSet.of(reconciled=outcomes)


def reconcile_entry(
    snapshot_path: Path,
    live_path: Path,
    kind: EntryKind,
    codec=None,
    dry_run: bool = False,
    snapshot_root: Optional[Path] = None,
) -> ReconcileOutcome:
    """
    Decide and apply the outcome for a single entry.

    Never raises for filesystem or codec errors; they become FAILED outcomes.
    When snapshot_root is given, an entry whose live parent resolves into the
    snapshot is failed without being touched.
    """
    codec = codec or DEFAULT_CODEC

    def outcome(decision: Decision, reason: Reason, detail: Optional[str] = None) -> ReconcileOutcome:
        return ReconcileOutcome(
            path=live_path,
            kind=kind,
            decision=decision,
            reason=reason,
            target=snapshot_path,
            detail=detail,
        )

    try:
        encoded = codec.encode(snapshot_path)
    except MalformedLinkTarget as e:
        return outcome(Decision.FAILED, Reason.MALFORMED_LINK, str(e))

    try:
        state, raw_target = classify(live_path)
    except OSError as e:
        return outcome(Decision.FAILED, Reason.LINK_CREATE_FAILED, f"Cannot stat live entry: {e}")

    if snapshot_root is not None and _resolves_into(live_path.parent, snapshot_root):
        return outcome(Decision.FAILED, Reason.LINK_CREATE_FAILED, "Live parent resolves into the snapshot")

    is_directory = kind == EntryKind.DIRECTORY

    def replace(detail: Optional[str]) -> ReconcileOutcome:
        if dry_run:
            return outcome(Decision.LINK_REPLACED, Reason.LINK_REPLACED, detail)
        try:
            replace_with_placeholder(live_path, encoded, is_directory)
        except OSError as e:
            return outcome(Decision.FAILED, Reason.LINK_REPLACE_FAILED, f"Replace failed: {e}")
        return outcome(Decision.LINK_REPLACED, Reason.LINK_REPLACED, detail)

    if state == EntryState.ABSENT:
        if dry_run:
            return outcome(Decision.LINK_CREATED, Reason.LINK_CREATED)
        try:
            create_placeholder(live_path, encoded, is_directory)
        except OSError as e:
            return outcome(Decision.FAILED, Reason.LINK_CREATE_FAILED, f"Create failed: {e}")
        return outcome(Decision.LINK_CREATED, Reason.LINK_CREATED)

    elif state == EntryState.FILE or state == EntryState.DIRECTORY:
        if (state == EntryState.DIRECTORY) != is_directory:
            return outcome(
                Decision.IGNORED,
                Reason.TYPE_MISMATCH,
                f"Live entry is a {state.value}, snapshot entry is a {kind.value}",
            )
        if is_directory:
            ok, detail = compare_directory(live_path, snapshot_path)
        else:
            ok, detail = compare_file(live_path, snapshot_path)
        if ok:
            return outcome(Decision.IGNORED, Reason.ALREADY_CURRENT)
        return replace(detail)

    elif state == EntryState.PLACEHOLDER:
        try:
            current = codec.decode(raw_target)
        except MalformedLinkTarget as e:
            return outcome(Decision.FAILED, Reason.MALFORMED_LINK, str(e))
        if same_path(current, snapshot_path):
            return outcome(Decision.IGNORED, Reason.LINK_CURRENT)
        return replace(f"Link pointed at {current}")

    elif state == EntryState.OTHER:
        return outcome(Decision.IGNORED, Reason.UNKNOWN_TYPE)

    raise AssertionError(f"Unhandled entry state: {state}")


def _resolves_into(path: Path, root: Path) -> bool:
    real = Path(os.path.realpath(path))
    return is_under(real, Path(os.path.realpath(root)))
