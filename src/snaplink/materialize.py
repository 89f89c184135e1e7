"""
Staged copy engine.

Turns placeholder links back into real data. Every copy lands at a
temporary sibling (``<name>.tmp``) first and is renamed into place, so a
failed copy leaves the placeholder untouched.

OUTCOMES:
- copied   source existed, data now at the live path
- skipped  source aged out of the snapshot; placeholder removed, nothing left behind
- failed   copy, rename, timeout or malformed target; rename failures keep
           the staged data on disk as an orphan for manual recovery
"""

import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from snaplink.bulk_copy import BulkCopier
from snaplink.config import EngineConfig
from snaplink.errors import BulkCopyError, CopyTimeout, MalformedLinkTarget
from snaplink.fs_utils import classify, remove_placeholder
from snaplink.link_codec import DEFAULT_CODEC
from snaplink.model import (
    CopyOutcome,
    CopyStatus,
    Decision,
    EntryKind,
    EntryState,
    Placeholder,
    Reason,
    ResultSet,
)
from snaplink.pathing import same_path, staging_path

ProgressCallback = Callable[[int, int, CopyOutcome], None]


def placeholders_from(result_set: ResultSet) -> List[Placeholder]:
    """Placeholders created or replaced by a reconcile pass, in pass order."""
    return [
        Placeholder(path=o.path, kind=o.kind, target=o.target)
        for o in result_set.with_decision(Decision.LINK_CREATED, Decision.LINK_REPLACED)
    ]


def find_placeholders(
    live_root: Path,
    config: Optional[EngineConfig] = None,
    codec=None,
    snapshot_root: Optional[Path] = None,
    onerror: Optional[Callable[[Path, OSError], None]] = None,
) -> List[Placeholder]:
    """
    Discover existing placeholder links under the live root.

    Visits the same depth window as reconciliation. The kind is taken from
    what the decoded target is in the snapshot; a target that no longer
    exists is reported as a file. Malformed targets are returned with
    ``target=None`` so the copy engine can record them.

    Args:
        live_root: Live root to search
        config: Depth window
        codec: Link codec
        snapshot_root: When given, only links whose decoded target is
            exactly ``snapshot_root/<relative path>`` are returned. Other
            links, malformed ones included, belong to the user and are left out.
        onerror: Called with (path, error) when a directory below the root
            cannot be listed or a link cannot be read. Without it the error
            propagates.

    Returns:
        Placeholders in sorted walk order
    """
    config = config or EngineConfig()
    codec = codec or DEFAULT_CODEC
    live_root = Path(live_root)
    found: List[Placeholder] = []

    def failed(path: Path, error: OSError) -> None:
        if onerror is None or path == live_root:
            raise error
        onerror(path, error)

    def visit(directory: Path, depth: int) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            failed(directory, e)
            return
        for entry in entries:
            path = Path(entry.path)
            if entry.is_symlink():
                try:
                    raw = os.readlink(path)
                except OSError as e:
                    failed(path, e)
                    continue
                placeholder = _placeholder(path, raw, codec)
                if snapshot_root is None or _targets_snapshot(placeholder, live_root, snapshot_root):
                    found.append(placeholder)
            elif entry.is_dir(follow_symlinks=False) and depth < config.max_depth:
                visit(path, depth + 1)

    visit(live_root, 0)
    return found


def _placeholder(path: Path, raw: str, codec) -> Placeholder:
    try:
        target = Path(codec.decode(raw))
    except MalformedLinkTarget:
        return Placeholder(path, EntryKind.FILE, None, raw)
    kind = EntryKind.DIRECTORY if target.is_dir() else EntryKind.FILE
    return Placeholder(path, kind, target, raw)


def _targets_snapshot(placeholder: Placeholder, live_root: Path, snapshot_root: Path) -> bool:
    if placeholder.target is None:
        return False
    expected = Path(os.path.abspath(snapshot_root)) / placeholder.path.relative_to(live_root)
    return same_path(placeholder.target, expected)


def materialize(
    entries: Iterable[Placeholder],
    config: Optional[EngineConfig] = None,
    copier: Optional[BulkCopier] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> ResultSet:
    """
    Replace placeholders with real copies of their snapshot targets.

    Args:
        entries: Placeholders to materialize
        config: Staging suffix and entry-level parallelism
        copier: Directory copy primitive (default: built from config)
        progress_callback: Optional callback(processed, total, outcome)

    Returns:
        ResultSet with one CopyOutcome per entry, in input order
    """
    config = config or EngineConfig()
    copier = copier or BulkCopier.from_config(config)
    entries = list(entries)
    total = len(entries)
    outcomes: List[Optional[CopyOutcome]] = [None] * total

    if config.entry_workers > 1 and total > 1:
        with ThreadPoolExecutor(max_workers=config.entry_workers) as executor:
            futures = {
                executor.submit(materialize_entry, entry, copier, config.staging_suffix): index
                for index, entry in enumerate(entries)
            }
            processed = 0
            for fut in futures:
                index = futures[fut]
                outcomes[index] = fut.result()
                processed += 1
                if progress_callback:
                    progress_callback(processed, total, outcomes[index])
    else:
        for index, entry in enumerate(entries):
            outcomes[index] = materialize_entry(entry, copier, config.staging_suffix)
            if progress_callback:
                progress_callback(index + 1, total, outcomes[index])

    return ResultSet.of(copied=outcomes)


def materialize_entry(entry: Placeholder, copier: BulkCopier, staging_suffix: str = ".tmp") -> CopyOutcome:
    """
    Materialize one placeholder.

    Steps are strictly sequential for the entry. Never raises for filesystem
    or copy errors; they become FAILED outcomes.
    """
    path = Path(entry.path)

    def outcome(status: CopyStatus, reason: Reason, detail: Optional[str] = None,
                orphan: Optional[Path] = None) -> CopyOutcome:
        return CopyOutcome(
            path=path,
            kind=entry.kind,
            status=status,
            reason=reason,
            source=entry.target,
            detail=detail,
            orphan=orphan,
        )

    if entry.target is None:
        return outcome(CopyStatus.FAILED, Reason.MALFORMED_LINK, f"Cannot decode link target {entry.raw_target!r}")

    try:
        state, _ = classify(path)
    except OSError as e:
        return outcome(CopyStatus.FAILED, Reason.COPY_FAILED, f"Cannot stat live entry: {e}")
    if state != EntryState.PLACEHOLDER:
        return outcome(CopyStatus.FAILED, Reason.COPY_FAILED, f"Live entry is no longer a placeholder ({state.value})")

    source = Path(entry.target)
    if not source.exists():
        try:
            remove_placeholder(path)
        except OSError as e:
            return outcome(CopyStatus.FAILED, Reason.COPY_FAILED, f"Source missing and placeholder not removed: {e}")
        return outcome(CopyStatus.SKIPPED, Reason.SOURCE_MISSING)

    staged = staging_path(path, staging_suffix)
    if os.path.lexists(staged):
        return outcome(
            CopyStatus.FAILED,
            Reason.RENAME_FAILED,
            "Staging path already exists from an earlier run",
            orphan=staged,
        )

    if entry.kind == EntryKind.FILE:
        return _materialize_file(source, path, staged, outcome)
    return _materialize_directory(source, path, staged, copier, entry, outcome)


def _materialize_file(source: Path, path: Path, staged: Path, outcome) -> CopyOutcome:
    try:
        shutil.copy2(source, staged)
    except OSError as e:
        return _failed_copy(outcome, Reason.COPY_FAILED, f"Copy failed: {e}", staged)

    try:
        os.replace(staged, path)
    except OSError as e:
        return outcome(CopyStatus.FAILED, Reason.RENAME_FAILED, f"Rename failed: {e}", orphan=staged)

    return outcome(CopyStatus.COPIED, Reason.COPIED)


def _materialize_directory(source: Path, path: Path, staged: Path, copier: BulkCopier,
                           entry: Placeholder, outcome) -> CopyOutcome:
    try:
        copier.copy(source, staged)
    except CopyTimeout as e:
        return _failed_copy(outcome, Reason.TIMEOUT, str(e), staged)
    except BulkCopyError as e:
        return _failed_copy(outcome, Reason.COPY_FAILED, str(e), staged)

    # A directory cannot be renamed over a link, so the link goes first.
    raw_target = entry.raw_target
    try:
        raw_target = os.readlink(path)
        remove_placeholder(path)
        os.rename(staged, path)
    except OSError as e:
        detail = f"Rename failed: {e}"
        if raw_target and not os.path.lexists(path):
            try:
                os.symlink(raw_target, path, target_is_directory=True)
            except OSError as restore_error:
                detail = f"{detail}; placeholder not restored: {restore_error}"
        return outcome(CopyStatus.FAILED, Reason.RENAME_FAILED, detail, orphan=staged)

    return outcome(CopyStatus.COPIED, Reason.COPIED)


def _failed_copy(outcome, reason: Reason, detail: str, staged: Path) -> CopyOutcome:
    """Remove a partial staging copy; the placeholder is still in place."""
    try:
        if os.path.islink(staged) or staged.is_file():
            staged.unlink(missing_ok=True)
        elif staged.is_dir():
            shutil.rmtree(staged)
    except OSError as e:
        return outcome(CopyStatus.FAILED, reason, f"{detail}; partial copy not removed: {e}", orphan=staged)
    return outcome(CopyStatus.FAILED, reason, detail)
