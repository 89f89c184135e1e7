"""
Tests for the staged copy engine.

IMPORTANT: These tests replace real placeholder links with real copies and
check that a failed copy never loses the placeholder.
"""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from snaplink.bulk_copy import BulkCopier
from snaplink.config import EngineConfig
from snaplink.errors import BulkCopyError, CopyTimeout
from snaplink.materialize import find_placeholders, materialize, materialize_entry, placeholders_from
from snaplink.model import CopyStatus, EntryKind, Placeholder, Reason
from snaplink.reconcile import reconcile

from conftest import write_file


def _linked(snapshot, live, config):
    return placeholders_from(reconcile(snapshot, live, config=config))


def test_full_materialization_matches_snapshot(snapshot, live, config):
    entries = _linked(snapshot, live, config)
    result = materialize(entries, config=config)

    assert result.counts.files_copied == 2
    assert result.counts.directories_copied == 2
    for rel in ("top.txt", "jobs/job.cfg", "jobs/alpha/data.bin", "jobs/alpha/sub/deep.bin", "jobs/beta/data.bin"):
        live_file = live / rel
        snap_file = snapshot / rel
        assert not live_file.is_symlink()
        assert live_file.read_bytes() == snap_file.read_bytes()
        assert os.stat(live_file).st_size == os.stat(snap_file).st_size
        assert os.stat(live_file).st_mtime_ns == os.stat(snap_file).st_mtime_ns
    assert not (live / "jobs" / "alpha").is_symlink()
    assert not list(live.rglob("*.tmp"))


def test_materialized_tree_reconciles_as_current(snapshot, live, config):
    materialize(_linked(snapshot, live, config), config=config)
    result = reconcile(snapshot, live, config=config)
    assert {o.reason for o in result.reconciled} == {Reason.ALREADY_CURRENT}


def test_outcomes_keep_input_order(snapshot, live, config):
    entries = _linked(snapshot, live, config)
    result = materialize(entries, config=config)
    assert [o.path for o in result.copied] == [e.path for e in entries]


def test_entry_workers_process_entries_concurrently(snapshot, live):
    config = EngineConfig(max_depth=1, copy_workers=2, entry_workers=3)
    entries = _linked(snapshot, live, config)
    seen = []
    result = materialize(entries, config=config, progress_callback=lambda n, total, o: seen.append(n))

    assert [o.path for o in result.copied] == [e.path for e in entries]
    assert result.counts.copies_failed == 0
    assert seen == [1, 2, 3, 4]


def test_source_missing_removes_placeholder(snapshot, live, config):
    entries = _linked(snapshot, live, config)
    (snapshot / "top.txt").unlink()

    result = materialize(entries, config=config)
    outcome = result.copied[0]

    assert outcome.status == CopyStatus.SKIPPED
    assert outcome.reason == Reason.SOURCE_MISSING
    assert not os.path.lexists(live / "top.txt")
    assert result.counts.copies_skipped == 1


def test_copy_failure_keeps_placeholder(snapshot, live, config):
    entries = [e for e in _linked(snapshot, live, config) if e.kind == EntryKind.DIRECTORY]
    copier = MagicMock(spec=BulkCopier)
    copier.copy.side_effect = BulkCopyError("disk full")

    result = materialize(entries, config=config, copier=copier)

    assert all(o.status == CopyStatus.FAILED for o in result.copied)
    assert result.copied[0].reason == Reason.COPY_FAILED
    assert result.copied[0].detail == "disk full"
    assert os.readlink(live / "jobs" / "alpha") == str(snapshot / "jobs" / "alpha")


def test_timeout_removes_partial_copy(snapshot, live, config):
    entry = next(e for e in _linked(snapshot, live, config) if e.kind == EntryKind.DIRECTORY)
    staged = entry.path.with_name(entry.path.name + ".tmp")

    def partial_copy(source, dest):
        write_file(Path(dest) / "half.bin", "partial")
        raise CopyTimeout("exceeded 5s")

    copier = MagicMock(spec=BulkCopier)
    copier.copy.side_effect = partial_copy

    outcome = materialize_entry(entry, copier)

    assert outcome.status == CopyStatus.FAILED
    assert outcome.reason == Reason.TIMEOUT
    assert outcome.orphan is None
    assert not staged.exists()
    assert entry.path.is_symlink()


def test_directory_rename_failure_leaves_orphan_and_restores_placeholder(snapshot, live, config, monkeypatch):
    entry = next(e for e in _linked(snapshot, live, config) if e.kind == EntryKind.DIRECTORY)
    raw = os.readlink(entry.path)
    real_rename = os.rename

    def failing_rename(src, dst):
        if str(src).endswith(".tmp"):
            raise PermissionError(13, "Permission denied")
        return real_rename(src, dst)

    monkeypatch.setattr(os, "rename", failing_rename)
    outcome = materialize_entry(entry, BulkCopier(workers=1))
    monkeypatch.undo()

    staged = entry.path.with_name(entry.path.name + ".tmp")
    assert outcome.status == CopyStatus.FAILED
    assert outcome.reason == Reason.RENAME_FAILED
    assert outcome.orphan == staged
    assert (staged / "data.bin").read_text() == "alpha data\n"
    assert os.readlink(entry.path) == raw


def test_file_rename_failure_leaves_orphan(snapshot, live, config, monkeypatch):
    entry = next(e for e in _linked(snapshot, live, config) if e.kind == EntryKind.FILE)

    def failing_replace(src, dst):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(os, "replace", failing_replace)
    outcome = materialize_entry(entry, BulkCopier(workers=1))
    monkeypatch.undo()

    assert outcome.reason == Reason.RENAME_FAILED
    assert outcome.orphan.read_bytes() == Path(entry.target).read_bytes()
    assert entry.path.is_symlink()


def test_existing_staging_path_is_never_deleted(snapshot, live, config):
    entry = next(e for e in _linked(snapshot, live, config) if e.kind == EntryKind.DIRECTORY)
    staged = entry.path.with_name(entry.path.name + ".tmp")
    write_file(staged / "from-last-run.bin", "keep")

    outcome = materialize_entry(entry, BulkCopier(workers=1))

    assert outcome.reason == Reason.RENAME_FAILED
    assert outcome.orphan == staged
    assert (staged / "from-last-run.bin").read_text() == "keep"
    assert entry.path.is_symlink()


def test_malformed_entry_is_failed():
    entry = Placeholder(Path("/live/x"), EntryKind.FILE, None, "garbage")
    outcome = materialize_entry(entry, BulkCopier(workers=1))
    assert outcome.status == CopyStatus.FAILED
    assert outcome.reason == Reason.MALFORMED_LINK


def test_entry_that_is_no_longer_a_placeholder_is_not_overwritten(snapshot, live, config):
    entry = next(e for e in _linked(snapshot, live, config) if e.kind == EntryKind.FILE)
    os.unlink(entry.path)
    write_file(entry.path, "user wrote this")

    outcome = materialize_entry(entry, BulkCopier(workers=1))

    assert outcome.status == CopyStatus.FAILED
    assert entry.path.read_text() == "user wrote this"


def test_find_placeholders(snapshot, live, config):
    reconcile(snapshot, live, config=config)
    os.symlink("relative/garbage", live / "broken")

    found = {p.path.name: p for p in find_placeholders(live, config)}

    assert found["alpha"].kind == EntryKind.DIRECTORY
    assert found["top.txt"].kind == EntryKind.FILE
    assert found["top.txt"].target == snapshot / "top.txt"
    assert found["broken"].target is None
    assert found["broken"].raw_target == "relative/garbage"


def test_find_placeholders_within_snapshot_skips_user_links(snapshot, live, config, tmp_path):
    reconcile(snapshot, live, config=config)
    os.symlink("relative/garbage", live / "broken")
    os.symlink("/etc", live / "etc-link")
    os.symlink(str(tmp_path / "elsewhere" / "top.txt"), live / "jobs" / "top.txt")

    found = find_placeholders(live, config, snapshot_root=snapshot)

    assert sorted(str(p.path.relative_to(live)) for p in found) == sorted([
        "top.txt",
        os.path.join("jobs", "job.cfg"),
        os.path.join("jobs", "alpha"),
        os.path.join("jobs", "beta"),
    ])


def _scandir_refusing(name):
    real_scandir = os.scandir

    def scandir(path="."):
        if os.path.basename(os.fspath(path)) == name:
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    return scandir


def test_find_placeholders_unreadable_directory_raises(snapshot, live, config, monkeypatch):
    reconcile(snapshot, live, config=config)
    (live / "locked").mkdir()
    monkeypatch.setattr(os, "scandir", _scandir_refusing("locked"))

    with pytest.raises(PermissionError):
        find_placeholders(live, config)


def test_find_placeholders_reports_unreadable_directory(snapshot, live, config, monkeypatch):
    reconcile(snapshot, live, config=config)
    (live / "locked").mkdir()
    monkeypatch.setattr(os, "scandir", _scandir_refusing("locked"))
    errors = []

    found = find_placeholders(live, config, onerror=lambda path, e: errors.append((path, e)))

    assert [path for path, _ in errors] == [live / "locked"]
    assert isinstance(errors[0][1], PermissionError)
    assert len(found) == 4


def test_find_placeholders_unreadable_root_always_raises(live, config, monkeypatch):
    monkeypatch.setattr(os, "scandir", _scandir_refusing("live"))
    with pytest.raises(PermissionError):
        find_placeholders(live, config, onerror=lambda path, e: None)


def test_empty_entry_list():
    result = materialize([], config=EngineConfig())
    assert not result
