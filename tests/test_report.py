"""
Tests for result aggregation and report output.
"""

import csv
from io import StringIO
from pathlib import Path

import orjson
from rich.console import Console

from snaplink.model import (
    CopyOutcome,
    CopyStatus,
    Decision,
    EntryKind,
    Reason,
    ReconcileOutcome,
    ResultSet,
    Snapshot,
)
from snaplink.report import REPORT_HEADER, print_summary, summary_dict, write_report, write_summary


def _sample() -> ResultSet:
    reconciled = ResultSet.of(reconciled=[
        ReconcileOutcome(Path("/live/a.txt"), EntryKind.FILE, Decision.IGNORED, Reason.ALREADY_CURRENT),
        ReconcileOutcome(Path("/live/jobs/alpha"), EntryKind.DIRECTORY, Decision.LINK_CREATED, Reason.LINK_CREATED),
        ReconcileOutcome(Path("/live/b.txt"), EntryKind.FILE, Decision.FAILED, Reason.MALFORMED_LINK,
                         detail="Link target is not absolute: 'x'"),
    ])
    copied = ResultSet.of(copied=[
        CopyOutcome(Path("/live/jobs/alpha"), EntryKind.DIRECTORY, CopyStatus.FAILED, Reason.RENAME_FAILED,
                    detail="Rename failed", orphan=Path("/live/jobs/alpha.tmp")),
        CopyOutcome(Path("/live/c.txt"), EntryKind.FILE, CopyStatus.COPIED, Reason.COPIED),
    ])
    return reconciled + copied


def test_counts():
    counts = _sample().counts
    assert counts.links_created == 1
    assert counts.links_ignored == 1
    assert counts.links_failed == 1
    assert counts.files_copied == 1
    assert counts.copies_failed == 1
    assert counts.orphans == 1
    assert counts.failures == 2


def test_combining_keeps_pass_order():
    combined = _sample()
    assert [o.path.name for o in combined.reconciled] == ["a.txt", "alpha", "b.txt"]
    assert [o.path.name for o in combined.copied] == ["alpha", "c.txt"]
    assert not ResultSet()


def test_report_rows_skip_quiet_outcomes():
    rows = _sample().report_rows()
    assert ("link", "file", "already-current", "/live/a.txt", "") not in rows
    assert rows[0] == ("link", "directory", "link-created", "/live/jobs/alpha", "")
    assert rows[2] == ("copy", "directory", "rename-failed", "/live/jobs/alpha",
                       "Rename failed (orphan: /live/jobs/alpha.tmp)")
    assert len(_sample().report_rows(include_quiet=True)) == 5


def test_write_report(tmp_path):
    path = tmp_path / "out" / "report.tsv"
    assert write_report(_sample(), path) == 4

    with open(path, newline="") as handle:
        rows = list(csv.reader(handle, delimiter="\t"))
    assert tuple(rows[0]) == REPORT_HEADER
    assert rows[1] == ["link", "directory", "link-created", "/live/jobs/alpha", ""]
    assert len(rows) == 5


def test_write_summary(tmp_path):
    path = tmp_path / "summary.json"
    write_summary(_sample(), path, snapshot=Snapshot(Path("/snap/daily-2024-01-01")), live_root=Path("/live"))
    data = orjson.loads(path.read_bytes())
    assert data["snapshot"] == "daily-2024-01-01"
    assert data["live_root"] == "/live"
    assert data["links_failed"] == 1
    assert data["orphans"] == ["/live/jobs/alpha.tmp"]


def test_summary_dict_without_snapshot():
    data = summary_dict(ResultSet())
    assert data["snapshot"] is None
    assert data["files_copied"] == 0
    assert data["orphans"] == []


def test_print_summary_lists_failures_and_orphans():
    buffer = StringIO()
    print_summary(_sample(), out=Console(file=buffer, width=200))
    text = buffer.getvalue()
    assert "Recovery summary" in text
    assert "malformed-link: /live/b.txt" in text
    assert "Orphaned staging copy needs manual follow-up: /live/jobs/alpha.tmp" in text
    assert "link-created" not in text
