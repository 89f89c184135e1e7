"""Report and summary output for a recovery run."""

import csv
import datetime as dt
from pathlib import Path
from typing import Optional

import orjson
from rich.console import Console
from rich.table import Table

from snaplink.model import ResultSet, Snapshot

REPORT_HEADER = ("operation", "entry_type", "result", "path", "detail")

console = Console()

_ACTION_RESULTS = {"link-created", "link-replaced", "copied"}
_WARNING_RESULTS = {"source-missing", "type-mismatch", "unknown-type"}


def write_report(result_set: ResultSet, path: Path, include_quiet: bool = False) -> int:
    """
    Write every non-trivial outcome as tab-delimited text.

    Args:
        result_set: Outcomes of the run
        path: Report file to (over)write
        include_quiet: Also write already-current / link-current rows

    Returns:
        Number of data rows written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = result_set.report_rows(include_quiet=include_quiet)
    with open(path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle, delimiter="\t", lineterminator="\n")
        writer.writerow(REPORT_HEADER)
        writer.writerows(rows)
    return len(rows)


def summary_dict(result_set: ResultSet, snapshot: Optional[Snapshot] = None,
                 live_root: Optional[Path] = None) -> dict:
    counts = result_set.counts
    return {
        "generated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "snapshot": snapshot.name if snapshot else None,
        "snapshot_root": str(snapshot.root) if snapshot else None,
        "live_root": str(live_root) if live_root else None,
        "links_created": counts.links_created,
        "links_replaced": counts.links_replaced,
        "links_ignored": counts.links_ignored,
        "links_failed": counts.links_failed,
        "files_copied": counts.files_copied,
        "directories_copied": counts.directories_copied,
        "copies_skipped": counts.copies_skipped,
        "copies_failed": counts.copies_failed,
        "orphans": [str(o.orphan) for o in result_set.copied if o.orphan is not None],
    }


def write_summary(result_set: ResultSet, path: Path, snapshot: Optional[Snapshot] = None,
                  live_root: Optional[Path] = None) -> None:
    """Write cumulative counts and orphaned staging paths as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = summary_dict(result_set, snapshot, live_root)
    path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))


def print_summary(result_set: ResultSet, out: Optional[Console] = None) -> None:
    """Render counts, failures and orphans to the console."""
    out = out or console
    counts = result_set.counts

    table = Table(title="Recovery summary", show_header=True)
    table.add_column("Outcome")
    table.add_column("Count", justify="right")
    table.add_row("🔗 Links created", f"{counts.links_created:,}")
    table.add_row("🔁 Links replaced", f"{counts.links_replaced:,}")
    table.add_row("⏭️  Links ignored", f"{counts.links_ignored:,}")
    table.add_row("❌ Links failed", f"{counts.links_failed:,}")
    table.add_row("📄 Files copied", f"{counts.files_copied:,}")
    table.add_row("📁 Directories copied", f"{counts.directories_copied:,}")
    table.add_row("⚠️  Copies skipped", f"{counts.copies_skipped:,}")
    table.add_row("❌ Copies failed", f"{counts.copies_failed:,}")
    out.print(table)

    notable = [row for row in result_set.report_rows() if row[2] not in _ACTION_RESULTS]
    for operation, entry_type, result, path, detail in notable[:20]:
        icon = "⚠️ " if result in _WARNING_RESULTS else "❌"
        out.print(f"{icon} {operation} {entry_type} {result}: {path} {detail}".rstrip(), markup=False)
    if len(notable) > 20:
        out.print(f"   ... and {len(notable) - 20:,} more (see report)")

    for outcome in result_set.copied:
        if outcome.orphan is not None:
            out.print(f"🧷 Orphaned staging copy needs manual follow-up: {outcome.orphan}", markup=False)
