import click
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from snaplink import __version__
from snaplink.bulk_copy import BulkCopier
from snaplink.config import EngineConfig
from snaplink.errors import SnaplinkError
from snaplink.model import Placeholder, ResultSet, Snapshot
from snaplink.orchestrator import preflight, resolve_snapshot, run_recovery
from snaplink.progress import PassProgress
from snaplink.report import print_summary, write_report, write_summary

DEFAULT_LOG_DIR = Path.home() / ".logs" / "snaplink"

_LOG_SETUP = False
_LOG_FILE = None
_LOG_PATH = None
_RUN_HEADER_EMITTED = False


class _MirroredStream:
    """Console stream that also appends everything written to the run log.

    Attributes not defined here (encoding, isatty, fileno, ...) come from the
    console stream, so click and tqdm still see the real terminal. Once the
    console side reports a broken pipe, output still goes to the log.
    """

    def __init__(self, console, log):
        self._console = console
        self._log = log
        self._console_gone = False

    def __getattr__(self, name):
        return getattr(self._console, name)

    def write(self, data) -> int:
        if isinstance(data, bytes):
            data = data.decode(getattr(self._console, "encoding", None) or "utf-8", errors="replace")
        self._log.write(data)
        if self._console_gone:
            return len(data)
        try:
            return self._console.write(data)
        except BrokenPipeError:
            self._console_gone = True
            return len(data)

    def writelines(self, lines) -> None:
        for line in lines:
            self.write(line)

    def flush(self) -> None:
        self._log.flush()
        if not self._console_gone:
            try:
                self._console.flush()
            except BrokenPipeError:
                self._console_gone = True

    def writable(self) -> bool:
        return True


def _log_dir() -> Path:
    log_dir = os.environ.get("SNAPLINK_LOG_DIR")
    return Path(os.path.expanduser(log_dir)) if log_dir else DEFAULT_LOG_DIR


def _setup_master_log() -> None:
    global _LOG_SETUP, _LOG_FILE, _LOG_PATH
    if _LOG_SETUP:
        return
    _LOG_SETUP = True
    if os.environ.get("SNAPLINK_LOG_DISABLED") == "1":
        return
    log_file = os.environ.get("SNAPLINK_LOG_FILE")
    log_path = Path(os.path.expanduser(log_file)) if log_file else _log_dir() / "snaplink.log"
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _LOG_FILE = open(log_path, "a", encoding="utf-8", buffering=1)
    except OSError as e:
        click.echo(f"⚠️  Could not open log file {log_path}: {e}", err=True)
        return
    _LOG_PATH = log_path
    sys.stdout = _MirroredStream(sys.stdout, _LOG_FILE)
    sys.stderr = _MirroredStream(sys.stderr, _LOG_FILE)


def _emit_run_header() -> None:
    global _RUN_HEADER_EMITTED
    if _RUN_HEADER_EMITTED:
        return
    timestamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    script = Path(sys.argv[0]).name or "snaplink"
    click.echo(f"🧾 {script} v{__version__} @ {timestamp}")
    if _LOG_PATH:
        click.echo(f"🧾 log: {_LOG_PATH}")
    _RUN_HEADER_EMITTED = True


def _default_report_path(kind: str) -> Path:
    stamp = time.strftime("%Y%m%d-%H%M%S")
    return _log_dir() / "reports" / f"{kind}-{stamp}.tsv"


def _tuning_options(func):
    options = [
        click.option("--max-depth", type=int, default=None,
                     help="Deepest snapshot level linked (0 = root children). Env: SNAPLINK_MAX_DEPTH."),
        click.option("--segment-limit", type=int, default=None,
                     help="Skip snapshot paths with more segments than this. Env: SNAPLINK_SEGMENT_LIMIT."),
        click.option("--copy-workers", type=int, default=None,
                     help="Parallel file copies per directory (default: cpu_count, capped at 24)."),
        click.option("--copy-timeout", type=float, default=None,
                     help="Deadline in seconds for each directory copy."),
        click.option("--entry-workers", type=int, default=None,
                     help="Placeholders materialized concurrently (default: 1)."),
        click.option("--rsync/--no-rsync", "use_rsync", default=None,
                     help="Copy directories with rsync instead of the internal copier."),
        click.option("--no-progress", is_flag=True, help="Disable the progress bar."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(max_depth, segment_limit, copy_workers, copy_timeout, entry_workers, use_rsync) -> EngineConfig:
    return EngineConfig.from_env().with_overrides(
        max_depth=max_depth,
        segment_limit=segment_limit,
        copy_workers=copy_workers,
        copy_timeout=copy_timeout,
        entry_workers=entry_workers,
        use_rsync=use_rsync,
    )


def _fail(error: SnaplinkError) -> None:
    click.echo(f"❌ {error}", err=True)
    sys.exit(error.exit_code)


def _fail_unreadable(live: Path, error: OSError) -> None:
    click.echo(f"❌ Cannot read live root {live}: {error}", err=True)
    sys.exit(1)


def _finish(result: ResultSet, report: Optional[str], kind: str, summary: Optional[str],
            snapshot: Optional[Snapshot], live: Path, strict: bool) -> None:
    print_summary(result)
    report_path = Path(report) if report else _default_report_path(kind)
    rows = write_report(result, report_path)
    click.echo(f"📝 Report: {report_path} ({rows:,} rows)")
    if summary:
        write_summary(result, Path(summary), snapshot=snapshot, live_root=live)
        click.echo(f"📝 Summary: {summary}")
    if strict and result.counts.failures:
        sys.exit(1)


@click.group()
@click.version_option(__version__)
def cli():
    """snaplink: snapshot placeholder links and staged recovery copies"""
    _setup_master_log()
    _emit_run_header()


@cli.command("reconcile")
@click.argument("snapshot", type=click.Path(file_okay=False))
@click.argument("live", type=click.Path(file_okay=False))
@click.option("--dry-run", is_flag=True, help="Decide every entry without touching the live share.")
@click.option("--report", type=click.Path(dir_okay=False), default=None,
              help="Tab-delimited report path (default: $SNAPLINK_LOG_DIR/reports/).")
@click.option("--summary", type=click.Path(dir_okay=False), default=None, help="Write JSON counts here.")
@click.option("--strict", is_flag=True, help="Exit 1 if any entry failed.")
@_tuning_options
def reconcile_cmd(snapshot, live, dry_run, report, summary, strict, max_depth, segment_limit,
                  copy_workers, copy_timeout, entry_workers, use_rsync, no_progress):
    """
    Point the LIVE share at SNAPSHOT with placeholder links.

    Missing entries get a link, stale files and directories are replaced by
    one, and current entries are left alone. Nothing is copied.

    Examples:
        snaplink reconcile /mnt/snap/daily-2024-01-01 /mnt/live --dry-run
        snaplink reconcile /mnt/snap/daily-2024-01-01 /mnt/live --max-depth 2
    """
    from snaplink.reconcile import reconcile

    try:
        config = _build_config(max_depth, segment_limit, copy_workers, copy_timeout, entry_workers, use_rsync)
        preflight(Path(snapshot), Path(live))
    except SnaplinkError as e:
        _fail(e)

    snap = Snapshot(Path(snapshot))
    click.echo(f"📸 Snapshot: {snap.name} ({snap.root})")
    click.echo(f"📂 Live: {live}")
    if dry_run:
        click.echo("🧪 Dry run: no changes will be made")

    with PassProgress("🔗 Linking", enabled=False if no_progress else None) as progress:
        result = reconcile(snap.root, Path(live), config=config, dry_run=dry_run, progress_callback=progress)

    _finish(result, report, "reconcile", summary, snap, Path(live), strict)


@cli.command("materialize")
@click.argument("live", type=click.Path(file_okay=False))
@click.option("--snapshot", type=click.Path(file_okay=False), default=None,
              help="Snapshot root (default: derived from an existing placeholder).")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt.")
@click.option("--report", type=click.Path(dir_okay=False), default=None,
              help="Tab-delimited report path (default: $SNAPLINK_LOG_DIR/reports/).")
@click.option("--summary", type=click.Path(dir_okay=False), default=None, help="Write JSON counts here.")
@click.option("--strict", is_flag=True, help="Exit 1 if any entry failed.")
@_tuning_options
def materialize_cmd(live, snapshot, yes, report, summary, strict, max_depth, segment_limit,
                    copy_workers, copy_timeout, entry_workers, use_rsync, no_progress):
    """
    Copy-only mode: replace existing placeholders under LIVE with real data.

    The snapshot in use is read back from one existing placeholder unless
    --snapshot is given.
    """
    _recover(Path(live), Path(snapshot) if snapshot else None, True, False, yes, report, summary, strict,
             max_depth, segment_limit, copy_workers, copy_timeout, entry_workers, use_rsync, no_progress)


@cli.command("recover")
@click.argument("live", type=click.Path(file_okay=False))
@click.option("--snapshot", type=click.Path(file_okay=False), default=None,
              help="Snapshot root. Required unless --copy-only.")
@click.option("--copy-only", is_flag=True, help="Skip linking; materialize existing placeholders.")
@click.option("--dry-run", is_flag=True, help="Show link decisions without changing anything.")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt.")
@click.option("--report", type=click.Path(dir_okay=False), default=None,
              help="Tab-delimited report path (default: $SNAPLINK_LOG_DIR/reports/).")
@click.option("--summary", type=click.Path(dir_okay=False), default=None, help="Write JSON counts here.")
@click.option("--strict", is_flag=True, help="Exit 1 if any entry failed.")
@_tuning_options
def recover_cmd(live, snapshot, copy_only, dry_run, yes, report, summary, strict, max_depth, segment_limit,
                copy_workers, copy_timeout, entry_workers, use_rsync, no_progress):
    """
    Full recovery of LIVE: link against the snapshot, confirm, then copy.

    Examples:
        # Preview link decisions
        snaplink recover /mnt/live --snapshot /mnt/snap/daily-2024-01-01 --dry-run

        # Link and copy without prompting, 8 copy workers
        snaplink recover /mnt/live --snapshot /mnt/snap/daily-2024-01-01 --yes --copy-workers 8

        # Resume copying after an interrupted run
        snaplink recover /mnt/live --copy-only
    """
    if not copy_only and not snapshot:
        raise click.UsageError("--snapshot is required unless --copy-only is given")
    _recover(Path(live), Path(snapshot) if snapshot else None, copy_only, dry_run, yes, report, summary, strict,
             max_depth, segment_limit, copy_workers, copy_timeout, entry_workers, use_rsync, no_progress)


def _recover(live: Path, snapshot_root: Optional[Path], copy_only: bool, dry_run: bool, yes: bool,
             report, summary, strict, max_depth, segment_limit, copy_workers, copy_timeout,
             entry_workers, use_rsync, no_progress) -> None:
    try:
        config = _build_config(max_depth, segment_limit, copy_workers, copy_timeout, entry_workers, use_rsync)
        preflight(snapshot_root, live)
        snap = resolve_snapshot(live, snapshot_root, config)
    except SnaplinkError as e:
        _fail(e)
    except OSError as e:
        _fail_unreadable(live, e)

    click.echo(f"📸 Snapshot: {snap.name} ({snap.root})")
    click.echo(f"📂 Live: {live}")
    click.echo(f"🔧 Mode: {'copy-only' if copy_only else 'link + copy'}{' (dry-run)' if dry_run else ''}")
    click.echo(f"🧵 Copy workers: {config.resolved_copy_workers} per directory, "
               f"{config.entry_workers} entr{'y' if config.entry_workers == 1 else 'ies'} at a time")
    for note in BulkCopier.from_config(config).notes:
        click.echo(f"⚠️  {note}")

    def confirm(linked: ResultSet, pending: List[Placeholder]) -> bool:
        if not copy_only:
            counts = linked.counts
            click.echo(f"🔗 Links: {counts.links_created:,} created, {counts.links_replaced:,} replaced, "
                       f"{counts.links_ignored:,} ignored, {counts.links_failed:,} failed")
        if yes:
            return True
        return click.confirm(f"Materialize {len(pending):,} placeholders into real copies?", default=False)

    enabled = False if no_progress else None
    try:
        with PassProgress("🔗 Linking", enabled=enabled) as link_progress, \
             PassProgress("📦 Copying", enabled=enabled) as copy_progress:
            result = run_recovery(
                live,
                snapshot_root=snap.root,
                copy_only=copy_only,
                config=config,
                confirm=confirm,
                dry_run=dry_run,
                reconcile_progress=link_progress,
                copy_progress=copy_progress,
            )
    except SnaplinkError as e:
        _fail(e)
    except OSError as e:
        _fail_unreadable(live, e)

    _finish(result, report, "recover", summary, snap, live, strict)


if __name__ == "__main__":
    cli()
