"""Result types shared by the reconciliation and copy engines."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple


class EntryKind(str, Enum):
    """Kind of snapshot entry being reconciled or materialized."""
    FILE = "file"
    DIRECTORY = "directory"


class EntryState(str, Enum):
    """State of a live path, decided once per entry from a single lstat."""
    ABSENT = "absent"
    FILE = "file"
    DIRECTORY = "directory"
    PLACEHOLDER = "placeholder"
    OTHER = "other"


class Decision(str, Enum):
    LINK_CREATED = "link-created"
    LINK_REPLACED = "link-replaced"
    IGNORED = "ignored"
    FAILED = "failed"


class CopyStatus(str, Enum):
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"


class Reason(str, Enum):
    ALREADY_CURRENT = "already-current"
    LINK_CURRENT = "link-current"
    UNKNOWN_TYPE = "unknown-type"
    TYPE_MISMATCH = "type-mismatch"
    LINK_CREATED = "link-created"
    LINK_REPLACED = "link-replaced"
    LINK_CREATE_FAILED = "link-create-failed"
    LINK_REPLACE_FAILED = "link-replace-failed"
    MALFORMED_LINK = "malformed-link"
    SOURCE_MISSING = "source-missing"
    COPIED = "copied"
    COPY_FAILED = "copy-failed"
    RENAME_FAILED = "rename-failed"
    TIMEOUT = "timeout"
    SNAPSHOT_UNREADABLE = "snapshot-unreadable"
    LIVE_UNREADABLE = "live-unreadable"


# Outcomes that carry no action and are summarized by count only.
QUIET_REASONS = frozenset({Reason.ALREADY_CURRENT, Reason.LINK_CURRENT})


@dataclass(frozen=True)
class Snapshot:
    """A read-only point-in-time tree. ``name`` defaults to the root's last component."""
    root: Path
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "root", Path(self.root))
        if not self.name:
            object.__setattr__(self, "name", self.root.name)


@dataclass(frozen=True)
class Placeholder:
    """
    A live path holding a link into the snapshot.

    Attributes:
        path: Live path of the link
        kind: Kind of the snapshot entry the link points at
        target: Decoded snapshot path, or None if the raw target was malformed
        raw_target: Raw link text as stored on disk
    """
    path: Path
    kind: EntryKind
    target: Optional[Path]
    raw_target: Optional[str] = None


@dataclass(frozen=True)
class ReconcileOutcome:
    """Decision taken for one live entry during reconciliation."""
    path: Path
    kind: EntryKind
    decision: Decision
    reason: Reason
    target: Optional[Path] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class CopyOutcome:
    """
    Result of materializing one placeholder.

    Attributes:
        path: Live path
        kind: File or directory
        status: Copied, skipped or failed
        reason: Why the status was reached
        source: Snapshot path copied from
        detail: Error message for failures
        orphan: Staging path left on disk for manual recovery
    """
    path: Path
    kind: EntryKind
    status: CopyStatus
    reason: Reason
    source: Optional[Path] = None
    detail: Optional[str] = None
    orphan: Optional[Path] = None


@dataclass(frozen=True)
class ResultCounts:
    links_created: int = 0
    links_replaced: int = 0
    links_ignored: int = 0
    links_failed: int = 0
    files_copied: int = 0
    directories_copied: int = 0
    copies_skipped: int = 0
    copies_failed: int = 0
    orphans: int = 0

    @property
    def failures(self) -> int:
        return self.links_failed + self.copies_failed


@dataclass(frozen=True)
class ResultSet:
    """
    Ordered, append-only record of one or more engine passes.

    Each engine call returns a fresh ResultSet; passes are combined with ``+``.
    """
    reconciled: Tuple[ReconcileOutcome, ...] = field(default_factory=tuple)
    copied: Tuple[CopyOutcome, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, reconciled: Iterable[ReconcileOutcome] = (),
           copied: Iterable[CopyOutcome] = ()) -> "ResultSet":
        return cls(reconciled=tuple(reconciled), copied=tuple(copied))

    def __add__(self, other: "ResultSet") -> "ResultSet":
        if not isinstance(other, ResultSet):
            return NotImplemented
        return ResultSet(
            reconciled=self.reconciled + other.reconciled,
            copied=self.copied + other.copied,
        )

    def __bool__(self) -> bool:
        return bool(self.reconciled or self.copied)

    def with_decision(self, *decisions: Decision) -> List[ReconcileOutcome]:
        return [o for o in self.reconciled if o.decision in decisions]

    def with_status(self, *statuses: CopyStatus) -> List[CopyOutcome]:
        return [o for o in self.copied if o.status in statuses]

    @property
    def counts(self) -> ResultCounts:
        decisions = [o.decision for o in self.reconciled]
        copied = [o for o in self.copied if o.status == CopyStatus.COPIED]
        return ResultCounts(
            links_created=decisions.count(Decision.LINK_CREATED),
            links_replaced=decisions.count(Decision.LINK_REPLACED),
            links_ignored=decisions.count(Decision.IGNORED),
            links_failed=decisions.count(Decision.FAILED),
            files_copied=sum(1 for o in copied if o.kind == EntryKind.FILE),
            directories_copied=sum(1 for o in copied if o.kind == EntryKind.DIRECTORY),
            copies_skipped=sum(1 for o in self.copied if o.status == CopyStatus.SKIPPED),
            copies_failed=sum(1 for o in self.copied if o.status == CopyStatus.FAILED),
            orphans=sum(1 for o in self.copied if o.orphan is not None),
        )

    def report_rows(self, include_quiet: bool = False) -> List[Tuple[str, str, str, str, str]]:
        """
        Rows of (operation, entry-type, result, path, detail) in pass order.

        Pure no-op outcomes (already current, link current) are left out
        unless include_quiet is set; they are still counted in ``counts``.
        """
        rows = []
        for o in self.reconciled:
            if o.reason in QUIET_REASONS and not include_quiet:
                continue
            rows.append(("link", o.kind.value, o.reason.value, str(o.path), o.detail or ""))
        for o in self.copied:
            detail = o.detail or ""
            if o.orphan is not None:
                detail = f"{detail} (orphan: {o.orphan})".strip()
            rows.append(("copy", o.kind.value, o.reason.value, str(o.path), detail))
        return rows
