"""Fatal error definitions.

Per-entry failures never raise out of the engines; they are recorded in the
ResultSet. The exceptions here stop a run before any mutation, or signal a
failure of the bulk copy primitive to the copy engine.
"""

from pathlib import Path


class SnaplinkError(RuntimeError):
    """Base class for fatal snaplink errors."""

    exit_code = 1


class ConfigurationError(SnaplinkError):
    """Raised when tuning values are invalid."""


class PathNotFound(SnaplinkError):
    """Raised when a snapshot or live root does not exist."""

    exit_code = 2

    def __init__(self, role: str, path: Path):
        self.role = role
        self.path = Path(path)
        super().__init__(f"{role} root not found: {self.path}")


class PathOverlap(SnaplinkError):
    """Raised when the live root and snapshot root contain one another."""

    exit_code = 2

    def __init__(self, snapshot_root: Path, live_root: Path):
        self.snapshot_root = Path(snapshot_root)
        self.live_root = Path(live_root)
        super().__init__(
            f"Snapshot root {self.snapshot_root} and live root {self.live_root} overlap"
        )


class SnapshotNotFound(SnaplinkError):
    """Raised when copy-only mode finds no placeholder to derive the snapshot from."""

    exit_code = 3


class MalformedLinkTarget(ValueError):
    """Raised when a placeholder target cannot be decoded into a path."""


class BulkCopyError(OSError):
    """Raised when the bulk copy primitive fails."""


class CopyTimeout(BulkCopyError):
    """Raised when a bulk copy exceeds its deadline."""
