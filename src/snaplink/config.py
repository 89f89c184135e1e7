"""Engine tuning values.

The defaults describe the backup layout the tool was first written for:
jobs are linked three directory levels below the snapshot root, and bulk
directory copies are capped at 24 workers so the storage backend is not
flooded. Both are environment-specific and can be overridden per run.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from snaplink.errors import ConfigurationError

DEFAULT_MAX_DEPTH = 3
DEFAULT_COPY_WORKER_CAP = 24
DEFAULT_ENTRY_WORKERS = 1
DEFAULT_STAGING_SUFFIX = ".tmp"

ENV_PREFIX = "SNAPLINK_"


def default_copy_workers(cap: int = DEFAULT_COPY_WORKER_CAP) -> int:
    """Worker count for bulk directory copies: CPU count, capped."""
    return max(1, min(cap, os.cpu_count() or 1))


@dataclass(frozen=True)
class EngineConfig:
    """
    Tuning values shared by the reconciliation and copy engines.

    Attributes:
        max_depth: Deepest snapshot level (0 = direct children of the root)
            at which files are linked. Directories are linked only at
            exactly this depth.
        segment_limit: Optional cap on the number of segments in a full
            snapshot path. Excludes backup chunk directories that sit inside
            the depth window on some layouts. None disables the filter.
        copy_worker_cap: Upper bound for derived copy workers.
        copy_workers: Explicit worker count for directory copies (None = derive).
        copy_timeout: Deadline in seconds for one directory copy (None = no deadline).
        entry_workers: Entries materialized concurrently (1 = sequential).
        staging_suffix: Suffix for the temporary sibling used while staging.
        use_rsync: Copy directories with rsync instead of the internal copier.
        rsync_path: Explicit rsync binary.
    """
    max_depth: int = DEFAULT_MAX_DEPTH
    segment_limit: Optional[int] = None
    copy_worker_cap: int = DEFAULT_COPY_WORKER_CAP
    copy_workers: Optional[int] = None
    copy_timeout: Optional[float] = None
    entry_workers: int = DEFAULT_ENTRY_WORKERS
    staging_suffix: str = DEFAULT_STAGING_SUFFIX
    use_rsync: bool = False
    rsync_path: Optional[str] = None

    def __post_init__(self):
        if self.max_depth < 0:
            raise ConfigurationError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.segment_limit is not None and self.segment_limit < 1:
            raise ConfigurationError(f"segment_limit must be >= 1, got {self.segment_limit}")
        if self.copy_worker_cap < 1:
            raise ConfigurationError(f"copy_worker_cap must be >= 1, got {self.copy_worker_cap}")
        if self.copy_workers is not None and self.copy_workers < 1:
            raise ConfigurationError(f"copy_workers must be >= 1, got {self.copy_workers}")
        if self.copy_timeout is not None and self.copy_timeout <= 0:
            raise ConfigurationError(f"copy_timeout must be > 0, got {self.copy_timeout}")
        if self.entry_workers < 1:
            raise ConfigurationError(f"entry_workers must be >= 1, got {self.entry_workers}")
        if not self.staging_suffix or "/" in self.staging_suffix or "\\" in self.staging_suffix:
            raise ConfigurationError(f"Invalid staging_suffix: {self.staging_suffix!r}")

    @property
    def resolved_copy_workers(self) -> int:
        if self.copy_workers is not None:
            return min(self.copy_workers, self.copy_worker_cap)
        return default_copy_workers(self.copy_worker_cap)

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Return a copy with every non-None override applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values) if values else self

    @classmethod
    def from_env(cls, environ=None) -> "EngineConfig":
        """
        Build a config from SNAPLINK_* environment variables.

        Recognized: SNAPLINK_MAX_DEPTH, SNAPLINK_SEGMENT_LIMIT,
        SNAPLINK_COPY_WORKERS, SNAPLINK_COPY_TIMEOUT, SNAPLINK_ENTRY_WORKERS.
        Unset or blank variables keep the default.
        """
        env = os.environ if environ is None else environ
        return cls().with_overrides(
            max_depth=_env_number(env, "MAX_DEPTH", int),
            segment_limit=_env_number(env, "SEGMENT_LIMIT", int),
            copy_workers=_env_number(env, "COPY_WORKERS", int),
            copy_timeout=_env_number(env, "COPY_TIMEOUT", float),
            entry_workers=_env_number(env, "ENTRY_WORKERS", int),
        )


def _env_number(env, name: str, cast):
    key = ENV_PREFIX + name
    raw = env.get(key, "").strip()
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None
