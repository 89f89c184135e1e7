"""
Live-entry classification and placeholder link primitives.

Placeholders are symbolic links whose stored target is the encoded snapshot
path. Every replacement is staged at a temporary sibling and renamed over
the old entry, so a reader sees either the old entry or the new link.
"""

import os
import shutil
import stat
from pathlib import Path
from typing import Optional, Tuple

from snaplink.model import EntryState
from snaplink.pathing import staging_path

STAGING_SUFFIX = ".snaplink-tmp"
RETIRED_SUFFIX = ".snaplink-old"


def classify(path: Path) -> Tuple[EntryState, Optional[str]]:
    """
    Decide the state of a live path from a single lstat.

    Args:
        path: Live path

    Returns:
        Tuple of (state, raw_link_target). The raw target is only set for
        placeholders.

    Raises:
        OSError: For stat errors other than the path not existing
    """
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return EntryState.ABSENT, None

    mode = st.st_mode
    if stat.S_ISLNK(mode):
        return EntryState.PLACEHOLDER, os.readlink(path)
    if stat.S_ISREG(mode):
        return EntryState.FILE, None
    if stat.S_ISDIR(mode):
        if _is_junction(path):
            return EntryState.OTHER, None
        return EntryState.DIRECTORY, None
    return EntryState.OTHER, None


def _is_junction(path: Path) -> bool:
    checker = getattr(os.path, "isjunction", None)
    return bool(checker and checker(path))


def create_placeholder(path: Path, encoded_target: str, is_directory: bool) -> None:
    """
    Create a placeholder link at an absent path.

    Missing parents are created as plain directories.

    Raises:
        OSError: If the parents or the link cannot be created
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(encoded_target, path, target_is_directory=is_directory)


def replace_with_placeholder(path: Path, encoded_target: str, is_directory: bool) -> None:
    """
    Replace a live file, link or directory tree with a placeholder link.

    Files and links are swapped with one rename. A directory is renamed
    aside first, the link renamed into place, then the old tree removed.

    Raises:
        OSError: If any step fails. If the old tree cannot be removed after
            the link is in place, the error names the leftover path.
    """
    tmp = staging_path(path, STAGING_SUFFIX)
    _clear_own_leftover(tmp, encoded_target)
    os.symlink(encoded_target, tmp, target_is_directory=is_directory)

    try:
        if path.is_dir() and not path.is_symlink():
            retired = staging_path(path, RETIRED_SUFFIX)
            if os.path.lexists(retired):
                raise FileExistsError(f"Staging path already exists: {retired}")
            os.rename(path, retired)
            try:
                os.replace(tmp, path)
            except OSError:
                os.rename(retired, path)
                raise
            try:
                shutil.rmtree(retired)
            except OSError as e:
                raise OSError(e.errno, f"Link in place but old tree left at {retired}: {e.strerror}") from e
        else:
            os.replace(tmp, path)
    finally:
        if os.path.lexists(tmp):
            os.unlink(tmp)


def remove_placeholder(path: Path) -> None:
    """Remove a placeholder link. Refuses to remove anything but a link."""
    if not os.path.islink(path):
        raise FileExistsError(f"Not a placeholder link: {path}")
    os.unlink(path)


def _clear_own_leftover(path: Path, encoded_target: str) -> None:
    """
    Remove a staging link an interrupted run left pointing at the same target.

    Anything else at the staging path belongs to someone else and is refused.
    """
    if not os.path.lexists(path):
        return
    if os.path.islink(path) and os.readlink(path) == encoded_target:
        os.unlink(path)
        return
    raise FileExistsError(f"Staging path already exists: {path}")
