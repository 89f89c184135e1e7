"""
Placeholder link target encoding.

Links created on SMB shares store network targets with the leading
double separator replaced by a ``UNC`` token::

    \\\\nas01\\backup\\job\\file.bin   ->   UNC\\nas01\\backup\\job\\file.bin

The stored text has to be decoded before it is compared, copied from or
logged. Long-path prefixes written by Windows clients (``\\\\?\\``) are
accepted on decode. POSIX and drive-letter paths are stored unchanged.
"""

import re

from snaplink.errors import MalformedLinkTarget

UNC_TOKEN = "UNC"
LONG_PATH_PREFIX = "\\\\?\\"

_SEPARATORS = ("\\", "/")
_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def _network_separator(path: str):
    """Return the separator of a ``\\\\host`` or ``//host`` path, else None."""
    for sep in _SEPARATORS:
        if path.startswith(sep * 2) and len(path) > 2 and path[2] not in _SEPARATORS:
            return sep
    return None


def is_absolute_target(path: str) -> bool:
    """True for POSIX absolute, drive-letter and network paths."""
    if _network_separator(path):
        return True
    if _DRIVE_RE.match(path):
        return True
    return path.startswith("/") and not path.startswith("//")


def encode_target(path) -> str:
    """
    Encode an absolute snapshot path into the stored link target.

    Args:
        path: Absolute path (str or Path)

    Returns:
        Link target text

    Raises:
        MalformedLinkTarget: If the path is empty, relative or contains NUL
    """
    text = str(path)
    _check_text(text)
    if not is_absolute_target(text):
        raise MalformedLinkTarget(f"Link target must be absolute: {text!r}")
    sep = _network_separator(text)
    if sep:
        return UNC_TOKEN + sep + text[2:]
    return text


def decode_target(raw: str) -> str:
    """
    Recover the real path from stored link target text.

    Inverse of encode_target for every absolute path.

    Raises:
        MalformedLinkTarget: For empty, relative or otherwise unrecognized targets
    """
    if not isinstance(raw, str):
        raise MalformedLinkTarget(f"Link target is not text: {raw!r}")
    _check_text(raw)

    text = raw
    if text.startswith(LONG_PATH_PREFIX):
        text = text[len(LONG_PATH_PREFIX):]
        if not text:
            raise MalformedLinkTarget(f"Empty long-path target: {raw!r}")
        if not (text.upper().startswith(UNC_TOKEN + "\\") or _DRIVE_RE.match(text)):
            raise MalformedLinkTarget(f"Unrecognized long-path target: {raw!r}")

    for sep in _SEPARATORS:
        token = UNC_TOKEN + sep
        if text[:len(token)].upper() == token:
            rest = text[len(token):]
            if not rest or rest[0] in _SEPARATORS:
                raise MalformedLinkTarget(f"Network target without host: {raw!r}")
            return sep * 2 + rest

    if not is_absolute_target(text):
        raise MalformedLinkTarget(f"Link target is not absolute: {raw!r}")
    return text


def _check_text(text: str) -> None:
    if not text:
        raise MalformedLinkTarget("Empty link target")
    if "\x00" in text:
        raise MalformedLinkTarget(f"Link target contains NUL: {text!r}")


class LinkCodec:
    """Pluggable codec; the engines accept any object with encode/decode."""

    def encode(self, path) -> str:
        return encode_target(path)

    def decode(self, raw: str) -> str:
        return decode_target(raw)


DEFAULT_CODEC = LinkCodec()
