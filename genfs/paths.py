"""Path and name helpers used when walking directories in an image."""

from __future__ import annotations

from genfs.layout import FsError


def _cstr(text: str) -> str:
    """The part of ``text`` before any NUL character."""
    return text.split("\x00", 1)[0]


def split_parent(path: str) -> tuple[str, str]:
    """Split at the last '/', returning the parent with its slash and the final name."""
    cut = path.rfind("/")
    if cut == -1:
        raise FsError("Incorrect destination file path.")
    return path[: cut + 1], path[cut + 1 :]


def strip_trailing_slash(path: str) -> str:
    """Drop one trailing '/' if present."""
    return path[:-1] if path.endswith("/") else path


def name_matches(stored: str, wanted: str, size: int) -> bool:
    """Compare at most ``size`` characters, stopping early where both names end.

    A negative ``size`` compares the names in full.
    """
    stored, wanted = _cstr(stored), _cstr(wanted)
    if size < 0:
        return stored == wanted
    return stored[:size] == wanted[:size]


def truncate_name(name: str, limit: int) -> str:
    """Keep at most ``limit`` characters, ending at any NUL; a negative limit keeps all."""
    name = _cstr(name)
    return name if limit < 0 else name[:limit]