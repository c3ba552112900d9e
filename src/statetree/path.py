"""
JSON-pointer style path helpers.

Paths are ``/``-joined segments with ``~0`` standing for a literal ``~`` and
``~1`` for a literal ``/``. The root path is the empty string.
"""

from typing import Iterable, List

APPEND_TOKEN = "-"


def escape_segment(segment: str) -> str:
    return str(segment).replace("~", "~0").replace("/", "~1")


def unescape_segment(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def split_path(path: str) -> List[str]:
    """Split a path into unescaped segments (empty segments are dropped)."""
    return [unescape_segment(part) for part in path.split("/") if part]


def join_path(segments: Iterable[str]) -> str:
    """Join raw segments into an absolute path ("" for no segments)."""
    return "".join(f"/{escape_segment(segment)}" for segment in segments)


def child_path(parent_path: str, key: str) -> str:
    return f"{parent_path}/{escape_segment(key)}"
