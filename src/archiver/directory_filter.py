"""Decides which entries of the session directory go into an archive."""

import os
from pathlib import PurePath


def split_segments(relative_path) -> tuple[str, ...]:
    """Split a relative path into its segments.

    PurePath inputs keep their own flavour's separators. Strings split on
    ``/``, and also on ``\\`` where that is the native separator; on POSIX
    a backslash is an ordinary file name character.
    """
    if isinstance(relative_path, PurePath):
        parts = relative_path.parts
    else:
        text = str(relative_path)
        if os.sep == "\\":
            text = text.replace("\\", "/")
        parts = text.split("/")
    return tuple(p for p in parts if p not in ("", ".", "/"))


class DirectoryFilter:
    """Inclusion rules for entries relative to the backup root.

    - an entry is excluded when any of its path segments is an excluded
      directory name (this is how the archive directory excludes itself)
    - loose files directly under the backup root are excluded; only
      content organised in subdirectories is kept
    """

    def __init__(self, excluded_names):
        self.excluded_names = frozenset(excluded_names)

    def prunes(self, dirname: str) -> bool:
        """True if a directory with this name must not be descended into."""
        return dirname in self.excluded_names

    def is_included(self, relative_path, is_directory: bool) -> bool:
        segments = split_segments(relative_path)
        if not segments:
            return False

        # Leaf back to root
        for segment in reversed(segments):
            if segment in self.excluded_names:
                return False

        if not is_directory and len(segments) == 1:
            return False
        return True

    def __repr__(self):
        return f"DirectoryFilter(excluded_names={sorted(self.excluded_names)!r})"
