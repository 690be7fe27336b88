"""Exceptions raised by the archiving engine.

Every error is terminal for a run. Each one names the stage it belongs to
and the path involved so the operator can tell "disk full" from
"permission denied" from "nothing to back up".
"""


class ArchiverError(Exception):
    """Base class for all archiver failures."""

    stage = "archive"


class NoActiveSession(ArchiverError):
    """No running session directory was found. Not a failure, just nothing to do."""

    stage = "session discovery"

    def __init__(self, message: str = "no active session found"):
        super().__init__(message)


class ConfigError(ArchiverError, ValueError):
    stage = "configuration"


class DirectoryCreateError(ArchiverError):
    stage = "create archive directory"

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"cannot create directory {self.path}: {reason}")


class ArchiveOpenError(ArchiverError):
    """The archive file could not be created or opened."""

    stage = "open archive"

    def __init__(self, path, errno: int | None, reason: str):
        self.path = str(path)
        self.errno = errno
        self.reason = reason
        super().__init__(f"cannot open archive {self.path} (errno={errno}): {reason}")


class ArchiveEntryError(ArchiverError):
    """A single entry could not be added; the whole build was abandoned."""

    stage = "add archive entry"

    def __init__(self, relative_path, reason: str):
        self.relative_path = str(relative_path)
        self.reason = reason
        super().__init__(f"failed to add {self.relative_path!r}: {reason}")


class ArchiveFinalizeError(ArchiverError):
    stage = "finalize archive"

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"cannot finalize archive {self.path}: {reason}")


class EmbedError(ArchiverError):
    """The hourly archive could not be inserted into the daily archive."""

    stage = "embed hourly archive"

    def __init__(self, daily_path, entry_name: str, reason: str):
        self.path = str(daily_path)
        self.entry_name = entry_name
        self.reason = reason
        super().__init__(f"failed to embed {entry_name!r} into {self.path}: {reason}")
