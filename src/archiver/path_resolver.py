"""Derives the archive directory and the daily/hourly archive paths.

Layout::

    <session dir>/
    +-- archives/
        +-- 2024-02-13.zip      (daily, one entry per hour)
        |   +-- 13.zip
        |   +-- 14.zip
        +-- 14.zip              (hourly, rebuilt every run this hour)
"""

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from src.archiver.errors import ConfigError

# Reference day used to check naming formats
_SAMPLE_DAY = datetime(2024, 2, 13)


@dataclass(frozen=True)
class ArchivePaths:
    backup_root: Path
    archive_root: Path
    daily: Path
    hourly: Path

    @property
    def hourly_entry_name(self) -> str:
        """Name of the hourly archive inside the daily one (bare filename)."""
        return self.hourly.name


def _render(fmt: str, when: datetime, label: str) -> str:
    name = when.strftime(fmt)
    if not name:
        raise ConfigError(f"{label} renders an empty file name: {fmt!r}")
    if "/" in name or "\\" in name or name in (".", ".."):
        raise ConfigError(f"{label} must render a bare file name, got {name!r}")
    return name


def validate_formats(daily_format: str, hourly_format: str):
    """Reject naming formats that would break the daily/hourly nesting.

    The hourly name has to change every hour of the day, the daily name
    must stay the same across the day, and the two must never collide.
    """
    if not isinstance(daily_format, str) or not isinstance(hourly_format, str):
        raise ConfigError("daily_name_format and hourly_name_format must be strings")

    hours = [_SAMPLE_DAY.replace(hour=h) for h in range(24)]
    hourly_names = [_render(hourly_format, t, "hourly_name_format") for t in hours]
    if len(set(hourly_names)) != 24:
        raise ConfigError(
            f"hourly_name_format {hourly_format!r} must give a distinct name for every hour"
        )

    # Start and end of every hour, so minute/second/microsecond fields show up
    instants = [
        t.replace(minute=m, second=s, microsecond=us)
        for t in hours
        for m, s, us in ((0, 0, 0), (0, 59, 999999), (59, 0, 0), (59, 59, 999999))
    ]
    daily_names = {_render(daily_format, t, "daily_name_format") for t in instants}
    if len(daily_names) != 1:
        raise ConfigError(
            f"daily_name_format {daily_format!r} must not change within a day"
        )

    if set(hourly_names) & daily_names:
        raise ConfigError("daily and hourly archive names collide")


def resolve_paths(backup_root, now: datetime, config) -> ArchivePaths:
    """Return the archive paths for a run at ``now``. No filesystem access."""
    root = Path(os.path.abspath(os.fspath(backup_root)))
    archive_root = root / config.archive_root_name
    return ArchivePaths(
        backup_root=root,
        archive_root=archive_root,
        daily=archive_root / now.strftime(config.daily_name_format),
        hourly=archive_root / now.strftime(config.hourly_name_format),
    )
