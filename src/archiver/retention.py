"""Optional cleanup of old daily archives."""

import logging
from datetime import datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)


def daily_archive_date(name: str, daily_name_format: str) -> datetime | None:
    """Parse a daily archive file name back into its date, or None if it doesn't match."""
    try:
        return datetime.strptime(name, daily_name_format)
    except ValueError:
        return None


def prune_daily_archives(
    archive_root,
    daily_name_format: str,
    retention_days: int,
    now: datetime | None = None,
) -> list[Path]:
    """Delete daily archives dated more than ``retention_days`` days before ``now``.

    Files whose names don't parse with ``daily_name_format`` (hourly
    archives, leftovers) are never touched. Removal failures are logged
    and skipped. Returns the removed paths.
    """
    now = now or datetime.now()
    cutoff = (now - timedelta(days=retention_days)).date()
    removed: list[Path] = []

    for path in sorted(Path(archive_root).iterdir()):
        if not path.is_file():
            continue
        day = daily_archive_date(path.name, daily_name_format)
        if day is None or day.date() >= cutoff:
            continue
        try:
            path.unlink()
        except OSError as exc:
            logger.warning("Could not remove old archive %s: %s", path, exc)
            continue
        removed.append(path)

    if removed:
        logger.info("Retention cleanup: removed %d daily archive(s)", len(removed))
    return removed
