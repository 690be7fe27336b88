"""Two-level backup orchestration.

Builds the hourly archive from the live session directory, then embeds the
finished hourly archive as a single entry in the daily archive::

    2024-02-13.zip
        -> 13.zip
        -> 14.zip
            -> constellation4/scripts/...
            -> universe4/scripts/...

Rerunning within the same hour rebuilds the hourly archive and replaces the
daily archive's entry of the same name instead of adding a duplicate.
"""

import enum
import logging
import shutil
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from src.archiver.archive_builder import (
    ArchiveBuilder,
    BuildResult,
    abandon_zip,
    finalize_zip,
    open_zip_for_write,
    temp_path_for,
)
from src.archiver.archive_config import ArchiverConfig
from src.archiver.directory_filter import DirectoryFilter
from src.archiver.errors import (
    ArchiveOpenError,
    ArchiverError,
    DirectoryCreateError,
    EmbedError,
)
from src.archiver.path_resolver import ArchivePaths, resolve_paths
from src.archiver.retention import prune_daily_archives

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


class RunState(enum.Enum):
    IDLE = "idle"
    ENSURE_ROOT = "ensure_root"
    BUILD_HOURLY = "build_hourly"
    OPEN_DAILY = "open_daily"
    EMBED_HOURLY = "embed_hourly"
    FINALIZE_DAILY = "finalize_daily"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    paths: ArchivePaths
    hourly: BuildResult
    replaced_entry: bool
    daily_entries: list[str]
    pruned: list[Path] = field(default_factory=list)


class NestingCoordinator:
    """Runs one backup: EnsureRoot -> BuildHourly -> OpenDaily -> EmbedHourly -> FinalizeDaily.

    Usage::

        coordinator = NestingCoordinator(load_config())
        result = coordinator.run("/path/to/Sessions")
        print(result.paths.daily, result.daily_entries)
    """

    def __init__(self, config: ArchiverConfig | None = None, builder: ArchiveBuilder | None = None):
        self.config = config or ArchiverConfig()
        self.builder = builder or ArchiveBuilder()
        self.entry_filter = DirectoryFilter(self.config.exclusion_set)
        self.state = RunState.IDLE
        self.failure: ArchiverError | None = None

    def run(self, source_root, now: datetime | None = None) -> RunResult:
        """Back up ``source_root`` into its archive directory.

        Raises the ArchiverError of the first stage that fails; ``state``
        is then FAILED and ``failure`` holds the error.
        """
        self.state = RunState.IDLE
        self.failure = None
        now = now or datetime.now()
        try:
            return self._run(source_root, now)
        except ArchiverError as exc:
            logger.error("Backup failed during %s: %s", self.state.value, exc)
            self.failure = exc
            self.state = RunState.FAILED
            raise

    def _run(self, source_root, now: datetime) -> RunResult:
        paths = resolve_paths(source_root, now, self.config)
        logger.info("sessions directory: %s", paths.backup_root)
        logger.info("archives directory: %s", paths.archive_root)
        logger.info("today's archive: %s", paths.daily)
        logger.info("now's archive: %s", paths.hourly)

        self.state = RunState.ENSURE_ROOT
        self._ensure_archive_root(paths.archive_root)

        self.state = RunState.BUILD_HOURLY
        hourly = self.builder.build(paths.hourly, paths.backup_root, self.entry_filter)

        replaced, entries = self._embed(paths.daily, paths.hourly, paths.hourly_entry_name)

        self.state = RunState.DONE
        pruned = []
        if self.config.retention_days:
            pruned = prune_daily_archives(
                paths.archive_root, self.config.daily_name_format,
                self.config.retention_days, now,
            )

        return RunResult(
            paths=paths,
            hourly=hourly,
            replaced_entry=replaced,
            daily_entries=entries,
            pruned=pruned,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_archive_root(archive_root: Path):
        if archive_root.is_dir():
            return
        try:
            archive_root.mkdir()
        except FileExistsError as exc:
            raise DirectoryCreateError(archive_root, "path exists and is not a directory") from exc
        except OSError as exc:
            raise DirectoryCreateError(archive_root, exc.strerror or str(exc)) from exc
        logger.info("archives directory created: %s", archive_root)

    def _embed(self, daily_path: Path, hourly_path: Path, entry_name: str) -> tuple[bool, list[str]]:
        """Write the hourly archive into the daily one, replacing a same-named entry.

        The daily archive is rewritten into a temporary sibling and moved
        into place only when complete; the accumulated entries of the
        existing daily archive are never modified in place.
        """
        self.state = RunState.OPEN_DAILY
        existing = self._open_daily(daily_path)
        temp_path = temp_path_for(daily_path)
        try:
            out = open_zip_for_write(temp_path, daily_path)
        except ArchiveOpenError:
            if existing is not None:
                existing.close()
            raise

        self.state = RunState.EMBED_HOURLY
        replaced = False
        names: list[str] = []
        try:
            try:
                for info in existing.infolist() if existing is not None else []:
                    if info.filename == entry_name:
                        if not replaced:
                            out.write(str(hourly_path), entry_name)
                            names.append(entry_name)
                            replaced = True
                        continue
                    self._copy_entry(existing, out, info)
                    names.append(info.filename)
                if not replaced:
                    out.write(str(hourly_path), entry_name)
                    names.append(entry_name)
            # RuntimeError covers NotImplementedError (unsupported compression)
            # and encrypted entries
            except (OSError, ValueError, RuntimeError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
                abandon_zip(out, temp_path)
                raise EmbedError(daily_path, entry_name, str(exc)) from exc
        finally:
            if existing is not None:
                existing.close()

        self.state = RunState.FINALIZE_DAILY
        finalize_zip(out, temp_path, daily_path)
        logger.info(
            "%s %s in %s (%d entries)",
            "Replaced" if replaced else "Added", entry_name, daily_path, len(names),
        )
        return replaced, names

    @staticmethod
    def _open_daily(daily_path: Path) -> zipfile.ZipFile | None:
        if not daily_path.exists():
            logger.debug("Daily archive %s does not exist yet, creating", daily_path)
            return None
        try:
            return zipfile.ZipFile(str(daily_path), "r")
        except zipfile.BadZipFile as exc:
            raise ArchiveOpenError(daily_path, None, f"not a valid zip archive: {exc}") from exc
        except OSError as exc:
            raise ArchiveOpenError(daily_path, exc.errno, exc.strerror or str(exc)) from exc

    @staticmethod
    def _copy_entry(src: zipfile.ZipFile, dst: zipfile.ZipFile, info: zipfile.ZipInfo):
        """Copy one entry, streaming it so large hourly archives stay out of memory."""
        clone = zipfile.ZipInfo(info.filename, date_time=info.date_time)
        clone.compress_type = info.compress_type
        clone.external_attr = info.external_attr
        clone.comment = info.comment
        clone.file_size = info.file_size
        if info.is_dir():
            dst.writestr(clone, b"")
            return
        with src.open(info) as fin, dst.open(clone, "w") as fout:
            shutil.copyfileobj(fin, fout, COPY_CHUNK_SIZE)
