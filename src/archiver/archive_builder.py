"""Packs a directory tree into a ZIP archive.

The archive is written to a temporary sibling file and only moved over
the target once every entry has been added and the ZIP is closed, so a
failed build never leaves a partial archive at the target path.
"""

import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePath

from src.archiver.directory_filter import DirectoryFilter
from src.archiver.errors import (
    ArchiveEntryError,
    ArchiveFinalizeError,
    ArchiveOpenError,
)

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


@dataclass
class BuildResult:
    archive_path: Path
    directories: int
    files: int
    source_bytes: int

    @property
    def entries(self) -> int:
        return self.directories + self.files


def temp_path_for(archive_path: Path) -> Path:
    return archive_path.with_name(archive_path.name + TEMP_SUFFIX)


def discard(path: Path):
    """Remove a temporary file left behind by a failed write."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temporary file %s: %s", path, exc)


def open_zip_for_write(temp_path: Path, archive_path: Path) -> zipfile.ZipFile:
    """Create (truncating) the ZIP at ``temp_path`` that will become ``archive_path``."""
    try:
        return zipfile.ZipFile(str(temp_path), "w", zipfile.ZIP_DEFLATED)
    except OSError as exc:
        raise ArchiveOpenError(archive_path, exc.errno, exc.strerror or str(exc)) from exc


def finalize_zip(zf: zipfile.ZipFile, temp_path: Path, archive_path: Path):
    """Close ``zf`` and atomically move it over ``archive_path``."""
    try:
        zf.close()
        os.replace(str(temp_path), str(archive_path))
    except OSError as exc:
        discard(temp_path)
        raise ArchiveFinalizeError(archive_path, str(exc)) from exc


def abandon_zip(zf: zipfile.ZipFile, temp_path: Path):
    try:
        zf.close()
    except (OSError, ValueError) as exc:
        logger.debug("Error closing abandoned archive %s: %s", temp_path, exc)
    discard(temp_path)


class ArchiveBuilder:
    """Walks a source tree and streams the included entries into a ZIP."""

    def build(self, archive_path, source_root, entry_filter: DirectoryFilter) -> BuildResult:
        """(Re)build ``archive_path`` from ``source_root``.

        Entry names are paths relative to ``source_root`` with ``/``
        separators. Raises ArchiveOpenError, ArchiveEntryError or
        ArchiveFinalizeError; on error the previous archive is untouched.
        """
        archive_path = Path(os.path.abspath(os.fspath(archive_path)))
        source_root = Path(os.path.abspath(os.fspath(source_root)))
        temp_path = temp_path_for(archive_path)

        zf = open_zip_for_write(temp_path, archive_path)
        try:
            result = self._add_tree(zf, archive_path, temp_path, source_root, entry_filter)
        except ArchiveEntryError:
            abandon_zip(zf, temp_path)
            raise

        finalize_zip(zf, temp_path, archive_path)
        logger.info(
            "Built %s: %d directories, %d files (%d bytes)",
            archive_path, result.directories, result.files, result.source_bytes,
        )
        return result

    def _add_tree(self, zf, archive_path, temp_path, source_root, entry_filter) -> BuildResult:
        result = BuildResult(archive_path=archive_path, directories=0, files=0, source_bytes=0)
        own_files = {os.path.normcase(str(archive_path)), os.path.normcase(str(temp_path))}

        def on_walk_error(exc: OSError):
            where = exc.filename or source_root
            raise ArchiveEntryError(self._relative(where, source_root), str(exc)) from exc

        for dirpath, dirnames, filenames in os.walk(str(source_root), onerror=on_walk_error):
            dirnames.sort()
            filenames.sort()

            kept = []
            for name in dirnames:
                if entry_filter.prunes(name):
                    continue
                full = os.path.join(dirpath, name)
                rel_path = self._relative_path(full, source_root)
                if entry_filter.is_included(rel_path, is_directory=True):
                    self._add(zf, full, rel_path.as_posix() + "/")
                    result.directories += 1
                kept.append(name)
            dirnames[:] = kept

            for name in filenames:
                full = os.path.join(dirpath, name)
                if os.path.normcase(full) in own_files:
                    continue
                rel_path = self._relative_path(full, source_root)
                if not entry_filter.is_included(rel_path, is_directory=False):
                    continue
                rel = rel_path.as_posix()
                self._add(zf, full, rel)
                result.files += 1
                result.source_bytes += zf.getinfo(rel).file_size

        return result

    @staticmethod
    def _relative_path(path, source_root: Path) -> PurePath:
        # Native flavour: a backslash is only a separator where the OS says so
        return PurePath(os.path.relpath(str(path), str(source_root)))

    @classmethod
    def _relative(cls, path, source_root: Path) -> str:
        return cls._relative_path(path, source_root).as_posix()

    @staticmethod
    def _add(zf: zipfile.ZipFile, full_path: str, arcname: str):
        # ZipFile.write copies the file in chunks
        try:
            zf.write(full_path, arcname)
        except (OSError, ValueError, zipfile.LargeZipFile) as exc:
            logger.error("Failed to add %s into archive: %s", full_path, exc)
            raise ArchiveEntryError(arcname.rstrip("/"), str(exc)) from exc
        logger.debug("Added %s", arcname)
