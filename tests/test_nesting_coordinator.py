"""Tests for the hourly-into-daily nesting and the optional retention cleanup."""

import io
import zipfile
from datetime import datetime

import pytest

from src.archiver.archive_builder import temp_path_for
from src.archiver.archive_config import ArchiverConfig
from src.archiver.errors import (
    ArchiveEntryError,
    ArchiveOpenError,
    DirectoryCreateError,
    EmbedError,
)
from src.archiver.nesting_coordinator import NestingCoordinator, RunResult, RunState
from src.archiver.retention import daily_archive_date, prune_daily_archives


DAY = datetime(2024, 2, 13)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_dir(tmp_path):
    root = tmp_path / "sessions"
    (root / "fc2t").mkdir(parents=True)
    (root / "fc2t" / "project.fc2t").write_text("generated project")
    (root / "scripts").mkdir()
    (root / "scripts" / "a.lua").write_text("print('a')")
    (root / "loose.txt").write_text("stray")
    return root


@pytest.fixture
def coordinator():
    return NestingCoordinator(ArchiverConfig())


def daily_names(path) -> list[str]:
    with zipfile.ZipFile(str(path)) as zf:
        return zf.namelist()


def embedded(daily_path, entry_name: str) -> dict[str, bytes]:
    """Contents of an hourly archive stored inside the daily archive."""
    with zipfile.ZipFile(str(daily_path)) as daily:
        data = daily.read(entry_name)
    with zipfile.ZipFile(io.BytesIO(data)) as hourly:
        return {name: hourly.read(name) for name in hourly.namelist()}


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------

class TestFirstRun:
    def test_creates_archive_root_and_both_archives(self, coordinator, session_dir):
        result = coordinator.run(session_dir, now=at(14, 5))

        archives = session_dir / "archives"
        assert archives.is_dir()
        assert (archives / "14.zip").is_file()
        assert (archives / "2024-02-13.zip").is_file()
        assert isinstance(result, RunResult)
        assert result.paths.daily == archives / "2024-02-13.zip"
        assert coordinator.state is RunState.DONE
        assert coordinator.failure is None

    def test_daily_holds_hourly_by_bare_name(self, coordinator, session_dir):
        result = coordinator.run(session_dir, now=at(14))

        assert daily_names(result.paths.daily) == ["14.zip"]
        assert result.daily_entries == ["14.zip"]
        assert result.replaced_entry is False

    def test_embedded_archive_matches_hourly_file(self, coordinator, session_dir):
        result = coordinator.run(session_dir, now=at(14))

        with zipfile.ZipFile(str(result.paths.daily)) as daily:
            assert daily.read("14.zip") == result.paths.hourly.read_bytes()
        assert embedded(result.paths.daily, "14.zip") == {
            "scripts/": b"",
            "scripts/a.lua": b"print('a')",
        }

    def test_hourly_result_reported(self, coordinator, session_dir):
        result = coordinator.run(session_dir, now=at(14))
        assert result.hourly.files == 1
        assert result.hourly.directories == 1

    def test_existing_archive_root_reused(self, coordinator, session_dir):
        (session_dir / "archives").mkdir()
        (session_dir / "archives" / "keep.txt").write_text("operator note")

        coordinator.run(session_dir, now=at(9))
        assert (session_dir / "archives" / "keep.txt").read_text() == "operator note"

    def test_custom_names(self, session_dir):
        cfg = ArchiverConfig(
            archive_root_name="backups",
            daily_name_format="%Y%m%d.zip",
            hourly_name_format="%Y%m%d-%H.zip",
            excluded_directory_names=[],
        )
        result = NestingCoordinator(cfg).run(session_dir, now=at(8))

        assert result.paths.daily == session_dir / "backups" / "20240213.zip"
        assert daily_names(result.paths.daily) == ["20240213-08.zip"]
        # fc2t is no longer excluded, the archive root still is
        names = embedded(result.paths.daily, "20240213-08.zip")
        assert "fc2t/project.fc2t" in names
        assert not any(n.startswith("backups") for n in names)


class TestAccumulation:
    def test_one_entry_per_hour(self, coordinator, session_dir):
        coordinator.run(session_dir, now=at(13))
        result = coordinator.run(session_dir, now=at(14))

        assert daily_names(result.paths.daily) == ["13.zip", "14.zip"]
        assert (session_dir / "archives" / "13.zip").is_file()
        assert (session_dir / "archives" / "14.zip").is_file()

    def test_earlier_hours_preserved(self, coordinator, session_dir):
        coordinator.run(session_dir, now=at(13))
        at_13 = embedded(session_dir / "archives" / "2024-02-13.zip", "13.zip")

        (session_dir / "scripts" / "a.lua").write_text("changed at 14")
        result = coordinator.run(session_dir, now=at(14))

        assert embedded(result.paths.daily, "13.zip") == at_13
        assert embedded(result.paths.daily, "14.zip")["scripts/a.lua"] == b"changed at 14"

    def test_new_day_new_daily_archive(self, coordinator, session_dir):
        coordinator.run(session_dir, now=at(23))
        result = coordinator.run(session_dir, now=datetime(2024, 2, 14, 0))

        assert result.paths.daily.name == "2024-02-14.zip"
        assert daily_names(result.paths.daily) == ["00.zip"]
        assert daily_names(session_dir / "archives" / "2024-02-13.zip") == ["23.zip"]


class TestRerunWithinHour:
    def test_same_hour_replaces_entry(self, coordinator, session_dir):
        coordinator.run(session_dir, now=at(14, 5))
        (session_dir / "scripts" / "a.lua").write_text("second run")
        result = coordinator.run(session_dir, now=at(14, 35))

        assert daily_names(result.paths.daily) == ["14.zip"]
        assert result.replaced_entry is True
        assert embedded(result.paths.daily, "14.zip")["scripts/a.lua"] == b"second run"

    def test_replaced_entry_keeps_its_position(self, coordinator, session_dir):
        coordinator.run(session_dir, now=at(13))
        coordinator.run(session_dir, now=at(14))
        result = coordinator.run(session_dir, now=at(13, 50))

        assert result.daily_entries == ["13.zip", "14.zip"]
        assert daily_names(result.paths.daily) == ["13.zip", "14.zip"]

    def test_unchanged_tree_rerun_is_idempotent(self, coordinator, session_dir):
        first = coordinator.run(session_dir, now=at(14, 0))
        before = embedded(first.paths.daily, "14.zip")
        second = coordinator.run(session_dir, now=at(14, 30))

        assert embedded(second.paths.daily, "14.zip") == before
        assert daily_names(second.paths.daily) == ["14.zip"]

    def test_no_temporary_files_left(self, coordinator, session_dir):
        coordinator.run(session_dir, now=at(14))
        coordinator.run(session_dir, now=at(14))

        leftovers = [p.name for p in (session_dir / "archives").iterdir() if p.suffix == ".tmp"]
        assert leftovers == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_archive_root_is_a_file(self, coordinator, session_dir):
        (session_dir / "archives").write_text("not a directory")

        with pytest.raises(DirectoryCreateError) as info:
            coordinator.run(session_dir, now=at(14))

        assert str(session_dir / "archives") in str(info.value)
        assert coordinator.state is RunState.FAILED
        assert coordinator.failure is info.value

    def test_missing_session_dir(self, coordinator, tmp_path):
        with pytest.raises(DirectoryCreateError):
            coordinator.run(tmp_path / "gone", now=at(14))
        assert not (tmp_path / "gone").exists()

    def test_corrupt_daily_archive(self, coordinator, session_dir):
        archives = session_dir / "archives"
        archives.mkdir()
        daily = archives / "2024-02-13.zip"
        daily.write_bytes(b"this is not a zip file")

        with pytest.raises(ArchiveOpenError):
            coordinator.run(session_dir, now=at(14))

        assert daily.read_bytes() == b"this is not a zip file"
        assert coordinator.state is RunState.FAILED

    def test_embed_failure_keeps_daily_intact(self, coordinator, session_dir, monkeypatch):
        coordinator.run(session_dir, now=at(13))
        daily = session_dir / "archives" / "2024-02-13.zip"
        before = daily.read_bytes()

        def failing_copy(src, dst, info):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(NestingCoordinator, "_copy_entry", staticmethod(failing_copy))

        with pytest.raises(EmbedError) as info:
            coordinator.run(session_dir, now=at(14))

        assert info.value.entry_name == "14.zip"
        assert "No space left" in str(info.value)
        assert daily.read_bytes() == before
        assert not temp_path_for(daily).exists()
        assert daily_names(daily) == ["13.zip"]

    def test_unsupported_compression_in_daily(self, coordinator, session_dir):
        archives = session_dir / "archives"
        archives.mkdir()
        daily = archives / "2024-02-13.zip"
        with zipfile.ZipFile(str(daily), "w", zipfile.ZIP_STORED) as zf:
            zf.writestr("13.zip", b"earlier hour")

        # Mark the entry with an unknown compression method (99) in both headers
        data = bytearray(daily.read_bytes())
        data[8:10] = (99).to_bytes(2, "little")
        central = data.index(b"PK\x01\x02")
        data[central + 10:central + 12] = (99).to_bytes(2, "little")
        daily.write_bytes(bytes(data))
        before = daily.read_bytes()

        with pytest.raises(EmbedError) as info:
            coordinator.run(session_dir, now=at(14))

        assert info.value.stage == "embed hourly archive"
        assert daily.read_bytes() == before
        assert not temp_path_for(daily).exists()
        assert coordinator.state is RunState.FAILED

    def test_build_failure_stops_before_daily(self, coordinator, session_dir, monkeypatch):
        def failing_build(archive_path, source_root, entry_filter):
            raise ArchiveEntryError("scripts/a.lua", "Permission denied")

        monkeypatch.setattr(coordinator.builder, "build", failing_build)

        with pytest.raises(ArchiveEntryError):
            coordinator.run(session_dir, now=at(14))

        assert not (session_dir / "archives" / "2024-02-13.zip").exists()
        assert coordinator.failure.relative_path == "scripts/a.lua"

    def test_state_reset_on_next_run(self, coordinator, session_dir):
        (session_dir / "archives").write_text("blocker")
        with pytest.raises(DirectoryCreateError):
            coordinator.run(session_dir, now=at(14))

        (session_dir / "archives").unlink()
        coordinator.run(session_dir, now=at(14))
        assert coordinator.state is RunState.DONE
        assert coordinator.failure is None


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class TestRetention:
    def test_daily_archive_date(self):
        assert daily_archive_date("2024-02-13.zip", "%Y-%m-%d.zip") == DAY
        assert daily_archive_date("14.zip", "%Y-%m-%d.zip") is None

    def test_prunes_old_daily_archives(self, tmp_path):
        for name in ("2024-01-01.zip", "2024-02-05.zip", "2024-02-06.zip",
                     "2024-02-13.zip", "14.zip", "notes.txt"):
            (tmp_path / name).write_bytes(b"x")

        removed = prune_daily_archives(tmp_path, "%Y-%m-%d.zip", 7, now=at(14))

        assert [p.name for p in removed] == ["2024-01-01.zip", "2024-02-05.zip"]
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == ["14.zip", "2024-02-06.zip", "2024-02-13.zip", "notes.txt"]

    def test_run_applies_retention(self, session_dir):
        archives = session_dir / "archives"
        archives.mkdir()
        (archives / "2023-12-31.zip").write_bytes(b"old")

        result = NestingCoordinator(ArchiverConfig(retention_days=30)).run(session_dir, now=at(14))

        assert result.pruned == [archives / "2023-12-31.zip"]
        assert not (archives / "2023-12-31.zip").exists()
        assert (archives / "2024-02-13.zip").exists()

    def test_retention_disabled_by_default(self, coordinator, session_dir):
        archives = session_dir / "archives"
        archives.mkdir()
        (archives / "2020-01-01.zip").write_bytes(b"ancient")

        result = coordinator.run(session_dir, now=at(14))
        assert result.pruned == []
        assert (archives / "2020-01-01.zip").exists()
