"""Archiver configuration: defaults, naming formats and config loading."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from src.archiver.errors import ConfigError
from src.archiver.path_resolver import validate_formats

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG = PROJECT_ROOT / "config" / "config.json"

# Subdirectory of the session directory that holds every produced archive
DEFAULT_ARCHIVE_ROOT_NAME = "archives"

# strftime formats for the daily archive and the hourly archive embedded in it
DAILY_NAME_FORMAT = "%Y-%m-%d.zip"
HOURLY_NAME_FORMAT = "%H.zip"

# The vendor keeps generated project metadata here; it is never backed up
DEFAULT_EXCLUDED_DIRECTORY_NAMES = ("fc2t",)

# Process names whose working directory is the live session directory
DEFAULT_SESSION_PROCESS_NAMES = ("fantasy.universe4",)


@dataclass
class ArchiverConfig:
    archive_root_name: str = DEFAULT_ARCHIVE_ROOT_NAME
    daily_name_format: str = DAILY_NAME_FORMAT
    hourly_name_format: str = HOURLY_NAME_FORMAT
    excluded_directory_names: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_DIRECTORY_NAMES)
    )
    session_process_names: list[str] = field(
        default_factory=lambda: list(DEFAULT_SESSION_PROCESS_NAMES)
    )
    session_directory: str | None = None
    retention_days: int | None = None

    def __post_init__(self):
        self.validate()

    @property
    def exclusion_set(self) -> frozenset[str]:
        """Directory names excluded anywhere in the tree, archive root included."""
        return frozenset(self.excluded_directory_names) | {self.archive_root_name}

    def validate(self):
        name = self.archive_root_name
        if not isinstance(name, str) or not name or name in (".", ".."):
            raise ConfigError(f"archive_root_name must be a directory name, got {name!r}")
        if "/" in name or "\\" in name:
            raise ConfigError(f"archive_root_name must be a single path segment: {name!r}")

        for key in ("excluded_directory_names", "session_process_names"):
            value = getattr(self, key)
            if not isinstance(value, (list, tuple)) or not all(
                isinstance(v, str) and v for v in value
            ):
                raise ConfigError(f"{key} must be a list of non-empty strings")

        if self.session_directory is not None and not isinstance(self.session_directory, str):
            raise ConfigError("session_directory must be a string or null")

        validate_formats(self.daily_name_format, self.hourly_name_format)

        if self.retention_days is not None:
            if isinstance(self.retention_days, bool) or not isinstance(self.retention_days, int) \
                    or self.retention_days < 1:
                raise ConfigError(
                    f"retention_days must be a positive integer or null, got {self.retention_days!r}"
                )
            # Pruning parses the date back out of the daily archive name
            if "%Y" not in self.daily_name_format and "%y" not in self.daily_name_format:
                raise ConfigError("retention_days requires a year in daily_name_format")

    @classmethod
    def from_dict(cls, data: dict) -> "ArchiverConfig":
        if not isinstance(data, dict):
            raise ConfigError("config root must be a JSON object")
        known = set(cls.__dataclass_fields__)
        for key in sorted(set(data) - known):
            logger.warning("Ignoring unknown config key: %s", key)
        return cls(**{k: v for k, v in data.items() if k in known})


def load_config(config_path: str | None = None) -> ArchiverConfig:
    """Load the archiver config from JSON.

    An explicitly given path must exist. Without one, the bundled
    config/config.json is used when present, built-in defaults otherwise.
    """
    if config_path is None:
        if not DEFAULT_CONFIG.exists():
            logger.debug("No config file at %s, using defaults", DEFAULT_CONFIG)
            return ArchiverConfig()
        config_path = str(DEFAULT_CONFIG)

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {config_path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"config file {config_path} is not UTF-8: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"cannot read config file {config_path}: {exc}") from exc
    return ArchiverConfig.from_dict(data)
