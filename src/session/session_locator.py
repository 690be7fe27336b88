"""Finds the live session directory to back up.

The application keeps its sessions in its working directory, so the
session directory is the cwd of the running application process, found
with psutil. A configured directory takes precedence over discovery.
"""

import logging
import os
from pathlib import Path

import psutil

from src.archiver.errors import NoActiveSession

logger = logging.getLogger(__name__)


class SessionLocator:
    """Resolves the session directory, or None when no session is active."""

    def __init__(self, process_names=(), session_directory: str | None = None):
        self.process_names = {n.lower() for n in process_names}
        self.session_directory = session_directory

    def locate(self) -> Path | None:
        if self.session_directory:
            path = Path(os.path.expanduser(os.path.expandvars(self.session_directory)))
            if path.is_dir():
                return path.resolve()
            logger.warning("Configured session directory does not exist: %s", path)
            return None
        return self._find_process_cwd()

    def require(self) -> Path:
        """Like locate(), but raises NoActiveSession instead of returning None."""
        path = self.locate()
        if path is None:
            raise NoActiveSession()
        return path

    def _find_process_cwd(self) -> Path | None:
        if not self.process_names:
            logger.debug("No session process names configured")
            return None

        for proc in psutil.process_iter(["pid", "name", "cwd"]):
            try:
                name = proc.info.get("name")
                if not name or name.lower() not in self.process_names:
                    continue
                cwd = proc.info.get("cwd")
                if not cwd:
                    # cwd comes back as None when access is denied
                    logger.debug("No cwd for %s (pid=%s)", name, proc.info.get("pid"))
                    continue
                logger.info("Found session process %s (pid=%s) in %s",
                            name, proc.info.get("pid"), cwd)
                return Path(cwd)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        logger.debug("No running process among %s", sorted(self.process_names))
        return None
